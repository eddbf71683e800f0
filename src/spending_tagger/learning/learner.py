import logging
import threading
import uuid
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from spending_tagger.config.settings import ConfigLoader
from spending_tagger.domain.enums import PatternType
from spending_tagger.domain.errors import LearnedDataFormatError
from spending_tagger.domain.models import Transaction
from spending_tagger.domain.rules import LearnedCondition, LearnedRule, ManualAssignment, Pattern
from spending_tagger.learning.extractors import DescriptionPatternExtractor, PatternExtractor
from spending_tagger.learning.matching import (
    DEFAULT_FIRING_THRESHOLD,
    DEFAULT_WORD_MIN_LENGTH,
    LearnedMatch,
    rank_matches,
    word_tokens,
)
from spending_tagger.registry.rule_registry import RuleRegistry
from spending_tagger.storage.base import KeyValueStore
from spending_tagger.utils.timestamps import Clock, isoformat, utc_now

logger = logging.getLogger(__name__)

MANUAL_ASSIGNMENTS_KEY = "manual_assignments"


@dataclass
class LearningStatistics:
    total_rules: int
    total_assignments: int
    rules_by_tag: Dict[str, int] = field(default_factory=dict)
    most_used_rules: List[LearnedRule] = field(default_factory=list)
    recent_rules: List[LearnedRule] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalRules": self.total_rules,
            "totalAssignments": self.total_assignments,
            "rulesByTag": dict(self.rules_by_tag),
            "mostUsedRules": [rule.id for rule in self.most_used_rules],
            "recentRules": [rule.id for rule in self.recent_rules],
        }


class PatternLearner:
    """
    Turns manual tag corrections into learned rules.

    Flow:
    1. `learn_from_assignment` records an immutable ManualAssignment with
       the patterns extracted from the description.
    2. `analyze_and_create_rules` groups assignments by tag and, for every
       group of at least two, keeps the patterns and fields present in
       more than half of the group as conditions of that tag's rule.
    3. The rule replaces any earlier rule for the tag in the registry.

    Usage:
        ```
        learner = PatternLearner(registry)
        learner.learn_from_assignment(txn1, "Subscriptions")
        learner.learn_from_assignment(txn2, "Subscriptions")
        learner.analyze_and_create_rules()
        learner.apply_learned_rules(txn3)
        ```
    """

    def __init__(
        self,
        registry: RuleRegistry,
        store: Optional[KeyValueStore] = None,
        extractor: Optional[PatternExtractor] = None,
        config: Optional[Dict[str, Any]] = None,
        clock: Optional[Clock] = None,
    ):
        """
        Initialize the learner.

        Args:
            registry: Registry that receives the learned rules
            store: Store for manual assignments. Defaults to the registry's.
            extractor: Pattern extraction strategy
            config: Learning thresholds. If None, loads `learning.json`.
            clock: Time source, injectable for tests
        """
        self.registry = registry
        self.store = store if store is not None else registry.store
        self.config = config if config is not None else ConfigLoader.load_learning_config()
        self.extractor = extractor or DescriptionPatternExtractor.from_config(self.config)
        self._clock = clock or utc_now

        self.minimum_group_size = int(self.config.get("minimum_group_size", 2))
        self.frequency_threshold = float(self.config.get("frequency_threshold", 0.5))
        self.firing_threshold = float(self.config.get("firing_threshold", DEFAULT_FIRING_THRESHOLD))
        self.word_min_length = int(self.config.get("word_min_length", DEFAULT_WORD_MIN_LENGTH))

        self._lock = threading.RLock()
        self._assignments = self._load_assignments()

    @property
    def manual_assignments(self) -> Tuple[ManualAssignment, ...]:
        with self._lock:
            return tuple(self._assignments)

    def learn_from_assignment(self, transaction: Transaction, tag: str) -> ManualAssignment:
        """
        Record a manual tag assignment.

        Args:
            transaction: The transaction the user tagged
            tag: The tag the user chose

        Returns:
            The recorded assignment

        Raises:
            ValueError: If the tag is empty
        """
        if not isinstance(tag, str) or not tag.strip():
            raise ValueError("Assigned tag must be a non-empty string")

        assignment = ManualAssignment(
            id=uuid.uuid4().hex,
            timestamp=isoformat(self._clock()),
            transaction_id=transaction.id,
            description=transaction.description or "",
            category=transaction.category or "",
            subcategory=transaction.subcategory or "",
            counterparty=transaction.counterparty or "",
            amount=transaction.amount or 0,
            assigned_tag=tag.strip(),
            patterns=tuple(self.extractor.extract(transaction.description)),
        )

        with self._lock:
            self._assignments.append(assignment)
            self._persist_assignments()

        logger.info(
            "Learned from manual assignment: '%s' -> '%s' (%d patterns)",
            assignment.description, assignment.assigned_tag, len(assignment.patterns),
        )
        return assignment

    def analyze_and_create_rules(self) -> List[LearnedRule]:
        """
        Synthesize one learned rule per tag with enough assignments.

        A group that yields no condition creates no rule and leaves any
        earlier rule for that tag in place.

        Returns:
            The rules created or replaced in this run
        """
        with self._lock:
            groups: Dict[str, List[ManualAssignment]] = defaultdict(list)
            for assignment in self._assignments:
                groups[assignment.assigned_tag].append(assignment)

            created = []
            for tag, assignments in groups.items():
                if len(assignments) < self.minimum_group_size:
                    continue
                rule = self._build_rule(tag, assignments)
                if rule is None:
                    logger.info("No common patterns for tag '%s', rule left unchanged", tag)
                    continue
                self.registry.replace_learned_rule(rule)
                created.append(rule)
                logger.info(
                    "Learned rule for '%s' from %d assignments (%d conditions)",
                    tag, len(assignments), len(rule.conditions),
                )

        return created

    def _build_rule(self, tag: str, assignments: List[ManualAssignment]) -> Optional[LearnedRule]:
        size = len(assignments)

        pattern_counts: Counter = Counter()
        pattern_confidence: Dict[Tuple[str, str], Pattern] = {}
        field_counts: Dict[PatternType, Counter] = {
            PatternType.CATEGORY: Counter(),
            PatternType.SUBCATEGORY: Counter(),
            PatternType.COUNTERPARTY: Counter(),
        }

        for assignment in assignments:
            for pattern in assignment.patterns:
                pattern_counts[pattern.key] += 1
                pattern_confidence.setdefault(pattern.key, pattern)
            for pattern_type, value in (
                (PatternType.CATEGORY, assignment.category),
                (PatternType.SUBCATEGORY, assignment.subcategory),
                (PatternType.COUNTERPARTY, assignment.counterparty),
            ):
                value = (value or "").strip().lower()
                if value:
                    field_counts[pattern_type][value] += 1

        conditions: List[LearnedCondition] = []
        for key, count in pattern_counts.items():
            frequency = count / size
            if frequency > self.frequency_threshold:
                pattern = pattern_confidence[key]
                conditions.append(LearnedCondition(
                    type=pattern.type,
                    pattern=pattern.pattern,
                    confidence=round(pattern.confidence * frequency, 4),
                    frequency=round(frequency, 4),
                ))

        for pattern_type, counts in field_counts.items():
            for value, count in counts.items():
                frequency = count / size
                if frequency > self.frequency_threshold:
                    conditions.append(LearnedCondition(
                        type=pattern_type,
                        pattern=value,
                        confidence=round(frequency, 4),
                        frequency=round(frequency, 4),
                    ))

        if not conditions:
            return None

        now = self._clock()
        return LearnedRule(
            id=f"rule_{tag}_{int(now.timestamp() * 1000)}",
            tag=tag,
            conditions=conditions,
            confidence=round(sum(c.confidence for c in conditions) / len(conditions), 4),
            assignments_count=size,
            created_at=isoformat(now),
            exemplars=[
                word_tokens(assignment.description, self.word_min_length)
                for assignment in assignments
            ],
        )

    def apply_learned_rules(self, transaction: Transaction) -> Optional[LearnedMatch]:
        """
        Best firing learned rule for a transaction, if any.

        The firing rule's usage count and last-used timestamp are updated.
        """
        matches = rank_matches(self.registry.learned_rules, transaction, self.firing_threshold)
        if not matches:
            return None

        best = matches[0]
        self.registry.record_learned_rule_usage(best.rule.id, isoformat(self._clock()))
        self.registry.flush()
        logger.debug("Learned rule %s fired for %r (score %.2f)", best.rule.id, transaction, best.score)
        return best

    def statistics(self) -> LearningStatistics:
        rules = self.registry.learned_rules
        rules_by_tag = Counter(rule.tag for rule in rules)
        return LearningStatistics(
            total_rules=len(rules),
            total_assignments=len(self.manual_assignments),
            rules_by_tag=dict(rules_by_tag),
            most_used_rules=sorted(rules, key=lambda r: r.usage_count, reverse=True)[:5],
            recent_rules=sorted(rules, key=lambda r: r.created_at, reverse=True)[:5],
        )

    def export_learned(self) -> Dict[str, Any]:
        """Learned rules, assignments and statistics as one JSON object"""
        return {
            "rules": [rule.to_dict() for rule in self.registry.learned_rules],
            "assignments": [a.to_dict() for a in self.manual_assignments],
            "statistics": self.statistics().to_dict(),
            "exportedAt": isoformat(self._clock()),
        }

    def import_learned(self, payload: Any) -> None:
        """
        Replace learned rules and/or assignments with an exported payload.

        Sections missing from the payload are left as they are.

        Raises:
            LearnedDataFormatError: If any part of the payload is malformed
        """
        if not isinstance(payload, dict):
            raise LearnedDataFormatError("Learned data must be a JSON object")

        try:
            rules = None
            if payload.get("rules") is not None:
                rules = [LearnedRule.from_dict(data) for data in payload["rules"]]
            assignments = None
            if payload.get("assignments") is not None:
                assignments = [ManualAssignment.from_dict(data) for data in payload["assignments"]]
        except (KeyError, ValueError, TypeError, AttributeError) as e:
            raise LearnedDataFormatError(f"Malformed learned data: {e}") from e

        with self._lock:
            if rules is not None:
                self.registry.set_learned_rules(rules)
            if assignments is not None:
                self._assignments = assignments
                self._persist_assignments()

        logger.info(
            "Imported learned data (%s rules, %s assignments)",
            len(rules) if rules is not None else "no",
            len(assignments) if assignments is not None else "no",
        )

    def clear_learned_data(self) -> None:
        """Forget every learned rule and manual assignment"""
        with self._lock:
            self._assignments = []
            self.store.delete(MANUAL_ASSIGNMENTS_KEY)
            self.registry.set_learned_rules([])
        logger.info("Cleared all learned data")

    def _persist_assignments(self) -> None:
        self.store.set(MANUAL_ASSIGNMENTS_KEY, [a.to_dict() for a in self._assignments])

    def _load_assignments(self) -> List[ManualAssignment]:
        stored = self.store.get(MANUAL_ASSIGNMENTS_KEY)
        if stored is None:
            return []
        if not isinstance(stored, list):
            logger.warning("Ignoring corrupt manual assignments: expected a list")
            return []

        assignments = []
        for data in stored:
            try:
                assignments.append(ManualAssignment.from_dict(data))
            except (KeyError, ValueError, TypeError, AttributeError) as e:
                logger.warning("Skipping corrupt manual assignment %r: %s", data, e)
        return assignments

    def __repr__(self) -> str:
        return f"PatternLearner({len(self._assignments)} assignments, {self.extractor!r})"
