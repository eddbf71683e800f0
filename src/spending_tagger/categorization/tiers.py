import logging
from typing import Optional

from spending_tagger.categorization import tags
from spending_tagger.categorization.base import (
    ClassificationContext,
    ClassificationTier,
    InferredCategory,
)
from spending_tagger.categorization.exclusion import ExclusionGuard
from spending_tagger.categorization.validators import TagValidators
from spending_tagger.domain.models import ClassificationResult, Transaction
from spending_tagger.learning.matching import DEFAULT_FIRING_THRESHOLD, rank_matches
from spending_tagger.registry.rule_registry import USER_MAPPING_CONFIDENCE, RuleRegistry
from spending_tagger.utils.timestamps import Clock, isoformat, utc_now

logger = logging.getLogger(__name__)

EXISTING_TAG_CONFIDENCE = 0.8
DEFAULT_TAG_CONFIDENCE = 0.5
DEFAULT_CATEGORY_CONFIDENCE = 0.5


def _has_text(value: Optional[str]) -> bool:
    return bool((value or "").strip())


class SpecialRuleTier(ClassificationTier):
    """Fixed-pattern overrides that bypass every other tier"""

    tier = 0

    def _evaluate(self, transaction: Transaction, context: ClassificationContext) -> Optional[ClassificationResult]:
        for rule in context.snapshot.special_rules:
            if rule.matches(transaction):
                return ClassificationResult(
                    tag=rule.result.tag,
                    category=rule.result.category or transaction.category,
                    subcategory=rule.result.subcategory or transaction.subcategory,
                    confidence=rule.confidence,
                    reason=rule.reason or f"Special rule {rule.id}",
                    tier=self.tier,
                )
        return None


class LearnedRuleTier(ClassificationTier):
    """
    Rules learned from manual corrections.

    A firing rule whose tag has a validator must also pass it, so a
    learned rule cannot reintroduce a tag the guards reject. The next
    best firing rule is tried instead.
    """

    tier = 1

    def __init__(
        self,
        validators: TagValidators,
        registry: Optional[RuleRegistry] = None,
        threshold: float = DEFAULT_FIRING_THRESHOLD,
        clock: Optional[Clock] = None,
    ):
        super().__init__()
        self.validators = validators
        self.registry = registry
        self.threshold = threshold
        self._clock = clock or utc_now

    def _evaluate(self, transaction: Transaction, context: ClassificationContext) -> Optional[ClassificationResult]:
        for match in rank_matches(context.snapshot.learned_rules, transaction, self.threshold):
            tag = match.rule.tag
            if self.validators.has_validator(tag) and not self.validators.validate(tag, transaction):
                logger.info(
                    "Learned rule %s proposed invalid tag '%s' for %r, discarding",
                    match.rule.id, tag, transaction,
                )
                continue

            if self.registry is not None:
                self.registry.record_learned_rule_usage(match.rule.id, isoformat(self._clock()))

            return ClassificationResult(
                tag=tag,
                category=transaction.category,
                subcategory=transaction.subcategory,
                confidence=match.score,
                reason=f"Learned rule {match.rule.id} (score {match.score:.2f})",
                tier=self.tier,
            )
        return None


class UserMappingTier(ClassificationTier):
    """Exact (category, subcategory) lookup in the user mapping"""

    tier = 2

    def _evaluate(self, transaction: Transaction, context: ClassificationContext) -> Optional[ClassificationResult]:
        tag = context.snapshot.lookup(transaction.category, transaction.subcategory)
        if tag is None:
            return None

        return ClassificationResult(
            tag=tag,
            category=transaction.category,
            subcategory=transaction.subcategory,
            confidence=USER_MAPPING_CONFIDENCE,
            reason=(
                f"User-defined mapping: {transaction.category}/{transaction.subcategory} → {tag}"
            ),
            tier=self.tier,
        )


class ExistingTagTier(ClassificationTier):
    """Keeps a non-default tag the transaction already carries, if still valid"""

    tier = 3

    def __init__(self, validators: TagValidators):
        super().__init__()
        self.validators = validators

    def _evaluate(self, transaction: Transaction, context: ClassificationContext) -> Optional[ClassificationResult]:
        if tags.is_default_tag(transaction.tag):
            return None

        if not self.validators.validate(transaction.tag, transaction):
            logger.info("Existing tag '%s' is no longer valid for %r", transaction.tag, transaction)
            return None

        tag = tags.display_tag(transaction.tag)
        return ClassificationResult(
            tag=tag,
            category=transaction.category,
            subcategory=transaction.subcategory,
            confidence=EXISTING_TAG_CONFIDENCE,
            reason=f"Existing tag '{tag}' validated",
            tier=self.tier,
        )


class CategoryAssignmentTier(ClassificationTier):
    """
    Infers a missing category from description keywords.

    Never produces a result by itself; the inferred category travels
    down the chain in the context.
    """

    tier = 4

    def _evaluate(self, transaction: Transaction, context: ClassificationContext) -> Optional[ClassificationResult]:
        if _has_text(transaction.category):
            return None

        for rule in context.snapshot.category_rules:
            if rule.matches(transaction):
                context.inferred_category = InferredCategory(
                    category=rule.result.category,
                    subcategory=rule.result.subcategory,
                    confidence=rule.confidence,
                    reason=rule.reason,
                )
                return None

        context.inferred_category = InferredCategory(
            category=tags.DEFAULT_CATEGORY,
            subcategory=tags.DEFAULT_SUBCATEGORY,
            confidence=DEFAULT_CATEGORY_CONFIDENCE,
            reason="No category rule matched",
        )
        return None


class KeywordTagTier(ClassificationTier):
    """
    Savings -> Transfers -> Investments -> Income, defaulting to Other.

    Always produces a result; it is the end of the chain.
    """

    tier = 5

    def __init__(self, guard: ExclusionGuard):
        super().__init__()
        self.guard = guard

    def _evaluate(self, transaction: Transaction, context: ClassificationContext) -> Optional[ClassificationResult]:
        candidate = self.guard.candidate_tag(transaction)
        if candidate is not None:
            tag, tag_confidence, reason = candidate.tag, candidate.confidence, candidate.reason
        else:
            tag, tag_confidence, reason = tags.OTHER, DEFAULT_TAG_CONFIDENCE, "No specific indicators found"

        inferred = context.inferred_category
        if inferred is not None:
            category, subcategory = inferred.category, inferred.subcategory
            category_confidence = inferred.confidence
            reason = f"{reason}; {inferred.reason}"
        else:
            category, subcategory = transaction.category, transaction.subcategory
            category_confidence = 1.0

        return ClassificationResult(
            tag=tag,
            category=category,
            subcategory=subcategory,
            confidence=min(tag_confidence, category_confidence),
            reason=reason,
            tier=self.tier,
        )
