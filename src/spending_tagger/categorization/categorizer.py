import logging
from typing import List, Optional

from spending_tagger.categorization.base import ClassificationContext, ClassificationTier
from spending_tagger.categorization.exclusion import ExclusionGuard
from spending_tagger.categorization.tiers import (
    CategoryAssignmentTier,
    ExistingTagTier,
    KeywordTagTier,
    LearnedRuleTier,
    SpecialRuleTier,
    UserMappingTier,
)
from spending_tagger.categorization.validators import TagValidators
from spending_tagger.domain.models import ClassificationResult, Transaction
from spending_tagger.learning.matching import DEFAULT_FIRING_THRESHOLD
from spending_tagger.registry.rule_registry import RegistrySnapshot, RuleRegistry
from spending_tagger.utils.timestamps import Clock

logger = logging.getLogger(__name__)


class Classifier:
    """
    Main engine for tagging transactions.

    Builds a chain of tiers in priority order:
    0. Special fixed-pattern rules
    1. Learned rules (re-validated)
    2. User-defined category/subcategory mapping
    3. Existing-tag validation
    4. Category auto-assignment
    5. Keyword tag assignment (Savings -> Transfers -> Investments -> Income -> Other)

    Usage:
        # Production - system rules come from the registry's config
        classifier = Classifier(registry)

        # Testing - inject a guard or validators built from custom config
        classifier = Classifier(registry, guard=ExclusionGuard.from_config(test_rules))

        # Classify one transaction, or many against one snapshot
        result = classifier.classify(transaction)
        snapshot = registry.snapshot()
        results = [classifier.classify(t, snapshot) for t in transactions]
    """

    def __init__(
        self,
        registry: RuleRegistry,
        guard: Optional[ExclusionGuard] = None,
        validators: Optional[TagValidators] = None,
        firing_threshold: float = DEFAULT_FIRING_THRESHOLD,
        clock: Optional[Clock] = None,
    ):
        """
        Initialize the classifier.

        Args:
            registry: Source of every rule snapshot
            guard: Exclusion guard. If None, built from the registry's system rules.
            validators: Per-tag validators. If None, built from the system rules.
            firing_threshold: Score a learned rule must exceed to fire
            clock: Time source for learned-rule usage statistics
        """
        self.registry = registry
        self.guard = guard or ExclusionGuard.from_config(registry.system_config)
        self.validators = validators or TagValidators.from_config(registry.system_config, self.guard)
        self._chain: ClassificationTier = self._build_chain(firing_threshold, clock)

    def _build_chain(self, firing_threshold: float, clock: Optional[Clock]) -> ClassificationTier:
        tiers: List[ClassificationTier] = [
            SpecialRuleTier(),
            LearnedRuleTier(self.validators, self.registry, firing_threshold, clock),
            UserMappingTier(),
            ExistingTagTier(self.validators),
            CategoryAssignmentTier(),
            KeywordTagTier(self.guard),
        ]
        for current, following in zip(tiers, tiers[1:]):
            current.set_next(following)
        return tiers[0]

    def classify(
        self,
        transaction: Transaction,
        snapshot: Optional[RegistrySnapshot] = None
    ) -> ClassificationResult:
        """
        Classify a single transaction.

        Args:
            transaction: Transaction to classify. It is not modified.
            snapshot: Rule snapshot to evaluate against. Defaults to the
                registry's current one.

        Returns:
            The classification result

        Example:
            ```
            >>> classifier = Classifier(RuleRegistry())
            >>> txn = Transaction(id="1", description="Bunq savings transfer", amount=-10000)
            >>> classifier.classify(txn).tag
            'Savings'
            ```
        """
        context = ClassificationContext(snapshot=snapshot or self.registry.snapshot())
        result = self._chain.classify(transaction, context)

        assert result is not None, "Keyword tier should always produce a result"

        logger.debug("Tier %d tagged %r as %s: %s", result.tier, transaction, result.tag, result.reason)
        return result

    def get_rule_chain_info(self) -> str:
        """
        Get information about the tier chain.

        Returns:
            One numbered line per tier, in evaluation order
        """
        lines = []
        current: Optional[ClassificationTier] = self._chain
        while current:
            lines.append(f"{current.tier}. {current}")
            current = current._next_tier
        return "\n".join(lines)

    def __repr__(self) -> str:
        num_tiers = 0
        current: Optional[ClassificationTier] = self._chain
        while current:
            num_tiers += 1
            current = current._next_tier
        return f"Classifier({num_tiers} tiers in chain)"
