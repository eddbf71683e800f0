from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from spending_tagger.domain.models import ClassificationResult, Transaction
from spending_tagger.registry.rule_registry import RegistrySnapshot


@dataclass(frozen=True)
class InferredCategory:
    category: str
    subcategory: str
    confidence: float
    reason: str


@dataclass
class ClassificationContext:
    """
    Per-transaction state passed down the tier chain.

    `snapshot` is the frozen rule set the whole chain evaluates against;
    `inferred_category` is filled by the category-assignment tier.
    """
    snapshot: RegistrySnapshot
    inferred_category: Optional[InferredCategory] = None


class ClassificationTier(ABC):
    """
    Abstract base class for one tier of the classifier.

    Implements Chain of Responsibility:
    - Each tier tries to classify a transaction
    - If it can't it passes to the next tier
    - Tiers are tried in priority order (0 first)

    Usage:
        Create chain: special -> learned -> ... -> keyword tags
        ```
        special = SpecialRuleTier()
        learned = LearnedRuleTier(validators, registry)

        special.set_next(learned).set_next(...)

        result = special.classify(transaction, context)
        ```
    """

    tier: int = -1

    def __init__(self):
        self._next_tier: Optional['ClassificationTier'] = None

    def set_next(self, tier: 'ClassificationTier') -> 'ClassificationTier':
        """
        Set the next tier in the chain.

        Args:
            tier: The tier to try if this one produces no result

        Returns:
            The tier that was set (for chaining)

        Example:
            `tier0.set_next(tier1).set_next(tier2)`
        """
        self._next_tier = tier
        return tier

    @abstractmethod
    def _evaluate(
        self,
        transaction: Transaction,
        context: ClassificationContext
    ) -> Optional[ClassificationResult]:
        """
        Try to produce a definitive result for the transaction.

        Args:
            transaction: Transaction to classify
            context: Snapshot and intermediate state for this classification

        Returns:
            A result, or None to fall through to the next tier
        """
        pass

    def classify(
        self,
        transaction: Transaction,
        context: ClassificationContext
    ) -> Optional[ClassificationResult]:
        """
        Classify a transaction.

        Returns the first definitive result produced by this tier or any
        tier after it.

        Returns:
            The result, or None if no tier produced one
        """
        result = self._evaluate(transaction, context)
        if result is not None:
            return result

        if self._next_tier:
            return self._next_tier.classify(transaction, context)

        return None

    def __repr__(self):
        return f"{self.__class__.__name__}(tier={self.tier})"
