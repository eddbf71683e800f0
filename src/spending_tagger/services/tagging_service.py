import logging
import threading
from typing import List, Optional

from spending_tagger.categorization import Classifier, tags
from spending_tagger.domain.models import HistoryEntry, Transaction
from spending_tagger.learning.learner import PatternLearner
from spending_tagger.registry.rule_registry import RuleRegistry
from spending_tagger.services.bulk_reclassifier import BulkReclassifier
from spending_tagger.services.models import FixReport
from spending_tagger.utils.timestamps import Clock, isoformat, utc_now

logger = logging.getLogger(__name__)


class TaggingService:
    """
    Entry point for the surrounding UI/CLI.

    Wires the registry, classifier, learner and bulk reclassifier together
    and implements the workflows that span several of them.
    """

    def __init__(
        self,
        registry: RuleRegistry,
        classifier: Optional[Classifier] = None,
        learner: Optional[PatternLearner] = None,
        reclassifier: Optional[BulkReclassifier] = None,
        clock: Optional[Clock] = None,
    ):
        self.registry = registry
        self._clock = clock or utc_now
        self._classifier = classifier
        self._learner = learner
        self._reclassifier = reclassifier

    @property
    def classifier(self) -> Classifier:
        """Lazy-load classifier"""
        if self._classifier is None:
            self._classifier = Classifier(self.registry, clock=self._clock)
        return self._classifier

    @property
    def learner(self) -> PatternLearner:
        """Lazy-load pattern learner"""
        if self._learner is None:
            self._learner = PatternLearner(self.registry, clock=self._clock)
        return self._learner

    @property
    def reclassifier(self) -> BulkReclassifier:
        """Lazy-load bulk reclassifier"""
        if self._reclassifier is None:
            self._reclassifier = BulkReclassifier(self.classifier, clock=self._clock)
        return self._reclassifier

    def classify_many(
        self,
        transactions: List[Transaction],
        overwrite: bool = False
    ) -> List[Transaction]:
        """
        Tag freshly imported transactions.

        Args:
            transactions: Transactions to tag, updated in place
            overwrite: If True, re-tag pinned transactions too.
                      If False, transactions with a manual override keep their tag.

        Returns:
            The same transactions, tagged

        Example:
            ```
            service = TaggingService(registry)
            tagged = service.classify_many(parsed_transactions)
            ```
        """
        snapshot = self.registry.snapshot()

        for txn in transactions:
            if txn.is_pinned and not overwrite:
                continue

            result = self.classifier.classify(txn, snapshot)
            txn.tag = result.tag
            txn.confidence = result.confidence
            txn.classification_reason = result.reason
            if not txn.category.strip():
                txn.category = result.category
            if not txn.subcategory.strip():
                txn.subcategory = result.subcategory

        self.registry.flush()
        return transactions

    def update_tag(self, transaction: Transaction, tag: str, reason: str = "Manual tag change") -> Transaction:
        """
        Apply a manual tag change.

        The change is appended to the override history, which pins the
        tag against bulk fixes, and recorded as a learning example.

        Args:
            transaction: Transaction to update, modified in place
            tag: New tag
            reason: Audit note for the override history

        Returns:
            The updated transaction

        Raises:
            ValueError: If the tag is empty
        """
        if not isinstance(tag, str) or not tag.strip():
            raise ValueError("Tag must be a non-empty string")
        tag = tag.strip()

        transaction.override_history.append(HistoryEntry(
            timestamp=isoformat(self._clock()),
            old_tag=transaction.tag or tags.UNTAGGED,
            new_tag=tag,
            reason=reason,
        ))
        transaction.tag = tag
        transaction.confidence = 1.0
        transaction.classification_reason = reason

        self.learner.learn_from_assignment(transaction, tag)
        self.learner.analyze_and_create_rules()

        logger.info("Manual tag change for %s: %s", transaction.id, tag)
        return transaction

    def fix_all(
        self,
        transactions: List[Transaction],
        abort: Optional[threading.Event] = None,
    ) -> FixReport:
        return self.reclassifier.fix_all_existing_tag_assignments(transactions, abort)

    def extract_and_fix(
        self,
        transactions: List[Transaction],
        abort: Optional[threading.Event] = None,
    ) -> FixReport:
        """Merge the built-in rules into the user mapping, then re-classify history"""
        self.registry.extract_and_merge_all_rules()
        return self.fix_all(transactions, abort)

    def __repr__(self) -> str:
        return f"TaggingService({self.registry!r})"
