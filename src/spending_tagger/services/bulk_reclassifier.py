import logging
import threading
from typing import Iterable, Optional

from spending_tagger.categorization import Classifier, tags
from spending_tagger.domain.models import HistoryEntry, Transaction
from spending_tagger.services.models import FixReport
from spending_tagger.utils.timestamps import Clock, isoformat, utc_now

logger = logging.getLogger(__name__)


class BulkReclassifier:
    """
    Replays the classifier over historical transactions.

    - Pinned transactions (non-empty override history) are never touched.
    - A transaction is only changed when its tag changes; then its tag,
      confidence and reason are updated and a fix-history entry appended.
    - The whole batch is evaluated against one rule snapshot.

    Usage:
        ```
        reclassifier = BulkReclassifier(classifier)
        report = reclassifier.fix_all_existing_tag_assignments(transactions)
        print(report)
        ```
    """

    def __init__(self, classifier: Classifier, clock: Optional[Clock] = None):
        self.classifier = classifier
        self._clock = clock or utc_now

    def fix_all_existing_tag_assignments(
        self,
        transactions: Iterable[Transaction],
        abort: Optional[threading.Event] = None,
    ) -> FixReport:
        """
        Bring every unpinned transaction in line with the current rules.

        Transactions are updated in place.

        Args:
            transactions: Transactions to re-classify
            abort: Optional event; when set, processing stops before the
                next transaction and the report is marked aborted

        Returns:
            Aggregate report of processed, fixed and pinned transactions
            and the per-transition counts
        """
        report = FixReport()
        snapshot = self.classifier.registry.snapshot()

        for transaction in transactions:
            if abort is not None and abort.is_set():
                report.aborted = True
                logger.warning("Re-classification aborted after %d transactions", report.total_processed)
                break

            report.total_processed += 1

            if transaction.is_pinned:
                report.skipped_pinned += 1
                continue

            result = self.classifier.classify(transaction, snapshot)
            old_tag = transaction.tag or tags.UNTAGGED

            if result.tag == old_tag:
                report.unchanged += 1
                continue

            transaction.fix_history.append(HistoryEntry(
                timestamp=isoformat(self._clock()),
                old_tag=old_tag,
                new_tag=result.tag,
                reason=result.reason,
            ))
            transaction.tag = result.tag
            transaction.confidence = result.confidence
            transaction.classification_reason = result.reason
            report.record_fix(transaction, old_tag, result.tag)

            logger.info(
                "Fixed %s: %s → %s (%s)", transaction.id, old_tag, result.tag, result.reason
            )

        self.classifier.registry.flush()
        logger.info(
            "Re-classified %d transactions: %d fixed, %d pinned",
            report.total_processed, report.total_fixed, report.skipped_pinned,
        )
        return report

    def __repr__(self) -> str:
        return f"BulkReclassifier({self.classifier!r})"
