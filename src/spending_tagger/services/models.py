"""
Service layer models - DTOs for service operations.

These models represent the results of service operations, not domain entities.
"""
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple

from spending_tagger.domain.models import Transaction

Transition = Tuple[str, str]


@dataclass
class FixReport:
    """
    Result of re-classifying a transaction collection.

    Every applied change is tallied by its (old tag, new tag) transition
    so the user can audit exactly what moved where.
    """
    total_processed: int = 0
    total_fixed: int = 0
    skipped_pinned: int = 0
    unchanged: int = 0
    transitions: Counter = field(default_factory=Counter)
    fixed: List[Transaction] = field(default_factory=list)
    aborted: bool = False

    def record_fix(self, transaction: Transaction, old_tag: str, new_tag: str) -> None:
        self.total_fixed += 1
        self.transitions[(old_tag, new_tag)] += 1
        self.fixed.append(transaction)

    @property
    def transition_counts(self) -> Dict[str, int]:
        """Transition counts keyed as 'Investments → Savings', most frequent first"""
        return {
            f"{old} → {new}": count
            for (old, new), count in self.transitions.most_common()
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalProcessed": self.total_processed,
            "totalFixed": self.total_fixed,
            "skippedPinned": self.skipped_pinned,
            "unchanged": self.unchanged,
            "transitions": self.transition_counts,
            "aborted": self.aborted,
        }

    def __str__(self) -> str:
        "Human-readable summary"
        lines = [
            "Re-classification summary:",
            f" Processed: {self.total_processed}",
            f" Fixed: {self.total_fixed}",
            f" Unchanged: {self.unchanged}",
            f" Pinned (skipped): {self.skipped_pinned}",
        ]
        for label, count in self.transition_counts.items():
            lines.append(f"  • {label}: {count}")
        if self.aborted:
            lines.append(" Aborted before completion")
        return "\n".join(lines)

    def __post_init__(self):
        """Validate counts match lists"""
        if self.total_fixed != len(self.fixed):
            raise ValueError(
                f"Count mismatch: total_fixed={self.total_fixed} "
                f"but len(fixed)={len(self.fixed)}"
            )
