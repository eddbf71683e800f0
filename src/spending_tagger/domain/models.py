from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional

from spending_tagger.utils.amounts import to_minor_units, format_minor_units


@dataclass
class HistoryEntry:
    """One audited tag change, either a manual override or a bulk fix"""
    timestamp: str
    old_tag: Optional[str]
    new_tag: str
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "oldTag": self.old_tag,
            "newTag": self.new_tag,
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HistoryEntry":
        return cls(
            timestamp=str(data.get("timestamp", "")),
            old_tag=data.get("oldTag", data.get("old_tag")),
            new_tag=str(data.get("newTag", data.get("new_tag", ""))),
            reason=str(data.get("reason", "")),
        )


@dataclass
class Transaction:
    """Core domain model representing a single bank transaction"""
    id: str
    description: str = ""
    amount: int = 0  # signed, minor units
    date: Optional[date] = None
    counterparty: str = ""
    category: str = ""
    subcategory: str = ""
    tag: Optional[str] = None
    confidence: Optional[float] = None
    classification_reason: Optional[str] = None
    override_history: List[HistoryEntry] = field(default_factory=list)
    fix_history: List[HistoryEntry] = field(default_factory=list)

    @property
    def is_pinned(self) -> bool:
        """A manually overridden tag must never be touched by bulk fixes"""
        return bool(self.override_history)

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Transaction":
        """
        Build a transaction from a parsed import record.

        Accepts both camelCase keys (as exported by the bank tooling) and
        snake_case keys (as written by `to_record`).

        Args:
            record: Mapping with at least an `id`

        Raises:
            ValueError: If the id is missing, or the amount or date is malformed
        """
        if record.get("id") in (None, ""):
            raise ValueError(f"Transaction record has no id: {record!r}")

        raw_date = record.get("date")
        txn_date = None
        if isinstance(raw_date, date):
            txn_date = raw_date
        elif raw_date:
            try:
                txn_date = date.fromisoformat(str(raw_date)[:10])
            except ValueError as e:
                raise ValueError(f"Invalid date '{raw_date}' for transaction {record['id']}") from e

        confidence = record.get("confidence", record.get("classificationConfidence"))

        return cls(
            id=str(record["id"]),
            description=str(record.get("description") or ""),
            amount=to_minor_units(record.get("amount")),
            date=txn_date,
            counterparty=str(record.get("counterparty") or ""),
            category=str(record.get("category") or ""),
            subcategory=str(record.get("subcategory") or ""),
            tag=record.get("tag") or None,
            confidence=float(confidence) if confidence is not None else None,
            classification_reason=record.get(
                "classification_reason", record.get("classificationReason")
            ),
            override_history=[
                HistoryEntry.from_dict(entry)
                for entry in record.get("overrideHistory", record.get("override_history")) or []
            ],
            fix_history=[
                HistoryEntry.from_dict(entry)
                for entry in record.get("fixHistory", record.get("fix_history")) or []
            ],
        )

    def to_record(self) -> Dict[str, Any]:
        """JSON-serializable record, inverse of `from_record`"""
        return {
            "id": self.id,
            "date": self.date.isoformat() if self.date else None,
            "amount": self.amount,
            "description": self.description,
            "counterparty": self.counterparty,
            "category": self.category,
            "subcategory": self.subcategory,
            "tag": self.tag,
            "confidence": self.confidence,
            "classificationReason": self.classification_reason,
            "overrideHistory": [entry.to_dict() for entry in self.override_history],
            "fixHistory": [entry.to_dict() for entry in self.fix_history],
        }

    def __repr__(self):
        return (
            f"Transaction({self.id}, {(self.description or '')[:30]}, "
            f"{format_minor_units(self.amount)}, tag={self.tag})"
        )


@dataclass(frozen=True)
class ClassificationResult:
    """Outcome of running one transaction through the classification tiers"""
    tag: str
    category: str
    subcategory: str
    confidence: float
    reason: str
    tier: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tag": self.tag,
            "category": self.category,
            "subcategory": self.subcategory,
            "confidence": self.confidence,
            "reason": self.reason,
            "tier": self.tier,
        }
