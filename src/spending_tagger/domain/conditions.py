"""
Declarative rule conditions.

Every classification check (keywords, regexes, exact field matches,
amount thresholds and exclusion sets) is expressed as a `Condition` and
evaluated by the single `Condition.matches` dispatcher, so detectors are
data rather than bespoke functions.
"""
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Dict, Iterable, Optional, Tuple

from spending_tagger.domain.enums import ConditionKind, Field
from spending_tagger.domain.models import Transaction

AT_LEAST = "at_least"
BELOW = "below"

INCOMING = "incoming"
OUTGOING = "outgoing"


@lru_cache(maxsize=512)
def _compile(pattern: str) -> re.Pattern:
    return re.compile(pattern, re.IGNORECASE)


def field_text(transaction: Transaction, field: Field) -> str:
    """Lowercased text of a transaction field; missing values read as ''"""
    return (getattr(transaction, field.value, "") or "").strip().lower()


@dataclass(frozen=True)
class Condition:
    """
    One tagged-variant condition.

    Semantics per kind:
        KEYWORD: any value is a substring of the field
        REGEX: any value (case-insensitive regex) is found in the field
        FIELD_MATCH: the field equals one of the values exactly
        AMOUNT_THRESHOLD: |amount| compared to `threshold` (minor units)
            using `operator` ("at_least" or "below")
        AMOUNT_DIRECTION: "incoming" (amount >= 0) or "outgoing" (amount < 0)
        EXCLUSION_SET: none of the values is a substring of the field

    Example:
        ```
        fee = Condition(ConditionKind.KEYWORD, ("fee", "commission"))
        fee.matches(transaction)
        ```
    """
    kind: ConditionKind
    values: Tuple[str, ...] = ()
    field: Field = Field.DESCRIPTION
    threshold: Optional[int] = None
    operator: str = AT_LEAST

    def __post_init__(self):
        # Non-regex needles are stored stripped and lowercased
        if self.kind is ConditionKind.REGEX:
            object.__setattr__(self, "values", tuple(self.values))
            for pattern in self.values:
                _compile(pattern)
        else:
            object.__setattr__(
                self, "values", tuple(v.strip().lower() for v in self.values)
            )

        if self.kind is ConditionKind.AMOUNT_THRESHOLD:
            if self.threshold is None:
                raise ValueError("AMOUNT_THRESHOLD condition needs a threshold")
            if self.operator not in (AT_LEAST, BELOW):
                raise ValueError(f"Unknown amount operator '{self.operator}'")

        if self.kind is ConditionKind.AMOUNT_DIRECTION:
            if len(self.values) != 1 or self.values[0] not in (INCOMING, OUTGOING):
                raise ValueError("AMOUNT_DIRECTION condition needs 'incoming' or 'outgoing'")

    def matches(self, transaction: Transaction) -> bool:
        """Evaluate this condition against a transaction"""
        kind = self.kind

        if kind is ConditionKind.AMOUNT_THRESHOLD:
            magnitude = abs(transaction.amount or 0)
            if self.operator == BELOW:
                return magnitude < self.threshold
            return magnitude >= self.threshold

        if kind is ConditionKind.AMOUNT_DIRECTION:
            amount = transaction.amount or 0
            if self.values[0] == INCOMING:
                return amount >= 0
            return amount < 0

        text = field_text(transaction, self.field)

        if kind is ConditionKind.KEYWORD:
            return any(value and value in text for value in self.values)

        if kind is ConditionKind.EXCLUSION_SET:
            return not any(value and value in text for value in self.values)

        if kind is ConditionKind.FIELD_MATCH:
            return text in self.values

        if kind is ConditionKind.REGEX:
            return any(_compile(pattern).search(text) for pattern in self.values)

        raise RuntimeError(f"Unhandled condition kind {kind}")

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "kind": self.kind.value,
            "values": list(self.values),
            "field": self.field.value,
        }
        if self.threshold is not None:
            data["threshold"] = self.threshold
            data["operator"] = self.operator
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Condition":
        return cls(
            kind=ConditionKind(data["kind"]),
            values=tuple(data.get("values", ())),
            field=Field(data.get("field", Field.DESCRIPTION.value)),
            threshold=data.get("threshold"),
            operator=data.get("operator", AT_LEAST),
        )

    def __repr__(self) -> str:
        return f"Condition({self.kind.value}, {self.field.value}, {len(self.values)} values)"


def keyword(values: Iterable[str], field: Field = Field.DESCRIPTION) -> Condition:
    return Condition(ConditionKind.KEYWORD, tuple(values), field)


def regex(patterns: Iterable[str], field: Field = Field.DESCRIPTION) -> Condition:
    return Condition(ConditionKind.REGEX, tuple(patterns), field)


def field_match(values: Iterable[str], field: Field) -> Condition:
    return Condition(ConditionKind.FIELD_MATCH, tuple(values), field)


def all_match(conditions: Iterable[Condition], transaction: Transaction) -> bool:
    """True when every condition matches; an empty list never matches"""
    conditions = list(conditions)
    return bool(conditions) and all(c.matches(transaction) for c in conditions)


def any_match(conditions: Iterable[Condition], transaction: Transaction) -> bool:
    return any(c.matches(transaction) for c in conditions)
