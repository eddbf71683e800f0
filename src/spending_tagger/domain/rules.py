from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Tuple

from spending_tagger.domain.conditions import Condition, all_match, field_match, keyword
from spending_tagger.domain.enums import Field, PatternType, RuleSource, RuleType
from spending_tagger.domain.models import Transaction


@dataclass(frozen=True)
class RuleResult:
    """What a rule assigns when it fires"""
    tag: Optional[str] = None
    category: Optional[str] = None
    subcategory: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"tag": self.tag, "category": self.category, "subcategory": self.subcategory}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RuleResult":
        return cls(
            tag=data.get("tag"),
            category=data.get("category"),
            subcategory=data.get("subcategory"),
        )


@dataclass
class Rule:
    """
    A declarative classification rule.

    A rule fires when ALL of its conditions match. Detectors that need
    "any of" semantics are modelled as several rules producing the same
    result.
    """
    id: str
    tier: int
    type: RuleType
    conditions: List[Condition]
    result: RuleResult
    confidence: float = 1.0
    source: RuleSource = RuleSource.SYSTEM
    reason: str = ""
    usage_count: int = 0
    last_used: Optional[str] = None

    def __post_init__(self):
        if not 0 <= self.tier <= 5:
            raise ValueError(f"Rule '{self.id}' has invalid tier {self.tier}")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"Rule '{self.id}' has confidence outside [0, 1]")

    def matches(self, transaction: Transaction) -> bool:
        return all_match(self.conditions, transaction)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "tier": self.tier,
            "type": self.type.value,
            "conditions": [c.to_dict() for c in self.conditions],
            "result": self.result.to_dict(),
            "confidence": self.confidence,
            "source": self.source.value,
            "reason": self.reason,
            "usageCount": self.usage_count,
            "lastUsed": self.last_used,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Rule":
        return cls(
            id=str(data["id"]),
            tier=int(data["tier"]),
            type=RuleType(data["type"]),
            conditions=[Condition.from_dict(c) for c in data.get("conditions", [])],
            result=RuleResult.from_dict(data.get("result", {})),
            confidence=float(data.get("confidence", 1.0)),
            source=RuleSource(data.get("source", RuleSource.USER.value)),
            reason=data.get("reason", ""),
            usage_count=int(data.get("usageCount", 0)),
            last_used=data.get("lastUsed"),
        )

    def __repr__(self) -> str:
        return f"Rule({self.id}, tier={self.tier}, {self.type.value}, source={self.source.value})"


@dataclass(frozen=True)
class Pattern:
    """A pattern extracted from a manually tagged transaction"""
    type: PatternType
    pattern: str
    confidence: float

    @property
    def key(self) -> Tuple[str, str]:
        return (self.type.value, self.pattern)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type.value, "pattern": self.pattern, "confidence": self.confidence}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Pattern":
        return cls(
            type=PatternType(data["type"]),
            pattern=str(data["pattern"]),
            confidence=float(data["confidence"]),
        )


@dataclass(frozen=True)
class ManualAssignment:
    """
    Immutable record of a user setting a tag by hand.

    Never deleted; the whole history is the learner's training signal.
    """
    id: str
    timestamp: str
    transaction_id: str
    description: str
    category: str
    subcategory: str
    counterparty: str
    amount: int
    assigned_tag: str
    patterns: Tuple[Pattern, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "transactionId": self.transaction_id,
            "description": self.description,
            "category": self.category,
            "subcategory": self.subcategory,
            "counterparty": self.counterparty,
            "amount": self.amount,
            "assignedTag": self.assigned_tag,
            "patterns": [p.to_dict() for p in self.patterns],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ManualAssignment":
        return cls(
            id=str(data["id"]),
            timestamp=str(data.get("timestamp", "")),
            transaction_id=str(data.get("transactionId", "")),
            description=str(data.get("description") or ""),
            category=str(data.get("category") or ""),
            subcategory=str(data.get("subcategory") or ""),
            counterparty=str(data.get("counterparty") or ""),
            amount=int(data.get("amount") or 0),
            assigned_tag=str(data["assignedTag"]),
            patterns=tuple(Pattern.from_dict(p) for p in data.get("patterns", [])),
        )


# Learned condition type -> how it is evaluated against a transaction
_LEARNED_FIELDS = {
    PatternType.EXACT_WORD: Field.DESCRIPTION,
    PatternType.EXACT_PHRASE: Field.DESCRIPTION,
    PatternType.SPECIAL_PATTERN: Field.DESCRIPTION,
    PatternType.COUNTERPARTY: Field.COUNTERPARTY,
}


@dataclass(frozen=True)
class LearnedCondition:
    type: PatternType
    pattern: str
    confidence: float
    frequency: float

    def to_condition(self) -> Condition:
        """Translate into a declarative condition for the generic matcher"""
        if self.type is PatternType.CATEGORY:
            return field_match([self.pattern], Field.CATEGORY)
        if self.type is PatternType.SUBCATEGORY:
            return field_match([self.pattern], Field.SUBCATEGORY)
        return keyword([self.pattern], _LEARNED_FIELDS[self.type])

    def matches(self, transaction: Transaction) -> bool:
        return self.to_condition().matches(transaction)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "pattern": self.pattern,
            "confidence": self.confidence,
            "frequency": self.frequency,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LearnedCondition":
        return cls(
            type=PatternType(data["type"]),
            pattern=str(data["pattern"]),
            confidence=float(data["confidence"]),
            frequency=float(data["frequency"]),
        )


@dataclass
class LearnedRule:
    """
    Rule synthesized from at least two manual assignments sharing a tag.

    One active rule per tag. `exemplars` holds the word tokens of each
    assignment in the group it was built from.
    """
    id: str
    tag: str
    conditions: List[LearnedCondition]
    confidence: float
    assignments_count: int
    created_at: str
    last_used: Optional[str] = None
    usage_count: int = 0
    exemplars: List[Tuple[str, ...]] = field(default_factory=list)

    def copy(self) -> "LearnedRule":
        return replace(self, conditions=list(self.conditions), exemplars=list(self.exemplars))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "tag": self.tag,
            "conditions": [c.to_dict() for c in self.conditions],
            "confidence": self.confidence,
            "assignmentsCount": self.assignments_count,
            "createdAt": self.created_at,
            "lastUsed": self.last_used,
            "usageCount": self.usage_count,
            "exemplars": [list(tokens) for tokens in self.exemplars],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LearnedRule":
        return cls(
            id=str(data["id"]),
            tag=str(data["tag"]),
            conditions=[LearnedCondition.from_dict(c) for c in data.get("conditions", [])],
            confidence=float(data.get("confidence", 0.0)),
            assignments_count=int(data.get("assignmentsCount", 0)),
            created_at=str(data.get("createdAt", "")),
            last_used=data.get("lastUsed"),
            usage_count=int(data.get("usageCount", 0)),
            exemplars=[tuple(tokens) for tokens in data.get("exemplars", [])],
        )

    def __repr__(self) -> str:
        return f"LearnedRule({self.tag}, {len(self.conditions)} conditions, used {self.usage_count}x)"
