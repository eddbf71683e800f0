"""
Fail-safe checks for the ambiguous tags (Savings, Transfers, Investments).

Savings and transfers share keywords with investments, and a savings
transfer mistaken for a stock purchase is the most common systematic
misclassification. The guard therefore treats "Investments" as a
candidate that must survive an ordered veto chain before a positive check
is even attempted, while Savings and Transfers use a plain union test.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, NamedTuple, Optional, Sequence

from spending_tagger.categorization import tags
from spending_tagger.domain.conditions import (
    BELOW,
    INCOMING,
    Condition,
    field_match,
    keyword,
    regex,
)
from spending_tagger.domain.enums import ConditionKind, Field, RuleType
from spending_tagger.domain.models import Transaction
from spending_tagger.domain.rules import Rule, RuleResult

logger = logging.getLogger(__name__)

DEFAULT_MINIMUM_INVESTMENT_AMOUNT = 10  # major currency units


class Veto(NamedTuple):
    """A named predicate; when it matches, the candidate tag is rejected"""
    name: str
    condition: Condition


@dataclass(frozen=True)
class TagCandidate:
    tag: str
    confidence: float
    reason: str


@dataclass(frozen=True)
class TagDetector:
    """Union of rules for one tag: any matching rule qualifies the transaction"""
    tag: str
    confidence: float
    reason: str
    rules: Sequence[Rule]

    def matches(self, transaction: Transaction) -> bool:
        return any(rule.matches(transaction) for rule in self.rules)

    def candidate(self) -> TagCandidate:
        return TagCandidate(self.tag, self.confidence, self.reason)


class ExclusionGuard:
    """
    Stateless predicate library vetoing false-positive candidate tags.

    Usage:
        ```
        guard = ExclusionGuard.from_config(ConfigLoader.load_rules_config())
        guard.investment_veto(txn)   # 'fee keyword' or None
        guard.candidate_tag(txn)     # Savings -> Transfers -> Investments -> Income
        ```
    """

    def __init__(
        self,
        savings: TagDetector,
        transfers: TagDetector,
        investments: TagDetector,
        investment_vetoes: Sequence[Veto],
        income: Optional[TagDetector] = None,
    ):
        self.savings = savings
        self.transfers = transfers
        self.investments = investments
        self.investment_vetoes = tuple(investment_vetoes)
        self.income = income

    @classmethod
    def from_config(cls, rules_config: Dict[str, Any]) -> "ExclusionGuard":
        """
        Build the guard from the `tag_rules` section of the system rules.

        Missing sections produce detectors that never match, so a broken
        config degrades to "Other" rather than to a wrong tag.
        """
        tag_rules = rules_config.get("tag_rules", {}) if rules_config else {}

        savings = _union_detector("savings", tag_rules.get("savings", {}), tags.SAVINGS)
        transfers = _union_detector("transfers", tag_rules.get("transfers", {}), tags.TRANSFERS)

        investment_config = tag_rules.get("investments", {})
        investments = _investment_detector(investment_config)
        vetoes = _investment_vetoes(investment_config.get("exclusions", {}))

        income = None
        if "income" in tag_rules:
            income = _income_detector(tag_rules["income"])

        return cls(savings, transfers, investments, vetoes, income)

    def investment_veto(self, transaction: Transaction) -> Optional[str]:
        """Name of the first veto that rejects the investment candidate, if any"""
        for veto in self.investment_vetoes:
            if veto.condition.matches(transaction):
                return veto.name
        return None

    def is_investment(self, transaction: Transaction) -> bool:
        """Veto chain first (short-circuits), then the positive check"""
        veto = self.investment_veto(transaction)
        if veto is not None:
            logger.debug("Investment candidate vetoed (%s): %r", veto, transaction)
            return False
        return self.investments.matches(transaction)

    def is_savings(self, transaction: Transaction) -> bool:
        return self.savings.matches(transaction)

    def is_transfer(self, transaction: Transaction) -> bool:
        return self.transfers.matches(transaction)

    def is_income(self, transaction: Transaction) -> bool:
        return self.income is not None and self.income.matches(transaction)

    def candidate_tag(self, transaction: Transaction) -> Optional[TagCandidate]:
        """
        First qualifying tag in precedence order:
        Savings -> Transfers -> Investments -> Income.
        """
        checks = {
            tags.SAVINGS: (self.savings, self.is_savings),
            tags.TRANSFERS: (self.transfers, self.is_transfer),
            tags.INVESTMENTS: (self.investments, self.is_investment),
        }
        for tag in tags.AMBIGUOUS_PRECEDENCE:
            detector, check = checks[tag]
            if check(transaction):
                return detector.candidate()
        if self.is_income(transaction):
            return self.income.candidate()
        return None

    def __repr__(self) -> str:
        return f"ExclusionGuard({len(self.investment_vetoes)} investment vetoes)"


def _tag_rule(rule_id: str, tag: str, conditions: List[Condition], confidence: float, reason: str) -> Rule:
    return Rule(
        id=rule_id,
        tier=5,
        type=RuleType.KEYWORD_MAPPING,
        conditions=conditions,
        result=RuleResult(tag=tag),
        confidence=confidence,
        reason=reason,
    )


def _union_detector(name: str, config: Dict[str, Any], default_tag: str) -> TagDetector:
    tag = config.get("tag", default_tag)
    confidence = float(config.get("confidence", 0.5))
    reason = config.get("reason", f"{tag} indicators detected")

    conditions: List[Condition] = []
    if config.get("keywords"):
        conditions.append(keyword(config["keywords"]))
    if config.get("account_patterns"):
        conditions.append(regex(config["account_patterns"]))
        conditions.append(regex(config["account_patterns"], Field.COUNTERPARTY))
    if config.get("subcategories"):
        conditions.append(keyword(config["subcategories"], Field.SUBCATEGORY))
    if config.get("exact_categories"):
        conditions.append(field_match(config["exact_categories"], Field.CATEGORY))
    if config.get("exact_subcategories"):
        conditions.append(field_match(config["exact_subcategories"], Field.SUBCATEGORY))

    rules = [
        _tag_rule(f"{name}_{i}", tag, [condition], confidence, reason)
        for i, condition in enumerate(conditions)
    ]
    return TagDetector(tag, confidence, reason, tuple(rules))


def _investment_detector(config: Dict[str, Any]) -> TagDetector:
    tag = config.get("tag", tags.INVESTMENTS)
    confidence = float(config.get("confidence", 0.7))
    reason = config.get("reason", "Investment indicators detected")

    rules: List[Rule] = []
    if config.get("keywords"):
        rules.append(_tag_rule(
            "investments_keyword", tag, [keyword(config["keywords"])], confidence, reason
        ))
    if config.get("account_patterns") and config.get("strict_keywords"):
        rules.append(_tag_rule(
            "investments_account_purchase",
            tag,
            [regex(config["account_patterns"]), keyword(config["strict_keywords"])],
            confidence,
            reason,
        ))
    if config.get("purchase_subcategories"):
        rules.append(_tag_rule(
            "investments_purchase_subcategory",
            tag,
            [field_match(config["purchase_subcategories"], Field.SUBCATEGORY)],
            confidence,
            reason,
        ))
    return TagDetector(tag, confidence, reason, tuple(rules))


def _investment_vetoes(exclusions: Dict[str, Any]) -> List[Veto]:
    minimum = exclusions.get("minimum_amount", DEFAULT_MINIMUM_INVESTMENT_AMOUNT)

    # Order is significant: the first match short-circuits
    vetoes = [
        Veto("incoming amount", Condition(ConditionKind.AMOUNT_DIRECTION, (INCOMING,))),
        Veto(
            "below minimum amount",
            Condition(ConditionKind.AMOUNT_THRESHOLD, threshold=int(round(minimum * 100)), operator=BELOW),
        ),
    ]
    for name, key in (
        ("fee keyword", "fee_keywords"),
        ("withdrawal keyword", "withdrawal_keywords"),
        ("tax keyword", "tax_keywords"),
        ("savings keyword", "savings_keywords"),
        ("savings provider", "savings_providers"),
    ):
        if exclusions.get(key):
            vetoes.append(Veto(name, keyword(exclusions[key])))
    return vetoes


def _income_detector(config: Dict[str, Any]) -> TagDetector:
    tag = config.get("tag", tags.INCOME)
    confidence = float(config.get("confidence", 0.8))
    reason = config.get("reason", "Income indicators detected")

    conditions = [keyword(config.get("keywords", []))]
    if config.get("require_positive_amount", True):
        conditions.append(Condition(ConditionKind.AMOUNT_DIRECTION, (INCOMING,)))
        conditions.append(Condition(ConditionKind.AMOUNT_THRESHOLD, threshold=1))

    rule = _tag_rule("income_keyword", tag, conditions, confidence, reason)
    return TagDetector(tag, confidence, reason, (rule,))
