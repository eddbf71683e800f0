import logging
from typing import Any, Callable, Dict, List, Optional

from spending_tagger.categorization import tags
from spending_tagger.categorization.exclusion import ExclusionGuard
from spending_tagger.domain.conditions import (
    Condition,
    any_match,
    field_match,
    field_text,
    keyword,
)
from spending_tagger.domain.enums import Field
from spending_tagger.domain.models import Transaction

logger = logging.getLogger(__name__)

TagPredicate = Callable[[Transaction], bool]


class TagValidators:
    """
    Lookup table `tag -> predicate(transaction) -> bool`.

    Decides whether a tag that is already on a transaction (or proposed
    by a learned rule) is still consistent with the current rules.
    """

    def __init__(self, table: Dict[str, TagPredicate]):
        self._table = {tag.lower(): predicate for tag, predicate in table.items()}

    @classmethod
    def from_config(cls, rules_config: Dict[str, Any], guard: ExclusionGuard) -> "TagValidators":
        config = rules_config.get("validators", {}) if rules_config else {}
        table: Dict[str, TagPredicate] = {}

        for name, tag in (
            ("savings", tags.SAVINGS),
            ("transfers", tags.TRANSFERS),
            ("gift", tags.GIFT),
        ):
            if name in config:
                table[tag] = _any_of(_conditions(config[name]))

        if "income" in config:
            income_keywords = keyword(config["income"].get("keywords", []))
            table[tags.INCOME] = lambda txn: income_keywords.matches(txn) and txn.amount > 0

        table[tags.INVESTMENTS] = _investment_validator(config.get("investments", {}), guard)
        table[tags.OTHER] = lambda txn: True

        return cls(table)

    def has_validator(self, tag: Optional[str]) -> bool:
        return (tag or "").strip().lower() in self._table

    def validate(self, tag: Optional[str], transaction: Transaction) -> bool:
        """Run the tag's validator; a tag without one cannot be verified"""
        predicate = self._table.get((tag or "").strip().lower())
        if predicate is None:
            logger.debug("No validator for tag '%s'", tag)
            return False
        return predicate(transaction)

    @property
    def tags(self) -> List[str]:
        return sorted(self._table)

    def __repr__(self) -> str:
        return f"TagValidators({', '.join(self.tags)})"


def _conditions(config: Dict[str, Any]) -> List[Condition]:
    conditions = []
    if config.get("keywords"):
        conditions.append(keyword(config["keywords"]))
    if config.get("categories"):
        conditions.append(field_match(config["categories"], Field.CATEGORY))
    if config.get("subcategories"):
        conditions.append(field_match(config["subcategories"], Field.SUBCATEGORY))
    return conditions


def _any_of(conditions: List[Condition]) -> TagPredicate:
    return lambda txn: any_match(conditions, txn)


def _investment_validator(config: Dict[str, Any], guard: ExclusionGuard) -> TagPredicate:
    valid_categories = {c.lower() for c in config.get("categories", [])}
    valid_subcategories = {s.lower() for s in config.get("subcategories", [])}

    def validate(transaction: Transaction) -> bool:
        if not guard.is_investment(transaction):
            return False

        # An explicit category/subcategory must agree with the tag
        category = field_text(transaction, Field.CATEGORY)
        if category and category != "other" and category not in valid_categories:
            logger.info("Investment tag invalid: category '%s' does not fit", category)
            return False

        subcategory = field_text(transaction, Field.SUBCATEGORY)
        if subcategory and subcategory != "other" and subcategory not in valid_subcategories:
            logger.info("Investment tag invalid: subcategory '%s' does not fit", subcategory)
            return False

        return True

    return validate
