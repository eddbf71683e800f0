import pytest

from spending_tagger.domain.conditions import (
    AT_LEAST,
    BELOW,
    INCOMING,
    OUTGOING,
    Condition,
    all_match,
    any_match,
    field_match,
    keyword,
    regex,
)
from spending_tagger.domain.enums import ConditionKind, Field
from spending_tagger.domain.models import Transaction


@pytest.fixture
def degiro_purchase() -> Transaction:
    return Transaction(
        id="t1",
        description="Stock purchase AAPL via Degiro",
        amount=-15000,
        counterparty="DEGIRO",
        category="Investment",
        subcategory="Stock purchase",
    )


@pytest.mark.unit
class TestKeywordAndRegexConditions:
    """Text conditions are case-insensitive"""

    def test_keyword_matches_substring(self, degiro_purchase: Transaction):
        assert keyword(["DEGIRO"]).matches(degiro_purchase)

    def test_keyword_on_other_field(self, degiro_purchase: Transaction):
        assert keyword(["degiro"], Field.COUNTERPARTY).matches(degiro_purchase)
        assert not keyword(["bunq"], Field.COUNTERPARTY).matches(degiro_purchase)

    def test_regex_uses_word_boundaries(self):
        # Arrange
        condition = regex([r"\bah\b"])

        # Act / Assert
        assert condition.matches(Transaction(id="1", description="AH to go 5123"))
        assert not condition.matches(Transaction(id="2", description="Bahnhof kiosk"))

    def test_invalid_regex_is_rejected_on_construction(self):
        import re
        with pytest.raises(re.error):
            regex(["(unclosed"])

    def test_exclusion_set_matches_when_no_value_present(self, degiro_purchase: Transaction):
        condition = Condition(ConditionKind.EXCLUSION_SET, ("fee", "tax"))
        assert condition.matches(degiro_purchase)
        assert not condition.matches(Transaction(id="2", description="Dividend tax"))


@pytest.mark.unit
class TestFieldMatch:

    def test_exact_case_insensitive(self, degiro_purchase: Transaction):
        assert field_match(["stock purchase"], Field.SUBCATEGORY).matches(degiro_purchase)

    def test_substring_is_not_enough(self, degiro_purchase: Transaction):
        assert not field_match(["stock"], Field.SUBCATEGORY).matches(degiro_purchase)

    def test_missing_field_reads_as_empty(self):
        txn = Transaction(id="1", description="x", subcategory=None)
        assert not field_match(["savings"], Field.SUBCATEGORY).matches(txn)


@pytest.mark.unit
class TestAmountConditions:

    def test_threshold_uses_magnitude(self, degiro_purchase: Transaction):
        at_least = Condition(ConditionKind.AMOUNT_THRESHOLD, threshold=1000, operator=AT_LEAST)
        below = Condition(ConditionKind.AMOUNT_THRESHOLD, threshold=1000, operator=BELOW)

        assert at_least.matches(degiro_purchase)
        assert not below.matches(degiro_purchase)

    def test_threshold_boundary_is_not_below(self):
        below = Condition(ConditionKind.AMOUNT_THRESHOLD, threshold=1000, operator=BELOW)
        assert not below.matches(Transaction(id="1", amount=-1000))
        assert below.matches(Transaction(id="2", amount=-999))

    def test_direction(self, degiro_purchase: Transaction):
        incoming = Condition(ConditionKind.AMOUNT_DIRECTION, (INCOMING,))
        outgoing = Condition(ConditionKind.AMOUNT_DIRECTION, (OUTGOING,))

        assert outgoing.matches(degiro_purchase)
        assert not incoming.matches(degiro_purchase)
        assert incoming.matches(Transaction(id="2", amount=0))

    def test_threshold_requires_value(self):
        with pytest.raises(ValueError):
            Condition(ConditionKind.AMOUNT_THRESHOLD)

    def test_unknown_operator_rejected(self):
        with pytest.raises(ValueError):
            Condition(ConditionKind.AMOUNT_THRESHOLD, threshold=1, operator="above")

    def test_direction_requires_known_value(self):
        with pytest.raises(ValueError):
            Condition(ConditionKind.AMOUNT_DIRECTION, ("sideways",))


@pytest.mark.unit
class TestCombinators:

    def test_all_match_of_nothing_never_matches(self, degiro_purchase: Transaction):
        assert not all_match([], degiro_purchase)

    def test_all_and_any(self, degiro_purchase: Transaction):
        conditions = [keyword(["degiro"]), keyword(["bunq"])]
        assert any_match(conditions, degiro_purchase)
        assert not all_match(conditions, degiro_purchase)

    def test_serialization_preserves_semantics(self, degiro_purchase: Transaction):
        # Arrange
        original = Condition(ConditionKind.AMOUNT_THRESHOLD, threshold=2000, operator=BELOW)

        # Act
        restored = Condition.from_dict(original.to_dict())

        # Assert
        assert restored == original
        assert restored.matches(degiro_purchase) == original.matches(degiro_purchase)
