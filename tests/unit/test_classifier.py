import pytest

from spending_tagger.categorization import Classifier
from spending_tagger.domain.conditions import regex
from spending_tagger.domain.enums import PatternType, RuleType
from spending_tagger.domain.models import Transaction
from spending_tagger.domain.rules import LearnedCondition, LearnedRule, Rule, RuleResult
from spending_tagger.registry.rule_registry import RuleRegistry
from spending_tagger.storage.memory_store import InMemoryKeyValueStore


def _learned(tag: str, word: str, confidence: float = 0.7) -> LearnedRule:
    return LearnedRule(
        id=f"rule_{tag}",
        tag=tag,
        conditions=[LearnedCondition(PatternType.EXACT_WORD, word, confidence, 1.0)],
        confidence=confidence,
        assignments_count=2,
        created_at="2025-08-01T12:00:00.000+00:00",
    )


@pytest.mark.unit
class TestTierOrdering:

    def test_special_rule_bypasses_everything(self, registry: RuleRegistry, classifier: Classifier):
        # Arrange
        registry.add_rule(Rule(
            id="revolut-card",
            tier=0,
            type=RuleType.KEYWORD_MAPPING,
            conditions=[regex([r"revolut\*\*\d+\*"])],
            result=RuleResult(tag="Transfers", category="Transfers"),
            confidence=0.99,
            reason="Revolut card top-up",
        ))
        registry.add_mapping("Other", "Savings", "Savings")
        txn = Transaction(id="1", description="Revolut**7355* top up", category="Other", subcategory="Savings")

        # Act
        result = classifier.classify(txn)

        # Assert
        assert result.tag == "Transfers"
        assert result.tier == 0
        assert result.category == "Transfers"
        assert result.subcategory == "Savings"
        assert result.confidence == 0.99

    def test_user_mapping_tier(self, registry: RuleRegistry, classifier: Classifier):
        registry.add_mapping("Free time", "Sport", "Health")

        result = classifier.classify(Transaction(id="1", description="Gym", category="free time", subcategory="SPORT"))

        assert result.tag == "Health"
        assert result.tier == 2
        assert result.confidence == 0.9
        assert result.reason == "User-defined mapping: free time/SPORT → Health"

    def test_mapping_precedence_over_investment_keywords(self, registry: RuleRegistry, classifier: Classifier):
        # Arrange
        registry.add_mapping("other", "credit card", "Other")
        txn = Transaction(
            id="1",
            description="degiro investment purchase",
            amount=-5000,
            category="other",
            subcategory="credit card",
        )

        # Act
        result = classifier.classify(txn)

        # Assert
        assert result.tag == "Other"
        assert result.tier == 2

    def test_learned_rule_beats_mapping(self, registry: RuleRegistry, classifier: Classifier):
        registry.add_mapping("Media", "Streaming", "Entertainment")
        registry.replace_learned_rule(_learned("Subscriptions", "netflix"))

        result = classifier.classify(
            Transaction(id="1", description="Netflix monthly", category="Media", subcategory="Streaming")
        )

        assert result.tag == "Subscriptions"
        assert result.tier == 1


@pytest.mark.unit
class TestLearnedRuleTier:

    def test_learned_rule_must_pass_validator(self, registry: RuleRegistry, classifier: Classifier):
        # Arrange: a learned rule proposing Investments for fee transactions
        registry.replace_learned_rule(_learned("Investments", "degiro"))
        txn = Transaction(id="1", description="Degiro custody fee", amount=-2500)

        # Act
        result = classifier.classify(txn)

        # Assert
        assert result.tag == "Other"
        assert result.tier == 5

    def test_next_best_rule_used_when_best_is_invalid(self, registry: RuleRegistry, classifier: Classifier):
        registry.replace_learned_rule(_learned("Investments", "degiro", confidence=0.9))
        registry.replace_learned_rule(_learned("Broker", "degiro", confidence=0.6))

        result = classifier.classify(Transaction(id="1", description="Degiro custody fee", amount=-2500))

        assert result.tag == "Broker"
        assert result.tier == 1

    def test_ties_broken_by_rule_confidence(self, registry: RuleRegistry, classifier: Classifier):
        registry.replace_learned_rule(_learned("Streaming", "netflix", confidence=0.6))
        registry.replace_learned_rule(_learned("Subscriptions", "netflix", confidence=0.8))

        result = classifier.classify(Transaction(id="1", description="Netflix"))

        assert result.tag == "Subscriptions"

    def test_firing_updates_usage(self, registry: RuleRegistry, classifier: Classifier):
        registry.replace_learned_rule(_learned("Subscriptions", "netflix"))

        classifier.classify(Transaction(id="1", description="Netflix"))

        rule = registry.learned_rules[0]
        assert rule.usage_count == 1
        assert rule.last_used is not None


@pytest.mark.unit
class TestExistingTagTier:

    def test_valid_existing_tag_preserved(self, classifier: Classifier):
        txn = Transaction(id="1", description="Goal savings", amount=-5000, tag="savings")

        result = classifier.classify(txn)

        assert result.tag == "Savings"
        assert result.tier == 3
        assert result.confidence == 0.8

    def test_invalid_existing_tag_discarded(self, classifier: Classifier):
        # Arrange
        txn = Transaction(
            id="1",
            description="R MILIOPOULOS BUNQ",
            category="Other",
            subcategory="Savings",
            amount=-50000,
            tag="Investments",
        )

        # Act
        result = classifier.classify(txn)

        # Assert
        assert result.tag == "Savings"
        assert result.tier == 5

    def test_tag_without_validator_is_discarded(self, classifier: Classifier):
        result = classifier.classify(Transaction(id="1", description="Netflix", amount=-1299, tag="Subscriptions"))

        assert result.tag == "Other"

    @pytest.mark.parametrize("tag", [None, "", "Other", "untagged"])
    def test_default_tags_skip_validation(self, classifier: Classifier, tag):
        result = classifier.classify(Transaction(id="1", description="Bunq savings", amount=-5000, tag=tag))

        assert result.tag == "Savings"
        assert result.tier == 5


@pytest.mark.unit
class TestCategoryAndKeywordTiers:

    def test_missing_category_is_inferred(self, classifier: Classifier):
        # Arrange
        txn = Transaction(id="1", description="ALBERT HEIJN 1234", amount=-2312)

        # Act
        result = classifier.classify(txn)

        # Assert
        assert result.tag == "Other"
        assert result.category == "Groceries & Household"
        assert result.subcategory == "Supermarket"
        assert result.confidence == 0.5

    def test_confidence_is_minimum_of_tag_and_category(self, classifier: Classifier):
        # Savings (0.9) with an inferred Transport category (0.8)
        result = classifier.classify(Transaction(id="1", description="Bunq savings for train tickets", amount=-5000))

        assert result.tag == "Savings"
        assert result.category == "Transport & Travel"
        assert result.confidence == 0.8

    def test_no_category_rule_defaults_to_other(self, classifier: Classifier):
        result = classifier.classify(Transaction(id="1", description="XYZ 123", amount=-100))

        assert (result.tag, result.category, result.subcategory) == ("Other", "Other", "other")
        assert result.confidence == 0.5

    def test_present_category_is_kept(self, classifier: Classifier):
        result = classifier.classify(
            Transaction(id="1", description="Albert Heijn", category="Food", subcategory="Shop", amount=-100)
        )

        assert (result.category, result.subcategory) == ("Food", "Shop")

    def test_fee_transaction_is_other(self, classifier: Classifier):
        result = classifier.classify(
            Transaction(id="1", description="Monthly fee from Degiro", amount=-500, category="expense")
        )

        assert result.tag == "Other"

    def test_positive_investment(self, classifier: Classifier):
        # Arrange
        txn = Transaction(
            id="1",
            description="Stock purchase AAPL via Degiro",
            category="Investment",
            subcategory="Stock purchase",
            amount=-15000,
        )

        # Act
        result = classifier.classify(txn)

        # Assert
        assert result.tag == "Investments"
        assert result.confidence == 0.7

    def test_income(self, classifier: Classifier):
        result = classifier.classify(Transaction(id="1", description="Salary August", category="Work", amount=350000))

        assert result.tag == "Income"


@pytest.mark.unit
class TestClassifierContract:

    def test_deterministic(self, registry: RuleRegistry, classifier: Classifier, problem_transactions):
        registry.replace_learned_rule(_learned("Subscriptions", "netflix"))
        snapshot = registry.snapshot()

        for txn in problem_transactions:
            assert classifier.classify(txn, snapshot) == classifier.classify(txn, snapshot)

    def test_does_not_modify_transaction(self, classifier: Classifier):
        txn = Transaction(id="1", description="Bunq savings", amount=-5000, tag="Investments")

        classifier.classify(txn)

        assert txn.tag == "Investments"
        assert txn.fix_history == []

    def test_missing_fields_flow_through(self, classifier: Classifier):
        txn = Transaction(id="1", description=None, category=None, subcategory=None, counterparty=None)

        result = classifier.classify(txn)

        assert result.tag == "Other"

    def test_empty_rule_set_falls_back_to_other(self):
        registry = RuleRegistry(store=InMemoryKeyValueStore(), system_config={}, default_mapping={})
        classifier = Classifier(registry)

        result = classifier.classify(Transaction(id="1", description="Bunq savings", amount=-5000, tag="Savings"))

        assert result.tag == "Other"
        assert result.tier == 5

    def test_rule_chain_info(self, classifier: Classifier):
        info = classifier.get_rule_chain_info().splitlines()

        assert len(info) == 6
        assert info[0] == "0. SpecialRuleTier(tier=0)"
        assert info[-1] == "5. KeywordTagTier(tier=5)"
        assert repr(classifier) == "Classifier(6 tiers in chain)"
