import json
import pytest
from datetime import datetime, timedelta, timezone
from typing import Any, Dict

from spending_tagger.categorization import Classifier, ExclusionGuard, TagValidators
from spending_tagger.config.settings import PACKAGE_CONFIG_DIR
from spending_tagger.domain.models import Transaction
from spending_tagger.learning.learner import PatternLearner
from spending_tagger.registry.rule_registry import RuleRegistry
from spending_tagger.storage.memory_store import InMemoryKeyValueStore


def _packaged(name: str) -> Dict[str, Any]:
    with open(PACKAGE_CONFIG_DIR / name) as f:
        return json.load(f)


class FakeClock:
    """Deterministic clock advancing one second per call"""

    def __init__(self, start: datetime = datetime(2025, 8, 1, 12, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + timedelta(seconds=1)
        return current


@pytest.fixture
def rules_config() -> Dict[str, Any]:
    """Packaged system rules"""
    return _packaged("rules.json")

@pytest.fixture
def learning_config() -> Dict[str, Any]:
    """Packaged learning thresholds"""
    return _packaged("learning.json")

@pytest.fixture
def default_mapping() -> Dict[str, Any]:
    return _packaged("tag_mapping.json")

@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()

@pytest.fixture
def store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()

@pytest.fixture
def registry(store, rules_config, default_mapping) -> RuleRegistry:
    """Registry over an in-memory store and the packaged rules"""
    return RuleRegistry(store=store, system_config=rules_config, default_mapping=default_mapping)

@pytest.fixture
def guard(rules_config) -> ExclusionGuard:
    return ExclusionGuard.from_config(rules_config)

@pytest.fixture
def validators(rules_config, guard) -> TagValidators:
    return TagValidators.from_config(rules_config, guard)

@pytest.fixture
def classifier(registry, clock) -> Classifier:
    return Classifier(registry, clock=clock)

@pytest.fixture
def learner(registry, learning_config, clock) -> PatternLearner:
    return PatternLearner(registry, config=learning_config, clock=clock)

@pytest.fixture
def problem_transactions():
    """Historical transactions with tags assigned by older, looser rules"""
    records = [
        {"id": "1", "description": "R MILIOPOULOS BUNQ", "category": "Other", "subcategory": "Savings",
         "tag": "Investments", "amount": "-50000", "counterparty": "NL28BUNQ2125534274", "date": "2025-08-06"},
        {"id": "2", "description": "Monthly fee from Degiro", "category": "Expense", "subcategory": "Fees",
         "tag": "Investments", "amount": "-500", "counterparty": "DEGIRO", "date": "2025-08-01"},
        {"id": "3", "description": "Withdrawal from investment account", "category": "Investment",
         "subcategory": "Withdrawal", "tag": "Investments", "amount": "-10000", "counterparty": "DEGIRO",
         "date": "2025-07-30"},
        {"id": "4", "description": "Stock purchase AAPL via Degiro", "category": "Investment",
         "subcategory": "Stock purchase", "tag": "Other", "amount": "-15000", "counterparty": "DEGIRO",
         "date": "2025-07-25"},
        {"id": "5", "description": "Emergency fund deposit", "category": "Savings", "subcategory": "Emergency fund",
         "tag": "Investments", "amount": "-3000", "counterparty": "BUNQ", "date": "2025-07-20"},
        {"id": "6", "description": "Transfer between accounts", "category": "Transfer",
         "subcategory": "Account transfer", "tag": "Investments", "amount": "-2000", "counterparty": "ING",
         "date": "2025-07-15"},
        {"id": "7", "description": "Small trading fee", "category": "Expense", "subcategory": "Fees",
         "tag": "Investments", "amount": "-250", "counterparty": "DEGIRO", "date": "2025-07-10"},
        {"id": "8", "description": "Dividend tax payment", "category": "Expense", "subcategory": "Tax",
         "tag": "Investments", "amount": "-1000", "counterparty": "TAX_AUTHORITY", "date": "2025-07-05"},
        {"id": "9", "description": "ETF purchase VTI", "category": "Investment", "subcategory": "ETF purchase",
         "tag": "Other", "amount": "-10000", "counterparty": "DEGIRO", "date": "2025-07-01"},
        {"id": "10", "description": "Bunq savings transfer", "category": "Other", "subcategory": "Savings",
         "tag": "Investments", "amount": "-5000", "counterparty": "NL28BUNQ2125534274", "date": "2025-06-30"},
    ]
    return [Transaction.from_record(record) for record in records]

@pytest.fixture
def expected_fixed_tags() -> Dict[str, str]:
    return {
        "1": "Savings",
        "2": "Other",
        "3": "Other",
        "4": "Investments",
        "5": "Savings",
        "6": "Transfers",
        "7": "Other",
        "8": "Other",
        "9": "Investments",
        "10": "Savings",
    }
