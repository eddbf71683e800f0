"""
Tag classification for bank transactions.

Provides tiered, explainable tagging using a chain of responsibility,
backed by a rule registry, an exclusion guard for ambiguous tags and a
per-tag validator table.

Quick Start:
    >>> from spending_tagger.categorization import Classifier
    >>> from spending_tagger.registry.rule_registry import RuleRegistry
    >>>
    >>> classifier = Classifier(RuleRegistry())
    >>> result = classifier.classify(transaction)
    >>> print(f"Tagged as: {result.tag} ({result.reason})")
"""
from spending_tagger.categorization.categorizer import Classifier
from spending_tagger.categorization.base import ClassificationTier, ClassificationContext
from spending_tagger.categorization.exclusion import ExclusionGuard
from spending_tagger.categorization.validators import TagValidators
from spending_tagger.categorization.tiers import (
    SpecialRuleTier,
    LearnedRuleTier,
    UserMappingTier,
    ExistingTagTier,
    CategoryAssignmentTier,
    KeywordTagTier,
)
from spending_tagger.categorization import tags

__all__ = [
    "Classifier",
    "ClassificationTier",
    "ClassificationContext",
    "ExclusionGuard",
    "TagValidators",
    "SpecialRuleTier",
    "LearnedRuleTier",
    "UserMappingTier",
    "ExistingTagTier",
    "CategoryAssignmentTier",
    "KeywordTagTier",
    "tags",
]
