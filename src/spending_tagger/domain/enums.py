from enum import Enum

class RuleType(Enum):
    """What a rule maps from"""
    CATEGORY_MAPPING = "category_mapping"
    KEYWORD_MAPPING = "keyword_mapping"
    CATEGORY_KEYWORD_MAPPING = "category_keyword_mapping"
    CATEGORY_ASSIGNMENT = "category_assignment"


class RuleSource(Enum):
    """Who owns a rule"""
    SYSTEM = "system"
    USER = "user"
    LEARNED = "learned"


class ConditionKind(Enum):
    """Variants of a declarative rule condition"""
    KEYWORD = "keyword"
    REGEX = "regex"
    FIELD_MATCH = "field_match"
    AMOUNT_THRESHOLD = "amount_threshold"
    AMOUNT_DIRECTION = "amount_direction"
    EXCLUSION_SET = "exclusion_set"


class Field(Enum):
    """Transaction text fields a condition can look at"""
    DESCRIPTION = "description"
    CATEGORY = "category"
    SUBCATEGORY = "subcategory"
    COUNTERPARTY = "counterparty"


class PatternType(Enum):
    """Kinds of patterns the learner extracts"""
    EXACT_WORD = "exact_word"
    EXACT_PHRASE = "exact_phrase"
    SPECIAL_PATTERN = "special_pattern"
    CATEGORY = "category"
    SUBCATEGORY = "subcategory"
    COUNTERPARTY = "counterparty"
