"""Tag names the engine itself produces or reasons about."""

SAVINGS = "Savings"
TRANSFERS = "Transfers"
INVESTMENTS = "Investments"
INCOME = "Income"
GIFT = "Gift"
OTHER = "Other"
UNTAGGED = "Untagged"

# Existing tags that carry no information and are never validated
DEFAULT_TAGS = frozenset({"", "untagged", "other"})

# Evaluation order for tags that share keywords; Investments is the most
# restrictive and always goes last
AMBIGUOUS_PRECEDENCE = (SAVINGS, TRANSFERS, INVESTMENTS)

DEFAULT_CATEGORY = "Other"
DEFAULT_SUBCATEGORY = "other"


def is_default_tag(tag) -> bool:
    return (tag or "").strip().lower() in DEFAULT_TAGS


def display_tag(tag: str) -> str:
    """'savings' -> 'Savings'; keeps the rest of the string as given"""
    tag = (tag or "").strip()
    return tag[:1].upper() + tag[1:]
