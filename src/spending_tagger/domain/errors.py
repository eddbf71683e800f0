class TaggerError(Exception):
    """Base class for all errors raised by the tagging engine."""
    pass

class MappingValidationError(TaggerError, ValueError):
    """Raised when a category mapping entry is missing a category, subcategory or tag."""
    pass

class MappingFormatError(TaggerError, ValueError):
    """Raised when an imported mapping payload is not a {category: {subcategory: tag}} object."""
    pass

class RuleNotFoundError(TaggerError, KeyError):
    """Raised when a mapping entry or rule cannot be found."""
    pass

class LearnedDataFormatError(TaggerError, ValueError):
    """Raised when an imported learned-rules payload is malformed."""
    pass
