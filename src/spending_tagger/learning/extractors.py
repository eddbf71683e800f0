import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

from spending_tagger.domain.enums import PatternType
from spending_tagger.domain.rules import Pattern
from spending_tagger.learning.matching import DEFAULT_WORD_MIN_LENGTH

logger = logging.getLogger(__name__)

DEFAULT_SPECIAL_PATTERNS = (
    r"revolut\*\*\d+\*",
    "bunq",
    "degiro",
    "trading212",
    "etoro",
    "coinbase",
    "binance",
    "kraken",
)


class PatternExtractor(ABC):
    """
    Strategy turning a transaction description into learnable patterns.

    Swapping the extractor changes what the learner picks up without
    touching how assignments are grouped into rules.
    """

    @abstractmethod
    def extract(self, description: str) -> List[Pattern]:
        """
        Extract patterns from a description.

        Args:
            description: Raw transaction description

        Returns:
            Patterns in extraction order, without duplicates
        """
        pass

    def __repr__(self):
        return f"{self.__class__.__name__}()"


class DescriptionPatternExtractor(PatternExtractor):
    """
    Words, adjacent word pairs and known provider identifiers.

    Example:
        ```
        extractor = DescriptionPatternExtractor()
        extractor.extract("Netflix subscription payment")
        # exact_word netflix / subscription / payment (0.7)
        # exact_phrase "netflix subscription", "subscription payment" (0.8)
        ```
    """

    def __init__(
        self,
        word_min_length: int = DEFAULT_WORD_MIN_LENGTH,
        phrase_min_length: int = 5,
        word_confidence: float = 0.7,
        phrase_confidence: float = 0.8,
        special_confidence: float = 0.95,
        special_patterns: Sequence[str] = DEFAULT_SPECIAL_PATTERNS,
    ):
        self.word_min_length = word_min_length
        self.phrase_min_length = phrase_min_length
        self.word_confidence = word_confidence
        self.phrase_confidence = phrase_confidence
        self.special_confidence = special_confidence

        self._special_patterns: List[re.Pattern] = []
        for pattern in special_patterns:
            try:
                self._special_patterns.append(re.compile(pattern, re.IGNORECASE))
            except re.error as e:
                logger.warning("Skipping invalid special pattern '%s': %s", pattern, e)

    @classmethod
    def from_config(cls, config: Optional[Dict[str, Any]]) -> "DescriptionPatternExtractor":
        config = config or {}
        return cls(
            word_min_length=int(config.get("word_min_length", DEFAULT_WORD_MIN_LENGTH)),
            phrase_min_length=int(config.get("phrase_min_length", 5)),
            word_confidence=float(config.get("word_confidence", 0.7)),
            phrase_confidence=float(config.get("phrase_confidence", 0.8)),
            special_confidence=float(config.get("special_confidence", 0.95)),
            special_patterns=config.get("special_patterns", DEFAULT_SPECIAL_PATTERNS),
        )

    def extract(self, description: str) -> List[Pattern]:
        description = description or ""
        words = description.lower().split()
        patterns: List[Pattern] = []

        for word in words:
            if len(word) >= self.word_min_length:
                patterns.append(Pattern(PatternType.EXACT_WORD, word, self.word_confidence))

        for first, second in zip(words, words[1:]):
            phrase = f"{first} {second}"
            if len(phrase) >= self.phrase_min_length:
                patterns.append(Pattern(PatternType.EXACT_PHRASE, phrase, self.phrase_confidence))

        # Stored as the matched text so it can be re-matched as a keyword
        for regex in self._special_patterns:
            match = regex.search(description)
            if match:
                patterns.append(Pattern(
                    PatternType.SPECIAL_PATTERN, match.group(0).lower(), self.special_confidence
                ))

        return _unique(patterns)

    def __repr__(self):
        return f"DescriptionPatternExtractor({len(self._special_patterns)} special patterns)"


def _unique(patterns: List[Pattern]) -> List[Pattern]:
    seen = set()
    unique = []
    for pattern in patterns:
        if pattern.key not in seen:
            seen.add(pattern.key)
            unique.append(pattern)
    return unique
