import pytest

from spending_tagger.domain.enums import PatternType
from spending_tagger.learning.extractors import DescriptionPatternExtractor


@pytest.fixture
def extractor(learning_config) -> DescriptionPatternExtractor:
    return DescriptionPatternExtractor.from_config(learning_config)


@pytest.mark.unit
class TestDescriptionPatternExtractor:

    def test_words_and_phrases(self, extractor: DescriptionPatternExtractor):
        # Act
        patterns = extractor.extract("Netflix subscription payment")

        # Assert
        by_type = {}
        for p in patterns:
            by_type.setdefault(p.type, []).append((p.pattern, p.confidence))

        assert by_type[PatternType.EXACT_WORD] == [
            ("netflix", 0.7), ("subscription", 0.7), ("payment", 0.7)
        ]
        assert by_type[PatternType.EXACT_PHRASE] == [
            ("netflix subscription", 0.8), ("subscription payment", 0.8)
        ]
        assert PatternType.SPECIAL_PATTERN not in by_type

    def test_short_words_are_skipped(self, extractor: DescriptionPatternExtractor):
        patterns = extractor.extract("AH to go")

        assert [p.pattern for p in patterns if p.type is PatternType.EXACT_WORD] == []
        assert [p.pattern for p in patterns if p.type is PatternType.EXACT_PHRASE] == ["ah to", "to go"]

    def test_special_patterns_store_matched_text(self, extractor: DescriptionPatternExtractor):
        patterns = extractor.extract("REVOLUT**7355* Amsterdam")

        special = [p for p in patterns if p.type is PatternType.SPECIAL_PATTERN]
        assert [(p.pattern, p.confidence) for p in special] == [("revolut**7355*", 0.95)]

    def test_duplicates_removed(self, extractor: DescriptionPatternExtractor):
        patterns = extractor.extract("bunq bunq")

        keys = [p.key for p in patterns]
        assert len(keys) == len(set(keys))
        assert ("exact_word", "bunq") in keys
        assert ("special_pattern", "bunq") in keys

    def test_empty_description(self, extractor: DescriptionPatternExtractor):
        assert extractor.extract("") == []
        assert extractor.extract(None) == []

    def test_invalid_special_pattern_is_skipped(self):
        extractor = DescriptionPatternExtractor(special_patterns=["(", "kraken"])

        patterns = extractor.extract("Kraken deposit")

        assert [p.pattern for p in patterns if p.type is PatternType.SPECIAL_PATTERN] == ["kraken"]
