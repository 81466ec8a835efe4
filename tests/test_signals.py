"""
Tests for Lexical Signal Extraction

Word/sentence counts, keyword hits, diversity and confidence flags.
"""

import pytest
import sys
from pathlib import Path

# Add parent to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from tutor_engine.models import Message
from tutor_engine.signals import (
    word_count, sentence_count, keyword_hits, contains_any,
    type_token_ratio, long_word_ratio, has_interrogative, is_short_message,
    low_confidence_flags, average_confidence, average_length,
    recent_user_messages, extract_signals,
)


class TestCounts:
    """Test cases for word and sentence counting."""

    def test_word_count_ignores_extra_whitespace(self):
        """Runs of whitespace should not create empty words."""
        assert word_count("  I   like  tea  ") == 3

    def test_empty_text_has_no_words(self):
        assert word_count("") == 0
        assert sentence_count("") == 0

    def test_sentence_count_splits_on_terminators(self):
        """Periods, question and exclamation marks all end sentences."""
        assert sentence_count("Hello there. How are you? Great!") == 3

    def test_trailing_text_counts_as_sentence(self):
        assert sentence_count("One. Two") == 2


class TestKeywords:
    """Test cases for keyword matching."""

    def test_keyword_hits_counts_distinct_keywords(self):
        """Each keyword counts once no matter how often it appears."""
        assert keyword_hits("grammar grammar tense", ["grammar", "tense", "verb"]) == 2

    def test_keyword_hits_case_insensitive(self):
        assert keyword_hits("GRAMMAR please", ["grammar"]) == 1

    def test_contains_any(self):
        assert contains_any("how do you pronounce this", ["pronounce", "accent"])
        assert not contains_any("hello", ["pronounce", "accent"])


class TestLexicalDiversity:
    """Test cases for type/token and long-word ratios."""

    def test_type_token_ratio_all_unique(self):
        assert type_token_ratio("the cat sat") == 1.0

    def test_type_token_ratio_with_repeats(self):
        assert type_token_ratio("go go go go") == 0.25

    def test_type_token_ratio_empty(self):
        assert type_token_ratio("...") == 0.0

    def test_long_word_ratio(self):
        """Only words of seven letters or more count as long."""
        assert long_word_ratio("wonderful day") == 0.5


class TestMessageShape:
    """Test cases for interrogatives and short messages."""

    def test_question_mark_is_interrogative(self):
        assert has_interrogative("really?")

    def test_wh_word_is_interrogative(self):
        assert has_interrogative("Why is that the case")

    def test_plain_statement_is_not_interrogative(self):
        assert not has_interrogative("I went home")

    def test_short_message_threshold(self):
        """Under ten characters is short."""
        assert is_short_message("ok")
        assert not is_short_message("this is long enough")


class TestConfidenceFlags:
    """Test cases for transcription confidence helpers."""

    def test_flags_only_low_confidence(self):
        messages = [
            Message.from_user("a", 0.9),
            Message.from_user("b", 0.3),
            Message.from_user("c"),
        ]
        assert low_confidence_flags(messages) == [False, True, False]

    def test_average_confidence_skips_missing(self):
        messages = [Message.from_user("a", 0.8), Message.from_user("b", 0.4), Message.from_user("c")]
        assert average_confidence(messages) == pytest.approx(0.6)

    def test_average_confidence_none_without_values(self):
        assert average_confidence([Message.from_user("a")]) is None

    def test_average_length(self):
        messages = [Message.from_user("ab"), Message.from_user("abcd")]
        assert average_length(messages) == 3.0
        assert average_length([]) == 0.0


class TestRecentUserMessages:
    """Test cases for windowed user-message selection."""

    def test_window_applies_before_filtering(self):
        """The window covers all messages; agent messages inside it are dropped."""
        history = [
            Message.from_user("first"),
            Message.from_agent("reply", "friendly-tutor"),
            Message.from_user("second"),
        ]
        recent = recent_user_messages(history, 2)
        assert [m.content for m in recent] == ["second"]


class TestExtractSignals:
    """Test cases for the signal bundle."""

    def test_bundle_fields(self):
        signals = extract_signals("What a beautiful morning. Shall we walk?")
        assert signals.word_count == 7
        assert signals.sentence_count == 2
        assert signals.has_interrogative
        assert not signals.is_short
        assert signals.words_per_sentence == 3.5

    def test_to_dict_keys(self):
        data = extract_signals("hi").to_dict()
        assert data["is_short"] is True
        assert set(data) == {
            "word_count", "sentence_count", "type_token_ratio",
            "long_word_ratio", "has_interrogative", "is_short",
        }
