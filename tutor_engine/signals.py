"""
Lexical Signal Extraction Module

Stateless helpers that turn raw message text into primitive signals:
word/sentence counts, keyword hits, lexical diversity and
transcription-confidence flags. No I/O, no model calls.
"""

from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Dict, Any
import re

from .models import Message


LOW_CONFIDENCE_THRESHOLD = 0.6
VERY_LOW_CONFIDENCE_THRESHOLD = 0.4
SHORT_MESSAGE_CHARS = 10

_WORD_SPLIT = re.compile(r"\s+")
_SENTENCE_SPLIT = re.compile(r"[.!?]+")
_TOKEN = re.compile(r"[a-z']+")
_INTERROGATIVE = re.compile(r"\?|\b(how|why|what)\b", re.IGNORECASE)


def words(text: str) -> List[str]:
    """Whitespace tokens, empty strings removed."""
    return [w for w in _WORD_SPLIT.split(text.strip()) if w]


def word_count(text: str) -> int:
    return len(words(text))


def sentences(text: str) -> List[str]:
    return [s.strip() for s in _SENTENCE_SPLIT.split(text) if s.strip()]


def sentence_count(text: str) -> int:
    return len(sentences(text))


def keyword_hits(text: str, keywords: Iterable[str]) -> int:
    """Number of distinct keywords appearing in the text (case-insensitive substring)."""
    lowered = text.lower()
    return sum(1 for kw in keywords if kw in lowered)


def contains_any(text: str, keywords: Iterable[str]) -> bool:
    return keyword_hits(text, keywords) > 0


def type_token_ratio(text: str) -> float:
    """Unique tokens over total tokens, 0 for empty text."""
    tokens = _TOKEN.findall(text.lower())
    if not tokens:
        return 0.0
    return len(set(tokens)) / len(tokens)


def long_word_ratio(text: str, min_length: int = 7) -> float:
    tokens = _TOKEN.findall(text.lower())
    if not tokens:
        return 0.0
    return sum(1 for t in tokens if len(t) >= min_length) / len(tokens)


def has_interrogative(text: str) -> bool:
    return bool(_INTERROGATIVE.search(text))


def is_short_message(text: str) -> bool:
    return len(text) < SHORT_MESSAGE_CHARS


def low_confidence_flags(messages: Sequence[Message], threshold: float = LOW_CONFIDENCE_THRESHOLD) -> List[bool]:
    """One flag per message; messages without a confidence are never flagged."""
    return [
        m.transcription_confidence is not None and m.transcription_confidence < threshold
        for m in messages
    ]


def average_confidence(messages: Sequence[Message]) -> Optional[float]:
    values = [m.transcription_confidence for m in messages if m.transcription_confidence is not None]
    if not values:
        return None
    return sum(values) / len(values)


def average_length(messages: Sequence[Message]) -> float:
    if not messages:
        return 0.0
    return sum(len(m.content) for m in messages) / len(messages)


def recent_user_messages(messages: Sequence[Message], window: int) -> List[Message]:
    """User-authored subset of the trailing `window` messages."""
    return [m for m in list(messages)[-window:] if m.is_user]


@dataclass
class TextSignals:
    """Bundle of signals for one piece of text."""
    word_count: int
    sentence_count: int
    type_token_ratio: float
    long_word_ratio: float
    has_interrogative: bool
    is_short: bool

    @property
    def words_per_sentence(self) -> float:
        return self.word_count / max(self.sentence_count, 1)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "word_count": self.word_count,
            "sentence_count": self.sentence_count,
            "type_token_ratio": round(self.type_token_ratio, 3),
            "long_word_ratio": round(self.long_word_ratio, 3),
            "has_interrogative": self.has_interrogative,
            "is_short": self.is_short,
        }


def extract_signals(text: str) -> TextSignals:
    return TextSignals(
        word_count=word_count(text),
        sentence_count=sentence_count(text),
        type_token_ratio=type_token_ratio(text),
        long_word_ratio=long_word_ratio(text),
        has_interrogative=has_interrogative(text),
        is_short=is_short_message(text),
    )
