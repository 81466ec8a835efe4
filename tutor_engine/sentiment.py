"""
Emotional State Inference Module

Turns the last few user messages into a frustration / confidence /
engagement vector, and flags conversation-level disengagement patterns
(shrinking answers, slower replies, minimal answers, falling
transcription confidence, frustration words). Keyword + pattern
matching only: deterministic, no I/O, same input always gives the
same output.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, List, Dict, Optional, Sequence, Tuple
from enum import Enum
import re

from .models import EmotionalState, Message, Sender, utc_now
from .signals import contains_any, is_short_message, word_count


EMOTION_WINDOW = 5
SHORT_MESSAGE_PENALTY = 0.2


class ApproachMode(Enum):
    """How the active agent should lean this turn."""
    EXTRA_SUPPORTIVE = "extra-supportive"
    CHALLENGING = "challenging"
    ENGAGING = "engaging"
    DEFAULT = "default"


class EmotionalTone(Enum):
    ENCOURAGING = "encouraging"
    NEUTRAL = "neutral"
    ENTHUSIASTIC = "enthusiastic"


CUE_PATTERNS: Dict[str, List[str]] = {
    "frustration": [
        r"\bdifficult\b", r"\bhard\b", r"\bconfus", r"\bdon'?t\s+understand\b",
        r"\bgive\s+up\b", r"\btoo\s+hard\b", r"\bcan'?t\s+do\s+(this|it)\b",
    ],
    "confidence": [
        r"\bthink\b", r"\bmaybe\b", r"\bcorrect\b", r"\bi\s+believe\b",
        r"\bprobably\b",
    ],
    "engagement": [
        r"\?", r"\bhow\b", r"\bwhy\b", r"\bwhat\b",
    ],
}

CONFIDENT_LENGTH = 50

# Disengagement detection
DISENGAGEMENT_WINDOW = 10
VERBOSITY_DROP = 0.7
LATENCY_RISE = 1.5
FAST_REPLY_SECONDS = 3.0
CONFIDENCE_DROP = 0.8
MINIMAL_ANSWER_WORDS = 2
DISENGAGEMENT_KEYWORDS = [
    "difficult", "hard", "confused", "don't understand", "can't",
    "frustrated", "stuck", "help", "wrong", "mistake", "error",
]

# Patterns that mean the learner is pulling back rather than struggling
WITHDRAWAL_PATTERNS = ("decreasing_verbosity", "increasing_latency", "repetitive_responses")


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


class EmotionalStateInferrer:
    """
    Pure inferrer over recent user messages.

    Each message contributes at most one hit per dimension; counters are
    divided by the number of user messages considered and clamped.
    """

    THRESHOLDS = {
        "frustrated": 0.6,
        "confident": 0.7,
        "disengaged": 0.3,
    }

    def __init__(self, window: int = EMOTION_WINDOW):
        self.window = window
        self._compiled: Dict[str, List[re.Pattern]] = {
            name: [re.compile(p, re.IGNORECASE) for p in patterns]
            for name, patterns in CUE_PATTERNS.items()
        }

    def _matches(self, dimension: str, text: str) -> bool:
        return any(p.search(text) for p in self._compiled[dimension])

    def infer(self, messages: Sequence[Message], now: Optional[datetime] = None) -> EmotionalState:
        recent = [m for m in list(messages)[-self.window:] if m.is_user]
        penalize_short = len(recent) > 1

        frustration = 0.0
        confidence = 0.0
        engagement = 0.0

        for message in recent:
            text = message.content
            if self._matches("frustration", text):
                frustration += 1
            if penalize_short and is_short_message(text):
                frustration += SHORT_MESSAGE_PENALTY
            if self._matches("confidence", text) or len(text) > CONFIDENT_LENGTH:
                confidence += 1
            if self._matches("engagement", text):
                engagement += 1

        total = max(len(recent), 1)
        return EmotionalState(
            frustration=clamp(frustration / total),
            confidence=clamp(confidence / total),
            engagement=clamp(engagement / total),
            last_updated=now or utc_now(),
        )

    def approach_mode(
        self,
        state: EmotionalState,
        patterns: Sequence["DisengagementPattern"] = (),
    ) -> ApproachMode:
        if state.frustration > self.THRESHOLDS["frustrated"]:
            return ApproachMode.EXTRA_SUPPORTIVE
        if state.confidence > self.THRESHOLDS["confident"]:
            return ApproachMode.CHALLENGING
        if state.engagement < self.THRESHOLDS["disengaged"]:
            return ApproachMode.ENGAGING
        if any(p.pattern in WITHDRAWAL_PATTERNS for p in patterns):
            return ApproachMode.ENGAGING
        return ApproachMode.DEFAULT

    def emotional_tone(
        self,
        state: EmotionalState,
        patterns: Sequence["DisengagementPattern"] = (),
    ) -> EmotionalTone:
        mode = self.approach_mode(state, patterns)
        if mode == ApproachMode.CHALLENGING:
            return EmotionalTone.ENTHUSIASTIC
        if mode in (ApproachMode.EXTRA_SUPPORTIVE, ApproachMode.ENGAGING):
            return EmotionalTone.ENCOURAGING
        return EmotionalTone.NEUTRAL


_default_inferrer = EmotionalStateInferrer()


def infer_emotional_state(messages: Sequence[Message], now: Optional[datetime] = None) -> EmotionalState:
    """Module-level shortcut over a shared (stateless) inferrer."""
    return _default_inferrer.infer(messages, now=now)


# --- disengagement patterns -----------------------------------------------

@dataclass(frozen=True)
class DisengagementPattern:
    pattern: str
    confidence: float
    description: str
    intervention: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pattern": self.pattern,
            "confidence": self.confidence,
            "description": self.description,
            "intervention": self.intervention,
        }


PATTERN_CATALOG: Dict[str, DisengagementPattern] = {
    "decreasing_verbosity": DisengagementPattern(
        "decreasing_verbosity", 0.8,
        "User responses are becoming shorter over time", "topic_change"),
    "increasing_latency": DisengagementPattern(
        "increasing_latency", 0.7,
        "User is taking longer to respond", "break_suggestion"),
    "repetitive_responses": DisengagementPattern(
        "repetitive_responses", 0.9,
        "User is giving minimal or repetitive answers", "topic_change"),
    "declining_confidence": DisengagementPattern(
        "declining_confidence", 0.75,
        "Speech recognition confidence is decreasing", "difficulty_adjust"),
    "frustration_indicators": DisengagementPattern(
        "frustration_indicators", 0.85,
        "User is expressing frustration or confusion", "encouragement"),
}


def _half_averages(values: Sequence[float]) -> Tuple[float, float]:
    """Mean of the first and second half; the odd element goes to the second."""
    mid = len(values) // 2
    first, second = values[:mid], values[mid:]
    return sum(first) / len(first), sum(second) / len(second)


def is_verbosity_decreasing(user_messages: Sequence[Message]) -> bool:
    if len(user_messages) < 3:
        return False
    first, second = _half_averages([word_count(m.content) for m in user_messages])
    return second < first * VERBOSITY_DROP


def reply_latencies(messages: Sequence[Message]) -> List[float]:
    """Seconds between each agent message and the user message right after it."""
    return [
        (cur.timestamp - prev.timestamp).total_seconds()
        for prev, cur in zip(messages, messages[1:])
        if cur.is_user and prev.sender == Sender.AGENT
    ]


def is_latency_increasing(messages: Sequence[Message]) -> bool:
    if len(messages) < 4:
        return False
    latencies = reply_latencies(messages)
    if len(latencies) < 2:
        return False
    first, second = _half_averages(latencies)
    # quick replies never count, however much slower than the earlier ones
    return second > FAST_REPLY_SECONDS and second > first * LATENCY_RISE


def has_repetitive_responses(user_messages: Sequence[Message]) -> bool:
    if len(user_messages) < 3:
        return False
    recent = user_messages[-5:]
    minimal = sum(1 for m in recent if word_count(m.content) <= MINIMAL_ANSWER_WORDS)
    return minimal >= min(3, len(recent) * 0.6)


def is_confidence_decreasing(user_messages: Sequence[Message]) -> bool:
    scores = [m.transcription_confidence for m in user_messages if m.transcription_confidence is not None]
    if len(scores) < 3:
        return False
    first, second = _half_averages(scores)
    return second < first * CONFIDENCE_DROP


def has_frustration_keywords(user_messages: Sequence[Message]) -> bool:
    return any(contains_any(m.content, DISENGAGEMENT_KEYWORDS) for m in user_messages)


def detect_disengagement_patterns(
    messages: Sequence[Message],
    window: int = DISENGAGEMENT_WINDOW,
) -> List[DisengagementPattern]:
    """
    Conversation-level disengagement check over the trailing window.

    `window` counts user messages; the agent messages between them are
    kept for reply latency. Patterns come back in a fixed order.
    """
    messages = list(messages)
    user_positions = [i for i, m in enumerate(messages) if m.is_user]
    if user_positions[window:]:
        start = user_positions[-window]
        if start > 0 and not messages[start - 1].is_user:
            start -= 1
        messages = messages[start:]
    user_messages = [m for m in messages if m.is_user]

    checks = [
        ("decreasing_verbosity", is_verbosity_decreasing(user_messages)),
        ("increasing_latency", is_latency_increasing(messages)),
        ("repetitive_responses", has_repetitive_responses(user_messages)),
        ("declining_confidence", is_confidence_decreasing(user_messages)),
        ("frustration_indicators", has_frustration_keywords(user_messages)),
    ]
    return [PATTERN_CATALOG[name] for name, hit in checks if hit]
