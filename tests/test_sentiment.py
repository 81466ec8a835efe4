"""
Tests for Emotional State Inference

Tests cue matching, windowing, the short-message penalty, approach modes
and conversation-level disengagement patterns.
"""

import pytest
from datetime import datetime, timedelta, timezone
import sys
from pathlib import Path

# Add parent to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from tutor_engine.models import EmotionalState, Message, Sender
from tutor_engine.sentiment import (
    EmotionalStateInferrer, ApproachMode, EmotionalTone, detect_disengagement_patterns,
    infer_emotional_state, reply_latencies,
)
from conftest import user_messages


class TestEmotionalStateInferrer:
    """Test cases for EmotionalStateInferrer.infer."""

    def test_no_messages_gives_zero_scores(self):
        state = infer_emotional_state([])
        assert state.frustration == 0.0
        assert state.confidence == 0.0
        assert state.engagement == 0.0

    def test_frustration_cues_saturate(self, frustrated_messages):
        """Three frustrated messages out of three gives full frustration."""
        state = infer_emotional_state(frustrated_messages)
        assert state.frustration == 1.0

    def test_one_hit_per_message_per_dimension(self):
        """A message full of cues still counts once."""
        state = infer_emotional_state(user_messages("hard hard difficult, I give up"))
        assert state.frustration == 1.0

    def test_confidence_from_long_message(self):
        """Messages over fifty characters read as confident."""
        text = "Yesterday I walked along the river with my brother and his dog"
        state = infer_emotional_state(user_messages(text))
        assert state.confidence == 1.0

    def test_engagement_from_questions(self):
        state = infer_emotional_state(user_messages("How does that work?", "I went home today"))
        assert state.engagement == 0.5

    def test_short_message_penalty_needs_history(self):
        """A single short message is not penalized; several are."""
        assert infer_emotional_state(user_messages("ok")).frustration == 0.0
        assert infer_emotional_state(user_messages("ok", "no")).frustration == pytest.approx(0.2)

    def test_agent_messages_ignored(self):
        history = [
            Message.from_agent("This is hard, I know!", "friendly-tutor"),
            Message.from_user("I had a lovely weekend at the beach"),
        ]
        assert infer_emotional_state(history).frustration == 0.0

    def test_window_limits_history(self):
        """Only the last five messages are considered."""
        history = user_messages("this is too hard") + user_messages(*["I went to the park"] * 5)
        assert infer_emotional_state(history).frustration == 0.0

    def test_scores_stay_in_unit_interval(self):
        history = user_messages("ok", "no", "hard?", "why", "confused")
        state = infer_emotional_state(history)
        for value in (state.frustration, state.confidence, state.engagement):
            assert 0.0 <= value <= 1.0

    def test_timestamp_passthrough(self):
        now = datetime(2026, 1, 1, tzinfo=timezone.utc)
        assert infer_emotional_state([], now=now).last_updated == now

    def test_deterministic(self, frustrated_messages):
        inferrer = EmotionalStateInferrer()
        now = datetime(2026, 1, 1, tzinfo=timezone.utc)
        assert inferrer.infer(frustrated_messages, now) == inferrer.infer(frustrated_messages, now)


class TestApproachMode:
    """Test cases for mapping emotional state to approach and tone."""

    def setup_method(self):
        self.inferrer = EmotionalStateInferrer()

    def test_frustration_wins(self):
        state = EmotionalState(frustration=0.7, confidence=0.9, engagement=0.1)
        assert self.inferrer.approach_mode(state) == ApproachMode.EXTRA_SUPPORTIVE
        assert self.inferrer.emotional_tone(state) == EmotionalTone.ENCOURAGING

    def test_confident_learner_is_challenged(self):
        state = EmotionalState(frustration=0.0, confidence=0.8, engagement=0.5)
        assert self.inferrer.approach_mode(state) == ApproachMode.CHALLENGING
        assert self.inferrer.emotional_tone(state) == EmotionalTone.ENTHUSIASTIC

    def test_disengaged_learner(self):
        state = EmotionalState(frustration=0.0, confidence=0.5, engagement=0.1)
        assert self.inferrer.approach_mode(state) == ApproachMode.ENGAGING

    def test_default_state(self):
        state = EmotionalState()
        assert self.inferrer.approach_mode(state) == ApproachMode.DEFAULT
        assert self.inferrer.emotional_tone(state) == EmotionalTone.NEUTRAL

    def test_thresholds_are_strict(self):
        """Exactly at the threshold does not trigger."""
        state = EmotionalState(frustration=0.6, confidence=0.7, engagement=0.3)
        assert self.inferrer.approach_mode(state) == ApproachMode.DEFAULT


T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
STEADY = "I would like a coffee please"


def _conversation(user_turns):
    """Alternate agent/user messages; user_turns is [(seconds_to_reply, text)]."""
    messages = []
    clock = T0
    for i, (delay, text) in enumerate(user_turns):
        messages.append(Message(id=f"a{i}", sender=Sender.AGENT, content="Go on.", timestamp=clock))
        clock += timedelta(seconds=delay)
        messages.append(Message(id=f"u{i}", sender=Sender.USER, content=text, timestamp=clock))
        clock += timedelta(seconds=1)
    return messages


def _names(messages, **kwargs):
    return [p.pattern for p in detect_disengagement_patterns(messages, **kwargs)]


class TestDisengagementPatterns:
    """Test cases for detect_disengagement_patterns."""

    def test_steady_conversation_has_no_patterns(self):
        assert _names(user_messages(STEADY, STEADY, STEADY, STEADY)) == []
        assert _names([]) == []

    def test_decreasing_verbosity(self):
        messages = user_messages(
            "I went to the market with my sister yesterday",
            "We bought some apples and bread there",
            "ok fine",
            "sure",
        )
        assert _names(messages) == ["decreasing_verbosity"]

    def test_increasing_latency(self):
        messages = _conversation([(1, STEADY), (1, STEADY), (10, STEADY), (20, STEADY)])
        assert reply_latencies(messages) == [1.0, 1.0, 10.0, 20.0]
        assert _names(messages) == ["increasing_latency"]

    def test_fast_replies_never_count_as_latency(self):
        messages = _conversation([(0.1, STEADY), (0.1, STEADY), (0.5, STEADY), (0.5, STEADY)])
        assert _names(messages) == []

    def test_repetitive_minimal_answers(self):
        assert _names(user_messages("yes", "no", "ok")) == ["repetitive_responses"]

    def test_declining_transcription_confidence(self):
        messages = [
            Message.from_user(STEADY, 0.9),
            Message.from_user(STEADY, 0.9),
            Message.from_user(STEADY, 0.5),
            Message.from_user(STEADY, 0.4),
        ]
        assert _names(messages) == ["declining_confidence"]

    def test_frustration_keywords(self):
        patterns = detect_disengagement_patterns(user_messages("This is so difficult for me today"))
        assert [p.pattern for p in patterns] == ["frustration_indicators"]
        assert patterns[0].to_dict() == {
            "pattern": "frustration_indicators",
            "confidence": 0.85,
            "description": "User is expressing frustration or confusion",
            "intervention": "encouragement",
        }

    def test_short_history_only_checks_keywords(self):
        assert _names(user_messages("yes", "no")) == []

    def test_window_counts_user_messages(self):
        messages = user_messages("help me", "I am stuck", *[STEADY] * 10)
        assert _names(messages) == []
        assert _names(messages, window=20) == ["frustration_indicators"]

    def test_patterns_keep_fixed_order(self):
        messages = user_messages(
            "I went to the market with my sister yesterday",
            "We bought some apples and bread there",
            "too hard",
            "no",
            "ok",
        )
        assert _names(messages) == ["decreasing_verbosity", "repetitive_responses", "frustration_indicators"]


class TestApproachWithPatterns:
    """Test cases for disengagement patterns feeding the approach mode."""

    def setup_method(self):
        self.inferrer = EmotionalStateInferrer()
        self.repetitive = detect_disengagement_patterns(user_messages("yes", "no", "ok"))

    def test_withdrawal_pattern_switches_to_engaging(self):
        state = EmotionalState(frustration=0.1, confidence=0.3, engagement=0.6)
        assert self.inferrer.approach_mode(state) == ApproachMode.DEFAULT
        assert self.inferrer.approach_mode(state, self.repetitive) == ApproachMode.ENGAGING
        assert self.inferrer.emotional_tone(state, self.repetitive) == EmotionalTone.ENCOURAGING

    def test_frustration_still_wins(self):
        state = EmotionalState(frustration=0.9, confidence=0.0, engagement=0.6)
        assert self.inferrer.approach_mode(state, self.repetitive) == ApproachMode.EXTRA_SUPPORTIVE

    def test_keyword_pattern_alone_keeps_mode(self):
        state = EmotionalState(frustration=0.1, confidence=0.3, engagement=0.6)
        keywords = detect_disengagement_patterns(user_messages("I made a mistake"))
        assert self.inferrer.approach_mode(state, keywords) == ApproachMode.DEFAULT
