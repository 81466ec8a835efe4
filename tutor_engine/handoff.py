"""
Agent Recommendation & Handoff Module

Two decisions:
1. recommend_agent - one-time pick at session start from preference,
   goals, level and (optionally) recent conversation content.
2. recommend_agent_handoff - per-turn check of four detectors in fixed
   priority order; the first one over its threshold wins, or None.
"""

from dataclasses import dataclass
from typing import List, Dict, Optional, Sequence, Any

from .agents import (
    DEFAULT_CATALOG,
    AgentCatalog,
    CONVERSATION_AGENT,
    GENERALIST_AGENT,
    GRAMMAR_SPECIALIST,
    PRONUNCIATION_SPECIALIST,
)
from .models import Message, PROFICIENCY_LEVELS, UserProfile
from .sentiment import EmotionalStateInferrer
from .signals import (
    LOW_CONFIDENCE_THRESHOLD,
    VERY_LOW_CONFIDENCE_THRESHOLD,
    average_length,
    contains_any,
    has_interrogative,
    low_confidence_flags,
)


@dataclass(frozen=True)
class AgentRecommendation:
    agent_id: str
    confidence: float
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "agent_id": self.agent_id,
            "confidence": self.confidence,
            "reason": self.reason,
        }


GOAL_AGENTS: Dict[str, AgentRecommendation] = {
    "pronunciation-improvement": AgentRecommendation(
        PRONUNCIATION_SPECIALIST, 0.8, "Specialized pronunciation training"),
    "grammar-accuracy": AgentRecommendation(
        GRAMMAR_SPECIALIST, 0.8, "Structured grammar instruction"),
    "conversation-fluency": AgentRecommendation(
        CONVERSATION_AGENT, 0.8, "Natural conversation practice"),
    "confidence-building": AgentRecommendation(
        GENERALIST_AGENT, 0.8, "Supportive and encouraging approach"),
}

LEVEL_AGENTS: Dict[str, AgentRecommendation] = {
    "beginner": AgentRecommendation(GENERALIST_AGENT, 0.7, "Patient and supportive for beginners"),
    "elementary": AgentRecommendation(GENERALIST_AGENT, 0.7, "Patient and supportive for beginners"),
    "intermediate": AgentRecommendation(
        CONVERSATION_AGENT, 0.7, "Natural conversation practice for intermediate level"),
    "upper-intermediate": AgentRecommendation(
        GRAMMAR_SPECIALIST, 0.7, "Structured approach for advanced learners"),
    "advanced": AgentRecommendation(GRAMMAR_SPECIALIST, 0.7, "Structured approach for advanced learners"),
    "proficient": AgentRecommendation(
        CONVERSATION_AGENT, 0.8, "Natural conversation for proficient speakers"),
}

DEFAULT_RECOMMENDATION = AgentRecommendation(GENERALIST_AGENT, 0.5, "default")

GRAMMAR_KEYWORDS = ("grammar", "correct", "mistake", "error", "rule")

# (keywords, weight) per grammar-focus cue group
GRAMMAR_FOCUS_WEIGHTS = (
    (("grammar", "correct"), 0.4),
    (("mistake", "error"), 0.3),
    (("rule", "why"), 0.2),
)

CONVERSATIONAL_LEVELS = set(PROFICIENCY_LEVELS[PROFICIENCY_LEVELS.index("intermediate"):])


class HandoffEngine:
    """
    Scores candidate agents against profile and live conversation.

    Thresholds and windows are plain constants; the detector order in
    recommend_agent_handoff is the priority order.
    """

    THRESHOLDS = {
        "frustration": 0.7,
        "pronunciation": 0.6,
        "grammar_focus": 0.7,
        "readiness": 0.7,
        "context_low_confidence_messages": 2,
    }

    WINDOWS = {
        "handoff": 10,
        "context": 5,
    }

    CONFIDENCE = {
        "preference": 0.9,
        "context_pronunciation": 0.8,
        "context_grammar": 0.7,
        "handoff_frustration": 0.8,
        "handoff_pronunciation": 0.8,
        "handoff_grammar": 0.7,
        "handoff_readiness": 0.7,
    }

    def __init__(self, catalog: AgentCatalog = DEFAULT_CATALOG):
        self.catalog = catalog
        self._frustration = EmotionalStateInferrer(window=self.WINDOWS["handoff"])

    # --- initial selection ---------------------------------------------

    def recommend_agent(
        self,
        profile: UserProfile,
        history: Optional[Sequence[Message]] = None,
    ) -> AgentRecommendation:
        candidates: List[AgentRecommendation] = []

        if profile.preferred_agents and profile.preferred_agents[0] in self.catalog:
            candidates.append(AgentRecommendation(
                profile.preferred_agents[0], self.CONFIDENCE["preference"], "User preference"))

        for goal in profile.learning_goals:
            if goal in GOAL_AGENTS:
                candidates.append(GOAL_AGENTS[goal])

        if profile.proficiency_level in LEVEL_AGENTS:
            candidates.append(LEVEL_AGENTS[profile.proficiency_level])

        if history:
            contextual = self._context_candidate(history)
            if contextual:
                candidates.append(contextual)

        if not candidates:
            return DEFAULT_RECOMMENDATION

        # sorted() is stable: equal confidence keeps generation order
        return sorted(candidates, key=lambda c: -c.confidence)[0]

    def _context_candidate(self, history: Sequence[Message]) -> Optional[AgentRecommendation]:
        recent_user = [m for m in history if m.is_user][-self.WINDOWS["context"]:]
        if not recent_user:
            return None

        if sum(low_confidence_flags(recent_user)) >= self.THRESHOLDS["context_low_confidence_messages"]:
            return AgentRecommendation(
                PRONUNCIATION_SPECIALIST,
                self.CONFIDENCE["context_pronunciation"],
                "Low transcription confidence indicates pronunciation issues",
            )

        if any(contains_any(m.content, GRAMMAR_KEYWORDS) for m in recent_user):
            return AgentRecommendation(
                GRAMMAR_SPECIALIST,
                self.CONFIDENCE["context_grammar"],
                "Grammar-focused conversation detected",
            )
        return None

    # --- detectors -----------------------------------------------------

    def frustration_score(self, user_messages: Sequence[Message]) -> float:
        return self._frustration.infer(user_messages).frustration

    def pronunciation_score(self, user_messages: Sequence[Message]) -> float:
        score = 0.0
        for message in user_messages:
            conf = message.transcription_confidence
            if conf is None:
                continue
            if conf < LOW_CONFIDENCE_THRESHOLD:
                score += 0.4
            if conf < VERY_LOW_CONFIDENCE_THRESHOLD:
                score += 0.6
        return round(min(score / max(len(user_messages), 1), 1.0), 4)

    def grammar_focus_score(self, user_messages: Sequence[Message]) -> float:
        score = 0.0
        for message in user_messages:
            for keywords, weight in GRAMMAR_FOCUS_WEIGHTS:
                if contains_any(message.content, keywords):
                    score += weight
        return round(min(score / max(len(user_messages), 1), 1.0), 4)

    def readiness_score(self, user_messages: Sequence[Message], profile: UserProfile) -> float:
        score = 0.0
        if profile.proficiency_level in CONVERSATIONAL_LEVELS:
            score += 0.4
        if average_length(user_messages) > 30:
            score += 0.3
        if any(has_interrogative(m.content) for m in user_messages):
            score += 0.3
        return round(min(score, 1.0), 4)

    # --- handoff -------------------------------------------------------

    def recommend_agent_handoff(
        self,
        current_agent_id: str,
        history: Sequence[Message],
        profile: UserProfile,
    ) -> Optional[AgentRecommendation]:
        user_messages = [m for m in list(history)[-self.WINDOWS["handoff"]:] if m.is_user]
        if not user_messages:
            return None

        if (self.frustration_score(user_messages) > self.THRESHOLDS["frustration"]
                and current_agent_id != GENERALIST_AGENT):
            return AgentRecommendation(
                GENERALIST_AGENT, self.CONFIDENCE["handoff_frustration"], "high frustration")

        if (self.pronunciation_score(user_messages) > self.THRESHOLDS["pronunciation"]
                and current_agent_id != PRONUNCIATION_SPECIALIST):
            return AgentRecommendation(
                PRONUNCIATION_SPECIALIST, self.CONFIDENCE["handoff_pronunciation"],
                "pronunciation challenges detected")

        if (self.grammar_focus_score(user_messages) > self.THRESHOLDS["grammar_focus"]
                and current_agent_id != GRAMMAR_SPECIALIST):
            return AgentRecommendation(
                GRAMMAR_SPECIALIST, self.CONFIDENCE["handoff_grammar"], "grammar improvement needed")

        if (self.readiness_score(user_messages, profile) > self.THRESHOLDS["readiness"]
                and current_agent_id != CONVERSATION_AGENT):
            return AgentRecommendation(
                CONVERSATION_AGENT, self.CONFIDENCE["handoff_readiness"],
                "ready for natural conversation practice")

        return None


_default_engine = HandoffEngine()


def recommend_agent(profile: UserProfile, history: Optional[Sequence[Message]] = None) -> AgentRecommendation:
    return _default_engine.recommend_agent(profile, history)


def recommend_agent_handoff(
    current_agent_id: str,
    history: Sequence[Message],
    profile: UserProfile,
) -> Optional[AgentRecommendation]:
    return _default_engine.recommend_agent_handoff(current_agent_id, history, profile)
