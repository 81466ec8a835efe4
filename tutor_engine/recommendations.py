"""
Recommendation Engine for tutoring sessions
Looks at a learner's past sessions and suggests the next topics,
difficulty and agents. Rule-based results are always available;
the reasoning model only refines them and is dropped on any failure.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import List, Dict, Optional, Sequence, Any
import logging

from .agents import (
    DEFAULT_CATALOG,
    AgentCatalog,
    CONVERSATION_PARTNER,
    FRIENDLY_TUTOR,
    PRONUNCIATION_COACH,
    STRICT_TEACHER,
)
from .errors import ExternalServiceError
from .gemini_analyzer import ReasoningModel, call_with_timeout, parse_json_payload
from .models import Recommendation, RecommendationKind, Session, UserProfile, utc_now

logger = logging.getLogger(__name__)

CONVERSATION_TOPICS: List[str] = [
    "Travel and Culture", "Food and Cooking", "Family and Friends",
    "Hobbies and Interests", "Work and Career", "Education and Learning",
    "Technology and Innovation", "Health and Fitness", "Entertainment and Media",
    "Science and Discovery", "Art and Creativity", "Environment and Nature",
    "History and Politics", "Sports and Recreation", "Shopping and Fashion",
    "Transportation and Travel", "Weather and Seasons", "Daily Routines",
    "Social Issues", "Business and Economics",
]

GOAL_TOPICS: Dict[str, List[str]] = {
    "conversation-fluency": ["Travel and Culture", "Family and Friends", "Hobbies and Interests"],
    "grammar-accuracy": ["Work and Career", "Education and Learning", "Technology and Innovation"],
    "pronunciation-improvement": ["Food and Cooking", "Health and Fitness", "Entertainment and Media"],
    "vocabulary-expansion": ["Science and Discovery", "Art and Creativity", "Environment and Nature"],
    "confidence-building": ["Travel and Culture", "Hobbies and Interests", "Family and Friends"],
}

DEFAULT_TOPICS = ["Travel and Culture", "Food and Cooking", "Hobbies and Interests"]
COMPLEX_TOPICS = {"Technology and Innovation", "Science and Discovery", "History and Politics"}
EASY_TOPICS = {"Food and Cooking", "Family and Friends", "Hobbies and Interests"}

DIFFICULTIES = ["easy", "medium", "hard"]
VALID_DIFFICULTIES = set(DIFFICULTIES) | {"adaptive"}

LEVEL_DIFFICULTY: Dict[str, str] = {
    "beginner": "easy",
    "elementary": "easy",
    "intermediate": "medium",
    "upper-intermediate": "medium",
    "advanced": "hard",
    "proficient": "hard",
}

LEVEL_FACTORS: Dict[str, float] = {
    "beginner": 0.2,
    "elementary": 0.35,
    "intermediate": 0.5,
    "upper-intermediate": 0.65,
    "advanced": 0.8,
    "proficient": 0.95,
}

LEVEL_SESSION_MINUTES: Dict[str, int] = {
    "beginner": 10,
    "elementary": 15,
    "intermediate": 20,
    "upper-intermediate": 25,
    "advanced": 30,
    "proficient": 35,
}

AGENT_SPECIALTIES: Dict[str, Dict[str, Any]] = {
    FRIENDLY_TUTOR: {
        "goals": ["confidence-building", "conversation-fluency"],
        "strengths": ["encouragement", "general conversation"],
        "score": 0.8,
    },
    STRICT_TEACHER: {
        "goals": ["grammar-accuracy"],
        "strengths": ["grammar correction", "structured learning"],
        "score": 0.9,
    },
    CONVERSATION_PARTNER: {
        "goals": ["conversation-fluency", "confidence-building"],
        "strengths": ["natural conversation", "cultural topics"],
        "score": 0.85,
    },
    PRONUNCIATION_COACH: {
        "goals": ["pronunciation-improvement"],
        "strengths": ["pronunciation", "phonetics"],
        "score": 0.95,
    },
}

MOTIVATIONAL_MESSAGES = [
    "Ready to continue your language journey? Let's make today's session count!",
    "Your consistency is paying off! Time for another great practice session.",
    "Every conversation brings you closer to fluency. Let's dive in!",
    "You're making excellent progress! Ready to challenge yourself today?",
    "Practice makes perfect, and you're doing amazing! Let's continue.",
]

PLANNED_SESSION_MINUTES = 20
MODEL_CONFIDENCE = 0.9


# ── Result types ────────────────────────────────────────────────────────

@dataclass
class TopicRecommendation:
    topic: str
    relevance: float
    difficulty: str
    reason: str
    estimated_minutes: int = 15

    def to_dict(self) -> Dict[str, Any]:
        return {
            "topic": self.topic,
            "relevance": round(self.relevance, 2),
            "difficulty": self.difficulty,
            "reason": self.reason,
            "estimated_minutes": self.estimated_minutes,
        }


@dataclass
class AgentMatch:
    agent_id: str
    agent_name: str
    match_score: float
    reason: str
    specialties: List[str]
    recommended_for: List[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "agent_id": self.agent_id,
            "agent_name": self.agent_name,
            "match_score": round(self.match_score, 3),
            "reason": self.reason,
            "specialties": self.specialties,
            "recommended_for": self.recommended_for,
        }


@dataclass
class DifficultyRecommendation:
    difficulty: str
    confidence: float
    reasoning: str
    factors: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "difficulty": self.difficulty,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
            "factors": {k: round(v, 3) for k, v in self.factors.items()},
        }


@dataclass
class UserFeedback:
    """Post-session ratings, 1-5 each (difficulty: 1 too easy, 5 too hard)."""
    session_id: str
    topic_rating: int
    agent_rating: int
    difficulty_rating: int
    overall_satisfaction: int
    comments: Optional[str] = None


@dataclass
class ProgressSnapshot:
    grammar: float
    fluency: float
    vocabulary: float
    confidence: float


@dataclass
class SessionPlan:
    user_id: str
    topics: List[TopicRecommendation]
    agents: List[AgentMatch]
    difficulty: DifficultyRecommendation
    session_minutes: int
    focus_areas: List[str]
    motivational_message: str
    generated_at: datetime = field(default_factory=utc_now)

    def as_recommendations(self) -> List[Recommendation]:
        """Flatten into advisory Recommendation records."""
        recs = [
            Recommendation(RecommendationKind.TOPIC, t.topic, t.relevance, t.reason)
            for t in self.topics
        ]
        recs.extend(
            Recommendation(RecommendationKind.AGENT, a.agent_id, a.match_score, a.reason)
            for a in self.agents
        )
        recs.append(Recommendation(
            RecommendationKind.DIFFICULTY,
            self.difficulty.difficulty,
            self.difficulty.confidence,
            self.difficulty.reasoning,
        ))
        return recs

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "topics": [t.to_dict() for t in self.topics],
            "agents": [a.to_dict() for a in self.agents],
            "difficulty": self.difficulty.to_dict(),
            "session_minutes": self.session_minutes,
            "focus_areas": self.focus_areas,
            "motivational_message": self.motivational_message,
            "generated_at": self.generated_at.isoformat(),
        }


# ── History analysis ────────────────────────────────────────────────────

def session_performance(session: Session) -> float:
    return (session.metrics.avg_grammar + session.metrics.avg_fluency) / 2


def recent_topics(history: Sequence[Session], count: int = 5) -> List[str]:
    """History is newest first."""
    return [s.topic for s in history[:count] if s.topic]


def topic_performance(history: Sequence[Session]) -> Dict[str, float]:
    totals: Dict[str, List[float]] = {}
    for session in history:
        if session.topic:
            totals.setdefault(session.topic, []).append(session_performance(session))
    return {topic: sum(v) / len(v) for topic, v in totals.items()}


def recent_performance(history: Sequence[Session]) -> float:
    if not history:
        return 0.5
    return sum(session_performance(s) for s in history) / len(history)


def session_frequency(history: Sequence[Session], now: Optional[datetime] = None) -> float:
    if not history:
        return 0.0
    week_ago = (now or utc_now()) - timedelta(days=7)
    return min(1.0, sum(1 for s in history if s.started_at > week_ago) / 7)


def error_rate(history: Sequence[Session]) -> float:
    words = sum(s.metrics.words_spoken for s in history)
    if not history or words == 0:
        return 0.5
    return sum(s.metrics.total_errors for s in history) / words


def practice_streak(history: Sequence[Session], today: Optional[date] = None) -> int:
    """Consecutive days with at least one session, ending today or yesterday."""
    days = {s.started_at.date() for s in history}
    if not days:
        return 0
    cursor = today or utc_now().date()
    if cursor not in days:
        cursor -= timedelta(days=1)
    streak = 0
    while cursor in days:
        streak += 1
        cursor -= timedelta(days=1)
    return streak


def summarize_progress(history: Sequence[Session]) -> Optional[ProgressSnapshot]:
    scored = [s for s in history if s.metrics.turns > 0]
    if not scored:
        return None
    n = len(scored)
    calm = sum(1 for s in scored if not any(h.reason == "high frustration" for h in s.handoffs))
    return ProgressSnapshot(
        grammar=sum(s.metrics.avg_grammar for s in scored) / n,
        fluency=sum(s.metrics.avg_fluency for s in scored) / n,
        vocabulary=sum(s.metrics.avg_vocabulary for s in scored) / n,
        confidence=calm / n,
    )


def analyze_feedback_patterns(feedback: Sequence[UserFeedback]) -> Dict[str, float]:
    if not feedback:
        return {}
    n = len(feedback)
    return {
        "topic_preference": sum(f.topic_rating for f in feedback) / n,
        "agent_preference": sum(f.agent_rating for f in feedback) / n,
        "difficulty_preference": sum(f.difficulty_rating for f in feedback) / n,
        "overall_satisfaction": sum(f.overall_satisfaction for f in feedback) / n,
    }


# ── Topics ──────────────────────────────────────────────────────────────

def difficulty_for_topic(topic: str, level: str) -> str:
    if topic in COMPLEX_TOPICS:
        return "hard" if level in ("beginner", "elementary") else "medium"
    if topic in EASY_TOPICS:
        return "easy" if level in ("advanced", "proficient") else "medium"
    return "adaptive"


def rule_based_topics(profile: UserProfile, recent: Sequence[str]) -> List[TopicRecommendation]:
    available = [t for t in CONVERSATION_TOPICS if t not in recent]
    recs = []
    for goal in profile.learning_goals:
        for topic in GOAL_TOPICS.get(goal, []):
            if topic in available:
                recs.append(TopicRecommendation(
                    topic=topic,
                    relevance=0.7,
                    difficulty=difficulty_for_topic(topic, profile.proficiency_level),
                    reason=f"Recommended for {goal} practice",
                ))
    return recs


def rank_topics(recs: Sequence[TopicRecommendation], profile: UserProfile, limit: int = 5) -> List[TopicRecommendation]:
    """Dedupe by topic (first wins), sort by relevance then preference."""
    seen = set()
    unique = []
    for rec in recs:
        if rec.topic not in seen:
            seen.add(rec.topic)
            unique.append(rec)
    preferred = set(profile.preferred_topics)
    unique.sort(key=lambda r: (-r.relevance, 0 if r.topic in preferred else 1))
    return unique[:limit]


def fallback_topics(profile: UserProfile) -> List[TopicRecommendation]:
    topics = profile.preferred_topics or DEFAULT_TOPICS
    return [
        TopicRecommendation(topic=t, relevance=0.6, difficulty="adaptive", reason="Based on your interests")
        for t in topics[:3]
    ]


def _int_or(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def parse_topic_recommendations(raw: str) -> List[TopicRecommendation]:
    payload = parse_json_payload(raw, expect=list)
    recs = []
    for item in payload:
        if not isinstance(item, dict) or item.get("topic") not in CONVERSATION_TOPICS:
            continue
        relevance = item.get("relevanceScore", 0.7)
        if isinstance(relevance, bool) or not isinstance(relevance, (int, float)):
            relevance = 0.7
        difficulty = item.get("difficulty", "adaptive")
        recs.append(TopicRecommendation(
            topic=item["topic"],
            relevance=max(0.0, min(1.0, float(relevance))),
            difficulty=difficulty if difficulty in VALID_DIFFICULTIES else "adaptive",
            reason=str(item.get("reason", "Suggested for you")),
            estimated_minutes=_int_or(item.get("estimatedDuration"), 15),
        ))
    return recs


# ── Agents ──────────────────────────────────────────────────────────────

def recommend_agents(goals: Sequence[str], catalog: AgentCatalog = DEFAULT_CATALOG, limit: int = 3) -> List[AgentMatch]:
    matches = []
    for agent_id, specialty in AGENT_SPECIALTIES.items():
        matching = [g for g in goals if g in specialty["goals"]]
        if not matching or agent_id not in catalog:
            continue
        personality = catalog.require(agent_id)
        ratio = len(matching) / len(goals)
        matches.append(AgentMatch(
            agent_id=agent_id,
            agent_name=personality.name,
            match_score=specialty["score"] * (0.7 + ratio * 0.3),
            reason=f"Specializes in {' and '.join(specialty['strengths'])}",
            specialties=list(personality.specialties),
            recommended_for=matching,
        ))

    if not matches:
        tutor = catalog.require(FRIENDLY_TUTOR)
        return [AgentMatch(
            agent_id=FRIENDLY_TUTOR,
            agent_name=tutor.name,
            match_score=0.7,
            reason="Great for general conversation practice",
            specialties=list(tutor.specialties),
            recommended_for=["conversation-fluency", "confidence-building"],
        )]

    matches.sort(key=lambda m: -m.match_score)
    return matches[:limit]


# ── Difficulty ──────────────────────────────────────────────────────────

def default_difficulty(level: str) -> DifficultyRecommendation:
    return DifficultyRecommendation(
        difficulty=LEVEL_DIFFICULTY.get(level, "medium"),
        confidence=0.7,
        reasoning=f"Based on your {level} level",
        factors={
            "recent_performance": 0.5,
            "user_level": LEVEL_FACTORS.get(level, 0.5),
            "session_frequency": 0.5,
            "error_rate": 0.5,
        },
    )


def _step(difficulty: str, delta: int) -> str:
    base = difficulty if difficulty in DIFFICULTIES else "medium"
    index = max(0, min(len(DIFFICULTIES) - 1, DIFFICULTIES.index(base) + delta))
    return DIFFICULTIES[index]


def rule_based_difficulty(profile: UserProfile, recent: Sequence[Session],
                          now: Optional[datetime] = None) -> DifficultyRecommendation:
    if not recent:
        return default_difficulty(profile.proficiency_level)

    factors = {
        "recent_performance": recent_performance(recent),
        "user_level": LEVEL_FACTORS.get(profile.proficiency_level, 0.5),
        "session_frequency": session_frequency(recent, now),
        "error_rate": error_rate(recent),
    }
    base = LEVEL_DIFFICULTY.get(profile.proficiency_level, "medium")

    if factors["recent_performance"] >= 0.8 and factors["error_rate"] < 0.1:
        return DifficultyRecommendation(_step(base, 1), 0.7, "Strong recent performance", factors)
    if factors["recent_performance"] < 0.5 or factors["error_rate"] > 0.3:
        return DifficultyRecommendation(_step(base, -1), 0.7, "Recent sessions were challenging", factors)
    return DifficultyRecommendation(base, 0.7, f"Steady progress at {profile.proficiency_level} level", factors)


def parse_difficulty_recommendation(raw: str, fallback: DifficultyRecommendation) -> DifficultyRecommendation:
    payload = parse_json_payload(raw, expect=dict)
    difficulty = payload.get("recommendedDifficulty")
    if difficulty not in VALID_DIFFICULTIES:
        return fallback
    return DifficultyRecommendation(
        difficulty=difficulty,
        confidence=round((fallback.confidence + MODEL_CONFIDENCE) / 2, 2),
        reasoning=str(payload.get("reasoning", fallback.reasoning)),
        factors=fallback.factors,
    )


# ── Session plan pieces ─────────────────────────────────────────────────

def recommend_session_length(profile: UserProfile, history: Sequence[Session]) -> int:
    minutes = LEVEL_SESSION_MINUTES.get(profile.proficiency_level, 20)
    recent = history[:5]
    if recent:
        completion = sum(
            min(1.0, (s.metrics.duration_seconds / 60) / PLANNED_SESSION_MINUTES) for s in recent
        ) / len(recent)
        if completion > 0.9:
            minutes += 5
        elif completion < 0.6:
            minutes -= 5
    return max(10, min(45, minutes))


def identify_focus_areas(progress: Optional[ProgressSnapshot], goals: Sequence[str]) -> List[str]:
    areas = []
    if progress:
        if progress.grammar < 0.7:
            areas.append("grammar-accuracy")
        if progress.fluency < 0.7:
            areas.append("conversation-fluency")
        if progress.vocabulary < 0.6:
            areas.append("vocabulary-expansion")
        if progress.confidence < 0.6:
            areas.append("confidence-building")
    if not areas:
        areas.extend(list(goals)[:2])
    return areas[:3]


def motivational_message(history: Sequence[Session], today: Optional[date] = None) -> str:
    if history:
        latest = history[0].metrics
        if latest.turns and latest.avg_grammar > 0.8:
            return "Your grammar has been spot-on lately! Ready to tackle some new challenges?"
        if latest.turns and latest.avg_fluency > 0.8:
            return "Your fluency is really improving! Let's keep the momentum going."
    streak = practice_streak(history, today)
    if streak > 5:
        return f"Amazing {streak}-day streak! You're on fire!"
    return MOTIVATIONAL_MESSAGES[len(history) % len(MOTIVATIONAL_MESSAGES)]


# ── Engine ──────────────────────────────────────────────────────────────

TOPIC_PROMPT = """You are a language learning expert providing topic recommendations.
Reply with ONLY a JSON array, no other text or markdown:
[{"topic": "Topic Name", "relevanceScore": 0.85, "difficulty": "easy|medium|hard|adaptive", "reason": "Why", "estimatedDuration": 20}]
Only use topics from the available list. Favour variety and the student's interests."""

DIFFICULTY_PROMPT = """You are a language learning expert recommending the difficulty of the next session.
Reply with ONLY a JSON object, no other text or markdown:
{"recommendedDifficulty": "easy|medium|hard|adaptive", "confidence": 0.85, "reasoning": "Explanation"}"""


class RecommendationEngine:
    """Rule-based recommendations, optionally refined by the reasoning model."""

    def __init__(
        self,
        model: Optional[ReasoningModel] = None,
        catalog: AgentCatalog = DEFAULT_CATALOG,
        timeout: float = 8.0,
    ):
        self.model = model
        self.catalog = catalog
        self.timeout = timeout

    async def _ask(self, system_prompt: str, text: str, context: str) -> Optional[str]:
        if self.model is None:
            return None
        try:
            return await call_with_timeout(self.model.generate(system_prompt, text, context), self.timeout)
        except ExternalServiceError as e:
            logger.warning(f"Recommendation model unavailable: {e}")
        except Exception as e:
            logger.error(f"Recommendation model error: {e}")
        return None

    async def recommend_topics(self, profile: UserProfile, history: Sequence[Session]) -> List[TopicRecommendation]:
        recent = recent_topics(history)
        model_recs: List[TopicRecommendation] = []

        raw = await self._ask(
            TOPIC_PROMPT,
            "Recommend 3 conversation topics for this student.",
            (
                f"Level: {profile.proficiency_level}\n"
                f"Learning goals: {', '.join(profile.learning_goals) or 'none'}\n"
                f"Preferred topics: {', '.join(profile.preferred_topics) or 'none'}\n"
                f"Recent topics: {', '.join(recent) or 'none'}\n"
                f"Topic performance: {topic_performance(history)}\n"
                f"Available topics: {', '.join(CONVERSATION_TOPICS)}"
            ),
        )
        if raw:
            try:
                model_recs = [r for r in parse_topic_recommendations(raw) if r.topic not in recent]
            except ExternalServiceError as e:
                logger.warning(f"Discarding unparsable topic recommendations: {e}")

        ranked = rank_topics(rule_based_topics(profile, recent) + model_recs, profile)
        return ranked or fallback_topics(profile)

    async def recommend_difficulty(self, profile: UserProfile, recent: Sequence[Session]) -> DifficultyRecommendation:
        rule = rule_based_difficulty(profile, recent)
        if not recent:
            return rule

        summary = "\n".join(
            f"- Grammar: {s.metrics.avg_grammar:.2f}, Fluency: {s.metrics.avg_fluency:.2f}, "
            f"Errors: {s.metrics.total_errors}"
            for s in recent[:3]
        )
        raw = await self._ask(
            DIFFICULTY_PROMPT,
            "Recommend the difficulty for the student's next session.",
            f"Level: {profile.proficiency_level}\nFactors: {rule.factors}\nRecent sessions:\n{summary}",
        )
        if not raw:
            return rule
        try:
            return parse_difficulty_recommendation(raw, rule)
        except ExternalServiceError as e:
            logger.warning(f"Discarding unparsable difficulty recommendation: {e}")
            return rule

    async def generate_session_recommendations(
        self,
        profile: UserProfile,
        history: Sequence[Session],
        feedback: Sequence[UserFeedback] = (),
    ) -> SessionPlan:
        history = sorted(history, key=lambda s: s.started_at, reverse=True)
        topics = await self.recommend_topics(profile, history)
        difficulty = await self.recommend_difficulty(profile, history[:5])

        patterns = analyze_feedback_patterns(feedback)
        preference = patterns.get("difficulty_preference")
        if preference is not None and difficulty.difficulty in DIFFICULTIES:
            if preference >= 4:
                difficulty = DifficultyRecommendation(
                    _step(difficulty.difficulty, -1), difficulty.confidence,
                    "Adjusted down after feedback that sessions felt too hard", difficulty.factors)
            elif preference <= 2:
                difficulty = DifficultyRecommendation(
                    _step(difficulty.difficulty, 1), difficulty.confidence,
                    "Adjusted up after feedback that sessions felt too easy", difficulty.factors)

        return SessionPlan(
            user_id=profile.user_id,
            topics=topics,
            agents=recommend_agents(profile.learning_goals, self.catalog),
            difficulty=difficulty,
            session_minutes=recommend_session_length(profile, history),
            focus_areas=identify_focus_areas(summarize_progress(history), profile.learning_goals),
            motivational_message=motivational_message(history),
        )
