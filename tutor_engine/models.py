"""
Session Data Model

Dataclasses for everything a tutoring session carries: messages,
feedback, handoffs, running metrics and the session aggregate itself.
Persisted types round-trip through to_dict/from_dict so the Mongo
repository can store them as plain documents.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any
from enum import Enum
import uuid


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def _parse_dt(value: Optional[Any]) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    parsed = datetime.fromisoformat(value)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


class SessionStatus(Enum):
    """
    Lifecycle of a tutoring session.

    CREATED → ACTIVE → COMPLETED | ABANDONED
    """
    CREATED = "created"
    ACTIVE = "active"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


class Sender(Enum):
    USER = "user"
    AGENT = "agent"


class Severity(Enum):
    """Ordinal error importance."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return SEVERITY_RANK[self]


SEVERITY_RANK: Dict[Severity, int] = {
    Severity.HIGH: 0,
    Severity.MEDIUM: 1,
    Severity.LOW: 2,
}


class Strictness(Enum):
    LENIENT = "lenient"
    MODERATE = "moderate"
    STRICT = "strict"


class FeedbackType(Enum):
    CORRECTION = "correction"
    VOCABULARY_TIP = "vocabulary-tip"
    ENCOURAGEMENT = "encouragement"
    MILESTONE = "milestone"


class FeedbackSource(Enum):
    RULE_ENGINE = "rule-engine"
    REASONING_MODEL = "reasoning-model"
    ORCHESTRATOR = "orchestrator"


class RecommendationKind(Enum):
    AGENT = "agent"
    TOPIC = "topic"
    DIFFICULTY = "difficulty"


PROFICIENCY_LEVELS: List[str] = [
    "beginner",
    "elementary",
    "intermediate",
    "upper-intermediate",
    "advanced",
    "proficient",
]


@dataclass
class EmotionalState:
    """Frustration/confidence/engagement vector, each in [0, 1]."""
    frustration: float = 0.0
    confidence: float = 0.5
    engagement: float = 0.5
    last_updated: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "frustration": round(self.frustration, 3),
            "confidence": round(self.confidence, 3),
            "engagement": round(self.engagement, 3),
            "last_updated": self.last_updated.isoformat(),
        }


@dataclass(frozen=True)
class Message:
    """A single conversational turn. Frozen once created."""
    id: str
    sender: Sender
    content: str
    timestamp: datetime = field(default_factory=utc_now)
    transcription_confidence: Optional[float] = None
    agent_id: Optional[str] = None
    feedback: tuple = ()

    @classmethod
    def from_user(cls, content: str, transcription_confidence: Optional[float] = None) -> "Message":
        return cls(
            id=new_id("msg"),
            sender=Sender.USER,
            content=content,
            transcription_confidence=transcription_confidence,
        )

    @classmethod
    def from_agent(cls, content: str, agent_id: str, feedback: Optional[List["FeedbackInstance"]] = None) -> "Message":
        return cls(
            id=new_id("msg"),
            sender=Sender.AGENT,
            content=content,
            agent_id=agent_id,
            feedback=tuple(feedback or ()),
        )

    @property
    def is_user(self) -> bool:
        return self.sender == Sender.USER

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "sender": self.sender.value,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
            "transcription_confidence": self.transcription_confidence,
            "agent_id": self.agent_id,
            "feedback": [f.to_dict() for f in self.feedback],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        return cls(
            id=data["id"],
            sender=Sender(data["sender"]),
            content=data["content"],
            timestamp=_parse_dt(data.get("timestamp")) or utc_now(),
            transcription_confidence=data.get("transcription_confidence"),
            agent_id=data.get("agent_id"),
            feedback=tuple(FeedbackInstance.from_dict(f) for f in data.get("feedback", [])),
        )


@dataclass(frozen=True)
class FeedbackInstance:
    """One piece of feedback attached to the agent message of a turn."""
    type: FeedbackType
    message: str
    severity: Severity = Severity.LOW
    start: Optional[int] = None
    end: Optional[int] = None
    suggestion: Optional[str] = None
    confidence: float = 0.8
    source: FeedbackSource = FeedbackSource.RULE_ENGINE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "message": self.message,
            "severity": self.severity.value,
            "start": self.start,
            "end": self.end,
            "suggestion": self.suggestion,
            "confidence": round(self.confidence, 2),
            "source": self.source.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FeedbackInstance":
        return cls(
            type=FeedbackType(data["type"]),
            message=data.get("message", ""),
            severity=Severity(data.get("severity", "low")),
            start=data.get("start"),
            end=data.get("end"),
            suggestion=data.get("suggestion"),
            confidence=data.get("confidence", 0.8),
            source=FeedbackSource(data.get("source", "rule-engine")),
        )


@dataclass(frozen=True)
class HandoffRecord:
    """Audit entry appended whenever the active agent changes."""
    from_agent: str
    to_agent: str
    reason: str
    confidence: float
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from_agent": self.from_agent,
            "to_agent": self.to_agent,
            "reason": self.reason,
            "confidence": self.confidence,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HandoffRecord":
        return cls(
            from_agent=data["from_agent"],
            to_agent=data["to_agent"],
            reason=data.get("reason", ""),
            confidence=data.get("confidence", 0.0),
            timestamp=_parse_dt(data.get("timestamp")) or utc_now(),
        )


@dataclass
class PerformanceMetrics:
    """Running aggregates for a session."""
    turns: int = 0
    words_spoken: int = 0
    avg_grammar: float = 0.0
    avg_fluency: float = 0.0
    avg_vocabulary: float = 0.0
    total_errors: int = 0
    improvements: int = 0
    handoffs: int = 0
    duration_seconds: float = 0.0

    def record_turn(self, grammar: float, fluency: float, vocabulary: float, errors: int, words: int):
        """Fold one scored turn into the running averages."""
        if self.turns > 0 and grammar > self.avg_grammar:
            self.improvements += 1
        n = self.turns + 1
        self.avg_grammar = self.avg_grammar + (grammar - self.avg_grammar) / n
        self.avg_fluency = self.avg_fluency + (fluency - self.avg_fluency) / n
        self.avg_vocabulary = self.avg_vocabulary + (vocabulary - self.avg_vocabulary) / n
        self.turns = n
        self.total_errors += errors
        self.words_spoken += words

    def to_dict(self) -> Dict[str, Any]:
        return {
            "turns": self.turns,
            "words_spoken": self.words_spoken,
            "avg_grammar": round(self.avg_grammar, 3),
            "avg_fluency": round(self.avg_fluency, 3),
            "avg_vocabulary": round(self.avg_vocabulary, 3),
            "total_errors": self.total_errors,
            "improvements": self.improvements,
            "handoffs": self.handoffs,
            "duration_seconds": round(self.duration_seconds, 1),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PerformanceMetrics":
        return cls(**{k: data[k] for k in cls.__dataclass_fields__ if k in data})


@dataclass(frozen=True)
class StateTransition:
    """One lifecycle step, kept on the session as its status log."""
    session_id: str
    from_state: SessionStatus
    to_state: SessionStatus
    trigger: str
    timestamp: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "from_state": self.from_state.value,
            "to_state": self.to_state.value,
            "trigger": self.trigger,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StateTransition":
        return cls(
            session_id=data["session_id"],
            from_state=SessionStatus(data["from_state"]),
            to_state=SessionStatus(data["to_state"]),
            trigger=data.get("trigger", ""),
            timestamp=_parse_dt(data.get("timestamp")) or utc_now(),
        )


@dataclass
class UserProfile:
    """Learner profile supplied by the persistence collaborator."""
    user_id: str
    proficiency_level: str = "intermediate"
    learning_goals: List[str] = field(default_factory=list)
    preferred_agents: List[str] = field(default_factory=list)
    preferred_topics: List[str] = field(default_factory=list)
    strictness: Strictness = Strictness.MODERATE
    sessions_completed: int = 0
    total_practice_minutes: float = 0.0

    @classmethod
    def default(cls, user_id: str, strictness: str = "moderate") -> "UserProfile":
        return cls(user_id=user_id, strictness=Strictness(strictness))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "proficiency_level": self.proficiency_level,
            "learning_goals": list(self.learning_goals),
            "preferred_agents": list(self.preferred_agents),
            "preferred_topics": list(self.preferred_topics),
            "strictness": self.strictness.value,
            "sessions_completed": self.sessions_completed,
            "total_practice_minutes": round(self.total_practice_minutes, 1),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserProfile":
        return cls(
            user_id=data["user_id"],
            proficiency_level=data.get("proficiency_level", "intermediate"),
            learning_goals=list(data.get("learning_goals", [])),
            preferred_agents=list(data.get("preferred_agents", [])),
            preferred_topics=list(data.get("preferred_topics", [])),
            strictness=Strictness(data.get("strictness", "moderate")),
            sessions_completed=data.get("sessions_completed", 0),
            total_practice_minutes=data.get("total_practice_minutes", 0.0),
        )


@dataclass
class Session:
    """
    The session aggregate.

    Mutated only by the orchestrator while it holds the session lease.
    Messages, handoffs and transitions are append-only.
    """
    id: str
    user_id: str
    agent_id: str
    status: SessionStatus = SessionStatus.CREATED
    topic: Optional[str] = None
    messages: List[Message] = field(default_factory=list)
    handoffs: List[HandoffRecord] = field(default_factory=list)
    transitions: List[StateTransition] = field(default_factory=list)
    metrics: PerformanceMetrics = field(default_factory=PerformanceMetrics)
    emotional_state: EmotionalState = field(default_factory=EmotionalState)
    started_at: datetime = field(default_factory=utc_now)
    ended_at: Optional[datetime] = None
    last_activity: datetime = field(default_factory=utc_now)

    @property
    def is_active(self) -> bool:
        return self.status == SessionStatus.ACTIVE

    @property
    def user_messages(self) -> List[Message]:
        return [m for m in self.messages if m.is_user]

    def append(self, message: Message):
        self.messages.append(message)
        self.last_activity = message.timestamp

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "agent_id": self.agent_id,
            "status": self.status.value,
            "topic": self.topic,
            "messages": [m.to_dict() for m in self.messages],
            "handoffs": [h.to_dict() for h in self.handoffs],
            "transitions": [t.to_dict() for t in self.transitions],
            "metrics": self.metrics.to_dict(),
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "last_activity": self.last_activity.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Session":
        return cls(
            id=data["id"],
            user_id=data["user_id"],
            agent_id=data["agent_id"],
            status=SessionStatus(data.get("status", "active")),
            topic=data.get("topic"),
            messages=[Message.from_dict(m) for m in data.get("messages", [])],
            handoffs=[HandoffRecord.from_dict(h) for h in data.get("handoffs", [])],
            transitions=[StateTransition.from_dict(t) for t in data.get("transitions", [])],
            metrics=PerformanceMetrics.from_dict(data.get("metrics", {})),
            started_at=_parse_dt(data.get("started_at")) or utc_now(),
            ended_at=_parse_dt(data.get("ended_at")),
            last_activity=_parse_dt(data.get("last_activity")) or utc_now(),
        )


@dataclass
class Recommendation:
    """Advisory output. Never stored as authoritative state."""
    kind: RecommendationKind
    value: str
    confidence: float
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "value": self.value,
            "confidence": round(self.confidence, 2),
            "reason": self.reason,
        }
