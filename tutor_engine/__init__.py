"""
Tutor Engine - Adaptive Conversation Decision Engine

Decides how an AI language tutor responds to each learner turn: which
agent personality speaks, what feedback to attach, and when to hand off.

Layers:
1. Lexical Signals (pure text features) - signals.py
2. Emotional State & Disengagement Patterns - sentiment.py
3. Grammar & Vocabulary Scoring (rules + reasoning model) - grammar.py
4. Agent Catalog & Response Strategy - agents.py
5. Agent Recommendation & Handoff - handoff.py
6. Session Lifecycle (state machine, keyed store) - states.py, store.py
7. Session Orchestrator (turn pipeline, interceptors) - orchestrator.py, middleware.py
8. Recommendations & Personalization - recommendations.py

Collaborators:
- Reasoning model (Gemini) - gemini_analyzer.py
- Persistence (in-memory, MongoDB) - persistence.py
- HTTP surface (FastAPI) - server.py, schemas.py
"""

from .errors import (
    TutorEngineError,
    ValidationError,
    SessionNotFoundError,
    SessionInactiveError,
    ExternalServiceError,
    ResponseParseError,
)

from .models import (
    Session,
    SessionStatus,
    Message,
    Sender,
    EmotionalState,
    FeedbackInstance,
    FeedbackType,
    FeedbackSource,
    HandoffRecord,
    PerformanceMetrics,
    StateTransition,
    UserProfile,
    Severity,
    Strictness,
    Recommendation,
    RecommendationKind,
)

from .signals import (
    TextSignals,
    extract_signals,
    word_count,
    sentence_count,
    keyword_hits,
    contains_any,
    type_token_ratio,
    has_interrogative,
    is_short_message,
    low_confidence_flags,
    average_confidence,
)

from .sentiment import (
    EmotionalStateInferrer,
    ApproachMode,
    EmotionalTone,
    DisengagementPattern,
    infer_emotional_state,
    detect_disengagement_patterns,
)

from .grammar import (
    GrammarScorer,
    GrammarError,
    GrammarAnalysis,
    AnalysisConfig,
    apply_grammar_rules,
    combine_and_prioritize_errors,
    calculate_grammar_score,
    calculate_confidence,
    estimate_fluency,
    estimate_vocabulary,
)

from .agents import (
    AgentCatalog,
    AgentPersonality,
    AgentContext,
    AgentReply,
    SupportiveStrategy,
    VoiceProfile,
    ModelResponseStrategy,
    DEFAULT_CATALOG,
)

from .handoff import (
    HandoffEngine,
    AgentRecommendation,
    recommend_agent,
    recommend_agent_handoff,
)

from .states import SessionStateMachine

from .store import SessionStore

from .middleware import (
    TurnContext,
    TurnStats,
    compose_interceptors,
    logging_interceptor,
    timing_interceptor,
)

from .orchestrator import (
    SessionOrchestrator,
    SessionStart,
    TurnResult,
)

from .recommendations import (
    RecommendationEngine,
    SessionPlan,
    TopicRecommendation,
    AgentMatch,
    DifficultyRecommendation,
)

from .persistence import (
    SessionRepository,
    InMemoryRepository,
    MongoRepository,
    with_read_retries,
)

from .gemini_analyzer import (
    GeminiReasoningModel,
    ReasoningModel,
)

from .config import Settings

__version__ = "0.1.0"
__all__ = [
    # Errors
    "TutorEngineError",
    "ValidationError",
    "SessionNotFoundError",
    "SessionInactiveError",
    "ExternalServiceError",
    "ResponseParseError",
    # Models
    "Session",
    "SessionStatus",
    "Message",
    "Sender",
    "EmotionalState",
    "FeedbackInstance",
    "FeedbackType",
    "FeedbackSource",
    "HandoffRecord",
    "PerformanceMetrics",
    "UserProfile",
    "Severity",
    "Strictness",
    "Recommendation",
    "RecommendationKind",
    # Signals
    "TextSignals",
    "extract_signals",
    "word_count",
    "sentence_count",
    "keyword_hits",
    "contains_any",
    "type_token_ratio",
    "has_interrogative",
    "is_short_message",
    "low_confidence_flags",
    "average_confidence",
    # Sentiment
    "EmotionalStateInferrer",
    "ApproachMode",
    "EmotionalTone",
    "DisengagementPattern",
    "infer_emotional_state",
    "detect_disengagement_patterns",
    # Grammar
    "GrammarScorer",
    "GrammarError",
    "GrammarAnalysis",
    "AnalysisConfig",
    "apply_grammar_rules",
    "combine_and_prioritize_errors",
    "calculate_grammar_score",
    "calculate_confidence",
    "estimate_fluency",
    "estimate_vocabulary",
    # Agents
    "AgentCatalog",
    "AgentPersonality",
    "AgentContext",
    "AgentReply",
    "SupportiveStrategy",
    "VoiceProfile",
    "ModelResponseStrategy",
    "DEFAULT_CATALOG",
    # Handoff
    "HandoffEngine",
    "AgentRecommendation",
    "recommend_agent",
    "recommend_agent_handoff",
    # Lifecycle
    "SessionStateMachine",
    "StateTransition",
    "SessionStore",
    # Orchestration
    "TurnContext",
    "TurnStats",
    "compose_interceptors",
    "logging_interceptor",
    "timing_interceptor",
    "SessionOrchestrator",
    "SessionStart",
    "TurnResult",
    # Recommendations
    "RecommendationEngine",
    "SessionPlan",
    "TopicRecommendation",
    "AgentMatch",
    "DifficultyRecommendation",
    # Collaborators
    "SessionRepository",
    "InMemoryRepository",
    "MongoRepository",
    "with_read_retries",
    "GeminiReasoningModel",
    "ReasoningModel",
    "Settings",
]
