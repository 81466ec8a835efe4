"""
Session Orchestrator

Owns session lifetime and sequences one user turn:

    append user message → infer emotional state and disengagement
    → maybe hand off → score grammar → agent reply (or fallback)
    → attach feedback → update metrics → persist

Turns for one session run under that session's lease, so they never
overlap; different sessions proceed in parallel. Model and persistence
calls are the only awaits that leave the process, and each has a timeout.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Set
import asyncio
import logging

from .agents import (
    DEFAULT_CATALOG,
    AgentCatalog,
    AgentContext,
    AgentPersonality,
    AgentReply,
    ResponseStrategy,
    fallback_reply,
)
from .config import Settings
from .errors import (
    ExternalServiceError,
    SessionInactiveError,
    SessionNotFoundError,
    ValidationError,
)
from .gemini_analyzer import call_with_timeout
from .grammar import AnalysisConfig, GrammarAnalysis, GrammarScorer
from .handoff import AgentRecommendation, HandoffEngine
from .middleware import Interceptor, TurnContext, compose_interceptors
from .models import (
    EmotionalState,
    FeedbackInstance,
    FeedbackSource,
    FeedbackType,
    HandoffRecord,
    Message,
    Session,
    SessionStatus,
    UserProfile,
    new_id,
    utc_now,
)
from .persistence import SessionRepository, with_read_retries
from .recommendations import RecommendationEngine, SessionPlan
from .sentiment import DisengagementPattern, EmotionalStateInferrer, detect_disengagement_patterns
from .signals import word_count
from .states import SessionStateMachine
from .store import SessionStore

logger = logging.getLogger(__name__)

RecommendationSink = Callable[[SessionPlan], Awaitable[None]]

DEFAULT_TOPIC = "General Conversation"
MILESTONE_EVERY = 10


@dataclass
class SessionStart:
    session_id: str
    active_agent: AgentPersonality
    greeting: str
    recommendation: AgentRecommendation

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "active_agent": self.active_agent.to_dict(),
            "greeting": self.greeting,
            "recommendation": self.recommendation.to_dict(),
        }


@dataclass
class TurnResult:
    session_id: str
    agent_reply: AgentReply
    feedback: List[FeedbackInstance]
    analysis: GrammarAnalysis
    emotional_state: EmotionalState
    handoff: Optional[HandoffRecord]
    user_message: Message
    agent_message: Message
    disengagement: List[DisengagementPattern] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "agent_response": self.agent_reply.to_dict(),
            "feedback": [f.to_dict() for f in self.feedback],
            "handoff": self.handoff.to_dict() if self.handoff else None,
            "analysis": self.analysis.to_dict(),
            "emotional_state": self.emotional_state.to_dict(),
            "disengagement": [p.to_dict() for p in self.disengagement],
        }


class SessionOrchestrator:
    """
    Entry point for create/send/end.

    Every collaborator is injected; nothing is looked up globally except
    the read-only agent catalog default.
    """

    def __init__(
        self,
        repository: SessionRepository,
        response_strategy: Optional[ResponseStrategy] = None,
        scorer: Optional[GrammarScorer] = None,
        handoff_engine: Optional[HandoffEngine] = None,
        recommender: Optional[RecommendationEngine] = None,
        catalog: AgentCatalog = DEFAULT_CATALOG,
        store: Optional[SessionStore] = None,
        interceptors: Sequence[Interceptor] = (),
        settings: Optional[Settings] = None,
        recommendation_sink: Optional[RecommendationSink] = None,
    ):
        self.repository = repository
        self.response_strategy = response_strategy
        self.settings = settings or Settings()
        self.scorer = scorer or GrammarScorer(timeout=self.settings.model_timeout_seconds)
        self.catalog = catalog
        self.handoff_engine = handoff_engine or HandoffEngine(catalog)
        self.recommender = recommender or RecommendationEngine(catalog=catalog)
        self.store = store or SessionStore()
        self.recommendation_sink = recommendation_sink
        self.inferrer = EmotionalStateInferrer()
        self.state_machine = SessionStateMachine()
        self._handle_turn = compose_interceptors(self._process_turn, interceptors)
        self._background: Set[asyncio.Task] = set()

    # --- persistence helpers -------------------------------------------

    async def _read(self, read: Callable[[], Awaitable[Any]]):
        return await with_read_retries(read, timeout=self.settings.persistence_timeout_seconds)

    async def _write(self, write: Awaitable[None]):
        await call_with_timeout(write, self.settings.persistence_timeout_seconds, service="persistence")

    async def _load_profile(self, user_id: str) -> UserProfile:
        try:
            profile = await self._read(lambda: self.repository.get_user_profile(user_id))
        except ExternalServiceError as e:
            logger.warning(f"Profile lookup failed for {user_id}, using defaults: {e}")
            profile = None
        return profile or UserProfile.default(user_id, self.settings.default_strictness)

    async def _ensure_loaded(self, session_id: str):
        """Bring a persisted active session back into the store."""
        if session_id in self.store:
            return
        stored = await self._read(lambda: self.repository.get_session(session_id))
        if stored is None:
            raise SessionNotFoundError(session_id)
        if stored.status != SessionStatus.ACTIVE:
            raise SessionInactiveError(session_id, stored.status.value)
        self.store.add(stored, await self._load_profile(stored.user_id))

    # --- create --------------------------------------------------------

    async def create_session(
        self,
        user_id: str,
        agent_id: Optional[str] = None,
        topic: Optional[str] = None,
    ) -> SessionStart:
        if not user_id or not user_id.strip():
            raise ValidationError("user_id is required")
        if agent_id is not None:
            self.catalog.require(agent_id)

        profile = await self._load_profile(user_id)
        if agent_id:
            recommendation = AgentRecommendation(agent_id, 1.0, "requested")
        else:
            recommendation = self.handoff_engine.recommend_agent(profile)
        personality = self.catalog.require(recommendation.agent_id)

        session = Session(
            id=new_id("sess"),
            user_id=user_id,
            agent_id=personality.id,
            topic=topic or DEFAULT_TOPIC,
        )
        greeting = personality.greeting()
        session.append(Message.from_agent(greeting, personality.id))
        self.state_machine.activate(session)
        self.store.add(session, profile)

        try:
            await self._write(self.repository.put_session(session))
        except ExternalServiceError as e:
            logger.error(f"Initial write failed for session {session.id}: {e}")

        logger.info(f"Session {session.id} started for {user_id} with {personality.id} ({recommendation.reason})")
        self._schedule_recommendations(profile)
        return SessionStart(session.id, personality, greeting, recommendation)

    # --- turns ---------------------------------------------------------

    def _validate_turn(self, text: str, transcription_confidence: Optional[float]):
        if not isinstance(text, str) or not text.strip():
            raise ValidationError("Message text must not be empty")
        if len(text) > self.settings.max_message_chars:
            raise ValidationError(
                f"Message exceeds {self.settings.max_message_chars} characters",
                detail={"length": len(text)},
            )
        if transcription_confidence is not None and not 0.0 <= transcription_confidence <= 1.0:
            raise ValidationError("transcription_confidence must be within [0, 1]")

    async def send_message(
        self,
        session_id: str,
        text: str,
        transcription_confidence: Optional[float] = None,
    ) -> TurnResult:
        self._validate_turn(text, transcription_confidence)
        ctx = TurnContext(session_id=session_id, text=text.strip(),
                          transcription_confidence=transcription_confidence)
        return await self._handle_turn(ctx)

    async def _process_turn(self, ctx: TurnContext) -> TurnResult:
        await self._ensure_loaded(ctx.session_id)
        try:
            async with self.store.lease(ctx.session_id) as session:
                return await self._run_turn(session, ctx)
        except SessionNotFoundError:
            # the session finished while this turn was queued
            await self._ensure_loaded(ctx.session_id)
            raise

    async def _run_turn(self, session: Session, ctx: TurnContext) -> TurnResult:
        self.state_machine.require_active(session)
        profile = self.store.profile(session.id)

        user_message = Message.from_user(ctx.text, ctx.transcription_confidence)
        session.append(user_message)
        session.emotional_state = self.inferrer.infer(session.messages)
        disengagement = detect_disengagement_patterns(session.messages)

        handoff = self._apply_handoff(session, profile)
        personality = self.catalog.require(session.agent_id)

        analysis = await self.scorer.analyze(
            ctx.text,
            AnalysisConfig(strictness=profile.strictness),
            level=profile.proficiency_level,
            topic=session.topic,
        )
        reply = await self._agent_reply(session, personality, profile, analysis, ctx.text, disengagement)

        feedback = self._build_feedback(session, personality, analysis)
        agent_message = Message.from_agent(reply.text, personality.id, feedback)
        session.append(agent_message)

        session.metrics.record_turn(
            grammar=analysis.grammar_score,
            fluency=analysis.fluency_score,
            vocabulary=analysis.vocabulary_score,
            errors=len(analysis.errors),
            words=word_count(ctx.text),
        )

        await self._persist_turn(session, [user_message, agent_message], full_write=handoff is not None)

        return TurnResult(
            session_id=session.id,
            agent_reply=reply,
            feedback=feedback,
            analysis=analysis,
            emotional_state=session.emotional_state,
            handoff=handoff,
            disengagement=disengagement,
            user_message=user_message,
            agent_message=agent_message,
        )

    def _apply_handoff(self, session: Session, profile: UserProfile) -> Optional[HandoffRecord]:
        rec = self.handoff_engine.recommend_agent_handoff(session.agent_id, session.messages, profile)
        if rec is None or rec.agent_id == session.agent_id or rec.agent_id not in self.catalog:
            return None

        record = HandoffRecord(
            from_agent=session.agent_id,
            to_agent=rec.agent_id,
            reason=rec.reason,
            confidence=rec.confidence,
        )
        session.agent_id = rec.agent_id
        session.handoffs.append(record)
        session.metrics.handoffs += 1
        logger.info(f"Handoff in {session.id}: {record.from_agent} -> {record.to_agent} ({record.reason})")
        return record

    async def _agent_reply(
        self,
        session: Session,
        personality: AgentPersonality,
        profile: UserProfile,
        analysis: GrammarAnalysis,
        text: str,
        disengagement: List[DisengagementPattern],
    ) -> AgentReply:
        tone = self.inferrer.emotional_tone(session.emotional_state, disengagement)
        if self.response_strategy is None:
            return fallback_reply(personality, tone)

        context = AgentContext(
            session_id=session.id,
            user_text=text,
            history=list(session.messages),
            profile=profile,
            emotional_state=session.emotional_state,
            topic=session.topic,
            error_summaries=[e.description for e in analysis.errors],
            disengagement=disengagement,
        )
        try:
            return await call_with_timeout(
                self.response_strategy.generate_response(personality, context),
                self.settings.model_timeout_seconds,
            )
        except ExternalServiceError as e:
            logger.warning(f"Agent response unavailable for {session.id}, using fallback: {e}")
        except Exception as e:
            logger.error(f"Agent response error for {session.id}, using fallback: {e}")
        return fallback_reply(personality, tone)

    def _build_feedback(
        self,
        session: Session,
        personality: AgentPersonality,
        analysis: GrammarAnalysis,
    ) -> List[FeedbackInstance]:
        feedback = [
            FeedbackInstance(
                type=FeedbackType.VOCABULARY_TIP if error.type == "vocabulary" else FeedbackType.CORRECTION,
                message=error.description,
                severity=error.severity,
                start=error.start,
                end=error.end,
                suggestion=error.suggestion,
                confidence=analysis.confidence,
                source=(FeedbackSource.REASONING_MODEL if error.source == "reasoning-model"
                        else FeedbackSource.RULE_ENGINE),
            )
            for error in analysis.errors
        ]

        turn = len(session.user_messages)
        frequency = personality.strategy.encouragement_frequency
        if not analysis.errors and (frequency == "high" or (frequency == "medium" and turn % 2 == 0)):
            feedback.append(FeedbackInstance(
                type=FeedbackType.ENCOURAGEMENT,
                message=personality.encouragement(turn),
                confidence=1.0,
                source=FeedbackSource.ORCHESTRATOR,
            ))

        if turn % MILESTONE_EVERY == 0:
            feedback.append(FeedbackInstance(
                type=FeedbackType.MILESTONE,
                message=f"That's {turn} turns in this session. Great persistence!",
                confidence=1.0,
                source=FeedbackSource.ORCHESTRATOR,
            ))
        return feedback

    async def _persist_turn(self, session: Session, messages: List[Message], full_write: bool = False):
        """Best effort: a failed write is logged and healed by the final put."""
        try:
            if full_write:
                await self._write(self.repository.put_session(session))
            else:
                for message in messages:
                    await self._write(self.repository.append_message(session.id, message))
        except ExternalServiceError as e:
            logger.error(f"Failed to persist turn for {session.id}: {e}")

    # --- end / abandon -------------------------------------------------

    async def end_session(self, session_id: str) -> Session:
        """
        active → completed plus one final write. Retrying after a
        completed end is a no-op; a failed final write raises and leaves
        the session in the store so the retry writes again.
        """
        if session_id not in self.store:
            stored = await self._read(lambda: self.repository.get_session(session_id))
            if stored is None:
                raise SessionNotFoundError(session_id)
            if stored.status == SessionStatus.COMPLETED:
                return stored
            if stored.status != SessionStatus.ACTIVE:
                raise SessionInactiveError(session_id, stored.status.value)
            self.store.add(stored, await self._load_profile(stored.user_id))

        try:
            async with self.store.lease(session_id) as session:
                if session.status != SessionStatus.COMPLETED:
                    self.state_machine.complete(session)
                profile = self.store.profile(session_id)
                await self._write(self.repository.put_session(session))
        except SessionNotFoundError:
            # a concurrent end already completed, wrote and evicted it
            stored = await self._read(lambda: self.repository.get_session(session_id))
            if stored is not None and stored.status == SessionStatus.COMPLETED:
                return stored
            raise

        self.store.evict(session_id)
        logger.info(
            f"Session {session_id} completed: {session.metrics.turns} turns, "
            f"avg grammar {session.metrics.avg_grammar:.2f}"
        )

        await self._update_user_progress(profile, session)
        self._schedule_recommendations(profile)
        return session

    async def _update_user_progress(self, profile: UserProfile, session: Session):
        try:
            current = await self._read(lambda: self.repository.get_user_profile(profile.user_id)) or profile
            current.sessions_completed += 1
            current.total_practice_minutes += session.metrics.duration_seconds / 60
            await self._write(self.repository.put_user_profile(current))
        except ExternalServiceError as e:
            logger.error(f"Failed to update progress for {profile.user_id}: {e}")

    async def abandon_idle_sessions(self, now: Optional[datetime] = None) -> List[str]:
        """
        Externally triggered sweep: active sessions idle past the limit
        become abandoned. Also retries final writes that failed earlier.
        """
        now = now or utc_now()
        cutoff = now - timedelta(minutes=self.settings.session_idle_minutes)
        abandoned = []

        for session_id in self.store.idle_session_ids(cutoff):
            try:
                async with self.store.lease(session_id) as session:
                    if not session.is_active or session.last_activity >= cutoff:
                        continue
                    self.state_machine.abandon(session, now)
                    abandoned.append(session_id)
                    logger.info(f"Session {session_id} abandoned after idle timeout")
            except SessionNotFoundError:
                continue

        for session_id in self.store.terminal_session_ids():
            await self._flush_terminal(session_id)
        return abandoned

    async def _flush_terminal(self, session_id: str):
        try:
            async with self.store.lease(session_id) as session:
                await self._write(self.repository.put_session(session))
        except SessionNotFoundError:
            return
        except ExternalServiceError as e:
            logger.error(f"Final write for {session_id} failed, will retry on next sweep: {e}")
            return
        self.store.evict(session_id)

    # --- reads ---------------------------------------------------------

    async def get_session(self, session_id: str) -> Session:
        live = self.store.peek(session_id)
        if live is not None:
            return Session.from_dict(live.to_dict())
        stored = await self._read(lambda: self.repository.get_session(session_id))
        if stored is None:
            raise SessionNotFoundError(session_id)
        return stored

    async def get_user_sessions(self, user_id: str, limit: int = 10) -> List[Session]:
        return await self._read(lambda: self.repository.list_user_sessions(user_id, limit))

    async def get_recommendations(self, user_id: str) -> SessionPlan:
        profile = await self._load_profile(user_id)
        try:
            history = await self.get_user_sessions(user_id)
        except ExternalServiceError as e:
            logger.warning(f"Session history unavailable for {user_id}: {e}")
            history = []
        return await self.recommender.generate_session_recommendations(profile, history)

    # --- background ----------------------------------------------------

    def _schedule_recommendations(self, profile: UserProfile):
        if self.recommendation_sink is None:
            return
        task = asyncio.create_task(self._deliver_recommendations(profile))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _deliver_recommendations(self, profile: UserProfile):
        try:
            history = await self.get_user_sessions(profile.user_id)
            plan = await self.recommender.generate_session_recommendations(profile, history)
            await self.recommendation_sink(plan)
        except Exception as e:
            logger.error(f"Recommendation delivery failed for {profile.user_id}: {e}")

    async def drain(self):
        """Wait for background recommendation tasks (tests, shutdown)."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
