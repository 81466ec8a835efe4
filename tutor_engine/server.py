from fastapi import FastAPI, APIRouter, HTTPException, Query
from starlette.middleware.cors import CORSMiddleware
from typing import List, Optional, Dict, Any
import logging

from .agents import ModelResponseStrategy
from .config import Settings
from .errors import TutorEngineError
from .gemini_analyzer import GeminiReasoningModel
from .grammar import GrammarScorer
from .middleware import TurnStats, logging_interceptor, timing_interceptor
from .orchestrator import SessionOrchestrator
from .persistence import InMemoryRepository, MongoRepository
from .recommendations import RecommendationEngine
from .schemas import (
    AgentResponse,
    AgentSummary,
    FeedbackOut,
    HandoffInfo,
    MessageCreate,
    SessionCreate,
    SessionCreated,
    SessionDocument,
    SessionEnded,
    TurnResponse,
)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def build_orchestrator(settings: Settings, stats: Optional[TurnStats] = None) -> SessionOrchestrator:
    """Wire the default collaborators from settings."""
    if settings.use_mongo:
        repository = MongoRepository(settings.mongodb_uri, settings.database_name)
    else:
        repository = InMemoryRepository()

    model = None
    strategy = None
    if settings.google_api_key:
        model = GeminiReasoningModel(settings.google_api_key, settings.gemini_model)
        strategy = ModelResponseStrategy(model, timeout=settings.model_timeout_seconds)

    return SessionOrchestrator(
        repository=repository,
        response_strategy=strategy,
        scorer=GrammarScorer(model, timeout=settings.model_timeout_seconds),
        recommender=RecommendationEngine(model, timeout=settings.model_timeout_seconds),
        interceptors=[logging_interceptor(), timing_interceptor(stats or TurnStats())],
        settings=settings,
    )


def _http_error(e: TutorEngineError) -> HTTPException:
    if e.status_code >= 500:
        logger.error(f"Request failed: {e}")
    return HTTPException(status_code=e.status_code, detail=e.message)


def _agent_summary(personality) -> AgentSummary:
    data = personality.to_dict()
    return AgentSummary(
        id=data["id"],
        name=data["name"],
        style=data["style"],
        traits=data["traits"],
        specialties=data["specialties"],
        voice=data["voice"],
        strategy=data["strategy"],
    )


def create_app(
    orchestrator: Optional[SessionOrchestrator] = None,
    settings: Optional[Settings] = None,
    turn_stats: Optional[TurnStats] = None,
) -> FastAPI:
    """
    Build the API. An injected orchestrator brings its own interceptors,
    so /api/stats is only served when the matching TurnStats is passed too.
    """
    settings = settings or Settings.from_env()
    if orchestrator is None:
        turn_stats = turn_stats or TurnStats()
        orchestrator = build_orchestrator(settings, turn_stats)

    app = FastAPI(title="Tutor Engine API")
    app.state.orchestrator = orchestrator
    app.state.turn_stats = turn_stats

    # Create a router with the /api prefix
    api_router = APIRouter(prefix="/api")

    @api_router.get("/health")
    async def health():
        return {"status": "ok"}

    if turn_stats is not None:
        @api_router.get("/stats")
        async def stats():
            return turn_stats.to_dict()

    @api_router.get("/agents", response_model=List[AgentSummary])
    async def list_agents():
        return [_agent_summary(p) for p in orchestrator.catalog.all()]

    # ── Session Endpoints ─────────────────────────────────────────────────

    @api_router.post("/sessions", response_model=SessionCreated)
    async def create_session(payload: SessionCreate):
        try:
            start = await orchestrator.create_session(payload.userId, payload.agentId, payload.topic)
        except TutorEngineError as e:
            raise _http_error(e)
        return SessionCreated(
            sessionId=start.session_id,
            activeAgent=_agent_summary(start.active_agent),
            greeting=start.greeting,
            recommendationReason=start.recommendation.reason,
        )

    @api_router.post("/sessions/{session_id}/messages", response_model=TurnResponse)
    async def send_message(session_id: str, payload: MessageCreate):
        try:
            result = await orchestrator.send_message(session_id, payload.text, payload.transcriptionConfidence)
        except TutorEngineError as e:
            raise _http_error(e)

        reply = result.agent_reply
        handoff = None
        if result.handoff:
            handoff = HandoffInfo(
                fromAgent=result.handoff.from_agent,
                toAgent=result.handoff.to_agent,
                reason=result.handoff.reason,
                confidence=result.handoff.confidence,
            )
        return TurnResponse(
            agentResponse=AgentResponse(
                text=reply.text,
                agentId=reply.agent_id,
                agentName=reply.agent_name,
                voice=reply.voice.to_dict(),
                tone=reply.tone.value,
                isFallback=reply.is_fallback,
            ),
            feedback=[FeedbackOut(**f.to_dict()) for f in result.feedback],
            handoffInfo=handoff,
            analysis=result.analysis.to_dict(),
            emotionalState=result.emotional_state.to_dict(),
            disengagement=[p.to_dict() for p in result.disengagement],
        )

    @api_router.post("/sessions/{session_id}/end", response_model=SessionEnded)
    async def end_session(session_id: str):
        try:
            session = await orchestrator.end_session(session_id)
        except TutorEngineError as e:
            raise _http_error(e)
        return SessionEnded(
            sessionId=session.id,
            status=session.status.value,
            metrics=session.metrics.to_dict(),
        )

    @api_router.get("/sessions/{session_id}", response_model=SessionDocument)
    async def get_session(session_id: str):
        try:
            session = await orchestrator.get_session(session_id)
        except TutorEngineError as e:
            raise _http_error(e)
        return SessionDocument(**session.to_dict())

    # ── User Endpoints ────────────────────────────────────────────────────

    @api_router.get("/users/{user_id}/sessions", response_model=List[SessionDocument])
    async def get_user_sessions(
        user_id: str,
        limit: int = Query(10, ge=1, le=100, description="Maximum number of sessions to return"),
    ):
        try:
            sessions = await orchestrator.get_user_sessions(user_id, limit)
        except TutorEngineError as e:
            raise _http_error(e)
        return [SessionDocument(**s.to_dict()) for s in sessions]

    @api_router.get("/users/{user_id}/recommendations")
    async def get_recommendations(user_id: str) -> Dict[str, Any]:
        try:
            plan = await orchestrator.get_recommendations(user_id)
        except TutorEngineError as e:
            raise _http_error(e)
        return plan.to_dict()

    # Include the router in the main app
    app.include_router(api_router)

    app.add_middleware(
        CORSMiddleware,
        allow_credentials=True,
        allow_origins=settings.cors_origins.split(','),
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("shutdown")
    async def shutdown_repository():
        await orchestrator.drain()
        close = getattr(orchestrator.repository, "close", None)
        if close:
            close()

    return app
