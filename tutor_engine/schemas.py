"""Request/response models for the HTTP surface."""

from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Optional


# ── Requests ───────────────────────────────────────────────────────────────

class SessionCreate(BaseModel):
    userId: str
    agentId: Optional[str] = None
    topic: Optional[str] = None


class MessageCreate(BaseModel):
    text: str
    transcriptionConfidence: Optional[float] = Field(None, ge=0.0, le=1.0)


# ── Responses ──────────────────────────────────────────────────────────────

class AgentSummary(BaseModel):
    id: str
    name: str
    style: str
    traits: List[str]
    specialties: List[str]
    voice: Dict[str, str]
    strategy: Dict[str, str]


class SessionCreated(BaseModel):
    sessionId: str
    activeAgent: AgentSummary
    greeting: str
    recommendationReason: Optional[str] = None


class FeedbackOut(BaseModel):
    type: str
    message: str
    severity: str
    start: Optional[int] = None
    end: Optional[int] = None
    suggestion: Optional[str] = None
    confidence: float
    source: str


class HandoffInfo(BaseModel):
    fromAgent: str
    toAgent: str
    reason: str
    confidence: float


class AgentResponse(BaseModel):
    text: str
    agentId: str
    agentName: str
    voice: Dict[str, str]
    tone: str
    isFallback: bool = False


class TurnResponse(BaseModel):
    agentResponse: AgentResponse
    feedback: List[FeedbackOut] = []
    handoffInfo: Optional[HandoffInfo] = None
    analysis: Dict[str, Any]
    emotionalState: Dict[str, Any]
    disengagement: List[Dict[str, Any]] = []


class SessionEnded(BaseModel):
    sessionId: str
    status: str
    metrics: Dict[str, Any]


class SessionDocument(BaseModel):
    model_config = ConfigDict(extra="ignore")  # tolerate stored-only fields

    id: str
    user_id: str
    agent_id: str
    status: str
    topic: Optional[str] = None
    messages: List[Dict[str, Any]] = []
    handoffs: List[Dict[str, Any]] = []
    transitions: List[Dict[str, Any]] = []
    metrics: Dict[str, Any] = {}
    started_at: str
    ended_at: Optional[str] = None
    last_activity: str
