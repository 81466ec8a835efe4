"""
Tests for the HTTP surface

Drives the FastAPI app through TestClient with an in-memory orchestrator.
"""

import pytest
import sys
from pathlib import Path

# Add parent to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from fastapi.testclient import TestClient

from tutor_engine.agents import FRIENDLY_TUTOR, STRICT_TEACHER
from tutor_engine.config import Settings
from tutor_engine.middleware import TurnStats, timing_interceptor
from tutor_engine.orchestrator import SessionOrchestrator
from tutor_engine.persistence import InMemoryRepository
from tutor_engine.server import create_app
from conftest import FlakyRepository


@pytest.fixture
def repository():
    return FlakyRepository(InMemoryRepository())


@pytest.fixture
def client(repository):
    orchestrator = SessionOrchestrator(repository=repository)
    app = create_app(orchestrator=orchestrator, settings=Settings())
    with TestClient(app) as client:
        yield client


def _start(client, agent_id=FRIENDLY_TUTOR):
    response = client.post("/api/sessions", json={"userId": "u1", "agentId": agent_id})
    assert response.status_code == 200
    return response.json()["sessionId"]


class TestMetaEndpoints:
    """Test cases for health and the agent catalog."""

    def test_health(self, client):
        assert client.get("/api/health").json() == {"status": "ok"}

    def test_agents(self, client):
        agents = client.get("/api/agents").json()
        assert len(agents) == 4
        assert {a["id"] for a in agents} >= {FRIENDLY_TUTOR, STRICT_TEACHER}


class TestSessionEndpoints:
    """Test cases for the session lifecycle over HTTP."""

    def test_create_session(self, client):
        response = client.post("/api/sessions", json={"userId": "u1"})
        data = response.json()
        assert response.status_code == 200
        assert data["sessionId"].startswith("sess_")
        assert data["activeAgent"]["id"] == "conversation-partner"
        assert data["greeting"]

    def test_unknown_agent_is_400(self, client):
        response = client.post("/api/sessions", json={"userId": "u1", "agentId": "pirate-captain"})
        assert response.status_code == 400

    def test_send_message(self, client):
        session_id = _start(client)
        response = client.post(
            f"/api/sessions/{session_id}/messages",
            json={"text": "I am go to the store yesterday", "transcriptionConfidence": 0.9},
        )
        data = response.json()

        assert response.status_code == 200
        assert data["agentResponse"]["isFallback"] is True
        assert data["agentResponse"]["agentId"] == FRIENDLY_TUTOR
        corrections = [f for f in data["feedback"] if f["type"] == "correction"]
        assert corrections[0]["severity"] == "high"
        assert data["analysis"]["grammar_score"] < 1.0
        assert data["handoffInfo"] is None
        assert data["disengagement"] == []

    def test_handoff_info(self, client):
        session_id = _start(client, STRICT_TEACHER)
        texts = ["this is too hard", "I don't understand", "I'm so confused"]
        responses = [
            client.post(f"/api/sessions/{session_id}/messages", json={"text": t}).json() for t in texts
        ]
        handoffs = [r["handoffInfo"] for r in responses if r["handoffInfo"]]
        assert handoffs[0] == {
            "fromAgent": STRICT_TEACHER,
            "toAgent": FRIENDLY_TUTOR,
            "reason": "high frustration",
            "confidence": 0.8,
        }

    def test_empty_message_is_400(self, client):
        session_id = _start(client)
        response = client.post(f"/api/sessions/{session_id}/messages", json={"text": "   "})
        assert response.status_code == 400

    def test_out_of_range_confidence_is_422(self, client):
        session_id = _start(client)
        response = client.post(
            f"/api/sessions/{session_id}/messages",
            json={"text": "hello", "transcriptionConfidence": 1.5},
        )
        assert response.status_code == 422

    def test_unknown_session_is_404(self, client):
        assert client.post("/api/sessions/sess_missing/messages", json={"text": "hi"}).status_code == 404
        assert client.get("/api/sessions/sess_missing").status_code == 404

    def test_end_then_send_is_409(self, client):
        session_id = _start(client)
        ended = client.post(f"/api/sessions/{session_id}/end")
        assert ended.status_code == 200
        assert ended.json()["status"] == "completed"

        response = client.post(f"/api/sessions/{session_id}/messages", json={"text": "hello again"})
        assert response.status_code == 409
        assert client.get(f"/api/sessions/{session_id}").json()["status"] == "completed"

    def test_persistence_failure_is_503(self, client, repository):
        session_id = _start(client)
        repository.fail.add("put_session")
        assert client.post(f"/api/sessions/{session_id}/end").status_code == 503

        repository.fail.clear()
        assert client.post(f"/api/sessions/{session_id}/end").status_code == 200


class TestUserEndpoints:
    """Test cases for per-user reads."""

    def test_sessions_and_recommendations(self, client):
        session_id = _start(client)
        client.post(f"/api/sessions/{session_id}/end")

        sessions = client.get("/api/users/u1/sessions", params={"limit": 5}).json()
        assert [s["id"] for s in sessions] == [session_id]

        plan = client.get("/api/users/u1/recommendations").json()
        assert plan["user_id"] == "u1"
        assert plan["topics"]
        assert plan["difficulty"]["difficulty"] in ("easy", "medium", "hard", "adaptive")


class TestDefaultWiring:
    """Test cases for the app built from settings alone."""

    def test_turn_stats_exposed(self):
        with TestClient(create_app(settings=Settings())) as client:
            session_id = client.post("/api/sessions", json={"userId": "u2"}).json()["sessionId"]
            client.post(f"/api/sessions/{session_id}/messages", json={"text": "I liked the food there."})
            stats = client.get("/api/stats").json()

        assert stats["turns"] == 1
        assert stats["fallbacks"] == 1
        assert stats["failures"] == 0

    def test_injected_orchestrator_reports_its_stats(self):
        turn_stats = TurnStats()
        orchestrator = SessionOrchestrator(
            repository=InMemoryRepository(), interceptors=[timing_interceptor(turn_stats)])
        app = create_app(orchestrator=orchestrator, settings=Settings(), turn_stats=turn_stats)

        with TestClient(app) as client:
            session_id = _start(client)
            client.post(f"/api/sessions/{session_id}/messages", json={"text": "I liked the food there."})
            assert client.get("/api/stats").json()["turns"] == 1

    def test_stats_not_served_without_matching_counters(self, client):
        assert client.get("/api/stats").status_code == 404


class TestDisengagementOverHttp:
    """Test cases for disengagement patterns in the turn response."""

    def test_minimal_answers_reported(self, client):
        session_id = _start(client)
        for text in ("yes", "no"):
            client.post(f"/api/sessions/{session_id}/messages", json={"text": text})
        data = client.post(f"/api/sessions/{session_id}/messages", json={"text": "ok"}).json()

        assert [p["pattern"] for p in data["disengagement"]] == ["repetitive_responses"]
        assert data["agentResponse"]["tone"] == "encouraging"

    def test_session_document_lists_transitions(self, client):
        session_id = _start(client)
        client.post(f"/api/sessions/{session_id}/end")
        document = client.get(f"/api/sessions/{session_id}").json()
        assert [t["to_state"] for t in document["transitions"]] == ["active", "completed"]
