"""
Tests for Session Persistence

In-memory repository semantics, document mapping, read retries, and the
motor-backed repository against a stub client.
"""

import asyncio
import pytest
import sys
from pathlib import Path

# Add parent to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from pymongo.errors import PyMongoError

from tutor_engine.errors import ExternalServiceError
from tutor_engine.models import (
    FeedbackInstance, FeedbackType, HandoffRecord, Message, Session, SessionStatus, UserProfile,
)
from tutor_engine.persistence import (
    InMemoryRepository, MongoRepository, doc_to_session, session_to_doc, with_read_retries,
)


def _session(session_id="sess_1", user_id="u1"):
    session = Session(id=session_id, user_id=user_id, agent_id="friendly-tutor",
                      status=SessionStatus.ACTIVE, topic="Travel and Culture")
    session.append(Message.from_agent("Hello!", "friendly-tutor"))
    return session


class TestDocumentMapping:
    """Test cases for session documents."""

    def test_round_trip_keeps_nested_records(self):
        session = _session()
        feedback = FeedbackInstance(FeedbackType.CORRECTION, "Use 'went'", start=2, end=7)
        session.append(Message.from_user("I am go", 0.7))
        session.append(Message.from_agent("Nice try!", "friendly-tutor", [feedback]))
        session.handoffs.append(HandoffRecord("strict-teacher", "friendly-tutor", "high frustration", 0.8))

        restored = doc_to_session(session_to_doc(session))

        assert restored.messages[1].transcription_confidence == 0.7
        assert restored.messages[2].feedback[0].type == FeedbackType.CORRECTION
        assert restored.handoffs[0].reason == "high frustration"
        assert restored.status == SessionStatus.ACTIVE

    def test_mongo_id_dropped(self):
        doc = session_to_doc(_session())
        doc["_id"] = "object-id"
        assert doc_to_session(doc).id == "sess_1"


class TestInMemoryRepository:
    """Test cases for InMemoryRepository."""

    def test_reads_are_copies(self):
        repo = InMemoryRepository()
        session = _session()

        async def run():
            await repo.put_session(session)
            first = await repo.get_session("sess_1")
            first.messages.clear()
            return await repo.get_session("sess_1")

        assert len(asyncio.run(run()).messages) == 1

    def test_append_message(self):
        repo = InMemoryRepository()

        async def run():
            await repo.put_session(_session())
            await repo.append_message("sess_1", Message.from_user("hi there"))
            return await repo.get_session("sess_1")

        assert [m.content for m in asyncio.run(run()).messages] == ["Hello!", "hi there"]

    def test_append_without_session_fails(self):
        with pytest.raises(ExternalServiceError):
            asyncio.run(InMemoryRepository().append_message("missing", Message.from_user("hi")))

    def test_missing_reads_return_none(self):
        repo = InMemoryRepository()
        assert asyncio.run(repo.get_session("missing")) is None
        assert asyncio.run(repo.get_user_profile("missing")) is None

    def test_profiles(self):
        repo = InMemoryRepository()

        async def run():
            await repo.put_user_profile(UserProfile("u1", learning_goals=["grammar-accuracy"]))
            return await repo.get_user_profile("u1")

        assert asyncio.run(run()).learning_goals == ["grammar-accuracy"]

    def test_list_user_sessions_newest_first(self):
        repo = InMemoryRepository()
        older, newer, other = _session("old"), _session("new"), _session("x", user_id="u2")
        newer.started_at = older.started_at.replace(year=older.started_at.year + 1)

        async def run():
            for s in (older, newer, other):
                await repo.put_session(s)
            return await repo.list_user_sessions("u1", limit=5)

        assert [s.id for s in asyncio.run(run())] == ["new", "old"]


class TestReadRetries:
    """Test cases for with_read_retries."""

    def test_retries_then_succeeds(self):
        attempts = []

        async def read():
            attempts.append(1)
            if len(attempts) < 3:
                raise ExternalServiceError("persistence", "flaky")
            return "ok"

        assert asyncio.run(with_read_retries(read, attempts=3, backoff=0)) == "ok"
        assert len(attempts) == 3

    def test_gives_up_after_attempts(self):
        async def read():
            raise ExternalServiceError("persistence", "down")

        with pytest.raises(ExternalServiceError):
            asyncio.run(with_read_retries(read, attempts=2, backoff=0))

    def test_timeout_counts_as_failure(self):
        async def read():
            await asyncio.sleep(1)

        with pytest.raises(ExternalServiceError):
            asyncio.run(with_read_retries(read, attempts=1, timeout=0.01))


# ── motor stand-ins ───────────────────────────────────────────────────────

class _Cursor:
    def __init__(self, docs):
        self.docs = docs

    def sort(self, key, direction):
        self.docs = sorted(self.docs, key=lambda d: d[key], reverse=direction < 0)
        return self

    def limit(self, n):
        self.docs = self.docs[:n]
        return self

    async def to_list(self, length):
        return self.docs[:length]


class _Collection:
    def __init__(self, fail=False):
        self.docs = []
        self.fail = fail

    def _check(self):
        if self.fail:
            raise PyMongoError("connection refused")

    def _match(self, query):
        return [d for d in self.docs if all(d.get(k) == v for k, v in query.items())]

    async def find_one(self, query, projection=None):
        self._check()
        found = self._match(query)
        return dict(found[0]) if found else None

    async def replace_one(self, query, doc, upsert=False):
        self._check()
        self.docs = [d for d in self.docs if d not in self._match(query)]
        self.docs.append(dict(doc))

    async def update_one(self, query, update):
        self._check()
        for d in self._match(query):
            d.setdefault("messages", []).append(update["$push"]["messages"])
            d.update(update["$set"])

    def find(self, query, projection=None):
        self._check()
        return _Cursor(self._match(query))


class _Client:
    def __init__(self, fail=False):
        self.db = type("Db", (), {})()
        self.db.sessions = _Collection(fail)
        self.db.users = _Collection(fail)
        self.closed = False

    def __getitem__(self, name):
        return self.db

    def close(self):
        self.closed = True


class TestMongoRepository:
    """Test cases for MongoRepository against a stub motor client."""

    def test_session_lifecycle(self):
        repo = MongoRepository(client=_Client())

        async def run():
            await repo.put_session(_session())
            await repo.append_message("sess_1", Message.from_user("hello"))
            return await repo.get_session("sess_1"), await repo.list_user_sessions("u1")

        stored, listed = asyncio.run(run())
        assert [m.content for m in stored.messages] == ["Hello!", "hello"]
        assert [s.id for s in listed] == ["sess_1"]

    def test_profiles(self):
        repo = MongoRepository(client=_Client())

        async def run():
            await repo.put_user_profile(UserProfile("u1", proficiency_level="advanced"))
            return await repo.get_user_profile("u1")

        assert asyncio.run(run()).proficiency_level == "advanced"

    def test_driver_errors_become_service_errors(self):
        repo = MongoRepository(client=_Client(fail=True))
        with pytest.raises(ExternalServiceError):
            asyncio.run(repo.get_session("sess_1"))
        with pytest.raises(ExternalServiceError):
            asyncio.run(repo.put_session(_session()))
        with pytest.raises(ExternalServiceError):
            asyncio.run(repo.list_user_sessions("u1"))

    def test_close(self):
        client = _Client()
        MongoRepository(client=client).close()
        assert client.closed
