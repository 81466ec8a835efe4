"""
Session Persistence

Repository boundary for sessions and learner profiles. The engine only
ever talks to the SessionRepository protocol; MongoRepository is the
motor-backed implementation, InMemoryRepository serves tests and local
runs. Reads are idempotent and may be retried; writes never are.
"""

from typing import Awaitable, Callable, Dict, List, Optional, Protocol, TypeVar
import asyncio
import copy
import logging

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import PyMongoError

from .config import DATABASE_NAME, MONGODB_URI
from .errors import ExternalServiceError
from .gemini_analyzer import call_with_timeout
from .models import Message, Session, UserProfile

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SessionRepository(Protocol):
    async def get_session(self, session_id: str) -> Optional[Session]:
        ...

    async def put_session(self, session: Session) -> None:
        ...

    async def append_message(self, session_id: str, message: Message) -> None:
        ...

    async def get_user_profile(self, user_id: str) -> Optional[UserProfile]:
        ...

    async def put_user_profile(self, profile: UserProfile) -> None:
        ...

    async def list_user_sessions(self, user_id: str, limit: int = 20) -> List[Session]:
        ...


def session_to_doc(session: Session) -> Dict:
    return session.to_dict()


def doc_to_session(doc: Dict) -> Session:
    doc = {k: v for k, v in doc.items() if k != "_id"}
    return Session.from_dict(doc)


async def with_read_retries(
    read: Callable[[], Awaitable[T]],
    attempts: int = 3,
    timeout: float = 5.0,
    backoff: float = 0.05,
) -> T:
    """
    Run an idempotent read with a timeout, retrying on ExternalServiceError.
    Only for reads: a retried write could apply twice.
    """
    last_error: Optional[ExternalServiceError] = None
    for attempt in range(1, attempts + 1):
        try:
            return await call_with_timeout(read(), timeout, service="persistence")
        except ExternalServiceError as e:
            last_error = e
            logger.warning(f"Persistence read failed (attempt {attempt}/{attempts}): {e}")
            if attempt < attempts:
                await asyncio.sleep(backoff * attempt)
    raise last_error


class InMemoryRepository:
    """Dict-backed repository. Stores documents, not live objects."""

    def __init__(self):
        self.sessions: Dict[str, Dict] = {}
        self.profiles: Dict[str, Dict] = {}

    async def get_session(self, session_id: str) -> Optional[Session]:
        doc = self.sessions.get(session_id)
        return doc_to_session(copy.deepcopy(doc)) if doc else None

    async def put_session(self, session: Session) -> None:
        self.sessions[session.id] = session_to_doc(session)

    async def append_message(self, session_id: str, message: Message) -> None:
        doc = self.sessions.get(session_id)
        if doc is None:
            raise ExternalServiceError("persistence", f"no stored session {session_id}")
        doc["messages"].append(message.to_dict())
        doc["last_activity"] = message.timestamp.isoformat()

    async def get_user_profile(self, user_id: str) -> Optional[UserProfile]:
        doc = self.profiles.get(user_id)
        return UserProfile.from_dict(doc) if doc else None

    async def put_user_profile(self, profile: UserProfile) -> None:
        self.profiles[profile.user_id] = profile.to_dict()

    async def list_user_sessions(self, user_id: str, limit: int = 20) -> List[Session]:
        docs = [d for d in self.sessions.values() if d["user_id"] == user_id]
        docs.sort(key=lambda d: d["started_at"], reverse=True)
        return [doc_to_session(copy.deepcopy(d)) for d in docs[:limit]]


class MongoRepository:
    """motor-backed repository: collections `sessions` and `users`."""

    def __init__(
        self,
        uri: str = MONGODB_URI,
        database: str = DATABASE_NAME,
        client: Optional[AsyncIOMotorClient] = None,
    ):
        self.client = client or AsyncIOMotorClient(uri)
        self.db = self.client[database]
        self.sessions = self.db.sessions
        self.users = self.db.users

    async def get_session(self, session_id: str) -> Optional[Session]:
        try:
            doc = await self.sessions.find_one({"id": session_id}, {"_id": 0})
        except PyMongoError as e:
            raise ExternalServiceError("persistence", str(e)) from e
        return doc_to_session(doc) if doc else None

    async def put_session(self, session: Session) -> None:
        try:
            await self.sessions.replace_one({"id": session.id}, session_to_doc(session), upsert=True)
        except PyMongoError as e:
            raise ExternalServiceError("persistence", str(e)) from e

    async def append_message(self, session_id: str, message: Message) -> None:
        try:
            await self.sessions.update_one(
                {"id": session_id},
                {
                    "$push": {"messages": message.to_dict()},
                    "$set": {"last_activity": message.timestamp.isoformat()},
                },
            )
        except PyMongoError as e:
            raise ExternalServiceError("persistence", str(e)) from e

    async def get_user_profile(self, user_id: str) -> Optional[UserProfile]:
        try:
            doc = await self.users.find_one({"user_id": user_id}, {"_id": 0})
        except PyMongoError as e:
            raise ExternalServiceError("persistence", str(e)) from e
        return UserProfile.from_dict(doc) if doc else None

    async def put_user_profile(self, profile: UserProfile) -> None:
        try:
            await self.users.replace_one({"user_id": profile.user_id}, profile.to_dict(), upsert=True)
        except PyMongoError as e:
            raise ExternalServiceError("persistence", str(e)) from e

    async def list_user_sessions(self, user_id: str, limit: int = 20) -> List[Session]:
        try:
            cursor = self.sessions.find({"user_id": user_id}, {"_id": 0}).sort("started_at", -1).limit(limit)
            docs = await cursor.to_list(length=limit)
        except PyMongoError as e:
            raise ExternalServiceError("persistence", str(e)) from e
        return [doc_to_session(d) for d in docs]

    def close(self):
        self.client.close()
