"""
Keyed Session Store

In-process home of live session aggregates. Each session id gets its
own asyncio.Lock, so turns for one session run strictly one at a time
while different sessions never wait on each other. Entries are evicted
when the session reaches a terminal state.
"""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Dict, List, Optional
import asyncio
import logging

from .errors import SessionNotFoundError
from .models import Session, UserProfile

logger = logging.getLogger(__name__)


class SessionStore:
    """Actor-per-key store: one lock guards one session aggregate."""

    def __init__(self):
        self._sessions: Dict[str, Session] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._profiles: Dict[str, UserProfile] = {}

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def add(self, session: Session, profile: Optional[UserProfile] = None) -> Session:
        """Register a session; if the id is already live, the live copy wins."""
        existing = self._sessions.get(session.id)
        if existing is not None:
            return existing
        self._sessions[session.id] = session
        self._locks[session.id] = asyncio.Lock()
        self._profiles[session.id] = profile or UserProfile.default(session.user_id)
        return session

    def profile(self, session_id: str) -> UserProfile:
        profile = self._profiles.get(session_id)
        if profile is None:
            raise SessionNotFoundError(session_id)
        return profile

    def peek(self, session_id: str) -> Optional[Session]:
        """Unlocked read, for snapshots only."""
        return self._sessions.get(session_id)

    @asynccontextmanager
    async def lease(self, session_id: str) -> AsyncIterator[Session]:
        """Exclusive access to one session for the duration of the block."""
        lock = self._locks.get(session_id)
        if lock is None:
            raise SessionNotFoundError(session_id)
        async with lock:
            session = self._sessions.get(session_id)
            if session is None:
                # evicted while we were queued behind another turn
                raise SessionNotFoundError(session_id)
            yield session

    def evict(self, session_id: str):
        self._sessions.pop(session_id, None)
        self._locks.pop(session_id, None)
        self._profiles.pop(session_id, None)
        logger.debug(f"Evicted session {session_id}")

    def idle_session_ids(self, cutoff: datetime) -> List[str]:
        return [
            sid for sid, session in self._sessions.items()
            if session.is_active and session.last_activity < cutoff
        ]

    def terminal_session_ids(self) -> List[str]:
        """Finished sessions still held because their final write failed."""
        return [sid for sid, session in self._sessions.items() if session.ended_at is not None]
