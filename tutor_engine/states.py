"""
Session State Machine

created → active → completed | abandoned

No transition leaves a terminal state. Requests against a session that
is not active fail with SessionInactiveError instead of silently no-oping.
"""

from datetime import datetime
from typing import Dict, List, Optional

from .errors import SessionInactiveError
from .models import Session, SessionStatus, StateTransition, utc_now


class SessionStateMachine:
    """Guards every status change on a Session."""

    # from_state -> [to_states]; ACTIVE -> ACTIVE is the per-turn self-loop
    VALID_TRANSITIONS: Dict[SessionStatus, List[SessionStatus]] = {
        SessionStatus.CREATED: [SessionStatus.ACTIVE],
        SessionStatus.ACTIVE: [SessionStatus.ACTIVE, SessionStatus.COMPLETED, SessionStatus.ABANDONED],
        SessionStatus.COMPLETED: [],
        SessionStatus.ABANDONED: [],
    }

    TERMINAL_STATES = (SessionStatus.COMPLETED, SessionStatus.ABANDONED)

    def can_transition(self, from_state: SessionStatus, to_state: SessionStatus) -> bool:
        return to_state in self.VALID_TRANSITIONS[from_state]

    def is_terminal(self, state: SessionStatus) -> bool:
        return state in self.TERMINAL_STATES

    def transition(
        self,
        session: Session,
        to_state: SessionStatus,
        trigger: str,
        now: Optional[datetime] = None,
    ) -> StateTransition:
        if not self.can_transition(session.status, to_state):
            raise SessionInactiveError(session.id, session.status.value)

        now = now or utc_now()
        record = StateTransition(session.id, session.status, to_state, trigger, now)
        session.status = to_state
        session.transitions.append(record)
        if self.is_terminal(to_state):
            session.ended_at = now
            session.metrics.duration_seconds = (now - session.started_at).total_seconds()
        return record

    def activate(self, session: Session, now: Optional[datetime] = None) -> StateTransition:
        return self.transition(session, SessionStatus.ACTIVE, "greeting", now)

    def require_active(self, session: Session):
        if session.status != SessionStatus.ACTIVE:
            raise SessionInactiveError(session.id, session.status.value)

    def complete(self, session: Session, now: Optional[datetime] = None) -> StateTransition:
        return self.transition(session, SessionStatus.COMPLETED, "end requested", now)

    def abandon(self, session: Session, now: Optional[datetime] = None) -> StateTransition:
        return self.transition(session, SessionStatus.ABANDONED, "idle timeout", now)
