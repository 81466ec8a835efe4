"""
Tests for the Session State Machine

Valid transitions, terminal states and finalization side effects.
"""

import pytest
from datetime import datetime, timedelta, timezone
import sys
from pathlib import Path

# Add parent to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from tutor_engine.errors import SessionInactiveError
from tutor_engine.models import Session, SessionStatus
from tutor_engine.states import SessionStateMachine


def _session(**kwargs):
    return Session(id="sess_1", user_id="u1", agent_id="friendly-tutor", **kwargs)


class TestSessionStateMachine:
    """Test cases for SessionStateMachine transitions."""

    def setup_method(self):
        self.machine = SessionStateMachine()

    def test_created_to_active(self):
        session = _session()
        record = self.machine.activate(session)
        assert session.status == SessionStatus.ACTIVE
        assert record.from_state == SessionStatus.CREATED
        assert record.to_dict()["to_state"] == "active"
        assert session.transitions == [record]

    def test_complete_sets_end_and_duration(self):
        start = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
        session = _session(started_at=start)
        self.machine.activate(session, start)
        self.machine.complete(session, start + timedelta(minutes=5))
        assert [t.trigger for t in session.transitions] == ["greeting", "end requested"]

        assert session.status == SessionStatus.COMPLETED
        assert session.ended_at == start + timedelta(minutes=5)
        assert session.metrics.duration_seconds == 300

    def test_created_cannot_complete(self):
        session = _session()
        with pytest.raises(SessionInactiveError):
            self.machine.complete(session)
        assert session.transitions == []

    @pytest.mark.parametrize("terminal", [SessionStatus.COMPLETED, SessionStatus.ABANDONED])
    def test_terminal_states_are_final(self, terminal):
        session = _session(status=terminal)
        assert self.machine.is_terminal(terminal)
        for target in SessionStatus:
            assert not self.machine.can_transition(terminal, target)
        with pytest.raises(SessionInactiveError):
            self.machine.transition(session, SessionStatus.ACTIVE, "resume")

    def test_abandon_from_active(self):
        session = _session(status=SessionStatus.ACTIVE)
        self.machine.abandon(session)
        assert session.status == SessionStatus.ABANDONED
        assert session.ended_at is not None

    def test_require_active(self):
        self.machine.require_active(_session(status=SessionStatus.ACTIVE))
        with pytest.raises(SessionInactiveError) as exc:
            self.machine.require_active(_session(status=SessionStatus.COMPLETED))
        assert exc.value.status == "completed"
