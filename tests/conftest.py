"""
Shared fixtures and fake collaborators.

Fake reasoning models stand in for Gemini so tests never hit the network.
"""

import json
import pytest
import sys
from pathlib import Path

# Add parent to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from tutor_engine.errors import ExternalServiceError
from tutor_engine.models import Message, UserProfile


class RaisingModel:
    """Reasoning model that always fails."""

    def __init__(self, error: Exception = None):
        self.error = error or ExternalServiceError("reasoning-model", "boom")
        self.calls = 0

    async def generate(self, system_prompt, user_text, context_summary=""):
        self.calls += 1
        raise self.error


class CannedModel:
    """Reasoning model that returns fixed replies in order (last one repeats)."""

    def __init__(self, *replies):
        self.replies = list(replies) or ["Sounds great! Tell me more."]
        self.calls = []

    async def generate(self, system_prompt, user_text, context_summary=""):
        self.calls.append((system_prompt, user_text, context_summary))
        index = min(len(self.calls) - 1, len(self.replies) - 1)
        reply = self.replies[index]
        return json.dumps(reply) if isinstance(reply, (dict, list)) else reply


class FlakyRepository:
    """Wraps a repository and fails selected operations."""

    def __init__(self, inner, fail=()):
        self.inner = inner
        self.fail = set(fail)
        self.calls = []

    def __getattr__(self, name):
        target = getattr(self.inner, name)

        async def call(*args, **kwargs):
            self.calls.append(name)
            if name in self.fail:
                raise ExternalServiceError("persistence", f"{name} unavailable")
            return await target(*args, **kwargs)

        return call


def user_messages(*texts, confidence=None):
    return [Message.from_user(t, confidence) for t in texts]


@pytest.fixture
def profile():
    return UserProfile(user_id="learner-1")


@pytest.fixture
def frustrated_messages():
    return user_messages("this is too hard", "I don't understand", "I'm so confused")
