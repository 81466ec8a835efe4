"""
Tests for the Gemini reasoning-model wrapper and JSON helpers.

No network: the genai client is replaced with a stub.
"""

import asyncio
import pytest
import sys
from pathlib import Path
from types import SimpleNamespace

# Add parent to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from tutor_engine import gemini_analyzer
from tutor_engine.errors import ExternalServiceError, ResponseParseError
from tutor_engine.gemini_analyzer import (
    GeminiReasoningModel, call_with_timeout, parse_json_payload, strip_code_fences,
)


class _StubModels:
    def __init__(self, text=None, error=None):
        self.text = text
        self.error = error
        self.requests = []

    async def generate_content(self, model, contents, config):
        self.requests.append({"model": model, "contents": contents, "config": config})
        if self.error:
            raise self.error
        return SimpleNamespace(text=self.text)


def _stub_model(text=None, error=None):
    model = GeminiReasoningModel(api_key=None)
    stub = _StubModels(text, error)
    model.client = SimpleNamespace(aio=SimpleNamespace(models=stub))
    model.enabled = True
    return model, stub


@pytest.fixture(autouse=True)
def no_env_key(monkeypatch):
    monkeypatch.setattr(gemini_analyzer, "GOOGLE_API_KEY", None)


class TestGeminiReasoningModel:
    """Test cases for GeminiReasoningModel.generate."""

    def test_disabled_without_key(self):
        model = GeminiReasoningModel(api_key=None)
        assert not model.enabled
        with pytest.raises(ExternalServiceError):
            asyncio.run(model.generate("system", "hello"))

    def test_generate_sends_prompt_and_context(self):
        model, stub = _stub_model(text="  Nice to meet you!  ")
        reply = asyncio.run(model.generate("be kind", "hi", "Topic: Travel"))

        assert reply == "Nice to meet you!"
        request = stub.requests[0]
        assert request["config"]["system_instruction"] == "be kind"
        assert request["contents"].startswith("Topic: Travel")
        assert request["contents"].endswith("hi")

    def test_empty_response_is_error(self):
        model, _ = _stub_model(text="")
        with pytest.raises(ExternalServiceError):
            asyncio.run(model.generate("system", "hello"))

    def test_sdk_error_wrapped(self):
        model, _ = _stub_model(error=RuntimeError("quota exceeded"))
        with pytest.raises(ExternalServiceError) as exc:
            asyncio.run(model.generate("system", "hello"))
        assert exc.value.service == "reasoning-model"


class TestCallWithTimeout:
    """Test cases for call_with_timeout."""

    def test_timeout_becomes_service_error(self):
        async def slow():
            await asyncio.sleep(1)

        with pytest.raises(ExternalServiceError) as exc:
            asyncio.run(call_with_timeout(slow(), 0.01, service="persistence"))
        assert exc.value.service == "persistence"

    def test_passes_result_through(self):
        async def fast():
            return 42

        assert asyncio.run(call_with_timeout(fast(), 1.0)) == 42


class TestJsonHelpers:
    """Test cases for fence stripping and payload extraction."""

    def test_strip_code_fences(self):
        assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
        assert strip_code_fences('{"a": 1}') == '{"a": 1}'

    def test_object_inside_prose(self):
        assert parse_json_payload('Sure! {"a": 1} Hope that helps.') == {"a": 1}

    def test_array_payload(self):
        assert parse_json_payload('[{"topic": "Travel"}]', expect=list) == [{"topic": "Travel"}]

    def test_wrong_shape(self):
        with pytest.raises(ResponseParseError):
            parse_json_payload('[1, 2]', expect=dict)

    def test_invalid_json(self):
        with pytest.raises(ResponseParseError):
            parse_json_payload('{"a": }')

    def test_empty(self):
        with pytest.raises(ResponseParseError):
            parse_json_payload("")
