"""
Gemini Reasoning-Model Integration

Thin async wrapper around the google-genai SDK. Everything that talks to
the model goes through the ReasoningModel protocol so tests can swap in
a fake, and every failure surfaces as ExternalServiceError.
"""

from typing import Any, Awaitable, Optional, Protocol, Type, TypeVar, Union
import asyncio
import json
import logging
import re

from google import genai

from .config import GEMINI_MODEL, GOOGLE_API_KEY
from .errors import ExternalServiceError, ResponseParseError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")
_JSON_ARRAY = re.compile(r"\[[\s\S]*\]")


class ReasoningModel(Protocol):
    """Anything that can answer (system_prompt, user_text, context_summary)."""

    async def generate(self, system_prompt: str, user_text: str, context_summary: str = "") -> str:
        ...


class GeminiReasoningModel:
    """Reasoning model backed by Gemini via google-genai."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model_name: str = GEMINI_MODEL,
        temperature: float = 0.4,
        max_output_tokens: int = 1024,
    ):
        self.api_key = api_key or GOOGLE_API_KEY
        self.model_name = model_name
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        self.client = None
        self.enabled = False

        if self.api_key:
            try:
                self.client = genai.Client(api_key=self.api_key)
                self.enabled = True
                logger.info(f"Gemini reasoning model enabled ({self.model_name})")
            except Exception as e:
                logger.error(f"Gemini client init failed: {e}")
        else:
            logger.warning("Gemini reasoning model disabled - no API key")

    async def generate(self, system_prompt: str, user_text: str, context_summary: str = "") -> str:
        if not self.enabled:
            raise ExternalServiceError("reasoning-model", "Gemini client not configured")

        contents = user_text if not context_summary else f"{context_summary}\n\n{user_text}"
        try:
            response = await self.client.aio.models.generate_content(
                model=self.model_name,
                contents=contents,
                config={
                    "system_instruction": system_prompt,
                    "temperature": self.temperature,
                    "max_output_tokens": self.max_output_tokens,
                },
            )
        except Exception as e:
            raise ExternalServiceError("reasoning-model", str(e)) from e

        text = (response.text or "").strip()
        if not text:
            raise ExternalServiceError("reasoning-model", "empty response")
        return text


async def call_with_timeout(awaitable: Awaitable[T], timeout: float, service: str = "reasoning-model") -> T:
    """Await with a hard deadline; a timeout becomes ExternalServiceError."""
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as e:
        raise ExternalServiceError(service, f"timed out after {timeout}s") from e


def strip_code_fences(text: str) -> str:
    text = text.strip()
    if text.startswith("```"):
        text = text.split("```")[1]
        if text.startswith("json"):
            text = text[4:]
        text = text.strip()
    return text


def parse_json_payload(text: str, expect: Union[Type[dict], Type[list]] = dict) -> Any:
    """
    Pull a JSON object (or array) out of model output.

    Raises ResponseParseError when nothing parseable of the expected
    shape is found.
    """
    if not text:
        raise ResponseParseError("empty model output")

    cleaned = strip_code_fences(text)
    pattern = _JSON_OBJECT if expect is dict else _JSON_ARRAY
    match = pattern.search(cleaned)
    if not match:
        raise ResponseParseError(f"no JSON {expect.__name__} in model output", raw=text)

    try:
        payload = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise ResponseParseError(f"invalid JSON: {e}", raw=text) from e

    if not isinstance(payload, expect):
        raise ResponseParseError(f"expected {expect.__name__}, got {type(payload).__name__}", raw=text)
    return payload
