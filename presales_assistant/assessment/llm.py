"""Generative-text collaborator used by the pipeline stages.

The collaborator is a single `complete(prompt) -> str` call. Its output is
untrusted: nothing here validates shape, the stages parse and reject it.
Backends import their SDKs lazily so the pipeline can run (and be tested)
with only the backend that is actually configured.
"""

from __future__ import annotations

import json
import logging
import os
import time
from typing import Any, Optional, Protocol, runtime_checkable

from .errors import CompletionError, ConfigurationError

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a senior business analyst that responds strictly with valid JSON "
    "and follows the provided instructions."
)
DEFAULT_MAX_OUTPUT_TOKENS = 16_000


@runtime_checkable
class CompletionClient(Protocol):
    async def complete(self, prompt: str) -> str: ...


class GeminiCompletionClient:
    """Google Gemini backend. Requires GEMINI_API_KEY and the google-genai package."""

    def __init__(
        self,
        model_id: str = "gemini-2.5-flash",
        api_key: Optional[str] = None,
        max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS,
    ):
        self.model_id = model_id
        self.max_output_tokens = max_output_tokens
        self._api_key = api_key
        self._client = None

    def _get_client(self):
        if self._client is not None:
            return self._client
        try:
            from google import genai
        except ImportError as exc:
            raise CompletionError("Gemini", "google-genai package not installed. Install with: pip install google-genai") from exc
        api_key = self._api_key or os.environ.get("GEMINI_API_KEY")
        if not api_key:
            raise CompletionError("Gemini", "GEMINI_API_KEY not set. Set the environment variable to use Gemini.")
        self._client = genai.Client(api_key=api_key)
        return self._client

    async def complete(self, prompt: str) -> str:
        from google.genai import types

        client = self._get_client()
        start_time = time.time()
        config = types.GenerateContentConfig(
            system_instruction=SYSTEM_PROMPT,
            max_output_tokens=self.max_output_tokens,
            response_mime_type="application/json",
        )
        try:
            response = await client.aio.models.generate_content(model=self.model_id, contents=prompt, config=config)
        except Exception as exc:  # noqa: BLE001
            raise CompletionError("Gemini", str(exc)) from exc

        text = (getattr(response, "text", None) or "").strip()
        logger.info(
            "Gemini %s completed in %dms (%d prompt chars, %d response chars)",
            self.model_id,
            int((time.time() - start_time) * 1000),
            len(prompt),
            len(text),
        )
        if not text:
            raise CompletionError("Gemini", f"empty response from {self.model_id}")
        return text


class AnthropicCompletionClient:
    """Anthropic Claude backend. Requires ANTHROPIC_API_KEY and the anthropic package."""

    def __init__(
        self,
        model_id: str = "claude-sonnet-4-5",
        api_key: Optional[str] = None,
        max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS,
    ):
        self.model_id = model_id
        self.max_output_tokens = max_output_tokens
        self._api_key = api_key
        self._client = None

    def _get_client(self):
        if self._client is not None:
            return self._client
        try:
            from anthropic import AsyncAnthropic
        except ImportError as exc:
            raise CompletionError("Anthropic", "anthropic package not installed. Install with: pip install anthropic") from exc
        api_key = self._api_key or os.environ.get("ANTHROPIC_API_KEY")
        if not api_key:
            raise CompletionError("Anthropic", "ANTHROPIC_API_KEY not set. Set the environment variable to use Claude.")
        self._client = AsyncAnthropic(api_key=api_key)
        return self._client

    async def complete(self, prompt: str) -> str:
        client = self._get_client()
        start_time = time.time()
        try:
            response = await client.messages.create(
                model=self.model_id,
                max_tokens=self.max_output_tokens,
                system=SYSTEM_PROMPT,
                messages=[{"role": "user", "content": prompt}],
            )
        except Exception as exc:  # noqa: BLE001
            raise CompletionError("Anthropic", str(exc)) from exc

        text = "".join(getattr(block, "text", "") for block in response.content).strip()
        logger.info(
            "Anthropic %s completed in %dms (%d+%d tokens)",
            self.model_id,
            int((time.time() - start_time) * 1000),
            response.usage.input_tokens,
            response.usage.output_tokens,
        )
        if not text:
            raise CompletionError("Anthropic", f"empty response from {self.model_id}")
        return text


def get_completion_client(model_id: str) -> CompletionClient:
    """Resolve a model id ('gemini-...' or 'claude-...') to its backend."""
    if model_id.startswith("gemini-"):
        return GeminiCompletionClient(model_id=model_id)
    if model_id.startswith("claude-"):
        return AnthropicCompletionClient(model_id=model_id)
    raise ConfigurationError(f"Unknown model: '{model_id}'. Expected a model id starting with 'gemini-' or 'claude-'.")


def clean_response(raw_text: Optional[str]) -> str:
    """Strip surrounding whitespace and markdown code fences from a model response."""
    if not raw_text:
        return ""
    content = raw_text.strip()
    if content.startswith("```"):
        content = content.split("\n", 1)[1] if "\n" in content else content[3:]
        closing = content.rfind("```")
        if closing >= 0:
            content = content[:closing]
    return content.strip()


def parse_json_response(raw_text: Optional[str]) -> Any:
    """
    Parse JSON from a model response, handling markdown code fences.

    Raises:
        json.JSONDecodeError: If the cleaned text is not valid JSON
    """
    return json.loads(clean_response(raw_text))
