"""Completion client with multi-provider support (OpenAI-compatible, Anthropic, mock)."""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 4096


class LLMError(Exception):
    """A completion request failed or returned nothing usable."""


class LLMClient:
    """Single-prompt completions against the configured provider.

    ``openai`` covers any OpenAI-compatible endpoint (OpenAI itself,
    OpenRouter, a local Ollama) through ``base_url``.
    """

    def __init__(self, config: dict[str, Any]) -> None:
        llm = config.get("llm", {}) or {}
        self.provider: str = (llm.get("provider") or "openai").lower()
        self.api_key: str = llm.get("api_key") or ""
        self.base_url: Optional[str] = llm.get("base_url") or None
        self.max_tokens: int = llm.get("max_tokens", DEFAULT_MAX_TOKENS)
        self.temperature: float = llm.get("temperature", 0.2)
        self.timeout: float = llm.get("timeout_seconds", 120)
        self.mock_response: Optional[Callable[[str, str], str]] = None
        self._client: Any = None

    async def complete(self, prompt: str, model: str) -> str:
        """Return the completion text for ``prompt`` using ``model``."""
        if self.provider == "mock":
            return self._mock_completion(prompt, model)
        try:
            if self.provider == "anthropic":
                text = await self._call_anthropic(prompt, model)
            else:
                text = await self._call_openai(prompt, model)
        except LLMError:
            raise
        except Exception as e:
            raise LLMError(f"{self.provider}/{model}: {e}") from e
        if not text or not text.strip():
            raise LLMError(f"{self.provider}/{model}: empty completion")
        return text

    # ------------------------------------------------------------------
    # Provider implementations
    # ------------------------------------------------------------------

    async def _call_openai(self, prompt: str, model: str) -> str:
        from openai import AsyncOpenAI

        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self.api_key or None,
                base_url=self.base_url,
                timeout=self.timeout,
            )
        resp = await self._client.chat.completions.create(
            model=model,
            messages=[{"role": "user", "content": prompt}],
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        )
        return resp.choices[0].message.content or ""

    async def _call_anthropic(self, prompt: str, model: str) -> str:
        from anthropic import AsyncAnthropic

        if self._client is None:
            self._client = AsyncAnthropic(api_key=self.api_key or None, timeout=self.timeout)
        resp = await self._client.messages.create(
            model=model,
            max_tokens=self.max_tokens,
            messages=[{"role": "user", "content": prompt}],
        )
        return resp.content[0].text

    def _mock_completion(self, prompt: str, model: str) -> str:
        """Deterministic output for dry runs and tests (no API calls)."""
        if self.mock_response is not None:
            return self.mock_response(prompt, model)
        return '{"stories": []}'
