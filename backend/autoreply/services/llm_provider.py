"""
LLM provider interface for reply generation.

The pipeline owns the prompts; a provider only turns
(system prompt, user prompt, temperature, max tokens) into text.
Swap the concrete implementation with `set_llm_provider` (tests, other vendors).
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod

import httpx

from autoreply.services.sanitize import sanitize
from autoreply.settings import get_settings

logger = logging.getLogger(__name__)


class LLMError(Exception):
    """Generation call failed, timed out, or returned nothing usable."""


class LLMProvider(ABC):
    """Abstract text-generation provider."""

    @abstractmethod
    async def complete(
        self,
        *,
        system_prompt: str,
        user_prompt: str,
        temperature: float,
        max_tokens: int,
    ) -> str:
        ...


class OpenAIChatProvider(LLMProvider):
    """Chat Completions over plain httpx."""

    def __init__(
        self,
        api_key: str | None,
        *,
        model: str = "gpt-4.1-mini",
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 30.0,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def complete(
        self,
        *,
        system_prompt: str,
        user_prompt: str,
        temperature: float,
        max_tokens: int,
    ) -> str:
        if not self.api_key:
            raise LLMError("OpenAI API key not configured")

        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                r = await client.post(f"{self.base_url}/chat/completions", json=payload, headers=headers)
        except httpx.TimeoutException as e:
            raise LLMError(f"OpenAI request timed out after {self.timeout}s") from e
        except httpx.HTTPError as e:
            raise LLMError(f"OpenAI connection error: {sanitize(str(e))}") from e

        if r.status_code == 401:
            raise LLMError("OpenAI authentication failed: invalid API key")
        if r.status_code == 429:
            if "insufficient_quota" in r.text:
                raise LLMError("OpenAI quota exceeded")
            raise LLMError("OpenAI rate limit exceeded")
        if r.status_code >= 400:
            raise LLMError(f"OpenAI API {r.status_code}: {sanitize(r.text[:300])}")

        try:
            content = r.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise LLMError("Malformed response from OpenAI") from e

        if not content or not content.strip():
            raise LLMError("No reply generated")
        return content.strip()


_provider: LLMProvider | None = None


def get_llm_provider() -> LLMProvider:
    global _provider
    if _provider is None:
        s = get_settings()
        _provider = OpenAIChatProvider(
            s.openai_api_key,
            model=s.openai_model,
            base_url=s.openai_base_url,
            timeout=s.llm_timeout_sec,
        )
    return _provider


def set_llm_provider(provider: LLMProvider | None) -> None:
    global _provider
    _provider = provider
