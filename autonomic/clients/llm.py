"""
Autonomic — LLM Provider Abstraction

The advisor talks to a language model only through this interface.
Supports Anthropic Claude and local models via Ollama.

Transient failures (429, 503, 529, timeouts) are retried with exponential
backoff. The caller still wraps every call in its own timeout.
"""

from __future__ import annotations

import asyncio
import contextlib
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

import httpx
import structlog

if TYPE_CHECKING:
    from autonomic.config import LLMConfig

logger = structlog.get_logger()

_MAX_RETRIES = 2
_BASE_DELAY_S = 0.5
_RETRYABLE_STATUS_CODES = {429, 503, 529}


class Message:
    """A chat message."""

    def __init__(self, role: str, content: str) -> None:
        self.role = role
        self.content = content

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


class LLMResponse:
    """Response from an LLM call."""

    def __init__(
        self,
        text: str,
        model: str = "",
        input_tokens: int = 0,
        output_tokens: int = 0,
        finish_reason: str = "stop",
    ) -> None:
        self.text = text
        self.model = model
        self.input_tokens = input_tokens
        self.output_tokens = output_tokens
        self.finish_reason = finish_reason

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class LLMProvider(ABC):
    """Abstract interface for LLM calls."""

    @abstractmethod
    async def generate(
        self,
        system_prompt: str,
        messages: list[Message],
        max_tokens: int = 1024,
        temperature: float = 0.2,
    ) -> LLMResponse:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...

    async def complete(
        self,
        system_prompt: str,
        prompt: str,
        max_tokens: int = 1024,
        temperature: float = 0.2,
    ) -> LLMResponse:
        """Single-turn convenience wrapper around ``generate``."""
        return await self.generate(
            system_prompt=system_prompt,
            messages=[Message("user", prompt)],
            max_tokens=max_tokens,
            temperature=temperature,
        )


class AnthropicProvider(LLMProvider):
    """Claude Messages API with retry and exponential backoff."""

    def __init__(
        self,
        api_key: str,
        model: str = "claude-sonnet-4-20250514",
        timeout_s: float = 20.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._model = model
        self._client = httpx.AsyncClient(
            base_url="https://api.anthropic.com/v1",
            headers={
                "x-api-key": api_key.strip(),
                "anthropic-version": "2023-06-01",
                "content-type": "application/json",
            },
            timeout=timeout_s,
            transport=transport,
        )

    async def _post_with_retry(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        last_exc: Exception | None = None
        for attempt in range(_MAX_RETRIES + 1):
            delay = _BASE_DELAY_S * (2 ** attempt)
            try:
                response = await self._client.post(path, json=payload)
            except httpx.TimeoutException as exc:
                last_exc = exc
                if attempt == _MAX_RETRIES:
                    raise
                logger.warning("llm_timeout_retrying", attempt=attempt + 1, delay_s=delay)
                await asyncio.sleep(delay)
                continue

            if response.status_code in _RETRYABLE_STATUS_CODES and attempt < _MAX_RETRIES:
                retry_after = response.headers.get("retry-after")
                if retry_after:
                    with contextlib.suppress(ValueError):
                        delay = max(delay, float(retry_after))
                logger.warning(
                    "llm_retrying",
                    status=response.status_code,
                    attempt=attempt + 1,
                    delay_s=round(delay, 1),
                )
                await asyncio.sleep(delay)
                continue

            try:
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                body = ""
                with contextlib.suppress(Exception):
                    body = exc.response.text[:500]
                raise httpx.HTTPStatusError(
                    message=f"{exc.response.status_code}: {body}",
                    request=exc.request,
                    response=exc.response,
                ) from exc
            return response.json()  # type: ignore[no-any-return]
        raise last_exc or RuntimeError("LLM request failed after retries")

    async def generate(
        self,
        system_prompt: str,
        messages: list[Message],
        max_tokens: int = 1024,
        temperature: float = 0.2,
    ) -> LLMResponse:
        data = await self._post_with_retry(
            "/messages",
            {
                "model": self._model,
                "max_tokens": max_tokens,
                "temperature": temperature,
                "system": system_prompt,
                "messages": [m.to_dict() for m in messages],
            },
        )
        text = "".join(
            block.get("text", "")
            for block in data.get("content", [])
            if block.get("type") == "text"
        )
        usage = data.get("usage", {})
        return LLMResponse(
            text=text,
            model=data.get("model", self._model),
            input_tokens=usage.get("input_tokens", 0),
            output_tokens=usage.get("output_tokens", 0),
            finish_reason=data.get("stop_reason", "stop"),
        )

    async def close(self) -> None:
        await self._client.aclose()


class OllamaProvider(LLMProvider):
    """Local model via Ollama."""

    def __init__(
        self,
        model: str = "llama3.1:8b",
        endpoint: str = "http://localhost:11434",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._model = model
        self._client = httpx.AsyncClient(base_url=endpoint, timeout=120.0, transport=transport)

    async def generate(
        self,
        system_prompt: str,
        messages: list[Message],
        max_tokens: int = 1024,
        temperature: float = 0.2,
    ) -> LLMResponse:
        all_messages = [{"role": "system", "content": system_prompt}]
        all_messages.extend(m.to_dict() for m in messages)
        response = await self._client.post(
            "/api/chat",
            json={
                "model": self._model,
                "messages": all_messages,
                "stream": False,
                "format": "json",
                "options": {"temperature": temperature, "num_predict": max_tokens},
            },
        )
        response.raise_for_status()
        data = response.json()
        return LLMResponse(
            text=data.get("message", {}).get("content", ""),
            model=self._model,
            input_tokens=data.get("prompt_eval_count", 0),
            output_tokens=data.get("eval_count", 0),
        )

    async def close(self) -> None:
        await self._client.aclose()


def create_llm_provider(config: LLMConfig) -> LLMProvider:
    """Factory for the configured provider."""
    if config.provider == "anthropic":
        if not config.api_key:
            raise ValueError("Anthropic provider requires llm.api_key")
        return AnthropicProvider(api_key=config.api_key, model=config.model)
    if config.provider == "ollama":
        return OllamaProvider(model=config.model, endpoint=config.endpoint)
    raise ValueError(f"Unknown LLM provider: {config.provider}")
