"""Model client: abstract tier-based contract plus an httpx chat-completions client."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from unit_pipeline.errors import ModelClientError
from unit_pipeline.extraction.budget import ModelTier

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 60.0
DEFAULT_MAX_RETRIES = 2


@dataclass(slots=True)
class TokenUsage:
    prompt: int = 0
    completion: int = 0
    total: int = 0

    def __add__(self, other: TokenUsage) -> TokenUsage:
        return TokenUsage(
            prompt=self.prompt + other.prompt,
            completion=self.completion + other.completion,
            total=self.total + other.total,
        )


@dataclass(slots=True)
class ModelResponse:
    """Result of one model call."""

    content: str
    tokens_used: TokenUsage = field(default_factory=TokenUsage)
    processing_time_ms: int = 0
    model: str | None = None


class ModelClient(Protocol):
    """Anything that can answer a prompt for a capability tier."""

    async def call(
        self,
        tier: ModelTier,
        prompt: str,
        system_prompt: str | None = None,
        options: dict[str, Any] | None = None,
    ) -> ModelResponse:
        """Run one completion; raise ``ModelClientError`` on failure."""


class HttpModelClient:
    """OpenAI-compatible chat completions client with retry and timeout."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        base_url: str,
        models: dict[ModelTier, str],
        api_key: str | None = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._models = dict(models)
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
            headers=headers,
            transport=transport or httpx.AsyncHTTPTransport(retries=max_retries),
        )

    async def call(
        self,
        tier: ModelTier,
        prompt: str,
        system_prompt: str | None = None,
        options: dict[str, Any] | None = None,
    ) -> ModelResponse:
        model = self._models.get(tier)
        if not model:
            raise ModelClientError(f"No model configured for tier {tier.value!r}")

        messages: list[dict[str, str]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})
        body: dict[str, Any] = {"model": model, "messages": messages, **(options or {})}

        started = time.monotonic()
        try:
            response = await self._client.post("/chat/completions", json=body)
        except httpx.TimeoutException as error:
            logger.warning("Timeout calling model %s", model)
            raise ModelClientError(f"Timeout calling model {model}") from error
        except httpx.HTTPError as error:
            logger.warning("HTTP error calling model %s: %s", model, error)
            raise ModelClientError(str(error)) from error
        elapsed_ms = int((time.monotonic() - started) * 1000)

        if not response.is_success:
            raise ModelClientError(f"HTTP {response.status_code} from model {model}")
        try:
            data = response.json()
            content = data["choices"][0]["message"]["content"] or ""
        except (ValueError, KeyError, IndexError, TypeError) as error:
            raise ModelClientError(f"Unexpected response shape from model {model}") from error

        usage = data.get("usage")
        return ModelResponse(
            content=str(content),
            tokens_used=TokenUsage(
                prompt=_token_count(usage, "prompt_tokens"),
                completion=_token_count(usage, "completion_tokens"),
                total=_token_count(usage, "total_tokens"),
            ),
            processing_time_ms=elapsed_ms,
            model=model,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> HttpModelClient:
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.aclose()


def _token_count(usage: object, key: str) -> int:
    """Usage numbers are advisory; anything missing or non-numeric counts as zero."""

    if not isinstance(usage, dict):
        return 0
    value = usage.get(key)
    if isinstance(value, bool):
        return 0
    try:
        return max(0, int(value))
    except (TypeError, ValueError):
        return 0
