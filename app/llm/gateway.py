"""
Completion gateway: one chat completion per call, with retry and backoff.

Attempt n (1-based) that fails is followed by a sleep of n * retry_delay
before the next attempt, so delays grow 1s, 2s with the defaults. Client
errors that cannot succeed on retry (4xx other than 408/429) fail at once.
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, Optional

import httpx
import structlog

from app.config import settings
from app.errors import CompletionError
from app.observability import metrics

logger = structlog.get_logger(__name__)

RETRYABLE_STATUS = {408, 429}

Messages = list[dict[str, str]]


class CompletionGateway:
    """Thin async client for an OpenAI-compatible chat completions endpoint."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_url: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        max_attempts: Optional[int] = None,
        retry_delay: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.api_key = api_key if api_key is not None else settings.OPENAI_API_KEY
        self.api_url = api_url or settings.OPENAI_API_URL
        self.model = model or settings.OPENAI_MODEL
        self.timeout = timeout or settings.COMPLETION_TIMEOUT_SECONDS
        self.max_attempts = max_attempts or settings.COMPLETION_MAX_ATTEMPTS
        self.retry_delay = (
            retry_delay if retry_delay is not None else settings.COMPLETION_RETRY_DELAY_SECONDS
        )
        self.transport = transport
        self._sleep = sleep

    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def complete(
        self,
        messages: Messages,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        response_format: Optional[dict] = None,
    ) -> str:
        """
        Return the text of exactly one completion.

        Raises:
            CompletionError: non-retryable client error, or every attempt failed.
                The last underlying failure is chained as __cause__.
        """
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": settings.COMPLETION_TEMPERATURE if temperature is None else temperature,
            "max_tokens": max_tokens or settings.COMPLETION_MAX_TOKENS,
        }
        if response_format:
            payload["response_format"] = response_format

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        last_error: Optional[Exception] = None
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            for attempt in range(1, self.max_attempts + 1):
                start = time.monotonic()
                try:
                    text = await self._send(client, payload, headers)
                    metrics.completion_attempts_total.labels(outcome="success").inc()
                    metrics.completion_latency_seconds.observe(time.monotonic() - start)
                    return text

                except httpx.HTTPStatusError as e:
                    status = e.response.status_code
                    last_error = e
                    logger.warning(
                        "completion_http_error",
                        attempt=attempt,
                        max_attempts=self.max_attempts,
                        status_code=status,
                        body=e.response.text[:500],
                    )
                    if 400 <= status < 500 and status not in RETRYABLE_STATUS:
                        metrics.completion_attempts_total.labels(outcome="rejected").inc()
                        raise CompletionError(
                            f"Completion rejected with status {status}", retryable=False,
                        ) from e

                except Exception as e:
                    last_error = e
                    logger.warning(
                        "completion_attempt_failed",
                        attempt=attempt,
                        max_attempts=self.max_attempts,
                        error=str(e),
                        error_type=type(e).__name__,
                    )

                metrics.completion_attempts_total.labels(outcome="failed").inc()
                if attempt < self.max_attempts:
                    await self._sleep(attempt * self.retry_delay)

        logger.error("completion_exhausted", attempts=self.max_attempts, error=str(last_error))
        raise CompletionError(
            f"Completion failed after {self.max_attempts} attempts: {last_error}",
        ) from last_error

    async def _send(self, client: httpx.AsyncClient, payload: dict, headers: dict) -> str:
        response = await client.post(self.api_url, json=payload, headers=headers)
        response.raise_for_status()
        data = response.json()

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise ValueError(f"Malformed completion response: {e}") from e
        return content or ""
