"""
HTTP transport for status endpoint polling.

Polls fail fast: by default nothing is retried because the next scheduled
poll is the retry. ``POLLER_MAX_RETRIES`` enables a few retries with jittered
exponential backoff for providers that flap, limited to transport errors
and the statuses in ``RETRYABLE_STATUSES``.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any

import httpx

logger = logging.getLogger(__name__)

RETRYABLE_STATUSES = frozenset({429, 500, 502, 503, 504})

# Error bodies are kept for logs only.
MAX_ERROR_BODY_CHARS = 512


@dataclass(frozen=True)
class RetryConfig:
    """
    Retry budget for one request.

    Delay before retry ``n`` (0-indexed) is
    ``min(max_backoff, base_delay * 2**n)`` stretched by up to ``jitter_factor``.
    """

    max_retries: int = 0
    max_backoff_seconds: float = 5.0
    base_delay: float = 0.5
    jitter_factor: float = 0.1

    def calculate_backoff(self, attempt: int) -> float:
        delay = min(self.base_delay * (2**attempt), self.max_backoff_seconds)
        return delay * (1 + self.jitter_factor * random.random())

    def is_retryable_status(self, status_code: int) -> bool:
        return status_code in RETRYABLE_STATUSES


class HTTPClientError(Exception):
    """A status request failed: timeout, transport error or non-2xx."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_body: str | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


class HTTPClient:
    """
    Thin httpx wrapper: one pooled client, a hard timeout, optional retries.

    Example:
        async with HTTPClient(timeout=5.0) as client:
            response = await client.get("https://data--us-east.acme.io/status")
    """

    def __init__(
        self,
        retry_config: RetryConfig | None = None,
        timeout: float = 5.0,
        headers: dict[str, str] | None = None,
    ):
        self.retry_config = retry_config or RetryConfig()
        self.timeout = timeout
        self._headers = headers or {}
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "HTTPClient":
        await self.open()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def open(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                headers=self._headers,
                follow_redirects=True,
            )

    async def close(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            await client.aclose()

    async def get(self, url: str, params: dict[str, Any] | None = None) -> httpx.Response:
        """
        GET ``url`` and return the 2xx response.

        Raises:
            HTTPClientError: Once the retry budget is spent, or immediately
                for a non-retryable status
        """
        if self._client is None:
            raise RuntimeError("HTTPClient is not open; call open() or use 'async with'")

        attempts = self.retry_config.max_retries + 1
        attempt = 0
        while True:
            attempt += 1
            cause: BaseException | None = None
            try:
                response = await self._client.get(url, params=params)
            except httpx.HTTPError as e:
                cause = e
                error = HTTPClientError(f"{type(e).__name__} requesting {url}: {e}")
                retryable = True
            else:
                if response.is_success:
                    return response
                error = HTTPClientError(
                    f"HTTP {response.status_code} from {url}",
                    status_code=response.status_code,
                    response_body=response.text[:MAX_ERROR_BODY_CHARS],
                )
                retryable = self.retry_config.is_retryable_status(response.status_code)

            if not retryable or attempt >= attempts:
                raise error from cause

            delay = self.retry_config.calculate_backoff(attempt - 1)
            logger.warning(
                "Retrying %s after %s (attempt %d/%d, backoff %.2fs)",
                url, error, attempt, attempts, delay,
            )
            await asyncio.sleep(delay)
