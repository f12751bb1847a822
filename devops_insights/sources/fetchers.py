"""
Status fetchers used by the source poller.

Each fetcher returns the decoded JSON status payload for one source or
raises ``FetchError``. The poller treats every ``FetchError`` as a skipped
poll; nothing is retried beyond the next scheduled cycle.
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import Any

from devops_insights.sources.http_client import HTTPClient, HTTPClientError, RetryConfig
from devops_insights.sources.schemas import Source

logger = logging.getLogger(__name__)


class FetchError(Exception):
    """A poll could not produce a payload."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class StatusFetcher(ABC):
    """
    Abstract base class for status payload fetchers.

    Subclasses implement ``fetch()``; ``open()`` and ``close()`` manage any
    long-lived resources (connection pools) and default to no-ops.
    """

    name: str = "base"

    async def open(self) -> None:
        pass

    async def close(self) -> None:
        pass

    async def __aenter__(self) -> "StatusFetcher":
        await self.open()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    @abstractmethod
    async def fetch(self, source: Source) -> dict[str, Any]:
        """
        Fetch the current status payload for a source.

        Raises:
            FetchError: On timeout, transport error, non-2xx or invalid body
        """


class HTTPStatusFetcher(StatusFetcher):
    """Fetches ``source.url`` with a bounded timeout and decodes the JSON body."""

    name = "http"

    def __init__(
        self,
        timeout: float = 5.0,
        retry_config: RetryConfig | None = None,
        client: HTTPClient | None = None,
    ):
        self._client = client or HTTPClient(
            retry_config=retry_config,
            timeout=timeout,
            headers={"Accept": "application/json"},
        )

    async def open(self) -> None:
        await self._client.open()

    async def close(self) -> None:
        await self._client.close()

    async def fetch(self, source: Source) -> dict[str, Any]:
        try:
            response = await self._client.get(source.url)
        except HTTPClientError as e:
            raise FetchError(str(e), status_code=e.status_code) from e

        try:
            payload = response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise FetchError(
                f"Invalid JSON from {source.url}: {e}",
                status_code=response.status_code,
            ) from e

        if not isinstance(payload, dict):
            raise FetchError(
                f"Expected a JSON object from {source.url}, got {type(payload).__name__}",
                status_code=response.status_code,
            )
        return payload
