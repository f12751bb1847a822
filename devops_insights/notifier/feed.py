"""Feed-driven notifier: LISTEN on the ``metrics_latest`` NOTIFY trigger.

Notifications carry only ``{op, api, source}`` (NOTIFY payloads are capped
at 8000 bytes), so each one is resolved to the full row with a lookup
before it is emitted. Every replica runs its own listener and delivers to
its own clients.
"""

import json
from typing import Any

import asyncpg
import structlog

from devops_insights.notifier.base import ChangeNotifier
from devops_insights.notifier.errors import ChangeFeedUnavailableError
from devops_insights.notifier.publisher import EventPublisher
from devops_insights.observability.metrics import get_metrics
from devops_insights.sources.schemas import ChangeEvent
from devops_insights.storage.database import STORAGE_ERRORS, Database
from devops_insights.storage.repository import CHANGE_FEED_CHANNEL, MetricRepository

logger = structlog.get_logger(__name__)

FEED_OPERATIONS = frozenset({"INSERT", "UPDATE"})


class FeedChangeNotifier(ChangeNotifier):
    """Emits an event for every insert/update of a latest-snapshot row."""

    mode = "feed"

    def __init__(
        self,
        database: Database,
        repository: MetricRepository,
        publisher: EventPublisher,
        provider: str,
        queue_size: int = 1000,
        channel: str = CHANGE_FEED_CHANNEL,
    ) -> None:
        super().__init__(publisher, queue_size=queue_size)
        self._db = database
        self._repo = repository
        self._provider = provider
        self._channel = channel
        self._conn: asyncpg.Connection | None = None
        self._connected = False

    @property
    def connected(self) -> bool:
        """False once the listening connection has been lost."""
        return self._connected

    async def _open(self) -> None:
        conn: asyncpg.Connection | None = None
        try:
            await self._repo.install_change_feed()
            conn = await self._db.connect_dedicated()
            await conn.add_listener(self._channel, self._on_notification)
            conn.add_termination_listener(self._on_connection_lost)
        except STORAGE_ERRORS as e:
            if conn is not None:
                await conn.close()
            raise ChangeFeedUnavailableError(
                f"Change feed unavailable on channel {self._channel!r}: {e}"
            ) from e

        self._conn = conn
        self._connected = True
        logger.info("Listening for snapshot changes", channel=self._channel)

    async def _close(self) -> None:
        conn, self._conn = self._conn, None
        self._connected = False
        if conn is None or conn.is_closed():
            return
        try:
            await conn.remove_listener(self._channel, self._on_notification)
            await conn.close()
        except STORAGE_ERRORS as e:
            logger.warning("Error closing change feed connection", error=str(e))

    def _on_notification(
        self,
        connection: Any,
        pid: int,
        channel: str,
        payload: str,
    ) -> None:
        self._enqueue(payload)

    def _on_connection_lost(self, connection: Any) -> None:
        self._connected = False
        get_metrics().record_feed_error("connection_lost")
        logger.error(
            "Change feed connection lost; updates stop until restart",
            channel=self._channel,
        )

    async def _resolve(self, item: str) -> ChangeEvent | None:
        metrics = get_metrics()
        try:
            notification = json.loads(item)
            op = notification["op"]
            api = notification["api"]
            region = notification["source"]
        except (json.JSONDecodeError, TypeError, KeyError) as e:
            metrics.record_event_dropped(self.mode, "malformed")
            logger.warning("Malformed change notification", payload=item, error=str(e))
            return None

        if op not in FEED_OPERATIONS:
            metrics.record_event_dropped(self.mode, "ignored_op")
            return None
        if api != self._provider:
            return None

        try:
            snapshot = await self._repo.get_latest_by_key(api, region)
        except STORAGE_ERRORS as e:
            metrics.record_feed_error("lookup_failed")
            logger.warning(
                "Snapshot lookup failed for change notification",
                region=region,
                error=str(e),
            )
            return None

        if snapshot is None:
            metrics.record_event_dropped(self.mode, "missing_row")
            logger.warning("Change notification without a snapshot row", region=region)
            return None

        return ChangeEvent(
            provider=snapshot.provider,
            source=snapshot.region,
            payload=snapshot.payload,
            timestamp=snapshot.updated_at,
        )
