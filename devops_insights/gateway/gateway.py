"""WebSocket subscription gateway with per-region channels.

Each connected client holds a set of subscribed regions. An update for
region R is sent only to clients whose set contains R. When Redis is
configured the gateway also listens on the ``metrics:updates`` pub/sub
channel so direct-emit events from the polling leader reach every replica.

Pattern: per-client session state + background pub/sub listener + heartbeats.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from starlette.websockets import WebSocket

from devops_insights.gateway.errors import (
    GatewayError,
    InvalidRequestError,
    SnapshotNotFoundError,
    error_message,
)
from devops_insights.gateway.protocol import (
    GET_HISTORY,
    GET_SNAPSHOT,
    PING,
    SUBSCRIBE,
    UNSUBSCRIBE,
    HistoryRequest,
    SnapshotRequest,
    SubscriptionRequest,
    as_utc,
    parse_request,
)
from devops_insights.notifier.publisher import UPDATES_CHANNEL
from devops_insights.observability.metrics import get_metrics
from devops_insights.observability.tracing import (
    extract_trace_context,
    get_tracer,
    traced,
)
from devops_insights.sources.registry import InvalidRegionError, SourceRegistry
from devops_insights.sources.schemas import ChangeEvent
from devops_insights.storage.database import STORAGE_ERRORS
from devops_insights.storage.repository import MetricRepository

logger = logging.getLogger(__name__)


@dataclass
class ClientSession:
    """A connected WebSocket client and its subscriptions."""

    ws: WebSocket
    regions: set[str] = field(default_factory=set)
    connected_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    history_task: asyncio.Task | None = None
    history_seq: int = 0


class SubscriptionGateway:
    """Manages client sessions, region subscriptions and event delivery.

    Lifecycle:
        1. ``start(redis_client)``: spawn heartbeats (and the pub/sub listener)
        2. ``connect(ws)`` / ``handle_message(ws, raw)`` / ``disconnect(ws)``
        3. ``deliver(event)`` from a notifier or the pub/sub listener
        4. ``stop()``: cancel background tasks, close pub/sub
    """

    def __init__(
        self,
        repository: MetricRepository,
        registry: SourceRegistry,
        provider: str,
        max_connections: int = 500,
        heartbeat_interval: int = 30,
        max_message_bytes: int = 16_384,
        channel: str = UPDATES_CHANNEL,
    ) -> None:
        self._repo = repository
        self._registry = registry
        self._provider = provider
        self._max_connections = max_connections
        self._heartbeat_interval = heartbeat_interval
        self._max_message_bytes = max_message_bytes
        self._channel = channel
        self._clients: dict[WebSocket, ClientSession] = {}
        self._listener_task: asyncio.Task | None = None
        self._heartbeat_task: asyncio.Task | None = None
        self._pubsub: Any | None = None
        self._running = False
        self._tracer = get_tracer(__name__)

    @property
    def active_connections(self) -> int:
        """Number of currently connected WebSocket clients."""
        return len(self._clients)

    @property
    def subscription_count(self) -> int:
        return sum(len(s.regions) for s in self._clients.values())

    @property
    def provider(self) -> str:
        return self._provider

    def subscriptions(self, ws: WebSocket) -> set[str]:
        """Regions a client is subscribed to (empty if unknown)."""
        session = self._clients.get(ws)
        return set(session.regions) if session else set()

    def subscribers(self, region: str) -> list[WebSocket]:
        return [ws for ws, s in self._clients.items() if region in s.regions]

    # ── Connections ──────────────────────────────────────

    def connect(self, ws: WebSocket) -> bool:
        """Register a new WebSocket client.

        Returns:
            True if registered, False if max connections reached.
        """
        if len(self._clients) >= self._max_connections:
            return False

        self._clients[ws] = ClientSession(ws=ws)
        self._update_gauges()
        logger.info("WebSocket client connected (total=%d)", len(self._clients))
        return True

    def disconnect(self, ws: WebSocket) -> None:
        """Remove a client and, implicitly, all of its subscriptions."""
        removed = self._clients.pop(ws, None)
        if removed is None:
            return
        if removed.history_task is not None and not removed.history_task.done():
            removed.history_task.cancel()
        self._update_gauges()
        logger.info(
            "WebSocket client disconnected (total=%d, dropped_subscriptions=%d)",
            len(self._clients), len(removed.regions),
        )

    def _session(self, ws: WebSocket) -> ClientSession:
        session = self._clients.get(ws)
        if session is None:
            raise InvalidRequestError("Client is not connected")
        return session

    # ── Subscriptions ────────────────────────────────────

    def subscribe(self, ws: WebSocket, region: str) -> str:
        """Join a region channel (idempotent).

        Returns:
            The normalized region.

        Raises:
            InvalidRegionError: If the region is not in the allowed set.
        """
        session = self._session(ws)
        normalized = self._registry.normalize(region)
        if normalized not in session.regions:
            session.regions.add(normalized)
            self._update_gauges()
        return normalized

    def unsubscribe(self, ws: WebSocket, region: str) -> str:
        """Leave a region channel (no-op if not subscribed)."""
        session = self._session(ws)
        normalized = self._registry.normalize(region)
        if normalized in session.regions:
            session.regions.discard(normalized)
            self._update_gauges()
        return normalized

    # ── Delivery ─────────────────────────────────────────

    async def deliver(self, event: ChangeEvent) -> int:
        """Send an update to the subscribers of the event's region.

        Returns:
            Number of clients the update was sent to.
        """
        if event.provider != self._provider:
            logger.debug("Ignoring update for provider %s", event.provider)
            return 0

        region = event.source.strip().lower()
        targets = self.subscribers(region)
        if not targets:
            return 0

        text = json.dumps({"type": "update", "data": event.to_dict()})
        delivered = 0
        disconnected: list[WebSocket] = []

        for ws in targets:
            try:
                await ws.send_text(text)
                delivered += 1
            except Exception:
                disconnected.append(ws)

        for ws in disconnected:
            self.disconnect(ws)

        get_metrics().record_delivery(region, delivered)
        return delivered

    # ── Reads ────────────────────────────────────────────

    async def get_snapshot(self, source: str | None = None) -> dict[str, Any]:
        """Latest payload for one region, or the map of every stored region.

        Raises:
            InvalidRegionError: If ``source`` is not an allowed region.
            SnapshotNotFoundError: If ``source`` has never been stored.
        """
        if source is not None:
            region = self._registry.normalize(source)
            snapshot = await self._repo.get_latest_by_key(self._provider, region)
            if snapshot is None:
                raise SnapshotNotFoundError(region)
            data = snapshot.to_dict()
            data.pop("fingerprint", None)
            return data

        snapshots = await self._repo.get_all_latest(self._provider)
        return {
            "provider": self._provider,
            "sources": {r: s.payload for r, s in snapshots.items()},
            "updatedAtBySource": {
                r: s.updated_at.isoformat() for r, s in snapshots.items()
            },
            "count": len(snapshots),
        }

    async def get_history(
        self,
        source: str | None = None,
        from_: datetime | None = None,
        to: datetime | None = None,
        limit: int | None = None,
    ) -> dict[str, Any]:
        """History newest first, with the Metric Store's filter and limit rules.

        Bounds without an offset are read as UTC.

        Raises:
            InvalidRegionError: If ``source`` is not an allowed region.
            InvalidRequestError: If ``from_`` is later than ``to``.
        """
        region = self._registry.normalize(source) if source is not None else None
        from_, to = as_utc(from_), as_utc(to)
        if from_ is not None and to is not None and from_ > to:
            raise InvalidRequestError("'from' must not be later than 'to'")

        entries = await self._repo.query_history(
            self._provider,
            region=region,
            from_=from_,
            to=to,
            limit=limit,
        )
        items = [e.to_dict() for e in entries]
        return {
            "provider": self._provider,
            "source": region,
            "items": items,
            "count": len(items),
        }

    def request_history(
        self,
        ws: WebSocket,
        request: HistoryRequest,
    ) -> asyncio.Task:
        """Answer a client's history request in the background.

        A newer request from the same client cancels the previous one, and
        a superseded result is never sent.
        """
        session = self._session(ws)
        previous = session.history_task
        if previous is not None and not previous.done():
            previous.cancel()

        session.history_seq += 1
        task = asyncio.create_task(
            self._answer_history(session, session.history_seq, request),
            name="gateway-history",
        )
        session.history_task = task
        return task

    async def _answer_history(
        self,
        session: ClientSession,
        seq: int,
        request: HistoryRequest,
    ) -> None:
        try:
            data = await self.get_history(
                source=request.source,
                from_=request.from_,
                to=request.to,
                limit=request.limit,
            )
            message = {"type": "history", "data": data}
        except (GatewayError, InvalidRegionError) as e:
            message = error_message(e)
        except Exception as e:
            logger.warning("History query failed: %s", e)
            message = {"type": "error", "message": "Failed to load history"}

        if session.history_seq != seq or self._clients.get(session.ws) is not session:
            return
        await self._send(session.ws, message)

    # ── Client protocol ──────────────────────────────────

    async def handle_message(self, ws: WebSocket, raw: str) -> None:
        """Dispatch one client message and send the response."""
        if len(raw) > self._max_message_bytes:
            await self._send(ws, {"type": "error", "message": "Message too large"})
            return

        try:
            message = json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            await self._send(ws, {"type": "error", "message": "Invalid JSON"})
            return

        if not isinstance(message, dict):
            await self._send(
                ws, {"type": "error", "message": "Message must be a JSON object"},
            )
            return

        msg_type = message.get("type")
        try:
            if msg_type == PING:
                await self._send(ws, {"type": "pong"})
            elif msg_type == SUBSCRIBE:
                req = parse_request(SubscriptionRequest, message)
                region = self.subscribe(ws, req.region)
                await self._send(ws, {"type": "subscribed", "region": region})
            elif msg_type == UNSUBSCRIBE:
                req = parse_request(SubscriptionRequest, message)
                region = self.unsubscribe(ws, req.region)
                await self._send(ws, {"type": "unsubscribed", "region": region})
            elif msg_type == GET_SNAPSHOT:
                snap_req = parse_request(SnapshotRequest, message)
                try:
                    data = await self.get_snapshot(snap_req.source)
                except STORAGE_ERRORS as e:
                    logger.warning("Snapshot query failed: %s", e)
                    await self._send(ws, {"type": "error", "message": "Failed to load snapshot"})
                    return
                await self._send(ws, {"type": "snapshot", "data": data})
            elif msg_type == GET_HISTORY:
                self.request_history(ws, parse_request(HistoryRequest, message))
            else:
                raise InvalidRequestError(f"Unknown message type: {msg_type!r}")
        except (GatewayError, InvalidRegionError) as e:
            await self._send(ws, error_message(e))

    async def _send(self, ws: WebSocket, message: dict[str, Any]) -> bool:
        try:
            await ws.send_text(json.dumps(message))
            return True
        except Exception:
            self.disconnect(ws)
            return False

    # ── Background tasks ─────────────────────────────────

    async def start(self, redis_client: Any | None = None) -> None:
        """Start heartbeats and, with Redis, the pub/sub listener.

        Args:
            redis_client: Optional async Redis client for cross-replica updates.
        """
        if self._running:
            return

        self._running = True
        self._heartbeat_task = asyncio.create_task(
            self._send_heartbeats(), name="gateway-heartbeat",
        )

        if redis_client is None:
            logger.info("SubscriptionGateway started (local delivery only)")
            return

        try:
            self._pubsub = redis_client.pubsub()
            await self._pubsub.subscribe(self._channel)
            self._listener_task = asyncio.create_task(
                self._listen(), name="gateway-pubsub-listener",
            )
            logger.info(
                "SubscriptionGateway started (channel=%s, heartbeat=%ds)",
                self._channel, self._heartbeat_interval,
            )
        except Exception as e:
            self._pubsub = None
            logger.error("Failed to subscribe to %s: %s", self._channel, e)

    async def stop(self) -> None:
        """Stop background tasks and close pub/sub."""
        self._running = False

        for task in (self._listener_task, self._heartbeat_task):
            if task is None:
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._listener_task = None
        self._heartbeat_task = None

        if self._pubsub is not None:
            try:
                await self._pubsub.unsubscribe(self._channel)
                await self._pubsub.close()
            except Exception as e:
                logger.warning("Error closing pub/sub: %s", e)
            self._pubsub = None

        for session in self._clients.values():
            if session.history_task is not None and not session.history_task.done():
                session.history_task.cancel()
        self._clients.clear()
        self._update_gauges()
        logger.info("SubscriptionGateway stopped")

    async def _listen(self) -> None:
        """Background task: read updates from Redis pub/sub and deliver."""
        try:
            while self._running:
                try:
                    message = await self._pubsub.get_message(
                        ignore_subscribe_messages=True, timeout=1.0,
                    )
                    if message is not None and message["type"] == "message":
                        await self._dispatch_message(message["data"])
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.warning("Error reading pub/sub message: %s", e)
                    await asyncio.sleep(1.0)
        except asyncio.CancelledError:
            pass

    async def _dispatch_message(self, raw_data: str | bytes) -> int:
        """Parse a pub/sub envelope and deliver it to subscribers."""
        try:
            if isinstance(raw_data, bytes):
                raw_data = raw_data.decode("utf-8")
            envelope = json.loads(raw_data)
            event = ChangeEvent.from_dict(envelope["data"])
        except (json.JSONDecodeError, UnicodeDecodeError, KeyError, TypeError, ValueError) as e:
            logger.warning("Invalid update message: %s", e)
            return 0

        with traced(
            self._tracer,
            "gateway.deliver",
            {"region": event.source, "provider": event.provider},
            parent_context=extract_trace_context(envelope),
        ):
            return await self.deliver(event)

    async def _send_heartbeats(self) -> None:
        """Background task: send periodic heartbeats to all clients."""
        try:
            while self._running:
                await asyncio.sleep(self._heartbeat_interval)
                if not self._clients:
                    continue

                heartbeat = {
                    "type": "heartbeat",
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                }
                for ws in list(self._clients):
                    await self._send(ws, heartbeat)
        except asyncio.CancelledError:
            pass

    def _update_gauges(self) -> None:
        get_metrics().set_ws_state(self.active_connections, self.subscription_count)
