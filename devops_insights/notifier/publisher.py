"""Publishers: where a notifier hands off a ready ChangeEvent.

``LocalPublisher`` calls the in-process gateway. ``RedisPublisher`` puts the
event on a pub/sub channel so the gateway of every replica (this one
included) receives it.
"""

import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

from devops_insights.observability.tracing import inject_trace_context
from devops_insights.sources.schemas import ChangeEvent

logger = logging.getLogger(__name__)

UPDATES_CHANNEL = "metrics:updates"


class EventPublisher(Protocol):
    name: str

    async def publish(self, event: ChangeEvent) -> None: ...


class LocalPublisher:
    """Deliver events to this process's subscribers only."""

    name = "local"

    def __init__(self, deliver: Callable[[ChangeEvent], Awaitable[Any]]) -> None:
        self._deliver = deliver

    async def publish(self, event: ChangeEvent) -> None:
        await self._deliver(event)


class RedisPublisher:
    """Publish events to the Redis updates channel.

    The envelope matches the WebSocket ``update`` message plus an optional
    ``traceparent`` so the receiving replica can continue the trace.
    """

    name = "redis"

    def __init__(self, redis_client: Any, channel: str = UPDATES_CHANNEL) -> None:
        self._redis = redis_client
        self._channel = channel

    @property
    def channel(self) -> str:
        return self._channel

    async def publish(self, event: ChangeEvent) -> None:
        envelope = {
            "type": "update",
            "data": event.to_dict(),
            **inject_trace_context(),
        }
        receivers = await self._redis.publish(self._channel, json.dumps(envelope))
        logger.debug(
            "Published update for %s to %s (receivers=%s)",
            event.source, self._channel, receivers,
        )
