"""Base class for change notifiers.

Every strategy feeds one bounded ``asyncio.Queue`` drained by a single task,
so events reach the publisher in the order they were produced and shutdown
is an explicit cancel of that task. When the queue is full the newest item
is dropped and counted.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any

import structlog

from devops_insights.notifier.publisher import EventPublisher
from devops_insights.observability.metrics import get_metrics
from devops_insights.sources.schemas import ChangeEvent

logger = structlog.get_logger(__name__)


class ChangeNotifier(ABC):
    """Turns snapshot mutations into delivered ChangeEvents.

    Subclasses enqueue raw items via ``_enqueue`` and convert them in
    ``_resolve``; returning None skips the item.
    """

    mode: str = "unknown"

    def __init__(self, publisher: EventPublisher, queue_size: int = 1000) -> None:
        self._publisher = publisher
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=queue_size)
        self._drain_task: asyncio.Task | None = None
        self._running = False

    @property
    def publisher(self) -> EventPublisher:
        return self._publisher

    @property
    def running(self) -> bool:
        return self._running

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def accepts_direct_events(self) -> bool:
        """True if the poller should hand events to ``notify``."""
        return False

    async def start(self) -> None:
        if self._running:
            return
        await self._open()
        self._running = True
        self._drain_task = asyncio.create_task(
            self._drain(), name=f"change-notifier-{self.mode}",
        )
        logger.info(
            "Change notifier started", mode=self.mode, publisher=self._publisher.name,
        )

    async def stop(self) -> None:
        self._running = False
        if self._drain_task is not None:
            self._drain_task.cancel()
            try:
                await self._drain_task
            except asyncio.CancelledError:
                pass
            self._drain_task = None
        await self._close()
        logger.info("Change notifier stopped", mode=self.mode)

    async def _open(self) -> None:
        """Acquire strategy resources. Raise to signal the strategy is unusable."""

    async def _close(self) -> None:
        """Release strategy resources."""

    def _enqueue(self, item: Any) -> bool:
        try:
            self._queue.put_nowait(item)
        except asyncio.QueueFull:
            get_metrics().record_event_dropped(self.mode, "queue_full")
            logger.warning(
                "Notifier queue full, dropping event",
                mode=self.mode,
                queue_size=self._queue.maxsize,
            )
            return False
        return True

    @abstractmethod
    async def _resolve(self, item: Any) -> ChangeEvent | None:
        """Convert a queued item into an event (None to skip)."""
        ...

    async def _drain(self) -> None:
        metrics = get_metrics()
        while True:
            item = await self._queue.get()
            try:
                event = await self._resolve(item)
                if event is None:
                    continue
                await self._publisher.publish(event)
                metrics.record_event_emitted(self.mode)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                metrics.record_event_dropped(self.mode, "publish_failed")
                logger.warning(
                    "Failed to emit change event", mode=self.mode, error=str(e),
                )
            finally:
                self._queue.task_done()

    async def join(self) -> None:
        """Wait until every queued item has been processed (tests and shutdown)."""
        await self._queue.join()
