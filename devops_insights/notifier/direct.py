"""Direct-emit notifier: the poller pushes events right after a write."""

from devops_insights.notifier.base import ChangeNotifier
from devops_insights.sources.schemas import ChangeEvent


class DirectChangeNotifier(ChangeNotifier):
    """Used when no change feed is available.

    Only the polling leader produces events, so with several replicas the
    publisher should be a ``RedisPublisher`` to reach every gateway.
    """

    mode = "direct"

    @property
    def accepts_direct_events(self) -> bool:
        return True

    def notify(self, event: ChangeEvent) -> bool:
        """Queue an event for delivery. Returns False if it was dropped."""
        return self._enqueue(event)

    async def _resolve(self, item: ChangeEvent) -> ChangeEvent:
        return item
