"""Pick the notifier strategy once at startup.

``auto`` tries the change feed first and falls back to direct emission;
``feed`` makes an unavailable feed fatal; ``direct`` never touches it.
The result is fixed for the life of the process.
"""

from typing import Literal

import structlog

from devops_insights.notifier.base import ChangeNotifier
from devops_insights.notifier.direct import DirectChangeNotifier
from devops_insights.notifier.errors import ChangeFeedUnavailableError
from devops_insights.notifier.feed import FeedChangeNotifier
from devops_insights.notifier.publisher import EventPublisher
from devops_insights.storage.database import Database
from devops_insights.storage.repository import MetricRepository

logger = structlog.get_logger(__name__)

NotifierMode = Literal["auto", "feed", "direct"]


async def select_notifier(
    mode: NotifierMode,
    *,
    database: Database,
    repository: MetricRepository,
    provider: str,
    local_publisher: EventPublisher,
    direct_publisher: EventPublisher | None = None,
    queue_size: int = 1000,
) -> ChangeNotifier:
    """
    Build and start the notifier for this process.

    Args:
        mode: ``auto``, ``feed`` or ``direct``.
        database: Connected database (the feed opens its own connection).
        repository: Used to install the trigger and resolve notifications.
        provider: Only changes for this provider are emitted.
        local_publisher: Delivery for feed mode (each replica listens).
        direct_publisher: Delivery for direct mode (defaults to local).
        queue_size: Bound on pending events.

    Raises:
        ChangeFeedUnavailableError: If ``mode`` is ``feed`` and the feed
            cannot be set up.
    """
    if mode in ("auto", "feed"):
        feed = FeedChangeNotifier(
            database,
            repository,
            local_publisher,
            provider=provider,
            queue_size=queue_size,
        )
        try:
            await feed.start()
            return feed
        except ChangeFeedUnavailableError as e:
            if mode == "feed":
                raise
            logger.warning(
                "Change feed unavailable, falling back to direct emission",
                error=str(e),
            )

    direct = DirectChangeNotifier(
        direct_publisher or local_publisher, queue_size=queue_size,
    )
    await direct.start()
    return direct
