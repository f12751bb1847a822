"""Change notification: translate snapshot mutations into delivered events.

Components:
- ChangeNotifier: bounded queue + single drain task
- FeedChangeNotifier: LISTEN/NOTIFY change feed (every replica)
- DirectChangeNotifier: poller-driven emission (no feed available)
- LocalPublisher / RedisPublisher: hand-off to the gateway(s)
- select_notifier: one-time strategy selection
"""

from devops_insights.notifier.base import ChangeNotifier
from devops_insights.notifier.config import NotifierConfig
from devops_insights.notifier.direct import DirectChangeNotifier
from devops_insights.notifier.errors import ChangeFeedUnavailableError
from devops_insights.notifier.feed import FeedChangeNotifier
from devops_insights.notifier.publisher import (
    UPDATES_CHANNEL,
    EventPublisher,
    LocalPublisher,
    RedisPublisher,
)
from devops_insights.notifier.selector import select_notifier

__all__ = [
    "UPDATES_CHANNEL",
    "ChangeFeedUnavailableError",
    "ChangeNotifier",
    "DirectChangeNotifier",
    "EventPublisher",
    "FeedChangeNotifier",
    "LocalPublisher",
    "NotifierConfig",
    "RedisPublisher",
    "select_notifier",
]
