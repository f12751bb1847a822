"""Change notifier errors."""


class ChangeFeedUnavailableError(RuntimeError):
    """The database change feed could not be installed or listened to.

    Fatal only when ``CHANGE_FEED_MODE=feed`` forces the feed strategy;
    in ``auto`` mode the runtime falls back to direct emission.
    """
