"""Storage layer for snapshot and history persistence."""

from devops_insights.storage.database import STORAGE_ERRORS, Database
from devops_insights.storage.repository import CHANGE_FEED_CHANNEL, MetricRepository

__all__ = ["CHANGE_FEED_CHANNEL", "STORAGE_ERRORS", "Database", "MetricRepository"]
