"""Polled sources - schemas, registry, and status fetchers."""

from devops_insights.sources.fetchers import FetchError, HTTPStatusFetcher, StatusFetcher
from devops_insights.sources.registry import InvalidRegionError, SourceRegistry
from devops_insights.sources.schemas import (
    ChangeEvent,
    HistoryEntry,
    Snapshot,
    Source,
    compute_fingerprint,
)

__all__ = [
    "ChangeEvent",
    "FetchError",
    "HTTPStatusFetcher",
    "HistoryEntry",
    "InvalidRegionError",
    "Snapshot",
    "Source",
    "SourceRegistry",
    "StatusFetcher",
    "compute_fingerprint",
]
