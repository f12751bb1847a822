"""
Request and response models for the metrics API.
"""

from typing import Any

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Response model for health check."""

    status: str = Field(
        ...,
        description="Overall service status: healthy or degraded",
    )
    provider: str = Field(..., description="External API provider being polled")
    database: bool = Field(..., description="Whether PostgreSQL answered")
    redis: bool | None = Field(
        default=None,
        description="Whether Redis answered (null when not configured)",
    )
    leader: bool = Field(default=False, description="Whether this process holds the poller lease")
    polling: bool = Field(default=False, description="Whether the poller is running here")
    notifier_mode: str | None = Field(
        default=None,
        description="Active change notifier strategy: feed or direct",
    )
    feed_connected: bool | None = Field(
        default=None,
        description="Change feed listener state (null in direct mode)",
    )
    connections: int = Field(default=0, description="Connected WebSocket clients")


class SnapshotResponse(BaseModel):
    """Latest payload for one source."""

    provider: str
    source: str
    payload: dict[str, Any]
    updatedAt: str | None = None


class SnapshotMapResponse(BaseModel):
    """Latest payload for every source with data."""

    provider: str
    sources: dict[str, dict[str, Any]] = Field(default_factory=dict)
    updatedAtBySource: dict[str, str] = Field(default_factory=dict)
    count: int = 0


class HistoryItem(BaseModel):
    provider: str
    source: str
    payload: dict[str, Any]
    createdAt: str | None = None


class HistoryResponse(BaseModel):
    """History entries, newest first."""

    provider: str
    source: str | None = None
    items: list[HistoryItem] = Field(default_factory=list)
    count: int = 0


class InfoResponse(BaseModel):
    """Service metadata."""

    service: str
    version: str
    provider: str
    regions: list[str]
    notifier_mode: str | None = None
    leader: bool = False
    websocket_path: str = "/ws/metrics"
