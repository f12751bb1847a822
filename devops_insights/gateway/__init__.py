"""Per-region WebSocket subscription gateway."""

from devops_insights.gateway.config import GatewayConfig
from devops_insights.gateway.errors import (
    GatewayError,
    InvalidRequestError,
    SnapshotNotFoundError,
    error_message,
)
from devops_insights.gateway.gateway import ClientSession, SubscriptionGateway
from devops_insights.gateway.protocol import HistoryRequest

__all__ = [
    "ClientSession",
    "GatewayConfig",
    "GatewayError",
    "HistoryRequest",
    "InvalidRequestError",
    "SnapshotNotFoundError",
    "SubscriptionGateway",
    "error_message",
]
