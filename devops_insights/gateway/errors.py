"""Errors surfaced to WebSocket and REST clients."""

from typing import Any

from devops_insights.sources.registry import InvalidRegionError


class GatewayError(Exception):
    """Base class for client-visible request failures."""


class InvalidRequestError(GatewayError):
    """Malformed message, unknown type, or an impossible time range."""


class SnapshotNotFoundError(GatewayError):
    """No snapshot has been stored yet for the requested region."""

    def __init__(self, region: str):
        self.region = region
        super().__init__(f"No snapshot for source {region!r}")


def error_message(exc: Exception) -> dict[str, Any]:
    """Build the ``error`` message sent back over the WebSocket."""
    message: dict[str, Any] = {"type": "error", "message": str(exc)}
    if isinstance(exc, InvalidRegionError):
        message["allowed"] = exc.allowed
    return message
