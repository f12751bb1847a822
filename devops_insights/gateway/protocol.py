"""Client message schemas for ``/ws/metrics``.

Client → server: subscribe, unsubscribe, get_snapshot, get_history, ping.
Server → client: subscribed, unsubscribed, snapshot, history, pong, update,
heartbeat, error.
"""

from datetime import datetime, timezone
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from devops_insights.gateway.errors import InvalidRequestError

SUBSCRIBE = "subscribe"
UNSUBSCRIBE = "unsubscribe"
GET_SNAPSHOT = "get_snapshot"
GET_HISTORY = "get_history"
PING = "ping"


class SubscriptionRequest(BaseModel):
    """``subscribe`` / ``unsubscribe`` body."""

    model_config = ConfigDict(extra="ignore")

    region: str = Field(..., min_length=1)


class SnapshotRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    source: str | None = None


class HistoryRequest(BaseModel):
    """``get_history`` body. ``from`` is a Python keyword, hence the alias."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    source: str | None = None
    from_: datetime | None = Field(default=None, alias="from")
    to: datetime | None = None
    limit: int | None = Field(default=None, ge=1)

    @field_validator("from_", "to")
    @classmethod
    def naive_as_utc(cls, value: datetime | None) -> datetime | None:
        return as_utc(value)


def as_utc(value: datetime | None) -> datetime | None:
    """Read a timestamp without an offset as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


ModelT = TypeVar("ModelT", bound=BaseModel)


def parse_request(model: type[ModelT], message: dict[str, Any]) -> ModelT:
    """Validate a client message, mapping pydantic errors to InvalidRequestError."""
    try:
        return model.model_validate(message)
    except ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ())) or "message"
        raise InvalidRequestError(f"Invalid '{field}': {first.get('msg')}") from e
