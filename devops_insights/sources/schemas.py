"""Schema definitions for polled sources and their stored payloads.

``Snapshot`` maps to the ``metrics_latest`` table (one row per provider and
region) and ``HistoryEntry`` to the append-only ``metrics_history`` table.
``ChangeEvent`` is the single event shape pushed to subscribers, whichever
notifier strategy produced it.
"""

import hashlib
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


def canonical_json(payload: Any) -> str:
    """Serialize a payload deterministically (sorted keys, compact)."""
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)


def compute_fingerprint(payload: Any) -> str:
    """SHA-256 hex digest of the canonical JSON form of ``payload``."""
    return hashlib.sha256(canonical_json(payload).encode("utf-8")).hexdigest()


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


@dataclass(frozen=True)
class Source:
    """One external (provider, region) status endpoint.

    Attributes:
        provider: Provider name (lower-case).
        region: Region code from the allowed set.
        url: Status URL polled for this region.
        interval_seconds: Delay between consecutive polls.
    """

    provider: str
    region: str
    url: str
    interval_seconds: float = 30.0

    @property
    def key(self) -> str:
        """Stable identifier, also used for task names and cache keys."""
        return f"{self.provider}:{self.region}"


@dataclass
class Snapshot:
    """Latest known payload for a source."""

    provider: str
    region: str
    payload: dict[str, Any]
    fingerprint: str
    updated_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    created_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dictionary."""
        return {
            "provider": self.provider,
            "source": self.region,
            "payload": self.payload,
            "fingerprint": self.fingerprint,
            "updatedAt": _iso(self.updated_at),
        }


@dataclass
class HistoryEntry:
    """Immutable record of one payload change."""

    provider: str
    region: str
    payload: dict[str, Any]
    fingerprint: str
    created_at: datetime
    id: int | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dictionary."""
        return {
            "provider": self.provider,
            "source": self.region,
            "payload": self.payload,
            "createdAt": _iso(self.created_at),
        }


@dataclass
class ChangeEvent:
    """A detected change, as delivered to region subscribers.

    Attributes:
        provider: Provider name.
        source: Region the payload belongs to.
        payload: New payload.
        timestamp: When the change was observed.
    """

    provider: str
    source: str
    payload: dict[str, Any]
    timestamp: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dictionary."""
        return {
            "provider": self.provider,
            "source": self.source,
            "payload": self.payload,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ChangeEvent":
        """Create a ChangeEvent from a dictionary.

        Raises:
            KeyError: If ``provider``, ``source`` or ``payload`` is missing.
        """
        timestamp = data.get("timestamp")
        if isinstance(timestamp, str):
            timestamp = datetime.fromisoformat(timestamp)
        elif timestamp is None:
            timestamp = datetime.now(timezone.utc)

        return cls(
            provider=data["provider"],
            source=data["source"],
            payload=data["payload"],
            timestamp=timestamp,
        )
