"""Shared fixtures for API tests."""

from datetime import datetime, timezone
from typing import Any

import pytest
from fastapi.testclient import TestClient

from devops_insights.api.app import create_app
from devops_insights.gateway.gateway import SubscriptionGateway
from devops_insights.sources.registry import SourceRegistry
from devops_insights.sources.schemas import HistoryEntry, Snapshot

REGIONS = ["us-east", "eu-west", "eu-central", "us-west", "sa-east", "ap-southeast"]


def _make_snapshot(region: str, payload: dict[str, Any] | None = None) -> Snapshot:
    return Snapshot(
        provider="acme",
        region=region,
        payload=payload or {"status": "ok", "region": region},
        fingerprint="f" * 64,
        updated_at=datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc),
    )


class StubRuntime:
    """Just enough of PipelineRuntime for the routes (no database, no Redis)."""

    def __init__(self, gateway: SubscriptionGateway, registry: SourceRegistry):
        self.gateway = gateway
        self.registry = registry
        self.provider = "acme"
        self.notifier_mode = "direct"
        self.leader = True
        self.health_status: dict[str, Any] = {
            "status": "healthy",
            "provider": "acme",
            "database": True,
            "redis": None,
            "leader": True,
            "polling": True,
            "notifier_mode": "direct",
            "feed_connected": None,
            "connections": 0,
        }

    def is_leader(self) -> bool:
        return self.leader

    async def health(self) -> dict[str, Any]:
        return dict(self.health_status, connections=self.gateway.active_connections)


@pytest.fixture
def registry(test_settings):
    return SourceRegistry.from_settings(test_settings)


@pytest.fixture
def gateway(repository, registry):
    return SubscriptionGateway(
        repository, registry, provider="acme", max_connections=2, heartbeat_interval=300,
    )


@pytest.fixture
def runtime(gateway, registry):
    return StubRuntime(gateway, registry)


@pytest.fixture
def client(runtime):
    return TestClient(create_app(runtime=runtime))


@pytest.fixture
def seeded(repository):
    """Two stored regions and five history entries for sa-east."""
    for region in ("us-east", "eu-west"):
        repository.latest[("acme", region)] = _make_snapshot(region)
    for n in range(5):
        repository.history.append(HistoryEntry(
            id=n + 1,
            provider="acme",
            region="sa-east",
            payload={"n": n},
            fingerprint=f"f{n}",
            created_at=datetime(2026, 3, 1, 12, n, 0, tzinfo=timezone.utc),
        ))
    return repository
