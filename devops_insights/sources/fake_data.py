"""
Fake status fetcher for development and demos.

Generates synthetic region status payloads that mimic a real provider.
Values are seeded from the region and a time window, so repeated polls
inside one window return an identical payload (no change detected) and a
new window produces a new payload. Useful for:
- Running the pipeline without a real provider
- Exercising change detection end to end
"""

import random
import time
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from devops_insights.sources.fetchers import StatusFetcher
from devops_insights.sources.schemas import Source

WORKER_TYPES = ["io", "api", "scheduler", "queue"]

THREAT_LEVELS = ["low", "low", "low", "medium", "high"]


class FakeStatusFetcher(StatusFetcher):
    """
    Status fetcher that generates deterministic synthetic payloads.

    Args:
        window_seconds: Length of the window during which output is stable.
        clock: Returns the current UNIX time (injectable for tests).
    """

    name = "fake"

    def __init__(
        self,
        window_seconds: float = 30.0,
        clock: Callable[[], float] = time.time,
    ):
        self._window_seconds = window_seconds
        self._clock = clock

    async def fetch(self, source: Source) -> dict[str, Any]:
        window = int(self._clock() // self._window_seconds)
        return generate_status(source.region, window, self._window_seconds)


def _region_seed(region: str) -> int:
    return sum(ord(c) for c in region)


def generate_status(region: str, window: int, window_seconds: float = 30.0) -> dict[str, Any]:
    """Build one synthetic status payload for ``region`` in time ``window``."""
    region_seed = _region_seed(region)
    rng = random.Random(window * 100_003 + region_seed)

    cpus = region_seed % 5 + 2
    cpu_load = round(min(0.95, max(0.15, 0.3 + rng.random() * 0.5)), 3)
    redis_up = rng.random() > 0.1
    database_up = rng.random() > 0.05

    workers = []
    for i in range(min(4, cpus)):
        workers.append([
            f"{WORKER_TYPES[i % len(WORKER_TYPES)]}-{i + 1}",
            {
                "workers": (region_seed + i * 37) % 8 + 2,
                "idle": rng.randint(0, 4),
                "top_waiting": rng.randint(0, 3),
                "wait_time": round(rng.uniform(0, 250), 1),
            },
        ])

    return {
        "status": "ok" if redis_up and database_up else "degraded",
        "region": region,
        "version": f"1.{region_seed % 10}.{window % 50}",
        "generated_at": datetime.fromtimestamp(
            window * window_seconds, tz=timezone.utc
        ).isoformat(),
        "results": {
            "services": {"redis": redis_up, "database": database_up},
            "stats": {
                "servers_count": cpus,
                "online": rng.randint(2_000, 20_000),
                "session": rng.randint(100, 5_000),
                "server": {
                    "cpus": cpus,
                    "cpu_load": cpu_load,
                    "active_connections": int(cpus * 3_000 * (1 - cpu_load * 0.3)),
                    "wait_time": rng.randint(0, 500),
                    "timers": rng.randint(50, 400),
                    "workers": workers,
                },
            },
            "security": {
                "threat_level": rng.choice(THREAT_LEVELS),
                "failed_auth_attempts": rng.randint(0, 40),
            },
        },
    }
