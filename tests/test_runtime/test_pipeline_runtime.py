"""Tests for PipelineRuntime wiring: startup, leadership and shutdown."""

import asyncio
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from devops_insights.config.settings import Settings
from devops_insights.leader.config import LeaderConfig
from devops_insights.leader.lock import LeaderLock
from devops_insights.notifier.direct import DirectChangeNotifier
from devops_insights.notifier.feed import FeedChangeNotifier
from devops_insights.notifier.publisher import LocalPublisher, RedisPublisher
from devops_insights.services.runtime import PipelineRuntime, create_fetcher
from devops_insights.sources.fake_data import FakeStatusFetcher
from devops_insights.sources.fetchers import HTTPStatusFetcher, StatusFetcher
from devops_insights.sources.schemas import Source


class StaticFetcher(StatusFetcher):
    name = "static"

    def __init__(self):
        self.opened = False
        self.closed = False

    async def open(self) -> None:
        self.opened = True

    async def close(self) -> None:
        self.closed = True

    async def fetch(self, source: Source) -> dict[str, Any]:
        return {"status": "ok", "region": source.region}


async def wait_until(predicate, timeout: float = 1.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


def make_settings(**overrides) -> Settings:
    values = {
        "external_api_name": "acme",
        "allowed_sources": "us-east,eu-west",
        "change_feed_mode": "direct",
        "_env_file": None,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def database():
    db = MagicMock()
    db.connect = AsyncMock()
    db.close = AsyncMock()
    db.health_check = AsyncMock(return_value=True)
    db.connect_dedicated = AsyncMock(side_effect=OSError("connection refused"))
    return db


@pytest.fixture
def fetcher():
    return StaticFetcher()


@pytest.fixture
def leader_config():
    return LeaderConfig(
        ttl_seconds=30, renew_interval_seconds=0.01, retry_interval_seconds=0.01,
    )


class TestSingleInstance:
    @pytest.mark.asyncio
    async def test_start_polls_without_redis(self, database, repository, fetcher):
        runtime = PipelineRuntime(
            make_settings(), database=database, repository=repository, fetcher=fetcher,
        )
        await runtime.start()

        assert fetcher.opened
        assert runtime.is_leader()
        assert isinstance(runtime.notifier, DirectChangeNotifier)
        assert isinstance(runtime.notifier.publisher, LocalPublisher)
        await wait_until(lambda: len(repository.latest) == 2)

        await runtime.stop()
        assert fetcher.closed
        database.close.assert_awaited_once()
        assert not runtime.poller.running

    @pytest.mark.asyncio
    async def test_direct_events_reach_subscribers(self, database, repository, fetcher):
        runtime = PipelineRuntime(
            make_settings(), database=database, repository=repository, fetcher=fetcher,
            run_poller=False,
        )
        await runtime.start()
        ws = AsyncMock()
        runtime.gateway.connect(ws)
        runtime.gateway.subscribe(ws, "eu-west")

        await runtime.poller.poll_once(runtime.registry.get("eu-west"))
        await runtime.notifier.join()

        ws.send_text.assert_awaited_once()
        await runtime.stop()

    @pytest.mark.asyncio
    async def test_api_only_replica_does_not_poll(self, database, repository, fetcher):
        runtime = PipelineRuntime(
            make_settings(), database=database, repository=repository, fetcher=fetcher,
            run_poller=False,
        )
        await runtime.start()

        assert not runtime.poller.running
        assert not runtime.is_leader()
        await runtime.stop()

    @pytest.mark.asyncio
    async def test_auto_mode_falls_back_to_direct(self, database, repository, fetcher):
        runtime = PipelineRuntime(
            make_settings(change_feed_mode="auto"),
            database=database, repository=repository, fetcher=fetcher, run_poller=False,
        )
        await runtime.start()

        assert runtime.notifier_mode == "direct"
        await runtime.stop()

    @pytest.mark.asyncio
    async def test_health(self, database, repository, fetcher):
        runtime = PipelineRuntime(
            make_settings(), database=database, repository=repository, fetcher=fetcher,
            run_poller=False,
        )
        await runtime.start()

        health = await runtime.health()

        assert health["status"] == "healthy"
        assert health["provider"] == "acme"
        assert health["redis"] is None
        assert health["notifier_mode"] == "direct"
        assert health["feed_connected"] is None

        database.health_check.return_value = False
        assert (await runtime.health())["status"] == "degraded"
        await runtime.stop()

    @pytest.mark.asyncio
    async def test_feed_mode_health_tracks_listener(self, database, repository, fetcher):
        conn = MagicMock()
        conn.add_listener = AsyncMock()
        conn.remove_listener = AsyncMock()
        conn.close = AsyncMock()
        conn.is_closed = MagicMock(return_value=False)
        database.connect_dedicated = AsyncMock(return_value=conn)
        runtime = PipelineRuntime(
            make_settings(change_feed_mode="feed"),
            database=database, repository=repository, fetcher=fetcher, run_poller=False,
        )
        await runtime.start()

        assert isinstance(runtime.notifier, FeedChangeNotifier)
        assert runtime.poller._change_sink is None
        runtime.notifier._on_connection_lost(conn)
        assert (await runtime.health())["status"] == "degraded"
        await runtime.stop()


class TestLeaderElection:
    @pytest.mark.asyncio
    async def test_leader_polls_and_publishes_via_redis(
        self, database, repository, fetcher, fake_redis, leader_config,
    ):
        runtime = PipelineRuntime(
            make_settings(), database=database, repository=repository, fetcher=fetcher,
            redis_client=fake_redis, leader_config=leader_config,
        )
        await runtime.start()

        await wait_until(runtime.is_leader)
        await wait_until(lambda: len(fake_redis.published) == 2)
        assert isinstance(runtime.notifier.publisher, RedisPublisher)
        assert runtime.poller.running
        assert fake_redis.last_pubsub.channels == {"metrics:updates"}

        await runtime.stop()
        assert await LeaderLock(fake_redis).current_holder(runtime.leader_key) is None
        assert fake_redis.closed

    @pytest.mark.asyncio
    async def test_follower_waits(self, database, repository, fetcher, fake_redis, leader_config):
        await fake_redis.set(leader_config.key_for("acme"), "someone-else", nx=True, px=30_000)
        runtime = PipelineRuntime(
            make_settings(), database=database, repository=repository, fetcher=fetcher,
            redis_client=fake_redis, leader_config=leader_config,
        )
        await runtime.start()
        await asyncio.sleep(0.05)

        assert not runtime.is_leader()
        assert not runtime.poller.running
        assert repository.latest == {}
        await runtime.stop()

    @pytest.mark.asyncio
    async def test_lost_leadership_stops_polling_and_rejoins(
        self, database, repository, fetcher, fake_redis, leader_config, clock,
    ):
        runtime = PipelineRuntime(
            make_settings(), database=database, repository=repository, fetcher=fetcher,
            redis_client=fake_redis, leader_config=leader_config,
        )
        await runtime.start()
        await wait_until(runtime.is_leader)
        first_election = runtime.election

        fake_redis._data[runtime.leader_key] = ("intruder", clock() + 30)

        await wait_until(lambda: runtime.election is not first_election)
        await wait_until(lambda: not runtime.poller.running)
        assert not runtime.is_leader()

        clock.advance(31)
        await wait_until(runtime.is_leader)
        await wait_until(lambda: runtime.poller.running)
        await runtime.stop()


class TestCreateFetcher:
    def test_fake_data(self):
        assert isinstance(create_fetcher(make_settings(use_fake_data=True)), FakeStatusFetcher)

    def test_http(self):
        assert isinstance(create_fetcher(make_settings()), HTTPStatusFetcher)
