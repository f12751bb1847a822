"""Tests for strategy selection and the event publishers."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from devops_insights.notifier.direct import DirectChangeNotifier
from devops_insights.notifier.errors import ChangeFeedUnavailableError
from devops_insights.notifier.feed import FeedChangeNotifier
from devops_insights.notifier.publisher import UPDATES_CHANNEL, LocalPublisher, RedisPublisher
from devops_insights.notifier.selector import select_notifier
from devops_insights.sources.schemas import ChangeEvent


@pytest.fixture
def working_db():
    conn = MagicMock()
    conn.add_listener = AsyncMock()
    conn.remove_listener = AsyncMock()
    conn.close = AsyncMock()
    conn.is_closed = MagicMock(return_value=False)
    db = MagicMock()
    db.connect_dedicated = AsyncMock(return_value=conn)
    return db


@pytest.fixture
def broken_db():
    db = MagicMock()
    db.connect_dedicated = AsyncMock(side_effect=OSError("connection refused"))
    return db


@pytest.fixture
def local():
    return LocalPublisher(AsyncMock(return_value=1))


class TestSelectNotifier:
    @pytest.mark.asyncio
    async def test_auto_prefers_feed(self, working_db, repository, local):
        notifier = await select_notifier(
            "auto", database=working_db, repository=repository, provider="acme",
            local_publisher=local,
        )

        assert isinstance(notifier, FeedChangeNotifier)
        assert notifier.publisher is local
        assert notifier.running
        await notifier.stop()

    @pytest.mark.asyncio
    async def test_auto_falls_back_to_direct(self, broken_db, repository, local):
        direct_pub = RedisPublisher(AsyncMock())
        notifier = await select_notifier(
            "auto", database=broken_db, repository=repository, provider="acme",
            local_publisher=local, direct_publisher=direct_pub,
        )

        assert isinstance(notifier, DirectChangeNotifier)
        assert notifier.publisher is direct_pub
        assert notifier.running
        await notifier.stop()

    @pytest.mark.asyncio
    async def test_forced_feed_failure_is_fatal(self, broken_db, repository, local):
        with pytest.raises(ChangeFeedUnavailableError):
            await select_notifier(
                "feed", database=broken_db, repository=repository, provider="acme",
                local_publisher=local,
            )

    @pytest.mark.asyncio
    async def test_direct_never_touches_feed(self, working_db, repository, local):
        notifier = await select_notifier(
            "direct", database=working_db, repository=repository, provider="acme",
            local_publisher=local,
        )

        assert isinstance(notifier, DirectChangeNotifier)
        assert notifier.publisher is local
        working_db.connect_dedicated.assert_not_called()
        await notifier.stop()

    @pytest.mark.asyncio
    async def test_queue_size_is_applied(self, broken_db, repository, local):
        notifier = await select_notifier(
            "direct", database=broken_db, repository=repository, provider="acme",
            local_publisher=local, queue_size=7,
        )
        assert notifier._queue.maxsize == 7
        await notifier.stop()


class TestPublishers:
    @pytest.mark.asyncio
    async def test_local_publisher_calls_deliver(self):
        deliver = AsyncMock(return_value=2)
        event = ChangeEvent(provider="acme", source="us-east", payload={"a": 1})

        await LocalPublisher(deliver).publish(event)

        deliver.assert_awaited_once_with(event)

    @pytest.mark.asyncio
    async def test_redis_publisher_envelope(self, fake_redis):
        event = ChangeEvent(provider="acme", source="eu-west", payload={"cpu_load": 42})

        await RedisPublisher(fake_redis).publish(event)

        channel, raw = fake_redis.published[0]
        envelope = json.loads(raw)
        assert channel == UPDATES_CHANNEL
        assert envelope["type"] == "update"
        assert envelope["data"] == event.to_dict()
        assert "traceparent" not in envelope

    @pytest.mark.asyncio
    async def test_redis_publisher_custom_channel(self, fake_redis):
        publisher = RedisPublisher(fake_redis, channel="staging:updates")
        await publisher.publish(ChangeEvent(provider="acme", source="us-east", payload={}))

        assert publisher.channel == "staging:updates"
        assert fake_redis.published[0][0] == "staging:updates"
