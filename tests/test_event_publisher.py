"""
Tests for lifecycle event publishing
"""

import asyncio
import json
import logging
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from call_router.events.publisher import Event, EventPublisher, EventType


class TestEvent:

    def test_dict_round_trip_keeps_fields(self):
        publisher = EventPublisher(MagicMock())
        publisher.publish = MagicMock()

        event = publisher.emit(EventType.CALL_STARTED, "CA400", "acme", {"did": "+15551230000"})
        restored = Event.from_dict(json.loads(json.dumps(event.to_dict())))

        assert restored == event
        assert restored.source == "call-router"
        publisher.publish.assert_called_once_with(event)


class TestEventPublisher:
    """Delivery to Redis streams and pub/sub"""

    @pytest.mark.asyncio
    async def test_emit_writes_stream_entry(self, redis_client):
        publisher = EventPublisher(redis_client, service_name="router-test")

        event = publisher.emit(EventType.CALL_ENDED, "CA400", "acme", {"status": "completed"})
        await publisher.drain(timeout=1.0)

        entries = await redis_client.xrange("events:call.ended")
        assert len(entries) == 1
        data = json.loads(entries[0][1]["data"])
        assert data["id"] == str(event.id)
        assert data["tenant_id"] == "acme"
        assert data["payload"] == {"status": "completed"}
        assert data["source"] == "router-test"

    @pytest.mark.asyncio
    async def test_emit_publishes_to_tenant_channel(self, redis_client):
        publisher = EventPublisher(redis_client)
        pubsub = redis_client.pubsub()
        await pubsub.subscribe("events:realtime:acme")
        await pubsub.get_message(timeout=0.1)

        publisher.emit(EventType.CALL_ANSWERED, "CA400", "acme")
        await publisher.drain(timeout=1.0)

        message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
        await pubsub.aclose()

        assert message is not None
        assert json.loads(message["data"])["type"] == "call.answered"

    @pytest.mark.asyncio
    async def test_emit_does_not_wait_for_delivery(self):
        """A stalled store never blocks the caller"""
        async def stall(*args, **kwargs):
            await asyncio.sleep(1)

        client = MagicMock()
        client.xadd = AsyncMock(side_effect=stall)
        publisher = EventPublisher(client, send_timeout_seconds=0.05)

        publisher.emit(EventType.CALL_STARTED, "CA400", "acme")

        assert publisher.pending == 1
        await publisher.drain(timeout=1.0)
        assert publisher.pending == 0

    @pytest.mark.asyncio
    async def test_send_timeout_is_logged_not_raised(self, caplog):
        async def stall(*args, **kwargs):
            await asyncio.sleep(1)

        client = MagicMock()
        client.xadd = AsyncMock(side_effect=stall)
        publisher = EventPublisher(client, send_timeout_seconds=0.05)
        event = Event(
            id=uuid4(),
            type=EventType.CALL_STARTED,
            call_id="CA400",
            tenant_id="acme",
            timestamp=datetime.now(timezone.utc),
        )

        with caplog.at_level(logging.WARNING, logger="call_router.events.publisher"):
            delivered = await publisher._send(event)

        assert delivered is False
        assert "Timed out publishing call.started" in caplog.text

    @pytest.mark.asyncio
    async def test_store_failure_is_swallowed(self):
        client = MagicMock()
        client.xadd = AsyncMock(side_effect=RedisConnectionError("down"))
        client.publish = AsyncMock()
        publisher = EventPublisher(client)

        event = publisher.emit(EventType.CALL_ENDED, "CA400", "acme")
        await publisher.drain(timeout=1.0)

        assert await publisher._send(event) is False
        client.publish.assert_not_called()

    @pytest.mark.asyncio
    async def test_drain_without_pending_returns(self, redis_client):
        publisher = EventPublisher(redis_client)

        await publisher.drain(timeout=0.1)

        assert publisher.pending == 0
