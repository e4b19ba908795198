"""
Call Lifecycle Event Publisher

Emits call.started / call.answered / call.ended for downstream consumers
(presence dashboards, call logging). Publishing is best-effort: it runs in
the background with a bounded send timeout and never delays or fails the
webhook that triggered it.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

import redis.asyncio as redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)


# ============================================================================
# EVENT TYPES
# ============================================================================


class EventType(str, Enum):
    CALL_STARTED = "call.started"
    CALL_ANSWERED = "call.answered"
    CALL_ENDED = "call.ended"


@dataclass
class Event:
    """Lifecycle event record"""
    id: UUID
    type: EventType
    call_id: str
    tenant_id: str
    timestamp: datetime
    payload: dict = field(default_factory=dict)
    source: str = "call-router"

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization"""
        return {
            "id": str(self.id),
            "type": self.type.value,
            "call_id": self.call_id,
            "tenant_id": self.tenant_id,
            "timestamp": self.timestamp.isoformat(),
            "payload": self.payload,
            "source": self.source,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Event":
        """Create from dictionary"""
        return cls(
            id=UUID(data["id"]),
            type=EventType(data["type"]),
            call_id=data["call_id"],
            tenant_id=data["tenant_id"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            payload=data.get("payload", {}),
            source=data.get("source", "call-router"),
        )


# ============================================================================
# PUBLISHER
# ============================================================================


class EventPublisher:
    """
    Redis-backed, fire-and-forget lifecycle event publisher.

    Each event goes to the capped stream events:{type} for reliable
    consumers and to pub/sub events:realtime:{tenant_id} for live views.
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        service_name: str = "call-router",
        send_timeout_seconds: float = 1.0,
        stream_maxlen: int = 10000,
    ):
        self.redis = redis_client
        self.service_name = service_name
        self.send_timeout_seconds = send_timeout_seconds
        self.stream_maxlen = stream_maxlen
        self._pending: set[asyncio.Task] = set()

    def emit(
        self,
        event_type: EventType,
        call_id: str,
        tenant_id: str,
        payload: Optional[dict] = None,
    ) -> Event:
        """Create an event and schedule its delivery"""
        event = Event(
            id=uuid4(),
            type=event_type,
            call_id=call_id,
            tenant_id=tenant_id,
            timestamp=datetime.now(timezone.utc),
            payload=payload or {},
            source=self.service_name,
        )
        self.publish(event)
        return event

    def publish(self, event: Event) -> None:
        """Schedule delivery without waiting for it"""
        task = asyncio.create_task(self._send(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _send(self, event: Event) -> bool:
        data = json.dumps(event.to_dict())
        try:
            await asyncio.wait_for(self._write(event, data), timeout=self.send_timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning(f"Timed out publishing {event.type.value} for call {event.call_id}")
            return False
        except RedisError as e:
            logger.warning(f"Failed to publish {event.type.value} for call {event.call_id}: {e}")
            return False

        logger.debug(f"Published event {event.id} of type {event.type.value}")
        return True

    async def _write(self, event: Event, data: str) -> None:
        await self.redis.xadd(
            f"events:{event.type.value}",
            {"data": data},
            maxlen=self.stream_maxlen,
            approximate=True,
        )
        await self.redis.publish(f"events:realtime:{event.tenant_id}", data)

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for in-flight deliveries (shutdown and tests)"""
        if not self._pending:
            return
        _, not_done = await asyncio.wait(set(self._pending), timeout=timeout)
        if not_done:
            logger.warning(f"{len(not_done)} lifecycle event(s) still pending at drain timeout")
