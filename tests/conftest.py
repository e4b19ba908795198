"""
Pytest configuration and fixtures
"""

import os
from datetime import datetime, timezone

import pytest
import pytest_asyncio

# Set test environment variables before importing app modules
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DEBUG", "false")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("WEBHOOK_VERIFY_SIGNATURE", "false")
os.environ.setdefault("WEBHOOK_BASE_URL", "https://router.example.com")

import fakeredis
import fakeredis.aioredis

from call_router.calls.state_store import CallStateStore
from call_router.cxml.builder import ResponseBuilder, ResponseBuilderConfig
from call_router.events.publisher import EventPublisher
from call_router.reliability.call_lock import CallLockManager
from call_router.reliability.idempotency import IdempotencyGuard
from call_router.routing.config_reader import InMemoryRoutingConfigReader
from call_router.routing.engine import RoutingDecisionEngine
from call_router.services.call_processor import CallProcessor

DIAL_ACTION_URL = "https://router.example.com/webhooks/voice/dial-result"

# Wednesday, 10:00 in New York
OFFICE_OPEN_AT = datetime(2024, 6, 5, 14, 0, tzinfo=timezone.utc)


def sample_routing_config() -> dict:
    """One tenant with every routing target type"""
    return {
        "tenants": [
            {
                "id": "acme",
                "extensions": [
                    {"id": "101", "number": "101"},
                    {"id": "102", "number": "102"},
                    {"id": "103", "number": "103", "sip_uri": "sip:103@pbx.example.com"},
                    {"id": "104", "number": "104", "forward_number": "+15557654321", "ring_timeout": 25},
                ],
                "ring_groups": [
                    {
                        "id": "sales",
                        "name": "Sales",
                        "strategy": "sequential",
                        "members": [
                            {"extension_id": "102", "priority": 2},
                            {"extension_id": "101", "priority": 1},
                        ],
                        "timeout_seconds": 20,
                        "fallback": "voicemail",
                    },
                    {
                        "id": "support",
                        "name": "Support",
                        "strategy": "round_robin",
                        "members": [
                            {"extension_id": "101"},
                            {"extension_id": "102"},
                            {"extension_id": "103"},
                        ],
                        "timeout_seconds": 15,
                        "fallback": "busy",
                    },
                    {
                        "id": "everyone",
                        "strategy": "simultaneous",
                        "members": [
                            {"extension_id": "101"},
                            {"extension_id": "103"},
                        ],
                        "fallback": "hangup",
                    },
                    {
                        "id": "empty",
                        "strategy": "sequential",
                        "members": [],
                        "fallback": "busy",
                        "fallback_message": "Nobody is here.",
                    },
                ],
                "business_hours": [
                    {
                        "id": "office",
                        "timezone": "America/New_York",
                        "weekly": {
                            day: [{"start": "09:00", "end": "17:00"}]
                            for day in ("monday", "tuesday", "wednesday", "thursday", "friday")
                        },
                        "exceptions": [
                            {"date": "2024-12-25", "name": "Christmas", "ranges": []},
                            {"date": "2024-12-24", "name": "Christmas Eve",
                             "ranges": [{"start": "09:00", "end": "12:00"}]},
                        ],
                        "open_target": {"type": "ring_group", "id": "sales"},
                        "closed_target": {"type": "voicemail"},
                    }
                ],
                "dids": [
                    {"did": "+15551230000", "target": {"type": "ring_group", "id": "sales"}},
                    {"did": "+15551230001", "target": {"type": "extension", "id": "101"}},
                    {"did": "+15551230002", "target": {"type": "business_hours", "id": "office"}},
                    {"did": "+15551230003", "target": {"type": "ring_group", "id": "support"}},
                    {"did": "+15551230004", "target": {"type": "ring_group", "id": "empty"}},
                    {"did": "+15551230005", "target": {"type": "extension", "id": "999"}},
                    {"did": "+15551230006", "target": {"type": "voicemail"}},
                    {"did": "+15551230007", "target": {"type": "ring_group", "id": "everyone"}},
                    {"did": "+15551230008", "target": {"type": "extension", "id": "101"}, "active": False},
                ],
            }
        ]
    }


@pytest.fixture
def routing_config() -> dict:
    return sample_routing_config()


@pytest.fixture
def config_reader(routing_config) -> InMemoryRoutingConfigReader:
    return InMemoryRoutingConfigReader.from_dict(routing_config)


@pytest.fixture
def builder_config() -> ResponseBuilderConfig:
    return ResponseBuilderConfig(dial_action_url=DIAL_ACTION_URL)


@pytest.fixture
def builder(builder_config) -> ResponseBuilder:
    return ResponseBuilder(builder_config)


@pytest.fixture
def engine() -> RoutingDecisionEngine:
    return RoutingDecisionEngine(default_ring_timeout=20)


@pytest_asyncio.fixture
async def redis_client():
    """Fresh in-process Redis per test"""
    client = fakeredis.aioredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)
    yield client
    await client.aclose()


@pytest_asyncio.fixture
async def publisher(redis_client):
    publisher = EventPublisher(redis_client, send_timeout_seconds=1.0)
    yield publisher
    await publisher.drain(timeout=1.0)


@pytest_asyncio.fixture
async def processor(redis_client, config_reader, engine, builder, publisher) -> CallProcessor:
    """CallProcessor wired to fake Redis with the clock frozen during office hours"""
    return CallProcessor(
        guard=IdempotencyGuard(redis_client, ttl_seconds=86400, max_response_bytes=102400),
        locks=CallLockManager(redis_client, ttl_seconds=5.0, acquire_timeout_seconds=3.0,
                              retry_interval_seconds=0.01),
        states=CallStateStore(redis_client, state_ttl_seconds=3600, grace_seconds=300),
        reader=config_reader,
        engine=engine,
        builder=builder,
        publisher=publisher,
        deadline_seconds=4.0,
        clock=lambda: OFFICE_OPEN_AT,
    )
