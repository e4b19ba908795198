"""
Tests for routing configuration readers
"""

import json
from unittest.mock import AsyncMock

import httpx
import pytest

from call_router.core.exceptions import UpstreamUnavailableError
from call_router.integrations.control_plane import ControlPlaneConfigReader
from call_router.models.routing import DidRouting, Extension, RoutingTarget, TargetType
from call_router.reliability.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitOpenError,
    CircuitState,
)
from call_router.routing.config_reader import (
    CachedRoutingConfigReader,
    InMemoryRoutingConfigReader,
)


class TestInMemoryReader:
    """Lookups and snapshots from an in-memory configuration"""

    @pytest.mark.asyncio
    async def test_did_lookup_normalizes_number(self, config_reader):
        routing = await config_reader.get_did_routing("(555) 123-0000")

        assert routing is not None
        assert routing.tenant_id == "acme"
        assert routing.target.id == "sales"

    @pytest.mark.asyncio
    async def test_lookups_are_tenant_scoped(self, config_reader):
        assert await config_reader.get_extension("acme", "101") is not None
        assert await config_reader.get_extension("globex", "101") is None

    @pytest.mark.asyncio
    async def test_unknown_did_gives_empty_snapshot(self, config_reader):
        snapshot = await config_reader.load_snapshot("+15559999999")

        assert snapshot.tenant_id is None
        assert snapshot.dids == {}

    @pytest.mark.asyncio
    async def test_ring_group_snapshot_includes_members(self, config_reader):
        snapshot = await config_reader.load_snapshot("+15551230000")

        assert set(snapshot.ring_groups) == {"sales"}
        assert set(snapshot.extensions) == {"101", "102"}

    @pytest.mark.asyncio
    async def test_business_hours_snapshot_follows_both_targets(self, config_reader):
        snapshot = await config_reader.load_snapshot("+15551230002")

        assert set(snapshot.business_hours) == {"office"}
        assert set(snapshot.ring_groups) == {"sales"}

    @pytest.mark.asyncio
    async def test_missing_reference_is_left_out(self, config_reader):
        snapshot = await config_reader.load_snapshot("+15551230005")

        assert "+15551230005" in snapshot.dids
        assert snapshot.extensions == {}

    @pytest.mark.asyncio
    async def test_from_file(self, tmp_path, routing_config):
        path = tmp_path / "routing.json"
        path.write_text(json.dumps(routing_config), encoding="utf-8")

        reader = InMemoryRoutingConfigReader.from_file(path)

        assert await reader.get_ring_group("acme", "support") is not None


class TestCachedReader:
    """TTL cache in front of a reader"""

    @pytest.mark.asyncio
    async def test_hits_are_served_from_cache(self, config_reader):
        inner = AsyncMock(wraps=config_reader)
        cached = CachedRoutingConfigReader(inner, ttl_seconds=60)

        first = await cached.get_did_routing("+15551230001")
        second = await cached.get_did_routing("+15551230001")

        assert first == second
        assert inner.get_did_routing.await_count == 1

    @pytest.mark.asyncio
    async def test_negative_lookups_are_cached(self, config_reader):
        inner = AsyncMock(wraps=config_reader)
        cached = CachedRoutingConfigReader(inner, ttl_seconds=60)

        assert await cached.get_did_routing("+15559999999") is None
        assert await cached.get_did_routing("+15559999999") is None
        assert inner.get_did_routing.await_count == 1

    @pytest.mark.asyncio
    async def test_entries_expire(self, config_reader):
        inner = AsyncMock(wraps=config_reader)
        cached = CachedRoutingConfigReader(inner, ttl_seconds=0)

        await cached.get_extension("acme", "101")
        await cached.get_extension("acme", "101")

        assert inner.get_extension.await_count == 2

    @pytest.mark.asyncio
    async def test_invalidate_clears_entries(self, config_reader):
        inner = AsyncMock(wraps=config_reader)
        cached = CachedRoutingConfigReader(inner, ttl_seconds=60)

        await cached.get_ring_group("acme", "sales")
        cached.invalidate()
        await cached.get_ring_group("acme", "sales")

        assert inner.get_ring_group.await_count == 2

    @pytest.mark.asyncio
    async def test_size_is_bounded(self):
        reader = InMemoryRoutingConfigReader()
        cached = CachedRoutingConfigReader(reader, ttl_seconds=60, max_entries=2)

        for did in ("+15550000001", "+15550000002", "+15550000003"):
            await cached.get_did_routing(did)

        assert len(cached._cache) == 2

    @pytest.mark.asyncio
    async def test_snapshot_through_cache(self, config_reader):
        cached = CachedRoutingConfigReader(config_reader, ttl_seconds=60)

        snapshot = await cached.load_snapshot("+15551230003")

        assert set(snapshot.extensions) == {"101", "102", "103"}


def _control_plane(handler, breaker=None) -> ControlPlaneConfigReader:
    return ControlPlaneConfigReader(
        base_url="https://control.example.com/",
        token="secret-token",
        breaker=breaker,
        transport=httpx.MockTransport(handler),
    )


class TestControlPlaneReader:
    """HTTP reader against a mocked control plane"""

    @pytest.mark.asyncio
    async def test_did_lookup(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={
                "data": {
                    "did": "+15551230000",
                    "tenant_id": "acme",
                    "target": {"type": "ring_group", "id": "sales"},
                }
            })

        reader = _control_plane(handler)
        routing = await reader.get_did_routing("+15551230000")
        await reader.close()

        assert routing == DidRouting(
            did="+15551230000",
            tenant_id="acme",
            target=RoutingTarget(type=TargetType.RING_GROUP, id="sales"),
        )
        assert seen[0].url.raw_path == b"/api/v1/routing/dids/%2B15551230000"
        assert seen[0].headers["Authorization"] == "Bearer secret-token"

    @pytest.mark.asyncio
    async def test_unwrapped_body_and_tenant_path(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/api/v1/tenants/acme/extensions/101"
            return httpx.Response(200, json={"id": "101", "number": "101"})

        reader = _control_plane(handler)
        extension = await reader.get_extension("acme", "101")
        await reader.close()

        assert extension == Extension(id="101", number="101")

    @pytest.mark.asyncio
    async def test_not_found_is_none(self):
        reader = _control_plane(lambda request: httpx.Response(404))

        assert await reader.get_ring_group("acme", "nope") is None
        assert reader.breaker.stats.consecutive_failures == 0
        await reader.close()

    @pytest.mark.asyncio
    async def test_invalid_record_is_none(self):
        reader = _control_plane(lambda request: httpx.Response(200, json={"name": "no id"}))

        assert await reader.get_business_hours("acme", "office") is None
        await reader.close()

    @pytest.mark.asyncio
    async def test_server_error_is_transient(self):
        reader = _control_plane(lambda request: httpx.Response(502))

        with pytest.raises(UpstreamUnavailableError) as exc_info:
            await reader.get_did_routing("+15551230000")
        await reader.close()

        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_transport_error_is_transient(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        reader = _control_plane(handler)

        with pytest.raises(UpstreamUnavailableError):
            await reader.get_did_routing("+15551230000")
        await reader.close()

    @pytest.mark.asyncio
    async def test_repeated_failures_open_circuit(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(500)

        breaker = CircuitBreaker("control-plane", CircuitBreakerConfig(failure_threshold=2, timeout_seconds=60))
        reader = _control_plane(handler, breaker=breaker)

        for _ in range(2):
            with pytest.raises(UpstreamUnavailableError):
                await reader.get_did_routing("+15551230000")

        with pytest.raises(CircuitOpenError):
            await reader.get_did_routing("+15551230000")
        await reader.close()

        assert breaker.state == CircuitState.OPEN
        assert len(calls) == 2


class TestCircuitBreaker:
    """Breaker state transitions"""

    @pytest.mark.asyncio
    async def test_half_open_after_timeout_then_closes(self):
        breaker = CircuitBreaker("test", CircuitBreakerConfig(
            failure_threshold=1, success_threshold=1, timeout_seconds=0,
        ))

        await breaker.record_failure()
        assert breaker.state == CircuitState.OPEN

        assert await breaker.allow_request() is True
        assert breaker.state == CircuitState.HALF_OPEN

        await breaker.record_success()
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_failure_in_half_open_reopens(self):
        breaker = CircuitBreaker("test", CircuitBreakerConfig(failure_threshold=1, timeout_seconds=0))

        await breaker.record_failure()
        await breaker.allow_request()
        await breaker.record_failure()

        assert breaker.state == CircuitState.OPEN
        assert breaker.get_stats()["total_failures"] == 2
