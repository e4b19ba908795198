"""
Routing Config Reader

Read-only access to tenant routing configuration owned by the control
plane. The engine never talks to a reader directly: the call processor
loads a TenantRoutingSnapshot for the dialed DID and hands it over.
"""

import json
import logging
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional, Union

from ..models.routing import (
    BusinessHours,
    DidRouting,
    Extension,
    RingGroup,
    RoutingTarget,
    TargetType,
    TenantRoutingSnapshot,
)
from ..utils.helpers import normalize_phone_number

logger = logging.getLogger(__name__)


class RoutingConfigReader(ABC):
    """Tenant-scoped lookups of routing configuration"""

    @abstractmethod
    async def get_did_routing(self, did: str) -> Optional[DidRouting]:
        """Resolve a dialed number to its tenant and routing target"""

    @abstractmethod
    async def get_extension(self, tenant_id: str, extension_id: str) -> Optional[Extension]:
        pass

    @abstractmethod
    async def get_ring_group(self, tenant_id: str, group_id: str) -> Optional[RingGroup]:
        pass

    @abstractmethod
    async def get_business_hours(self, tenant_id: str, schedule_id: str) -> Optional[BusinessHours]:
        pass

    async def close(self) -> None:
        """Release any held connections"""

    async def load_snapshot(
        self,
        did: str,
        did_routing: Optional[DidRouting] = None,
    ) -> TenantRoutingSnapshot:
        """
        Collect everything the DID's target can reach into one snapshot.

        Missing references are left out; the decision engine treats them as
        misconfiguration. Business hours nested under business hours are not
        followed.
        """
        if did_routing is None:
            did_routing = await self.get_did_routing(did)
        if did_routing is None:
            return TenantRoutingSnapshot()

        snapshot = TenantRoutingSnapshot(
            tenant_id=did_routing.tenant_id,
            dids={normalize_phone_number(did_routing.did): did_routing},
        )
        await self._collect(snapshot, did_routing.target, allow_schedule=True)
        return snapshot

    async def _collect(
        self,
        snapshot: TenantRoutingSnapshot,
        target: RoutingTarget,
        allow_schedule: bool,
    ) -> None:
        tenant_id = snapshot.tenant_id

        if target.type == TargetType.EXTENSION:
            extension = await self.get_extension(tenant_id, target.id)
            if extension:
                snapshot.extensions[extension.id] = extension

        elif target.type == TargetType.RING_GROUP:
            group = await self.get_ring_group(tenant_id, target.id)
            if group is None:
                return
            snapshot.ring_groups[group.id] = group
            for member in group.members:
                if member.extension_id in snapshot.extensions:
                    continue
                extension = await self.get_extension(tenant_id, member.extension_id)
                if extension:
                    snapshot.extensions[extension.id] = extension

        elif target.type == TargetType.BUSINESS_HOURS and allow_schedule:
            schedule = await self.get_business_hours(tenant_id, target.id)
            if schedule is None:
                return
            snapshot.business_hours[schedule.id] = schedule
            await self._collect(snapshot, schedule.open_target, allow_schedule=False)
            await self._collect(snapshot, schedule.closed_target, allow_schedule=False)


# ============================================================================
# IN-MEMORY / FILE READER
# ============================================================================


class InMemoryRoutingConfigReader(RoutingConfigReader):
    """
    Routing configuration held in process memory.

    Used for single-tenant deployments fed from a JSON file and in tests.
    File layout:

        {"tenants": [{"id": "...", "dids": [...], "extensions": [...],
                      "ring_groups": [...], "business_hours": [...]}]}
    """

    def __init__(self):
        self._dids: dict[str, DidRouting] = {}
        self._extensions: dict[tuple[str, str], Extension] = {}
        self._ring_groups: dict[tuple[str, str], RingGroup] = {}
        self._business_hours: dict[tuple[str, str], BusinessHours] = {}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "InMemoryRoutingConfigReader":
        reader = cls()
        for tenant in data.get("tenants", []):
            tenant_id = tenant["id"]
            for extension in tenant.get("extensions", []):
                reader.add_extension(tenant_id, Extension.model_validate(extension))
            for group in tenant.get("ring_groups", []):
                reader.add_ring_group(tenant_id, RingGroup.model_validate(group))
            for schedule in tenant.get("business_hours", []):
                reader.add_business_hours(tenant_id, BusinessHours.model_validate(schedule))
            for did in tenant.get("dids", []):
                reader.add_did(DidRouting.model_validate({**did, "tenant_id": tenant_id}))
        return reader

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "InMemoryRoutingConfigReader":
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        reader = cls.from_dict(data)
        logger.info(f"Loaded {len(reader._dids)} DID route(s) from {path}")
        return reader

    def add_did(self, routing: DidRouting) -> None:
        routing = routing.model_copy(update={"did": normalize_phone_number(routing.did)})
        self._dids[routing.did] = routing

    def add_extension(self, tenant_id: str, extension: Extension) -> None:
        self._extensions[(tenant_id, extension.id)] = extension

    def add_ring_group(self, tenant_id: str, group: RingGroup) -> None:
        self._ring_groups[(tenant_id, group.id)] = group

    def add_business_hours(self, tenant_id: str, schedule: BusinessHours) -> None:
        self._business_hours[(tenant_id, schedule.id)] = schedule

    async def get_did_routing(self, did: str) -> Optional[DidRouting]:
        return self._dids.get(normalize_phone_number(did))

    async def get_extension(self, tenant_id: str, extension_id: str) -> Optional[Extension]:
        return self._extensions.get((tenant_id, extension_id))

    async def get_ring_group(self, tenant_id: str, group_id: str) -> Optional[RingGroup]:
        return self._ring_groups.get((tenant_id, group_id))

    async def get_business_hours(self, tenant_id: str, schedule_id: str) -> Optional[BusinessHours]:
        return self._business_hours.get((tenant_id, schedule_id))


# ============================================================================
# CACHING DECORATOR
# ============================================================================


_MISSING = object()


class CachedRoutingConfigReader(RoutingConfigReader):
    """
    TTL cache in front of another reader.

    Negative lookups are cached too, so an unknown DID under a call flood
    does not hammer the control plane. Staleness is bounded by ttl_seconds.
    """

    def __init__(self, inner: RoutingConfigReader, ttl_seconds: float = 30.0, max_entries: int = 10000):
        self.inner = inner
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._cache: dict[tuple, tuple[float, Any]] = {}

    def _get(self, key: tuple) -> Any:
        entry = self._cache.get(key)
        if entry is None:
            return _MISSING
        expires_at, value = entry
        if time.monotonic() >= expires_at:
            del self._cache[key]
            return _MISSING
        return value

    def _put(self, key: tuple, value: Any) -> None:
        if len(self._cache) >= self.max_entries:
            self._evict_expired()
            if len(self._cache) >= self.max_entries:
                self._cache.pop(next(iter(self._cache)))
        self._cache[key] = (time.monotonic() + self.ttl_seconds, value)

    def _evict_expired(self) -> None:
        now = time.monotonic()
        for key in [k for k, (expires_at, _) in self._cache.items() if expires_at <= now]:
            del self._cache[key]

    async def _cached(self, key: tuple, loader) -> Any:
        value = self._get(key)
        if value is _MISSING:
            value = await loader()
            self._put(key, value)
        return value

    def invalidate(self) -> None:
        self._cache.clear()

    async def get_did_routing(self, did: str) -> Optional[DidRouting]:
        return await self._cached(("did", did), lambda: self.inner.get_did_routing(did))

    async def get_extension(self, tenant_id: str, extension_id: str) -> Optional[Extension]:
        return await self._cached(
            ("extension", tenant_id, extension_id),
            lambda: self.inner.get_extension(tenant_id, extension_id),
        )

    async def get_ring_group(self, tenant_id: str, group_id: str) -> Optional[RingGroup]:
        return await self._cached(
            ("ring_group", tenant_id, group_id),
            lambda: self.inner.get_ring_group(tenant_id, group_id),
        )

    async def get_business_hours(self, tenant_id: str, schedule_id: str) -> Optional[BusinessHours]:
        return await self._cached(
            ("business_hours", tenant_id, schedule_id),
            lambda: self.inner.get_business_hours(tenant_id, schedule_id),
        )

    async def close(self) -> None:
        await self.inner.close()
