"""
Control Plane Routing Client

Reads tenant routing configuration from the administrative control plane
over HTTP. Calls are short, authenticated with a bearer token and guarded
by a circuit breaker so a degraded control plane turns into fast 503s
instead of stalled webhooks.
"""

import logging
from typing import Any, Optional, Type, TypeVar
from urllib.parse import quote

import httpx
from pydantic import BaseModel, ValidationError

from ..core.exceptions import UpstreamUnavailableError
from ..models.routing import BusinessHours, DidRouting, Extension, RingGroup
from ..reliability.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from ..routing.config_reader import RoutingConfigReader

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class ControlPlaneConfigReader(RoutingConfigReader):
    """RoutingConfigReader backed by the control plane REST API"""

    SERVICE_NAME = "control-plane"

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 2.0,
        breaker: Optional[CircuitBreaker] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        self.client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )
        self.breaker = breaker or CircuitBreaker(
            self.SERVICE_NAME,
            CircuitBreakerConfig(failure_threshold=5, timeout_seconds=15.0),
        )
        self._fetch_json = self.breaker(self._request)

    async def _request(self, path: str) -> Optional[dict[str, Any]]:
        try:
            response = await self.client.get(path)
        except httpx.HTTPError as e:
            logger.warning(f"Control plane request {path} failed: {e!r}")
            raise UpstreamUnavailableError(self.SERVICE_NAME, str(e)) from e

        if response.status_code == 404:
            return None

        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.warning(f"Control plane returned {e.response.status_code} for {path}")
            raise UpstreamUnavailableError(
                self.SERVICE_NAME, f"HTTP {e.response.status_code}"
            ) from e

        return response.json()

    async def _fetch(self, path: str, model: Type[ModelT]) -> Optional[ModelT]:
        data = await self._fetch_json(path)
        if data is None:
            return None
        try:
            return model.model_validate(data.get("data", data))
        except ValidationError as e:
            logger.error(f"Control plane sent invalid {model.__name__} at {path}: {e}")
            return None

    async def get_did_routing(self, did: str) -> Optional[DidRouting]:
        return await self._fetch(f"/api/v1/routing/dids/{quote(did, safe='')}", DidRouting)

    async def get_extension(self, tenant_id: str, extension_id: str) -> Optional[Extension]:
        return await self._fetch(
            f"/api/v1/tenants/{quote(tenant_id)}/extensions/{quote(extension_id)}", Extension
        )

    async def get_ring_group(self, tenant_id: str, group_id: str) -> Optional[RingGroup]:
        return await self._fetch(
            f"/api/v1/tenants/{quote(tenant_id)}/ring-groups/{quote(group_id)}", RingGroup
        )

    async def get_business_hours(self, tenant_id: str, schedule_id: str) -> Optional[BusinessHours]:
        return await self._fetch(
            f"/api/v1/tenants/{quote(tenant_id)}/business-hours/{quote(schedule_id)}", BusinessHours
        )

    async def close(self) -> None:
        await self.client.aclose()
