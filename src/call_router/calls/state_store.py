"""
Call State Store

Keeps CallState in Redis keyed by tenant and call id. Live calls expire
after the state TTL; terminal calls are kept only for a short grace period
so late webhooks can still be answered consistently.
"""

import logging
from typing import Optional

import redis.asyncio as redis
from pydantic import ValidationError
from redis.exceptions import RedisError

from ..core.exceptions import StoreUnavailableError
from ..models.calls import CallState

logger = logging.getLogger(__name__)


class CallStateStore:
    """Redis-backed CallState persistence"""

    def __init__(
        self,
        redis_client: redis.Redis,
        state_ttl_seconds: int = 3600,
        grace_seconds: int = 300,
        key_prefix: str = "call:state",
    ):
        self.redis = redis_client
        self.state_ttl_seconds = state_ttl_seconds
        self.grace_seconds = grace_seconds
        self.key_prefix = key_prefix

    def _key(self, tenant_id: str, call_id: str) -> str:
        return f"{self.key_prefix}:{tenant_id}:{call_id}"

    async def load(self, tenant_id: str, call_id: str) -> Optional[CallState]:
        """Load state, or None when the call was never seen or has expired"""
        try:
            raw = await self.redis.get(self._key(tenant_id, call_id))
        except RedisError as e:
            raise StoreUnavailableError("call state load", str(e)) from e

        if raw is None:
            return None

        try:
            return CallState.model_validate_json(raw)
        except ValidationError as e:
            # Unreadable state is treated like lost state
            logger.warning(f"Discarding unreadable state for call {call_id}: {e}")
            return None

    async def save(self, state: CallState) -> None:
        ttl = self.grace_seconds if state.phase.is_terminal else self.state_ttl_seconds
        try:
            await self.redis.set(
                self._key(state.tenant_id, state.call_id),
                state.model_dump_json(),
                ex=ttl,
            )
        except RedisError as e:
            raise StoreUnavailableError("call state save", str(e)) from e
