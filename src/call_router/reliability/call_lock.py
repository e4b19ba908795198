"""
Distributed Per-Call Lock

Implements:
- Mutual exclusion per call key across processes (SET NX PX)
- Bounded blocking acquisition with a retryable timeout error
- Token-verified release and renewal (Lua compare-and-delete / pexpire)
- Keep-alive renewal while the guarded operation runs
"""

import asyncio
import logging
import secrets
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from ..core.exceptions import LockAcquisitionTimeout, StoreUnavailableError

logger = logging.getLogger(__name__)


RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""

RENEW_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("pexpire", KEYS[1], ARGV[2])
end
return 0
"""


class CallLockManager:
    """
    Advisory per-call lock on Redis.

    Usage:
        locks = CallLockManager(redis_client)

        async with locks.hold(call_lock_key(tenant_id, call_id)):
            ...
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        ttl_seconds: float = 10.0,
        acquire_timeout_seconds: float = 3.0,
        retry_interval_seconds: float = 0.05,
    ):
        self.redis = redis_client
        self.ttl_ms = int(ttl_seconds * 1000)
        self.acquire_timeout_seconds = acquire_timeout_seconds
        self.retry_interval_seconds = retry_interval_seconds
        self._release_script = redis_client.register_script(RELEASE_SCRIPT)
        self._renew_script = redis_client.register_script(RENEW_SCRIPT)

    async def try_acquire(self, key: str) -> Optional[str]:
        """Single non-blocking attempt; returns the holder token or None"""
        token = secrets.token_hex(16)
        try:
            acquired = await self.redis.set(key, token, px=self.ttl_ms, nx=True)
        except RedisError as e:
            raise StoreUnavailableError("lock acquire", str(e)) from e
        return token if acquired else None

    async def acquire(self, key: str, timeout: Optional[float] = None) -> str:
        """
        Block until the lock is held or the timeout elapses.

        Args:
            key: Lock key
            timeout: Seconds to wait (defaults to the manager's acquire timeout)

        Returns:
            Holder token to pass to release/renew

        Raises:
            LockAcquisitionTimeout: Lock still held elsewhere after timeout
        """
        timeout = self.acquire_timeout_seconds if timeout is None else timeout
        started = time.monotonic()
        deadline = started + timeout

        while True:
            token = await self.try_acquire(key)
            if token:
                return token
            if time.monotonic() >= deadline:
                waited = round(time.monotonic() - started, 3)
                logger.warning(f"Lock contention on {key}: gave up after {waited}s")
                raise LockAcquisitionTimeout(key, waited)
            await asyncio.sleep(self.retry_interval_seconds)

    async def release(self, key: str, token: str) -> bool:
        """Release only if still held by token; False when already expired or taken over"""
        try:
            released = await self._release_script(keys=[key], args=[token])
        except RedisError as e:
            raise StoreUnavailableError("lock release", str(e)) from e

        if not released:
            logger.warning(f"Lock {key} was no longer held by this holder at release")
        return bool(released)

    async def renew(self, key: str, token: str) -> bool:
        """Extend the TTL only if still held by token"""
        try:
            renewed = await self._renew_script(keys=[key], args=[token, self.ttl_ms])
        except RedisError as e:
            raise StoreUnavailableError("lock renew", str(e)) from e
        return bool(renewed)

    async def _keep_alive(self, key: str, token: str) -> None:
        interval = max(self.ttl_ms / 3000, 0.01)
        while True:
            await asyncio.sleep(interval)
            try:
                if not await self.renew(key, token):
                    logger.warning(f"Lost lock {key} while holding it")
                    return
            except StoreUnavailableError as e:
                logger.warning(f"Could not renew lock {key}: {e.message}")

    @asynccontextmanager
    async def hold(self, key: str, timeout: Optional[float] = None) -> AsyncIterator[str]:
        """Hold the lock for the duration of the block, released on every exit path"""
        token = await self.acquire(key, timeout)
        keep_alive = asyncio.create_task(self._keep_alive(key, token))
        try:
            yield token
        finally:
            keep_alive.cancel()
            try:
                await keep_alive
            except asyncio.CancelledError:
                pass
            try:
                await asyncio.shield(self.release(key, token))
            except StoreUnavailableError as e:
                # The TTL frees the key on its own
                logger.warning(f"Could not release lock {key}: {e.message}")

    async def with_lock(
        self,
        key: str,
        fn: Callable[..., Awaitable[Any]],
        *args: Any,
        timeout: Optional[float] = None,
        **kwargs: Any,
    ) -> Any:
        """Run fn while holding the lock for key"""
        async with self.hold(key, timeout):
            return await fn(*args, **kwargs)


def call_lock_key(tenant_id: str, call_id: str) -> str:
    return f"lock:call:{tenant_id}:{call_id}"
