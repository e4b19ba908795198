"""
Circuit Breaker for the routing configuration source

After failure_threshold consecutive failures the breaker opens and every
lookup fails fast with CircuitOpenError (a 503 to the platform) instead of
stalling the webhook. Once the cool-down has passed, a limited number of
trial calls are let through; success_threshold successes close it again,
any failure re-opens it.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from functools import wraps
from typing import Awaitable, Callable, Optional, TypeVar

from ..core.exceptions import UpstreamUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreakerConfig:
    failure_threshold: int = 5
    success_threshold: int = 2
    timeout_seconds: float = 30.0       # Cool-down before trial calls
    half_open_max_calls: int = 2


@dataclass
class CircuitStats:
    consecutive_failures: int = 0
    trial_calls: int = 0
    trial_successes: int = 0
    total_calls: int = 0
    total_failures: int = 0
    rejected_calls: int = 0
    opened_at: Optional[float] = None           # time.monotonic()
    last_failure_at: Optional[datetime] = None


class CircuitOpenError(UpstreamUnavailableError):
    """Lookup refused without calling the upstream"""

    def __init__(self, name: str):
        super().__init__(name, "circuit open")


class CircuitBreaker:
    """
    Usage:
        breaker = CircuitBreaker("control-plane", CircuitBreakerConfig(timeout_seconds=15))
        fetch = breaker(fetch)
    """

    def __init__(self, name: str, config: Optional[CircuitBreakerConfig] = None):
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self.state = CircuitState.CLOSED
        self.stats = CircuitStats()
        self.state_changed_at = datetime.now(timezone.utc)
        self._lock = asyncio.Lock()

    def _enter(self, state: CircuitState) -> None:
        logger.warning(f"Circuit {self.name} {self.state.value} -> {state.value}")
        self.state = state
        self.state_changed_at = datetime.now(timezone.utc)
        self.stats.trial_calls = 0
        self.stats.trial_successes = 0
        if state == CircuitState.OPEN:
            self.stats.opened_at = time.monotonic()
        elif state == CircuitState.CLOSED:
            self.stats.opened_at = None
            self.stats.consecutive_failures = 0

    def _cooled_down(self) -> bool:
        opened_at = self.stats.opened_at
        return opened_at is None or time.monotonic() - opened_at >= self.config.timeout_seconds

    async def allow_request(self) -> bool:
        async with self._lock:
            if self.state == CircuitState.OPEN and self._cooled_down():
                self._enter(CircuitState.HALF_OPEN)

            if self.state == CircuitState.CLOSED:
                return True
            if self.state == CircuitState.HALF_OPEN and self.stats.trial_calls < self.config.half_open_max_calls:
                self.stats.trial_calls += 1
                return True

            self.stats.rejected_calls += 1
            return False

    async def record_success(self) -> None:
        async with self._lock:
            self.stats.total_calls += 1
            self.stats.consecutive_failures = 0
            if self.state != CircuitState.HALF_OPEN:
                return
            self.stats.trial_successes += 1
            if self.stats.trial_successes >= self.config.success_threshold:
                self._enter(CircuitState.CLOSED)

    async def record_failure(self, error: Optional[Exception] = None) -> None:
        async with self._lock:
            self.stats.total_calls += 1
            self.stats.total_failures += 1
            self.stats.consecutive_failures += 1
            self.stats.last_failure_at = datetime.now(timezone.utc)
            if error is not None:
                logger.warning(f"Circuit {self.name} recorded failure: {error!r}")

            if self.state == CircuitState.HALF_OPEN:
                self._enter(CircuitState.OPEN)
            elif (
                self.state == CircuitState.CLOSED
                and self.stats.consecutive_failures >= self.config.failure_threshold
            ):
                self._enter(CircuitState.OPEN)

    def __call__(self, func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        """Wrap an async callable; any exception it raises counts as a failure"""
        @wraps(func)
        async def guarded(*args, **kwargs) -> T:
            if not await self.allow_request():
                raise CircuitOpenError(self.name)
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                await self.record_failure(e)
                raise
            await self.record_success()
            return result

        return guarded

    def get_stats(self) -> dict:
        last_failure = self.stats.last_failure_at
        return {
            "name": self.name,
            "state": self.state.value,
            "consecutive_failures": self.stats.consecutive_failures,
            "total_calls": self.stats.total_calls,
            "total_failures": self.stats.total_failures,
            "rejected_calls": self.stats.rejected_calls,
            "last_failure": last_failure.isoformat() if last_failure else None,
            "state_changed_at": self.state_changed_at.isoformat(),
        }
