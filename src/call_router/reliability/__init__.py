"""Reliability primitives: dedup, per-call locks, upstream circuit breaking"""

from .call_lock import CallLockManager, call_lock_key
from .circuit_breaker import CircuitBreaker, CircuitBreakerConfig, CircuitOpenError, CircuitState
from .idempotency import (
    Fingerprint,
    IdempotencyGuard,
    IdempotencyResult,
    IdempotencyStatus,
    derive_fingerprint,
)

__all__ = [
    "CallLockManager",
    "call_lock_key",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitOpenError",
    "CircuitState",
    "Fingerprint",
    "IdempotencyGuard",
    "IdempotencyResult",
    "IdempotencyStatus",
    "derive_fingerprint",
]
