"""
Webhook Idempotency Guard

Deduplicates webhook deliveries so a platform retry gets back the exact
response the first delivery produced, without touching call state again.
"""

import hashlib
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from ..core.exceptions import StoreUnavailableError
from ..models.calls import CallEvent, WebhookResponse

logger = logging.getLogger(__name__)


class IdempotencyStatus(str, Enum):
    NEW = "new"
    DUPLICATE_WITH_RESPONSE = "duplicate_with_response"
    DUPLICATE_NO_RESPONSE = "duplicate_no_response"


@dataclass(frozen=True)
class Fingerprint:
    """Identity of one logical delivery, namespaced by event type"""
    namespace: str
    digest: str

    def __str__(self) -> str:
        return f"{self.namespace}:{self.digest}"


@dataclass
class IdempotencyResult:
    status: IdempotencyStatus
    response: Optional[WebhookResponse] = None

    @property
    def is_duplicate(self) -> bool:
        return self.status != IdempotencyStatus.NEW


def derive_fingerprint(event: CallEvent) -> Fingerprint:
    """
    Build the dedup fingerprint for an event.

    The platform delivery id wins when present; otherwise a hash of the
    call id and the fields that influence routing. Delivery timestamps and
    free-form platform fields are left out so retries hash identically.
    """
    if event.delivery_id:
        material = f"delivery:{event.delivery_id}"
    else:
        material = json.dumps(
            {
                "call_id": event.call_id,
                "caller": event.caller,
                "called": event.called,
                "status": (event.status or "").lower(),
                "dial_status": (event.dial_status or "").lower(),
                "attempt": event.attempt,
            },
            sort_keys=True,
            separators=(",", ":"),
        )

    digest = hashlib.sha256(material.encode("utf-8")).hexdigest()
    return Fingerprint(namespace=event.event_type.value, digest=digest)


class IdempotencyGuard:
    """Redis-backed record of already-answered deliveries"""

    def __init__(
        self,
        redis_client: redis.Redis,
        ttl_seconds: int = 86400,
        max_response_bytes: int = 102400,
        key_prefix: str = "idem:webhook",
    ):
        self.redis = redis_client
        self.ttl_seconds = ttl_seconds
        self.max_response_bytes = max_response_bytes
        self.key_prefix = key_prefix

    def _key(self, fingerprint: Fingerprint) -> str:
        return f"{self.key_prefix}:{fingerprint}"

    async def check(self, fingerprint: Fingerprint) -> IdempotencyResult:
        try:
            raw = await self.redis.get(self._key(fingerprint))
        except RedisError as e:
            raise StoreUnavailableError("idempotency check", str(e)) from e

        if raw is None:
            return IdempotencyResult(IdempotencyStatus.NEW)

        try:
            record = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Corrupt idempotency record {fingerprint}, treating as applied")
            return IdempotencyResult(IdempotencyStatus.DUPLICATE_NO_RESPONSE)

        if record.get("response") is None:
            return IdempotencyResult(IdempotencyStatus.DUPLICATE_NO_RESPONSE)

        return IdempotencyResult(
            IdempotencyStatus.DUPLICATE_WITH_RESPONSE,
            WebhookResponse.from_dict(record["response"]),
        )

    async def commit(self, fingerprint: Fingerprint, response: WebhookResponse) -> bool:
        """
        Remember the response for a processed delivery.

        Transient failures (5xx) are never remembered. Bodies above the size
        limit are stored as metadata only, so a retry is acknowledged but
        not replayed.
        """
        if response.status_code >= 500:
            return False

        size = len(response.body.encode("utf-8"))
        record = {
            "stored_at": datetime.now(timezone.utc).isoformat(),
            "size": size,
            "response": response.to_dict(),
        }
        if size > self.max_response_bytes:
            logger.warning(
                f"Response for {fingerprint} is {size} bytes, storing metadata only"
            )
            record["response"] = None

        try:
            await self.redis.set(self._key(fingerprint), json.dumps(record), ex=self.ttl_seconds)
        except RedisError as e:
            raise StoreUnavailableError("idempotency commit", str(e)) from e
        return True
