"""
Webhook payload normalization

Turns raw platform deliveries (form-encoded or JSON, Cloudonix or Twilio
field names) into CallEvent. Nothing past this module sees a raw payload.
"""

import json
import logging
from typing import Mapping, Optional

from fastapi import Request

from ..core.exceptions import InvalidWebhookPayload
from ..models.calls import CallEvent, CallEventType
from ..utils.helpers import normalize_phone_number

logger = logging.getLogger(__name__)


FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "call_id": ("CallSid", "call_id", "callId", "CallId", "Session", "session"),
    "caller": ("From", "from", "caller", "Caller"),
    "called": ("To", "to", "called", "Called", "did"),
    "status": ("CallStatus", "call_status", "status", "Status"),
    "dial_status": ("DialCallStatus", "DialStatus", "dial_status"),
    "delivery_id": ("EventId", "event_id", "delivery_id", "IdempotencyKey"),
}

DELIVERY_ID_HEADERS = ("X-Idempotency-Key", "X-Delivery-Id")

MAX_FIELD_LENGTH = 1024


async def read_payload(request: Request) -> dict[str, str]:
    """Read a form-encoded or JSON body into a flat string mapping"""
    content_type = request.headers.get("content-type", "")

    if "application/json" in content_type:
        body = await request.body()
        if not body:
            return {}
        try:
            data = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise InvalidWebhookPayload("Body is not valid JSON") from e
        if not isinstance(data, dict):
            raise InvalidWebhookPayload("JSON body must be an object")
        return {str(k): _stringify(v) for k, v in data.items() if v is not None}

    form = await request.form()
    return {str(k): str(v) for k, v in form.items() if isinstance(v, str)}


def _stringify(value) -> str:
    if isinstance(value, (dict, list)):
        return json.dumps(value, sort_keys=True)
    return str(value)


def _pick(payload: Mapping[str, str], name: str) -> Optional[str]:
    for alias in FIELD_ALIASES[name]:
        value = payload.get(alias)
        if value is not None and value.strip():
            return value.strip()
    return None


def normalize_event(
    event_type: CallEventType,
    payload: Mapping[str, str],
    headers: Optional[Mapping[str, str]] = None,
    query: Optional[Mapping[str, str]] = None,
) -> CallEvent:
    """
    Validate a raw delivery and build the CallEvent for it.

    Raises:
        InvalidWebhookPayload: A required field is missing or malformed
    """
    headers = headers or {}
    query = query or {}

    call_id = _pick(payload, "call_id")
    if not call_id:
        raise InvalidWebhookPayload("Missing call identifier", {"event_type": event_type.value})
    if len(call_id) > 128:
        raise InvalidWebhookPayload("Call identifier too long", {"event_type": event_type.value})

    called = normalize_phone_number(_pick(payload, "called"))
    if event_type == CallEventType.INITIATED and not called:
        raise InvalidWebhookPayload("Missing called number", {"call_id": call_id})

    status = _pick(payload, "status")
    if event_type == CallEventType.STATUS_CHANGED and not status:
        raise InvalidWebhookPayload("Missing call status", {"call_id": call_id})

    attempt = None
    raw_attempt = query.get("attempt") or payload.get("attempt")
    if raw_attempt is not None:
        try:
            attempt = int(raw_attempt)
        except ValueError as e:
            raise InvalidWebhookPayload("Attempt must be an integer", {"call_id": call_id}) from e
        if attempt < 0:
            raise InvalidWebhookPayload("Attempt must not be negative", {"call_id": call_id})

    # Only a resume hint; a malformed value is dropped rather than failing the call
    ring_cursor = None
    raw_cursor = query.get("cursor")
    if raw_cursor is not None:
        try:
            ring_cursor = int(raw_cursor)
        except ValueError:
            logger.warning(f"Call {call_id}: ignoring malformed ring cursor {raw_cursor!r}")
        if ring_cursor is not None and ring_cursor < 0:
            ring_cursor = None

    delivery_id = None
    for header in DELIVERY_ID_HEADERS:
        if headers.get(header):
            delivery_id = headers[header]
            break
    if delivery_id is None:
        delivery_id = _pick(payload, "delivery_id")

    known = {alias for aliases in FIELD_ALIASES.values() for alias in aliases}
    extra = {
        k: v[:MAX_FIELD_LENGTH]
        for k, v in payload.items()
        if k not in known and k != "attempt"
    }

    return CallEvent(
        call_id=call_id,
        event_type=event_type,
        caller=normalize_phone_number(_pick(payload, "caller")),
        called=called,
        status=status.lower() if status else None,
        dial_status=(_pick(payload, "dial_status") or "").lower() or None,
        attempt=attempt,
        ring_cursor=ring_cursor,
        delivery_id=delivery_id,
        fields=extra,
    )
