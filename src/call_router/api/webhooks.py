"""
Telephony Voice Webhooks

Handles:
- Inbound call initiation (returns CXML)
- Call status updates
- Ring attempt results from Dial action callbacks (returns CXML)
- Call detail record / call closed notifications
"""

import logging

from fastapi import APIRouter, Depends, Request, Response

from ..core.exceptions import InvalidWebhookPayload
from ..models.calls import CallEventType
from ..services.call_processor import CallProcessor
from .payloads import normalize_event, read_payload
from .security import verify_webhook_signature

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/webhooks/voice",
    tags=["Webhooks"],
    dependencies=[Depends(verify_webhook_signature)],
)


async def _handle(request: Request, event_type: CallEventType) -> Response:
    processor: CallProcessor = request.app.state.call_processor

    try:
        payload = await read_payload(request)
        event = normalize_event(event_type, payload, request.headers, request.query_params)
    except InvalidWebhookPayload as e:
        logger.warning(f"Invalid {event_type.value} webhook: {e.message} {e.details}")
        result = processor.invalid_event_response(event_type)
    else:
        result = await processor.handle(event)

    return Response(content=result.body, status_code=result.status_code, media_type=result.media_type)


# =========================================================================
# VOICE WEBHOOKS
# =========================================================================


@router.post("/initiated")
async def call_initiated(request: Request) -> Response:
    """
    Entry point for every inbound call.

    Resolves the dialed DID to its tenant, decides routing once per call
    and answers with the CXML that rings the first attempt.
    """
    return await _handle(request, CallEventType.INITIATED)


@router.post("/status")
async def call_status(request: Request) -> Response:
    """Call status callback; acknowledged with an empty 200"""
    return await _handle(request, CallEventType.STATUS_CHANGED)


@router.post("/dial-result")
async def dial_result(request: Request) -> Response:
    """
    Dial action callback for a finished ring attempt.

    The attempt number, and for round-robin groups the position just dialed,
    travel in the query string of the action URL.
    Answers with CXML for the next attempt, or the fallback once exhausted.
    """
    return await _handle(request, CallEventType.DIAL_RESULT)


@router.post("/cdr")
async def call_record_closed(request: Request) -> Response:
    """Call detail record: closes the call if still open"""
    return await _handle(request, CallEventType.RECORD_CLOSED)
