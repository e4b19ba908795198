"""
Call event and call state schemas
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from .routing import RoutingOutcome


# =============================================================================
# ENUMS
# =============================================================================


class CallEventType(str, Enum):
    INITIATED = "initiated"
    STATUS_CHANGED = "status_changed"
    DIAL_RESULT = "dial_result"
    RECORD_CLOSED = "record_closed"


class CallPhase(str, Enum):
    NONE = "none"
    INITIATED = "initiated"
    RINGING = "ringing"
    ANSWERED = "answered"
    COMPLETED = "completed"
    NO_ANSWER = "no_answer"
    BUSY = "busy"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_PHASES


TERMINAL_PHASES = frozenset({
    CallPhase.COMPLETED,
    CallPhase.NO_ANSWER,
    CallPhase.BUSY,
    CallPhase.FAILED,
})


# =============================================================================
# INBOUND EVENTS
# =============================================================================


class CallEvent(BaseModel):
    """
    One normalized webhook delivery.

    Built at the HTTP boundary; core components never see raw payloads.
    """
    call_id: str
    event_type: CallEventType
    caller: str = ""
    called: str = ""
    status: Optional[str] = None
    dial_status: Optional[str] = None
    attempt: Optional[int] = None
    ring_cursor: Optional[int] = None
    delivery_id: Optional[str] = None
    fields: dict[str, str] = Field(default_factory=dict)
    received_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


# =============================================================================
# CALL STATE
# =============================================================================


class CallState(BaseModel):
    """Per-call lifecycle record, mutated only under the call lock"""
    call_id: str
    tenant_id: str
    did: str
    caller: str = ""
    phase: CallPhase = CallPhase.NONE
    outcome: Optional[RoutingOutcome] = None
    decided_at: Optional[datetime] = None
    attempt: int = 0                    # Ring-group progress, an index into outcome.attempts()
    last_response: Optional[str] = None
    phase_timestamps: dict[str, datetime] = Field(default_factory=dict)
    updated_at: Optional[datetime] = None

    def enter(self, phase: CallPhase, at: datetime) -> None:
        self.phase = phase
        self.phase_timestamps.setdefault(phase.value, at)
        self.updated_at = at


# =============================================================================
# RESPONSES
# =============================================================================


XML_MEDIA_TYPE = "application/xml"
TEXT_MEDIA_TYPE = "text/plain"


@dataclass
class WebhookResponse:
    """What the HTTP layer sends back for a processed delivery"""
    status_code: int = 200
    body: str = ""
    media_type: str = TEXT_MEDIA_TYPE

    @classmethod
    def markup(cls, document: str) -> "WebhookResponse":
        return cls(status_code=200, body=document, media_type=XML_MEDIA_TYPE)

    @classmethod
    def ack(cls) -> "WebhookResponse":
        return cls(status_code=200, body="", media_type=TEXT_MEDIA_TYPE)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status_code": self.status_code,
            "body": self.body,
            "media_type": self.media_type,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WebhookResponse":
        return cls(
            status_code=int(data.get("status_code", 200)),
            body=data.get("body", ""),
            media_type=data.get("media_type", TEXT_MEDIA_TYPE),
        )

