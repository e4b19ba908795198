"""
Call Lifecycle State Machine

Pure transition logic for a single inbound call:

    none -> initiated -> ringing -> answered -> completed
    initiated | ringing -> no_answer | busy | failed
    any non-terminal -> completed on a closing event

The LEGAL_TRANSITIONS table is the only place legality is defined.
Repeating an event from the phase it already produced is a no-op, never a
rejection, so replays after an idempotency-cache expiry stay harmless.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ..models.calls import CallEvent, CallEventType, CallPhase, TERMINAL_PHASES

logger = logging.getLogger(__name__)


# ============================================================================
# TRANSITION TABLE
# ============================================================================


LEGAL_TRANSITIONS: dict[CallPhase, frozenset[CallPhase]] = {
    CallPhase.NONE: frozenset({CallPhase.INITIATED}),
    CallPhase.INITIATED: frozenset({
        CallPhase.RINGING,
        CallPhase.ANSWERED,
        CallPhase.NO_ANSWER,
        CallPhase.BUSY,
        CallPhase.FAILED,
        CallPhase.COMPLETED,
    }),
    CallPhase.RINGING: frozenset({
        CallPhase.ANSWERED,
        CallPhase.NO_ANSWER,
        CallPhase.BUSY,
        CallPhase.FAILED,
        CallPhase.COMPLETED,
    }),
    CallPhase.ANSWERED: frozenset({CallPhase.COMPLETED}),
    CallPhase.COMPLETED: frozenset(),
    CallPhase.NO_ANSWER: frozenset(),
    CallPhase.BUSY: frozenset(),
    CallPhase.FAILED: frozenset(),
}

# Phases in which a finished ring attempt may be reported; once a call is
# answered it is bridged and later dial results must not ring anyone else
DIAL_RESULT_PHASES = frozenset({CallPhase.INITIATED, CallPhase.RINGING})

# Platform status vocabulary -> lifecycle phase
STATUS_PHASES: dict[str, CallPhase] = {
    "queued": CallPhase.INITIATED,
    "initiated": CallPhase.INITIATED,
    "ringing": CallPhase.RINGING,
    "answered": CallPhase.ANSWERED,
    "in-progress": CallPhase.ANSWERED,
    "in_progress": CallPhase.ANSWERED,
    "completed": CallPhase.COMPLETED,
    "hangup": CallPhase.COMPLETED,
    "busy": CallPhase.BUSY,
    "no-answer": CallPhase.NO_ANSWER,
    "no_answer": CallPhase.NO_ANSWER,
    "noanswer": CallPhase.NO_ANSWER,
    "failed": CallPhase.FAILED,
    "canceled": CallPhase.FAILED,
    "cancelled": CallPhase.FAILED,
}


class TransitionKind(str, Enum):
    APPLIED = "applied"
    NOOP = "noop"
    REJECTED = "rejected"


@dataclass(frozen=True)
class Transition:
    """Result of applying one event to the current phase"""
    previous: CallPhase
    next: CallPhase
    kind: TransitionKind
    reason: str = ""

    @property
    def applied(self) -> bool:
        return self.kind == TransitionKind.APPLIED

    @property
    def rejected(self) -> bool:
        return self.kind == TransitionKind.REJECTED

    @property
    def changed(self) -> bool:
        return self.applied and self.previous != self.next


def phase_for_status(status: Optional[str]) -> Optional[CallPhase]:
    """Map a platform call status onto a lifecycle phase"""
    if not status:
        return None
    return STATUS_PHASES.get(status.strip().lower())


def is_legal(current: CallPhase, target: CallPhase) -> bool:
    return target in LEGAL_TRANSITIONS[current]


# ============================================================================
# APPLY
# ============================================================================


def apply(current: CallPhase, event: CallEvent) -> Transition:
    """
    Validate and apply an event against the current phase.

    Args:
        current: Phase stored for the call (NONE when first seen)
        event: Normalized inbound event

    Returns:
        Transition with kind APPLIED, NOOP or REJECTED
    """
    if event.event_type == CallEventType.INITIATED:
        return _apply_initiated(current)

    if event.event_type == CallEventType.DIAL_RESULT:
        if current in DIAL_RESULT_PHASES:
            return Transition(current, current, TransitionKind.APPLIED, "dial attempt finished")
        return _reject(current, current, f"dial result in phase {current.value}")

    if event.event_type == CallEventType.RECORD_CLOSED:
        return _apply_closing(current, phase_for_status(event.status))

    target = phase_for_status(event.status)
    if target is None:
        return _reject(current, current, f"unknown call status {event.status!r}")
    if target == current:
        return Transition(current, current, TransitionKind.NOOP, "repeated status")
    if current in TERMINAL_PHASES and target in TERMINAL_PHASES:
        return Transition(current, current, TransitionKind.NOOP, "call already closed")
    if is_legal(current, target):
        return Transition(current, target, TransitionKind.APPLIED)
    return _reject(current, target, f"{current.value} -> {target.value}")


def _apply_initiated(current: CallPhase) -> Transition:
    if current == CallPhase.NONE:
        return Transition(current, CallPhase.INITIATED, TransitionKind.APPLIED)
    if current in TERMINAL_PHASES:
        return _reject(current, CallPhase.INITIATED, f"call already {current.value}")
    return Transition(current, current, TransitionKind.NOOP, "duplicate initiation")


def _apply_closing(current: CallPhase, reported: Optional[CallPhase]) -> Transition:
    if current in TERMINAL_PHASES:
        return Transition(current, current, TransitionKind.NOOP, "call already closed")
    if current == CallPhase.NONE:
        return _reject(current, CallPhase.COMPLETED, "closing unknown call")

    target = reported if reported in TERMINAL_PHASES else CallPhase.COMPLETED
    if not is_legal(current, target):
        target = CallPhase.COMPLETED
    return Transition(current, target, TransitionKind.APPLIED)


def _reject(current: CallPhase, target: CallPhase, reason: str) -> Transition:
    logger.debug(f"Rejected transition: {reason}")
    return Transition(current, target, TransitionKind.REJECTED, reason)
