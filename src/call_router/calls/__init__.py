"""Call lifecycle: transition rules and per-call state storage"""

from .state_machine import (
    LEGAL_TRANSITIONS,
    Transition,
    TransitionKind,
    apply,
    phase_for_status,
)
from .state_store import CallStateStore

__all__ = [
    "LEGAL_TRANSITIONS",
    "Transition",
    "TransitionKind",
    "apply",
    "phase_for_status",
    "CallStateStore",
]
