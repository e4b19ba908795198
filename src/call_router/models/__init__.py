"""Schemas shared across the call router"""

from .calls import (
    CallEvent,
    CallEventType,
    CallPhase,
    CallState,
    TERMINAL_PHASES,
    WebhookResponse,
)
from .routing import (
    BusinessHours,
    BusinessHoursOutcome,
    DayOfWeek,
    DialTarget,
    DidRouting,
    DirectExtensionOutcome,
    Extension,
    FallbackAction,
    FallbackOutcome,
    FallbackReason,
    HoursException,
    RingGroup,
    RingGroupMember,
    RingGroupOutcome,
    RingStrategy,
    RoutingOutcome,
    RoutingTarget,
    TargetType,
    TenantRoutingSnapshot,
    TimeRange,
)

__all__ = [
    "CallEvent",
    "CallEventType",
    "CallPhase",
    "CallState",
    "TERMINAL_PHASES",
    "WebhookResponse",
    "BusinessHours",
    "BusinessHoursOutcome",
    "DayOfWeek",
    "DialTarget",
    "DidRouting",
    "DirectExtensionOutcome",
    "Extension",
    "FallbackAction",
    "FallbackOutcome",
    "FallbackReason",
    "HoursException",
    "RingGroup",
    "RingGroupMember",
    "RingGroupOutcome",
    "RingStrategy",
    "RoutingOutcome",
    "RoutingTarget",
    "TargetType",
    "TenantRoutingSnapshot",
    "TimeRange",
]
