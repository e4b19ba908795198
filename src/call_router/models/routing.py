"""
Routing configuration and routing outcome schemas
"""

from datetime import date, time
from enum import Enum
from typing import Annotated, Literal, Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator, model_validator


# =============================================================================
# ENUMS
# =============================================================================


class TargetType(str, Enum):
    EXTENSION = "extension"
    RING_GROUP = "ring_group"
    BUSINESS_HOURS = "business_hours"
    VOICEMAIL = "voicemail"


class RingStrategy(str, Enum):
    SIMULTANEOUS = "simultaneous"
    ROUND_ROBIN = "round_robin"
    SEQUENTIAL = "sequential"


class FallbackAction(str, Enum):
    VOICEMAIL = "voicemail"
    BUSY = "busy"
    HANGUP = "hangup"


class FallbackReason(str, Enum):
    UNKNOWN_DID = "unknown_did"
    MISCONFIGURED = "misconfigured"
    INVALID_INPUT = "invalid_input"
    EMPTY_RING_GROUP = "empty_ring_group"
    CONFIGURED = "configured"
    NO_ANSWER = "no_answer"


class DayOfWeek(str, Enum):
    MONDAY = "monday"
    TUESDAY = "tuesday"
    WEDNESDAY = "wednesday"
    THURSDAY = "thursday"
    FRIDAY = "friday"
    SATURDAY = "saturday"
    SUNDAY = "sunday"

    @classmethod
    def from_date(cls, value: date) -> "DayOfWeek":
        return list(cls)[value.weekday()]


# =============================================================================
# ROUTING CONFIGURATION (read-only snapshot from the control plane)
# =============================================================================


class RoutingTarget(BaseModel):
    """What a DID or a business-hours branch points at"""
    type: TargetType
    id: Optional[str] = None

    @model_validator(mode="after")
    def _require_id(self) -> "RoutingTarget":
        if self.type != TargetType.VOICEMAIL and not self.id:
            raise ValueError(f"{self.type.value} target requires an id")
        return self


class Extension(BaseModel):
    id: str
    number: str
    sip_uri: Optional[str] = None
    forward_number: Optional[str] = None
    ring_timeout: Optional[int] = Field(default=None, ge=5, le=300)
    no_answer_fallback: FallbackAction = FallbackAction.VOICEMAIL
    active: bool = True

    @property
    def dial_uri(self) -> str:
        """SIP URI if provisioned, then forwarding number, then the bare extension"""
        return self.sip_uri or self.forward_number or self.number


class RingGroupMember(BaseModel):
    extension_id: str
    priority: int = Field(default=0, ge=0)


class RingGroup(BaseModel):
    id: str
    name: str = ""
    strategy: RingStrategy = RingStrategy.SIMULTANEOUS
    members: list[RingGroupMember] = Field(default_factory=list)
    timeout_seconds: int = Field(default=20, ge=5, le=300)
    fallback: FallbackAction = FallbackAction.VOICEMAIL
    fallback_message: Optional[str] = None


class TimeRange(BaseModel):
    """Half-open interval [start, end) within one local day; an end of 00:00 means midnight"""
    start: time
    end: time

    @property
    def ends_at_midnight(self) -> bool:
        return self.end == time(0)

    @model_validator(mode="after")
    def _check_order(self) -> "TimeRange":
        if not self.ends_at_midnight and self.end <= self.start:
            raise ValueError("time range end must be after start")
        return self

    def contains(self, value: time) -> bool:
        if self.ends_at_midnight:
            return self.start <= value
        return self.start <= value < self.end


class HoursException(BaseModel):
    """A dated override; no ranges means closed for the whole day"""
    date: date
    name: str = ""
    ranges: list[TimeRange] = Field(default_factory=list)


class BusinessHours(BaseModel):
    id: str
    name: str = ""
    timezone: str = "UTC"
    weekly: dict[DayOfWeek, list[TimeRange]] = Field(default_factory=dict)
    exceptions: list[HoursException] = Field(default_factory=list)
    open_target: RoutingTarget
    closed_target: RoutingTarget

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"unknown timezone {value!r}") from e
        return value

    def exception_for(self, day: date) -> Optional[HoursException]:
        for exception in self.exceptions:
            if exception.date == day:
                return exception
        return None


class DidRouting(BaseModel):
    did: str
    tenant_id: str
    target: RoutingTarget
    active: bool = True


class TenantRoutingSnapshot(BaseModel):
    """
    Routing configuration needed to decide one call.

    Built by a RoutingConfigReader; entity maps are keyed by id and only
    hold what the DID's target can reach.
    """
    tenant_id: Optional[str] = None
    dids: dict[str, DidRouting] = Field(default_factory=dict)
    extensions: dict[str, Extension] = Field(default_factory=dict)
    ring_groups: dict[str, RingGroup] = Field(default_factory=dict)
    business_hours: dict[str, BusinessHours] = Field(default_factory=dict)


# =============================================================================
# ROUTING OUTCOMES
# =============================================================================


class DialTarget(BaseModel):
    """One party to ring"""
    extension_id: str
    number: str
    uri: str


class FallbackOutcome(BaseModel):
    kind: Literal["fallback"] = "fallback"
    action: FallbackAction
    message: Optional[str] = None
    reason: FallbackReason = FallbackReason.CONFIGURED

    def attempts(self) -> list[list[DialTarget]]:
        return []

    def fallback_outcome(self) -> "FallbackOutcome":
        return self


class DirectExtensionOutcome(BaseModel):
    kind: Literal["direct_extension"] = "direct_extension"
    extension: DialTarget
    timeout: int
    fallback: FallbackOutcome

    def attempts(self) -> list[list[DialTarget]]:
        return [[self.extension]]

    def fallback_outcome(self) -> FallbackOutcome:
        return self.fallback


class RingGroupOutcome(BaseModel):
    kind: Literal["ring_group"] = "ring_group"
    group_id: str
    strategy: RingStrategy
    members: list[DialTarget]
    timeout: int
    fallback: FallbackOutcome
    # Configured-list position of each entry in members
    member_positions: list[int] = Field(default_factory=list)

    def attempts(self) -> list[list[DialTarget]]:
        if not self.members:
            return []
        if self.strategy == RingStrategy.SIMULTANEOUS:
            return [list(self.members)]
        return [[member] for member in self.members]

    def fallback_outcome(self) -> FallbackOutcome:
        return self.fallback

    def cursor_after(self, attempt: int) -> Optional[int]:
        """Configured-list index of the member dialed on a round-robin attempt"""
        if self.strategy != RingStrategy.ROUND_ROBIN:
            return None
        if attempt < 0 or attempt >= len(self.member_positions):
            return None
        return self.member_positions[attempt]


BusinessHoursTarget = Annotated[
    Union[FallbackOutcome, DirectExtensionOutcome, RingGroupOutcome],
    Field(discriminator="kind"),
]


class BusinessHoursOutcome(BaseModel):
    kind: Literal["business_hours"] = "business_hours"
    schedule_id: str
    is_open: bool
    target: BusinessHoursTarget

    def attempts(self) -> list[list[DialTarget]]:
        return self.target.attempts()

    def fallback_outcome(self) -> FallbackOutcome:
        return self.target.fallback_outcome()


RoutingOutcome = Annotated[
    Union[FallbackOutcome, DirectExtensionOutcome, RingGroupOutcome, BusinessHoursOutcome],
    Field(discriminator="kind"),
]
