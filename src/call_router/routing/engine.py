"""
Routing Decision Engine

Turns a dialed DID plus a routing snapshot into a RoutingOutcome. Pure and
deterministic: the same DID, snapshot and instant (quantized to the second)
always produce the same outcome, so a re-delivered initiating event that
slipped past the idempotency cache cannot reroute a live call.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from ..models.routing import (
    BusinessHoursOutcome,
    DialTarget,
    DirectExtensionOutcome,
    Extension,
    FallbackAction,
    FallbackOutcome,
    FallbackReason,
    RingGroup,
    RingGroupOutcome,
    RingStrategy,
    RoutingOutcome,
    RoutingTarget,
    TargetType,
    TenantRoutingSnapshot,
)
from ..utils.helpers import mask_phone_number, normalize_phone_number
from .business_hours import is_open

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RoutingMessages:
    """Caller-facing prompts chosen by the engine"""
    unknown_did: str = "This number is not configured. Please contact support."
    misconfigured: str = "We are unable to connect your call at this time. Please try again later."


def quantize(now: datetime) -> datetime:
    """Truncate to whole seconds in UTC"""
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc).replace(microsecond=0)


class RoutingDecisionEngine:
    """Decides where an inbound call rings"""

    def __init__(self, default_ring_timeout: int = 20, messages: Optional[RoutingMessages] = None):
        self.default_ring_timeout = default_ring_timeout
        self.messages = messages or RoutingMessages()

    def decide(
        self,
        did: str,
        snapshot: TenantRoutingSnapshot,
        now: datetime,
        last_cursor: Optional[int] = None,
    ) -> RoutingOutcome:
        """
        Compute the routing outcome for a call to `did`.

        Args:
            did: Dialed number
            snapshot: Routing configuration reachable from the DID
            now: Decision instant
            last_cursor: Configured-list position of the round-robin member
                dialed last for this call

        Returns:
            One of the RoutingOutcome variants
        """
        now = quantize(now)
        routing = snapshot.dids.get(normalize_phone_number(did))

        if routing is None or not routing.active:
            logger.warning(f"No active routing for DID {mask_phone_number(did)}")
            return FallbackOutcome(
                action=FallbackAction.BUSY,
                message=self.messages.unknown_did,
                reason=FallbackReason.UNKNOWN_DID,
            )

        return self._resolve(routing.target, snapshot, now, last_cursor, allow_schedule=True)

    def _resolve(
        self,
        target: RoutingTarget,
        snapshot: TenantRoutingSnapshot,
        now: datetime,
        last_cursor: Optional[int],
        allow_schedule: bool,
    ) -> RoutingOutcome:
        if target.type == TargetType.VOICEMAIL:
            return FallbackOutcome(action=FallbackAction.VOICEMAIL, reason=FallbackReason.CONFIGURED)

        if target.type == TargetType.EXTENSION:
            extension = snapshot.extensions.get(target.id)
            if extension is None or not extension.active:
                return self._misconfigured(f"extension {target.id} missing or inactive")
            return self._direct(extension)

        if target.type == TargetType.RING_GROUP:
            group = snapshot.ring_groups.get(target.id)
            if group is None:
                return self._misconfigured(f"ring group {target.id} missing")
            return self._ring_group(group, snapshot, last_cursor)

        if target.type == TargetType.BUSINESS_HOURS:
            if not allow_schedule:
                return self._misconfigured(f"business hours {target.id} nested in business hours")
            schedule = snapshot.business_hours.get(target.id)
            if schedule is None:
                return self._misconfigured(f"business hours {target.id} missing")

            open_now = is_open(schedule, now)
            branch = schedule.open_target if open_now else schedule.closed_target
            logger.debug(f"Schedule {schedule.id} is {'open' if open_now else 'closed'} at {now.isoformat()}")
            return BusinessHoursOutcome(
                schedule_id=schedule.id,
                is_open=open_now,
                target=self._resolve(branch, snapshot, now, last_cursor, allow_schedule=False),
            )

        return self._misconfigured(f"unsupported target type {target.type!r}")

    def _direct(self, extension: Extension) -> DirectExtensionOutcome:
        return DirectExtensionOutcome(
            extension=_dial_target(extension),
            timeout=extension.ring_timeout or self.default_ring_timeout,
            fallback=FallbackOutcome(
                action=extension.no_answer_fallback,
                reason=FallbackReason.NO_ANSWER,
            ),
        )

    def _ring_group(
        self,
        group: RingGroup,
        snapshot: TenantRoutingSnapshot,
        last_cursor: Optional[int],
    ) -> RoutingOutcome:
        resolved = []
        for position, member in enumerate(group.members):
            extension = snapshot.extensions.get(member.extension_id)
            if extension is None or not extension.active:
                logger.warning(f"Ring group {group.id}: skipping unavailable member {member.extension_id}")
                continue
            resolved.append((position, member, extension))

        if not resolved:
            logger.warning(f"Ring group {group.id} has no available members")
            return FallbackOutcome(
                action=group.fallback,
                message=group.fallback_message,
                reason=FallbackReason.EMPTY_RING_GROUP,
            )

        if group.strategy == RingStrategy.ROUND_ROBIN:
            # Configured order, starting after the last-used position and wrapping;
            # unavailable members keep their slot so positions stay stable
            size = len(group.members)
            start = 0 if last_cursor is None else (last_cursor + 1) % size
            ordered = sorted(resolved, key=lambda entry: (entry[0] - start) % size)
        else:
            ordered = sorted(resolved, key=lambda entry: (entry[1].priority, entry[1].extension_id))

        return RingGroupOutcome(
            group_id=group.id,
            strategy=group.strategy,
            members=[_dial_target(extension) for _, _, extension in ordered],
            timeout=group.timeout_seconds,
            fallback=FallbackOutcome(
                action=group.fallback,
                message=group.fallback_message,
                reason=FallbackReason.NO_ANSWER,
            ),
            member_positions=[position for position, _, _ in ordered],
        )

    def _misconfigured(self, detail: str) -> FallbackOutcome:
        logger.warning(f"Routing misconfiguration: {detail}")
        return FallbackOutcome(
            action=FallbackAction.BUSY,
            message=self.messages.misconfigured,
            reason=FallbackReason.MISCONFIGURED,
        )


def _dial_target(extension: Extension) -> DialTarget:
    return DialTarget(extension_id=extension.id, number=extension.number, uri=extension.dial_uri)
