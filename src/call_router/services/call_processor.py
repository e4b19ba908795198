"""
Call Processor

Orchestrates one webhook delivery end to end:

    fingerprint -> idempotency check -> tenant resolution -> call lock
    -> state machine -> routing decision (initiation or lost-state recovery)
    -> CXML -> state save -> idempotency commit -> lock release -> lifecycle events

Events rejected because they arrived before the call was initiated are not
committed, so the platform can redeliver them once the call exists.

All state mutation happens while the per-call lock is held. Any transient
failure propagates before the idempotency commit, so the platform's retry
re-runs the delivery from scratch.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from ..calls.state_machine import Transition, TransitionKind, apply
from ..calls.state_store import CallStateStore
from ..core.exceptions import WebhookDeadlineExceeded
from ..cxml.builder import ResponseBuilder
from ..events.publisher import EventPublisher, EventType
from ..models.calls import CallEvent, CallEventType, CallPhase, CallState, WebhookResponse
from ..models.routing import (
    DidRouting,
    FallbackAction,
    FallbackOutcome,
    FallbackReason,
    TenantRoutingSnapshot,
)
from ..reliability.call_lock import CallLockManager, call_lock_key
from ..reliability.idempotency import (
    Fingerprint,
    IdempotencyGuard,
    IdempotencyStatus,
    derive_fingerprint,
)
from ..routing.config_reader import RoutingConfigReader
from ..routing.engine import RoutingDecisionEngine
from ..utils.helpers import mask_phone_number, normalize_phone_number

logger = logging.getLogger(__name__)

# Calls to numbers with no routing still get state and locks under this tenant
UNROUTED_TENANT = "unrouted"

# Dial statuses meaning the attempt connected
CONNECTED_DIAL_STATUSES = frozenset({"answered", "completed", "in-progress", "in_progress"})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CallProcessor:
    """Handles normalized call events from the telephony platform"""

    def __init__(
        self,
        guard: IdempotencyGuard,
        locks: CallLockManager,
        states: CallStateStore,
        reader: RoutingConfigReader,
        engine: RoutingDecisionEngine,
        builder: ResponseBuilder,
        publisher: EventPublisher,
        deadline_seconds: float = 4.0,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.guard = guard
        self.locks = locks
        self.states = states
        self.reader = reader
        self.engine = engine
        self.builder = builder
        self.publisher = publisher
        self.deadline_seconds = deadline_seconds
        self.clock = clock

    async def handle(self, event: CallEvent) -> WebhookResponse:
        """
        Process one delivery and return what the webhook should answer.

        Raises:
            TransientError: Lock contention, store or upstream failure, or the
                deadline passed; nothing was committed
        """
        fingerprint = derive_fingerprint(event)
        result = await self.guard.check(fingerprint)

        if result.status == IdempotencyStatus.DUPLICATE_WITH_RESPONSE:
            logger.info(f"Duplicate {event.event_type.value} for call {event.call_id}, replaying response")
            return result.response
        if result.status == IdempotencyStatus.DUPLICATE_NO_RESPONSE:
            logger.info(f"Duplicate {event.event_type.value} for call {event.call_id}, acknowledging")
            return WebhookResponse.ack()

        try:
            return await asyncio.wait_for(self._process(event, fingerprint), timeout=self.deadline_seconds)
        except asyncio.TimeoutError as e:
            logger.error(f"Call {event.call_id}: {event.event_type.value} exceeded {self.deadline_seconds}s")
            raise WebhookDeadlineExceeded(event.call_id, self.deadline_seconds) from e

    def invalid_event_response(self, event_type: Optional[CallEventType]) -> WebhookResponse:
        """Deterministic answer for a delivery that could not be normalized"""
        if event_type in (CallEventType.INITIATED, CallEventType.DIAL_RESULT):
            outcome = FallbackOutcome(action=FallbackAction.BUSY, reason=FallbackReason.INVALID_INPUT)
            return WebhookResponse.markup(self.builder.render(outcome))
        return WebhookResponse.ack()

    # ------------------------------------------------------------------
    # Locked section
    # ------------------------------------------------------------------

    async def _process(self, event: CallEvent, fingerprint: Fingerprint) -> WebhookResponse:
        did_routing = await self.reader.get_did_routing(event.called) if event.called else None
        tenant_id = did_routing.tenant_id if did_routing else UNROUTED_TENANT

        async with self.locks.hold(call_lock_key(tenant_id, event.call_id)):
            state = await self.states.load(tenant_id, event.call_id)
            response, transition, state = await self._apply(event, state, did_routing, tenant_id)
            if _retryable(transition):
                logger.info(f"Call {event.call_id}: {event.event_type.value} before initiation left uncommitted")
            else:
                await self.guard.commit(fingerprint, response)

        if transition is not None and transition.changed:
            self._publish_transition(transition, state, event)
        return response

    async def _apply(
        self,
        event: CallEvent,
        state: Optional[CallState],
        did_routing: Optional[DidRouting],
        tenant_id: str,
    ) -> tuple[WebhookResponse, Optional[Transition], CallState]:
        now = self.clock()

        if state is None and event.event_type == CallEventType.DIAL_RESULT:
            state = await self._recover(event, did_routing, tenant_id, now)
            await self.states.save(state)
            recovered = Transition(CallPhase.NONE, CallPhase.INITIATED, TransitionKind.APPLIED, "state recovered")
            return WebhookResponse.markup(state.last_response), recovered, state

        if state is None:
            state = CallState(
                call_id=event.call_id,
                tenant_id=tenant_id,
                did=normalize_phone_number(event.called),
                caller=event.caller,
            )

        transition = apply(state.phase, event)
        if transition.rejected:
            logger.warning(
                f"Call {event.call_id}: rejected {event.event_type.value} "
                f"({transition.reason}) in phase {state.phase.value}"
            )
            return self._replay_or_fallback(event, state), transition, state

        if not transition.applied:
            return self._replay(event, state), transition, state

        if event.event_type == CallEventType.INITIATED:
            await self._route(event, state, did_routing, now)
            response = WebhookResponse.markup(state.last_response)
        elif event.event_type == CallEventType.DIAL_RESULT:
            response = WebhookResponse.markup(self._advance(event, state))
        else:
            response = WebhookResponse.ack()

        if transition.changed:
            state.enter(transition.next, now)
            logger.info(f"Call {event.call_id}: {transition.previous.value} -> {transition.next.value}")
        state.updated_at = now
        await self.states.save(state)
        return response, transition, state

    async def _route(
        self,
        event: CallEvent,
        state: CallState,
        did_routing: Optional[DidRouting],
        now: datetime,
        last_cursor: Optional[int] = None,
    ) -> None:
        if did_routing is not None:
            snapshot = await self.reader.load_snapshot(event.called, did_routing)
        else:
            snapshot = TenantRoutingSnapshot()

        outcome = self.engine.decide(event.called, snapshot, now, last_cursor=last_cursor)
        state.outcome = outcome
        state.decided_at = now
        state.attempt = 0
        state.last_response = self.builder.render(outcome, 0)

        logger.info(
            f"Call {event.call_id} from {mask_phone_number(event.caller)} to "
            f"{mask_phone_number(event.called)} routed: {outcome.kind}"
        )

    def _advance(self, event: CallEvent, state: CallState) -> str:
        """Move a call to its next ring attempt after one finished"""
        dial_status = (event.dial_status or "").strip().lower()

        if dial_status in CONNECTED_DIAL_STATUSES:
            state.last_response = self.builder.render_hangup()
            return state.last_response

        if event.attempt is not None and event.attempt != state.attempt:
            logger.info(
                f"Call {event.call_id}: stale dial result for attempt {event.attempt} "
                f"(current {state.attempt}), replaying"
            )
            return state.last_response or self.builder.render(state.outcome, state.attempt)

        state.attempt += 1
        state.last_response = self.builder.render(state.outcome, state.attempt)
        logger.info(f"Call {event.call_id}: attempt {state.attempt} after dial status {dial_status or 'unknown'}")
        return state.last_response

    async def _recover(
        self,
        event: CallEvent,
        did_routing: Optional[DidRouting],
        tenant_id: str,
        now: datetime,
    ) -> CallState:
        """
        Rebuild state lost mid-call.

        Round-robin groups resume after the position carried by the dial
        result; other outcomes restart from their first attempt.
        """
        logger.warning(f"Call {event.call_id}: state lost before dial result, restarting routing")
        state = CallState(
            call_id=event.call_id,
            tenant_id=tenant_id,
            did=normalize_phone_number(event.called),
            caller=event.caller,
        )
        await self._route(event, state, did_routing, now, last_cursor=event.ring_cursor)
        state.enter(CallPhase.INITIATED, now)
        return state

    # ------------------------------------------------------------------
    # Replays
    # ------------------------------------------------------------------

    def _replay(self, event: CallEvent, state: CallState) -> WebhookResponse:
        if event.event_type not in (CallEventType.INITIATED, CallEventType.DIAL_RESULT):
            return WebhookResponse.ack()
        if state.last_response:
            return WebhookResponse.markup(state.last_response)
        if state.outcome is not None:
            return WebhookResponse.markup(self.builder.render(state.outcome, state.attempt))
        return self._fallback_markup()

    def _replay_or_fallback(self, event: CallEvent, state: CallState) -> WebhookResponse:
        if event.event_type not in (CallEventType.INITIATED, CallEventType.DIAL_RESULT):
            return WebhookResponse.ack()
        if state.last_response:
            return WebhookResponse.markup(state.last_response)
        return self._fallback_markup()

    def _fallback_markup(self) -> WebhookResponse:
        outcome = FallbackOutcome(action=FallbackAction.HANGUP, reason=FallbackReason.INVALID_INPUT)
        return WebhookResponse.markup(self.builder.render(outcome))

    # ------------------------------------------------------------------
    # Lifecycle events
    # ------------------------------------------------------------------

    def _publish_transition(self, transition: Transition, state: CallState, event: CallEvent) -> None:
        payload = {
            "did": state.did,
            "caller": state.caller,
            "previous_phase": transition.previous.value,
            "phase": transition.next.value,
        }

        if transition.next == CallPhase.INITIATED:
            payload["routing"] = state.outcome.kind if state.outcome else None
            self.publisher.emit(EventType.CALL_STARTED, state.call_id, state.tenant_id, payload)
        elif transition.next == CallPhase.ANSWERED:
            self.publisher.emit(EventType.CALL_ANSWERED, state.call_id, state.tenant_id, payload)
        elif transition.next.is_terminal:
            payload["status"] = event.status
            self.publisher.emit(EventType.CALL_ENDED, state.call_id, state.tenant_id, payload)


def _retryable(transition: Optional[Transition]) -> bool:
    """An event rejected before the call exists must stay deliverable once it does"""
    return transition is not None and transition.rejected and transition.previous == CallPhase.NONE
