"""
Tests for end-to-end webhook processing
"""

import asyncio
import xml.etree.ElementTree as ET
from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from call_router.core.exceptions import LockAcquisitionTimeout, WebhookDeadlineExceeded
from call_router.models.calls import CallEvent, CallEventType, CallPhase, XML_MEDIA_TYPE
from call_router.reliability.call_lock import CallLockManager, call_lock_key
from call_router.reliability.idempotency import IdempotencyStatus, derive_fingerprint
from call_router.services.call_processor import UNROUTED_TENANT

SALES_DID = "+15551230000"
OFFICE_DID = "+15551230002"
SUPPORT_DID = "+15551230003"


def _event(event_type: CallEventType, call_id: str = "CA500", called: str = SALES_DID, **kwargs) -> CallEvent:
    return CallEvent(
        call_id=call_id,
        event_type=event_type,
        caller="+15550001111",
        called=called,
        **kwargs,
    )


def _initiated(**kwargs) -> CallEvent:
    return _event(CallEventType.INITIATED, **kwargs)


def _dial_result(attempt: int, dial_status: str = "no-answer", **kwargs) -> CallEvent:
    return _event(CallEventType.DIAL_RESULT, attempt=attempt, dial_status=dial_status, **kwargs)


def _status(status: str, **kwargs) -> CallEvent:
    return _event(CallEventType.STATUS_CHANGED, status=status, **kwargs)


def _dialed(response) -> list[str]:
    dial = ET.fromstring(response.body.encode("utf-8")).find("Dial")
    if dial is None:
        return []
    return [child.text for child in dial]


def _verbs(response) -> list[str]:
    return [child.tag for child in ET.fromstring(response.body.encode("utf-8"))]


class TestRouting:
    """Initiation and ring attempt progression"""

    @pytest.mark.asyncio
    async def test_sequential_group_walks_members_then_voicemail(self, processor):
        first = await processor.handle(_initiated())
        second = await processor.handle(_dial_result(0))
        third = await processor.handle(_dial_result(1))

        assert first.media_type == XML_MEDIA_TYPE
        assert _dialed(first) == ["101"]
        assert _dialed(second) == ["102"]
        assert _verbs(third) == ["Say", "Record", "Say", "Hangup"]

        state = await processor.states.load("acme", "CA500")
        assert state.attempt == 2
        assert state.phase == CallPhase.INITIATED

    @pytest.mark.asyncio
    async def test_round_robin_action_carries_position(self, processor):
        await processor.handle(_initiated(called=SUPPORT_DID))
        second = await processor.handle(_dial_result(0, called=SUPPORT_DID))

        dial = ET.fromstring(second.body.encode("utf-8")).find("Dial")
        assert _dialed(second) == ["102"]
        assert dial.get("action").endswith("?attempt=1&cursor=1")

    @pytest.mark.asyncio
    async def test_connected_attempt_hangs_up_after_bridge(self, processor):
        await processor.handle(_initiated())

        response = await processor.handle(_dial_result(0, dial_status="completed"))

        assert _verbs(response) == ["Hangup"]

    @pytest.mark.asyncio
    async def test_stale_dial_result_replays_current_attempt(self, processor):
        await processor.handle(_initiated())
        current = await processor.handle(_dial_result(0))

        stale = await processor.handle(_dial_result(0, dial_status="busy"))

        assert stale.body == current.body
        assert (await processor.states.load("acme", "CA500")).attempt == 1

    @pytest.mark.asyncio
    async def test_lost_state_restarts_ringing(self, processor):
        """A dial result for a call with no state re-derives routing from the top"""
        response = await processor.handle(_dial_result(1, call_id="CA-lost"))

        assert _dialed(response) == ["101"]
        state = await processor.states.load("acme", "CA-lost")
        assert state.phase == CallPhase.INITIATED
        assert state.attempt == 0

    @pytest.mark.asyncio
    async def test_lost_round_robin_state_resumes_after_position(self, processor):
        response = await processor.handle(
            _dial_result(0, call_id="CA-lost-rr", called=SUPPORT_DID, ring_cursor=0)
        )

        assert _dialed(response) == ["102"]
        state = await processor.states.load("acme", "CA-lost-rr")
        assert [m.extension_id for m in state.outcome.members] == ["102", "103", "101"]

    @pytest.mark.asyncio
    async def test_lost_state_announces_call_start(self, processor, publisher, redis_client):
        await processor.handle(_dial_result(1, call_id="CA-lost"))
        await publisher.drain(timeout=1.0)

        assert await redis_client.xlen("events:call.started") == 1

    @pytest.mark.asyncio
    async def test_dial_result_after_answer_replays_original_markup(self, processor):
        original = await processor.handle(_initiated())
        await processor.handle(_status("in-progress"))

        response = await processor.handle(_dial_result(0))

        assert response.body == original.body
        assert _dialed(response) == ["101"]
        state = await processor.states.load("acme", "CA500")
        assert state.phase == CallPhase.ANSWERED
        assert state.attempt == 0

    @pytest.mark.asyncio
    async def test_closed_exception_day_goes_to_voicemail(self, processor):
        processor.clock = lambda: datetime(2024, 12, 25, 15, 0, tzinfo=timezone.utc)

        response = await processor.handle(_initiated(called=OFFICE_DID))

        assert "Record" in _verbs(response)
        state = await processor.states.load("acme", "CA500")
        assert state.outcome.kind == "business_hours"
        assert state.outcome.is_open is False

    @pytest.mark.asyncio
    async def test_unknown_did_is_busy(self, processor):
        response = await processor.handle(_initiated(called="+15559999999"))

        root = ET.fromstring(response.body.encode("utf-8"))
        assert [child.tag for child in root] == ["Say", "Hangup"]
        assert "not configured" in root.find("Say").text
        assert await processor.states.load(UNROUTED_TENANT, "CA500") is not None

    @pytest.mark.asyncio
    async def test_invalid_event_response(self, processor):
        busy = processor.invalid_event_response(CallEventType.INITIATED)
        ack = processor.invalid_event_response(CallEventType.STATUS_CHANGED)

        assert _verbs(busy) == ["Say", "Hangup"]
        assert ack.body == ""
        assert ack.status_code == 200


class TestDuplicates:
    """Duplicate and concurrent deliveries"""

    @pytest.mark.asyncio
    async def test_identical_deliveries_decide_once(self, processor):
        with patch.object(processor.engine, "decide", wraps=processor.engine.decide) as decide:
            responses = [await processor.handle(_initiated()) for _ in range(3)]

        assert decide.call_count == 1
        assert responses[0] == responses[1] == responses[2]

    @pytest.mark.asyncio
    async def test_concurrent_deliveries_decide_once(self, processor):
        with patch.object(processor.engine, "decide", wraps=processor.engine.decide) as decide:
            responses = await asyncio.gather(*(processor.handle(_initiated()) for _ in range(10)))

        assert decide.call_count == 1
        assert len({response.body for response in responses}) == 1

    @pytest.mark.asyncio
    async def test_redelivery_after_cache_expiry_replays(self, processor, redis_client):
        """A replayed initiation with a new fingerprint does not reroute the call"""
        first = await processor.handle(_initiated())
        await processor.handle(_dial_result(0))

        with patch.object(processor.engine, "decide", wraps=processor.engine.decide) as decide:
            again = await processor.handle(_initiated(delivery_id="platform-retry-7"))

        decide.assert_not_called()
        assert _dialed(again) == ["102"]
        assert again.body != first.body

    @pytest.mark.asyncio
    async def test_lock_contention_commits_nothing(self, processor, redis_client):
        event = _initiated()
        other = CallLockManager(redis_client)
        token = await other.acquire(call_lock_key("acme", event.call_id))
        processor.locks.acquire_timeout_seconds = 0.1

        with pytest.raises(LockAcquisitionTimeout):
            await processor.handle(event)

        result = await processor.guard.check(derive_fingerprint(event))
        assert result.status == IdempotencyStatus.NEW
        assert await processor.states.load("acme", event.call_id) is None

        await other.release(call_lock_key("acme", event.call_id), token)
        assert _dialed(await processor.handle(event)) == ["101"]

    @pytest.mark.asyncio
    async def test_deadline_is_transient(self, processor):
        async def slow_lookup(did):
            await asyncio.sleep(1)

        processor.deadline_seconds = 0.05
        processor.reader.get_did_routing = slow_lookup

        with pytest.raises(WebhookDeadlineExceeded):
            await processor.handle(_initiated())


class TestLifecycle:
    """Status callbacks, call records and lifecycle events"""

    @pytest.mark.asyncio
    async def test_status_progression_emits_events(self, processor, publisher, redis_client):
        await processor.handle(_initiated())
        for status in ("ringing", "in-progress", "completed"):
            response = await processor.handle(_status(status))
            assert response.body == ""
        await publisher.drain(timeout=1.0)

        state = await processor.states.load("acme", "CA500")
        assert state.phase == CallPhase.COMPLETED
        assert set(state.phase_timestamps) == {"initiated", "ringing", "answered", "completed"}
        assert await redis_client.xlen("events:call.started") == 1
        assert await redis_client.xlen("events:call.answered") == 1
        assert await redis_client.xlen("events:call.ended") == 1

    @pytest.mark.asyncio
    async def test_terminal_state_kept_for_grace_period(self, processor, redis_client):
        await processor.handle(_initiated())
        await processor.handle(_event(CallEventType.RECORD_CLOSED))

        state = await processor.states.load("acme", "CA500")
        ttl = await redis_client.ttl("call:state:acme:CA500")
        assert state.phase == CallPhase.COMPLETED
        assert 0 < ttl <= 300

    @pytest.mark.asyncio
    async def test_illegal_status_is_acknowledged_and_ignored(self, processor, publisher, redis_client):
        await processor.handle(_initiated())
        await processor.handle(_status("completed"))

        response = await processor.handle(_status("ringing"))
        await publisher.drain(timeout=1.0)

        assert response.status_code == 200
        assert response.body == ""
        assert (await processor.states.load("acme", "CA500")).phase == CallPhase.COMPLETED
        assert await redis_client.xlen("events:call.ended") == 1

    @pytest.mark.asyncio
    async def test_initiation_after_close_replays_original_markup(self, processor):
        original = await processor.handle(_initiated())
        await processor.handle(_status("completed"))

        again = await processor.handle(_initiated(delivery_id="late-copy"))

        assert again.body == original.body

    @pytest.mark.asyncio
    async def test_status_for_unknown_call_creates_nothing(self, processor):
        response = await processor.handle(_status("ringing", call_id="CA-ghost"))

        assert response.body == ""
        assert await processor.states.load("acme", "CA-ghost") is None

    @pytest.mark.asyncio
    async def test_status_before_initiation_applies_on_redelivery(self, processor):
        early = _status("ringing", call_id="CA-early")

        await processor.handle(early)
        result = await processor.guard.check(derive_fingerprint(early))
        assert result.status == IdempotencyStatus.NEW

        await processor.handle(_initiated(call_id="CA-early"))
        await processor.handle(early)

        state = await processor.states.load("acme", "CA-early")
        assert state.phase == CallPhase.RINGING
