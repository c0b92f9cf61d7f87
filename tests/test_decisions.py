"""Decision handler: first decision wins, late clicks are no-ops."""

import asyncio
from datetime import datetime, timezone

import pytest

from devicegate.common.channel import ActionSelected
from devicegate.common.state_machine import APPROVED, DENIED, NO_REQUEST, PENDING
from devicegate.services.bridge import decisions
from devicegate.services.bridge.decisions import (
    BUSY_REPLY,
    FAILURE_REPLY,
    NOT_FOUND_REPLY,
    DecisionHandler,
    DecisionOutcome,
)

from conftest import RecordingActor


DECIDED_AT = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def handler(store):
    return DecisionHandler(store, now=lambda: DECIDED_AT)


@pytest.mark.asyncio
async def test_approve_round_trip(store, handler, actor):
    store.append("dev-1", {"username": "alice", "deviceName": "Phone"})

    outcome = await handler.on_action_selected("approve_dev-1", actor)

    assert outcome is DecisionOutcome.APPROVED
    assert store.devices["dev-1"] == {
        "deviceId": "dev-1",
        "username": "alice",
        "deviceName": "Phone",
        "approved": True,
        "decidedAt": DECIDED_AT,
    }
    assert "dev-1" not in store.requests
    assert actor.replies == [("Approved **alice** (Phone)", True)]


@pytest.mark.asyncio
async def test_deny_with_default_fields(store, handler, actor):
    store.append("dev-4", {})

    outcome = await handler.on_action_selected("deny_dev-4", actor)

    assert outcome is DecisionOutcome.DENIED
    assert store.devices["dev-4"]["username"] == "Unknown User"
    assert store.devices["dev-4"]["deviceName"] == "Unnamed Device"
    assert store.devices["dev-4"]["approved"] is False
    assert actor.replies == [("Denied **Unknown User** (Unnamed Device)", True)]


@pytest.mark.asyncio
async def test_second_click_is_a_no_op(store, handler, actor):
    store.append("dev-1", {"username": "alice", "deviceName": "Phone"})

    await handler.on_action_selected("approve_dev-1", actor)
    outcome = await handler.on_action_selected("approve_dev-1", actor)

    assert outcome is DecisionOutcome.NOT_FOUND
    assert store.device_writes == ["dev-1"]
    assert store.request_deletes == ["dev-1"]
    assert actor.replies[-1] == (NOT_FOUND_REPLY, True)


@pytest.mark.asyncio
async def test_unknown_device_replies_not_found(store, handler, actor):
    outcome = await handler.on_action_selected("deny_ghost", actor)

    assert outcome is DecisionOutcome.NOT_FOUND
    assert store.devices == {}
    assert actor.replies == [(NOT_FOUND_REPLY, True)]


@pytest.mark.asyncio
async def test_malformed_token_touches_nothing(store, handler, actor):
    outcome = await handler.on_action_selected("approve", actor)

    assert outcome is DecisionOutcome.MALFORMED
    assert store.calls == []
    assert actor.replies == []
    assert actor.dismissed


@pytest.mark.asyncio
async def test_concurrent_approve_and_deny_single_winner(store, handler):
    store.append("dev-2", {"username": "bob", "deviceName": "Laptop"})
    approver = RecordingActor("operator-a")
    denier = RecordingActor("operator-b")

    outcomes = await asyncio.gather(
        handler.on_action_selected("approve_dev-2", approver),
        handler.on_action_selected("deny_dev-2", denier),
    )

    assert outcomes.count(DecisionOutcome.NOT_FOUND) == 1
    assert store.device_writes == ["dev-2"]
    assert store.request_deletes == ["dev-2"]
    winner_approved = DecisionOutcome.APPROVED in outcomes
    assert store.devices["dev-2"]["approved"] is winner_approved
    loser = denier if winner_approved else approver
    assert loser.replies == [(NOT_FOUND_REPLY, True)]


@pytest.mark.asyncio
async def test_store_failure_replies_generic_notice(store, handler, actor):
    store.append("dev-5", {"username": "carol"})
    store.fail_finalize = True

    outcome = await handler.on_action_selected("approve_dev-5", actor)

    assert outcome is DecisionOutcome.FAILED
    assert "dev-5" in store.requests
    assert store.devices == {}
    assert actor.replies == [(FAILURE_REPLY, True)]


@pytest.mark.asyncio
async def test_reply_failure_keeps_committed_decision(store, handler):
    store.append("dev-6", {"username": "dan"})
    actor = RecordingActor(fail=True)

    outcome = await handler.on_action_selected("approve_dev-6", actor)

    assert outcome is DecisionOutcome.APPROVED
    assert store.devices["dev-6"]["approved"] is True
    assert "dev-6" not in store.requests


@pytest.mark.asyncio
async def test_pipeline_entrypoint_and_drop_notice(store, handler, actor):
    store.append("dev-7", {"username": "erin"})

    outcome = await handler.handle(ActionSelected(token="deny_dev-7", actor=actor))
    await handler.on_dropped(ActionSelected(token="approve_dev-8", actor=actor))

    assert outcome is DecisionOutcome.DENIED
    assert actor.replies[-1] == (BUSY_REPLY, True)


@pytest.mark.asyncio
async def test_transition_checked_against_transaction_result(store, handler, actor, monkeypatch):
    seen = []
    real = decisions.validate_transition

    def recording(current, new):
        seen.append((current, new))
        real(current, new)

    monkeypatch.setattr(decisions, "validate_transition", recording)
    store.append("dev-1", {"username": "alice"})

    first = await handler.on_action_selected("deny_dev-1", actor)
    second = await handler.on_action_selected("approve_dev-1", actor)

    assert (first, second) == (DecisionOutcome.DENIED, DecisionOutcome.NOT_FOUND)
    assert seen == [(PENDING, DENIED), (NO_REQUEST, APPROVED)]


@pytest.mark.asyncio
async def test_non_string_fields_are_still_decidable(store, handler, actor):
    store.append("dev-9", {"username": 12345, "deviceName": 7.5})

    outcome = await handler.on_action_selected("approve_dev-9", actor)

    assert outcome is DecisionOutcome.APPROVED
    assert store.devices["dev-9"]["username"] == "12345"
    assert actor.replies == [("Approved **12345** (7.5)", True)]


@pytest.mark.asyncio
async def test_malformed_token_dismiss_failure_is_logged(store, handler):
    outcome = await handler.on_action_selected("deny_", RecordingActor(fail=True))

    assert outcome is DecisionOutcome.MALFORMED
    assert store.calls == []
