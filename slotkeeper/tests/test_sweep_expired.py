from __future__ import annotations

import pytest

from slotkeeper.core.entities.booking import PaymentStatus
from slotkeeper.core.entities.slot import SlotState
from slotkeeper.core.use_cases.base import EnginePolicy
from slotkeeper.tests.conftest import USER_A, USER_B


def test_expired_hold_without_booking_is_reclaimed(engine, facility, clock) -> None:
    engine.hold("S102", USER_A, 15)
    clock.advance(minutes=16)

    result = engine.sweep_expired()

    assert result.released == ["S102"]
    assert result.failed_bookings == []
    assert engine.get_slot("S102").state is SlotState.FREE


def test_live_holds_survive_the_sweep(engine, facility, clock) -> None:
    engine.hold("S101", USER_A, 15)
    clock.advance(minutes=10)

    result = engine.sweep_expired()

    assert result.released == []
    assert engine.get_slot("S101").state is SlotState.HELD


def test_expired_hold_with_unpaid_checkout_fails_the_booking(engine, facility, clock, make_draft) -> None:
    started = engine.create_online_booking(make_draft(), USER_A)
    clock.advance(minutes=16)

    result = engine.sweep_expired()

    assert result.released == ["S101"]
    assert result.failed_bookings == [started.booking_id]
    assert engine.get_booking(started.booking_id, USER_A).payment_status is PaymentStatus.FAILED
    assert engine.get_slot("S101").state is SlotState.FREE


def test_payment_that_landed_without_its_webhook_is_honoured(engine, facility, gateway, clock, make_draft) -> None:
    started = engine.create_online_booking(make_draft(start_in=30), USER_A)
    gateway.paid.add(gateway.session_for(started.booking_id))
    clock.advance(minutes=16)

    result = engine.sweep_expired()

    assert result.reconciled_bookings == [started.booking_id]
    assert result.released == []
    assert engine.get_booking(started.booking_id, USER_A).payment_status is PaymentStatus.SUCCESS
    assert engine.get_slot("S101").state is SlotState.OCCUPIED


def test_unreachable_gateway_defers_until_the_grace_period_ends(engine, facility, gateway, clock, make_draft) -> None:
    started = engine.create_online_booking(make_draft(start_in=30, minutes=120), USER_A)
    gateway.unreachable = True
    clock.advance(minutes=16)

    deferred = engine.sweep_expired()
    assert deferred.deferred == ["S101"]
    assert engine.get_slot("S101").state is SlotState.HELD

    clock.advance(minutes=engine.policy.reconcile_grace_minutes)
    result = engine.sweep_expired()

    assert result.released == ["S101"]
    assert result.failed_bookings == [started.booking_id]


def test_checkout_still_in_progress_is_deferred_then_paid(engine, facility, gateway, clock, make_draft) -> None:
    started = engine.create_online_booking(make_draft(start_in=30, minutes=120), USER_A)
    session_id = gateway.session_for(started.booking_id)
    gateway.in_progress.add(session_id)
    clock.advance(minutes=16)

    deferred = engine.sweep_expired()

    assert deferred.deferred == ["S101"]
    assert deferred.failed_bookings == []
    assert engine.get_booking(started.booking_id, USER_A).payment_status is PaymentStatus.PENDING

    gateway.in_progress.discard(session_id)
    gateway.paid.add(session_id)
    result = engine.sweep_expired()

    assert result.reconciled_bookings == [started.booking_id]
    assert engine.get_slot("S101").state is SlotState.OCCUPIED


def test_checkout_in_progress_past_the_grace_period_is_failed(engine, facility, gateway, clock, make_draft) -> None:
    started = engine.create_online_booking(make_draft(start_in=30, minutes=120), USER_A)
    gateway.in_progress.add(gateway.session_for(started.booking_id))
    clock.advance(minutes=16 + engine.policy.reconcile_grace_minutes)

    result = engine.sweep_expired()

    assert result.failed_bookings == [started.booking_id]
    assert engine.get_slot("S101").state is SlotState.FREE


def test_occupied_slot_is_retired_once_the_booking_ends(engine, facility, gateway, clock, make_draft) -> None:
    started = engine.create_online_booking(make_draft(start_in=5, minutes=30), USER_A)
    gateway.paid.add(gateway.session_for(started.booking_id))
    engine.confirm_payment(started.booking_id)

    clock.advance(minutes=20)
    assert engine.sweep_expired().retired == []

    clock.advance(minutes=15)
    result = engine.sweep_expired()

    assert result.retired == ["S101"]
    assert engine.get_slot("S101").state is SlotState.FREE
    assert engine.get_booking(started.booking_id, USER_A).payment_status is PaymentStatus.SUCCESS


@pytest.mark.parametrize("lazy", [True, False])
def test_listing_slots_sweeps_lazily_when_enabled(engine, facility, clock, lazy, monkeypatch) -> None:
    monkeypatch.setattr(engine._list_slots, "_policy", EnginePolicy(lazy_sweep=lazy))
    engine.hold("S102", USER_B, 5)
    clock.advance(minutes=6)

    states = {slot.slot_id: slot.state for slot in engine.list_slots("F1")}

    assert states["S102"] is (SlotState.FREE if lazy else SlotState.HELD)
