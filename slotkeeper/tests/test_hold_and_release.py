from __future__ import annotations

from datetime import timedelta

import pytest

from slotkeeper.core.entities.booking import PaymentStatus
from slotkeeper.core.entities.slot import SlotState
from slotkeeper.core.errors import ForbiddenError, NotLocked, SlotUnavailable, ValidationError
from slotkeeper.tests.conftest import ADMIN, T0, USER_A, USER_B


def test_hold_locks_the_slot_for_the_requested_minutes(engine, facility, notifier) -> None:
    slot = engine.hold("S101", USER_A, 15)

    assert slot.state is SlotState.HELD
    assert slot.locked_at == T0
    assert slot.lock_expires_at == T0 + timedelta(minutes=15)
    assert notifier.slot_events[-1][0] == "F1"
    assert notifier.slot_events[-1][1][0].slot_id == "S101"


def test_second_actor_cannot_hold_a_held_slot(engine, facility, clock) -> None:
    engine.hold("S101", USER_A, 15)
    clock.advance(minutes=1)

    with pytest.raises(SlotUnavailable):
        engine.hold("S101", USER_B, 15)


@pytest.mark.parametrize("minutes", [0, 61])
def test_hold_minutes_outside_policy_bounds_are_rejected(engine, facility, minutes) -> None:
    with pytest.raises(ValidationError):
        engine.hold("S101", USER_A, minutes)
    assert engine.get_slot("S101").state is SlotState.FREE


def test_admin_only_slot_refuses_regular_users(engine, facility) -> None:
    with pytest.raises(ForbiddenError):
        engine.hold("VIP", USER_A, 15)
    assert engine.hold("VIP", ADMIN, 15).locked_by == ADMIN.actor_id


def test_release_frees_the_slot_and_fails_its_pending_checkout(engine, facility, make_draft) -> None:
    engine.hold("S101", USER_A, 15)
    started = engine.create_online_booking(make_draft(), USER_A)

    with pytest.raises(ForbiddenError):
        engine.release("S101", USER_B)

    slot = engine.release("S101", USER_A)

    assert slot.state is SlotState.FREE
    assert engine.get_booking(started.booking_id, USER_A).payment_status is PaymentStatus.FAILED
    with pytest.raises(NotLocked):
        engine.release("S101", USER_A)
