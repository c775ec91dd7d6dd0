from __future__ import annotations

from datetime import timedelta

import pytest

from slotkeeper.core.entities.slot import Slot, SlotState
from slotkeeper.core.errors import ConflictError, ForbiddenError, NotLocked, SlotNotFound, SlotUnavailable
from slotkeeper.tests.conftest import ADMIN, T0, USER_A, USER_B


def _hold(uow, slot_id: str, actor, minutes: int = 15, at=T0) -> Slot:
    return uow.slots.try_hold(slot_id, actor, locked_at=at, expires_at=at + timedelta(minutes=minutes))


def test_try_hold_only_succeeds_on_a_free_slot(uow_factory, facility) -> None:
    with uow_factory() as uow:
        slot = _hold(uow, "S101", USER_A)
        uow.commit()

    assert slot.state is SlotState.HELD
    assert slot.locked_by == USER_A.actor_id
    assert slot.lock_expires_at == T0 + timedelta(minutes=15)

    with uow_factory() as uow:
        with pytest.raises(SlotUnavailable):
            _hold(uow, "S101", USER_B, at=T0 + timedelta(minutes=1))


def test_try_hold_rejects_unknown_and_admin_only_slots(uow_factory, facility) -> None:
    with uow_factory() as uow:
        with pytest.raises(SlotNotFound):
            _hold(uow, "NOPE", USER_A)
        with pytest.raises(ForbiddenError):
            _hold(uow, "VIP", USER_A)
        assert _hold(uow, "VIP", ADMIN).locked_by == ADMIN.actor_id


def test_an_expired_hold_without_checkout_can_be_taken_over(uow_factory, facility) -> None:
    with uow_factory() as uow:
        _hold(uow, "S101", USER_A, minutes=5)
        uow.commit()

    with uow_factory() as uow:
        slot = _hold(uow, "S101", USER_B, at=T0 + timedelta(minutes=6))
        uow.commit()

    assert slot.locked_by == USER_B.actor_id


def test_an_expired_hold_with_checkout_is_left_for_the_sweep(uow_factory, facility) -> None:
    with uow_factory() as uow:
        _hold(uow, "S101", USER_A, minutes=5)
        uow.slots.attach("S101", USER_A.actor_id, "b-1")
        uow.commit()

    with uow_factory() as uow:
        with pytest.raises(SlotUnavailable):
            _hold(uow, "S101", USER_B, at=T0 + timedelta(minutes=6))


def test_release_is_reserved_to_the_holder_or_an_admin(uow_factory, facility) -> None:
    with uow_factory() as uow:
        with pytest.raises(NotLocked):
            uow.slots.release("S101", USER_A)
        _hold(uow, "S101", USER_A)
        with pytest.raises(ForbiddenError):
            uow.slots.release("S101", USER_B)
        slot = uow.slots.release("S101", ADMIN)

    assert slot.state is SlotState.FREE
    assert slot.locked_by is None and slot.lock_expires_at is None


def test_occupy_requires_the_hold_to_be_attached_to_that_booking(uow_factory, facility) -> None:
    with uow_factory() as uow:
        _hold(uow, "S101", USER_A)
        with pytest.raises(SlotUnavailable):
            uow.slots.occupy("S101", "b-1")

        uow.slots.attach("S101", USER_A.actor_id, "b-1")
        with pytest.raises(SlotUnavailable):
            uow.slots.attach("S101", USER_A.actor_id, "b-2")

        slot = uow.slots.occupy("S101", "b-1")

    assert slot.state is SlotState.OCCUPIED
    assert slot.active_booking_id == "b-1"
    assert slot.locked_by is None


def test_free_for_a_booking_leaves_slots_backed_by_other_bookings(uow_factory, facility) -> None:
    with uow_factory() as uow:
        _hold(uow, "S101", USER_A)
        uow.slots.attach("S101", USER_A.actor_id, "b-1")
        uow.slots.occupy("S101", "b-1")

        assert uow.slots.free("S101", only_for_booking="b-old") is None
        assert uow.slots.get("S101").state is SlotState.OCCUPIED

        freed = uow.slots.free("S101", only_for_booking="b-1")

    assert freed.state is SlotState.FREE
    assert freed.active_booking_id is None


def test_release_if_expired_ignores_live_holds(uow_factory, facility) -> None:
    with uow_factory() as uow:
        _hold(uow, "S101", USER_A, minutes=15)
        _hold(uow, "S102", USER_B, minutes=5)
        uow.commit()

    later = T0 + timedelta(minutes=10)
    with uow_factory() as uow:
        assert [s.slot_id for s in uow.slots.expired_holds(later)] == ["S102"]
        assert uow.slots.release_if_expired("S101", later) is None
        assert uow.slots.release_if_expired("S102", later).state is SlotState.FREE


def test_sweep_releases_exactly_the_expired_holds(uow_factory, facility) -> None:
    with uow_factory() as uow:
        _hold(uow, "S101", USER_A, minutes=15)
        _hold(uow, "S102", USER_B, minutes=5)
        uow.commit()

    with uow_factory() as uow:
        released = uow.slots.sweep_expired(T0 + timedelta(minutes=4))
        assert released == []
        released = uow.slots.sweep_expired(T0 + timedelta(minutes=10))
        uow.commit()

    assert [s.slot_id for s in released] == ["S102"]
    with uow_factory() as uow:
        assert uow.slots.get("S101").state is SlotState.HELD
        assert uow.slots.get("S102").state is SlotState.FREE


def test_clearing_a_facility_with_a_live_reservation_changes_nothing(uow_factory, facility) -> None:
    with uow_factory() as uow:
        _hold(uow, "S101", USER_A)
        uow.commit()

    with uow_factory() as uow:
        with pytest.raises(ConflictError):
            uow.slots.clear_facility("F1")

    with uow_factory() as uow:
        assert len(uow.slots.list_for_facility("F1")) == 3


def test_duplicate_slot_numbers_are_a_conflict(uow_factory, facility) -> None:
    with uow_factory() as uow:
        with pytest.raises(ConflictError):
            uow.slots.add_many([Slot(slot_id="S999", facility_id="F1", slot_number="101")])
