from __future__ import annotations

from slotkeeper.core.entities.actor import Actor
from slotkeeper.core.entities.booking import Booking
from slotkeeper.core.entities.slot import Slot
from slotkeeper.core.entities.ticket import read_ticket
from slotkeeper.core.errors import BookingNotFound, ForbiddenError, SlotNotFound, ValidationError
from slotkeeper.core.use_cases.base import EngineUseCase
from slotkeeper.core.use_cases.sweep_expired import SweepExpiredUseCase


class GetSlotUseCase(EngineUseCase):
    def execute(self, *, slot_id: str) -> Slot:
        with self._uow_factory() as uow:
            slot = uow.slots.get(slot_id)
        if slot is None:
            raise SlotNotFound(f"Slot not found: {slot_id!r}")
        return slot


class ListFacilitySlotsUseCase(EngineUseCase):
    """Facility slot map. With lazy sweeping on, expired holds are reclaimed before reading."""

    def __init__(self, *, sweeper: SweepExpiredUseCase, **kwargs) -> None:
        super().__init__(**kwargs)
        self._sweeper = sweeper

    def execute(self, *, facility_id: str) -> list[Slot]:
        if self._policy.lazy_sweep:
            self._sweeper.execute()
        with self._uow_factory() as uow:
            return uow.slots.list_for_facility(facility_id)


class GetBookingUseCase(EngineUseCase):
    def execute(self, *, booking_id: str, actor: Actor) -> Booking:
        with self._uow_factory() as uow:
            booking = uow.bookings.get(booking_id)
        if booking is None:
            raise BookingNotFound(f"Booking not found: {booking_id!r}")
        if not (actor.privileged or booking.is_held_by(actor.actor_id)):
            raise ForbiddenError("Not authorized to view this booking")
        return booking


class ScanTicketUseCase(GetBookingUseCase):
    """Resolve a ticket token presented at the gate to its booking."""

    def execute(self, *, payload: str, actor: Actor) -> Booking:
        try:
            booking_id = read_ticket(payload, self._policy.ticket_secret)
        except ValueError as e:
            raise ValidationError(str(e)) from e
        return super().execute(booking_id=booking_id, actor=actor)


class ListFacilityBookingsUseCase(EngineUseCase):
    def execute(self, *, facility_id: str, actor: Actor) -> list[Booking]:
        self._require_privileged(actor, "list facility bookings")
        with self._uow_factory() as uow:
            return uow.bookings.list_for_facility(facility_id)


class ListUserBookingsUseCase(EngineUseCase):
    def execute(self, *, actor: Actor) -> list[Booking]:
        with self._uow_factory() as uow:
            return uow.bookings.list_for_user(actor.actor_id)


class SetBookingFineUseCase(EngineUseCase):
    def execute(self, *, booking_id: str, fine_amount: int, actor: Actor) -> Booking:
        self._require_privileged(actor, "set fines")
        if isinstance(fine_amount, bool) or not isinstance(fine_amount, int) or fine_amount < 0:
            raise ValidationError("fine_amount must be a non-negative int")
        with self._uow_factory() as uow:
            booking = uow.bookings.set_fine(booking_id, fine_amount)
            uow.commit()
        self._publish(bookings=[booking])
        return booking
