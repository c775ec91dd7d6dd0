from __future__ import annotations

import logging
from dataclasses import dataclass

from slotkeeper.core.entities.actor import Actor
from slotkeeper.core.entities.booking import Booking
from slotkeeper.core.errors import BookingNotFound, ForbiddenError
from slotkeeper.core.use_cases.base import EngineUseCase

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class DeleteBookingResult:
    booking_id: str
    slot_freed: bool


class CancelBookingUseCase(EngineUseCase):
    """
    pending|success -> cancelled. The slot is freed only while this booking is the
    one backing it; a booking that was already superseded leaves the slot alone.
    """

    def execute(self, *, booking_id: str, actor: Actor) -> Booking:
        with self._uow_factory() as uow:
            current = uow.bookings.get(booking_id)
        if current is None:
            raise BookingNotFound(f"Booking not found: {booking_id!r}")

        now = self._clock.now()
        with self._atomic(current.slot_id) as uow:
            booking = uow.bookings.cancel(booking_id, actor, now)
            slot = uow.slots.free(booking.slot_id, only_for_booking=booking_id)
            uow.commit()

        logger.info("Booking %s cancelled by %s (slot freed: %s)", booking_id, actor.actor_id, slot is not None)
        self._publish(slots=[slot], bookings=[booking])
        return booking


class DeleteBookingUseCase(EngineUseCase):
    """Remove a booking record, freeing its slot if the booking was backing it."""

    def execute(self, *, booking_id: str, actor: Actor) -> DeleteBookingResult:
        with self._uow_factory() as uow:
            current = uow.bookings.get(booking_id)
        if current is None:
            raise BookingNotFound(f"Booking not found: {booking_id!r}")
        if not (actor.privileged or current.is_held_by(actor.actor_id)):
            raise ForbiddenError("Not authorized to delete this booking")

        with self._atomic(current.slot_id) as uow:
            slot = uow.slots.free(current.slot_id, only_for_booking=booking_id)
            if not uow.bookings.delete(booking_id):
                raise BookingNotFound(f"Booking not found: {booking_id!r}")
            remaining = uow.bookings.list_for_facility(current.facility_id)
            uow.commit()

        logger.info("Booking %s deleted by %s", booking_id, actor.actor_id)
        self._publish(slots=[slot])
        self._publish_facility_bookings(current.facility_id, remaining)
        return DeleteBookingResult(booking_id=booking_id, slot_freed=slot is not None)
