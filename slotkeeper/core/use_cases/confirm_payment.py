from __future__ import annotations

import logging

from slotkeeper.core.entities.booking import Booking, PaymentStatus
from slotkeeper.core.entities.slot import Slot
from slotkeeper.core.entities.ticket import issue_ticket
from slotkeeper.core.errors import AlreadyTerminalOrElapsed, BookingNotFound, GatewayError, ValidationError
from slotkeeper.core.repositories.unit_of_work import UnitOfWork
from slotkeeper.core.use_cases.base import EnginePolicy, EngineUseCase
from slotkeeper.core.use_cases.ports import PaymentGateway, PaymentOutcome

logger = logging.getLogger(__name__)


def settle_payment(
        uow: UnitOfWork,
        booking_id: str,
        outcome: PaymentOutcome,
        policy: EnginePolicy,
) -> tuple[Booking, Slot | None, bool]:
    """
    Apply a payment outcome to a pending booking and its slot inside the caller's
    transaction. Returns (booking, slot, changed); changed=False means the booking
    already carried this outcome and nothing was written.

    paid:     booking pending -> success (ticket issued, amount fixed), slot held -> occupied
    not paid: booking pending -> failed, slot freed if it was held for this booking

    Raises AlreadyTerminalOrElapsed when the booking already settled the other way.
    """
    if not outcome.settled:
        raise ValueError("an in-progress checkout cannot settle a booking")
    booking = uow.bookings.get(booking_id)
    if booking is None:
        raise BookingNotFound(f"Booking not found: {booking_id!r}")

    if outcome.paid:
        booking, changed = uow.bookings.resolve(
            booking_id,
            PaymentStatus.SUCCESS,
            payment_ref=outcome.payment_ref,
            qr_payload=issue_ticket(booking_id, policy.ticket_secret),
            amount=policy.amount_for(booking.duration_minutes),
        )
        if not changed:
            return booking, None, False
        slot = uow.slots.occupy(booking.slot_id, booking_id)
        return booking, slot, True

    booking, changed = uow.bookings.resolve(booking_id, PaymentStatus.FAILED)
    if not changed:
        return booking, None, False
    slot = uow.slots.free(booking.slot_id, only_for_booking=booking_id)
    return booking, slot, True


class ConfirmPaymentUseCase(EngineUseCase):
    """
    The single funnel for both payment signals (redirect verification and webhook).

    Idempotent: an already-successful booking is returned untouched without asking
    the gateway again, and a race between the two signals resolves once.
    A checkout the gateway still reports as in progress leaves the booking pending
    and its hold in place.
    """

    def __init__(self, *, gateway: PaymentGateway, **kwargs) -> None:
        super().__init__(**kwargs)
        self._gateway = gateway

    def execute(self, *, booking_id: str, session_id: str | None = None) -> Booking:
        with self._uow_factory() as uow:
            booking = uow.bookings.get(booking_id)
        if booking is None:
            raise BookingNotFound(f"Booking not found: {booking_id!r}")

        if booking.payment_status is PaymentStatus.SUCCESS:
            logger.info("Booking %s already paid; confirmation is a no-op", booking_id)
            return booking
        if booking.payment_status is not PaymentStatus.PENDING:
            self._flag_late_payment(booking, session_id)
            return booking

        if session_id and booking.checkout_session_id and session_id != booking.checkout_session_id:
            raise ValidationError("Checkout session does not belong to this booking")
        session_id = session_id or booking.checkout_session_id
        if not session_id:
            raise ValidationError(f"Booking {booking_id!r} has no checkout session to verify")

        # Ask the gateway outside any lock or transaction.
        outcome = self._gateway.fetch_outcome(session_id)

        # A session we never recorded is only trusted if the gateway ties it to this booking.
        if outcome.booking_id != booking_id and (
                outcome.booking_id is not None or booking.checkout_session_id is None
        ):
            raise ValidationError("Checkout session does not belong to this booking")

        if not outcome.settled:
            logger.info("Checkout %s for booking %s is still in progress; booking stays pending",
                        session_id, booking_id)
            return booking

        try:
            with self._atomic(booking.slot_id) as uow:
                if booking.checkout_session_id is None:
                    uow.bookings.set_checkout_session(booking_id, session_id)
                booking, slot, changed = settle_payment(uow, booking_id, outcome, self._policy)
                uow.commit()
        except AlreadyTerminalOrElapsed:
            with self._uow_factory() as uow:
                booking = uow.bookings.get(booking_id)
            if outcome.paid:
                logger.error(
                    "Payment %s captured for booking %s which already settled as %s; refund required",
                    outcome.payment_ref, booking_id, booking.payment_status.value,
                )
            return booking

        if changed:
            logger.info("Booking %s settled as %s", booking_id, booking.payment_status.value)
            self._publish(slots=[slot], bookings=[booking])
        return booking

    def _flag_late_payment(self, booking: Booking, session_id: str | None) -> None:
        """A failed or cancelled booking is never revived, but money that arrived anyway must be refunded."""
        session_id = session_id or booking.checkout_session_id
        if not session_id:
            return
        try:
            outcome = self._gateway.fetch_outcome(session_id)
        except GatewayError:
            logger.warning("Could not check session %s of %s booking %s", session_id,
                           booking.payment_status.value, booking.booking_id)
            return
        if outcome.paid and outcome.booking_id in (None, booking.booking_id):
            logger.error(
                "Payment %s captured for booking %s which already settled as %s; refund required",
                outcome.payment_ref, booking.booking_id, booking.payment_status.value,
            )


class AbandonPaymentUseCase(EngineUseCase):
    """The client left checkout or the gateway reported failure: same as not paid."""

    def execute(self, *, booking_id: str) -> Booking:
        with self._uow_factory() as uow:
            booking = uow.bookings.get(booking_id)
        if booking is None:
            raise BookingNotFound(f"Booking not found: {booking_id!r}")
        if booking.payment_status is not PaymentStatus.PENDING:
            return booking

        try:
            with self._atomic(booking.slot_id) as uow:
                booking, slot, changed = settle_payment(uow, booking_id, PaymentOutcome(paid=False), self._policy)
                uow.commit()
        except AlreadyTerminalOrElapsed:
            with self._uow_factory() as uow:
                return uow.bookings.get(booking_id)

        if changed:
            logger.info("Booking %s abandoned at checkout", booking_id)
            self._publish(slots=[slot], bookings=[booking])
        return booking
