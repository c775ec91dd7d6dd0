from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from uuid import uuid4

from slotkeeper.core.entities.actor import Actor
from slotkeeper.core.entities.booking import Booking, BookingChannel, BookingDraft, PaymentStatus
from slotkeeper.core.entities.slot import Slot, SlotState
from slotkeeper.core.entities.ticket import issue_ticket
from slotkeeper.core.errors import OwnershipMismatch, SlotNotFound, ValidationError
from slotkeeper.core.expiry import hold_expiry
from slotkeeper.core.repositories.unit_of_work import UnitOfWork
from slotkeeper.core.use_cases.base import EngineUseCase
from slotkeeper.core.use_cases.ports import PaymentGateway

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CheckoutStartedDTO:
    booking_id: str
    payment_redirect_url: str
    hold_expires_at: datetime | None


@dataclass(frozen=True, slots=True)
class OfflineBookingDTO:
    booking_id: str
    qr_payload: str


def _validated(draft: BookingDraft, now: datetime) -> BookingDraft:
    try:
        return draft.validated(now)
    except ValueError as e:
        raise ValidationError(str(e)) from e


def _load_slot_for(uow: UnitOfWork, draft: BookingDraft) -> Slot:
    slot = uow.slots.get(draft.slot_id)
    if slot is None:
        raise SlotNotFound(f"Slot not found: {draft.slot_id!r}")
    if slot.facility_id != draft.facility_id:
        raise ValidationError("facility_id does not match slot")
    return slot


class CreateOnlineBookingUseCase(EngineUseCase):
    """
    Create a pending booking on the caller's hold and open a gateway checkout for it.

    A free slot is held on the caller's behalf first. If the checkout cannot be
    opened the booking is failed and any hold taken here is released again; a hold
    the caller took explicitly is kept.
    """

    def __init__(self, *, gateway: PaymentGateway, **kwargs) -> None:
        super().__init__(**kwargs)
        self._gateway = gateway

    def execute(self, *, draft: BookingDraft, actor: Actor) -> CheckoutStartedDTO:
        draft = self._own(draft, actor)
        now = self._clock.now()
        draft = _validated(replace(draft, channel=BookingChannel.ONLINE), now)
        amount = self._policy.amount_for(draft.duration_minutes)
        booking_id = str(uuid4())

        with self._atomic(draft.slot_id) as uow:
            slot = _load_slot_for(uow, draft)
            took_hold = slot.state is SlotState.FREE or (
                slot.active_booking_id is None and slot.is_hold_expired(now)
            )
            if took_hold:
                uow.slots.try_hold(
                    slot.slot_id,
                    actor,
                    locked_at=now,
                    expires_at=hold_expiry(now, self._policy.default_hold_minutes),
                )
            slot = uow.slots.attach(slot.slot_id, actor.actor_id, booking_id)
            booking = uow.bookings.create_pending(draft, booking_id=booking_id, amount=amount, now=now)
            uow.commit()

        logger.info("Pending booking %s created on slot %s (amount=%s)", booking_id, slot.slot_id, amount)
        self._publish(slots=[slot], bookings=[booking])

        try:
            session = self._gateway.create_checkout(booking=booking, slot=slot, amount=amount)
        except Exception:
            logger.warning("Checkout for booking %s failed; compensating", booking_id, exc_info=True)
            self._compensate(booking, took_hold=took_hold)
            raise

        with self._uow_factory() as uow:
            uow.bookings.set_checkout_session(booking_id, session.session_id)
            uow.commit()

        return CheckoutStartedDTO(
            booking_id=booking_id,
            payment_redirect_url=session.redirect_url,
            hold_expires_at=slot.lock_expires_at,
        )

    @staticmethod
    def _own(draft: BookingDraft, actor: Actor) -> BookingDraft:
        if draft.guest_name and not draft.user_id:
            if not actor.privileged:
                raise OwnershipMismatch("Only admins may book online on behalf of a guest")
            return draft
        if not draft.user_id:
            return replace(draft, user_id=actor.actor_id)
        if draft.user_id != actor.actor_id and not actor.privileged:
            raise OwnershipMismatch("Cannot book for another user")
        return draft

    def _compensate(self, booking: Booking, *, took_hold: bool) -> None:
        with self._atomic(booking.slot_id) as uow:
            failed, _changed = uow.bookings.resolve(booking.booking_id, PaymentStatus.FAILED)
            if took_hold:
                slot = uow.slots.free(booking.slot_id, only_for_booking=booking.booking_id)
            else:
                uow.slots.detach(booking.slot_id, booking.booking_id)
                slot = uow.slots.get(booking.slot_id)
            uow.commit()
        self._publish(slots=[slot], bookings=[failed])


class CreateOfflineBookingUseCase(EngineUseCase):
    """
    Admin counter booking: hold, occupy and persist as success in one transaction,
    with no payment gateway involved.
    """

    def execute(self, *, draft: BookingDraft, actor: Actor) -> OfflineBookingDTO:
        self._require_privileged(actor, "create offline bookings")
        now = self._clock.now()
        draft = _validated(replace(draft, channel=BookingChannel.OFFLINE), now)
        amount = self._policy.amount_for(draft.duration_minutes)
        booking_id = str(uuid4())
        qr_payload = issue_ticket(booking_id, self._policy.ticket_secret)

        with self._atomic(draft.slot_id) as uow:
            slot = _load_slot_for(uow, draft)
            uow.slots.try_hold(
                slot.slot_id,
                actor,
                locked_at=now,
                expires_at=hold_expiry(now, self._policy.default_hold_minutes),
            )
            uow.slots.attach(slot.slot_id, actor.actor_id, booking_id)
            slot = uow.slots.occupy(slot.slot_id, booking_id)
            booking = uow.bookings.create_confirmed(
                draft,
                booking_id=booking_id,
                amount=amount,
                qr_payload=qr_payload,
                now=now,
            )
            uow.commit()

        logger.info("Offline booking %s created on slot %s by %s", booking_id, slot.slot_id, actor.actor_id)
        self._publish(slots=[slot], bookings=[booking])
        return OfflineBookingDTO(booking_id=booking_id, qr_payload=qr_payload)
