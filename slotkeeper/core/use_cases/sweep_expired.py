from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from slotkeeper.core.entities.booking import Booking, PaymentStatus
from slotkeeper.core.entities.slot import Slot
from slotkeeper.core.errors import ConflictError, GatewayError
from slotkeeper.core.use_cases.base import EngineUseCase
from slotkeeper.core.use_cases.confirm_payment import settle_payment
from slotkeeper.core.use_cases.ports import PaymentGateway, PaymentOutcome

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SweepResult:
    released: list[str] = field(default_factory=list)
    failed_bookings: list[str] = field(default_factory=list)
    reconciled_bookings: list[str] = field(default_factory=list)
    retired: list[str] = field(default_factory=list)
    deferred: list[str] = field(default_factory=list)


class SweepExpiredUseCase(EngineUseCase):
    """
    Reclaim held slots whose hold expired and free occupied slots whose booking
    window has elapsed.

    A pending booking on an expired hold that already opened a checkout is checked
    against the gateway first: a payment that landed without its webhook is
    honoured instead of failed. When the gateway cannot be reached, or reports the
    checkout as still in progress, the slot is deferred to a later sweep until the
    reconcile grace period runs out.

    Every write goes through the same per-slot lock and conditional updates as the
    interactive paths, so a sweep racing a confirmation cannot free a slot that
    just became occupied.
    """

    def __init__(self, *, gateway: PaymentGateway, **kwargs) -> None:
        super().__init__(**kwargs)
        self._gateway = gateway

    def execute(self) -> SweepResult:
        now = self._clock.now()
        with self._uow_factory() as uow:
            expired = uow.slots.expired_holds(now)
            elapsed = uow.slots.elapsed_occupancies(now)

        result = SweepResult()
        changed_slots: list[Slot | None] = []
        changed_bookings: list[Booking | None] = []

        for candidate in expired:
            outcome = self._reconcile(candidate, now)
            if outcome is None:
                result.deferred.append(candidate.slot_id)
                continue
            if outcome.paid:
                booking, slot = self._settle_paid(candidate, outcome)
                if booking is not None:
                    result.reconciled_bookings.append(booking.booking_id)
                    changed_slots.append(slot)
                    changed_bookings.append(booking)
                    continue

            with self._atomic(candidate.slot_id) as uow:
                slot = uow.slots.release_if_expired(candidate.slot_id, now)
                if slot is None:
                    continue
                failed = []
                for pending in uow.bookings.pending_for_slot(candidate.slot_id):
                    booking, changed = uow.bookings.resolve(pending.booking_id, PaymentStatus.FAILED)
                    if changed:
                        failed.append(booking)
                uow.commit()

            result.released.append(slot.slot_id)
            result.failed_bookings.extend(b.booking_id for b in failed)
            changed_slots.append(slot)
            changed_bookings.extend(failed)

        for occupied in elapsed:
            with self._atomic(occupied.slot_id) as uow:
                slot = uow.slots.free(occupied.slot_id, only_for_booking=occupied.active_booking_id)
                uow.commit()
            if slot is not None:
                result.retired.append(slot.slot_id)
                changed_slots.append(slot)

        if result.released or result.retired or result.reconciled_bookings:
            logger.info(
                "Sweep released %d held slot(s), failed %d booking(s), reconciled %d, retired %d",
                len(result.released), len(result.failed_bookings),
                len(result.reconciled_bookings), len(result.retired),
            )
        self._publish(slots=changed_slots, bookings=changed_bookings)
        return result

    def _reconcile(self, candidate: Slot, now: datetime) -> PaymentOutcome | None:
        """
        Ask the gateway about the checkout attached to an expired hold.
        Returns None when the slot should be left for a later sweep.
        """
        with self._uow_factory() as uow:
            pending = [b for b in uow.bookings.pending_for_slot(candidate.slot_id) if b.checkout_session_id]
        if not pending:
            return PaymentOutcome(paid=False)

        pending.sort(key=lambda b: b.booking_id != candidate.active_booking_id)
        booking = pending[0]
        try:
            outcome = self._gateway.fetch_outcome(booking.checkout_session_id)
        except GatewayError:
            reason = "gateway unreachable"
        else:
            if outcome.settled:
                return outcome
            reason = "checkout still in progress"

        grace_ends = candidate.lock_expires_at + timedelta(minutes=self._policy.reconcile_grace_minutes)
        if now <= grace_ends:
            logger.warning("Deferring expired hold on slot %s: %s", candidate.slot_id, reason)
            return None
        logger.error(
            "Failing booking %s on slot %s past the grace period: %s",
            booking.booking_id, candidate.slot_id, reason,
        )
        return PaymentOutcome(paid=False)

    def _settle_paid(self, candidate: Slot, outcome: PaymentOutcome) -> tuple[Booking | None, Slot | None]:
        booking_id = candidate.active_booking_id
        if booking_id is None:
            return None, None
        try:
            with self._atomic(candidate.slot_id) as uow:
                booking, slot, changed = settle_payment(uow, booking_id, outcome, self._policy)
                uow.commit()
        except ConflictError:
            logger.warning("Could not reconcile paid booking %s on slot %s", booking_id, candidate.slot_id)
            return None, None
        if not changed:
            return None, None
        logger.info("Sweep reconciled paid booking %s on slot %s", booking_id, candidate.slot_id)
        return booking, slot
