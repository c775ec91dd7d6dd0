from __future__ import annotations

import logging

from slotkeeper.core.entities.actor import Actor
from slotkeeper.core.entities.booking import Booking, PaymentStatus
from slotkeeper.core.entities.slot import Slot
from slotkeeper.core.errors import ValidationError
from slotkeeper.core.expiry import check_hold_minutes, hold_expiry
from slotkeeper.core.use_cases.base import EngineUseCase

logger = logging.getLogger(__name__)


class HoldSlotUseCase(EngineUseCase):
    """free -> held for `hold_minutes` while the actor checks out."""

    def execute(self, *, slot_id: str, actor: Actor, hold_minutes: int) -> Slot:
        try:
            check_hold_minutes(
                hold_minutes,
                minimum=self._policy.min_hold_minutes,
                maximum=self._policy.max_hold_minutes,
            )
        except ValueError as e:
            raise ValidationError(str(e)) from e

        now = self._clock.now()
        with self._atomic(slot_id) as uow:
            slot = uow.slots.try_hold(
                slot_id,
                actor,
                locked_at=now,
                expires_at=hold_expiry(now, hold_minutes),
            )
            uow.commit()

        logger.info("Slot %s held by %s until %s", slot_id, actor.actor_id, slot.lock_expires_at)
        self._publish(slots=[slot])
        return slot


class ReleaseSlotUseCase(EngineUseCase):
    """
    Explicit unlock by the holder (or an admin). A pending booking still checking
    out on the hold cannot outlive it, so it is failed in the same transaction.
    """

    def execute(self, *, slot_id: str, actor: Actor) -> Slot:
        failed: list[Booking] = []
        with self._atomic(slot_id) as uow:
            slot = uow.slots.release(slot_id, actor)
            for pending in uow.bookings.pending_for_slot(slot_id):
                booking, changed = uow.bookings.resolve(pending.booking_id, PaymentStatus.FAILED)
                if changed:
                    failed.append(booking)
            uow.commit()

        logger.info("Slot %s released by %s", slot_id, actor.actor_id)
        self._publish(slots=[slot], bookings=failed)
        return slot
