from __future__ import annotations

import logging
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Iterable, Iterator

from slotkeeper.core.entities.actor import Actor
from slotkeeper.core.entities.booking import Booking
from slotkeeper.core.entities.slot import Slot
from slotkeeper.core.errors import ForbiddenError
from slotkeeper.core.expiry import Clock
from slotkeeper.core.repositories.unit_of_work import UnitOfWork
from slotkeeper.core.use_cases.ports import ChangeNotifier, SlotLocks

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class EnginePolicy:
    rate_per_minute: int = 10
    min_hold_minutes: int = 1
    max_hold_minutes: int = 60
    default_hold_minutes: int = 15
    reconcile_grace_minutes: int = 60
    lazy_sweep: bool = True
    ticket_secret: str = "change-me"

    def amount_for(self, duration_minutes: int) -> int:
        return duration_minutes * self.rate_per_minute


class EngineUseCase:
    """
    Shared wiring for every reservation use case: a unit-of-work factory, the
    per-slot lock, the clock and the change notifier.
    """

    def __init__(
            self,
            *,
            uow_factory: Callable[[], UnitOfWork],
            locks: SlotLocks,
            clock: Clock,
            notifier: ChangeNotifier,
            policy: EnginePolicy,
    ) -> None:
        self._uow_factory = uow_factory
        self._locks = locks
        self._clock = clock
        self._notifier = notifier
        self._policy = policy

    @contextmanager
    def _atomic(self, slot_id: str) -> Iterator[UnitOfWork]:
        """Serialize on the slot, then open one transaction. Callers commit explicitly."""
        with self._locks.hold(slot_id):
            with self._uow_factory() as uow:
                yield uow

    def _publish(self, *, slots: Iterable[Slot | None] = (), bookings: Iterable[Booking | None] = ()) -> None:
        """
        Broadcast committed snapshots grouped by facility. Never raises: the state
        change is already committed, so a delivery failure is only logged.
        """
        slots_by_facility: dict[str, list[Slot]] = defaultdict(list)
        for slot in slots:
            if slot is not None:
                slots_by_facility[slot.facility_id].append(slot)
        bookings_by_facility: dict[str, list[Booking]] = defaultdict(list)
        for booking in bookings:
            if booking is not None:
                bookings_by_facility[booking.facility_id].append(booking)

        for facility_id, group in slots_by_facility.items():
            try:
                self._notifier.slots_changed(facility_id, group)
            except Exception:
                logger.warning("Dropped slotsChanged for facility %s", facility_id, exc_info=True)
        for facility_id, group in bookings_by_facility.items():
            try:
                self._notifier.bookings_changed(facility_id, group)
            except Exception:
                logger.warning("Dropped bookingsChanged for facility %s", facility_id, exc_info=True)

    def _publish_facility_bookings(self, facility_id: str, bookings: list[Booking]) -> None:
        """Publish the full booking list of a facility, even when it is empty."""
        try:
            self._notifier.bookings_changed(facility_id, bookings)
        except Exception:
            logger.warning("Dropped bookingsChanged for facility %s", facility_id, exc_info=True)

    @staticmethod
    def _require_privileged(actor: Actor, action: str) -> None:
        if not actor.privileged:
            raise ForbiddenError(f"Only admins may {action}")
