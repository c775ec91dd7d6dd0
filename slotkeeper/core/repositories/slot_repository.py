from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from slotkeeper.core.entities.actor import Actor
from slotkeeper.core.entities.slot import Slot


class SlotRepository(ABC):
    """
    Slot persistence. Every transition is a single conditional write keyed on the
    slot's current state; a failed precondition raises instead of overwriting.
    Nothing here commits: the unit of work owns the transaction.
    """

    @abstractmethod
    def get(self, slot_id: str) -> Slot | None:
        raise NotImplementedError

    @abstractmethod
    def list_for_facility(self, facility_id: str) -> list[Slot]:
        raise NotImplementedError

    @abstractmethod
    def add_many(self, slots: list[Slot]) -> None:
        """Insert new free slots. Raises ConflictError on a duplicate slot number."""
        raise NotImplementedError

    @abstractmethod
    def delete_free(self, slot_id: str) -> bool:
        """Delete a slot only if it is free. Returns False if it is held or occupied."""
        raise NotImplementedError

    @abstractmethod
    def clear_facility(self, facility_id: str) -> int:
        """Delete every slot of a facility. Raises ConflictError if any is held or occupied."""
        raise NotImplementedError

    @abstractmethod
    def try_hold(self, slot_id: str, actor: Actor, *, locked_at: datetime, expires_at: datetime) -> Slot:
        """free -> held. Raises SlotNotFound, ForbiddenError (admin-only) or SlotUnavailable."""
        raise NotImplementedError

    @abstractmethod
    def attach(self, slot_id: str, actor_id: str, booking_id: str) -> Slot:
        """Bind a pending booking to the actor's hold. Raises SlotUnavailable if the hold is not theirs."""
        raise NotImplementedError

    @abstractmethod
    def detach(self, slot_id: str, booking_id: str) -> bool:
        """Unbind a booking from a hold, keeping the hold."""
        raise NotImplementedError

    @abstractmethod
    def release(self, slot_id: str, actor: Actor) -> Slot:
        """held -> free. Raises NotLocked if not held, ForbiddenError if held by another non-privileged actor."""
        raise NotImplementedError

    @abstractmethod
    def occupy(self, slot_id: str, booking_id: str) -> Slot:
        """held (for booking_id) -> occupied. Raises SlotUnavailable otherwise."""
        raise NotImplementedError

    @abstractmethod
    def free(self, slot_id: str, *, only_for_booking: str | None = None) -> Slot | None:
        """
        held|occupied -> free.

        Unconditional unless `only_for_booking` is given, in which case the slot is only
        freed while that booking is its active booking. Returns None when nothing changed.
        """
        raise NotImplementedError

    @abstractmethod
    def expired_holds(self, now: datetime) -> list[Slot]:
        """Held slots whose lock_expires_at <= now (candidates, not yet released)."""
        raise NotImplementedError

    @abstractmethod
    def release_if_expired(self, slot_id: str, now: datetime) -> Slot | None:
        """held -> free, only while the hold is still expired at `now`."""
        raise NotImplementedError

    @abstractmethod
    def elapsed_occupancies(self, now: datetime) -> list[Slot]:
        """Occupied slots whose backing booking ended at or before `now`."""
        raise NotImplementedError

    def sweep_expired(self, now: datetime) -> list[Slot]:
        released: list[Slot] = []
        for candidate in self.expired_holds(now):
            slot = self.release_if_expired(candidate.slot_id, now)
            if slot is not None:
                released.append(slot)
        return released
