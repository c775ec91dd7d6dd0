from __future__ import annotations

from abc import ABC, abstractmethod

from slotkeeper.core.repositories.booking_repository import BookingRepository
from slotkeeper.core.repositories.slot_repository import SlotRepository


class UnitOfWork(ABC):
    """
    One transaction spanning the slot and booking stores.

    Leaving the block without commit() rolls everything back, so a use case that
    fails halfway never leaves a slot and its booking disagreeing.
    """

    slots: SlotRepository
    bookings: BookingRepository

    def __enter__(self) -> "UnitOfWork":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.rollback()
        self.close()

    @abstractmethod
    def commit(self) -> None:
        raise NotImplementedError

    @abstractmethod
    def rollback(self) -> None:
        raise NotImplementedError

    def close(self) -> None:
        pass
