from __future__ import annotations

from typing import Callable

from sqlalchemy.orm import Session

from slotkeeper.core.repositories.unit_of_work import UnitOfWork
from slotkeeper.infrastructure.repositories.booking_repository_impl import BookingRepositoryImpl
from slotkeeper.infrastructure.repositories.slot_repository_impl import SlotRepositoryImpl


class SqlAlchemyUnitOfWork(UnitOfWork):
    """One Session, shared by both repositories, per use-case transaction."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session = session_factory()
        self.slots = SlotRepositoryImpl(self._session)
        self.bookings = BookingRepositoryImpl(self._session)

    def commit(self) -> None:
        self._session.commit()

    def rollback(self) -> None:
        self._session.rollback()

    def close(self) -> None:
        self._session.close()
