from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from slotkeeper.core.entities.actor import Actor
from slotkeeper.core.entities.booking import Booking, BookingDraft, PaymentStatus


class BookingRepository(ABC):
    @abstractmethod
    def get(self, booking_id: str) -> Booking | None:
        raise NotImplementedError

    @abstractmethod
    def create_pending(self, draft: BookingDraft, *, booking_id: str, amount: int, now: datetime) -> Booking:
        """Validate the draft and persist it with payment_status=pending. Raises ValidationError."""
        raise NotImplementedError

    @abstractmethod
    def create_confirmed(
        self,
        draft: BookingDraft,
        *,
        booking_id: str,
        amount: int,
        qr_payload: str,
        now: datetime,
    ) -> Booking:
        """Validate the draft and persist it directly as success."""
        raise NotImplementedError

    @abstractmethod
    def resolve(
        self,
        booking_id: str,
        outcome: PaymentStatus,
        *,
        payment_ref: str | None = None,
        qr_payload: str | None = None,
        amount: int | None = None,
    ) -> tuple[Booking, bool]:
        """
        pending -> outcome. Returns (booking, changed).

        Resolving to the status the booking already has is a no-op (changed=False).
        Raises BookingNotFound, or ConflictError if the booking sits in another final status.
        """
        raise NotImplementedError

    @abstractmethod
    def cancel(self, booking_id: str, actor: Actor, now: datetime) -> Booking:
        """
        pending|success -> cancelled while end_time is in the future.
        Raises BookingNotFound, ForbiddenError or AlreadyTerminalOrElapsed.
        """
        raise NotImplementedError

    @abstractmethod
    def delete(self, booking_id: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def pending_for_slot(self, slot_id: str) -> list[Booking]:
        raise NotImplementedError

    @abstractmethod
    def active_for_slot(self, slot_id: str, now: datetime) -> list[Booking]:
        raise NotImplementedError

    @abstractmethod
    def list_for_facility(self, facility_id: str) -> list[Booking]:
        raise NotImplementedError

    @abstractmethod
    def list_for_user(self, user_id: str) -> list[Booking]:
        raise NotImplementedError

    @abstractmethod
    def set_checkout_session(self, booking_id: str, session_id: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def set_fine(self, booking_id: str, fine_amount: int) -> Booking:
        raise NotImplementedError
