from __future__ import annotations

from datetime import datetime

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from slotkeeper.core.entities.actor import Actor
from slotkeeper.core.entities.booking import Booking, BookingDraft, PaymentStatus
from slotkeeper.core.errors import AlreadyTerminalOrElapsed, BookingNotFound, ForbiddenError, ValidationError
from slotkeeper.core.repositories.booking_repository import BookingRepository
from slotkeeper.infrastructure.models.models import BookingModel

_OPEN = (PaymentStatus.PENDING, PaymentStatus.SUCCESS)


class BookingRepositoryImpl(BookingRepository):
    """SQLAlchemy implementation for Booking persistence."""

    def __init__(self, db: Session) -> None:
        self._db = db

    def get(self, booking_id: str) -> Booking | None:
        row = self._db.get(BookingModel, booking_id, populate_existing=True)
        if row is None:
            return None
        return self._to_entity(row)

    def create_pending(self, draft: BookingDraft, *, booking_id: str, amount: int, now: datetime) -> Booking:
        return self._insert(draft, booking_id=booking_id, amount=amount, now=now, status=PaymentStatus.PENDING)

    def create_confirmed(
        self,
        draft: BookingDraft,
        *,
        booking_id: str,
        amount: int,
        qr_payload: str,
        now: datetime,
    ) -> Booking:
        return self._insert(
            draft,
            booking_id=booking_id,
            amount=amount,
            now=now,
            status=PaymentStatus.SUCCESS,
            qr_payload=qr_payload,
        )

    def resolve(
        self,
        booking_id: str,
        outcome: PaymentStatus,
        *,
        payment_ref: str | None = None,
        qr_payload: str | None = None,
        amount: int | None = None,
    ) -> tuple[Booking, bool]:
        if outcome not in (PaymentStatus.SUCCESS, PaymentStatus.FAILED):
            raise ValueError(f"pending bookings resolve to success or failed, not {outcome.value}")

        values: dict = {"payment_status": outcome}
        if payment_ref is not None:
            values["payment_ref"] = payment_ref
        if qr_payload is not None:
            values["qr_payload"] = qr_payload
        if amount is not None:
            values["amount"] = amount

        if self._transition(booking_id, BookingModel.payment_status == PaymentStatus.PENDING, **values):
            return self.get(booking_id), True

        current = self.get(booking_id)
        if current is None:
            raise BookingNotFound(f"Booking not found: {booking_id!r}")
        if current.payment_status is outcome:
            return current, False
        raise AlreadyTerminalOrElapsed(f"Booking {booking_id!r} is already {current.payment_status.value}")

    def cancel(self, booking_id: str, actor: Actor, now: datetime) -> Booking:
        current = self.get(booking_id)
        if current is None:
            raise BookingNotFound(f"Booking not found: {booking_id!r}")
        if not (actor.privileged or current.is_held_by(actor.actor_id)):
            raise ForbiddenError("Not authorized to cancel this booking")

        if not self._transition(
            booking_id,
            BookingModel.payment_status.in_(_OPEN),
            BookingModel.end_time > now,
            payment_status=PaymentStatus.CANCELLED,
        ):
            raise AlreadyTerminalOrElapsed("Booking is already finished or cannot be cancelled")
        return self.get(booking_id)

    def delete(self, booking_id: str) -> bool:
        result = self._db.execute(
            delete(BookingModel)
            .where(BookingModel.booking_id == booking_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def pending_for_slot(self, slot_id: str) -> list[Booking]:
        return self._select(
            BookingModel.slot_id == slot_id,
            BookingModel.payment_status == PaymentStatus.PENDING,
        )

    def active_for_slot(self, slot_id: str, now: datetime) -> list[Booking]:
        return self._select(
            BookingModel.slot_id == slot_id,
            BookingModel.payment_status.in_(_OPEN),
            BookingModel.end_time > now,
        )

    def list_for_facility(self, facility_id: str) -> list[Booking]:
        return self._select(BookingModel.facility_id == facility_id)

    def list_for_user(self, user_id: str) -> list[Booking]:
        return self._select(BookingModel.user_id == user_id)

    def set_checkout_session(self, booking_id: str, session_id: str) -> None:
        if not self._transition(booking_id, checkout_session_id=session_id):
            raise BookingNotFound(f"Booking not found: {booking_id!r}")

    def set_fine(self, booking_id: str, fine_amount: int) -> Booking:
        if not self._transition(booking_id, fine_amount=fine_amount):
            raise BookingNotFound(f"Booking not found: {booking_id!r}")
        return self.get(booking_id)

    # -----------------------------
    # Internal helpers
    # -----------------------------
    def _insert(
        self,
        draft: BookingDraft,
        *,
        booking_id: str,
        amount: int,
        now: datetime,
        status: PaymentStatus,
        qr_payload: str | None = None,
    ) -> Booking:
        try:
            clean = draft.validated(now)
        except ValueError as e:
            raise ValidationError(str(e)) from e

        row = BookingModel(
            booking_id=booking_id,
            slot_id=clean.slot_id,
            facility_id=clean.facility_id,
            user_id=clean.user_id,
            guest_name=clean.guest_name,
            start_time=clean.start_time,
            end_time=clean.end_time,
            duration_minutes=clean.duration_minutes,
            vehicle_number=clean.vehicle_number,
            vehicle_type=clean.vehicle_type,
            channel=clean.channel,
            payment_status=status,
            amount=amount,
            qr_payload=qr_payload,
            fine_amount=0,
            created_at=now,
        )
        self._db.add(row)
        self._db.flush()
        return self._to_entity(row)

    def _transition(self, booking_id: str, *criteria, **values) -> bool:
        result = self._db.execute(
            update(BookingModel)
            .where(BookingModel.booking_id == booking_id, *criteria)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def _select(self, *criteria) -> list[Booking]:
        rows = self._db.scalars(
            select(BookingModel)
            .where(*criteria)
            .order_by(BookingModel.start_time.desc())
            .execution_options(populate_existing=True)
        )
        return [self._to_entity(row) for row in rows]

    @staticmethod
    def _to_entity(row: BookingModel) -> Booking:
        return Booking(
            booking_id=row.booking_id,
            slot_id=row.slot_id,
            facility_id=row.facility_id,
            start_time=row.start_time,
            end_time=row.end_time,
            duration_minutes=row.duration_minutes,
            vehicle_number=row.vehicle_number,
            vehicle_type=row.vehicle_type,
            channel=row.channel,
            payment_status=row.payment_status,
            user_id=row.user_id,
            guest_name=row.guest_name,
            amount=row.amount,
            payment_ref=row.payment_ref,
            checkout_session_id=row.checkout_session_id,
            qr_payload=row.qr_payload,
            fine_amount=row.fine_amount,
            created_at=row.created_at,
        )
