from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    Float,
    Integer,
    String,
    TypeDecorator,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from slotkeeper.core.entities.booking import BookingChannel, PaymentStatus
from slotkeeper.core.entities.slot import SlotState
from slotkeeper.infrastructure.database import Base


class UTCDateTime(TypeDecorator):
    """Stores naive UTC, returns aware UTC (SQLite drops offsets)."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    def process_result_value(self, value: datetime | None, dialect) -> datetime | None:
        if value is None:
            return None
        return value.replace(tzinfo=timezone.utc)


class SlotModel(Base):
    __tablename__ = "slots"
    __table_args__ = (UniqueConstraint("facility_id", "slot_number", name="uq_slot_number_per_facility"),)

    slot_id: Mapped[str] = mapped_column(String, primary_key=True)
    facility_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    slot_number: Mapped[str] = mapped_column(String, nullable=False)
    state: Mapped[SlotState] = mapped_column(Enum(SlotState), nullable=False, default=SlotState.FREE, index=True)
    admin_only: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    locked_by: Mapped[str | None] = mapped_column(String, nullable=True)
    locked_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    lock_expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True, index=True)
    active_booking_id: Mapped[str | None] = mapped_column(String, nullable=True, unique=True)
    x: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    y: Mapped[float] = mapped_column(Float, nullable=False, default=0)


class BookingModel(Base):
    __tablename__ = "bookings"

    booking_id: Mapped[str] = mapped_column(String, primary_key=True)
    slot_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    facility_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    user_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    guest_name: Mapped[str | None] = mapped_column(String, nullable=True)
    start_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    end_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    vehicle_number: Mapped[str] = mapped_column(String, nullable=False)
    vehicle_type: Mapped[str] = mapped_column(String, nullable=False)
    channel: Mapped[BookingChannel] = mapped_column(Enum(BookingChannel), nullable=False)
    payment_status: Mapped[PaymentStatus] = mapped_column(Enum(PaymentStatus), nullable=False, index=True)
    amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    payment_ref: Mapped[str | None] = mapped_column(String, nullable=True)
    checkout_session_id: Mapped[str | None] = mapped_column(String, nullable=True)
    qr_payload: Mapped[str | None] = mapped_column(String, nullable=True)
    fine_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
