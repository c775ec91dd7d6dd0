from __future__ import annotations

import re
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum

_VEHICLE_NUMBER = re.compile(r"^[A-Za-z0-9][A-Za-z0-9 -]{1,15}$")


class PaymentStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"


class BookingChannel(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(slots=True)
class Booking:
    booking_id: str
    slot_id: str
    facility_id: str
    start_time: datetime
    end_time: datetime
    duration_minutes: int
    vehicle_number: str
    vehicle_type: str
    channel: BookingChannel
    payment_status: PaymentStatus = PaymentStatus.PENDING
    user_id: str | None = None
    guest_name: str | None = None
    amount: int = 0
    payment_ref: str | None = None
    checkout_session_id: str | None = None
    qr_payload: str | None = None
    fine_amount: int = 0
    created_at: datetime | None = None

    @property
    def holder_ref(self) -> str:
        return self.user_id if self.user_id is not None else f"guest:{self.guest_name}"

    def is_active(self, now: datetime) -> bool:
        return self.payment_status in (PaymentStatus.PENDING, PaymentStatus.SUCCESS) and self.end_time > now

    def is_held_by(self, actor_id: str) -> bool:
        return self.user_id is not None and self.user_id == actor_id


@dataclass(frozen=True, slots=True)
class BookingDraft:
    """
    Unvalidated booking input. `validated` returns a normalized copy or raises ValueError.
    """
    slot_id: str
    facility_id: str
    start_time: datetime
    end_time: datetime
    vehicle_number: str
    vehicle_type: str
    channel: BookingChannel
    user_id: str | None = None
    guest_name: str | None = None
    duration_minutes: int | None = None

    def validated(self, now: datetime) -> "BookingDraft":
        user_id = (self.user_id or "").strip() or None
        guest_name = (self.guest_name or "").strip() or None
        if (user_id is None) == (guest_name is None):
            raise ValueError("exactly one of user_id or guest_name is required")

        vehicle_number = (self.vehicle_number or "").strip().upper()
        if not _VEHICLE_NUMBER.match(vehicle_number):
            raise ValueError(f"invalid vehicle number: {self.vehicle_number!r}")
        vehicle_type = (self.vehicle_type or "").strip()
        if not vehicle_type:
            raise ValueError("vehicle_type must be a non-empty string")

        start = as_utc(self.start_time)
        end = as_utc(self.end_time)
        if end <= start:
            raise ValueError("end_time must be after start_time")
        if end <= now:
            raise ValueError("booking window is in the past")
        # Offline bookings are taken at the counter and may start right away.
        if self.channel is BookingChannel.ONLINE and start <= now:
            raise ValueError("start_time must be in the future")

        seconds = (end - start).total_seconds()
        if seconds % 60:
            raise ValueError("booking window must be a whole number of minutes")
        minutes = int(seconds // 60)
        if self.duration_minutes is not None and self.duration_minutes != minutes:
            raise ValueError(
                f"duration_minutes={self.duration_minutes} does not match the window ({minutes} minutes)"
            )

        return replace(
            self,
            user_id=user_id,
            guest_name=guest_name,
            vehicle_number=vehicle_number,
            vehicle_type=vehicle_type,
            start_time=start,
            end_time=end,
            duration_minutes=minutes,
        )
