from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class SlotState(Enum):
    free = 'free'
    held = 'held'
    occupied = 'occupied'


class PaymentStatus(Enum):
    pending = 'pending'
    success = 'success'
    failed = 'failed'
    cancelled = 'cancelled'


class BookingChannel(Enum):
    online = 'online'
    offline = 'offline'


class HoldRequest(BaseModel):
    hold_minutes: Optional[int] = None


class Slot(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    slot_id: str
    facility_id: str
    slot_number: str
    state: SlotState
    available: bool
    locked: bool
    admin_only: bool
    locked_by: Optional[str] = None
    locked_at: Optional[datetime] = None
    lock_expires_at: Optional[datetime] = None
    active_booking_id: Optional[str] = None
    x: float
    y: float


class SlotSpec(BaseModel):
    slot_number: str
    x: float = 0
    y: float = 0
    admin_only: bool = False
    slot_id: Optional[str] = None


class SlotLayout(BaseModel):
    slots: List[SlotSpec]


class BookingRequest(BaseModel):
    slot_id: str
    facility_id: str
    start_time: datetime
    end_time: datetime
    vehicle_number: str
    vehicle_type: str
    duration_minutes: Optional[int] = None
    user_id: Optional[str] = None
    guest_name: Optional[str] = None


class CheckoutStarted(BaseModel):
    booking_id: str
    payment_redirect_url: str
    hold_expires_at: Optional[datetime] = None


class OfflineBookingCreated(BaseModel):
    booking_id: str
    qr_payload: str


class Booking(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    booking_id: str
    slot_id: str
    facility_id: str
    user_id: Optional[str] = None
    guest_name: Optional[str] = None
    start_time: datetime
    end_time: datetime
    duration_minutes: int
    vehicle_number: str
    vehicle_type: str
    channel: BookingChannel
    payment_status: PaymentStatus
    amount: int
    payment_ref: Optional[str] = None
    qr_payload: Optional[str] = None
    fine_amount: int
    created_at: Optional[datetime] = None


class FineRequest(BaseModel):
    fine_amount: int = Field(ge=0)


class DeleteBookingAck(BaseModel):
    ok: bool
    slot_freed: bool


class WebhookAck(BaseModel):
    received: bool


class SweepSummary(BaseModel):
    released: List[str]
    failed_bookings: List[str]
    reconciled_bookings: List[str]
    retired: List[str]
    deferred: List[str]
