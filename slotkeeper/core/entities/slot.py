from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from slotkeeper.core.expiry import is_expired


class SlotState(str, Enum):
    FREE = "free"
    HELD = "held"
    OCCUPIED = "occupied"


@dataclass(slots=True)
class Slot:
    slot_id: str
    facility_id: str
    slot_number: str
    state: SlotState = SlotState.FREE
    admin_only: bool = False
    locked_by: str | None = None
    locked_at: datetime | None = None
    lock_expires_at: datetime | None = None
    active_booking_id: str | None = None
    x: float = 0
    y: float = 0

    @property
    def available(self) -> bool:
        return self.state is SlotState.FREE

    @property
    def locked(self) -> bool:
        return self.state is SlotState.HELD

    def is_hold_expired(self, now: datetime) -> bool:
        if self.state is not SlotState.HELD or self.lock_expires_at is None:
            return False
        return is_expired(self.lock_expires_at, now)
