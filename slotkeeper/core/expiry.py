"""
Hold expiry policy and the clock every use case reads time from.

A hold protects the checkout process, not the parked window: its length is
chosen by the caller within bounds and is unrelated to the booking's
start/end times.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime:
        raise NotImplementedError


class SystemClock:
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


def is_expired(expires_at: datetime, now: datetime) -> bool:
    return now > expires_at


def hold_expiry(locked_at: datetime, hold_minutes: int) -> datetime:
    return locked_at + timedelta(minutes=hold_minutes)


def check_hold_minutes(hold_minutes: int, *, minimum: int, maximum: int) -> int:
    """Raises ValueError unless minimum <= hold_minutes <= maximum"""
    if isinstance(hold_minutes, bool) or not isinstance(hold_minutes, int):
        raise ValueError("hold_minutes must be an int")
    if not minimum <= hold_minutes <= maximum:
        raise ValueError(f"hold_minutes must be between {minimum} and {maximum}")
    return hold_minutes
