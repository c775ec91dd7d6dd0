from __future__ import annotations

from contextlib import AbstractContextManager
from dataclasses import dataclass
from enum import Enum
from typing import Protocol, Sequence

from slotkeeper.core.entities.booking import Booking
from slotkeeper.core.entities.slot import Slot


@dataclass(frozen=True, slots=True)
class CheckoutSession:
    session_id: str
    redirect_url: str


@dataclass(frozen=True, slots=True)
class PaymentOutcome:
    """
    What the gateway says about a checkout session.

    pending=True means the checkout is still open or an asynchronous payment has
    not been captured yet: the booking must stay pending. booking_id is the
    booking the session was opened for, when the gateway knows it.
    """
    paid: bool
    payment_ref: str | None = None
    pending: bool = False
    booking_id: str | None = None

    @property
    def settled(self) -> bool:
        return self.paid or not self.pending


class GatewayEventKind(str, Enum):
    PAYMENT_SUCCEEDED = "payment_succeeded"
    PAYMENT_FAILED = "payment_failed"
    IGNORED = "ignored"


@dataclass(frozen=True, slots=True)
class GatewayEvent:
    event_id: str
    kind: GatewayEventKind
    booking_id: str | None = None
    session_id: str | None = None


class PaymentGateway(Protocol):
    """
    The engine's view of the payment provider. Implementations raise GatewayError
    when the provider is unreachable and SignatureInvalid on forged webhooks.
    """

    def create_checkout(self, *, booking: Booking, slot: Slot, amount: int) -> CheckoutSession:
        raise NotImplementedError

    def fetch_outcome(self, session_id: str) -> PaymentOutcome:
        raise NotImplementedError

    def parse_webhook(self, payload: bytes, signature: str | None) -> GatewayEvent:
        raise NotImplementedError


class ChangeNotifier(Protocol):
    """Fire-and-forget broadcast of post-commit snapshots."""

    def slots_changed(self, facility_id: str, slots: Sequence[Slot]) -> None:
        raise NotImplementedError

    def bookings_changed(self, facility_id: str, bookings: Sequence[Booking]) -> None:
        raise NotImplementedError


class SlotLocks(Protocol):
    """Per-slot mutual exclusion held only for the duration of one atomic transition."""

    def hold(self, slot_id: str) -> AbstractContextManager[None]:
        raise NotImplementedError
