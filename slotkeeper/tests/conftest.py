from __future__ import annotations

import os

# Keep the module-level database and sweeper of slotkeeper.main out of the way.
os.environ.setdefault("SLOTKEEPER_DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("SLOTKEEPER_SWEEP_INTERVAL_SECONDS", "0")

from datetime import datetime, timedelta, timezone
from functools import partial
from typing import Callable

import pytest
from sqlalchemy.orm import sessionmaker

from slotkeeper.core.engine import ReservationEngine
from slotkeeper.core.entities.actor import Actor, Role
from slotkeeper.core.entities.booking import BookingChannel, BookingDraft
from slotkeeper.core.errors import GatewayError, SignatureInvalid
from slotkeeper.core.use_cases.base import EnginePolicy
from slotkeeper.core.use_cases.manage_slots import SlotSpec
from slotkeeper.core.use_cases.ports import CheckoutSession, GatewayEvent, PaymentOutcome
from slotkeeper.infrastructure.database import Base, make_engine
from slotkeeper.infrastructure.locks import InProcessSlotLocks
from slotkeeper.infrastructure.unit_of_work import SqlAlchemyUnitOfWork

T0 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)
FACILITY = "F1"

USER_A = Actor(actor_id="user-a")
USER_B = Actor(actor_id="user-b")
ADMIN = Actor(actor_id="admin-1", role=Role.ADMIN)


class FrozenClock:
    def __init__(self, now: datetime = T0) -> None:
        self.current = now

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current


class FakeGateway:
    """Scriptable stand-in for the payment provider."""

    def __init__(self) -> None:
        self.sessions: dict[str, str] = {}
        self.paid: set[str] = set()
        self.in_progress: set[str] = set()
        self.fail_checkout = False
        self.unreachable = False
        self.next_event: GatewayEvent | None = None
        self.fetch_calls: list[str] = []

    def create_checkout(self, *, booking, slot, amount) -> CheckoutSession:
        if self.fail_checkout:
            raise GatewayError("checkout refused")
        session_id = f"cs_{len(self.sessions) + 1}"
        self.sessions[session_id] = booking.booking_id
        return CheckoutSession(session_id=session_id, redirect_url=f"https://pay.test/{session_id}")

    def fetch_outcome(self, session_id: str) -> PaymentOutcome:
        self.fetch_calls.append(session_id)
        if self.unreachable:
            raise GatewayError("gateway down")
        booking_id = self.sessions.get(session_id)
        if session_id in self.paid:
            return PaymentOutcome(paid=True, payment_ref=f"pi_{session_id}", booking_id=booking_id)
        if session_id in self.in_progress:
            return PaymentOutcome(paid=False, pending=True, booking_id=booking_id)
        return PaymentOutcome(paid=False, booking_id=booking_id)

    def parse_webhook(self, payload: bytes, signature: str | None) -> GatewayEvent:
        if signature != "good-signature":
            raise SignatureInvalid("bad signature")
        return self.next_event

    def session_for(self, booking_id: str) -> str:
        return next(s for s, b in self.sessions.items() if b == booking_id)


class RecordingNotifier:
    def __init__(self) -> None:
        self.slot_events: list[tuple[str, list]] = []
        self.booking_events: list[tuple[str, list]] = []
        self.fail = False

    def slots_changed(self, facility_id, slots) -> None:
        if self.fail:
            raise RuntimeError("subscriber went away")
        self.slot_events.append((facility_id, list(slots)))

    def bookings_changed(self, facility_id, bookings) -> None:
        if self.fail:
            raise RuntimeError("subscriber went away")
        self.booking_events.append((facility_id, list(bookings)))


@pytest.fixture()
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture()
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def session_factory(tmp_path):
    """A file database so worker threads in concurrency tests get their own connections."""
    db_engine = make_engine(f"sqlite+pysqlite:///{tmp_path / 'slotkeeper-test.db'}")
    Base.metadata.create_all(bind=db_engine)
    yield sessionmaker(bind=db_engine, expire_on_commit=False)
    db_engine.dispose()


@pytest.fixture()
def uow_factory(session_factory):
    return partial(SqlAlchemyUnitOfWork, session_factory)


@pytest.fixture()
def engine(uow_factory, gateway, notifier, clock) -> ReservationEngine:
    return ReservationEngine(
        uow_factory=uow_factory,
        locks=InProcessSlotLocks(timeout=5),
        gateway=gateway,
        notifier=notifier,
        policy=EnginePolicy(ticket_secret="test-secret"),
        clock=clock,
    )


@pytest.fixture()
def facility(engine: ReservationEngine) -> list:
    """Facility F1 with slots S101, S102 and an admin-only VIP slot."""
    return engine.register_layout(
        FACILITY,
        [
            SlotSpec(slot_number="101", slot_id="S101", x=0, y=0),
            SlotSpec(slot_number="102", slot_id="S102", x=30, y=0),
            SlotSpec(slot_number="VIP", slot_id="VIP", x=60, y=0, admin_only=True),
        ],
        ADMIN,
    )


@pytest.fixture()
def make_draft(clock: FrozenClock) -> Callable[..., BookingDraft]:
    def _make(
            slot_id: str = "S101",
            *,
            start_in: int = 5,
            minutes: int = 30,
            channel: BookingChannel = BookingChannel.ONLINE,
            **overrides,
    ) -> BookingDraft:
        start = clock.now() + timedelta(minutes=start_in)
        fields = dict(
            slot_id=slot_id,
            facility_id=FACILITY,
            start_time=start,
            end_time=start + timedelta(minutes=minutes),
            vehicle_number="BA 1 PA 2345",
            vehicle_type="car",
            channel=channel,
        )
        fields.update(overrides)
        return BookingDraft(**fields)

    return _make
