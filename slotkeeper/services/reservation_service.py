from __future__ import annotations

import logging
from functools import lru_cache, partial
from pathlib import Path

from slotkeeper.core.engine import ReservationEngine
from slotkeeper.core.entities.actor import Actor, Role
from slotkeeper.core.entities.booking import BookingChannel, BookingDraft
from slotkeeper.core.use_cases.base import EnginePolicy
from slotkeeper.core.use_cases.manage_slots import SlotSpec as CoreSlotSpec
from slotkeeper.infrastructure.config import Settings, settings
from slotkeeper.infrastructure.database import SessionLocal
from slotkeeper.infrastructure.gateway.stripe_gateway import StripeGateway
from slotkeeper.infrastructure.locks import InProcessSlotLocks
from slotkeeper.infrastructure.notifier import BroadcastNotifier
from slotkeeper.infrastructure.seed import load_layouts
from slotkeeper.infrastructure.unit_of_work import SqlAlchemyUnitOfWork
from slotkeeper.schemas.models import (
    Booking,
    BookingRequest,
    CheckoutStarted,
    DeleteBookingAck,
    OfflineBookingCreated,
    Slot,
    SlotLayout,
    SweepSummary,
)

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = Actor(actor_id="system", role=Role.SUPERADMIN)


def _secret(value) -> str | None:
    return value.get_secret_value() if value is not None else None


def policy_from(config: Settings) -> EnginePolicy:
    return EnginePolicy(
        rate_per_minute=config.rate_per_minute,
        min_hold_minutes=config.min_hold_minutes,
        max_hold_minutes=config.max_hold_minutes,
        default_hold_minutes=config.default_hold_minutes,
        reconcile_grace_minutes=config.reconcile_grace_minutes,
        lazy_sweep=config.lazy_sweep,
        ticket_secret=config.ticket_secret.get_secret_value(),
    )


@lru_cache(maxsize=1)
def get_notifier() -> BroadcastNotifier:
    return BroadcastNotifier(queue_size=settings.notifier_queue_size)


@lru_cache(maxsize=1)
def get_engine() -> ReservationEngine:
    """Process-wide engine; the per-slot locks only serialize callers sharing it."""
    gateway = StripeGateway(
        secret_key=_secret(settings.stripe_secret_key),
        webhook_secret=_secret(settings.stripe_webhook_secret),
        currency=settings.currency,
        public_base_url=settings.public_base_url,
    )
    return ReservationEngine(
        uow_factory=partial(SqlAlchemyUnitOfWork, SessionLocal),
        locks=InProcessSlotLocks(timeout=settings.lock_timeout_seconds),
        gateway=gateway,
        notifier=get_notifier(),
        policy=policy_from(settings),
    )


def _to_draft(body: BookingRequest, channel: BookingChannel) -> BookingDraft:
    return BookingDraft(
        slot_id=body.slot_id,
        facility_id=body.facility_id,
        start_time=body.start_time,
        end_time=body.end_time,
        vehicle_number=body.vehicle_number,
        vehicle_type=body.vehicle_type,
        channel=channel,
        user_id=body.user_id,
        guest_name=body.guest_name,
        duration_minutes=body.duration_minutes,
    )


def _to_specs(layout: SlotLayout) -> list[CoreSlotSpec]:
    return [
        CoreSlotSpec(
            slot_number=spec.slot_number,
            x=spec.x,
            y=spec.y,
            admin_only=spec.admin_only,
            slot_id=spec.slot_id,
        )
        for spec in layout.slots
    ]


def hold_slot_service(engine: ReservationEngine, slot_id: str, actor: Actor, hold_minutes: int | None) -> Slot:
    if hold_minutes is None:
        hold_minutes = engine.policy.default_hold_minutes
    return Slot.model_validate(engine.hold(slot_id, actor, hold_minutes))


def release_slot_service(engine: ReservationEngine, slot_id: str, actor: Actor) -> Slot:
    return Slot.model_validate(engine.release(slot_id, actor))


def get_slot_service(engine: ReservationEngine, slot_id: str) -> Slot:
    return Slot.model_validate(engine.get_slot(slot_id))


def list_slots_service(engine: ReservationEngine, facility_id: str) -> list[Slot]:
    return [Slot.model_validate(slot) for slot in engine.list_slots(facility_id)]


def register_layout_service(
        engine: ReservationEngine,
        facility_id: str,
        layout: SlotLayout,
        actor: Actor,
) -> list[Slot]:
    slots = engine.register_layout(facility_id, _to_specs(layout), actor)
    return [Slot.model_validate(slot) for slot in slots]


def delete_slot_service(engine: ReservationEngine, slot_id: str, actor: Actor) -> Slot:
    return Slot.model_validate(engine.delete_slot(slot_id, actor))


def create_online_booking_service(engine: ReservationEngine, body: BookingRequest, actor: Actor) -> CheckoutStarted:
    dto = engine.create_online_booking(_to_draft(body, BookingChannel.ONLINE), actor)
    return CheckoutStarted(
        booking_id=dto.booking_id,
        payment_redirect_url=dto.payment_redirect_url,
        hold_expires_at=dto.hold_expires_at,
    )


def create_offline_booking_service(
        engine: ReservationEngine,
        body: BookingRequest,
        actor: Actor,
) -> OfflineBookingCreated:
    dto = engine.create_offline_booking(_to_draft(body, BookingChannel.OFFLINE), actor)
    return OfflineBookingCreated(booking_id=dto.booking_id, qr_payload=dto.qr_payload)


def confirm_payment_service(engine: ReservationEngine, booking_id: str, session_id: str | None) -> Booking:
    return Booking.model_validate(engine.confirm_payment(booking_id, session_id))


def abandon_payment_service(engine: ReservationEngine, booking_id: str) -> Booking:
    return Booking.model_validate(engine.abandon_payment(booking_id))


def cancel_booking_service(engine: ReservationEngine, booking_id: str, actor: Actor) -> Booking:
    return Booking.model_validate(engine.cancel_booking(booking_id, actor))


def delete_booking_service(engine: ReservationEngine, booking_id: str, actor: Actor) -> DeleteBookingAck:
    result = engine.delete_booking(booking_id, actor)
    return DeleteBookingAck(ok=True, slot_freed=result.slot_freed)


def get_booking_service(engine: ReservationEngine, booking_id: str, actor: Actor) -> Booking:
    return Booking.model_validate(engine.get_booking(booking_id, actor))


def list_my_bookings_service(engine: ReservationEngine, actor: Actor) -> list[Booking]:
    return [Booking.model_validate(b) for b in engine.list_my_bookings(actor)]


def list_facility_bookings_service(engine: ReservationEngine, facility_id: str, actor: Actor) -> list[Booking]:
    return [Booking.model_validate(b) for b in engine.list_facility_bookings(facility_id, actor)]


def set_fine_service(engine: ReservationEngine, booking_id: str, fine_amount: int, actor: Actor) -> Booking:
    return Booking.model_validate(engine.set_fine(booking_id, fine_amount, actor))


def scan_ticket_service(engine: ReservationEngine, payload: str, actor: Actor) -> Booking:
    return Booking.model_validate(engine.scan_ticket(payload, actor))


def sweep_service(engine: ReservationEngine) -> SweepSummary:
    result = engine.sweep_expired()
    return SweepSummary(
        released=result.released,
        failed_bookings=result.failed_bookings,
        reconciled_bookings=result.reconciled_bookings,
        retired=result.retired,
        deferred=result.deferred,
    )


def seed_facilities_service(engine: ReservationEngine, path: str | Path) -> dict[str, int]:
    """
    Register the layouts from the seed file for facilities that have no slots yet.
    Existing layouts are never touched.
    """
    created: dict[str, int] = {}
    for facility_id, specs in load_layouts(path).items():
        if engine.list_slots(facility_id):
            continue
        created[facility_id] = len(engine.register_layout(facility_id, specs, SYSTEM_ACTOR))
    if created:
        logger.info("Seeded facility layouts: %s", created)
    return created
