from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import List, Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from fastapi.responses import RedirectResponse
from sse_starlette.sse import EventSourceResponse
from starlette.concurrency import run_in_threadpool

from slotkeeper.core.engine import ReservationEngine
from slotkeeper.core.entities.actor import Actor, Role
from slotkeeper.core.errors import (
    ConflictError,
    ForbiddenError,
    GatewayError,
    NotFoundError,
    ReservationError,
    SignatureInvalid,
    ValidationError,
)
from slotkeeper.infrastructure.config import settings
from slotkeeper.infrastructure.notifier import SLOTS_CHANGED, BroadcastNotifier, ChangeMessage
from slotkeeper.schemas.models import (
    Booking,
    BookingRequest,
    CheckoutStarted,
    DeleteBookingAck,
    FineRequest,
    HoldRequest,
    OfflineBookingCreated,
    PaymentStatus,
    Slot,
    SlotLayout,
    SweepSummary,
    WebhookAck,
)
from slotkeeper.services.reservation_service import (
    abandon_payment_service,
    cancel_booking_service,
    confirm_payment_service,
    create_offline_booking_service,
    create_online_booking_service,
    delete_booking_service,
    delete_slot_service,
    get_booking_service,
    get_engine,
    get_notifier,
    get_slot_service,
    hold_slot_service,
    list_facility_bookings_service,
    list_my_bookings_service,
    list_slots_service,
    register_layout_service,
    release_slot_service,
    scan_ticket_service,
    set_fine_service,
    sweep_service,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def get_actor(
    x_actor_id: Optional[str] = Header(default=None),
    x_actor_role: str = Header(default="user"),
) -> Actor:
    if not x_actor_id:
        raise HTTPException(status_code=401, detail="Missing X-Actor-Id header")
    try:
        role = Role(x_actor_role.lower())
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown role: {x_actor_role}")
    return Actor(actor_id=x_actor_id, role=role)


def _http_error(e: ReservationError) -> HTTPException:
    if isinstance(e, (ValidationError, SignatureInvalid)):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, ForbiddenError):
        return HTTPException(status_code=403, detail=str(e))
    if isinstance(e, ConflictError):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, GatewayError):
        return HTTPException(status_code=502, detail=str(e))
    logger.error("Unmapped reservation error: %r", e)
    return HTTPException(status_code=500, detail="Internal error")


def _redirect(base_url: str, **params: str) -> RedirectResponse:
    return RedirectResponse(url=f"{base_url}?{urlencode(params)}", status_code=302)


# -----------------------------
# Slots
# -----------------------------
@router.post("/slots/{slot_id}/hold", response_model=Slot)
def post_slots_slot_id_hold(
    slot_id: str,
    body: Optional[HoldRequest] = None,
    actor: Actor = Depends(get_actor),
    engine: ReservationEngine = Depends(get_engine),
) -> Slot:
    """
    Hold a free slot while the caller checks out

    Returns:
      - 200 with the held slot
      - 409 if the slot is not free
      - 403 on an admin-only slot
      - 400 if hold_minutes is out of bounds
    """
    try:
        return hold_slot_service(engine, slot_id, actor, body.hold_minutes if body else None)
    except ReservationError as e:
        raise _http_error(e)


@router.post("/slots/{slot_id}/release", response_model=Slot)
def post_slots_slot_id_release(
    slot_id: str,
    actor: Actor = Depends(get_actor),
    engine: ReservationEngine = Depends(get_engine),
) -> Slot:
    try:
        return release_slot_service(engine, slot_id, actor)
    except ReservationError as e:
        raise _http_error(e)


@router.get("/slots/{slot_id}", response_model=Slot)
def get_slots_slot_id(slot_id: str, engine: ReservationEngine = Depends(get_engine)) -> Slot:
    try:
        return get_slot_service(engine, slot_id)
    except ReservationError as e:
        raise _http_error(e)


@router.delete("/slots/{slot_id}", response_model=Slot)
def delete_slots_slot_id(
    slot_id: str,
    actor: Actor = Depends(get_actor),
    engine: ReservationEngine = Depends(get_engine),
) -> Slot:
    try:
        return delete_slot_service(engine, slot_id, actor)
    except ReservationError as e:
        raise _http_error(e)


@router.get("/facilities/{facility_id}/slots", response_model=List[Slot])
def get_facilities_facility_id_slots(
    facility_id: str,
    engine: ReservationEngine = Depends(get_engine),
) -> List[Slot]:
    try:
        return list_slots_service(engine, facility_id)
    except ReservationError as e:
        raise _http_error(e)


@router.put("/facilities/{facility_id}/slots", response_model=List[Slot])
def put_facilities_facility_id_slots(
    facility_id: str,
    body: SlotLayout,
    actor: Actor = Depends(get_actor),
    engine: ReservationEngine = Depends(get_engine),
) -> List[Slot]:
    """
    Replace a facility's slot layout (admin)

    Returns:
      - 409 while any slot of the facility is held or occupied
    """
    try:
        return register_layout_service(engine, facility_id, body, actor)
    except ReservationError as e:
        raise _http_error(e)


@router.get("/facilities/{facility_id}/bookings", response_model=List[Booking])
def get_facilities_facility_id_bookings(
    facility_id: str,
    actor: Actor = Depends(get_actor),
    engine: ReservationEngine = Depends(get_engine),
) -> List[Booking]:
    try:
        return list_facility_bookings_service(engine, facility_id, actor)
    except ReservationError as e:
        raise _http_error(e)


# -----------------------------
# Bookings
# -----------------------------
@router.post("/bookings", response_model=CheckoutStarted)
def post_bookings(
    body: BookingRequest,
    actor: Actor = Depends(get_actor),
    engine: ReservationEngine = Depends(get_engine),
) -> CheckoutStarted:
    """
    Create a pending online booking and open a checkout for it

    Returns:
      - 200 with the payment redirect url
      - 409 if the slot is held by someone else or occupied
      - 502 if the payment gateway refused the checkout (the booking is failed)
    """
    try:
        return create_online_booking_service(engine, body, actor)
    except ReservationError as e:
        raise _http_error(e)


@router.post("/bookings/offline", response_model=OfflineBookingCreated)
def post_bookings_offline(
    body: BookingRequest,
    actor: Actor = Depends(get_actor),
    engine: ReservationEngine = Depends(get_engine),
) -> OfflineBookingCreated:
    try:
        return create_offline_booking_service(engine, body, actor)
    except ReservationError as e:
        raise _http_error(e)


@router.get("/bookings/verify-payment")
def get_bookings_verify_payment(
    booking_id: str,
    session_id: Optional[str] = None,
    engine: ReservationEngine = Depends(get_engine),
) -> RedirectResponse:
    """
    Checkout success redirect target: confirm with the gateway, then send the
    browser on to the success or failure page. A payment the gateway has not
    captured yet lands on the success page flagged as pending.
    """
    try:
        booking = confirm_payment_service(engine, booking_id, session_id)
    except ReservationError as e:
        raise _http_error(e)

    if booking.payment_status is PaymentStatus.success:
        return _redirect(settings.success_redirect_url, booking_id=booking_id)
    if booking.payment_status is PaymentStatus.pending:
        return _redirect(settings.success_redirect_url, booking_id=booking_id, payment_status="pending")
    return _redirect(settings.failure_redirect_url, booking_id=booking_id)


@router.get("/bookings/payment-failed")
def get_bookings_payment_failed(
    booking_id: str,
    engine: ReservationEngine = Depends(get_engine),
) -> RedirectResponse:
    try:
        abandon_payment_service(engine, booking_id)
    except ReservationError as e:
        raise _http_error(e)
    return _redirect(settings.failure_redirect_url, booking_id=booking_id)


@router.post("/bookings/webhook", response_model=WebhookAck)
async def post_bookings_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(default=None),
    engine: ReservationEngine = Depends(get_engine),
) -> WebhookAck:
    """
    Gateway webhook

    Returns:
      - 200 {received: true} once the signature checks out, even if processing failed
      - 400 on a bad signature
    """
    payload = await request.body()
    try:
        await run_in_threadpool(engine.handle_webhook, payload, stripe_signature)
    except SignatureInvalid as e:
        raise HTTPException(status_code=400, detail=str(e))
    return WebhookAck(received=True)


@router.get("/bookings/mine", response_model=List[Booking])
def get_bookings_mine(
    actor: Actor = Depends(get_actor),
    engine: ReservationEngine = Depends(get_engine),
) -> List[Booking]:
    return list_my_bookings_service(engine, actor)


@router.get("/bookings/{booking_id}", response_model=Booking)
def get_bookings_booking_id(
    booking_id: str,
    actor: Actor = Depends(get_actor),
    engine: ReservationEngine = Depends(get_engine),
) -> Booking:
    try:
        return get_booking_service(engine, booking_id, actor)
    except ReservationError as e:
        raise _http_error(e)


@router.post("/bookings/{booking_id}/cancel", response_model=Booking)
def post_bookings_booking_id_cancel(
    booking_id: str,
    actor: Actor = Depends(get_actor),
    engine: ReservationEngine = Depends(get_engine),
) -> Booking:
    try:
        return cancel_booking_service(engine, booking_id, actor)
    except ReservationError as e:
        raise _http_error(e)


@router.delete("/bookings/{booking_id}", response_model=DeleteBookingAck)
def delete_bookings_booking_id(
    booking_id: str,
    actor: Actor = Depends(get_actor),
    engine: ReservationEngine = Depends(get_engine),
) -> DeleteBookingAck:
    try:
        return delete_booking_service(engine, booking_id, actor)
    except ReservationError as e:
        raise _http_error(e)


@router.patch("/bookings/{booking_id}/fine", response_model=Booking)
def patch_bookings_booking_id_fine(
    booking_id: str,
    body: FineRequest,
    actor: Actor = Depends(get_actor),
    engine: ReservationEngine = Depends(get_engine),
) -> Booking:
    try:
        return set_fine_service(engine, booking_id, body.fine_amount, actor)
    except ReservationError as e:
        raise _http_error(e)


@router.get("/tickets/{payload}", response_model=Booking)
def get_tickets_payload(
    payload: str,
    actor: Actor = Depends(get_actor),
    engine: ReservationEngine = Depends(get_engine),
) -> Booking:
    try:
        return scan_ticket_service(engine, payload, actor)
    except ReservationError as e:
        raise _http_error(e)


# -----------------------------
# Maintenance and streaming
# -----------------------------
@router.post("/maintenance/sweep", response_model=SweepSummary)
def post_maintenance_sweep(engine: ReservationEngine = Depends(get_engine)) -> SweepSummary:
    return sweep_service(engine)


def _to_sse(message: ChangeMessage) -> dict[str, str]:
    if message.kind == SLOTS_CHANGED:
        schema, key = Slot, "slots"
    else:
        schema, key = Booking, "bookings"
    items = [schema.model_validate(item).model_dump(mode="json") for item in message.items]
    return {
        "event": message.kind,
        "data": json.dumps({"facilityId": message.facility_id, key: items}),
    }


@router.get("/events/stream")
async def get_events_stream(
    facility_id: Optional[str] = None,
    notifier: BroadcastNotifier = Depends(get_notifier),
) -> EventSourceResponse:
    """
    Server-sent slotsChanged / bookingsChanged events, optionally for one facility.
    """
    async def event_generator():
        yield {
            "event": "connected",
            "data": json.dumps(
                {
                    "facilityId": facility_id,
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                }
            ),
        }
        async for message in notifier.subscribe(facility_id):
            yield _to_sse(message)

    return EventSourceResponse(
        event_generator(),
        ping=15,
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
