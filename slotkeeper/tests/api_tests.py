from __future__ import annotations

import json
from datetime import timedelta
from typing import Any

import pytest
from fastapi import FastAPI
from starlette.testclient import TestClient

import slotkeeper.presentation.routers as routers
from slotkeeper.core.entities.booking import Booking, BookingChannel
from slotkeeper.core.entities.slot import Slot
from slotkeeper.core.errors import (
    AlreadyTerminalOrElapsed,
    BookingNotFound,
    GatewayError,
    OwnershipMismatch,
    ValidationError,
)
from slotkeeper.core.use_cases.ports import GatewayEvent, GatewayEventKind
from slotkeeper.infrastructure.config import settings
from slotkeeper.infrastructure.notifier import BOOKINGS_CHANGED, SLOTS_CHANGED, ChangeMessage
from slotkeeper.tests.conftest import T0

USER = {"X-Actor-Id": "user-a"}
OTHER = {"X-Actor-Id": "user-b"}
ADMIN = {"X-Actor-Id": "admin-1", "X-Actor-Role": "admin"}


@pytest.fixture()
def app(engine) -> FastAPI:
    """
    Only the router under test, wired to the test engine instead of the process-wide one.
    """
    test_app = FastAPI()
    test_app.include_router(routers.router)
    test_app.dependency_overrides[routers.get_engine] = lambda: engine
    return test_app


@pytest.fixture()
def client(app: FastAPI) -> TestClient:
    return TestClient(app)


def _booking_payload(**overrides: Any) -> dict[str, Any]:
    start = T0 + timedelta(minutes=5)
    base = {
        "slot_id": "S101",
        "facility_id": "F1",
        "start_time": start.isoformat(),
        "end_time": (start + timedelta(minutes=30)).isoformat(),
        "vehicle_number": "BA 1 PA 2345",
        "vehicle_type": "car",
    }
    base.update(overrides)
    return base


def test_hold_then_conflicting_hold_returns_409(client: TestClient, facility) -> None:
    r = client.post("/slots/S101/hold", json={"hold_minutes": 15}, headers=USER)
    assert r.status_code == 200
    body = r.json()
    assert body["state"] == "held"
    assert body["locked"] is True and body["available"] is False

    r = client.post("/slots/S101/hold", json={"hold_minutes": 15}, headers=OTHER)
    assert r.status_code == 409


def test_hold_without_body_uses_the_default_length(client: TestClient, facility, engine) -> None:
    r = client.post("/slots/S102/hold", headers=USER)

    assert r.status_code == 200
    expected = T0 + timedelta(minutes=engine.policy.default_hold_minutes)
    assert r.json()["lock_expires_at"].startswith(expected.isoformat()[:19])


def test_hold_input_errors(client: TestClient, facility) -> None:
    assert client.post("/slots/S101/hold", json={"hold_minutes": 15}).status_code == 401
    assert client.post("/slots/S101/hold", json={"hold_minutes": 0}, headers=USER).status_code == 400
    assert client.post("/slots/S101/hold", json={"hold_minutes": "soon"}, headers=USER).status_code == 422
    assert client.post("/slots/NOPE/hold", json={"hold_minutes": 15}, headers=USER).status_code == 404
    assert client.post("/slots/VIP/hold", json={"hold_minutes": 15}, headers=USER).status_code == 403
    bad_role = {"X-Actor-Id": "x", "X-Actor-Role": "root"}
    assert client.post("/slots/S101/hold", json={"hold_minutes": 15}, headers=bad_role).status_code == 400


def test_release_of_a_free_slot_returns_409(client: TestClient, facility) -> None:
    assert client.post("/slots/S101/release", headers=USER).status_code == 409


def test_online_booking_and_payment_redirects(client: TestClient, facility, gateway) -> None:
    r = client.post("/bookings", json=_booking_payload(), headers=USER)
    assert r.status_code == 200
    started = r.json()
    assert started["payment_redirect_url"].startswith("https://pay.test/")

    booking_id = started["booking_id"]
    session_id = gateway.session_for(booking_id)
    gateway.paid.add(session_id)

    r = client.get(
        "/bookings/verify-payment",
        params={"booking_id": booking_id, "session_id": session_id},
        follow_redirects=False,
    )
    assert r.status_code == 302
    assert r.headers["location"].startswith(settings.success_redirect_url)

    r = client.get(f"/bookings/{booking_id}", headers=USER)
    assert r.json()["payment_status"] == "success"
    assert r.json()["amount"] == 300
    assert client.get(f"/bookings/{booking_id}", headers=OTHER).status_code == 403

    qr = r.json()["qr_payload"]
    assert client.get(f"/tickets/{qr}", headers=ADMIN).json()["booking_id"] == booking_id

    mine = client.get("/bookings/mine", headers=USER)
    assert [b["booking_id"] for b in mine.json()] == [booking_id]


def test_verification_of_an_uncaptured_payment_redirects_as_pending(client: TestClient, facility, gateway) -> None:
    booking_id = client.post("/bookings", json=_booking_payload(), headers=USER).json()["booking_id"]
    session_id = gateway.session_for(booking_id)
    gateway.in_progress.add(session_id)

    r = client.get(
        "/bookings/verify-payment",
        params={"booking_id": booking_id, "session_id": session_id},
        follow_redirects=False,
    )

    assert r.status_code == 302
    assert r.headers["location"].startswith(settings.success_redirect_url)
    assert "payment_status=pending" in r.headers["location"]
    assert client.get(f"/bookings/{booking_id}", headers=USER).json()["payment_status"] == "pending"
    assert client.get("/slots/S101").json()["state"] == "held"


def test_abandoned_checkout_redirects_to_the_failure_page(client: TestClient, facility) -> None:
    booking_id = client.post("/bookings", json=_booking_payload(), headers=USER).json()["booking_id"]

    r = client.get("/bookings/payment-failed", params={"booking_id": booking_id}, follow_redirects=False)

    assert r.status_code == 302
    assert r.headers["location"].startswith(settings.failure_redirect_url)
    assert client.get("/slots/S101").json()["state"] == "free"


def test_booking_errors(client: TestClient, facility, gateway) -> None:
    assert client.post("/bookings", json=_booking_payload(vehicle_number="?"), headers=USER).status_code == 400
    assert client.post("/bookings", json=_booking_payload(slot_id="NOPE"), headers=USER).status_code == 404
    assert client.post("/bookings", json=_booking_payload(user_id="user-b"), headers=USER).status_code == 403

    gateway.fail_checkout = True
    assert client.post("/bookings", json=_booking_payload(), headers=USER).status_code == 502

    gateway.fail_checkout = False
    client.post("/slots/S102/hold", json={"hold_minutes": 15}, headers=OTHER)
    assert client.post("/bookings", json=_booking_payload(slot_id="S102"), headers=USER).status_code == 409


def test_webhook_rejects_only_bad_signatures(client: TestClient, facility, gateway) -> None:
    r = client.post("/bookings/webhook", content=b"{}", headers={"stripe-signature": "forged"})
    assert r.status_code == 400

    gateway.next_event = GatewayEvent(
        event_id="evt_1",
        kind=GatewayEventKind.PAYMENT_SUCCEEDED,
        booking_id="does-not-exist",
        session_id="cs_404",
    )
    r = client.post("/bookings/webhook", content=b"{}", headers={"stripe-signature": "good-signature"})
    assert r.status_code == 200
    assert r.json() == {"received": True}


def test_offline_booking_cancel_fine_and_delete(client: TestClient, facility) -> None:
    payload = _booking_payload(start_time=T0.isoformat(), end_time=(T0 + timedelta(hours=1)).isoformat(),
                               user_id="user-a")
    assert client.post("/bookings/offline", json=payload, headers=USER).status_code == 403

    r = client.post("/bookings/offline", json=payload, headers=ADMIN)
    assert r.status_code == 200
    booking_id = r.json()["booking_id"]
    assert r.json()["qr_payload"].startswith(f"booking:{booking_id}:")

    assert client.patch(f"/bookings/{booking_id}/fine", json={"fine_amount": 50}, headers=USER).status_code == 403
    assert client.patch(f"/bookings/{booking_id}/fine", json={"fine_amount": -1}, headers=ADMIN).status_code == 422
    r = client.patch(f"/bookings/{booking_id}/fine", json={"fine_amount": 50}, headers=ADMIN)
    assert r.json()["fine_amount"] == 50

    facility_bookings = client.get("/facilities/F1/bookings", headers=ADMIN)
    assert [b["booking_id"] for b in facility_bookings.json()] == [booking_id]
    assert client.get("/facilities/F1/bookings", headers=USER).status_code == 403

    assert client.post(f"/bookings/{booking_id}/cancel", headers=OTHER).status_code == 403
    assert client.post(f"/bookings/{booking_id}/cancel", headers=USER).json()["payment_status"] == "cancelled"
    assert client.post(f"/bookings/{booking_id}/cancel", headers=USER).status_code == 409

    r = client.delete(f"/bookings/{booking_id}", headers=USER)
    assert r.status_code == 200
    assert r.json() == {"ok": True, "slot_freed": False}
    assert client.delete(f"/bookings/{booking_id}", headers=USER).status_code == 404


def test_layout_and_slot_admin_routes(client: TestClient, facility) -> None:
    layout = {"slots": [{"slot_number": "1"}, {"slot_number": "2", "admin_only": True}]}
    assert client.put("/facilities/F2/slots", json=layout, headers=USER).status_code == 403

    r = client.put("/facilities/F2/slots", json=layout, headers=ADMIN)
    assert r.status_code == 200
    assert [s["slot_number"] for s in client.get("/facilities/F2/slots").json()] == ["1", "2"]

    client.post("/slots/S101/hold", json={"hold_minutes": 15}, headers=USER)
    assert client.put("/facilities/F1/slots", json=layout, headers=ADMIN).status_code == 409
    assert client.delete("/slots/S101", headers=ADMIN).status_code == 409
    assert client.delete("/slots/S102", headers=ADMIN).status_code == 200
    assert client.get("/slots/S102").status_code == 404


def test_sweep_route_reports_what_it_reclaimed(client: TestClient, facility, clock) -> None:
    client.post("/slots/S102/hold", json={"hold_minutes": 1}, headers=USER)
    clock.advance(minutes=2)

    r = client.post("/maintenance/sweep")

    assert r.status_code == 200
    assert r.json()["released"] == ["S102"]


@pytest.mark.parametrize(
    "error, status",
    [
        (ValidationError("bad"), 400),
        (BookingNotFound("gone"), 404),
        (OwnershipMismatch("not yours"), 403),
        (AlreadyTerminalOrElapsed("done"), 409),
        (GatewayError("down"), 502),
    ],
)
def test_engine_errors_map_to_http_statuses(client: TestClient, monkeypatch, error, status) -> None:
    def _fake_get_slot_service(engine, slot_id):
        raise error

    monkeypatch.setattr(routers, "get_slot_service", _fake_get_slot_service)

    r = client.get("/slots/S101")
    assert r.status_code == status
    assert r.json()["detail"] == str(error)


def test_change_messages_are_rendered_as_sse_events() -> None:
    message = ChangeMessage(SLOTS_CHANGED, "F1", (Slot(slot_id="S1", facility_id="F1", slot_number="1"),))

    event = routers._to_sse(message)

    assert event["event"] == "slotsChanged"
    data = json.loads(event["data"])
    assert data["facilityId"] == "F1"
    assert data["slots"][0]["slot_id"] == "S1"
    assert data["slots"][0]["state"] == "free"


def test_booking_changes_are_rendered_under_their_own_key() -> None:
    booking = Booking(
        booking_id="b-1",
        slot_id="S1",
        facility_id="F1",
        start_time=T0,
        end_time=T0 + timedelta(minutes=30),
        duration_minutes=30,
        vehicle_number="BA 1 PA 2345",
        vehicle_type="car",
        channel=BookingChannel.ONLINE,
        user_id="user-a",
    )

    event = routers._to_sse(ChangeMessage(BOOKINGS_CHANGED, "F1", (booking,)))

    assert event["event"] == "bookingsChanged"
    data = json.loads(event["data"])
    assert data["facilityId"] == "F1"
    assert data["bookings"][0]["booking_id"] == "b-1"
    assert "slots" not in data
