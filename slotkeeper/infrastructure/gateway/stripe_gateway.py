from __future__ import annotations

import logging
from typing import Any

import stripe

from slotkeeper.core.entities.booking import Booking
from slotkeeper.core.entities.slot import Slot
from slotkeeper.core.errors import GatewayError, SignatureInvalid
from slotkeeper.core.use_cases.ports import CheckoutSession, GatewayEvent, GatewayEventKind, PaymentOutcome

logger = logging.getLogger(__name__)

_SUCCEEDED = {"checkout.session.completed", "checkout.session.async_payment_succeeded"}
_FAILED = {"checkout.session.expired", "checkout.session.async_payment_failed"}


class StripeGateway:
    """
    Stripe Checkout adapter.

    Amounts are whole currency units on our side and minor units on Stripe's.
    The booking id travels in the session metadata so webhooks can be routed
    back without a lookup table.
    """

    def __init__(
            self,
            *,
            secret_key: str | None,
            webhook_secret: str | None,
            currency: str,
            public_base_url: str,
    ) -> None:
        self._secret_key = secret_key
        self._webhook_secret = webhook_secret
        self._currency = currency
        self._base_url = public_base_url.rstrip("/")

    def create_checkout(self, *, booking: Booking, slot: Slot, amount: int) -> CheckoutSession:
        metadata = {"booking_id": booking.booking_id, "slot_id": slot.slot_id}
        try:
            session = stripe.checkout.Session.create(
                api_key=self._require_key(),
                mode="payment",
                line_items=[
                    {
                        "price_data": {
                            "currency": self._currency,
                            "product_data": {
                                "name": f"Parking slot {slot.slot_number}",
                                "description": f"{booking.duration_minutes} minutes for {booking.vehicle_number}",
                            },
                            "unit_amount": amount * 100,
                        },
                        "quantity": 1,
                    }
                ],
                metadata=metadata,
                payment_intent_data={"metadata": metadata},
                success_url=(
                    f"{self._base_url}/bookings/verify-payment"
                    f"?booking_id={booking.booking_id}&session_id={{CHECKOUT_SESSION_ID}}"
                ),
                cancel_url=f"{self._base_url}/bookings/payment-failed?booking_id={booking.booking_id}",
            )
        except stripe.StripeError as e:
            logger.error("Stripe error creating checkout for booking %s: %s", booking.booking_id, e)
            raise GatewayError(f"Failed to create checkout session: {e}") from e

        url = getattr(session, "url", None)
        if not url:
            raise GatewayError("Checkout session has no redirect url")
        return CheckoutSession(session_id=session.id, redirect_url=url)

    def fetch_outcome(self, session_id: str) -> PaymentOutcome:
        try:
            session = stripe.checkout.Session.retrieve(session_id, api_key=self._require_key())
        except stripe.StripeError as e:
            logger.error("Stripe error retrieving session %s: %s", session_id, e)
            raise GatewayError(f"Failed to retrieve checkout session: {e}") from e

        status = getattr(session, "status", None)
        payment_status = getattr(session, "payment_status", None)
        metadata = getattr(session, "metadata", None) or {}

        paid = payment_status == "paid"
        # An open checkout, or a completed one whose async payment is still in flight.
        pending = not paid and (status == "open" or (status == "complete" and payment_status == "unpaid"))
        payment_ref = getattr(session, "payment_intent", None) if paid else None
        if payment_ref is not None and not isinstance(payment_ref, str):
            payment_ref = getattr(payment_ref, "id", None)
        return PaymentOutcome(
            paid=paid,
            payment_ref=payment_ref,
            pending=pending,
            booking_id=metadata.get("booking_id"),
        )

    def parse_webhook(self, payload: bytes, signature: str | None) -> GatewayEvent:
        if not self._webhook_secret:
            logger.error("Webhook received but no webhook secret is configured")
            raise SignatureInvalid("Webhook secret not configured")
        if not signature:
            raise SignatureInvalid("Missing stripe-signature header")
        try:
            event = stripe.Webhook.construct_event(payload, signature, self._webhook_secret)
        except stripe.SignatureVerificationError as e:
            logger.warning("Invalid webhook signature: %s", e)
            raise SignatureInvalid("Invalid webhook signature") from e
        except ValueError as e:
            logger.warning("Malformed webhook payload: %s", e)
            raise SignatureInvalid("Invalid webhook payload") from e

        return self._to_event(event)

    # -----------------------------
    # Internal helpers
    # -----------------------------
    def _require_key(self) -> str:
        if not self._secret_key:
            raise GatewayError("Stripe secret key not configured")
        return self._secret_key

    @staticmethod
    def _to_event(event: Any) -> GatewayEvent:
        try:
            event_id = event["id"]
            event_type = event["type"]
            obj = event["data"]["object"]
            metadata = obj.get("metadata") or {}
            session_id = obj.get("id")
        except (KeyError, TypeError, AttributeError):
            logger.warning("Signed webhook event has an unexpected shape; ignoring it")
            return GatewayEvent(event_id="unknown", kind=GatewayEventKind.IGNORED)

        if event_type in _SUCCEEDED:
            kind = GatewayEventKind.PAYMENT_SUCCEEDED
        elif event_type in _FAILED:
            kind = GatewayEventKind.PAYMENT_FAILED
        else:
            kind = GatewayEventKind.IGNORED

        return GatewayEvent(
            event_id=event_id,
            kind=kind,
            booking_id=metadata.get("booking_id"),
            session_id=session_id,
        )
