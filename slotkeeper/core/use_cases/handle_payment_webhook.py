from __future__ import annotations

import logging
from dataclasses import dataclass

from slotkeeper.core.use_cases.confirm_payment import AbandonPaymentUseCase, ConfirmPaymentUseCase
from slotkeeper.core.use_cases.ports import GatewayEventKind, PaymentGateway

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class WebhookResult:
    received: bool
    processed: bool


class HandlePaymentWebhookUseCase:
    """
    Verify a gateway webhook and route it into the same confirm/abandon operations
    the redirect path uses.

    Only a bad signature escapes (SignatureInvalid). Any processing failure after
    verification is logged and acknowledged so the gateway does not retry forever;
    the booking stays pending and the expiry sweep reconciles it with the gateway.
    """

    def __init__(
            self,
            *,
            gateway: PaymentGateway,
            confirm: ConfirmPaymentUseCase,
            abandon: AbandonPaymentUseCase,
    ) -> None:
        self._gateway = gateway
        self._confirm = confirm
        self._abandon = abandon

    def execute(self, *, payload: bytes, signature: str | None) -> WebhookResult:
        event = self._gateway.parse_webhook(payload, signature)

        if event.kind is GatewayEventKind.IGNORED or not event.booking_id:
            logger.debug("Ignoring gateway event %s", event.event_id)
            return WebhookResult(received=True, processed=False)

        try:
            if event.kind is GatewayEventKind.PAYMENT_SUCCEEDED:
                self._confirm.execute(booking_id=event.booking_id, session_id=event.session_id)
            else:
                self._abandon.execute(booking_id=event.booking_id)
        except Exception:
            logger.exception(
                "Webhook %s for booking %s not processed; left for sweep reconciliation",
                event.event_id, event.booking_id,
            )
            return WebhookResult(received=True, processed=False)

        return WebhookResult(received=True, processed=True)
