from __future__ import annotations

from typing import Callable

from slotkeeper.core.entities.actor import Actor
from slotkeeper.core.entities.booking import Booking, BookingDraft
from slotkeeper.core.entities.slot import Slot
from slotkeeper.core.expiry import Clock, SystemClock
from slotkeeper.core.repositories.unit_of_work import UnitOfWork
from slotkeeper.core.use_cases.base import EnginePolicy
from slotkeeper.core.use_cases.cancel_booking import CancelBookingUseCase, DeleteBookingResult, DeleteBookingUseCase
from slotkeeper.core.use_cases.confirm_payment import AbandonPaymentUseCase, ConfirmPaymentUseCase
from slotkeeper.core.use_cases.create_booking import (
    CheckoutStartedDTO,
    CreateOfflineBookingUseCase,
    CreateOnlineBookingUseCase,
    OfflineBookingDTO,
)
from slotkeeper.core.use_cases.handle_payment_webhook import HandlePaymentWebhookUseCase, WebhookResult
from slotkeeper.core.use_cases.hold_slot import HoldSlotUseCase, ReleaseSlotUseCase
from slotkeeper.core.use_cases.manage_slots import DeleteSlotUseCase, RegisterSlotLayoutUseCase, SlotSpec
from slotkeeper.core.use_cases.ports import ChangeNotifier, PaymentGateway, SlotLocks
from slotkeeper.core.use_cases.queries import (
    GetBookingUseCase,
    GetSlotUseCase,
    ListFacilityBookingsUseCase,
    ListFacilitySlotsUseCase,
    ListUserBookingsUseCase,
    ScanTicketUseCase,
    SetBookingFineUseCase,
)
from slotkeeper.core.use_cases.sweep_expired import SweepExpiredUseCase, SweepResult


class ReservationEngine:
    """
    The sole writer of slot reservation fields and booking payment fields.

    Each method is one use case; see the use case classes for the transition rules.
    """

    def __init__(
            self,
            *,
            uow_factory: Callable[[], UnitOfWork],
            locks: SlotLocks,
            gateway: PaymentGateway,
            notifier: ChangeNotifier,
            policy: EnginePolicy | None = None,
            clock: Clock | None = None,
    ) -> None:
        self.policy = policy or EnginePolicy()
        self.clock = clock or SystemClock()
        deps = dict(uow_factory=uow_factory, locks=locks, clock=self.clock, notifier=notifier, policy=self.policy)

        self._hold = HoldSlotUseCase(**deps)
        self._release = ReleaseSlotUseCase(**deps)
        self._create_online = CreateOnlineBookingUseCase(gateway=gateway, **deps)
        self._create_offline = CreateOfflineBookingUseCase(**deps)
        self._confirm = ConfirmPaymentUseCase(gateway=gateway, **deps)
        self._abandon = AbandonPaymentUseCase(**deps)
        self._webhook = HandlePaymentWebhookUseCase(gateway=gateway, confirm=self._confirm, abandon=self._abandon)
        self._cancel = CancelBookingUseCase(**deps)
        self._delete = DeleteBookingUseCase(**deps)
        self._sweep = SweepExpiredUseCase(gateway=gateway, **deps)

        self._register_layout = RegisterSlotLayoutUseCase(**deps)
        self._delete_slot = DeleteSlotUseCase(**deps)
        self._set_fine = SetBookingFineUseCase(**deps)

        self._get_slot = GetSlotUseCase(**deps)
        self._list_slots = ListFacilitySlotsUseCase(sweeper=self._sweep, **deps)
        self._get_booking = GetBookingUseCase(**deps)
        self._list_facility_bookings = ListFacilityBookingsUseCase(**deps)
        self._list_user_bookings = ListUserBookingsUseCase(**deps)
        self._scan_ticket = ScanTicketUseCase(**deps)

    # -----------------------------
    # Slot holds
    # -----------------------------
    def hold(self, slot_id: str, actor: Actor, hold_minutes: int) -> Slot:
        return self._hold.execute(slot_id=slot_id, actor=actor, hold_minutes=hold_minutes)

    def release(self, slot_id: str, actor: Actor) -> Slot:
        return self._release.execute(slot_id=slot_id, actor=actor)

    # -----------------------------
    # Booking lifecycle
    # -----------------------------
    def create_online_booking(self, draft: BookingDraft, actor: Actor) -> CheckoutStartedDTO:
        return self._create_online.execute(draft=draft, actor=actor)

    def create_offline_booking(self, draft: BookingDraft, actor: Actor) -> OfflineBookingDTO:
        return self._create_offline.execute(draft=draft, actor=actor)

    def confirm_payment(self, booking_id: str, session_id: str | None = None) -> Booking:
        return self._confirm.execute(booking_id=booking_id, session_id=session_id)

    def abandon_payment(self, booking_id: str) -> Booking:
        return self._abandon.execute(booking_id=booking_id)

    def handle_webhook(self, payload: bytes, signature: str | None) -> WebhookResult:
        return self._webhook.execute(payload=payload, signature=signature)

    def cancel_booking(self, booking_id: str, actor: Actor) -> Booking:
        return self._cancel.execute(booking_id=booking_id, actor=actor)

    def delete_booking(self, booking_id: str, actor: Actor) -> DeleteBookingResult:
        return self._delete.execute(booking_id=booking_id, actor=actor)

    def sweep_expired(self) -> SweepResult:
        return self._sweep.execute()

    # -----------------------------
    # Administration
    # -----------------------------
    def register_layout(self, facility_id: str, specs: list[SlotSpec], actor: Actor) -> list[Slot]:
        return self._register_layout.execute(facility_id=facility_id, specs=specs, actor=actor)

    def delete_slot(self, slot_id: str, actor: Actor) -> Slot:
        return self._delete_slot.execute(slot_id=slot_id, actor=actor)

    def set_fine(self, booking_id: str, fine_amount: int, actor: Actor) -> Booking:
        return self._set_fine.execute(booking_id=booking_id, fine_amount=fine_amount, actor=actor)

    # -----------------------------
    # Reads
    # -----------------------------
    def get_slot(self, slot_id: str) -> Slot:
        return self._get_slot.execute(slot_id=slot_id)

    def list_slots(self, facility_id: str) -> list[Slot]:
        return self._list_slots.execute(facility_id=facility_id)

    def get_booking(self, booking_id: str, actor: Actor) -> Booking:
        return self._get_booking.execute(booking_id=booking_id, actor=actor)

    def list_facility_bookings(self, facility_id: str, actor: Actor) -> list[Booking]:
        return self._list_facility_bookings.execute(facility_id=facility_id, actor=actor)

    def list_my_bookings(self, actor: Actor) -> list[Booking]:
        return self._list_user_bookings.execute(actor=actor)

    def scan_ticket(self, payload: str, actor: Actor) -> Booking:
        return self._scan_ticket.execute(payload=payload, actor=actor)
