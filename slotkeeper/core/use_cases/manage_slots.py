from __future__ import annotations

import logging
from dataclasses import dataclass
from uuid import uuid4

from slotkeeper.core.entities.actor import Actor
from slotkeeper.core.entities.slot import Slot, SlotState
from slotkeeper.core.errors import SlotNotFound, SlotUnavailable, ValidationError
from slotkeeper.core.use_cases.base import EngineUseCase

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SlotSpec:
    slot_number: str
    x: float = 0
    y: float = 0
    admin_only: bool = False
    slot_id: str | None = None


class RegisterSlotLayoutUseCase(EngineUseCase):
    """
    Replace a facility's slot layout. Refused with a conflict while any slot of the
    facility is held or occupied, so no live reservation loses its slot.
    """

    def execute(self, *, facility_id: str, specs: list[SlotSpec], actor: Actor) -> list[Slot]:
        self._require_privileged(actor, "change a facility layout")
        slots = self.build_slots(facility_id, specs)

        with self._uow_factory() as uow:
            removed = uow.slots.clear_facility(facility_id)
            uow.slots.add_many(slots)
            uow.commit()

        logger.info("Facility %s layout replaced: %d removed, %d created", facility_id, removed, len(slots))
        self._publish(slots=slots)
        return slots

    @staticmethod
    def build_slots(facility_id: str, specs: list[SlotSpec]) -> list[Slot]:
        if not facility_id:
            raise ValidationError("facility_id must be a non-empty string")
        if not specs:
            raise ValidationError("a layout needs at least one slot")

        numbers = [(spec.slot_number or "").strip() for spec in specs]
        if not all(numbers):
            raise ValidationError("slot_number must be a non-empty string")
        if len(set(numbers)) != len(numbers):
            raise ValidationError("slot numbers must be unique within a facility")

        return [
            Slot(
                slot_id=spec.slot_id or str(uuid4()),
                facility_id=facility_id,
                slot_number=number,
                state=SlotState.FREE,
                admin_only=spec.admin_only,
                x=spec.x,
                y=spec.y,
            )
            for spec, number in zip(specs, numbers)
        ]


class DeleteSlotUseCase(EngineUseCase):
    def execute(self, *, slot_id: str, actor: Actor) -> Slot:
        self._require_privileged(actor, "delete slots")
        with self._atomic(slot_id) as uow:
            slot = uow.slots.get(slot_id)
            if slot is None:
                raise SlotNotFound(f"Slot not found: {slot_id!r}")
            if not uow.slots.delete_free(slot_id):
                raise SlotUnavailable("Cannot delete a held or occupied slot")
            uow.commit()

        logger.info("Slot %s (%s) deleted from facility %s", slot.slot_number, slot_id, slot.facility_id)
        with self._uow_factory() as uow:
            remaining = uow.slots.list_for_facility(slot.facility_id)
        try:
            self._notifier.slots_changed(slot.facility_id, remaining)
        except Exception:
            logger.warning("Dropped slotsChanged for facility %s", slot.facility_id, exc_info=True)
        return slot
