from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from slotkeeper.core.entities.actor import Actor
from slotkeeper.core.entities.slot import Slot, SlotState
from slotkeeper.core.errors import ConflictError, ForbiddenError, NotLocked, SlotNotFound, SlotUnavailable
from slotkeeper.core.repositories.slot_repository import SlotRepository
from slotkeeper.infrastructure.models.models import BookingModel, SlotModel

_FREE_VALUES: dict[str, Any] = {
    "state": SlotState.FREE,
    "locked_by": None,
    "locked_at": None,
    "lock_expires_at": None,
    "active_booking_id": None,
}


class SlotRepositoryImpl(SlotRepository):
    """
    SQLAlchemy implementation for Slot persistence.

    Transitions are `UPDATE ... WHERE <expected state>` statements and succeed only
    when exactly one row matched; reads before a write are used to pick the error,
    never to decide whether to write.
    """

    def __init__(self, db: Session) -> None:
        self._db = db

    def get(self, slot_id: str) -> Slot | None:
        row = self._db.get(SlotModel, slot_id, populate_existing=True)
        if row is None:
            return None
        return self._to_entity(row)

    def list_for_facility(self, facility_id: str) -> list[Slot]:
        rows = self._db.scalars(
            select(SlotModel)
            .where(SlotModel.facility_id == facility_id)
            .order_by(SlotModel.slot_number)
            .execution_options(populate_existing=True)
        )
        return [self._to_entity(row) for row in rows]

    def add_many(self, slots: list[Slot]) -> None:
        for slot in slots:
            self._db.add(
                SlotModel(
                    slot_id=slot.slot_id,
                    facility_id=slot.facility_id,
                    slot_number=slot.slot_number,
                    state=SlotState.FREE,
                    admin_only=slot.admin_only,
                    x=slot.x,
                    y=slot.y,
                )
            )
        try:
            self._db.flush()
        except IntegrityError as e:
            raise ConflictError("Duplicate slot id or slot number in facility") from e

    def delete_free(self, slot_id: str) -> bool:
        result = self._db.execute(
            delete(SlotModel)
            .where(SlotModel.slot_id == slot_id, SlotModel.state == SlotState.FREE)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def clear_facility(self, facility_id: str) -> int:
        result = self._db.execute(
            delete(SlotModel)
            .where(SlotModel.facility_id == facility_id, SlotModel.state == SlotState.FREE)
            .execution_options(synchronize_session=False)
        )
        busy = self._db.scalar(
            select(func.count()).select_from(SlotModel).where(SlotModel.facility_id == facility_id)
        )
        if busy:
            raise ConflictError(f"Facility {facility_id!r} has {busy} held or occupied slot(s)")
        return result.rowcount

    def try_hold(self, slot_id: str, actor: Actor, *, locked_at: datetime, expires_at: datetime) -> Slot:
        current = self.get(slot_id)
        if current is None:
            raise SlotNotFound(f"Slot not found: {slot_id!r}")
        if current.admin_only and not actor.privileged:
            raise ForbiddenError("This slot is reserved for admins only")

        # A hold that already expired and carries no checkout can be taken over.
        holdable = or_(
            SlotModel.state == SlotState.FREE,
            and_(
                SlotModel.state == SlotState.HELD,
                SlotModel.lock_expires_at < locked_at,
                SlotModel.active_booking_id.is_(None),
            ),
        )
        criteria = [holdable]
        if not actor.privileged:
            criteria.append(SlotModel.admin_only.is_(False))

        if not self._transition(
            slot_id,
            *criteria,
            state=SlotState.HELD,
            locked_by=actor.actor_id,
            locked_at=locked_at,
            lock_expires_at=expires_at,
        ):
            raise SlotUnavailable(f"Slot {current.slot_number!r} is not available")
        return self.get(slot_id)

    def attach(self, slot_id: str, actor_id: str, booking_id: str) -> Slot:
        if not self._transition(
            slot_id,
            SlotModel.state == SlotState.HELD,
            SlotModel.locked_by == actor_id,
            SlotModel.active_booking_id.is_(None),
            active_booking_id=booking_id,
        ):
            raise SlotUnavailable("Slot is not held by you or is already checking out")
        return self.get(slot_id)

    def detach(self, slot_id: str, booking_id: str) -> bool:
        return self._transition(
            slot_id,
            SlotModel.state == SlotState.HELD,
            SlotModel.active_booking_id == booking_id,
            active_booking_id=None,
        )

    def release(self, slot_id: str, actor: Actor) -> Slot:
        criteria = [SlotModel.state == SlotState.HELD]
        if not actor.privileged:
            criteria.append(SlotModel.locked_by == actor.actor_id)
        if self._transition(slot_id, *criteria, **_FREE_VALUES):
            return self.get(slot_id)

        current = self.get(slot_id)
        if current is None:
            raise SlotNotFound(f"Slot not found: {slot_id!r}")
        if current.state is not SlotState.HELD:
            raise NotLocked("Slot is not locked")
        raise ForbiddenError("Not authorized to unlock this slot")

    def occupy(self, slot_id: str, booking_id: str) -> Slot:
        if not self._transition(
            slot_id,
            SlotModel.state == SlotState.HELD,
            SlotModel.active_booking_id == booking_id,
            state=SlotState.OCCUPIED,
            locked_by=None,
            locked_at=None,
            lock_expires_at=None,
        ):
            raise SlotUnavailable(f"Slot {slot_id!r} is no longer held for booking {booking_id!r}")
        return self.get(slot_id)

    def free(self, slot_id: str, *, only_for_booking: str | None = None) -> Slot | None:
        criteria = [SlotModel.state != SlotState.FREE]
        if only_for_booking is not None:
            criteria.append(SlotModel.active_booking_id == only_for_booking)
        if self._transition(slot_id, *criteria, **_FREE_VALUES):
            return self.get(slot_id)
        if only_for_booking is None and self.get(slot_id) is None:
            raise SlotNotFound(f"Slot not found: {slot_id!r}")
        return None

    def expired_holds(self, now: datetime) -> list[Slot]:
        rows = self._db.scalars(
            select(SlotModel)
            .where(SlotModel.state == SlotState.HELD, SlotModel.lock_expires_at <= now)
            .execution_options(populate_existing=True)
        )
        return [self._to_entity(row) for row in rows]

    def release_if_expired(self, slot_id: str, now: datetime) -> Slot | None:
        if self._transition(
            slot_id,
            SlotModel.state == SlotState.HELD,
            SlotModel.lock_expires_at <= now,
            **_FREE_VALUES,
        ):
            return self.get(slot_id)
        return None

    def elapsed_occupancies(self, now: datetime) -> list[Slot]:
        rows = self._db.scalars(
            select(SlotModel)
            .join(BookingModel, BookingModel.booking_id == SlotModel.active_booking_id)
            .where(SlotModel.state == SlotState.OCCUPIED, BookingModel.end_time <= now)
            .execution_options(populate_existing=True)
        )
        return [self._to_entity(row) for row in rows]

    # -----------------------------
    # Internal helpers
    # -----------------------------
    def _transition(self, slot_id: str, *criteria, **values) -> bool:
        result = self._db.execute(
            update(SlotModel)
            .where(SlotModel.slot_id == slot_id, *criteria)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @staticmethod
    def _to_entity(row: SlotModel) -> Slot:
        return Slot(
            slot_id=row.slot_id,
            facility_id=row.facility_id,
            slot_number=row.slot_number,
            state=SlotState(row.state),
            admin_only=row.admin_only,
            locked_by=row.locked_by,
            locked_at=row.locked_at,
            lock_expires_at=row.lock_expires_at,
            active_booking_id=row.active_booking_id,
            x=row.x,
            y=row.y,
        )
