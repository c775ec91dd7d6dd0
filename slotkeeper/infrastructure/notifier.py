from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from typing import AsyncIterator, Sequence

from slotkeeper.core.entities.booking import Booking
from slotkeeper.core.entities.slot import Slot

logger = logging.getLogger(__name__)

SLOTS_CHANGED = "slotsChanged"
BOOKINGS_CHANGED = "bookingsChanged"


@dataclass(frozen=True, slots=True)
class ChangeMessage:
    kind: str
    facility_id: str
    items: tuple[Slot | Booking, ...]


@dataclass(eq=False)
class _Subscriber:
    loop: asyncio.AbstractEventLoop
    queue: asyncio.Queue
    facility_id: str | None = None
    dropped: int = field(default=0)

    def wants(self, facility_id: str) -> bool:
        return self.facility_id is None or self.facility_id == facility_id


class BroadcastNotifier:
    """
    In-process fan-out of committed snapshots to SSE subscribers.

    Publishers run on worker threads, subscribers on the event loop, so delivery
    goes through loop.call_soon_threadsafe. A subscriber whose queue is full
    misses the message; nothing ever blocks the publisher.
    """

    def __init__(self, queue_size: int = 100) -> None:
        self._queue_size = queue_size
        self._guard = threading.Lock()
        self._subscribers: set[_Subscriber] = set()

    @property
    def subscriber_count(self) -> int:
        with self._guard:
            return len(self._subscribers)

    def slots_changed(self, facility_id: str, slots: Sequence[Slot]) -> None:
        self._broadcast(ChangeMessage(SLOTS_CHANGED, facility_id, tuple(slots)))

    def bookings_changed(self, facility_id: str, bookings: Sequence[Booking]) -> None:
        self._broadcast(ChangeMessage(BOOKINGS_CHANGED, facility_id, tuple(bookings)))

    async def subscribe(self, facility_id: str | None = None) -> AsyncIterator[ChangeMessage]:
        subscriber = _Subscriber(
            loop=asyncio.get_running_loop(),
            queue=asyncio.Queue(maxsize=self._queue_size),
            facility_id=facility_id,
        )
        with self._guard:
            self._subscribers.add(subscriber)
        logger.info("Change stream subscribed (facility=%s)", facility_id or "*")
        try:
            while True:
                yield await subscriber.queue.get()
        finally:
            with self._guard:
                self._subscribers.discard(subscriber)
            logger.info("Change stream closed (facility=%s, dropped=%d)", facility_id or "*", subscriber.dropped)

    def _broadcast(self, message: ChangeMessage) -> None:
        with self._guard:
            targets = [s for s in self._subscribers if s.wants(message.facility_id)]
        for subscriber in targets:
            try:
                subscriber.loop.call_soon_threadsafe(self._offer, subscriber, message)
            except RuntimeError:
                # Loop already closed; the generator's finally never ran.
                with self._guard:
                    self._subscribers.discard(subscriber)

    @staticmethod
    def _offer(subscriber: _Subscriber, message: ChangeMessage) -> None:
        try:
            subscriber.queue.put_nowait(message)
        except asyncio.QueueFull:
            subscriber.dropped += 1
            logger.warning("Subscriber queue full; dropped %s for facility %s", message.kind, message.facility_id)
