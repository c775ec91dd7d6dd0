from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Iterator

from slotkeeper.core.errors import SlotUnavailable

logger = logging.getLogger(__name__)


class InProcessSlotLocks:
    """
    One threading.Lock per slot id, created on first use.

    The database conditional updates already reject lost races; this lock only
    keeps two workers in the same process from interleaving the read and write
    halves of one transition.
    """

    def __init__(self, timeout: float = 10.0) -> None:
        self._timeout = timeout
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def _lock_for(self, slot_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(slot_id)
            if lock is None:
                lock = self._locks[slot_id] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, slot_id: str) -> Iterator[None]:
        lock = self._lock_for(slot_id)
        if not lock.acquire(timeout=self._timeout):
            logger.warning("Timed out after %.1fs waiting for slot %s", self._timeout, slot_id)
            raise SlotUnavailable(f"Slot {slot_id!r} is busy, try again")
        try:
            yield
        finally:
            lock.release()
