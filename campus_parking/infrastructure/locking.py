# File: campus_parking/infrastructure/locking.py
"""
Per-slot and per-user mutual exclusion

Claims and releases on the same slot are serialised in-process by one lock
per slot; booking creation also holds one lock per user so the active-booking
limit is checked and written atomically. Locks are always taken user first,
then slot.

Acquisition is bounded: a caller that cannot get the lock within the timeout
gets StorageUnavailable instead of waiting forever. A lock lives in the
registry only while somebody holds or waits for it. Cross-process races on a
slot are caught by the slot's version token in the repositories.
"""

from contextlib import contextmanager
from typing import Dict, Iterator, Optional, Tuple
import logging
import threading

from ..application.errors import StorageUnavailable

LockKey = Tuple[str, str]


class _LockEntry:
    __slots__ = ("lock", "holders")

    def __init__(self):
        self.lock = threading.Lock()
        self.holders = 0


class SlotLockManager:
    """Hands out one lock per slot ID and one per user ID"""

    def __init__(self, timeout_seconds: float = 5.0):
        self.timeout_seconds = timeout_seconds
        self._entries: Dict[LockKey, _LockEntry] = {}
        self._registry_lock = threading.Lock()
        self._logger = logging.getLogger(self.__class__.__name__)

    def _checkout(self, key: LockKey) -> _LockEntry:
        with self._registry_lock:
            entry = self._entries.get(key)
            if entry is None:
                entry = _LockEntry()
                self._entries[key] = entry
            entry.holders += 1
            return entry

    def _checkin(self, key: LockKey, entry: _LockEntry) -> None:
        with self._registry_lock:
            entry.holders -= 1
            if entry.holders == 0:
                del self._entries[key]

    @contextmanager
    def _hold(self, key: LockKey, timeout: Optional[float]) -> Iterator[None]:
        kind, name = key
        wait = self.timeout_seconds if timeout is None else timeout
        entry = self._checkout(key)
        try:
            if not entry.lock.acquire(timeout=wait):
                self._logger.warning(f"Timed out after {wait}s waiting for {kind} {name}")
                raise StorageUnavailable(f"{kind.capitalize()} {name} is busy, try again")
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            self._checkin(key, entry)

    def hold(self, slot_id: str, timeout: Optional[float] = None):
        """Hold the slot's lock for the duration of the block"""
        return self._hold(("slot", slot_id), timeout)

    def hold_user(self, user_id: str, timeout: Optional[float] = None):
        """Hold the user's lock; take it before any slot lock"""
        return self._hold(("user", user_id), timeout)

    @property
    def tracked(self) -> int:
        """Number of locks currently held or waited on"""
        with self._registry_lock:
            return len(self._entries)
