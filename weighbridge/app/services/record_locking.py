"""
Record locking service.

Serializes mutations per record (one allocation, one stockpile) so that
concurrent gate and weighbridge events for the same truck cannot race,
while operations on different records proceed in parallel.
"""

import threading
from contextlib import contextmanager
from typing import Dict, Hashable, Iterator


class RecordLockRegistry:
    """
    Lazily created re-entrant lock per record key.

    Locks are never discarded: records are retained for audit, so the number
    of keys is bounded by the number of records the engine has seen.
    """

    def __init__(self, name: str = "record"):
        self.name = name
        self._locks: Dict[Hashable, threading.RLock] = {}
        self._guard = threading.Lock()

    def lock_for(self, key: Hashable) -> threading.RLock:
        """
        Get (or create) the lock for a record.

        Args:
            key: Record identifier

        Returns:
            The record's lock
        """
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        """Hold the record's lock for the duration of the block."""
        lock = self.lock_for(key)
        with lock:
            yield
