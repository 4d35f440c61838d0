# backend/training/services/locks.py
import threading
from contextlib import contextmanager
from typing import Dict, Hashable


class KeyedLock:
    """
    One mutex per key, created on demand and dropped once nobody holds or
    waits on it. Used as `series:<id>` and `enrollment:<id>`.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[Hashable, threading.Lock] = {}
        self._waiters: Dict[Hashable, int] = {}

    @contextmanager
    def hold(self, key: Hashable):
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
            self._waiters[key] = self._waiters.get(key, 0) + 1
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                self._waiters[key] -= 1
                if self._waiters[key] == 0:
                    del self._waiters[key]
                    del self._locks[key]

    def active_keys(self):
        with self._guard:
            return set(self._locks)


def series_key(series_id: int) -> str:
    return f"series:{series_id}"


def enrollment_key(enrollment_id: int) -> str:
    return f"enrollment:{enrollment_id}"
