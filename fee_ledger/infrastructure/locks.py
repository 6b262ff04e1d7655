"""In-process named locks"""

import threading
from contextlib import contextmanager
from typing import Dict, Iterator


class KeyedLock:
    """One re-entrant lock per key, created on first use"""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.RLock] = {}

    def _lock_for(self, key: str) -> threading.RLock:
        with self._guard:
            if key not in self._locks:
                self._locks[key] = threading.RLock()
            return self._locks[key]

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        lock = self._lock_for(key)
        with lock:
            yield


# Defaulter reconciliation runs are serialized per school
school_sync_locks = KeyedLock()
