"""In-process per-name locks."""

import threading
from contextlib import contextmanager
from typing import Dict


class NamedLocks:
    """A lazily populated set of locks keyed by name.

    Used to serialize create-if-missing operations on the same bucket or
    table while letting different names proceed concurrently.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def _lock_for(self, name: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(name)
            if lock is None:
                lock = self._locks[name] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, name: str):
        lock = self._lock_for(name)
        with lock:
            yield
