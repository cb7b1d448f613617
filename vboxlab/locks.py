"""Per-key mutual exclusion."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator


class KeyedLock:
    """Hands out one lock per key so unrelated keys never block each other.

    A key's lock only lives while some thread holds or waits for it.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        # key -> (lock, number of holders and waiters)
        self._locks: dict[str, tuple[threading.Lock, int]] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    def _acquire_ref(self, key: str) -> threading.Lock:
        with self._guard:
            lock, refs = self._locks.get(key, (None, 0))
            if lock is None:
                lock = threading.Lock()
            self._locks[key] = (lock, refs + 1)
            return lock

    def _release_ref(self, key: str) -> None:
        with self._guard:
            lock, refs = self._locks[key]
            if refs <= 1:
                del self._locks[key]
            else:
                self._locks[key] = (lock, refs - 1)

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        lock = self._acquire_ref(key)
        try:
            with lock:
                yield
        finally:
            self._release_ref(key)
