import threading
from contextlib import contextmanager
from typing import Dict, Hashable, List


class KeyedLock:
    """One mutex per key, created on first use and dropped once nobody holds or waits for it.

    Serializes work on the same key (a book id) inside this process while
    letting different keys run in parallel. Cross-process exclusion is the
    database row lock's job."""

    def __init__(self):
        self._lock = threading.Lock()
        # key -> [mutex, number of holders and waiters]
        self._locks: Dict[Hashable, List] = {}

    def _acquire_entry(self, key: Hashable) -> threading.Lock:
        with self._lock:
            entry = self._locks.get(key)
            if entry is None:
                entry = [threading.Lock(), 0]
                self._locks[key] = entry
            entry[1] += 1
            return entry[0]

    def _release_entry(self, key: Hashable):
        with self._lock:
            entry = self._locks[key]
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[key]

    @contextmanager
    def hold(self, key: Hashable):
        lock = self._acquire_entry(key)
        try:
            with lock:
                yield
        finally:
            self._release_entry(key)

    def __len__(self):
        with self._lock:
            return len(self._locks)


book_locks = KeyedLock()
