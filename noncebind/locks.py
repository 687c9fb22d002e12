"""
In-process keyed mutual exclusion.

Serializes management operations on the same organization id (and, in
a separate namespace, the same external reference) within one process.
Cross-process races are caught by the identity store's conditional writes.
"""

import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List


class KeyedLock:
    """
    A reentrant lock per key.

    Entries are reference counted and dropped once no thread holds or
    waits on them, so the table does not grow with the number of keys
    ever seen.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.RLock] = {}
        self._refs: Dict[str, int] = {}

    def _acquire_entry(self, key: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
                self._refs[key] = 0
            self._refs[key] += 1
            return lock

    def _release_entry(self, key: str) -> None:
        with self._guard:
            self._refs[key] -= 1
            if self._refs[key] == 0:
                del self._refs[key]
                del self._locks[key]

    @contextmanager
    def hold(self, key: str, blocking: bool = True) -> Iterator[bool]:
        """
        Hold the lock for key. With blocking=False the context yields
        False instead of waiting when another thread holds it.
        """
        lock = self._acquire_entry(key)
        acquired = lock.acquire(blocking=blocking)
        try:
            yield acquired
        finally:
            if acquired:
                lock.release()
            self._release_entry(key)

    def active_keys(self) -> List[str]:
        with self._guard:
            return list(self._locks)


class LockRegistry:
    """Separate keyed locks for organization ids and external references."""

    def __init__(self):
        self.orgs = KeyedLock()
        self.external_refs = KeyedLock()
