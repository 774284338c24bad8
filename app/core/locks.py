"""
Per-product mutation locks.

One ``threading.Lock`` per product id, created on demand and dropped again
once no thread holds or waits for it. Locks for several products are always
taken in sorted order so two batches touching the same products cannot
deadlock. The database row lock (``SELECT ... FOR UPDATE``) covers other
processes; this registry covers threads of this process and backends without
row locks (SQLite).
"""
import threading
import time
from contextlib import contextmanager
from typing import Dict, Hashable, Iterable, Iterator, List, Tuple

from .errors import LockTimeoutError


class _Slot:
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = threading.Lock()
        self.users = 0  # threads holding or waiting for ``lock``


class ProductLockRegistry:
    """Process-wide registry of per-product locks"""

    def __init__(self):
        self._guard = threading.Lock()
        self._slots: Dict[Hashable, _Slot] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._slots)

    def _checkout(self, key: Hashable) -> threading.Lock:
        with self._guard:
            slot = self._slots.get(key)
            if slot is None:
                slot = _Slot()
                self._slots[key] = slot
            slot.users += 1
            return slot.lock

    def _checkin(self, key: Hashable) -> None:
        with self._guard:
            slot = self._slots[key]
            slot.users -= 1
            if slot.users == 0:
                del self._slots[key]

    @contextmanager
    def hold(self, keys: Iterable[Hashable], timeout: float) -> Iterator[None]:
        """
        Acquire the locks for ``keys`` (deduplicated, sorted) within ``timeout``
        seconds overall. Raises LockTimeoutError naming the key that could not
        be acquired; locks already taken are released first.
        """
        ordered = sorted(set(keys), key=str)
        deadline = time.monotonic() + timeout
        checked_out: List[Tuple[Hashable, threading.Lock]] = []
        acquired: List[threading.Lock] = []
        try:
            for key in ordered:
                lock = self._checkout(key)
                checked_out.append((key, lock))
                remaining = max(deadline - time.monotonic(), 0)
                if not lock.acquire(timeout=remaining):
                    raise LockTimeoutError(key, timeout)
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()
            for key, _ in checked_out:
                self._checkin(key)


product_locks = ProductLockRegistry()
