"""Borrow tracking for zero-copy reads.

Every borrowed view is backed by a lease on the encoded key it was read
from. While a lease is live the Store refuses to mutate that key or to
release the engine.
"""

from __future__ import annotations

import threading
import weakref
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, Generic, TypeVar

from .errors import BorrowError
from .types import Key

V = TypeVar("V")


class Lease:
    """A single outstanding borrow of one key."""

    __slots__ = ("_tracker", "key", "_active")

    def __init__(self, tracker: BorrowTracker, key: Key):
        self._tracker = tracker
        self.key = key
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def release(self) -> None:
        if self._active:
            self._active = False
            self._tracker._drop(self.key)


class BorrowTracker:
    """Counts live leases per key.

    Invariants:
        - A key is writable only when it has no live lease
        - The engine may be released only when no lease is live
        - No lease can be taken on a key while it is being written
        - Thread-safe via a reentrant lock, so a guard collected mid-write can
          still return its lease
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._counts: dict[Key, int] = {}

    def acquire(self, key: Key) -> Lease:
        with self._lock:
            self._counts[key] = self._counts.get(key, 0) + 1
        return Lease(self, key)

    def _drop(self, key: Key) -> None:
        with self._lock:
            remaining = self._counts.get(key, 0) - 1
            if remaining > 0:
                self._counts[key] = remaining
            else:
                self._counts.pop(key, None)

    def is_borrowed(self, key: Key) -> bool:
        with self._lock:
            return key in self._counts

    @property
    def outstanding(self) -> int:
        """Total number of live leases."""
        with self._lock:
            return sum(self._counts.values())

    @contextmanager
    def writing(self, key: Key) -> Iterator[None]:
        """Hold off new leases while key is written.

        Raises:
            BorrowError: If key has a live borrowed view
        """
        with self._lock:
            count = self._counts.get(key, 0)
            if count:
                raise BorrowError(f"Key {key!r} has {count} borrowed view(s) still alive")
            yield

    def check_released(self) -> None:
        """Raise BorrowError if any borrowed view is still alive."""
        count = self.outstanding
        if count:
            raise BorrowError(f"{count} borrowed view(s) still alive")


def _release(view: Any, lease: Lease) -> None:
    try:
        view.release()
    finally:
        lease.release()


class Borrowed(Generic[V]):
    """Guard object tying a borrowed view to its lease.

    Use as a context manager, or call `release()` explicitly. A guard that
    is garbage collected without being released releases itself.
    """

    def __init__(self, view: V, lease: Lease):
        self._view = view
        self._lease = lease
        self._finalizer = weakref.finalize(self, _release, view, lease)

    @property
    def alive(self) -> bool:
        return self._finalizer.alive

    @property
    def key(self) -> Key:
        return self._lease.key

    @property
    def value(self) -> V:
        """The borrowed view. Raises BorrowError after release."""
        if not self._finalizer.alive:
            raise BorrowError("Borrowed view used after release")
        return self._view

    def release(self) -> None:
        """Invalidate the view and return the lease. Idempotent."""
        self._finalizer()

    def __enter__(self) -> V:
        return self.value

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
        return False

    def __repr__(self) -> str:
        state = "alive" if self.alive else "released"
        return f"<Borrowed {self._lease.key!r} {state}>"
