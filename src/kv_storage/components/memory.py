"""In-memory sorted storage engine.

Uses sortedcontainers.SortedDict for efficient sorted operations.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from sortedcontainers import SortedDict

from ..core.errors import ClosedError

if TYPE_CHECKING:
    from collections.abc import Iterator

    from ..core.types import Entry, Key

logger = logging.getLogger(__name__)


class MemoryEngine:
    """Volatile engine holding entries in a sorted map.

    Values are copied into immutable bytes on put and handed out as-is on
    read, so reads never copy and a handed-out buffer can never change.

    Invariants:
        - Keys are always maintained in sorted order
        - Readers see either the old or the new value of a key, never a mix
        - Size tracks key and value bytes of live entries
    """

    concurrent_reads = True

    def __init__(self):
        """Initialize empty engine."""
        self._data: SortedDict = SortedDict()
        self._lock = threading.Lock()
        self._size_bytes: int = 0
        self._closed = False

    def _check_open(self) -> None:
        if self._closed:
            raise ClosedError("MemoryEngine is closed")

    def get(self, key: Key) -> bytes | None:
        """Return the stored value for key, or None."""
        with self._lock:
            self._check_open()
            return self._data.get(key)

    def put(self, key: Key, value: bytes) -> None:
        """Insert or replace key."""
        key = bytes(key)
        value = bytes(value)
        with self._lock:
            self._check_open()
            old = self._data.get(key)
            if old is not None:
                self._size_bytes -= len(key) + len(old)
            self._data[key] = value
            self._size_bytes += len(key) + len(value)

    def delete(self, key: Key) -> None:
        """Remove key if present."""
        with self._lock:
            self._check_open()
            old = self._data.pop(key, None)
            if old is not None:
                self._size_bytes -= len(key) + len(old)

    def contains(self, key: Key) -> bool:
        with self._lock:
            self._check_open()
            return key in self._data

    def scan(self, start: Key | None, end: Key | None) -> Iterator[Entry]:
        """Iterate entries in key order between start (inclusive) and end (exclusive).

        Keys in range are snapshotted when iteration begins; each value is
        fetched when its key is reached, and keys deleted meanwhile are skipped.
        """
        if start is not None and end is not None and start >= end:
            return
        with self._lock:
            self._check_open()
            keys = list(self._data.irange(start, end, inclusive=(True, False)))

        for key in keys:
            with self._lock:
                self._check_open()
                value = self._data.get(key)
            if value is not None:
                yield key, value

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def size_bytes(self) -> int:
        """Return total key and value bytes held."""
        return self._size_bytes

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Drop all entries. Safe to call more than once."""
        with self._lock:
            if self._closed:
                return
            self._data.clear()
            self._size_bytes = 0
            self._closed = True
        logger.info("Closed MemoryEngine")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
