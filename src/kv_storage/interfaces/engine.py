"""Protocol definition for Storage Engine."""

from __future__ import annotations

from collections.abc import Iterator
from typing import Protocol

from ..core.types import Buffer, Entry, Key


class StorageEngine(Protocol):
    """Byte-oriented persistence backend.

    Engines know nothing about logical types. Buffers returned by `get` and
    `scan` may be borrowed by a zero-copy codec for as long as the caller
    holds them, so an engine must never mutate a buffer it has handed out.

    Invariants:
        - `put` is atomic with respect to a concurrent `get` on the same key
        - `delete` of an absent key succeeds
        - `scan` yields keys in ascending byte order, start inclusive, end exclusive
        - Every operation after `close` raises ClosedError
    """

    concurrent_reads: bool
    """True if `get`/`scan` may be issued from several threads at once."""

    def get(self, key: Key) -> Buffer | None:
        """Return the value bytes for key, or None when absent."""
        ...

    def put(self, key: Key, value: bytes) -> None:
        """Store value under key, replacing any previous entry."""
        ...

    def delete(self, key: Key) -> None:
        """Remove key if present."""
        ...

    def contains(self, key: Key) -> bool:
        """Return True if key is present."""
        ...

    def scan(self, start: Key | None, end: Key | None) -> Iterator[Entry]:
        """Lazily iterate entries in key order between start and end.

        Closing the returned iterator releases any resources it holds.
        """
        ...

    @property
    def closed(self) -> bool:
        """True once the engine has been released."""
        ...

    def close(self) -> None:
        """Flush and release resources. Safe to call more than once."""
        ...
