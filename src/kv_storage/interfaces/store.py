"""Protocol definition for the typed Store facade."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import AbstractContextManager
from typing import Any, Protocol


class KVStore(Protocol):
    """Public API of the typed key-value store."""

    concurrent_reads: bool
    borrows: bool

    def get(self, key: Any) -> Any | None:
        """Return the read result for key (owned value or borrowed guard), or None."""
        ...

    def read(self, key: Any) -> AbstractContextManager[Any | None]:
        """Scoped read; any borrow is released when the block exits."""
        ...

    def put(self, key: Any, value: Any) -> None:
        """Encode and store value under key."""
        ...

    def delete(self, key: Any) -> None:
        """Remove key; absent keys are not an error."""
        ...

    def contains(self, key: Any) -> bool:
        """Return True if key is present."""
        ...

    def scan(self, start: Any | None = None, end: Any | None = None) -> Iterator[tuple[Any, Any]]:
        """Ordered, lazily decoded iterator over keys in [start, end)."""
        ...

    def close(self) -> None:
        """Release the store and the engine it owns."""
        ...
