"""Single-value slots over a Store."""

from __future__ import annotations

from typing import Any, Generic, TypeVar

from ..interfaces.store import KVStore
from .errors import NotFoundError

T = TypeVar("T")


class Item(Generic[T]):
    """A named slot holding at most one value.

    Reads always return owned values; with a borrowing codec the view is
    copied out and released before returning.

    Args:
        store: Store (or any KVStore) the slot lives in
        key: Logical key of the slot
    """

    def __init__(self, store: KVStore, key: Any):
        self.store = store
        self.key = key

    def save(self, value: T) -> None:
        self.store.put(self.key, value)

    def may_load(self) -> T | None:
        """Return the stored value, or None if the slot is empty."""
        with self.store.read(self.key) as value:
            if value is None or not self.store.borrows:
                return value
            return value.to_owned()

    def load(self) -> T:
        """Return the stored value.

        Raises:
            NotFoundError: If the slot is empty
        """
        value = self.may_load()
        if value is None:
            raise NotFoundError(f"No value stored under {self.key!r}")
        return value

    def is_empty(self) -> bool:
        return not self.store.contains(self.key)

    def clear(self) -> None:
        self.store.delete(self.key)

    def __repr__(self) -> str:
        return f"Item({self.key!r})"
