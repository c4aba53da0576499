"""kv_storage core package."""

from .slots import Item
from .store import Store, open_store

__all__ = ["Store", "open_store", "Item"]
