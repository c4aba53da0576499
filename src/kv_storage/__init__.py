"""kv_storage - typed key-value storage with owned and zero-copy codecs."""

# core must load before components: core.store imports the components.
from .core.borrow import Borrowed
from .core.config import StoreConfig
from .core.errors import (
    KVError,
    EncodeError,
    DecodeError,
    DecodeErrorKind,
    StorageError,
    IOFailure,
    CorruptionError,
    ClosedError,
    BorrowError,
    ConfigError,
    NotFoundError,
)
from .core.scan import ScanCursor
from .core.slots import Item
from .core.store import Store, open_store
from .core.types import Key, Buffer, Entry, Phase, ScanStatus
from .components.keys import BytesKeys, IntKeys, PrefixedKeys, StrKeys, TupleKeys
from .components.log import LogEngine
from .components.memory import MemoryEngine
from .components.owned import OwnedCodec
from .components.zerocopy import RecordView, ZeroCopyCodec

__all__ = [
    "Store",
    "open_store",
    "StoreConfig",
    "Item",
    "ScanCursor",
    "Borrowed",
    "MemoryEngine",
    "LogEngine",
    "OwnedCodec",
    "ZeroCopyCodec",
    "RecordView",
    "BytesKeys",
    "StrKeys",
    "IntKeys",
    "TupleKeys",
    "PrefixedKeys",
    "KVError",
    "EncodeError",
    "DecodeError",
    "DecodeErrorKind",
    "StorageError",
    "IOFailure",
    "CorruptionError",
    "ClosedError",
    "BorrowError",
    "ConfigError",
    "NotFoundError",
    "Key",
    "Buffer",
    "Entry",
    "Phase",
    "ScanStatus",
]
