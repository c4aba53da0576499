"""Store implementation - main public API.

Composes one storage engine with one codec strategy and exposes typed
get/put/delete/scan.
"""

from __future__ import annotations

import logging
import weakref
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from ..components.keys import PrefixedKeys
from ..components.log import LogEngine
from ..components.memory import MemoryEngine
from ..components.owned import OwnedCodec
from ..components.zerocopy import ZeroCopyCodec
from ..interfaces.codec import Codec
from ..interfaces.engine import StorageEngine
from ..interfaces.keys import KeyCodec
from .borrow import BorrowTracker
from .config import StoreConfig
from .errors import ClosedError, tagged
from .reads import read_policy
from .scan import ScanCursor
from .types import Phase

logger = logging.getLogger(__name__)


class Store:
    """Typed key-value store over a byte-oriented engine.

    Args:
        engine: Storage engine the store persists through
        codec: Codec fixing key encoding and the read result shape
        owns_engine: Whether close() also closes the engine

    Public API:
        - get(key): Owned value, Borrowed guard (zero-copy codec) or None
        - read(key): Scoped read, releases any borrow on exit
        - put(key, value): Insert or update
        - delete(key): Remove, idempotent
        - contains(key): Existence check without decoding
        - scan(start, end): Lazy ordered cursor over [start, end)
        - namespace(prefix): Store over the same engine with prefixed keys

    Invariants:
        - The read result shape is fixed at construction
        - A key with a live borrowed view cannot be written or deleted
        - The engine cannot be released while any borrowed view is live
        - Errors keep their type and carry the phase that raised them
    """

    def __init__(
        self,
        engine: StorageEngine,
        codec: Codec,
        *,
        owns_engine: bool = True,
        tracker: BorrowTracker | None = None,
    ):
        self._engine = engine
        self._codec = codec
        self._owns_engine = owns_engine
        self._tracker = tracker if tracker is not None else BorrowTracker()
        self._reads = read_policy(codec, self._tracker)
        self._cursors: weakref.WeakSet[ScanCursor] = weakref.WeakSet()
        self._closed = False
        logger.info(
            f"Initialized Store over {type(engine).__name__} with {type(codec).__name__}"
        )

    @property
    def engine(self) -> StorageEngine:
        return self._engine

    @property
    def codec(self) -> Codec:
        return self._codec

    @property
    def borrows(self) -> bool:
        """True if reads return borrowed views."""
        return self._codec.borrows

    @property
    def concurrent_reads(self) -> bool:
        """True if the engine allows reads from several threads at once."""
        return bool(getattr(self._engine, "concurrent_reads", False))

    @property
    def outstanding_borrows(self) -> int:
        return self._tracker.outstanding

    @property
    def closed(self) -> bool:
        return self._closed

    def _check_open(self) -> None:
        if self._closed:
            raise ClosedError("Store is closed").with_phase(Phase.ENGINE)

    def _encode_key(self, key: Any) -> bytes:
        with tagged(Phase.ENCODE_KEY):
            return self._codec.encode_key(key)

    def get(self, key: Any) -> Any | None:
        """Retrieve the read result for key, or None if absent."""
        self._check_open()
        key_bytes = self._encode_key(key)
        with tagged(Phase.ENGINE):
            buf = self._engine.get(key_bytes)
        if buf is None:
            return None
        with tagged(Phase.DECODE_VALUE):
            return self._reads.wrap(key_bytes, buf)

    @contextmanager
    def read(self, key: Any) -> Iterator[Any | None]:
        """Yield the value (or view) for key, releasing any borrow on exit."""
        result = self.get(key)
        if result is None:
            yield None
            return
        try:
            yield self._reads.item(result)
        finally:
            self._reads.release(result)

    def put(self, key: Any, value: Any) -> None:
        """Insert or update key with value."""
        self._check_open()
        key_bytes = self._encode_key(key)
        with tagged(Phase.ENCODE_VALUE):
            data = self._codec.encode_value(value)
        with tagged(Phase.ENGINE):
            with self._tracker.writing(key_bytes):
                self._engine.put(key_bytes, data)

    def delete(self, key: Any) -> None:
        """Remove key. Deleting an absent key succeeds."""
        self._check_open()
        key_bytes = self._encode_key(key)
        with tagged(Phase.ENGINE):
            with self._tracker.writing(key_bytes):
                self._engine.delete(key_bytes)

    def contains(self, key: Any) -> bool:
        """Return True if key is present."""
        self._check_open()
        key_bytes = self._encode_key(key)
        with tagged(Phase.ENGINE):
            return self._engine.contains(key_bytes)

    def __contains__(self, key: Any) -> bool:
        return self.contains(key)

    def scan(self, start: Any | None = None, end: Any | None = None) -> ScanCursor:
        """Range scan over keys in [start, end); None leaves a side unbounded."""
        self._check_open()
        with tagged(Phase.ENCODE_KEY):
            lo, hi = self._codec.encode_range(start, end)
        if lo is not None and hi is not None and lo >= hi:
            entries = iter(())
        else:
            with tagged(Phase.ENGINE):
                entries = self._engine.scan(lo, hi)
        cursor = ScanCursor(entries, self._codec, self._reads)
        self._cursors.add(cursor)
        return cursor

    def namespace(self, prefix: bytes | str) -> Store:
        """Return a Store over the same engine whose keys live under prefix."""
        self._check_open()
        if isinstance(prefix, str):
            prefix = prefix.encode("utf-8")
        keys: KeyCodec = PrefixedKeys(prefix, self._codec.keys)
        return Store(
            self._engine,
            self._codec.with_keys(keys),
            owns_engine=False,
            tracker=self._tracker,
        )

    def close(self) -> None:
        """Close store and release the engine it owns."""
        if self._closed:
            return
        for cursor in list(self._cursors):
            cursor.close()
        self._tracker.check_released()
        self._closed = True
        if self._owns_engine:
            logger.info("Closing Store")
            with tagged(Phase.ENGINE):
                self._engine.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


def open_store(config: StoreConfig, value_type: type, keys: KeyCodec | None = None) -> Store:
    """Build the engine and codec described by config and bind them in a Store."""
    if config.engine == "log":
        engine: StorageEngine = LogEngine(
            Path(config.data_dir) / config.log_name,
            fsync_every_write=config.fsync_every_write,
            verify_checksums=config.verify_checksums,
        )
        if config.compact_on_open:
            engine.compact()
    else:
        engine = MemoryEngine()

    if config.codec == "zerocopy":
        codec: Codec = ZeroCopyCodec(value_type, keys=keys)
    else:
        codec = OwnedCodec(value_type, keys=keys)

    return Store(engine, codec)
