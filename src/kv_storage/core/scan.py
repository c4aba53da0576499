"""Lazy scan cursor over a Store.

Decodes one entry per step, so memory stays bounded and callers can stop
early. With a borrowing codec each yielded view stays valid until the cursor
advances or closes.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from typing import Any

from ..interfaces.codec import Codec
from .errors import KVError, tagged
from .reads import BorrowedReads, OwnedReads
from .types import Entry, Phase, ScanStatus

logger = logging.getLogger(__name__)


class ScanCursor:
    """Iterator of (key, read result) pairs.

    Args:
        entries: Engine iterator of raw entries
        codec: Codec used to decode keys and values
        reads: Read policy of the owning Store

    Invariants:
        - The engine iterator is closed on exhaustion, failure, close() and `with` exit
        - A failed scan ends with status FAILED and keeps the error in `error`;
          a normally exhausted one ends with EXHAUSTED
        - At most one borrowed view is live per cursor
    """

    def __init__(self, entries: Iterator[Entry], codec: Codec, reads: OwnedReads | BorrowedReads):
        self._entries = entries
        self._codec = codec
        self._reads = reads
        self._current: Any = None
        self.status = ScanStatus.ACTIVE
        self.error: KVError | None = None
        self.yielded = 0

    def __iter__(self) -> ScanCursor:
        return self

    def __next__(self) -> tuple[Any, Any]:
        if self.status is not ScanStatus.ACTIVE:
            raise StopIteration
        self._release_current()

        try:
            with tagged(Phase.ENGINE):
                key_bytes, buf = next(self._entries)
        except StopIteration:
            self._finish(ScanStatus.EXHAUSTED)
            raise
        except KVError as e:
            self._fail(e)
            raise

        try:
            with tagged(Phase.DECODE_KEY):
                key = self._codec.decode_key(key_bytes)
            with tagged(Phase.DECODE_VALUE):
                self._current = self._reads.wrap(key_bytes, buf)
        except KVError as e:
            self._fail(e)
            raise

        self.yielded += 1
        return key, self._reads.item(self._current)

    def _release_current(self) -> None:
        if self._current is not None:
            current, self._current = self._current, None
            self._reads.release(current)

    def _finish(self, status: ScanStatus) -> None:
        self._release_current()
        close = getattr(self._entries, "close", None)
        if close is not None:
            close()
        self.status = status

    def _fail(self, error: KVError) -> None:
        logger.warning(f"Scan failed after {self.yielded} entries: {error}")
        self.error = error
        self._finish(ScanStatus.FAILED)

    def close(self) -> None:
        """Release the current view and the engine iterator. Idempotent."""
        if self.status is ScanStatus.ACTIVE:
            self._finish(ScanStatus.CLOSED)
        else:
            self._release_current()

    @property
    def active(self) -> bool:
        return self.status is ScanStatus.ACTIVE

    def __enter__(self) -> ScanCursor:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def __del__(self):
        if getattr(self, "status", None) is ScanStatus.ACTIVE:
            self.close()
