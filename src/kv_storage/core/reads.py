"""Read policies: how a Store turns value bytes into a read result.

The policy is chosen once, when a Store is constructed, from the codec's
`borrows` flag.
"""

from __future__ import annotations

from typing import Any

from ..interfaces.codec import Codec
from .borrow import Borrowed, BorrowTracker
from .types import Buffer, Key


class OwnedReads:
    """Read results are independent values; nothing to release."""

    def __init__(self, codec: Codec):
        self._codec = codec

    def wrap(self, key: Key, buf: Buffer) -> Any:
        return self._codec.decode_value(buf)

    def item(self, result: Any) -> Any:
        return result

    def release(self, result: Any) -> None:
        pass


class BorrowedReads:
    """Read results are views guarded by a lease on their key."""

    def __init__(self, codec: Codec, tracker: BorrowTracker):
        self._codec = codec
        self._tracker = tracker

    def wrap(self, key: Key, buf: Buffer) -> Borrowed:
        view = self._codec.decode_value(buf)
        return Borrowed(view, self._tracker.acquire(key))

    def item(self, result: Borrowed) -> Any:
        return result.value

    def release(self, result: Borrowed) -> None:
        result.release()


def read_policy(codec: Codec, tracker: BorrowTracker) -> OwnedReads | BorrowedReads:
    if codec.borrows:
        return BorrowedReads(codec, tracker)
    return OwnedReads(codec)
