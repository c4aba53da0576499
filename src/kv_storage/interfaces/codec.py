"""Protocol definition for Codec."""

from __future__ import annotations

from typing import Any, ClassVar, Protocol

from ..core.types import Bounds, Buffer, Key
from .keys import KeyCodec


class Codec(Protocol):
    """Binds a key codec and a value type to a byte representation.

    The only difference between strategies is the shape of `decode_value`:
    an owned codec returns an independent value, a borrowing codec returns a
    view over the buffer it was given. Failure modes are the same for both.
    """

    borrows: ClassVar[bool]
    """True if decode_value returns a view that references its input buffer."""

    keys: KeyCodec

    def with_keys(self, keys: KeyCodec) -> Codec:
        """Return a codec for the same values under a different key codec."""
        ...

    def encode_key(self, key: Any) -> Key:
        """Encode a logical key to bytes."""
        ...

    def decode_key(self, data: Key) -> Any:
        """Decode key bytes to a logical key."""
        ...

    def encode_range(self, start: Any | None, end: Any | None) -> Bounds:
        """Encode logical scan bounds."""
        ...

    def encode_value(self, value: Any) -> bytes:
        """Encode a value. Raises EncodeError."""
        ...

    def decode_value(self, data: Buffer) -> Any:
        """Decode value bytes. Raises DecodeError."""
        ...
