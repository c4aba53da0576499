"""Key codec implementations.

All encodings are deterministic and order-preserving: comparing encoded keys
byte-wise gives the same order as comparing the logical keys.
"""

from __future__ import annotations

from typing import Any

from ..core.errors import DecodeError, DecodeErrorKind, EncodeError
from ..core.types import Bounds, Key
from ..interfaces.keys import KeyCodec

# Composite key framing: 0x00 inside a part is escaped as 0x00 0xFF and each
# part ends with 0x00 0x01, so a shorter part sorts before a longer one.
ESCAPE = b"\x00\xff"
TERMINATOR = b"\x00\x01"


def _encode_bounds(codec: KeyCodec, start: Any | None, end: Any | None) -> Bounds:
    return (
        codec.encode(start) if start is not None else None,
        codec.encode(end) if end is not None else None,
    )


def prefix_successor(prefix: bytes) -> bytes | None:
    """Return the smallest key greater than every key starting with prefix.

    Returns None when no such key exists (empty or all-0xFF prefix).
    """
    stripped = prefix.rstrip(b"\xff")
    if not stripped:
        return None
    return stripped[:-1] + bytes([stripped[-1] + 1])


class BytesKeys:
    """Raw byte keys, stored as given."""

    def encode(self, key: Any) -> Key:
        if not isinstance(key, (bytes, bytearray, memoryview)):
            raise EncodeError(f"Expected a bytes-like key, got {type(key).__name__}")
        return bytes(key)

    def decode(self, data: Key) -> bytes:
        return bytes(data)

    def encode_range(self, start: Any | None, end: Any | None) -> Bounds:
        return _encode_bounds(self, start, end)


class StrKeys:
    """Text keys encoded as UTF-8."""

    def encode(self, key: Any) -> Key:
        if not isinstance(key, str):
            raise EncodeError(f"Expected a str key, got {type(key).__name__}")
        try:
            return key.encode("utf-8")
        except UnicodeEncodeError as e:
            raise EncodeError(f"Key is not encodable as UTF-8: {e}") from e

    def decode(self, data: Key) -> str:
        try:
            return bytes(data).decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecodeError(
                DecodeErrorKind.MALFORMED, "key is not valid UTF-8", offset=e.start
            ) from e

    def encode_range(self, start: Any | None, end: Any | None) -> Bounds:
        return _encode_bounds(self, start, end)


class IntKeys:
    """Fixed-width big-endian integer keys.

    Signed keys have their sign bit flipped so negative numbers sort first.

    Args:
        width: Encoded size in bytes (1, 2, 4, 8 or 16)
        signed: Whether negative keys are allowed
    """

    def __init__(self, width: int = 8, signed: bool = False):
        if width not in (1, 2, 4, 8, 16):
            raise ValueError(f"Unsupported integer key width: {width}")
        self.width = width
        self.signed = signed
        bits = width * 8
        self._bias = 1 << (bits - 1) if signed else 0
        self._min = -self._bias
        self._max = (1 << bits) - 1 - self._bias

    def encode(self, key: Any) -> Key:
        if isinstance(key, bool) or not isinstance(key, int):
            raise EncodeError(f"Expected an int key, got {type(key).__name__}")
        if not self._min <= key <= self._max:
            raise EncodeError(f"Key {key} out of range [{self._min}, {self._max}]")
        return (key + self._bias).to_bytes(self.width, "big")

    def decode(self, data: Key) -> int:
        if len(data) < self.width:
            raise DecodeError(
                DecodeErrorKind.TRUNCATED, "integer key too short",
                offset=len(data), expected=self.width, found=len(data),
            )
        if len(data) > self.width:
            raise DecodeError(
                DecodeErrorKind.MALFORMED, "integer key too long",
                offset=self.width, expected=self.width, found=len(data),
            )
        return int.from_bytes(data, "big") - self._bias

    def encode_range(self, start: Any | None, end: Any | None) -> Bounds:
        return _encode_bounds(self, start, end)


class TupleKeys:
    """Composite keys made of several parts, each with its own key codec.

    Encoded keys compare field by field, in tuple order.
    """

    def __init__(self, *parts: KeyCodec):
        if not parts:
            raise ValueError("TupleKeys needs at least one part")
        self.parts = parts

    def encode(self, key: Any) -> Key:
        if not isinstance(key, tuple) or len(key) != len(self.parts):
            raise EncodeError(f"Expected a tuple of {len(self.parts)} parts, got {key!r}")
        out = bytearray()
        for codec, part in zip(self.parts, key):
            out += codec.encode(part).replace(b"\x00", ESCAPE)
            out += TERMINATOR
        return bytes(out)

    def decode(self, data: Key) -> tuple:
        data = bytes(data)
        values = []
        pos = 0
        for codec in self.parts:
            raw = bytearray()
            while True:
                nul = data.find(b"\x00", pos)
                if nul == -1 or nul + 1 >= len(data):
                    raise DecodeError(
                        DecodeErrorKind.TRUNCATED, "unterminated composite key part",
                        offset=len(data),
                    )
                raw += data[pos:nul]
                marker = data[nul + 1]
                pos = nul + 2
                if marker == 0xFF:
                    raw.append(0)
                elif marker == 0x01:
                    break
                else:
                    raise DecodeError(
                        DecodeErrorKind.MALFORMED, "invalid escape in composite key",
                        offset=nul + 1, expected=(0x01, 0xFF), found=marker,
                    )
            values.append(codec.decode(bytes(raw)))
        if pos != len(data):
            raise DecodeError(
                DecodeErrorKind.MALFORMED, "trailing bytes after composite key",
                offset=pos, expected=len(self.parts), found="extra data",
            )
        return tuple(values)

    def encode_range(self, start: Any | None, end: Any | None) -> Bounds:
        return _encode_bounds(self, start, end)


class PrefixedKeys:
    """Places every key of an inner codec under a fixed byte prefix.

    Unbounded scan ranges are clamped to the prefix.
    """

    def __init__(self, prefix: bytes, inner: KeyCodec):
        self.prefix = bytes(prefix)
        self.inner = inner

    def encode(self, key: Any) -> Key:
        return self.prefix + self.inner.encode(key)

    def decode(self, data: Key) -> Any:
        head = bytes(data[: len(self.prefix)])
        if head != self.prefix:
            raise DecodeError(
                DecodeErrorKind.MALFORMED, "key outside namespace",
                offset=0, expected=self.prefix, found=head,
            )
        return self.inner.decode(data[len(self.prefix):])

    def encode_range(self, start: Any | None, end: Any | None) -> Bounds:
        lo, hi = self.inner.encode_range(start, end)
        return (
            self.prefix + lo if lo is not None else (self.prefix or None),
            self.prefix + hi if hi is not None else prefix_successor(self.prefix),
        )
