"""Owned value codec.

Reflection-based MessagePack codec built on msgspec. Every decode returns a
fully materialized value that shares nothing with the input buffer.
"""

from __future__ import annotations

import logging
from typing import Any, ClassVar, Generic, TypeVar

import msgspec

from ..core.errors import DecodeError, DecodeErrorKind, EncodeError
from ..core.types import Bounds, Buffer, Key
from ..interfaces.keys import KeyCodec
from .keys import BytesKeys

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _classify(error: msgspec.DecodeError) -> DecodeErrorKind:
    """Map a msgspec decode failure onto the shared error kinds."""
    if isinstance(error, msgspec.ValidationError):
        return DecodeErrorKind.SCHEMA_MISMATCH
    if "truncated" in str(error).lower():
        return DecodeErrorKind.TRUNCATED
    return DecodeErrorKind.MALFORMED


class OwnedCodec(Generic[T]):
    """Codec whose reads produce independent copies.

    Args:
        value_type: Type values are validated against on decode (dataclass,
            msgspec.Struct, or any type msgspec understands)
        keys: Key codec, defaults to raw bytes keys

    Invariants:
        - decode_value(encode_value(v)) == v for every encodable v
        - The decoded value never references the input buffer
    """

    borrows: ClassVar[bool] = False

    def __init__(self, value_type: type[T], keys: KeyCodec | None = None):
        self.value_type = value_type
        self.keys = keys if keys is not None else BytesKeys()
        self._encoder = msgspec.msgpack.Encoder()
        self._decoder = msgspec.msgpack.Decoder(value_type)
        self._type_name = getattr(value_type, "__name__", repr(value_type))

    def with_keys(self, keys: KeyCodec) -> OwnedCodec[T]:
        """Return a codec for the same value type with a different key codec."""
        return OwnedCodec(self.value_type, keys=keys)

    def encode_key(self, key: Any) -> Key:
        return self.keys.encode(key)

    def decode_key(self, data: Key) -> Any:
        return self.keys.decode(data)

    def encode_range(self, start: Any | None, end: Any | None) -> Bounds:
        return self.keys.encode_range(start, end)

    def encode_value(self, value: T) -> bytes:
        """Encode value as MessagePack.

        Raises:
            EncodeError: If the value holds a type MessagePack cannot carry
        """
        if isinstance(self.value_type, type) and not isinstance(value, self.value_type):
            raise EncodeError(f"Expected {self._type_name}, got {type(value).__name__}")
        try:
            return self._encoder.encode(value)
        except (msgspec.EncodeError, TypeError, ValueError, OverflowError) as e:
            raise EncodeError(f"Cannot encode {type(value).__name__} as {self._type_name}: {e}") from e

    def decode_value(self, data: Buffer) -> T:
        """Decode and validate a value against value_type.

        Raises:
            DecodeError: TRUNCATED, MALFORMED or SCHEMA_MISMATCH
        """
        try:
            return self._decoder.decode(data)
        except msgspec.DecodeError as e:
            kind = _classify(e)
            logger.debug(f"Owned decode of {self._type_name} failed: {e}")
            raise DecodeError(
                kind, str(e), expected=self._type_name
            ) from e
