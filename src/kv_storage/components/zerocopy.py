"""Zero-copy value codec.

Values are laid out with a fixed binary layout (see layout.py). Decoding
validates the whole record once and then returns a RecordView that reads
fields straight from the buffer it was given. `bytes` fields come back as
memoryview slices of that buffer.

A view is only valid while its buffer is alive and unchanged. The Store
enforces that with leases; the view itself refuses field access once it has
been released and releases every slice it handed out.
"""

from __future__ import annotations

import logging
from typing import Any, ClassVar, Generic, TypeVar

from ..core.errors import BorrowError, EncodeError
from ..core.types import Bounds, Buffer, Key
from ..interfaces.keys import KeyCodec
from .keys import BytesKeys
from .layout import FieldKind, Layout

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RecordView(Generic[T]):
    """Read-only view of an encoded record.

    Fields are exposed as attributes and read lazily. Use `to_owned()` to
    get an independent instance of the record's dataclass.
    """

    __slots__ = ("_layout", "_buf", "_slices", "_released")

    def __init__(self, layout: Layout, buf: memoryview):
        object.__setattr__(self, "_layout", layout)
        object.__setattr__(self, "_buf", buf)
        object.__setattr__(self, "_slices", {})
        object.__setattr__(self, "_released", False)

    @property
    def released(self) -> bool:
        return self._released

    @property
    def record_type(self) -> type[T]:
        return self._layout.cls

    @property
    def nbytes(self) -> int:
        return len(self._buf) if not self._released else 0

    def _field(self, name: str) -> Any:
        if self._released:
            raise BorrowError(f"{self._layout.cls.__name__} view used after release")
        spec = self._layout.by_name[name]
        value = self._layout.read(self._buf, spec)
        if spec.kind is FieldKind.BYTES:
            piece = self._slices.get(name)
            if piece is None:
                start, length = value
                piece = self._buf[start:start + length]
                self._slices[name] = piece
            return piece
        if spec.kind is FieldKind.STR:
            start, length = value
            with self._buf[start:start + length] as text:
                return str(text, "utf-8")
        return value

    def __getattr__(self, name: str) -> Any:
        if name in self._layout.by_name:
            return self._field(name)
        raise AttributeError(f"{self._layout.cls.__name__} view has no field {name!r}")

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError("RecordView is read-only")

    def to_owned(self) -> T:
        """Materialize an independent instance of the record type."""
        values = {}
        for spec in self._layout.fields:
            value = self._field(spec.name)
            if spec.kind is FieldKind.BYTES:
                value = bytes(value)
            values[spec.name] = value
        return self._layout.cls(**values)

    def release(self) -> None:
        """Invalidate the view and every slice it handed out."""
        if self._released:
            return
        for piece in self._slices.values():
            piece.release()
        self._slices.clear()
        self._buf.release()
        object.__setattr__(self, "_released", True)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, RecordView):
            other = other.to_owned()
        if not isinstance(other, self._layout.cls):
            return NotImplemented
        return all(
            self._field(spec.name) == getattr(other, spec.name) for spec in self._layout.fields
        )

    __hash__ = None

    def __repr__(self) -> str:
        if self._released:
            return f"<RecordView {self._layout.cls.__name__} (released)>"
        parts = ", ".join(
            f"{spec.name}={self._field(spec.name)!r}" for spec in self._layout.fields
        )
        return f"<RecordView {self._layout.cls.__name__}({parts})>"


class ZeroCopyCodec(Generic[T]):
    """Codec whose reads borrow from the input buffer.

    Args:
        value_type: Flat dataclass describing the record layout
        keys: Key codec, defaults to raw bytes keys

    Invariants:
        - decode_value validates the entire record before returning a view
        - decode_value never copies bytes payloads
        - decode_value(encode_value(v)).to_owned() == v
        - No field name shadows an attribute of RecordView
    """

    borrows: ClassVar[bool] = True

    def __init__(self, value_type: type[T], keys: KeyCodec | None = None):
        self.value_type = value_type
        self.keys = keys if keys is not None else BytesKeys()
        self.layout = Layout(value_type)
        hidden = [f.name for f in self.layout.fields if hasattr(RecordView, f.name)]
        if hidden:
            raise EncodeError(
                f"{value_type.__name__}: field name(s) {hidden} clash with RecordView attributes"
            )
        logger.debug(
            f"Layout for {value_type.__name__}: {len(self.layout.fields)} fields, "
            f"fixed={self.layout.fixed_size}B, schema={self.layout.schema_id:08x}"
        )

    def with_keys(self, keys: KeyCodec) -> ZeroCopyCodec[T]:
        return ZeroCopyCodec(self.value_type, keys=keys)

    def encode_key(self, key: Any) -> Key:
        return self.keys.encode(key)

    def decode_key(self, data: Key) -> Any:
        return self.keys.decode(data)

    def encode_range(self, start: Any | None, end: Any | None) -> Bounds:
        return self.keys.encode_range(start, end)

    def encode_value(self, value: T) -> bytes:
        """Encode value into its binary layout.

        Raises:
            EncodeError: On a wrong type or an out-of-range field
        """
        return self.layout.encode(value)

    def decode_value(self, data: Buffer) -> RecordView[T]:
        """Validate data and return a view over it.

        Raises:
            DecodeError: TRUNCATED, MALFORMED or SCHEMA_MISMATCH
        """
        buf = memoryview(data)
        if buf.format != "B" or buf.ndim != 1:
            buf = buf.cast("B")
        try:
            self.layout.validate(buf)
        except Exception:
            buf.release()
            raise
        return RecordView(self.layout, buf)

    def decode_owned(self, data: Buffer) -> T:
        """Validate data and return an independent copy of the record."""
        view = self.decode_value(data)
        try:
            return view.to_owned()
        finally:
            view.release()
