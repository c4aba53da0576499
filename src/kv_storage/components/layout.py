"""Fixed binary layout for dataclass records.

A layout is derived from a dataclass's field annotations and describes where
each field lives in an encoded record, so a reader can access fields in place
without decoding the whole record.

Record format (little-endian):
    [magic (2B)] [version (1B)] [flags (1B)] [schema id (4B)] [fixed size (4B)] [total size (4B)]
    [fixed section: one aligned slot per field, padded to a multiple of 8]
    [variable section: bytes/str payloads referenced by (offset u32, length u32) slots]

Offsets in reference slots are absolute from the start of the record.
"""

from __future__ import annotations

import dataclasses
import struct
import typing
import zlib
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Any

from ..core.errors import DecodeError, DecodeErrorKind, EncodeError

MAGIC = b"ZV"
VERSION = 1
HEADER = struct.Struct("<2sBBIII")
ALIGNMENT = 8

INT64_MIN = -(1 << 63)
INT64_MAX = (1 << 63) - 1


class FieldKind(Enum):
    """Storage class of a layout field."""

    INT = "int"
    FLOAT = "float"
    BOOL = "bool"
    ENUM = "enum"
    BYTES = "bytes"
    STR = "str"


_REF = struct.Struct("<II")
_SLOTS = {
    FieldKind.INT: struct.Struct("<q"),
    FieldKind.FLOAT: struct.Struct("<d"),
    FieldKind.BOOL: struct.Struct("<B"),
    FieldKind.ENUM: struct.Struct("<B"),
    FieldKind.BYTES: _REF,
    FieldKind.STR: _REF,
}
_ALIGN = {
    FieldKind.INT: 8,
    FieldKind.FLOAT: 8,
    FieldKind.BOOL: 1,
    FieldKind.ENUM: 1,
    FieldKind.BYTES: 4,
    FieldKind.STR: 4,
}


@dataclass(frozen=True)
class FieldSpec:
    """Position and type of one field inside the fixed section."""

    name: str
    kind: FieldKind
    offset: int
    enum_type: type[IntEnum] | None = None

    @property
    def slot(self) -> struct.Struct:
        return _SLOTS[self.kind]

    @property
    def variable(self) -> bool:
        return self.kind in (FieldKind.BYTES, FieldKind.STR)


def _kind_for(cls: type, name: str, annotation: Any) -> tuple[FieldKind, type[IntEnum] | None]:
    if annotation is bool:
        return FieldKind.BOOL, None
    if isinstance(annotation, type) and issubclass(annotation, IntEnum):
        values = [member.value for member in annotation]
        if not values or min(values) < 0 or max(values) > 255:
            raise EncodeError(f"{cls.__name__}.{name}: enum values must fit in one byte")
        return FieldKind.ENUM, annotation
    if annotation is int:
        return FieldKind.INT, None
    if annotation is float:
        return FieldKind.FLOAT, None
    if annotation is bytes:
        return FieldKind.BYTES, None
    if annotation is str:
        return FieldKind.STR, None
    raise EncodeError(f"{cls.__name__}.{name}: unsupported field type {annotation!r}")


class Layout:
    """Binary layout of a flat dataclass.

    Args:
        cls: Dataclass whose fields are int, float, bool, bytes, str or IntEnum

    Invariants:
        - Every fixed slot is aligned to its natural size
        - The fixed section size is a multiple of 8
        - schema_id changes whenever a field name, kind, order or enum range changes
    """

    def __init__(self, cls: type):
        if not dataclasses.is_dataclass(cls):
            raise EncodeError(f"{cls!r} is not a dataclass")
        self.cls = cls

        hints = typing.get_type_hints(cls)
        fields: list[FieldSpec] = []
        offset = 0
        signature = [cls.__name__]
        for f in dataclasses.fields(cls):
            kind, enum_type = _kind_for(cls, f.name, hints[f.name])
            align = _ALIGN[kind]
            offset = (offset + align - 1) // align * align
            fields.append(FieldSpec(f.name, kind, offset, enum_type))
            offset += _SLOTS[kind].size
            sig = f"{f.name}:{kind.name}"
            if enum_type is not None:
                sig += "(" + ",".join(str(m.value) for m in enum_type) + ")"
            signature.append(sig)

        self.fields: tuple[FieldSpec, ...] = tuple(fields)
        self.by_name: dict[str, FieldSpec] = {f.name: f for f in fields}
        self.fixed_size = (offset + ALIGNMENT - 1) // ALIGNMENT * ALIGNMENT
        self.data_start = HEADER.size + self.fixed_size
        self.schema_id = zlib.crc32(";".join(signature).encode("utf-8"))

    def encode(self, value: Any) -> bytes:
        """Serialize a dataclass instance into the layout."""
        if not isinstance(value, self.cls):
            raise EncodeError(f"Expected {self.cls.__name__}, got {type(value).__name__}")

        fixed = bytearray(self.fixed_size)
        tail = bytearray()
        for spec in self.fields:
            raw = getattr(value, spec.name)
            if spec.variable:
                payload = self._payload(spec, raw)
                spec.slot.pack_into(fixed, spec.offset, self.data_start + len(tail), len(payload))
                tail += payload
            else:
                spec.slot.pack_into(fixed, spec.offset, self._scalar(spec, raw))

        total = self.data_start + len(tail)
        if total > 0xFFFFFFFF:
            raise EncodeError(f"Encoded {self.cls.__name__} exceeds 4 GiB")
        header = HEADER.pack(MAGIC, VERSION, 0, self.schema_id, self.fixed_size, total)
        return header + bytes(fixed) + bytes(tail)

    def _scalar(self, spec: FieldSpec, raw: Any) -> Any:
        name = f"{self.cls.__name__}.{spec.name}"
        if spec.kind is FieldKind.BOOL:
            if not isinstance(raw, bool):
                raise EncodeError(f"{name}: expected bool, got {type(raw).__name__}")
            return int(raw)
        if spec.kind is FieldKind.ENUM:
            if not isinstance(raw, spec.enum_type):
                raise EncodeError(f"{name}: expected {spec.enum_type.__name__}, got {raw!r}")
            return int(raw)
        if spec.kind is FieldKind.INT:
            if isinstance(raw, bool) or not isinstance(raw, int):
                raise EncodeError(f"{name}: expected int, got {type(raw).__name__}")
            if not INT64_MIN <= raw <= INT64_MAX:
                raise EncodeError(f"{name}: {raw} does not fit in 64 bits")
            return raw
        if isinstance(raw, bool) or not isinstance(raw, (int, float)):
            raise EncodeError(f"{name}: expected float, got {type(raw).__name__}")
        try:
            return float(raw)
        except OverflowError as e:
            raise EncodeError(f"{name}: {e}") from e

    def _payload(self, spec: FieldSpec, raw: Any) -> bytes:
        name = f"{self.cls.__name__}.{spec.name}"
        if spec.kind is FieldKind.STR:
            if not isinstance(raw, str):
                raise EncodeError(f"{name}: expected str, got {type(raw).__name__}")
            try:
                return raw.encode("utf-8")
            except UnicodeEncodeError as e:
                raise EncodeError(f"{name}: not encodable as UTF-8: {e}") from e
        if not isinstance(raw, (bytes, bytearray, memoryview)):
            raise EncodeError(f"{name}: expected bytes, got {type(raw).__name__}")
        return bytes(raw)

    def validate(self, buf: memoryview) -> None:
        """Check every structural property a view relies on.

        Raises:
            DecodeError: TRUNCATED, MALFORMED or SCHEMA_MISMATCH with the
                offending offset
        """
        size = len(buf)
        if size < HEADER.size:
            raise DecodeError(
                DecodeErrorKind.TRUNCATED, "record shorter than header",
                offset=size, expected=HEADER.size, found=size,
            )

        magic, version, flags, schema_id, fixed_size, total = HEADER.unpack_from(buf, 0)
        if magic != MAGIC:
            raise DecodeError(
                DecodeErrorKind.MALFORMED, "bad magic", offset=0, expected=MAGIC, found=magic
            )
        if version != VERSION:
            raise DecodeError(
                DecodeErrorKind.MALFORMED, "unsupported version",
                offset=2, expected=VERSION, found=version,
            )
        if flags != 0:
            raise DecodeError(
                DecodeErrorKind.MALFORMED, "reserved flags set", offset=3, expected=0, found=flags
            )
        if schema_id != self.schema_id:
            raise DecodeError(
                DecodeErrorKind.SCHEMA_MISMATCH, f"record is not a {self.cls.__name__}",
                offset=4, expected=f"{self.schema_id:08x}", found=f"{schema_id:08x}",
            )
        if fixed_size != self.fixed_size or fixed_size % ALIGNMENT:
            raise DecodeError(
                DecodeErrorKind.SCHEMA_MISMATCH, "fixed section size differs",
                offset=8, expected=self.fixed_size, found=fixed_size,
            )
        if total > size:
            raise DecodeError(
                DecodeErrorKind.TRUNCATED, "record shorter than its declared size",
                offset=size, expected=total, found=size,
            )
        if total < size:
            raise DecodeError(
                DecodeErrorKind.MALFORMED, "trailing bytes after record",
                offset=total, expected=total, found=size,
            )
        if total < self.data_start:
            raise DecodeError(
                DecodeErrorKind.TRUNCATED, "fixed section cut short",
                offset=total, expected=self.data_start, found=total,
            )

        for spec in self.fields:
            at = HEADER.size + spec.offset
            if spec.variable:
                start, length = spec.slot.unpack_from(buf, at)
                if start < self.data_start:
                    raise DecodeError(
                        DecodeErrorKind.MALFORMED, f"{spec.name} points into the fixed section",
                        offset=at, expected=f">= {self.data_start}", found=start,
                    )
                if start + length > total:
                    raise DecodeError(
                        DecodeErrorKind.TRUNCATED, f"{spec.name} runs past the end of the record",
                        offset=at, expected=f"<= {total}", found=start + length,
                    )
                if spec.kind is FieldKind.STR:
                    with buf[start:start + length] as text:
                        try:
                            str(text, "utf-8")
                        except UnicodeDecodeError as e:
                            raise DecodeError(
                                DecodeErrorKind.MALFORMED, f"{spec.name} is not valid UTF-8",
                                offset=start + e.start,
                            ) from e
            elif spec.kind is FieldKind.BOOL:
                (flag,) = spec.slot.unpack_from(buf, at)
                if flag > 1:
                    raise DecodeError(
                        DecodeErrorKind.MALFORMED, f"{spec.name} is not a bool",
                        offset=at, expected=(0, 1), found=flag,
                    )
            elif spec.kind is FieldKind.ENUM:
                (tag,) = spec.slot.unpack_from(buf, at)
                try:
                    spec.enum_type(tag)
                except ValueError as e:
                    raise DecodeError(
                        DecodeErrorKind.MALFORMED, f"{spec.name} discriminant out of range",
                        offset=at, expected=sorted(m.value for m in spec.enum_type), found=tag,
                    ) from e

    def read(self, buf: memoryview, spec: FieldSpec) -> Any:
        """Read a scalar field or the (offset, length) reference of a variable one."""
        value = spec.slot.unpack_from(buf, HEADER.size + spec.offset)
        if spec.variable:
            return value
        (value,) = value
        if spec.kind is FieldKind.BOOL:
            return bool(value)
        if spec.kind is FieldKind.ENUM:
            return spec.enum_type(value)
        return value
