"""Common type definitions for kv_storage.

Defines fundamental types used across all components.
"""

from __future__ import annotations

from enum import Enum
from typing import Union

# Raw engine-level types
Key = bytes
Buffer = Union[bytes, memoryview]
Entry = tuple[Key, Buffer]
Bounds = tuple[Union[Key, None], Union[Key, None]]


class Phase(Enum):
    """Stage of a Store operation that produced an error."""

    ENCODE_KEY = "encode_key"
    ENCODE_VALUE = "encode_value"
    ENGINE = "engine"
    DECODE_KEY = "decode_key"
    DECODE_VALUE = "decode_value"


class ScanStatus(Enum):
    """Lifecycle of a scan cursor."""

    ACTIVE = "active"
    EXHAUSTED = "exhausted"
    FAILED = "failed"
    CLOSED = "closed"
