"""Exception hierarchy for kv_storage.

Defines all custom exceptions used throughout the implementation. Every
error carries the phase (encode, engine, decode) that produced it once it
has passed through a Store.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from enum import Enum

from .types import Phase


class KVError(Exception):
    """Base exception for all kv_storage errors."""

    phase: Phase | None = None

    def with_phase(self, phase: Phase) -> KVError:
        """Tag the error with its originating phase unless already tagged."""
        if self.phase is None:
            self.phase = phase
        return self

    def __str__(self) -> str:
        message = super().__str__()
        if self.phase is not None:
            return f"[{self.phase.value}] {message}"
        return message


class EncodeError(KVError):
    """Raised when a key or value cannot be represented in the target format."""
    pass


class DecodeErrorKind(Enum):
    """Why a byte sequence is not a valid encoding."""

    TRUNCATED = "truncated"
    MALFORMED = "malformed"
    SCHEMA_MISMATCH = "schema_mismatch"


class DecodeError(KVError):
    """Raised when bytes are not a valid encoding of the target type.

    Args:
        kind: Failure classification
        message: Human readable detail
        offset: Byte offset where validation failed, if known
        expected: What the decoder expected at that offset
        found: What it found instead
    """

    def __init__(
        self,
        kind: DecodeErrorKind,
        message: str,
        *,
        offset: int | None = None,
        expected: object = None,
        found: object = None,
    ):
        self.kind = kind
        self.offset = offset
        self.expected = expected
        self.found = found

        detail = f"{kind.value}: {message}"
        if offset is not None:
            detail += f" (offset {offset}"
            if expected is not None or found is not None:
                detail += f", expected {expected!r}, found {found!r}"
            detail += ")"
        super().__init__(detail)


class StorageError(KVError):
    """Base class for failures reported by a storage engine."""
    pass


class IOFailure(StorageError):
    """Raised when the underlying medium fails."""
    pass


class CorruptionError(StorageError):
    """Raised when stored bytes fail the engine's own integrity check."""

    def __init__(self, message: str, *, offset: int | None = None):
        self.offset = offset
        if offset is not None:
            message = f"{message} at offset {offset}"
        super().__init__(message)


class ClosedError(StorageError):
    """Raised when an operation is attempted after the engine was released."""
    pass


class BorrowError(KVError):
    """Raised when a mutation or release would invalidate a live borrowed view."""
    pass


class ConfigError(KVError):
    """Raised when store configuration is invalid."""
    pass


class NotFoundError(KVError):
    """Raised when a required slot holds no value."""
    pass


@contextmanager
def tagged(phase: Phase) -> Iterator[None]:
    """Tag any KVError escaping the block with phase."""
    try:
        yield
    except KVError as e:
        e.with_phase(phase)
        raise
