"""Protocol definition for Key Codec."""

from __future__ import annotations

from typing import Any, Protocol

from ..core.types import Bounds, Key


class KeyCodec(Protocol):
    """Deterministic, order-preserving mapping between logical keys and bytes."""

    def encode(self, key: Any) -> Key:
        """Encode a logical key. Raises EncodeError if it cannot be represented."""
        ...

    def decode(self, data: Key) -> Any:
        """Decode key bytes. Raises DecodeError if they are not a valid key."""
        ...

    def encode_range(self, start: Any | None, end: Any | None) -> Bounds:
        """Encode scan bounds; None means unbounded on that side."""
        ...
