"""Append-only log storage engine.

Provides a durable, crash-safe key-value log with CRC32 checksums and an
in-memory sorted index rebuilt on open.
"""

from __future__ import annotations

import logging
import os
import struct
import threading
import zlib
from collections.abc import Iterator
from pathlib import Path

from sortedcontainers import SortedDict

from ..core.errors import ClosedError, CorruptionError, IOFailure
from ..core.types import Entry, Key

logger = logging.getLogger(__name__)

# Log record format:
# [magic (4B)] [op (1B)] [key_len (4B)] [value_len (4B)] [header crc32 (4B)]
# [key bytes] [value bytes] [crc32 (4B)]
# The header CRC covers the fields before it, so a damaged length is caught
# before it is trusted; the trailing CRC covers everything before it.
MAGIC = 0x4B564C02  # "KVL" + version
OP_PUT = 0
OP_DELETE = 1
PREFIX = struct.Struct("<IBII")
HEADER = struct.Struct("<IBIII")
CRC = struct.Struct("<I")


def encode_record(op: int, key: bytes, value: bytes = b"") -> bytes:
    """Build one log record including its trailing CRC."""
    prefix = PREFIX.pack(MAGIC, op, len(key), len(value))
    payload = prefix + CRC.pack(zlib.crc32(prefix)) + key + value
    return payload + CRC.pack(zlib.crc32(payload))


class LogEngine:
    """Append-only log engine with CRC32-checked records.

    Args:
        path: Path to the log file
        fsync_every_write: Whether to fsync after each append
        verify_checksums: Whether reads re-check the record CRC

    Invariants:
        - A record becomes visible only after it is fully written
        - Each read returns a slice of a fresh buffer that nothing else writes to
        - A torn record at EOF is truncated away on open; lengths are only
          trusted once the header CRC matches
        - Appends bypass Python buffering, so rolling back a failed append
          leaves no bytes behind
        - Corruption before EOF is reported, never skipped
    """

    concurrent_reads = True

    def __init__(
        self,
        path: str | Path,
        fsync_every_write: bool = True,
        verify_checksums: bool = True,
    ):
        self.path = Path(path)
        self.fsync_every_write = fsync_every_write
        self.verify_checksums = verify_checksums
        self._lock = threading.RLock()
        # key -> (record offset, record length)
        self._index: SortedDict = SortedDict()
        self._fd = None
        self._end = 0
        self._closed = False
        self._open()

    def _open(self) -> None:
        """Open the log for appending and rebuild the index."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._fd = open(self.path, "a+b", buffering=0)
        except OSError as e:
            raise IOFailure(f"Cannot open log {self.path}: {e}") from e

        try:
            count = self._replay()
        except Exception:
            self._fd.close()
            self._fd = None
            raise
        logger.info(f"Opened log {self.path}: {count} records, {len(self._index)} live keys")

    def _pread(self, size: int, offset: int) -> bytes:
        try:
            return os.pread(self._fd.fileno(), size, offset)
        except OSError as e:
            raise IOFailure(f"Read of {size} bytes at offset {offset} failed: {e}") from e

    def _replay(self) -> int:
        """Scan the whole log into the index. Returns the number of records."""
        try:
            size = os.fstat(self._fd.fileno()).st_size
        except OSError as e:
            raise IOFailure(f"Cannot stat log {self.path}: {e}") from e

        self._index.clear()
        offset = 0
        count = 0
        while offset < size:
            header = self._pread(HEADER.size, offset)
            if len(header) < HEADER.size:
                break
            magic, op, key_len, value_len, header_crc = HEADER.unpack(header)
            if magic != MAGIC:
                raise CorruptionError(f"Invalid magic {magic:x}", offset=offset)
            computed = zlib.crc32(header[:PREFIX.size])
            if header_crc != computed:
                raise CorruptionError(
                    f"Header CRC mismatch: expected {computed:x}, got {header_crc:x}", offset=offset
                )
            if op not in (OP_PUT, OP_DELETE):
                raise CorruptionError(f"Invalid op code {op}", offset=offset)

            length = HEADER.size + key_len + value_len + CRC.size
            # header verified: only a torn final record can end past EOF
            if offset + length > size:
                break
            record = self._pread(length, offset)
            self._check_crc(record, offset)

            key = record[HEADER.size:HEADER.size + key_len]
            if op == OP_PUT:
                self._index[key] = (offset, length)
            else:
                self._index.pop(key, None)
            offset += length
            count += 1

        if offset < size:
            logger.warning(
                f"Partial record at offset {offset} in {self.path}, truncating {size - offset} bytes"
            )
            try:
                os.ftruncate(self._fd.fileno(), offset)
            except OSError as e:
                raise IOFailure(f"Cannot truncate torn tail of {self.path}: {e}") from e

        self._end = offset
        return count

    @staticmethod
    def _check_crc(record: bytes, offset: int) -> None:
        (stored,) = CRC.unpack_from(record, len(record) - CRC.size)
        computed = zlib.crc32(memoryview(record)[:-CRC.size])
        if stored != computed:
            raise CorruptionError(
                f"CRC mismatch: expected {computed:x}, got {stored:x}", offset=offset
            )

    def _check_open(self) -> None:
        if self._closed:
            raise ClosedError(f"LogEngine {self.path} is closed")

    def _append(self, record: bytes) -> int:
        """Write record at the end of the log. Returns its offset."""
        offset = self._end
        try:
            view = memoryview(record)
            while view:
                view = view[self._fd.write(view):]
            if self.fsync_every_write:
                os.fsync(self._fd.fileno())
        except OSError as e:
            try:
                os.ftruncate(self._fd.fileno(), offset)
            except OSError:
                logger.error(f"Could not roll back partial append at offset {offset}")
            raise IOFailure(f"Append at offset {offset} failed: {e}") from e
        self._end = offset + len(record)
        return offset

    def _read_value(self, key: Key, offset: int, length: int) -> memoryview:
        record = self._pread(length, offset)
        if len(record) < length:
            raise CorruptionError(f"Record cut short ({len(record)}/{length} bytes)", offset=offset)
        if self.verify_checksums:
            self._check_crc(record, offset)
        _magic, op, key_len, value_len, _header_crc = HEADER.unpack_from(record)
        start = HEADER.size + key_len
        if op != OP_PUT or record[HEADER.size:start] != key:
            raise CorruptionError(f"Index points at a foreign record for {key!r}", offset=offset)
        return memoryview(record)[start:start + value_len]

    def get(self, key: Key) -> memoryview | None:
        """Return the value for key as a view over a fresh read buffer, or None."""
        with self._lock:
            self._check_open()
            location = self._index.get(key)
            if location is None:
                return None
            return self._read_value(key, *location)

    def put(self, key: Key, value: bytes) -> None:
        """Append a put record and publish it in the index."""
        key = bytes(key)
        record = encode_record(OP_PUT, key, bytes(value))
        with self._lock:
            self._check_open()
            offset = self._append(record)
            self._index[key] = (offset, len(record))
        logger.debug(f"Put key_len={len(key)} at offset {offset}")

    def delete(self, key: Key) -> None:
        """Append a tombstone if key is present. Absent keys are a no-op."""
        key = bytes(key)
        with self._lock:
            self._check_open()
            if key not in self._index:
                return
            self._append(encode_record(OP_DELETE, key))
            del self._index[key]

    def contains(self, key: Key) -> bool:
        with self._lock:
            self._check_open()
            return key in self._index

    def scan(self, start: Key | None, end: Key | None) -> Iterator[Entry]:
        """Iterate entries in key order between start (inclusive) and end (exclusive)."""
        if start is not None and end is not None and start >= end:
            return
        with self._lock:
            self._check_open()
            keys = list(self._index.irange(start, end, inclusive=(True, False)))

        for key in keys:
            with self._lock:
                self._check_open()
                location = self._index.get(key)
                if location is None:
                    continue
                value = self._read_value(key, *location)
            yield key, value

    def compact(self) -> None:
        """Rewrite the log with live entries only.

        The new log is written beside the old one and swapped in atomically.
        """
        with self._lock:
            self._check_open()
            before = self._end
            temp_path = self.path.with_suffix(self.path.suffix + ".compact")
            index: SortedDict = SortedDict()
            offset = 0
            try:
                with open(temp_path, "wb") as out:
                    for key, (old_offset, length) in self._index.items():
                        record = self._pread(length, old_offset)
                        self._check_crc(record, old_offset)
                        out.write(record)
                        index[key] = (offset, length)
                        offset += length
                    out.flush()
                    os.fsync(out.fileno())
                os.replace(temp_path, self.path)
                new_fd = open(self.path, "a+b", buffering=0)
            except OSError as e:
                temp_path.unlink(missing_ok=True)
                raise IOFailure(f"Compaction of {self.path} failed: {e}") from e
            except CorruptionError:
                temp_path.unlink(missing_ok=True)
                raise

            self._fd.close()
            self._fd = new_fd
            self._index = index
            self._end = offset
        logger.info(f"Compacted {self.path}: {before} -> {offset} bytes")

    def __len__(self) -> int:
        with self._lock:
            return len(self._index)

    @property
    def file_size(self) -> int:
        """Bytes currently used by the log, including dead records."""
        return self._end

    @property
    def closed(self) -> bool:
        return self._closed

    def sync(self) -> None:
        """Force data to disk (fsync)."""
        with self._lock:
            self._check_open()
            try:
                self._fd.flush()
                os.fsync(self._fd.fileno())
            except OSError as e:
                raise IOFailure(f"Sync of {self.path} failed: {e}") from e

    def close(self) -> None:
        """Flush and close the log. Safe to call more than once."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._index.clear()
            if self._fd is not None:
                try:
                    self._fd.flush()
                    os.fsync(self._fd.fileno())
                except OSError as e:
                    raise IOFailure(f"Final sync of {self.path} failed: {e}") from e
                finally:
                    self._fd.close()
                    self._fd = None
        logger.info(f"Closed log {self.path}")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
