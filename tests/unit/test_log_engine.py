"""Unit tests for the append-only log engine."""

import os
import shutil
import struct
import tempfile
import zlib
from pathlib import Path

import pytest

from kv_storage.components.log import CRC, HEADER, PREFIX, OP_DELETE, OP_PUT, LogEngine, encode_record
from kv_storage.core.errors import ClosedError, CorruptionError, IOFailure


@pytest.fixture
def temp_dir():
    """Create temporary directory for tests."""
    tmpdir = tempfile.mkdtemp()
    yield tmpdir
    shutil.rmtree(tmpdir, ignore_errors=True)


@pytest.fixture
def log_path(temp_dir):
    """Create log file path."""
    return Path(temp_dir) / "test.log"


def test_put_get_delete(log_path):
    """Test basic operations on a fresh log."""
    with LogEngine(log_path) as engine:
        engine.put(b"key1", b"value1")
        engine.put(b"key2", b"")

        assert bytes(engine.get(b"key1")) == b"value1"
        assert bytes(engine.get(b"key2")) == b""
        assert engine.get(b"missing") is None

        engine.delete(b"key1")
        assert engine.get(b"key1") is None
        assert not engine.contains(b"key1")
        assert engine.contains(b"key2")


def test_get_returns_view_over_fresh_buffer(log_path):
    """Test reads are memoryview slices that later writes never touch."""
    with LogEngine(log_path) as engine:
        engine.put(b"k", b"old")
        view = engine.get(b"k")
        engine.put(b"k", b"new")

        assert isinstance(view, memoryview)
        assert bytes(view) == b"old"
        assert bytes(engine.get(b"k")) == b"new"


def test_recovery_after_reopen(log_path):
    """Test puts, overwrites and deletes survive reopening."""
    with LogEngine(log_path) as engine:
        engine.put(b"a", b"1")
        engine.put(b"b", b"2")
        engine.put(b"a", b"3")
        engine.delete(b"b")

    with LogEngine(log_path) as engine:
        assert bytes(engine.get(b"a")) == b"3"
        assert engine.get(b"b") is None
        assert len(engine) == 1


def test_delete_absent_key_writes_nothing(log_path):
    """Test deleting an absent key leaves the log untouched."""
    with LogEngine(log_path) as engine:
        engine.put(b"a", b"1")
        size = engine.file_size

        engine.delete(b"missing")
        assert engine.file_size == size

        engine.delete(b"a")
        engine.delete(b"a")
        assert engine.file_size == size + len(encode_record(OP_DELETE, b"a"))


def test_torn_tail_truncated(log_path):
    """Test a partially written final record is dropped on open."""
    with LogEngine(log_path) as engine:
        engine.put(b"a", b"1")
        engine.put(b"b", b"2")
        good_size = engine.file_size

    with open(log_path, "ab") as f:
        f.write(encode_record(OP_PUT, b"c", b"3")[:-5])

    with LogEngine(log_path) as engine:
        assert bytes(engine.get(b"a")) == b"1"
        assert bytes(engine.get(b"b")) == b"2"
        assert engine.get(b"c") is None
        assert engine.file_size == good_size

        engine.put(b"c", b"4")

    assert os.path.getsize(log_path) == good_size + len(encode_record(OP_PUT, b"c", b"4"))
    with LogEngine(log_path) as engine:
        assert bytes(engine.get(b"c")) == b"4"


def test_crc_corruption_detected_on_open(log_path):
    """Test a flipped byte inside a record is reported, not skipped."""
    with LogEngine(log_path) as engine:
        engine.put(b"a", b"value-a")
        engine.put(b"b", b"value-b")

    data = bytearray(log_path.read_bytes())
    data[HEADER.size + 2] ^= 0xFF
    log_path.write_bytes(bytes(data))

    with pytest.raises(CorruptionError) as exc_info:
        LogEngine(log_path)
    assert exc_info.value.offset == 0


def test_corrupt_length_detected_on_open(log_path):
    """Test a damaged length field mid-log is corruption, not a torn tail."""
    with LogEngine(log_path) as engine:
        engine.put(b"a", b"1")
        engine.put(b"b", b"2")
        engine.put(b"c", b"3")
    size = os.path.getsize(log_path)

    data = bytearray(log_path.read_bytes())
    struct.pack_into("<I", data, 5, 0x7FFFFFFF)
    log_path.write_bytes(bytes(data))

    with pytest.raises(CorruptionError) as exc_info:
        LogEngine(log_path)
    assert exc_info.value.offset == 0
    assert os.path.getsize(log_path) == size


def test_bad_magic_detected_on_open(log_path):
    """Test garbage in place of a record header raises CorruptionError."""
    with LogEngine(log_path) as engine:
        engine.put(b"a", b"1")
    first = len(encode_record(OP_PUT, b"a", b"1"))

    with open(log_path, "ab") as f:
        f.write(b"\xde\xad\xbe\xef" * 8)

    with pytest.raises(CorruptionError) as exc_info:
        LogEngine(log_path)
    assert exc_info.value.offset == first


def test_crc_checked_on_read(log_path):
    """Test corruption after open is caught by the read-time checksum."""
    engine = LogEngine(log_path)
    engine.put(b"a", b"value")

    with open(log_path, "r+b") as f:
        f.seek(HEADER.size + 1)
        f.write(b"X")

    with pytest.raises(CorruptionError):
        engine.get(b"a")
    engine.close()


def test_scan_order(log_path):
    """Test scan yields keys in byte order within bounds."""
    with LogEngine(log_path) as engine:
        for key in [b"c", b"a", b"d", b"b"]:
            engine.put(key, key * 2)
        engine.delete(b"d")

        assert [(k, bytes(v)) for k, v in engine.scan(None, None)] == [
            (b"a", b"aa"),
            (b"b", b"bb"),
            (b"c", b"cc"),
        ]
        assert [k for k, _ in engine.scan(b"b", b"c")] == [b"b"]
        assert list(engine.scan(b"c", b"a")) == []


def test_compaction(log_path):
    """Test compaction drops dead records and keeps live data."""
    with LogEngine(log_path) as engine:
        for i in range(20):
            engine.put(b"hot", str(i).encode())
        engine.put(b"cold", b"x")
        engine.put(b"gone", b"y")
        engine.delete(b"gone")
        before = engine.file_size

        engine.compact()

        assert engine.file_size < before
        assert engine.file_size == os.path.getsize(log_path)
        assert bytes(engine.get(b"hot")) == b"19"
        assert bytes(engine.get(b"cold")) == b"x"
        assert engine.get(b"gone") is None

        engine.put(b"after", b"z")

    assert not log_path.with_suffix(".log.compact").exists()
    with LogEngine(log_path) as engine:
        assert sorted(k for k, _ in engine.scan(None, None)) == [b"after", b"cold", b"hot"]


def test_view_survives_compaction(log_path):
    """Test a value read before compaction is still intact afterwards."""
    with LogEngine(log_path) as engine:
        engine.put(b"k", b"payload")
        view = engine.get(b"k")
        engine.compact()
        assert bytes(view) == b"payload"


def test_closed_engine(log_path):
    """Test operations after close raise ClosedError."""
    engine = LogEngine(log_path)
    engine.put(b"k", b"v")
    engine.close()
    engine.close()

    assert engine.closed
    with pytest.raises(ClosedError):
        engine.get(b"k")
    with pytest.raises(ClosedError):
        engine.put(b"k", b"v")
    with pytest.raises(ClosedError):
        engine.compact()


def test_record_format(log_path):
    """Test the on-disk layout of a single record."""
    with LogEngine(log_path) as engine:
        engine.put(b"key", b"value")

    data = log_path.read_bytes()
    assert len(data) == HEADER.size + 3 + 5 + CRC.size
    _magic, op, key_len, value_len, header_crc = HEADER.unpack_from(data)
    assert (op, key_len, value_len) == (OP_PUT, 3, 5)
    assert header_crc == zlib.crc32(data[:PREFIX.size])
    assert data[HEADER.size:HEADER.size + 8] == b"keyvalue"


def test_failed_append_rolled_back(log_path, monkeypatch):
    """Test an append that fails leaves no partial record in the log."""
    engine = LogEngine(log_path)
    engine.put(b"a", b"1")
    good_size = engine.file_size

    real_fsync = os.fsync
    calls = []

    def failing_fsync(fd):
        calls.append(fd)
        if len(calls) == 1:
            raise OSError("disk full")
        real_fsync(fd)

    monkeypatch.setattr(os, "fsync", failing_fsync)
    with pytest.raises(IOFailure):
        engine.put(b"b", b"2")

    assert engine.file_size == good_size
    assert os.path.getsize(log_path) == good_size
    assert engine.get(b"b") is None

    engine.put(b"c", b"3")
    engine.close()
    monkeypatch.undo()

    with LogEngine(log_path) as engine:
        assert sorted(k for k, _ in engine.scan(None, None)) == [b"a", b"c"]
