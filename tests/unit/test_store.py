"""Unit tests for the Store facade."""

from dataclasses import dataclass

import pytest

from kv_storage.components.keys import IntKeys, StrKeys
from kv_storage.components.memory import MemoryEngine
from kv_storage.components.owned import OwnedCodec
from kv_storage.components.zerocopy import RecordView, ZeroCopyCodec
from kv_storage.core.borrow import Borrowed
from kv_storage.core.errors import (
    BorrowError,
    ClosedError,
    DecodeError,
    DecodeErrorKind,
    EncodeError,
    NotFoundError,
)
from kv_storage.core.slots import Item
from kv_storage.core.store import Store
from kv_storage.core.types import Phase, ScanStatus


@dataclass
class Balance:
    owner: str
    amount: int


@pytest.fixture
def owned_store():
    """Create owned-codec store over a memory engine."""
    store = Store(MemoryEngine(), OwnedCodec(Balance, keys=StrKeys()))
    yield store
    store.close()


@pytest.fixture
def zc_store():
    """Create zero-copy store over a memory engine."""
    store = Store(MemoryEngine(), ZeroCopyCodec(Balance, keys=StrKeys()))
    yield store
    store.close()


def test_owned_get_returns_value(owned_store):
    """Test owned reads return independent values."""
    owned_store.put("alice", Balance("alice", 10))

    value = owned_store.get("alice")
    assert value == Balance("alice", 10)
    assert owned_store.get("bob") is None
    assert not owned_store.borrows
    assert owned_store.concurrent_reads


def test_zerocopy_get_returns_borrowed_view(zc_store):
    """Test zero-copy reads return a guard over a record view."""
    zc_store.put("alice", Balance("alice", 10))

    guard = zc_store.get("alice")
    assert isinstance(guard, Borrowed)
    with guard as view:
        assert isinstance(view, RecordView)
        assert view == Balance("alice", 10)

    assert zc_store.get("bob") is None
    assert zc_store.outstanding_borrows == 0


def test_read_context_manager(owned_store, zc_store):
    """Test scoped reads work the same for both strategies."""
    for store in (owned_store, zc_store):
        store.put("k", Balance("k", 1))

        with store.read("k") as value:
            assert value.amount == 1
        with store.read("missing") as value:
            assert value is None

        assert store.outstanding_borrows == 0


def test_delete_idempotent(owned_store):
    """Test delete removes the key and tolerates absent keys."""
    owned_store.put("k", Balance("k", 1))
    owned_store.delete("k")
    owned_store.delete("k")

    assert owned_store.get("k") is None
    assert "k" not in owned_store


def test_contains(owned_store):
    """Test existence checks do not need a decodable value."""
    owned_store.engine.put(b"raw", b"not msgpack \xc1")

    assert owned_store.contains("raw")
    assert "raw" in owned_store
    assert "other" not in owned_store


def test_put_rejected_while_borrowed(zc_store):
    """Test a key with a live view cannot be overwritten or deleted."""
    zc_store.put("k", Balance("k", 1))
    zc_store.put("other", Balance("other", 2))

    guard = zc_store.get("k")
    with pytest.raises(BorrowError) as exc_info:
        zc_store.put("k", Balance("k", 2))
    assert exc_info.value.phase is Phase.ENGINE
    with pytest.raises(BorrowError):
        zc_store.delete("k")

    zc_store.put("other", Balance("other", 3))
    assert guard.value.amount == 1

    guard.release()
    zc_store.put("k", Balance("k", 2))
    with zc_store.read("k") as view:
        assert view.amount == 2


def test_close_rejected_while_borrowed(zc_store):
    """Test the engine cannot be released under a live view."""
    zc_store.put("k", Balance("k", 1))
    guard = zc_store.get("k")

    with pytest.raises(BorrowError):
        zc_store.close()
    assert not zc_store.closed

    guard.release()
    zc_store.close()
    assert zc_store.closed
    assert zc_store.engine.closed


def test_closed_store_rejects_operations(owned_store):
    """Test operations after close raise ClosedError tagged as engine phase."""
    owned_store.close()

    with pytest.raises(ClosedError) as exc_info:
        owned_store.get("k")
    assert exc_info.value.phase is Phase.ENGINE
    with pytest.raises(ClosedError):
        owned_store.put("k", Balance("k", 1))
    with pytest.raises(ClosedError):
        owned_store.scan()


def test_error_phases(owned_store):
    """Test errors keep their type and carry the phase that raised them."""
    with pytest.raises(EncodeError) as exc_info:
        owned_store.put(42, Balance("x", 1))
    assert exc_info.value.phase is Phase.ENCODE_KEY

    with pytest.raises(EncodeError) as exc_info:
        owned_store.put("x", "not a balance")
    assert exc_info.value.phase is Phase.ENCODE_VALUE
    assert str(exc_info.value).startswith("[encode_value]")

    owned_store.engine.put(b"bad", b"\xc1")
    with pytest.raises(DecodeError) as exc_info:
        owned_store.get("bad")
    assert exc_info.value.phase is Phase.DECODE_VALUE
    assert exc_info.value.kind is DecodeErrorKind.MALFORMED


def test_zerocopy_truncated_value(zc_store):
    """Test a truncated stored record surfaces as a tagged decode error."""
    data = zc_store.codec.encode_value(Balance("alice", 10))
    zc_store.engine.put(b"alice", data[:-1])

    with pytest.raises(DecodeError) as exc_info:
        zc_store.get("alice")
    assert exc_info.value.kind is DecodeErrorKind.TRUNCATED
    assert exc_info.value.phase is Phase.DECODE_VALUE
    assert zc_store.outstanding_borrows == 0


def test_scan_ordered_and_lazy(owned_store):
    """Test scan yields decoded pairs in key order over [start, end)."""
    for name in ["d", "a", "c", "b"]:
        owned_store.put(name, Balance(name, ord(name)))

    cursor = owned_store.scan("b", "d")
    assert cursor.active
    assert next(cursor) == ("b", Balance("b", 98))
    assert cursor.yielded == 1
    assert list(cursor) == [("c", Balance("c", 99))]
    assert cursor.status is ScanStatus.EXHAUSTED
    assert cursor.error is None

    assert [k for k, _ in owned_store.scan()] == ["a", "b", "c", "d"]


def test_scan_empty_ranges(owned_store):
    """Test empty and inverted ranges yield nothing."""
    owned_store.put("a", Balance("a", 1))

    assert list(owned_store.scan("b", "b")) == []
    assert list(owned_store.scan("z", "a")) == []
    assert list(owned_store.scan("b")) == []


def test_scan_failure_is_distinct_from_exhaustion():
    """Test a decode failure ends the scan with FAILED and keeps the error."""
    store = Store(MemoryEngine(), OwnedCodec(Balance, keys=IntKeys(width=2)))
    store.put(1, Balance("one", 1))
    store.engine.put(b"\x00\x02\x00", b"")
    store.put(3, Balance("three", 3))

    cursor = store.scan()
    assert next(cursor) == (1, Balance("one", 1))
    with pytest.raises(DecodeError) as exc_info:
        next(cursor)

    assert exc_info.value.phase is Phase.DECODE_KEY
    assert cursor.status is ScanStatus.FAILED
    assert cursor.error is exc_info.value
    assert list(cursor) == []
    store.close()


def test_scan_value_failure_phase(owned_store):
    """Test a bad value mid-scan is tagged as a value decode failure."""
    owned_store.put("a", Balance("a", 1))
    owned_store.engine.put(b"b", b"\xc1")

    cursor = owned_store.scan()
    next(cursor)
    with pytest.raises(DecodeError) as exc_info:
        next(cursor)
    assert exc_info.value.phase is Phase.DECODE_VALUE
    assert cursor.status is ScanStatus.FAILED


def test_zerocopy_scan_releases_previous_view(zc_store):
    """Test each view is leased only until the cursor advances."""
    zc_store.put("a", Balance("a", 1))
    zc_store.put("b", Balance("b", 2))

    with zc_store.scan() as cursor:
        _key, first = next(cursor)
        assert first.amount == 1
        assert zc_store.outstanding_borrows == 1
        with pytest.raises(BorrowError):
            zc_store.put("a", Balance("a", 5))

        next(cursor)
        assert first.released
        assert zc_store.outstanding_borrows == 1
        zc_store.put("a", Balance("a", 5))

    assert cursor.status is ScanStatus.CLOSED
    assert zc_store.outstanding_borrows == 0


def test_close_closes_open_cursors(zc_store):
    """Test closing the store releases views held by open cursors."""
    zc_store.put("a", Balance("a", 1))
    cursor = zc_store.scan()
    next(cursor)

    zc_store.close()

    assert cursor.status is ScanStatus.CLOSED
    assert zc_store.engine.closed


def test_namespaces_share_engine(owned_store):
    """Test namespaced stores are isolated by prefix over one engine."""
    balances = owned_store.namespace("balances:")
    config = owned_store.namespace(b"config:")

    balances.put("alice", Balance("alice", 5))
    balances.put("bob", Balance("bob", 7))
    config.put("admin", Balance("root", 0))

    assert balances.get("alice") == Balance("alice", 5)
    assert config.get("alice") is None
    assert owned_store.get("balances:alice") == Balance("alice", 5)
    assert [k for k, _ in balances.scan()] == ["alice", "bob"]
    assert [k for k, _ in config.scan()] == ["admin"]

    balances.close()
    assert not owned_store.engine.closed


def test_namespace_shares_borrows(zc_store):
    """Test a view taken through a namespace blocks writes through the parent."""
    users = zc_store.namespace("u/")
    users.put("alice", Balance("alice", 1))

    with users.read("alice"):
        with pytest.raises(BorrowError):
            zc_store.put("u/alice", Balance("alice", 2))


def test_item_slot(owned_store, zc_store):
    """Test single-value slots with both strategies."""
    for store in (owned_store, zc_store):
        item = Item(store, "config")

        assert item.is_empty()
        assert item.may_load() is None
        with pytest.raises(NotFoundError):
            item.load()

        item.save(Balance("admin", 1))
        loaded = item.load()
        assert loaded == Balance("admin", 1)
        assert isinstance(loaded, Balance)
        assert not item.is_empty()

        item.clear()
        assert item.is_empty()
        assert store.outstanding_borrows == 0
