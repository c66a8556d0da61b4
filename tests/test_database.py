import re

import pytest

from database import SESSION, MemoryKeyValueStore, Storage, generate_id, parse_iso
from errors import ConcurrentModificationError


def test_transaction_commits_all_writes_together(storage):
    with storage.transaction() as tx:
        tx.set("a", [1])
        tx.set("b", {"x": 2})
        assert storage.local.get("a") is None
    assert storage.get("a") == [1]
    assert storage.get("b") == {"x": 2}


def test_failed_transaction_writes_nothing(storage):
    storage.local.set("a", [1])
    with pytest.raises(RuntimeError):
        with storage.transaction() as tx:
            tx.set("a", [1, 2])
            tx.set("b", "new")
            raise RuntimeError("boom")
    assert storage.get("a") == [1]
    assert storage.get("b") is None


def test_nested_transaction_joins_outer(storage):
    with storage.transaction() as outer:
        with storage.transaction() as inner:
            assert inner is outer
            inner.set("a", 1)
        assert storage.get("a") == 1
        assert storage.local.get("a") is None
    assert storage.local.get("a") == 1


def test_concurrent_write_is_detected(storage):
    storage.local.set("products", [])
    with pytest.raises(ConcurrentModificationError):
        with storage.transaction() as tx:
            tx.get("products", [])
            storage.local.set("products", [{"id": "other"}])
            tx.set("products", [{"id": "mine"}])
    assert storage.get("products") == [{"id": "other"}]


class LosingStore(MemoryKeyValueStore):
    """Loses the compare-and-set on one key, as if another writer got there first."""

    def __init__(self, losing_key):
        super().__init__()
        self.losing_key = losing_key

    def _write(self, key, raw, expected_version):
        if key == self.losing_key:
            return False
        return super()._write(key, raw, expected_version)


def test_failed_write_mid_commit_restores_earlier_keys():
    storage = Storage(LosingStore("b"))
    storage.local.set("c", "old")
    with pytest.raises(ConcurrentModificationError):
        with storage.transaction() as tx:
            tx.set("a", 1)
            tx.set("c", "new")
            tx.set("b", 2)
    assert storage.get("a") is None
    assert storage.get("c") == "old"
    assert storage.local.keys() == ["c"]


def test_reads_are_copies(storage):
    storage.local.set("a", {"items": [1]})
    with storage.transaction() as tx:
        value = tx.get("a")
        value["items"].append(2)
        assert tx.get("a") == {"items": [1]}


def test_session_scope_is_separate(storage):
    with storage.transaction() as tx:
        tx.set("cart", {"s": []}, SESSION)
    assert storage.get("cart", scope=SESSION) == {"s": []}
    assert storage.get("cart") is None


def test_remove_keeps_version():
    store = MemoryKeyValueStore()
    assert store.set("k", 1)
    assert store.remove("k")
    assert store.get("k", "gone") == "gone"
    assert store.keys() == []
    assert store._read("k") == (None, 2)


def test_unserializable_value_is_not_written():
    store = MemoryKeyValueStore()
    assert store.set("k", object()) is False
    assert store.get("k") is None


def test_generate_id_format():
    assert re.fullmatch(r"order-\d{13}-[a-z0-9]{9}", generate_id("order"))
    assert generate_id("x") != generate_id("x")


def test_parse_iso_accepts_zulu_and_naive():
    assert parse_iso("2024-05-01T10:00:00Z") == parse_iso("2024-05-01T10:00:00+00:00")
    assert parse_iso("2024-05-01T10:00:00").tzinfo is not None


def test_storage_defaults_session_to_memory():
    storage = Storage(MemoryKeyValueStore())
    assert isinstance(storage.session, MemoryKeyValueStore)
    assert storage.session is not storage.local
