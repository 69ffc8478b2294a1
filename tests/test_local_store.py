"""
Tests for local key-value stores
================================
Covers:
- SqliteLocalStore: set/get/remove, prefix scan treats "_" literally,
  data survives reopening, closed connection raises LocalStoreError
- MemoryLocalStore: same contract

Run: pytest tests/test_local_store.py -v
"""

from __future__ import annotations

import pytest

from hydracat.db.local_store import LocalStoreError, MemoryLocalStore, SqliteLocalStore


@pytest.fixture(params=["sqlite", "memory"])
def store(request, tmp_path):
    if request.param == "memory":
        yield MemoryLocalStore()
        return
    sqlite_store = SqliteLocalStore(str(tmp_path / "local.sqlite3"))
    yield sqlite_store
    sqlite_store.close()


class TestContract:

    def test_set_get_remove(self, store):
        store.set("dailySummary_u_p_2026-03-10", '{"date": "2026-03-10"}')

        assert store.get("dailySummary_u_p_2026-03-10") == '{"date": "2026-03-10"}'

        store.remove("dailySummary_u_p_2026-03-10")
        assert store.get("dailySummary_u_p_2026-03-10") is None

    def test_set_overwrites(self, store):
        store.set("k", "one")
        store.set("k", "two")
        assert store.get("k") == "two"

    def test_remove_missing_key_is_a_no_op(self, store):
        store.remove("never-written")

    def test_keys_sorted_and_prefix_filtered(self, store):
        store.set("offlineQueue_0000000002_b", "2")
        store.set("offlineQueue_0000000001_a", "1")
        store.set("dailySummary_u_p_2026-03-10", "{}")

        assert store.keys("offlineQueue_") == ["offlineQueue_0000000001_a", "offlineQueue_0000000002_b"]
        assert len(store.keys()) == 3

    def test_underscore_in_prefix_is_literal(self, store):
        store.set("offlineQueue_1", "a")
        store.set("offlineQueueCorrupt_1", "b")

        assert store.keys("offlineQueue_") == ["offlineQueue_1"]


class TestSqlite:

    def test_data_survives_reopen(self, tmp_path):
        path = str(tmp_path / "local.sqlite3")
        first = SqliteLocalStore(path)
        first.set("offlineQueue_0000000000_x", "payload")
        first.close()

        reopened = SqliteLocalStore(path)
        assert reopened.get("offlineQueue_0000000000_x") == "payload"
        reopened.close()

    def test_closed_store_raises_local_store_error(self, tmp_path):
        store = SqliteLocalStore(str(tmp_path / "local.sqlite3"))
        store.close()

        with pytest.raises(LocalStoreError):
            store.set("k", "v")
        with pytest.raises(LocalStoreError):
            store.keys()

    def test_unopenable_path_raises(self, tmp_path):
        with pytest.raises(LocalStoreError):
            SqliteLocalStore(str(tmp_path / "missing-dir" / "local.sqlite3"))
