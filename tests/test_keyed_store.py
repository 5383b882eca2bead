"""
Tests for tw_stock_pilot/storage/keyed_store.py.
"""

from pathlib import Path
from typing import Iterator

import pytest

from tw_stock_pilot.storage.keyed_store import KeyedStore, KeyedStoreError


@pytest.fixture
def db_path(tmp_path: Path) -> str:
    return str(tmp_path / "sub" / "store.db")


@pytest.fixture
def store(db_path: str) -> Iterator[KeyedStore]:
    s = KeyedStore(db_path)
    yield s
    s.close()


class TestKeyedStore:
    """get / set / delete / keys."""

    def test_creates_parent_directory(self, store: KeyedStore, db_path: str) -> None:
        assert Path(db_path).exists()

    def test_missing_key_returns_default(self, store: KeyedStore) -> None:
        assert store.get("nope") is None
        assert store.get("nope", default=[]) == []

    def test_set_and_get(self, store: KeyedStore) -> None:
        store.set("watchlist", {"symbols": ["2330", "2317"]})
        assert store.get("watchlist") == {"symbols": ["2330", "2317"]}

    def test_unicode_value(self, store: KeyedStore) -> None:
        store.set("lesson", "投資需要耐心與紀律。")
        assert store.get("lesson") == "投資需要耐心與紀律。"

    def test_overwrite(self, store: KeyedStore) -> None:
        store.set("k", 1)
        store.set("k", 2)
        assert store.get("k") == 2

    def test_delete(self, store: KeyedStore) -> None:
        store.set("k", 1)
        assert store.delete("k") is True
        assert store.delete("k") is False
        assert store.get("k") is None

    def test_keys_with_prefix(self, store: KeyedStore) -> None:
        for key in ("gemini.model", "gemini.key", "watchlist"):
            store.set(key, True)
        assert store.keys("gemini.") == ["gemini.key", "gemini.model"]
        assert store.keys() == ["gemini.key", "gemini.model", "watchlist"]

    def test_not_serializable_raises(self, store: KeyedStore) -> None:
        with pytest.raises(KeyedStoreError):
            store.set("bad", {1, 2, 3})

    def test_corrupt_value_raises(self, store: KeyedStore) -> None:
        store._conn.execute(
            "INSERT INTO kv (key, value, updated_at) VALUES ('bad', '{not json', '')"
        )
        with pytest.raises(KeyedStoreError):
            store.get("bad")

    def test_persists_across_connections(self, db_path: str) -> None:
        with KeyedStore(db_path) as first:
            first.set("k", {"a": 1})
        with KeyedStore(db_path) as second:
            assert second.get("k") == {"a": 1}

    def test_in_memory(self) -> None:
        with KeyedStore(":memory:") as s:
            s.set("k", [1, 2])
            assert s.get("k") == [1, 2]
