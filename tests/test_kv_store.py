"""
tests/test_kv_store.py
SQLite JSON document store.
"""

import sqlite3

import pytest

from otpshield.store.kv_store import KeyValueStore, StorageError


class TestKeyValueStore:

    def test_round_trip(self, tmp_path):
        with KeyValueStore(tmp_path / "kv.db") as kv:
            kv.set_json("otpshield:trust_scores", {"HDFCBK": {"score": 70.0}})
            assert kv.get_json("otpshield:trust_scores") == {"HDFCBK": {"score": 70.0}}

    def test_missing_key_returns_default(self, tmp_path):
        with KeyValueStore(tmp_path / "kv.db") as kv:
            assert kv.get_json("nope") is None
            assert kv.get_json("nope", {}) == {}

    def test_overwrite_replaces_document(self, tmp_path):
        with KeyValueStore(tmp_path / "kv.db") as kv:
            kv.set_json("k", [1])
            kv.set_json("k", [2, 3])
            assert kv.get_json("k") == [2, 3]

    def test_documents_survive_reopen(self, tmp_path):
        db = tmp_path / "kv.db"
        with KeyValueStore(db) as kv:
            kv.set_json("k", {"a": 1})
        with KeyValueStore(db) as kv:
            assert kv.get_json("k") == {"a": 1}

    def test_memory_store(self):
        with KeyValueStore(":memory:") as kv:
            kv.set_json("k", "v")
            assert kv.get_json("k") == "v"

    def test_open_is_idempotent_and_close_is_safe(self, tmp_path):
        kv = KeyValueStore(tmp_path / "kv.db")
        assert kv.open() is kv.open()
        assert kv.is_open
        kv.close()
        kv.close()
        assert not kv.is_open

    def test_unopened_store_raises(self, tmp_path):
        kv = KeyValueStore(tmp_path / "kv.db")
        with pytest.raises(StorageError):
            kv.get_json("k")
        with pytest.raises(StorageError):
            kv.set_json("k", 1)

    def test_unencodable_value_raises(self, tmp_path):
        with KeyValueStore(tmp_path / "kv.db") as kv:
            with pytest.raises(StorageError):
                kv.set_json("k", {"bad": object()})

    def test_corrupt_document_raises(self, tmp_path):
        db = tmp_path / "kv.db"
        with KeyValueStore(db):
            pass
        conn = sqlite3.connect(str(db))
        conn.execute(
            "INSERT INTO kv_store (key, value, updated_at) VALUES (?, ?, ?)",
            ("k", "{not json", "2024-01-01T00:00:00+00:00"),
        )
        conn.commit()
        conn.close()
        with KeyValueStore(db) as kv:
            with pytest.raises(StorageError):
                kv.get_json("k")

    def test_unopenable_path_raises(self, tmp_path):
        kv = KeyValueStore(tmp_path / "missing" / "dir" / "kv.db")
        with pytest.raises(StorageError):
            kv.open()
        assert not kv.is_open
