"""Tests for the SQLite key/value DocumentStore."""

import sqlite3

import pytest

from wellkeep.document_store import CORRUPT_SUFFIX, DocumentStore
from wellkeep.errors import CorruptionError, IOFailure
from wellkeep.protocol import DocumentStoreProtocol


def _tamper(db_path, key, value: bytes):
    """Overwrite a value behind the store's back (checksum left stale)."""
    conn = sqlite3.connect(str(db_path))
    conn.execute("UPDATE entries SET value = ? WHERE key = ?", (value, key))
    conn.commit()
    conn.close()


class TestBasicOperations:

    def test_satisfies_protocol(self, store):
        assert isinstance(store, DocumentStoreProtocol)

    def test_get_missing_returns_none(self, store):
        assert store.get("goals") is None
        assert not store.exists("goals")

    def test_put_then_get(self, store):
        store.put("goals", b'[{"id":"g1"}]')
        assert store.get("goals") == b'[{"id":"g1"}]'
        assert store.exists("goals")

    def test_str_values_are_utf8(self, store):
        store.put("notes", "café")
        assert store.get("notes") == "café".encode("utf-8")

    def test_put_replaces(self, store):
        store.put("k", b"one")
        store.put("k", b"two")
        assert store.get("k") == b"two"

    def test_delete(self, store):
        store.put("k", b"v")
        assert store.delete("k") is True
        assert store.get("k") is None
        assert store.delete("k") is False

    def test_keys_with_prefix(self, store):
        for key in ("goals", "_staging/a/goals", "_staging/a/habits", "habits"):
            store.put(key, b"[]")
        assert store.keys("_staging/") == ["_staging/a/goals", "_staging/a/habits"]
        assert store.keys() == sorted(["goals", "_staging/a/goals", "_staging/a/habits", "habits"])

    def test_values_survive_reopen(self, tmp_path):
        path = tmp_path / "persist.db"
        with DocumentStore(path) as s:
            s.put("goals", b"[1,2,3]")
        with DocumentStore(path) as s:
            assert s.get("goals") == b"[1,2,3]"

    def test_closed_store_raises_io_failure(self, tmp_path):
        s = DocumentStore(tmp_path / "closed.db")
        s.close()
        with pytest.raises(IOFailure):
            s.get("goals")
        with pytest.raises(IOFailure):
            s.put("goals", b"[]")


class TestCorruption:

    def test_checksum_mismatch_is_scoped_to_key(self, store):
        store.put("goals", b'[{"id":"g1"}]')
        store.put("habits", b'[{"id":"h1"}]')
        _tamper(store.path, "goals", b"\x00garbage")

        with pytest.raises(CorruptionError) as exc_info:
            store.get("goals")
        assert exc_info.value.key == "goals"
        # Other keys stay readable
        assert store.get("habits") == b'[{"id":"h1"}]'

    def test_quarantine_preserves_bytes(self, store):
        store.put("goals", b"original")
        _tamper(store.path, "goals", b"tampered")

        target = store.quarantine("goals")

        assert target == "goals" + CORRUPT_SUFFIX
        assert not store.exists("goals")
        assert store.exists(target)

    def test_quarantine_missing_key(self, store):
        assert store.quarantine("nothing") is None


class TestPromote:

    def test_promote_swaps_all_keys(self, store):
        store.put("goals", b"old-goals")
        store.put("habits", b"old-habits")
        store.put("_staging/t/goals", b"new-goals")
        store.put("_staging/t/habits", b"new-habits")

        store.promote({"_staging/t/goals": "goals", "_staging/t/habits": "habits"})

        assert store.get("goals") == b"new-goals"
        assert store.get("habits") == b"new-habits"
        assert store.keys("_staging/") == []

    def test_promote_missing_staged_key_changes_nothing(self, store):
        store.put("goals", b"old-goals")
        store.put("habits", b"old-habits")
        store.put("_staging/t/goals", b"new-goals")

        with pytest.raises(IOFailure):
            store.promote({"_staging/t/goals": "goals", "_staging/t/habits": "habits"})

        assert store.get("goals") == b"old-goals"
        assert store.get("habits") == b"old-habits"
        assert store.get("_staging/t/goals") == b"new-goals"

    def test_promote_empty_mapping_is_noop(self, store):
        store.put("goals", b"x")
        store.promote({})
        assert store.get("goals") == b"x"
