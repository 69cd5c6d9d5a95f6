"""Tests for the persisted grant store and its base-hash guard."""

from __future__ import annotations

import hashlib
import itertools
import json
import stat
import sys
from pathlib import Path

import pytest

from trustgate.approvals.store import ToolApprovalsStore, hash_raw, normalize_file
from trustgate.approvals.types import ToolApprovalsConflictError, ToolApprovalsFile
from conftest import FakeClock


@pytest.fixture()
def store(state_dir: Path, clock: FakeClock) -> ToolApprovalsStore:
    ids = itertools.count(1)
    return ToolApprovalsStore(
        state_dir / "tool-approvals.json",
        now_ms=clock,
        id_factory=lambda: f"entry-{next(ids)}",
    )


def _file(*entries: dict[str, object]) -> dict[str, object]:
    return {"version": 1, "entries": list(entries)}


def test_hash_of_missing_file_is_hash_of_empty_string() -> None:
    assert hash_raw(None) == hashlib.sha256(b"").hexdigest()


def test_missing_file_snapshot(store: ToolApprovalsStore) -> None:
    snapshot = store.read_snapshot()
    assert snapshot.exists is False
    assert snapshot.raw is None
    assert snapshot.file == ToolApprovalsFile()


def test_get_creates_normalized_file(store: ToolApprovalsStore) -> None:
    snapshot = store.get()
    assert snapshot.exists is True
    assert snapshot.to_dict()["file"] == {"version": 1}
    assert snapshot.hash == hashlib.sha256(store.path.read_bytes()).hexdigest()


@pytest.mark.skipif(sys.platform.startswith("win"), reason="POSIX permissions")
def test_file_is_owner_only(store: ToolApprovalsStore) -> None:
    store.get()
    assert stat.S_IMODE(store.path.stat().st_mode) == 0o600


class TestSet:
    def test_set_without_hash_allowed_when_file_missing(self, store: ToolApprovalsStore) -> None:
        entry = {"toolGroup": "fs.read", "pattern": "/a/**", "createdAtMs": 5}
        snapshot = store.set(_file(entry))
        assert snapshot.file.entries[0].id == "entry-1"

    def test_set_requires_hash_when_file_exists(self, store: ToolApprovalsStore) -> None:
        store.get()
        with pytest.raises(ToolApprovalsConflictError) as exc_info:
            store.set(_file())
        assert exc_info.value.code == "base_hash_required"

    def test_stale_hash_rejected_and_file_untouched(self, store: ToolApprovalsStore) -> None:
        first = store.get()
        entry = {"toolGroup": "fs.write", "pattern": "/w/**", "createdAtMs": 1}
        store.set(_file(entry), first.hash)
        before = store.path.read_text()

        with pytest.raises(ToolApprovalsConflictError) as exc_info:
            store.set(_file(), first.hash)
        assert exc_info.value.code == "stale_base_hash"
        assert store.path.read_text() == before

    def test_matching_hash_replaces(self, store: ToolApprovalsStore) -> None:
        current = store.get()
        entry = {"id": "keep", "toolGroup": "browser.read", "pattern": "x", "createdAtMs": 2}
        updated = store.set(_file(entry), current.hash)
        assert [e.id for e in updated.file.entries] == ["keep"]
        assert json.loads(store.path.read_text())["entries"][0]["id"] == "keep"


class TestNormalization:
    def test_invalid_entries_are_dropped(self) -> None:
        file = normalize_file(
            _file(
                {"toolGroup": "fs.exec", "pattern": "/a", "createdAtMs": 1},
                {"toolGroup": "fs.read", "pattern": "  ", "createdAtMs": 1},
                {"toolGroup": "fs.read", "pattern": "/b"},
                {"toolGroup": "fs.read", "pattern": "/c", "createdAtMs": -4},
                "not-an-entry",
                {"id": "ok", "toolGroup": "fs.read", "pattern": " /d ", "createdAtMs": 7},
            )
        )
        assert [(e.id, e.pattern) for e in file.entries] == [("ok", "/d")]

    def test_unknown_version_loads_empty(self) -> None:
        entry = {"toolGroup": "fs.read", "pattern": "/a", "createdAtMs": 1}
        assert normalize_file({"version": 2, "entries": [entry]}).entries == ()

    def test_corrupt_json_reads_as_empty(self, store: ToolApprovalsStore) -> None:
        store.path.write_text("{oops")
        snapshot = store.read_snapshot()
        assert snapshot.exists is True
        assert snapshot.file.entries == ()


class TestEntries:
    def test_add_entry_is_deduplicated(
        self, store: ToolApprovalsStore, clock: FakeClock
    ) -> None:
        file = store.add_entry(ToolApprovalsFile(), "fs.read", "/a/**", last_example="read a")
        again = store.add_entry(file, "fs.read", " /a/** ")
        assert again == file
        entry = file.entries[0]
        assert entry.created_at_ms == clock.now
        assert entry.last_used_at_ms == clock.now
        assert entry.last_example == "read a"

    def test_same_pattern_in_other_group_is_new(self, store: ToolApprovalsStore) -> None:
        file = store.add_entry(ToolApprovalsFile(), "fs.read", "/a/**")
        file = store.add_entry(file, "fs.write", "/a/**")
        assert len(file.entries) == 2

    def test_find_match_respects_group(self, store: ToolApprovalsStore) -> None:
        file = store.add_entry(ToolApprovalsFile(), "fs.read", "/proj/**")
        assert store.find_match(file, "fs.read", "/proj/src/main.py") is not None
        assert store.find_match(file, "fs.write", "/proj/src/main.py") is None

    def test_record_use_updates_only_listed_entries(
        self, store: ToolApprovalsStore, clock: FakeClock
    ) -> None:
        file = store.add_entry(ToolApprovalsFile(), "fs.read", "/a/**")
        file = store.add_entry(file, "fs.read", "/b/**")
        clock.advance(1000)
        used = store.record_use(file, [file.entries[1].id], last_example="cat b")
        assert used.entries[0] == file.entries[0]
        assert used.entries[1].last_used_at_ms == clock.now
        assert used.entries[1].last_example == "cat b"

    def test_replace_if_unchanged_detects_conflict(self, store: ToolApprovalsStore) -> None:
        snapshot = store.get()
        written = store.replace_if_unchanged(
            store.add_entry(snapshot.file, "fs.read", "/other/**"), snapshot.hash
        )
        assert [e.pattern for e in written.file.entries] == ["/other/**"]
        with pytest.raises(ToolApprovalsConflictError):
            store.replace_if_unchanged(ToolApprovalsFile(), snapshot.hash)

    def test_remove_entry(self, store: ToolApprovalsStore) -> None:
        snapshot = store.get()
        file = store.add_entry(snapshot.file, "fs.read", "/a/**")
        store.replace_if_unchanged(file, snapshot.hash)
        entry_id = store.load().entries[0].id
        assert store.remove_entry(entry_id) is True
        assert store.load().entries == ()
        assert store.remove_entry(entry_id) is False

    def test_remove_entry_with_stale_hash(self, store: ToolApprovalsStore) -> None:
        snapshot = store.get()
        file = store.add_entry(snapshot.file, "fs.read", "/a/**")
        store.replace_if_unchanged(file, snapshot.hash)
        with pytest.raises(ToolApprovalsConflictError):
            store.remove_entry(store.load().entries[0].id, base_hash="stale")
