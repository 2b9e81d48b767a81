"""Unit tests for the JSON record store."""

from __future__ import annotations

import threading
from pathlib import Path

import pytest

from recruit_workflows.errors import PersistenceError
from recruit_workflows.store import JsonRecordStore, matches_filters


def test_insert_assigns_id_and_persists(tmp_path: Path) -> None:
    store = JsonRecordStore(tmp_path / "state")

    created = store.insert("things", {"name": "a"})

    assert created["id"]
    reopened = JsonRecordStore(tmp_path / "state")
    assert reopened.get("things", created["id"]) == {"name": "a", "id": created["id"]}
    assert (tmp_path / "state" / "things.json").exists()


def test_insert_rejects_duplicate_ids(store: JsonRecordStore) -> None:
    store.insert("things", {"id": "x"})

    with pytest.raises(ValueError, match="already exists"):
        store.insert("things", {"id": "x"})


def test_find_with_dotted_filters(store: JsonRecordStore) -> None:
    store.insert("workflows", {"id": "a", "isActive": True, "trigger": {"type": "tag_added"}})
    store.insert("workflows", {"id": "b", "isActive": True, "trigger": {"type": "status_changed"}})
    store.insert("workflows", {"id": "c", "isActive": False, "trigger": {"type": "tag_added"}})

    found = store.find("workflows", {"isActive": True, "trigger.type": "tag_added"})

    assert [r["id"] for r in found] == ["a"]
    assert len(store.find("workflows")) == 3


def test_matches_filters_treats_missing_paths_as_mismatch() -> None:
    assert not matches_filters({"a": {}}, {"a.b": None})
    assert matches_filters({"a": {"b": None}}, {"a.b": None})


def test_update_operations(store: JsonRecordStore) -> None:
    store.insert("c", {"id": "1", "tags": ["a"], "count": 2})

    updated = store.update(
        "c",
        "1",
        set_fields={"status": "hired"},
        increment={"count": 3, "fresh": 1},
        append={"notes": {"content": "hi"}},
        add_to_set={"tags": "a"},
    )
    assert updated == {
        "id": "1",
        "tags": ["a"],
        "count": 5,
        "fresh": 1,
        "status": "hired",
        "notes": [{"content": "hi"}],
    }

    store.update("c", "1", remove={"tags": "a"}, add_to_set={"other": "z"})
    assert store.get("c", "1")["tags"] == []
    assert store.get("c", "1")["other"] == ["z"]


def test_update_missing_record_raises_key_error(store: JsonRecordStore) -> None:
    with pytest.raises(KeyError):
        store.update("c", "nope", set_fields={"x": 1})


def test_concurrent_increments_are_not_lost(store: JsonRecordStore) -> None:
    store.insert("workflows", {"id": "wf", "executionCount": 0})

    def bump() -> None:
        for _ in range(20):
            store.update("workflows", "wf", increment={"executionCount": 1})

    threads = [threading.Thread(target=bump) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert store.get("workflows", "wf")["executionCount"] == 80


def test_corrupt_collection_is_read_as_empty(state_dir: Path, store: JsonRecordStore) -> None:
    (state_dir / "broken.json").write_text("{not json", encoding="utf-8")

    assert store.find("broken") == []


def test_write_failure_becomes_persistence_error(tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("a file, not a directory", encoding="utf-8")
    store = JsonRecordStore(blocker / "state")

    with pytest.raises(PersistenceError, match="Failed to write collection"):
        store.insert("things", {"id": "x"})


def test_read_failure_becomes_persistence_error(state_dir: Path, store: JsonRecordStore) -> None:
    (state_dir / "things.json").mkdir()

    with pytest.raises(PersistenceError, match="Failed to read collection"):
        store.get("things", "x")
