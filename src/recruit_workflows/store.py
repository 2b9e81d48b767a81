"""Record store used by the engine.

The CRM owns the `candidates`, `tasks` and `email_templates` collections;
the engine owns `workflow_executions`, `deferred_actions`,
`workflow_dead_letters` and `notifications`. Both sides go through the same
small document-store interface so the engine can run against the CRM
database or, as here, a local JSON directory.

`JsonRecordStore` keeps one JSON file per collection. Every operation runs
under one re-entrant lock, which makes `update` (including counter
increments) atomic within the process.
"""

from __future__ import annotations

import json
import logging
import os
import threading
import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from recruit_workflows.errors import PersistenceError

logger = logging.getLogger(__name__)

WORKFLOWS = "workflows"
EXECUTIONS = "workflow_executions"
CANDIDATES = "candidates"
TASKS = "tasks"
EMAIL_TEMPLATES = "email_templates"
USERS = "users"
NOTIFICATIONS = "notifications"
DEFERRED_ACTIONS = "deferred_actions"
DEAD_LETTERS = "workflow_dead_letters"

Record = dict[str, Any]


class RecordStore(Protocol):
    def get(self, collection: str, record_id: str) -> Record | None: ...

    def find(
        self, collection: str, filters: Mapping[str, object] | None = None
    ) -> list[Record]: ...

    def insert(self, collection: str, record: Mapping[str, Any]) -> Record: ...

    def update(
        self,
        collection: str,
        record_id: str,
        *,
        set_fields: Mapping[str, Any] | None = None,
        increment: Mapping[str, int] | None = None,
        append: Mapping[str, Any] | None = None,
        add_to_set: Mapping[str, Any] | None = None,
        remove: Mapping[str, Any] | None = None,
    ) -> Record: ...


_MISSING = object()


def _lookup(record: Mapping[str, Any], dotted: str) -> object:
    current: object = record
    for part in dotted.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return _MISSING
        current = current[part]
    return current


def matches_filters(record: Mapping[str, Any], filters: Mapping[str, object]) -> bool:
    """Equality match on (possibly dotted) field paths."""

    return all(_lookup(record, key) == expected for key, expected in filters.items())


@dataclass
class JsonRecordStore:
    root: Path

    def __post_init__(self) -> None:
        self._lock = threading.RLock()

    def _path(self, collection: str) -> Path:
        return self.root / f"{collection}.json"

    def _load_unlocked(self, collection: str) -> list[Record]:
        path = self._path(collection)
        if not path.exists():
            return []
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            raise PersistenceError(f"Failed to read collection {collection!r}: {e}") from e
        try:
            raw = json.loads(text)
        except json.JSONDecodeError:
            logger.warning(
                "Collection file is not valid JSON; treating as empty",
                extra={"path": str(path)},
            )
            return []
        if not isinstance(raw, list):
            logger.warning(
                "Collection file has unexpected shape; treating as empty",
                extra={"path": str(path)},
            )
            return []
        return [item for item in raw if isinstance(item, dict)]

    def _save_unlocked(self, collection: str, records: list[Record]) -> None:
        path = self._path(collection)
        tmp = path.with_suffix(".json.tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(
                json.dumps(records, indent=2, ensure_ascii=False) + "\n", encoding="utf-8"
            )
            os.replace(tmp, path)
        except OSError as e:
            raise PersistenceError(f"Failed to write collection {collection!r}: {e}") from e

    def get(self, collection: str, record_id: str) -> Record | None:
        with self._lock:
            for record in self._load_unlocked(collection):
                if record.get("id") == record_id:
                    return record
            return None

    def find(self, collection: str, filters: Mapping[str, object] | None = None) -> list[Record]:
        with self._lock:
            records = self._load_unlocked(collection)
        if not filters:
            return records
        return [r for r in records if matches_filters(r, filters)]

    def insert(self, collection: str, record: Mapping[str, Any]) -> Record:
        with self._lock:
            records = self._load_unlocked(collection)
            new = dict(record)
            new.setdefault("id", uuid.uuid4().hex)
            if any(r.get("id") == new["id"] for r in records):
                raise ValueError(f"Record {new['id']!r} already exists in {collection!r}")
            records.append(new)
            self._save_unlocked(collection, records)
            return new

    def update(
        self,
        collection: str,
        record_id: str,
        *,
        set_fields: Mapping[str, Any] | None = None,
        increment: Mapping[str, int] | None = None,
        append: Mapping[str, Any] | None = None,
        add_to_set: Mapping[str, Any] | None = None,
        remove: Mapping[str, Any] | None = None,
    ) -> Record:
        with self._lock:
            records = self._load_unlocked(collection)
            for idx, existing in enumerate(records):
                if existing.get("id") != record_id:
                    continue
                merged = dict(existing)
                merged.update(set_fields or {})
                for key, delta in (increment or {}).items():
                    merged[key] = int(merged.get(key) or 0) + delta
                for key, item in (append or {}).items():
                    merged[key] = [*(merged.get(key) or []), item]
                for key, item in (add_to_set or {}).items():
                    current = list(merged.get(key) or [])
                    if item not in current:
                        current.append(item)
                    merged[key] = current
                for key, item in (remove or {}).items():
                    merged[key] = [v for v in (merged.get(key) or []) if v != item]
                records[idx] = merged
                self._save_unlocked(collection, records)
                return merged
            raise KeyError(record_id)
