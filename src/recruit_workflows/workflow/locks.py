from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field


@dataclass
class _Entry:
    lock: threading.Lock = field(default_factory=threading.Lock)
    holders: int = 0


class CandidateLocks:
    """One mutex per candidate id.

    Runs touching the same candidate are serialized; runs for different
    candidates proceed in parallel. Entries are dropped once nobody holds or
    waits on them.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._entries: dict[str, _Entry] = {}

    @contextmanager
    def hold(self, candidate_id: str) -> Iterator[None]:
        with self._guard:
            entry = self._entries.setdefault(candidate_id, _Entry())
            entry.holders += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._guard:
                entry.holders -= 1
                if entry.holders == 0:
                    self._entries.pop(candidate_id, None)

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)
