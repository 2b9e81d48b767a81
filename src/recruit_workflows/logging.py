"""Structured logging for workflow runs.

Log lines are JSON objects. The ids that correlate a run (`execution_id`,
`workflow_id`, `candidate_id`) are top-level fields; any other `extra=`
context is nested under `extra`.

`run_context` binds those ids for the current thread, so records emitted
deeper down (action handlers, email and webhook clients) carry them without
every call site passing them along.
"""

from __future__ import annotations

import contextvars
import json
import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any

CORRELATION_FIELDS = ("execution_id", "workflow_id", "candidate_id")

# Attributes every LogRecord has; anything else on a record came from `extra=`.
_STANDARD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}

_run_ids: contextvars.ContextVar[dict[str, str]] = contextvars.ContextVar(
    "workflow_run_ids", default={}
)


@contextmanager
def run_context(**ids: str | None) -> Iterator[None]:
    """Bind correlation ids to log records emitted inside the block."""

    bound = {**_run_ids.get(), **{k: v for k, v in ids.items() if v is not None}}
    token = _run_ids.set(bound)
    try:
        yield
    finally:
        _run_ids.reset(token)


class RunContextFilter(logging.Filter):
    """Copies ids bound by `run_context` onto records that lack them."""

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in _run_ids.get().items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # noqa: A003
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }

        extra: dict[str, Any] = {}
        for key, value in record.__dict__.items():
            if key in _STANDARD_ATTRS or key.startswith("_"):
                continue
            if key in CORRELATION_FIELDS:
                payload[key] = value
            else:
                extra[key] = value
        if extra:
            payload["extra"] = extra

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging(level: str) -> None:
    """Send JSON run logs to stdout at `level`, replacing existing handlers."""

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(JsonFormatter())
    handler.addFilter(RunContextFilter())

    root.addHandler(handler)
    root.setLevel(level.upper())

    # requests/urllib3 connection chatter is noise next to webhook and email logs.
    logging.getLogger("urllib3").setLevel(max(root.level, logging.WARNING))
