"""Exception taxonomy for the workflow engine."""

from __future__ import annotations

from dataclasses import dataclass


class WorkflowEngineError(Exception):
    """Base class for engine errors."""


@dataclass(eq=False, slots=True)
class LoadError(WorkflowEngineError):
    """A workflow or candidate could not be loaded; the run never started."""

    kind: str
    record_id: str
    detail: str = "not found"

    def __str__(self) -> str:
        return f"{self.kind.capitalize()} {self.detail}: {self.record_id}"


@dataclass(eq=False, slots=True)
class ActionExecutionError(WorkflowEngineError):
    """One action failed. Recorded on the execution, never aborts the run."""

    reason: str

    def __str__(self) -> str:
        return self.reason


class PersistenceError(WorkflowEngineError):
    """The record store could not write."""


class ConfigurationError(WorkflowEngineError):
    """The engine was configured with unusable settings."""
