"""Engine composition."""

from recruit_workflows.core.engine import WorkflowEngine

__all__ = ["WorkflowEngine"]
