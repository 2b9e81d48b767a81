"""Workflow automation domain.

This package holds:
- Domain events raised by the CRM (`events`)
- Trigger matching (`triggers`)
- Action handlers (`actions`)
- The per-run execution state machine (`orchestrator`)
- Admission control and fire-and-forget launching (`gating`, `dispatcher`)
- Time-based and deferred jobs (`scanner`, `deferred`)
"""

from recruit_workflows.workflow.actions import ActionExecutor, ActionOutcome
from recruit_workflows.workflow.dispatcher import EventDispatcher
from recruit_workflows.workflow.events import EventContext
from recruit_workflows.workflow.gating import ExecutionGate, GateDecision
from recruit_workflows.workflow.orchestrator import ExecutionOrchestrator
from recruit_workflows.workflow.triggers import matches

__all__ = [
    "ActionExecutor",
    "ActionOutcome",
    "EventContext",
    "EventDispatcher",
    "ExecutionGate",
    "ExecutionOrchestrator",
    "GateDecision",
    "matches",
]
