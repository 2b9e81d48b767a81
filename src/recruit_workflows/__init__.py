"""Recruitment CRM workflow automation engine.

Reacts to candidate events (status changes, tag edits, time in stage, score
thresholds) by running declarative workflows:
- trigger matching and rate/schedule gating
- sequential action execution with failure isolation
- a persisted audit record for every run
"""

__version__ = "0.1.0"

from recruit_workflows.config import EngineSettings

__all__ = ["__version__", "EngineSettings"]
