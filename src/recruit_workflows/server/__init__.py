"""REST server for the workflow engine (FastAPI)."""

from recruit_workflows.server.app import create_app

__all__ = ["create_app"]
