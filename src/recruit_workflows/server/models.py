"""Pydantic models for the REST server."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class StatusChangedEvent(_ApiModel):
    candidate_id: str = Field(min_length=1)
    old_status: str | None = None
    new_status: str = Field(min_length=1)


class TagEvent(_ApiModel):
    candidate_id: str = Field(min_length=1)
    tag: str = Field(min_length=1)


class DaysInStageEvent(_ApiModel):
    candidate_id: str = Field(min_length=1)
    days_in_stage: int = Field(ge=0)


class ScoreEvent(_ApiModel):
    candidate_id: str = Field(min_length=1)
    score: float


class EventAccepted(_ApiModel):
    launched: list[str] = Field(default_factory=list)


class RunRequest(_ApiModel):
    candidate_id: str = Field(min_length=1)
    executed_by: str = "system"
