"""Structured implementation plan submitted by the planner role."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class ImplementationStep(BaseModel):
    """One ordered step of a plan."""

    model_config = ConfigDict(frozen=True)

    description: str = Field(min_length=5, description="What this step accomplishes")
    files: list[str] | None = Field(default=None, description="Files to create or modify")
    commands: list[str] | None = Field(default=None, description="Commands to run")


class ImplementationPlan(BaseModel):
    """Plan for one memento iteration.

    Field names follow the wire format the planner submits
    (``validationCriteria``, ``isComplete``, ``completionMessage``) while the
    Python attributes stay snake_case.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    summary: str = Field(min_length=10)
    steps: list[ImplementationStep] = Field(min_length=1)
    validation_criteria: list[str] = Field(alias="validationCriteria", min_length=1)
    is_complete: bool = Field(alias="isComplete")
    completion_message: str | None = Field(default=None, alias="completionMessage")

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)
