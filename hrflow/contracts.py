"""Input contracts for engine and adapter operations."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, model_validator

from .persistence.models import (
    HistoryFilters,
    InstanceFilters,
    InstanceStatus,
    Priority,
    RoleAssignee,
    StepEffect,
    StepType,
    UserAssignee,
    WorkflowStep,
    WorkflowType,
)


class Actor(BaseModel):
    """User acting on a workflow, scoped to one tenant."""

    id: str
    name: str = ""
    role: str = ""
    company_id: str


class StepDefinition(BaseModel):
    """Blueprint for one step of a step graph.

    Exactly one of ``assignee_id`` and ``assignee_role`` must be given.
    ``effect`` is optional; adapters resolve a missing effect from their
    default catalogue when the graph is built.
    """

    id: Optional[str] = None
    name: str
    type: StepType = StepType.TASK
    description: str = ""
    assignee_id: Optional[str] = None
    assignee_role: Optional[str] = None
    effect: Optional[StepEffect] = None

    @model_validator(mode="after")
    def _check_assignee(self) -> "StepDefinition":
        if (self.assignee_id is None) == (self.assignee_role is None):
            raise ValueError(
                f"Step '{self.name}' needs exactly one of assignee_id or assignee_role"
            )
        return self

    @classmethod
    def for_user_or_role(
        cls, user_id: Optional[str], fallback_role: str, **kwargs: Any
    ) -> "StepDefinition":
        """Assign to ``user_id`` when known, otherwise to ``fallback_role``."""
        if user_id:
            return cls(assignee_id=user_id, **kwargs)
        return cls(assignee_role=fallback_role, **kwargs)

    def to_step(self, effect: StepEffect) -> WorkflowStep:
        assignee = (
            UserAssignee(user_id=self.assignee_id)
            if self.assignee_id is not None
            else RoleAssignee(role=self.assignee_role)
        )
        step = WorkflowStep(
            name=self.name,
            type=self.type,
            description=self.description,
            assignee=assignee,
            effect=effect,
        )
        if self.id:
            step.id = self.id
        return step


class InstanceSpec(BaseModel):
    """Fully formed instance handed to ``WorkflowManager.create_instance``."""

    company_id: str
    template_id: str
    template_name: str = ""
    type: WorkflowType
    name: str
    description: str = ""
    initiator_id: str
    initiator_name: str = ""
    related_entity_type: Optional[str] = None
    related_entity_id: Optional[str] = None
    related_entity_name: Optional[str] = None
    form_data: dict[str, Any] = Field(default_factory=dict)
    steps: list[WorkflowStep] = Field(default_factory=list)
    current_step_index: int = 1
    status: InstanceStatus = InstanceStatus.ACTIVE
    priority: Priority = Priority.MEDIUM
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class InstancePatch(BaseModel):
    """Fields ``WorkflowManager.update_instance`` may overwrite."""

    name: Optional[str] = None
    description: Optional[str] = None
    priority: Optional[Priority] = None
    form_data: Optional[dict[str, Any]] = None
    steps: Optional[list[WorkflowStep]] = None


class StepResult(BaseModel):
    """Outcome submitted by the actor of the active step."""

    step_id: str
    result: str
    comments: Optional[str] = None
    form_data: Optional[dict[str, Any]] = None
    advance_to_next: bool = True


class PerformanceScores(BaseModel):
    self_score: Optional[float] = None
    reviewer_score: Optional[float] = None
    final_score: Optional[float] = None


class PerformanceStepResult(StepResult):
    scores: Optional[PerformanceScores] = None


class TrainingScores(BaseModel):
    training_score: Optional[float] = None
    assessment_score: Optional[float] = None
    satisfaction_score: Optional[float] = None


class TrainingStepResult(StepResult):
    scores: Optional[TrainingScores] = None


class PendingStep(BaseModel):
    """Active step waiting on a user or role."""

    instance_id: str
    instance_name: str
    type: WorkflowType
    step: WorkflowStep
