"""Data models for persisted workflow state."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class WorkflowType(str, Enum):
    RECRUITMENT = "recruitment"
    ONBOARDING = "onboarding"
    PROMOTION = "promotion"
    TRANSFER = "transfer"
    SALARY_ADJUSTMENT = "salary_adjustment"
    PERFORMANCE = "performance"
    RESIGNATION = "resignation"
    TRAINING = "training"
    ATTENDANCE = "attendance"
    POINTS = "points"
    CONTRACT_RENEWAL = "contract_renewal"
    PROBATION_ASSESSMENT = "probation_assessment"
    INTERVIEW = "interview"
    EXIT_INTERVIEW = "exit_interview"
    SALARY_CALCULATION = "salary_calculation"


class InstanceStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    ERROR = "error"


TERMINAL_STATUSES = frozenset({InstanceStatus.COMPLETED, InstanceStatus.CANCELLED})

ALLOWED_TRANSITIONS: dict[InstanceStatus, frozenset[InstanceStatus]] = {
    InstanceStatus.DRAFT: frozenset({InstanceStatus.ACTIVE}),
    InstanceStatus.ACTIVE: frozenset(
        {
            InstanceStatus.PAUSED,
            InstanceStatus.COMPLETED,
            InstanceStatus.CANCELLED,
            InstanceStatus.ERROR,
        }
    ),
    InstanceStatus.PAUSED: frozenset({InstanceStatus.ACTIVE}),
    InstanceStatus.COMPLETED: frozenset(),
    InstanceStatus.CANCELLED: frozenset(),
    InstanceStatus.ERROR: frozenset(),
}


class StepStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class StepType(str, Enum):
    APPROVAL = "approval"
    TASK = "task"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class HistoryAction(str, Enum):
    CREATED = "created"
    STEP_STARTED = "step_started"
    STEP_COMPLETED = "step_completed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    PAUSED = "paused"
    RESUMED = "resumed"


class StepEffect(str, Enum):
    """Business side effect fired when a step is completed."""

    NONE = "none"
    CANDIDATE_SCREENING = "candidate_screening"
    CANDIDATE_INTERVIEWING = "candidate_interviewing"
    CANDIDATE_OFFERED = "candidate_offered"
    RECORD_SELF_SCORE = "record_self_score"
    RECORD_REVIEWER_SCORE = "record_reviewer_score"
    CONFIRM_PERFORMANCE_RESULT = "confirm_performance_result"
    RECORD_RESIGNATION_APPROVAL = "record_resignation_approval"
    APPLY_PROMOTION = "apply_promotion"
    APPLY_TRANSFER = "apply_transfer"
    APPLY_SALARY_ADJUSTMENT = "apply_salary_adjustment"
    RECORD_TRAINING_RESULT = "record_training_result"
    PUBLISH_TRAINING_COURSE = "publish_training_course"
    APPROVE_ATTENDANCE_REQUEST = "approve_attendance_request"
    GRANT_POINTS = "grant_points"
    DEDUCT_POINTS = "deduct_points"
    APPLY_POINTS_RULE_CHANGE = "apply_points_rule_change"


class EntityKind(str, Enum):
    """Business records workflows read and mutate."""

    CANDIDATE = "candidate"
    JOB = "job"
    EMPLOYEE = "employee"
    POSITION = "position"
    DEPARTMENT = "department"
    PERFORMANCE_CYCLE = "performance_cycle"
    PERFORMANCE_RECORD = "performance_record"
    RESIGNATION = "resignation"
    TRAINING_COURSE = "training_course"
    TRAINING_RECORD = "training_record"
    LEAVE_REQUEST = "leave_request"
    OVERTIME_REQUEST = "overtime_request"
    POINTS_REQUEST = "points_request"
    POINTS_EXCHANGE = "points_exchange"
    POINTS_RULE = "points_rule"


class UserAssignee(BaseModel):
    kind: Literal["user"] = "user"
    user_id: str


class RoleAssignee(BaseModel):
    kind: Literal["role"] = "role"
    role: str


Assignee = Annotated[Union[UserAssignee, RoleAssignee], Field(discriminator="kind")]


class WorkflowStep(BaseModel):
    """One ordered unit of work inside an instance."""

    id: str = Field(default_factory=new_id)
    name: str
    type: StepType = StepType.TASK
    description: str = ""
    assignee: Assignee
    effect: StepEffect = StepEffect.NONE
    status: StepStatus = StepStatus.PENDING
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    result: Optional[str] = None
    comments: Optional[str] = None
    form_data: Optional[dict[str, Any]] = None

    @property
    def assignee_id(self) -> Optional[str]:
        return self.assignee.user_id if isinstance(self.assignee, UserAssignee) else None

    @property
    def assignee_role(self) -> Optional[str]:
        return self.assignee.role if isinstance(self.assignee, RoleAssignee) else None

    def is_assigned_to(self, user_id: Optional[str] = None, roles: tuple[str, ...] = ()) -> bool:
        if user_id is not None and self.assignee_id == user_id:
            return True
        return self.assignee_role is not None and self.assignee_role in roles


class WorkflowInstance(BaseModel):
    """Persisted workflow instance.

    ``current_step_index`` is the 1-based position of the active step, so a
    freshly started instance has index 1 with ``steps[0]`` in progress.
    Completing the last step leaves the index at ``len(steps)``.
    """

    id: str = Field(default_factory=new_id)
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
    current_step_index: int = 0
    status: InstanceStatus = InstanceStatus.DRAFT
    priority: Priority = Priority.MEDIUM
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    cancel_reason: Optional[str] = None
    version: int = 1
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def current_step(self) -> Optional[WorkflowStep]:
        if 1 <= self.current_step_index <= len(self.steps):
            return self.steps[self.current_step_index - 1]
        return None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class HistoryEntry(BaseModel):
    """Immutable audit record of one engine event."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    company_id: str
    instance_id: str
    instance_name: str = ""
    template_id: str = ""
    type: WorkflowType
    action: HistoryAction
    actor_id: str
    actor_name: str = ""
    actor_role: str = ""
    step_id: Optional[str] = None
    step_name: Optional[str] = None
    description: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)


class InstanceFilters(BaseModel):
    company_id: str
    type: Optional[WorkflowType] = None
    template_id: Optional[str] = None
    related_entity_id: Optional[str] = None
    status: Optional[InstanceStatus] = None
    limit: Optional[int] = Field(default=None, ge=1)
    skip: int = Field(default=0, ge=0)


class HistoryFilters(BaseModel):
    company_id: str
    instance_id: Optional[str] = None
    type: Optional[WorkflowType] = None
