"""hrflow: workflow orchestration for HR processes."""

from .adapters import (
    AttendanceWorkflowAdapter,
    EmployeeWorkflowAdapter,
    PayrollWorkflowAdapter,
    PerformanceWorkflowAdapter,
    PointsWorkflowAdapter,
    RecruitmentWorkflowAdapter,
    ResignationWorkflowAdapter,
    TrainingWorkflowAdapter,
    get_adapter,
)
from .contracts import (
    Actor,
    InstanceSpec,
    PerformanceStepResult,
    StepDefinition,
    StepResult,
    TrainingStepResult,
)
from .manager import WorkflowManager
from .persistence import get_repository
from .stats import StatisticsAggregator, WorkflowStats

__version__ = "0.1.0"
__all__ = [
    "Actor",
    "InstanceSpec",
    "StepDefinition",
    "StepResult",
    "PerformanceStepResult",
    "TrainingStepResult",
    "WorkflowManager",
    "RecruitmentWorkflowAdapter",
    "EmployeeWorkflowAdapter",
    "PerformanceWorkflowAdapter",
    "ResignationWorkflowAdapter",
    "TrainingWorkflowAdapter",
    "AttendanceWorkflowAdapter",
    "PointsWorkflowAdapter",
    "PayrollWorkflowAdapter",
    "get_adapter",
    "get_repository",
    "StatisticsAggregator",
    "WorkflowStats",
]
