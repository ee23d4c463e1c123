"""Process-specific adapters over the workflow engine."""

from ..exceptions import UnsupportedWorkflowTypeError
from ..manager import WorkflowManager
from ..persistence import EntityRepository
from ..persistence.models import WorkflowType
from .attendance import AttendanceWorkflowAdapter
from .base import WorkflowAdapter
from .employee import EmployeeWorkflowAdapter
from .payroll import PayrollWorkflowAdapter
from .performance import PerformanceWorkflowAdapter
from .points import PointsWorkflowAdapter
from .recruitment import RecruitmentWorkflowAdapter
from .resignation import ResignationWorkflowAdapter
from .training import TrainingWorkflowAdapter

ADAPTERS: tuple[type[WorkflowAdapter], ...] = (
    RecruitmentWorkflowAdapter,
    EmployeeWorkflowAdapter,
    PerformanceWorkflowAdapter,
    ResignationWorkflowAdapter,
    TrainingWorkflowAdapter,
    AttendanceWorkflowAdapter,
    PointsWorkflowAdapter,
    PayrollWorkflowAdapter,
)


def get_adapter(
    manager: WorkflowManager,
    workflow_type: WorkflowType,
    entities: EntityRepository | None = None,
) -> WorkflowAdapter:
    """Return the adapter that owns ``workflow_type``.

    Raises ``UnsupportedWorkflowTypeError`` for types only the generic
    engine handles, such as contract renewals.
    """
    for adapter_cls in ADAPTERS:
        if workflow_type in adapter_cls.workflow_types:
            return adapter_cls(manager, entities)
    raise UnsupportedWorkflowTypeError(workflow_type.value)


__all__ = [
    "WorkflowAdapter",
    "RecruitmentWorkflowAdapter",
    "EmployeeWorkflowAdapter",
    "PerformanceWorkflowAdapter",
    "ResignationWorkflowAdapter",
    "TrainingWorkflowAdapter",
    "AttendanceWorkflowAdapter",
    "PointsWorkflowAdapter",
    "PayrollWorkflowAdapter",
    "get_adapter",
]
