"""Per-type workflow statistics."""

from __future__ import annotations

import logging
from datetime import timedelta

from pydantic import BaseModel, Field

from .persistence import WorkflowRepository
from .persistence.models import InstanceFilters, InstanceStatus, WorkflowType

logger = logging.getLogger(__name__)


class WorkflowStats(BaseModel):
    """Aggregate view of all instances of one workflow type for a tenant.

    ``rate`` is the share of completed instances, in percent, and is reported
    under ``rate_name`` (``success_rate`` for recruitment, ``approval_rate``
    for resignations, ``completion_rate`` otherwise).
    """

    type: WorkflowType
    total: int = 0
    by_status: dict[InstanceStatus, int] = Field(
        default_factory=lambda: {status: 0 for status in InstanceStatus}
    )
    avg_time: timedelta = timedelta(0)
    rate: float = 0.0
    rate_name: str = "completion_rate"

    def as_dict(self) -> dict[str, object]:
        return {
            "type": self.type.value,
            "total": self.total,
            "by_status": {status.value: count for status, count in self.by_status.items()},
            "avg_time_seconds": self.avg_time.total_seconds(),
            self.rate_name: round(self.rate, 2),
        }


class StatisticsAggregator:
    def __init__(self, repository: WorkflowRepository):
        self._repository = repository

    async def compute(
        self,
        company_id: str,
        workflow_type: WorkflowType,
        rate_name: str = "completion_rate",
    ) -> WorkflowStats:
        instances = await self._repository.list_instances(
            InstanceFilters(company_id=company_id, type=workflow_type)
        )
        stats = WorkflowStats(type=workflow_type, total=len(instances), rate_name=rate_name)

        durations: list[timedelta] = []
        for instance in instances:
            stats.by_status[instance.status] += 1
            if (
                instance.status is InstanceStatus.COMPLETED
                and instance.start_date is not None
                and instance.end_date is not None
            ):
                durations.append(instance.end_date - instance.start_date)

        if durations:
            stats.avg_time = sum(durations, timedelta(0)) / len(durations)
        if stats.total:
            stats.rate = stats.by_status[InstanceStatus.COMPLETED] / stats.total * 100
        logger.debug(
            f"Computed {workflow_type.value} stats for company={company_id}: "
            f"total={stats.total} {rate_name}={stats.rate:.2f}"
        )
        return stats
