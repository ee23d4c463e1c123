from datetime import datetime, timedelta, timezone

import pytest

from hrflow.persistence import InMemoryWorkflowRepository
from hrflow.persistence.models import InstanceStatus, WorkflowInstance, WorkflowType
from hrflow.stats import StatisticsAggregator

START = datetime(2026, 2, 1, 9, 0, tzinfo=timezone.utc)


def _instance(status, hours=None, type=WorkflowType.RECRUITMENT, company_id="acme"):
    return WorkflowInstance(
        company_id=company_id,
        template_id=f"{type.value}-default",
        type=type,
        name="x",
        initiator_id="u-hr",
        current_step_index=1,
        status=status,
        start_date=START,
        end_date=START + timedelta(hours=hours) if hours is not None else None,
    )


@pytest.mark.asyncio
async def test_recruitment_stats_average_and_rate():
    repo = InMemoryWorkflowRepository()
    for hours in (2, 4, 6):
        await repo.create_instance(_instance(InstanceStatus.COMPLETED, hours))
    await repo.create_instance(_instance(InstanceStatus.CANCELLED, 1))
    # other tenants and types are ignored
    await repo.create_instance(_instance(InstanceStatus.COMPLETED, 100, company_id="globex"))
    await repo.create_instance(_instance(InstanceStatus.ACTIVE, type=WorkflowType.PROMOTION))

    stats = await StatisticsAggregator(repo).compute("acme", WorkflowType.RECRUITMENT, "success_rate")

    assert stats.total == 4
    assert stats.avg_time == timedelta(hours=4)
    assert stats.rate == 75.0
    assert stats.by_status[InstanceStatus.COMPLETED] == 3
    assert stats.by_status[InstanceStatus.CANCELLED] == 1
    assert stats.by_status[InstanceStatus.PAUSED] == 0
    assert stats.as_dict()["success_rate"] == 75.0
    assert stats.as_dict()["avg_time_seconds"] == 4 * 3600


@pytest.mark.asyncio
async def test_stats_for_empty_tenant():
    stats = await StatisticsAggregator(InMemoryWorkflowRepository()).compute(
        "acme", WorkflowType.RESIGNATION, "approval_rate"
    )

    assert stats.total == 0
    assert stats.avg_time == timedelta(0)
    assert stats.rate == 0
    assert set(stats.by_status) == set(InstanceStatus)
    assert all(count == 0 for count in stats.by_status.values())


@pytest.mark.asyncio
async def test_completed_without_end_date_counts_for_rate_only():
    repo = InMemoryWorkflowRepository()
    await repo.create_instance(_instance(InstanceStatus.COMPLETED, 3))
    await repo.create_instance(_instance(InstanceStatus.COMPLETED))

    stats = await StatisticsAggregator(repo).compute("acme", WorkflowType.RECRUITMENT)

    assert stats.avg_time == timedelta(hours=3)
    assert stats.rate == 100.0
    assert stats.rate_name == "completion_rate"
