import pytest

from hrflow.contracts import Actor, StepResult
from hrflow.exceptions import NotApprovalStepError
from hrflow.persistence.models import (
    HistoryAction,
    HistoryFilters,
    InstanceStatus,
    Priority,
    StepType,
    WorkflowType,
)

FINANCE = Actor(id="u-fin", name="财务老张", role="finance", company_id="acme")


@pytest.mark.asyncio
async def test_create_salary_calculation_workflow(payroll, manager):
    instance = await payroll.create_salary_calculation_workflow("acme", 2026, 3, "u-hr", "HR小王")

    assert instance.type is WorkflowType.SALARY_CALCULATION
    assert instance.name == "2026年3月薪资核算"
    assert instance.related_entity_type == "salary_calculation"
    assert instance.related_entity_id == "2026-03"
    assert instance.priority is Priority.HIGH
    assert [s.name for s in instance.steps] == ["数据核对", "薪资计算", "薪资审核", "财务审批", "薪资发放", "发放确认"]
    assert instance.steps[2].type is StepType.APPROVAL
    assert instance.steps[2].assignee_role == "hr_director"
    assert instance.steps[5].assignee_role == "employee"
    assert instance.form_data["year"] == 2026
    assert instance.form_data["calculation_date"] is not None


@pytest.mark.asyncio
async def test_invalid_month(payroll):
    with pytest.raises(ValueError):
        await payroll.create_salary_calculation_workflow("acme", 2026, 13, "u-hr", "HR小王")


@pytest.mark.asyncio
async def test_payroll_run_to_completion(payroll, manager, hr_actor):
    instance = await payroll.create_salary_calculation_workflow("acme", 2026, 3, "u-hr", "HR小王")

    with pytest.raises(NotApprovalStepError):
        await payroll.approve_salary_calculation(instance.id, hr_actor)

    for _ in range(2):
        instance = await payroll.advance_payroll_step(
            instance.id, StepResult(step_id=instance.current_step.id, result="done"), hr_actor
        )
    instance = await payroll.approve_salary_calculation(instance.id, hr_actor)
    instance = await payroll.approve_salary_calculation(instance.id, FINANCE, comments="已核")
    while instance.status is InstanceStatus.ACTIVE:
        instance = await payroll.advance_payroll_step(
            instance.id, StepResult(step_id=instance.current_step.id, result="done"), hr_actor
        )

    history = await manager.get_history(HistoryFilters(company_id="acme", instance_id=instance.id))
    assert history[-1].action is HistoryAction.COMPLETED
    assert history[-1].description == "薪资核算流程已完成"
    assert history[-1].metadata["period"] == "2026-03"
    assert (await payroll.get_payroll_workflow(2026, 3, "acme")).id == instance.id
    assert (await payroll.get_payroll_stats("acme")).rate == 100.0


@pytest.mark.asyncio
async def test_reject_salary_calculation(payroll, manager):
    instance = await payroll.create_salary_calculation_workflow("acme", 2026, 4, "u-hr", "HR小王")

    rejected = await payroll.reject_salary_calculation(instance.id, "数据有误", FINANCE)

    assert rejected.status is InstanceStatus.CANCELLED
    assert rejected.cancel_reason == "数据有误"
    history = await manager.get_history(HistoryFilters(company_id="acme", instance_id=instance.id))
    assert history[-1].description == "薪资核算被驳回，原因：数据有误"
    assert history[-1].metadata == {"reason": "数据有误"}
