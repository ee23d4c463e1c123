import pytest

from hrflow.contracts import StepResult
from hrflow.exceptions import NotFoundError, UnsupportedWorkflowTypeError
from hrflow.persistence.models import (
    EntityKind,
    HistoryAction,
    HistoryFilters,
    InstanceStatus,
    Priority,
    StepEffect,
    WorkflowType,
)


async def _run_to_completion(adapter, instance, actor):
    while instance.status is InstanceStatus.ACTIVE:
        instance = await adapter.advance_employee_workflow_step(
            instance.id, StepResult(step_id=instance.current_step.id, result="approved"), actor
        )
    return instance


async def _employee(repo, employee_id="e1"):
    return await repo.get_entity(EntityKind.EMPLOYEE, employee_id)


@pytest.mark.asyncio
async def test_onboarding_assigns_known_people(employee_flows, manager):
    instance = await employee_flows.create_onboarding_workflow("acme", "e1", "u-hr", "HR小王")

    assert instance.type is WorkflowType.ONBOARDING
    assert instance.priority is Priority.HIGH
    assert instance.name == "李四 - 入职流程"
    assert instance.template_id == "onboarding-default"
    assert [s.name for s in instance.steps] == ["入职审批", "HR审批", "入职准备", "合同签订", "入职培训"]
    assert instance.steps[0].assignee_id == "u-mgr"
    assert instance.steps[4].assignee_id == "u-e1"
    assert instance.form_data["department_name"] == "研发部"
    assert instance.form_data["position_name"] == "工程师"
    assert all(s.effect is StepEffect.NONE for s in instance.steps)


@pytest.mark.asyncio
async def test_onboarding_falls_back_to_roles(employee_flows, repo, hr_actor):
    instance = await employee_flows.create_onboarding_workflow("acme", "e2", "u-hr", "HR小王")

    assert instance.steps[0].assignee_role == "manager"
    assert instance.steps[4].assignee_role == "employee"
    assert instance.form_data["department_name"] == ""

    done = await _run_to_completion(employee_flows, instance, hr_actor)
    assert done.status is InstanceStatus.COMPLETED
    assert await _employee(repo, "e2") == {
        "id": "e2", "company_id": "acme", "name": "王五", "salary": 8000, "employment_status": "active",
    }


@pytest.mark.asyncio
async def test_promotion_applies_position_on_last_step(employee_flows, manager, repo, hr_actor):
    instance = await employee_flows.create_promotion_workflow("acme", "e1", "p2", "u-hr", "HR小王")

    assert instance.form_data["target_position_name"] == "高级工程师"
    assert instance.steps[-1].effect is StepEffect.APPLY_PROMOTION

    for _ in range(len(instance.steps) - 1):
        instance = await employee_flows.advance_employee_workflow_step(
            instance.id, StepResult(step_id=instance.current_step.id, result="approved"), hr_actor
        )
        assert (await _employee(repo))["position_id"] == "p1"

    done = await _run_to_completion(employee_flows, instance, hr_actor)
    assert done.status is InstanceStatus.COMPLETED
    assert (await _employee(repo))["position_id"] == "p2"

    history = await manager.get_history(HistoryFilters(company_id="acme", instance_id=instance.id))
    assert history[-1].action is HistoryAction.COMPLETED
    assert history[-1].description == "晋升流程已完成"


@pytest.mark.asyncio
async def test_transfer_moves_department_and_position(employee_flows, repo, hr_actor):
    instance = await employee_flows.create_transfer_workflow("acme", "e1", "d2", "p3", "u-hr", "HR小王")

    target_approval = next(s for s in instance.steps if s.name == "目标部门审批")
    assert target_approval.assignee_id == "u-product-lead"

    await _run_to_completion(employee_flows, instance, hr_actor)
    employee = await _employee(repo)
    assert employee["department_id"] == "d2"
    assert employee["position_id"] == "p3"


@pytest.mark.asyncio
async def test_salary_change_waits_for_advancement(employee_flows, repo, hr_actor):
    instance = await employee_flows.create_salary_adjustment_workflow(
        "acme", "e1", 12000, "年度调薪", "u-hr", "HR小王"
    )
    assert instance.form_data["current_salary"] == 10000
    assert instance.form_data["adjustment"] == 2000
    assert instance.form_data["adjustment_percent"] == 20.0

    while instance.current_step.name != "薪资生效":
        instance = await employee_flows.advance_employee_workflow_step(
            instance.id, StepResult(step_id=instance.current_step.id, result="approved"), hr_actor
        )

    step_id = instance.current_step.id
    held = await employee_flows.advance_employee_workflow_step(
        instance.id, StepResult(step_id=step_id, result="approved", advance_to_next=False), hr_actor
    )
    assert held.status is InstanceStatus.ACTIVE
    assert (await _employee(repo))["salary"] == 10000

    done = await employee_flows.advance_employee_workflow_step(
        instance.id, StepResult(step_id=step_id, result="approved"), hr_actor
    )
    assert done.status is InstanceStatus.COMPLETED
    assert (await _employee(repo))["salary"] == 12000


@pytest.mark.asyncio
async def test_salary_percent_unknown_without_current_salary(employee_flows):
    instance = await employee_flows.create_salary_adjustment_workflow(
        "acme", "e1", 5000, "试用期转正", "u-hr", "HR小王", current_salary=0
    )
    assert instance.form_data["adjustment_percent"] is None


@pytest.mark.asyncio
async def test_missing_references_create_nothing(employee_flows):
    with pytest.raises(NotFoundError):
        await employee_flows.create_promotion_workflow("acme", "e1", "p-missing", "u-hr", "HR")
    with pytest.raises(NotFoundError):
        await employee_flows.create_transfer_workflow("acme", "e1", "d-missing", "p3", "u-hr", "HR")
    with pytest.raises(NotFoundError):
        await employee_flows.create_onboarding_workflow("globex", "e1", "u-hr", "HR")

    assert await employee_flows.get_employee_workflow("e1", WorkflowType.PROMOTION, "acme") is None
    assert await employee_flows.get_employee_workflow("e1", WorkflowType.TRANSFER, "acme") is None


@pytest.mark.asyncio
async def test_lookup_and_stats_per_type(employee_flows, hr_actor):
    promotion = await employee_flows.create_promotion_workflow("acme", "e1", "p2", "u-hr", "HR小王")
    await _run_to_completion(employee_flows, promotion, hr_actor)
    await employee_flows.create_onboarding_workflow("acme", "e1", "u-hr", "HR小王")

    found = await employee_flows.get_employee_workflow("e1", WorkflowType.PROMOTION, "acme")
    assert found.id == promotion.id

    stats = await employee_flows.get_employee_workflow_stats("acme", WorkflowType.PROMOTION)
    assert stats.total == 1
    assert stats.by_status[InstanceStatus.COMPLETED] == 1
    assert stats.rate == 100.0

    onboarding = await employee_flows.get_employee_workflow_stats("acme", WorkflowType.ONBOARDING)
    assert onboarding.total == 1
    assert onboarding.rate == 0

    with pytest.raises(UnsupportedWorkflowTypeError):
        await employee_flows.get_stats("acme", WorkflowType.RECRUITMENT)


@pytest.mark.asyncio
async def test_transfer_tolerates_unnamed_records(employee_flows, repo):
    await repo.put_entity(EntityKind.EMPLOYEE, "e-anon", {"company_id": "acme", "salary": 5000})
    await repo.put_entity(EntityKind.DEPARTMENT, "d-anon", {"company_id": "acme"})
    await repo.put_entity(EntityKind.POSITION, "p-anon", {"company_id": "acme"})

    instance = await employee_flows.create_transfer_workflow("acme", "e-anon", "d-anon", "p-anon", "u-hr", "HR小王")

    assert instance.name == " - 转岗流程"
    assert instance.form_data["employee_name"] == ""
    assert instance.form_data["target_department_name"] == ""
    assert instance.form_data["target_position_name"] == ""
