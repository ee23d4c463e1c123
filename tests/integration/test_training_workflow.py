import pytest

from hrflow.adapters.training import DEVELOPMENT_TEMPLATE, ENROLLMENT_TEMPLATE
from hrflow.contracts import StepResult, TrainingScores, TrainingStepResult
from hrflow.exceptions import InvalidStepGraphError, NotApprovalStepError
from hrflow.persistence.models import (
    EntityKind,
    HistoryAction,
    HistoryFilters,
    InstanceStatus,
    StepEffect,
    WorkflowType,
)

ENROLLMENT_STEPS = ["直属上级审批", "部门负责人审批", "HR审批", "培训报名", "参加培训", "培训考核", "培训评估"]


async def _record(repo):
    return await repo.get_entity(EntityKind.TRAINING_RECORD, "tr1")


async def _finish_task(training, instance, actor):
    return await training.advance_training_step(
        instance.id, StepResult(step_id=instance.current_step.id, result="done"), actor
    )


@pytest.mark.asyncio
async def test_create_training_enrollment_workflow(training, repo):
    instance = await training.create_training_enrollment_workflow("acme", "tr1", "u-e1", "李四")

    assert instance.type is WorkflowType.TRAINING
    assert instance.template_id == ENROLLMENT_TEMPLATE
    assert instance.name == "李四 - Python 进阶 培训申请"
    assert [s.name for s in instance.steps] == ENROLLMENT_STEPS
    assert instance.steps[0].assignee_id == "u-mgr"
    assert instance.steps[1].assignee_role == "department_manager"
    assert instance.steps[3].assignee_id == "u-e1"
    assert instance.steps[5].effect is StepEffect.RECORD_TRAINING_RESULT
    assert instance.form_data["course_duration"] == 16
    assert instance.form_data["department_id"] == "d1"

    record = await _record(repo)
    assert record["metadata"]["workflow_instance_id"] == instance.id
    assert record["status"] == "enrolled"


@pytest.mark.asyncio
async def test_assessment_records_result_and_completes(training, manager, repo, hr_actor):
    instance = await training.create_training_enrollment_workflow("acme", "tr1", "u-e1", "李四")
    for _ in range(3):
        instance = await training.approve_training(instance.id, hr_actor, comments="同意")
    assert instance.current_step.name == "培训报名"

    instance = await _finish_task(training, instance, hr_actor)
    instance = await _finish_task(training, instance, hr_actor)
    instance = await training.advance_training_step(
        instance.id,
        TrainingStepResult(
            step_id=instance.current_step.id,
            result="passed",
            comments="表现优秀",
            scores=TrainingScores(assessment_score=92, satisfaction_score=4.5),
        ),
        hr_actor,
    )

    record = await _record(repo)
    assert record["status"] == "completed"
    assert record["progress"] == 100
    assert record["score"] == 92
    assert record["satisfaction_score"] == 4.5
    assert record["feedback"] == "表现优秀"
    assert record["completion_date"] is not None

    instance = await _finish_task(training, instance, hr_actor)
    assert instance.status is InstanceStatus.COMPLETED

    history = await manager.get_history(HistoryFilters(company_id="acme", instance_id=instance.id))
    assert history[-1].action is HistoryAction.COMPLETED
    assert history[-1].description == "培训流程已完成"
    assert history[-1].metadata["record_id"] == "tr1"


@pytest.mark.asyncio
async def test_assessment_without_scores_leaves_record(training, repo, hr_actor):
    custom = [{"name": "培训考核", "type": "approval", "assignee_role": "hr"}]
    instance = await training.create_training_enrollment_workflow(
        "acme", "tr1", "u-e1", "李四", custom_steps=custom
    )

    await training.approve_training(instance.id, hr_actor)

    record = await _record(repo)
    assert record["status"] == "enrolled"
    assert "score" not in record


@pytest.mark.asyncio
async def test_approve_refuses_task_step(training, hr_actor):
    instance = await training.create_training_enrollment_workflow("acme", "tr1", "u-e1", "李四")
    for _ in range(3):
        instance = await training.approve_training(instance.id, hr_actor)

    with pytest.raises(NotApprovalStepError):
        await training.approve_training(instance.id, hr_actor)


@pytest.mark.asyncio
async def test_reject_enrollment_cancels_record(training, manager, repo, hr_actor):
    instance = await training.create_training_enrollment_workflow("acme", "tr1", "u-e1", "李四")

    rejected = await training.reject_training(instance.id, "预算不足", hr_actor)

    assert rejected.status is InstanceStatus.CANCELLED
    assert (await _record(repo))["status"] == "cancelled"
    history = await manager.get_history(HistoryFilters(company_id="acme", instance_id=instance.id))
    assert history[-1].description == "拒绝培训申请：预算不足"
    assert history[-1].metadata == {"reason": "预算不足", "training_record_id": "tr1"}


@pytest.mark.asyncio
async def test_course_development_publishes_linked_course(training, repo, hr_actor):
    instance = await training.create_training_development_workflow(
        "acme", "领导力入门", "u-hr", "HR小王", course_id="tc-draft"
    )

    assert instance.template_id == DEVELOPMENT_TEMPLATE
    assert instance.name == "领导力入门 - 课程开发"
    assert instance.steps[0].assignee_id == "u-hr"
    assert instance.steps[2].assignee_role == "expert"
    course = await repo.get_entity(EntityKind.TRAINING_COURSE, "tc-draft")
    assert course["metadata"]["workflow_instance_id"] == instance.id

    while instance.status is InstanceStatus.ACTIVE:
        instance = await _finish_task(training, instance, hr_actor)

    course = await repo.get_entity(EntityKind.TRAINING_COURSE, "tc-draft")
    assert course["is_active"] is True
    assert course["status"] == "published"


@pytest.mark.asyncio
async def test_course_development_without_course(training, manager, hr_actor):
    instance = await training.create_training_development_workflow("acme", "新员工手册", "u-hr", "HR小王")
    assert instance.related_entity_id is None

    rejected = await training.reject_training(instance.id, "重复课程", hr_actor)

    assert rejected.status is InstanceStatus.CANCELLED
    history = await manager.get_history(HistoryFilters(company_id="acme", instance_id=instance.id))
    assert history[-1].metadata == {"reason": "重复课程"}


@pytest.mark.asyncio
async def test_lookup_by_template(training):
    instance = await training.create_training_enrollment_workflow("acme", "tr1", "u-e1", "李四")

    assert (await training.get_training_workflow("tr1", "acme")).id == instance.id
    assert (await training.get_training_workflow("tr1", "acme", ENROLLMENT_TEMPLATE)).id == instance.id
    assert await training.get_training_workflow("tr1", "acme", DEVELOPMENT_TEMPLATE) is None


@pytest.mark.asyncio
async def test_foreign_effect_is_refused(training):
    custom = [{"name": "发积分", "assignee_role": "hr", "effect": "grant_points"}]

    with pytest.raises(InvalidStepGraphError):
        await training.create_training_enrollment_workflow("acme", "tr1", "u-e1", "李四", custom_steps=custom)
