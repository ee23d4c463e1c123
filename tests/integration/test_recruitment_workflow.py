import asyncio

import pytest

from hrflow.contracts import Actor, StepDefinition, StepResult
from hrflow.exceptions import (
    InvalidStepGraphError,
    InvalidTransitionError,
    NotFoundError,
    StepMismatchError,
    StoreFailureError,
)
from hrflow.persistence.models import (
    EntityKind,
    HistoryAction,
    HistoryFilters,
    InstanceStatus,
    StepEffect,
    StepStatus,
    WorkflowType,
)

DEFAULT_STEPS = ["简历筛选", "初试", "复试", "终试", "发放Offer", "录用确认"]


async def _start(recruitment):
    return await recruitment.create_recruitment_workflow("acme", "c1", "j1", "u-hr", "HR小王")


async def _actions(manager, instance_id):
    history = await manager.get_history(HistoryFilters(company_id="acme", instance_id=instance_id))
    return [entry.action for entry in history]


async def _candidate_status(repo):
    return (await repo.get_entity(EntityKind.CANDIDATE, "c1"))["status"]


@pytest.mark.asyncio
async def test_create_recruitment_workflow(recruitment, manager, repo):
    instance = await _start(recruitment)

    assert [s.name for s in instance.steps] == DEFAULT_STEPS
    assert instance.steps[0].status is StepStatus.IN_PROGRESS
    assert instance.steps[0].start_time is not None
    assert all(s.status is StepStatus.PENDING for s in instance.steps[1:])
    assert instance.current_step_index == 1
    assert instance.status is InstanceStatus.ACTIVE
    assert instance.start_date is not None
    assert instance.name == "张三 - 后端工程师 招聘流程"
    assert instance.template_id == "recruitment-default"
    assert instance.related_entity_type == "candidate"
    assert instance.related_entity_id == "c1"
    assert instance.form_data["job_title"] == "后端工程师"
    assert instance.steps[0].assignee_role == "hr"
    assert instance.steps[4].effect is StepEffect.CANDIDATE_OFFERED

    assert await _candidate_status(repo) == "screening"
    history = await manager.get_history(HistoryFilters(company_id="acme", instance_id=instance.id))
    assert [h.action for h in history] == [HistoryAction.CREATED]
    assert history[0].actor_role == "initiator"
    assert history[0].metadata == {"job_id": "j1", "candidate_id": "c1"}


@pytest.mark.asyncio
async def test_advance_first_step(recruitment, manager, repo, hr_actor):
    instance = await _start(recruitment)

    advanced = await recruitment.advance_recruitment_step(
        instance.id, StepResult(step_id=instance.steps[0].id, result="passed", comments="简历匹配"), hr_actor
    )

    assert advanced.steps[0].status is StepStatus.COMPLETED
    assert advanced.steps[0].result == "passed"
    assert advanced.steps[0].comments == "简历匹配"
    assert advanced.steps[0].end_time is not None
    assert advanced.steps[1].status is StepStatus.IN_PROGRESS
    assert advanced.current_step_index == 2
    assert await _candidate_status(repo) == "interviewing"
    assert await _actions(manager, instance.id) == [
        HistoryAction.CREATED,
        HistoryAction.STEP_COMPLETED,
        HistoryAction.STEP_STARTED,
    ]


@pytest.mark.asyncio
async def test_full_run_hires_candidate(recruitment, manager, repo, hr_actor):
    instance = await _start(recruitment)
    statuses = []

    for step in instance.steps[:-1]:
        instance = await recruitment.advance_recruitment_step(
            instance.id, StepResult(step_id=step.id, result="passed"), hr_actor
        )
        statuses.append(await _candidate_status(repo))
    assert statuses == ["interviewing", "interviewing", "interviewing", "interviewing", "offered"]

    last = instance.current_step
    assert last.name == "录用确认"
    done = await recruitment.advance_recruitment_step(
        instance.id, StepResult(step_id=last.id, result="accepted"), hr_actor
    )

    assert done.status is InstanceStatus.COMPLETED
    assert done.end_date is not None
    assert done.current_step_index == len(done.steps)
    assert all(s.status is StepStatus.COMPLETED for s in done.steps)
    assert await _candidate_status(repo) == "hired"

    actions = await _actions(manager, instance.id)
    assert actions[0] is HistoryAction.CREATED
    assert actions[1:] == [HistoryAction.STEP_COMPLETED, HistoryAction.STEP_STARTED] * 5 + [
        HistoryAction.STEP_COMPLETED,
        HistoryAction.COMPLETED,
    ]

    with pytest.raises(InvalidTransitionError):
        await recruitment.advance_recruitment_step(
            instance.id, StepResult(step_id=last.id, result="accepted"), hr_actor
        )


@pytest.mark.asyncio
async def test_step_mismatch_changes_nothing(recruitment, manager, repo, hr_actor):
    instance = await _start(recruitment)
    before = await manager.get_instance_by_id(instance.id)

    with pytest.raises(StepMismatchError) as exc_info:
        await recruitment.advance_recruitment_step(
            instance.id, StepResult(step_id=instance.steps[2].id, result="passed"), hr_actor
        )

    assert exc_info.value.expected == instance.steps[0].id
    assert await manager.get_instance_by_id(instance.id) == before
    assert await _actions(manager, instance.id) == [HistoryAction.CREATED]
    assert await _candidate_status(repo) == "screening"


@pytest.mark.asyncio
async def test_advance_without_moving_on(recruitment, manager, hr_actor):
    instance = await _start(recruitment)

    updated = await recruitment.advance_recruitment_step(
        instance.id,
        StepResult(
            step_id=instance.steps[0].id,
            result="pending_review",
            form_data={"score": 80},
            advance_to_next=False,
        ),
        hr_actor,
    )

    assert updated.current_step_index == 1
    assert updated.steps[0].status is StepStatus.COMPLETED
    assert updated.steps[0].form_data == {"score": 80}
    assert updated.steps[1].status is StepStatus.PENDING
    assert await _actions(manager, instance.id) == [HistoryAction.CREATED, HistoryAction.STEP_COMPLETED]


@pytest.mark.asyncio
async def test_reject_candidate(recruitment, manager, repo, hr_actor):
    instance = await _start(recruitment)

    rejected = await recruitment.reject_candidate(instance.id, "经验不足", hr_actor)

    assert rejected.status is InstanceStatus.CANCELLED
    assert rejected.end_date is not None
    assert rejected.cancel_reason == "经验不足"
    assert await _candidate_status(repo) == "rejected"
    history = await manager.get_history(HistoryFilters(company_id="acme", instance_id=instance.id))
    assert history[-1].action is HistoryAction.CANCELLED
    assert history[-1].metadata["reason"] == "经验不足"

    with pytest.raises(InvalidTransitionError):
        await recruitment.reject_candidate(instance.id, "again", hr_actor)


@pytest.mark.asyncio
async def test_missing_or_foreign_references(recruitment, manager):
    with pytest.raises(NotFoundError):
        await recruitment.create_recruitment_workflow("acme", "missing", "j1", "u-hr", "HR")
    with pytest.raises(NotFoundError):
        await recruitment.create_recruitment_workflow("acme", "c1", "missing", "u-hr", "HR")
    with pytest.raises(NotFoundError):
        await recruitment.create_recruitment_workflow("acme", "c-other", "j1", "u-hr", "HR")

    assert await recruitment.get_recruitment_workflow("c1", "acme") is None


@pytest.mark.asyncio
async def test_foreign_actor_cannot_see_instance(recruitment, hr_actor):
    instance = await _start(recruitment)
    outsider = Actor(id="u-x", company_id="globex")

    with pytest.raises(NotFoundError):
        await recruitment.advance_recruitment_step(
            instance.id, StepResult(step_id=instance.steps[0].id, result="passed"), outsider
        )
    with pytest.raises(NotFoundError):
        await recruitment.reject_candidate(instance.id, "x", outsider)
    with pytest.raises(NotFoundError):
        await recruitment.advance_recruitment_step(
            "missing", StepResult(step_id="s", result="passed"), hr_actor
        )


@pytest.mark.asyncio
async def test_custom_steps_replace_defaults(recruitment, repo, hr_actor):
    instance = await recruitment.create_recruitment_workflow(
        "acme",
        "c1",
        "j1",
        "u-hr",
        "HR小王",
        custom_steps=[
            StepDefinition(id="phone", name="电话面试", assignee_role="hr", effect=StepEffect.CANDIDATE_INTERVIEWING),
            {"id": "offer", "name": "发放Offer", "assignee_id": "u-hr"},
        ],
    )

    assert [s.id for s in instance.steps] == ["phone", "offer"]
    assert instance.steps[1].effect is StepEffect.CANDIDATE_OFFERED
    assert instance.steps[1].assignee_id == "u-hr"

    await recruitment.advance_recruitment_step(instance.id, StepResult(step_id="phone", result="passed"), hr_actor)
    assert await _candidate_status(repo) == "interviewing"
    done = await recruitment.advance_recruitment_step(instance.id, StepResult(step_id="offer", result="sent"), hr_actor)
    assert done.status is InstanceStatus.COMPLETED
    assert await _candidate_status(repo) == "hired"


@pytest.mark.asyncio
async def test_invalid_custom_graphs(recruitment, manager):
    with pytest.raises(InvalidStepGraphError):
        await recruitment.create_recruitment_workflow(
            "acme", "c1", "j1", "u-hr", "HR",
            custom_steps=[{"id": "a", "name": "一", "assignee_role": "hr"}, {"id": "a", "name": "二", "assignee_role": "hr"}],
        )
    with pytest.raises(InvalidStepGraphError):
        await recruitment.create_recruitment_workflow(
            "acme", "c1", "j1", "u-hr", "HR", custom_steps=[{"name": "无人负责"}]
        )
    with pytest.raises(InvalidStepGraphError):
        await recruitment.create_recruitment_workflow(
            "acme", "c1", "j1", "u-hr", "HR",
            custom_steps=[StepDefinition(name="调薪", assignee_role="hr", effect=StepEffect.APPLY_SALARY_ADJUSTMENT)],
        )
    assert await recruitment.get_recruitment_workflow("c1", "acme") is None

    fallback = await recruitment.create_recruitment_workflow("acme", "c1", "j1", "u-hr", "HR", custom_steps=[])
    assert len(fallback.steps) == 6


@pytest.mark.asyncio
async def test_failed_history_write_rolls_back_advance(recruitment, manager, repo, hr_actor, monkeypatch):
    instance = await _start(recruitment)
    add_history = repo.add_history

    async def failing_add_history(entry):
        if entry.action is HistoryAction.STEP_STARTED:
            raise StoreFailureError("history unavailable")
        await add_history(entry)

    monkeypatch.setattr(repo, "add_history", failing_add_history)

    with pytest.raises(StoreFailureError):
        await recruitment.advance_recruitment_step(
            instance.id, StepResult(step_id=instance.steps[0].id, result="passed"), hr_actor
        )

    stored = await manager.get_instance_by_id(instance.id)
    assert stored.current_step_index == 1
    assert stored.steps[0].status is StepStatus.IN_PROGRESS
    assert stored.version == instance.version
    assert await _candidate_status(repo) == "screening"
    assert await _actions(manager, instance.id) == [HistoryAction.CREATED]


@pytest.mark.asyncio
async def test_failed_creation_leaves_nothing(recruitment, manager, repo, monkeypatch):
    async def failing_add_history(entry):
        raise StoreFailureError("history unavailable")

    monkeypatch.setattr(repo, "add_history", failing_add_history)

    with pytest.raises(StoreFailureError):
        await _start(recruitment)

    assert await recruitment.get_recruitment_workflow("c1", "acme") is None
    assert await _candidate_status(repo) == "new"


@pytest.mark.asyncio
async def test_concurrent_duplicate_submissions(recruitment, manager, hr_actor):
    instance = await _start(recruitment)
    result = StepResult(step_id=instance.steps[0].id, result="passed")

    outcomes = await asyncio.gather(
        recruitment.advance_recruitment_step(instance.id, result, hr_actor),
        recruitment.advance_recruitment_step(instance.id, result, hr_actor),
        return_exceptions=True,
    )

    errors = [o for o in outcomes if isinstance(o, Exception)]
    assert len(errors) == 1
    assert isinstance(errors[0], StepMismatchError)
    stored = await manager.get_instance_by_id(instance.id)
    assert stored.current_step_index == 2
    assert (await _actions(manager, instance.id)).count(HistoryAction.STEP_COMPLETED) == 1


@pytest.mark.asyncio
async def test_latest_workflow_and_stats(recruitment, manager, hr_actor):
    first = await _start(recruitment)
    await recruitment.reject_candidate(first.id, "重复投递", hr_actor)
    second = await _start(recruitment)

    latest = await recruitment.get_recruitment_workflow("c1", "acme")
    assert latest.id == second.id
    assert await recruitment.get_recruitment_workflow("c1", "globex") is None

    stats = await recruitment.get_recruitment_stats("acme")
    assert stats.type is WorkflowType.RECRUITMENT
    assert stats.total == 2
    assert stats.by_status[InstanceStatus.CANCELLED] == 1
    assert stats.by_status[InstanceStatus.ACTIVE] == 1
    assert stats.rate_name == "success_rate"
    assert stats.rate == 0


@pytest.mark.asyncio
async def test_candidate_without_name_still_starts(recruitment, repo):
    await repo.put_entity(EntityKind.CANDIDATE, "c-anon", {"company_id": "acme", "status": "new"})
    await repo.put_entity(EntityKind.JOB, "j-untitled", {"company_id": "acme"})

    instance = await recruitment.create_recruitment_workflow("acme", "c-anon", "j-untitled", "u-hr", "HR小王")

    assert instance.name == " -  招聘流程"
    assert instance.related_entity_name == ""
    assert instance.form_data["candidate_name"] == ""
    assert (await repo.get_entity(EntityKind.CANDIDATE, "c-anon"))["status"] == "screening"
