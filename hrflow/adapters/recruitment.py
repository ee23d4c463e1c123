"""Recruitment: drives a candidate from screening to hire."""

from __future__ import annotations

from typing import Any

from ..contracts import Actor, InstanceSpec, StepDefinition, StepResult
from ..persistence.models import (
    EntityKind,
    Priority,
    StepEffect,
    StepType,
    WorkflowInstance,
    WorkflowStep,
    WorkflowType,
)
from ..stats import WorkflowStats
from .base import CustomSteps, WorkflowAdapter

CANDIDATE_STATUS_BY_EFFECT = {
    StepEffect.CANDIDATE_SCREENING: "screening",
    StepEffect.CANDIDATE_INTERVIEWING: "interviewing",
    StepEffect.CANDIDATE_OFFERED: "offered",
}


def default_recruitment_steps() -> list[StepDefinition]:
    return [
        StepDefinition(name="简历筛选", type=StepType.TASK, description="HR筛选候选人简历", assignee_role="hr"),
        StepDefinition(name="初试", type=StepType.APPROVAL, description="技术面试官进行初试", assignee_role="tech_interviewer"),
        StepDefinition(name="复试", type=StepType.APPROVAL, description="部门负责人进行复试", assignee_role="department_manager"),
        StepDefinition(name="终试", type=StepType.APPROVAL, description="HR总监进行终试", assignee_role="hr_director"),
        StepDefinition(name="发放Offer", type=StepType.TASK, description="发送录用通知", assignee_role="hr"),
        StepDefinition(name="录用确认", type=StepType.APPROVAL, description="候选人确认接受Offer", assignee_role="candidate"),
    ]


class RecruitmentWorkflowAdapter(WorkflowAdapter):
    workflow_types = (WorkflowType.RECRUITMENT,)
    effect_catalogue = {
        WorkflowType.RECRUITMENT: {
            "简历筛选": StepEffect.CANDIDATE_INTERVIEWING,
            "初试": StepEffect.CANDIDATE_INTERVIEWING,
            "复试": StepEffect.CANDIDATE_INTERVIEWING,
            "终试": StepEffect.CANDIDATE_INTERVIEWING,
            "发放Offer": StepEffect.CANDIDATE_OFFERED,
        }
    }
    supported_effects = frozenset(CANDIDATE_STATUS_BY_EFFECT)
    rate_name = "success_rate"

    async def create_recruitment_workflow(
        self,
        company_id: str,
        candidate_id: str,
        job_id: str,
        initiator_id: str,
        initiator_name: str,
        custom_steps: CustomSteps = None,
    ) -> WorkflowInstance:
        candidate = await self._load_entity(EntityKind.CANDIDATE, candidate_id, company_id)
        job = await self._load_entity(EntityKind.JOB, job_id, company_id)
        candidate_name, job_title = candidate.get("name", ""), job.get("title", "")
        steps = self._build_steps(WorkflowType.RECRUITMENT, default_recruitment_steps(), custom_steps)

        spec = InstanceSpec(
            company_id=company_id,
            template_id="recruitment-default",
            template_name="标准招聘流程",
            type=WorkflowType.RECRUITMENT,
            name=f"{candidate_name} - {job_title} 招聘流程",
            description=f"招聘职位：{job_title}，候选人：{candidate_name}",
            initiator_id=initiator_id,
            initiator_name=initiator_name,
            related_entity_type=EntityKind.CANDIDATE.value,
            related_entity_id=candidate_id,
            related_entity_name=candidate_name,
            form_data={
                "job_id": job_id,
                "job_title": job_title,
                "candidate_id": candidate_id,
                "candidate_name": candidate_name,
                "candidate_phone": candidate.get("phone"),
                "candidate_email": candidate.get("email"),
            },
            steps=steps,
            priority=Priority.MEDIUM,
        )

        async def mark_screening(instance: WorkflowInstance) -> None:
            await self._update_entity(EntityKind.CANDIDATE, candidate_id, {"status": "screening"})

        return await self._start_workflow(
            spec,
            f"创建招聘工作流实例：{candidate_name} - {job_title}",
            {"job_id": job_id, "candidate_id": candidate_id},
            on_created=mark_screening,
        )

    async def advance_recruitment_step(
        self, instance_id: str, result: StepResult, actor: Actor
    ) -> WorkflowInstance:
        return await self.advance(instance_id, result, actor)

    async def _apply_effect(
        self, instance: WorkflowInstance, step: WorkflowStep, result: StepResult, actor: Actor
    ) -> None:
        status = CANDIDATE_STATUS_BY_EFFECT.get(step.effect)
        if status is not None:
            await self._update_entity(EntityKind.CANDIDATE, instance.related_entity_id, {"status": status})

    async def _on_completed(
        self, instance: WorkflowInstance, result: StepResult, actor: Actor
    ) -> dict[str, Any]:
        await self._update_entity(EntityKind.CANDIDATE, instance.related_entity_id, {"status": "hired"})
        return {"candidate_id": instance.related_entity_id, "result": "hired"}

    async def reject_candidate(self, instance_id: str, reason: str, actor: Actor) -> WorkflowInstance:
        return await self._reject(
            instance_id, reason, actor, EntityKind.CANDIDATE, f"拒绝候选人，原因：{reason}"
        )

    async def get_recruitment_workflow(
        self, candidate_id: str, company_id: str
    ) -> WorkflowInstance | None:
        return await self._find_workflow(WorkflowType.RECRUITMENT, candidate_id, company_id)

    async def get_recruitment_stats(self, company_id: str) -> WorkflowStats:
        return await self.get_stats(company_id)
