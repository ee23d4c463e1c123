"""Performance review of one employee within a review cycle."""

from __future__ import annotations

from typing import Any

from ..contracts import Actor, InstanceSpec, PerformanceStepResult, StepDefinition, StepResult
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

REVIEW_NOTE_FIELDS = ("achievements", "improvements", "feedback")


class PerformanceWorkflowAdapter(WorkflowAdapter):
    workflow_types = (WorkflowType.PERFORMANCE,)
    effect_catalogue = {
        WorkflowType.PERFORMANCE: {
            "自评": StepEffect.RECORD_SELF_SCORE,
            "上级评估": StepEffect.RECORD_REVIEWER_SCORE,
            "结果确认": StepEffect.CONFIRM_PERFORMANCE_RESULT,
        }
    }
    supported_effects = frozenset(
        {
            StepEffect.RECORD_SELF_SCORE,
            StepEffect.RECORD_REVIEWER_SCORE,
            StepEffect.CONFIRM_PERFORMANCE_RESULT,
        }
    )
    rate_name = "completion_rate"

    async def create_performance_workflow(
        self,
        company_id: str,
        record_id: str,
        cycle_id: str,
        initiator_id: str,
        initiator_name: str,
        custom_steps: CustomSteps = None,
    ) -> WorkflowInstance:
        cycle = await self._load_entity(EntityKind.PERFORMANCE_CYCLE, cycle_id, company_id)
        record = await self._load_entity(EntityKind.PERFORMANCE_RECORD, record_id, company_id)
        employee_id = record.get("employee_id")
        employee = await self._load_entity(EntityKind.EMPLOYEE, employee_id, company_id)
        employee_name, cycle_name = employee.get("name", ""), cycle.get("name", "")

        user_id, manager_id = employee.get("user_id"), employee.get("manager_id")
        defaults = [
            StepDefinition.for_user_or_role(
                user_id, "employee", name="自评", type=StepType.TASK, description="员工进行自我评估"
            ),
            StepDefinition.for_user_or_role(
                manager_id, "manager", name="上级评估", type=StepType.APPROVAL, description="直接上级进行评估"
            ),
            StepDefinition.for_user_or_role(
                manager_id, "manager", name="绩效面谈", type=StepType.TASK, description="进行绩效面谈"
            ),
            StepDefinition.for_user_or_role(
                user_id, "employee", name="结果确认", type=StepType.APPROVAL, description="员工确认绩效结果"
            ),
        ]
        steps = self._build_steps(WorkflowType.PERFORMANCE, defaults, custom_steps)

        subject = f"{employee_name} - {cycle_name}"
        spec = InstanceSpec(
            company_id=company_id,
            template_id="performance-default",
            template_name="标准绩效评估流程",
            type=WorkflowType.PERFORMANCE,
            name=f"{subject} 绩效评估",
            description=f"绩效周期：{cycle_name}，员工：{employee_name}",
            initiator_id=initiator_id,
            initiator_name=initiator_name,
            related_entity_type=EntityKind.PERFORMANCE_RECORD.value,
            related_entity_id=record_id,
            related_entity_name=subject,
            form_data={
                "cycle_id": cycle_id,
                "cycle_name": cycle_name,
                "record_id": record_id,
                "employee_id": employee_id,
                "employee_name": employee_name,
                "goals": record.get("goals"),
            },
            steps=steps,
            priority=Priority.MEDIUM,
        )

        async def mark_submitted(instance: WorkflowInstance) -> None:
            metadata = {**(record.get("metadata") or {}), "workflow_instance_id": instance.id}
            await self._update_entity(
                EntityKind.PERFORMANCE_RECORD, record_id, {"status": "submitted", "metadata": metadata}
            )

        return await self._start_workflow(
            spec,
            f"创建绩效工作流实例：{subject}",
            {"cycle_id": cycle_id, "record_id": record_id, "employee_id": employee_id},
            on_created=mark_submitted,
        )

    async def advance_performance_step(
        self, instance_id: str, result: PerformanceStepResult, actor: Actor
    ) -> WorkflowInstance:
        return await self.advance(instance_id, result, actor)

    async def _apply_effect(
        self, instance: WorkflowInstance, step: WorkflowStep, result: StepResult, actor: Actor
    ) -> None:
        scores = result.scores if isinstance(result, PerformanceStepResult) else None
        patch: dict[str, Any] = {}
        if step.effect is StepEffect.RECORD_SELF_SCORE:
            if scores is not None and scores.self_score is not None:
                patch["self_score"] = scores.self_score
        elif step.effect is StepEffect.RECORD_REVIEWER_SCORE:
            if scores is not None and scores.reviewer_score is not None:
                patch["reviewer_score"] = scores.reviewer_score
        elif step.effect is StepEffect.CONFIRM_PERFORMANCE_RESULT:
            patch["status"] = "completed"
            if scores is not None and scores.final_score is not None:
                patch["final_score"] = scores.final_score
            form_data = result.form_data or {}
            patch.update({key: form_data[key] for key in REVIEW_NOTE_FIELDS if form_data.get(key)})
        if patch:
            await self._update_entity(EntityKind.PERFORMANCE_RECORD, instance.related_entity_id, patch)

    async def _on_completed(
        self, instance: WorkflowInstance, result: StepResult, actor: Actor
    ) -> dict[str, Any]:
        await self._update_entity(
            EntityKind.PERFORMANCE_RECORD,
            instance.related_entity_id,
            {"status": "completed", "reviewed_at": self.manager.now().isoformat()},
        )
        scores = result.scores if isinstance(result, PerformanceStepResult) else None
        return {
            "record_id": instance.related_entity_id,
            "final_score": scores.final_score if scores else None,
        }

    async def get_performance_workflow(
        self, record_id: str, company_id: str
    ) -> WorkflowInstance | None:
        return await self._find_workflow(WorkflowType.PERFORMANCE, record_id, company_id)

    async def get_performance_stats(self, company_id: str) -> WorkflowStats:
        return await self.get_stats(company_id)
