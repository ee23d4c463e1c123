"""Resignation: from the manager's approval to the employee's exit."""

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

APPROVED = "approved"


class ResignationWorkflowAdapter(WorkflowAdapter):
    workflow_types = (WorkflowType.RESIGNATION,)
    effect_catalogue = {
        WorkflowType.RESIGNATION: {"离职审批": StepEffect.RECORD_RESIGNATION_APPROVAL},
    }
    supported_effects = frozenset({StepEffect.RECORD_RESIGNATION_APPROVAL})
    rate_name = "approval_rate"

    async def create_resignation_workflow(
        self,
        company_id: str,
        resignation_id: str,
        initiator_id: str,
        initiator_name: str,
        custom_steps: CustomSteps = None,
    ) -> WorkflowInstance:
        resignation = await self._load_entity(EntityKind.RESIGNATION, resignation_id, company_id)
        employee_id = resignation.get("employee_id")
        employee = await self._load_entity(EntityKind.EMPLOYEE, employee_id, company_id)
        employee_name = employee.get("name", "")
        department_name = ""
        if employee.get("department_id"):
            department = await self._load_entity(EntityKind.DEPARTMENT, employee["department_id"], company_id)
            department_name = department.get("name", "")

        defaults = [
            StepDefinition.for_user_or_role(
                employee.get("manager_id"),
                "manager",
                name="离职审批",
                type=StepType.APPROVAL,
                description="直属上级审批离职申请",
            ),
            StepDefinition(name="HR审批", type=StepType.APPROVAL, description="HR部门审批", assignee_role="hr"),
            StepDefinition.for_user_or_role(
                employee.get("user_id"), "employee", name="工作交接", type=StepType.TASK, description="进行工作交接"
            ),
            StepDefinition(name="资产归还", type=StepType.TASK, description="归还公司资产", assignee_role="admin"),
            StepDefinition(name="离职面谈", type=StepType.TASK, description="进行离职面谈", assignee_role="hr"),
            StepDefinition(name="离职手续办理", type=StepType.TASK, description="办理离职手续", assignee_role="hr"),
        ]
        steps = self._build_steps(WorkflowType.RESIGNATION, defaults, custom_steps)

        expected_last_date = resignation.get("expected_last_date")
        spec = InstanceSpec(
            company_id=company_id,
            template_id="resignation-default",
            template_name="标准离职流程",
            type=WorkflowType.RESIGNATION,
            name=f"{employee_name} - 离职流程",
            description=f"员工：{employee_name}，预计最后工作日：{expected_last_date}",
            initiator_id=initiator_id,
            initiator_name=initiator_name,
            related_entity_type=EntityKind.RESIGNATION.value,
            related_entity_id=resignation_id,
            related_entity_name=f"{employee_name} - 离职申请",
            form_data={
                "resignation_id": resignation_id,
                "employee_id": employee_id,
                "employee_name": employee_name,
                "department_name": department_name,
                "expected_last_date": expected_last_date,
                "reason": resignation.get("reason"),
                "reason_category": resignation.get("reason_category"),
            },
            steps=steps,
            priority=Priority.HIGH,
        )

        async def mark_processing(instance: WorkflowInstance) -> None:
            metadata = {**(resignation.get("metadata") or {}), "workflow_instance_id": instance.id}
            await self._update_entity(
                EntityKind.RESIGNATION, resignation_id, {"status": "processing", "metadata": metadata}
            )

        return await self._start_workflow(
            spec,
            f"创建离职工作流实例：{employee_name}",
            {
                "resignation_id": resignation_id,
                "employee_id": employee_id,
                "expected_last_date": expected_last_date,
            },
            on_created=mark_processing,
        )

    async def advance_resignation_step(
        self, instance_id: str, result: StepResult, actor: Actor
    ) -> WorkflowInstance:
        return await self.advance(instance_id, result, actor)

    async def _apply_effect(
        self, instance: WorkflowInstance, step: WorkflowStep, result: StepResult, actor: Actor
    ) -> None:
        if step.effect is StepEffect.RECORD_RESIGNATION_APPROVAL and result.result == APPROVED:
            await self._update_entity(
                EntityKind.RESIGNATION,
                instance.related_entity_id,
                {"approved_by": actor.id, "approved_at": self.manager.now().isoformat()},
            )

    async def _on_completed(
        self, instance: WorkflowInstance, result: StepResult, actor: Actor
    ) -> dict[str, Any]:
        await self._update_entity(
            EntityKind.RESIGNATION,
            instance.related_entity_id,
            {"status": "completed", "actual_last_date": instance.end_date.isoformat()},
        )
        employee_id = instance.form_data.get("employee_id")
        if employee_id:
            await self._update_entity(EntityKind.EMPLOYEE, employee_id, {"employment_status": "resigned"})
        return {"resignation_id": instance.related_entity_id}

    async def reject_resignation(self, instance_id: str, reason: str, actor: Actor) -> WorkflowInstance:
        return await self._reject(
            instance_id, reason, actor, EntityKind.RESIGNATION, f"离职申请被拒绝，原因：{reason}"
        )

    async def get_resignation_workflow(
        self, resignation_id: str, company_id: str
    ) -> WorkflowInstance | None:
        return await self._find_workflow(WorkflowType.RESIGNATION, resignation_id, company_id)

    async def get_resignation_stats(self, company_id: str) -> WorkflowStats:
        return await self.get_stats(company_id)
