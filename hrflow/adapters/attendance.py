"""Attendance: leave and overtime requests."""

from __future__ import annotations

from typing import Any, NamedTuple, Optional

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

LEAVE_TEMPLATE = "leave-approval-default"
OVERTIME_TEMPLATE = "overtime-approval-default"

# Overtime beyond this many hours also needs the department head.
LONG_OVERTIME_HOURS = 4
LONG_LEAVE_DAYS = 3


class LeavePolicy(NamedTuple):
    name: str
    needs_department_head: bool
    needs_hr: bool


LEAVE_POLICIES: dict[str, LeavePolicy] = {
    "annual": LeavePolicy("年假", False, False),
    "sick": LeavePolicy("病假", False, True),
    "personal": LeavePolicy("事假", True, False),
    "marriage": LeavePolicy("婚假", True, True),
    "bereavement": LeavePolicy("丧假", True, True),
    "maternity": LeavePolicy("产假", True, True),
    "paternity": LeavePolicy("陪产假", True, True),
}
DEFAULT_LEAVE_TYPE = "personal"


def _manager_step(manager_id: Optional[str], description: str) -> StepDefinition:
    return StepDefinition.for_user_or_role(
        manager_id, "manager", name="直属上级审批", type=StepType.APPROVAL, description=description
    )


def _department_head_step(description: str) -> StepDefinition:
    return StepDefinition(
        name="部门负责人审批", type=StepType.APPROVAL, description=description, assignee_role="department_manager"
    )


class AttendanceWorkflowAdapter(WorkflowAdapter):
    workflow_types = (WorkflowType.ATTENDANCE,)
    effect_catalogue = {
        WorkflowType.ATTENDANCE: {
            "请假记录": StepEffect.APPROVE_ATTENDANCE_REQUEST,
            "加班记录": StepEffect.APPROVE_ATTENDANCE_REQUEST,
        }
    }
    supported_effects = frozenset({StepEffect.APPROVE_ATTENDANCE_REQUEST})
    rate_name = "approval_rate"

    async def create_leave_workflow(
        self,
        company_id: str,
        leave_request_id: str,
        initiator_id: str,
        initiator_name: str,
        custom_steps: CustomSteps = None,
    ) -> WorkflowInstance:
        request = await self._load_entity(EntityKind.LEAVE_REQUEST, leave_request_id, company_id)
        employee_id = request.get("employee_id")
        employee = await self._load_entity(EntityKind.EMPLOYEE, employee_id, company_id)
        employee_name = employee.get("name", "")

        leave_type = request.get("leave_type") or DEFAULT_LEAVE_TYPE
        policy = LEAVE_POLICIES.get(leave_type, LEAVE_POLICIES[DEFAULT_LEAVE_TYPE])
        days = request.get("days") or 0

        defaults = [_manager_step(employee.get("manager_id"), f"直属上级审批{policy.name}申请")]
        if policy.needs_department_head:
            defaults.append(_department_head_step("部门负责人审批"))
        if policy.needs_hr:
            defaults.append(
                StepDefinition(name="HR审批", type=StepType.APPROVAL, description="HR部门审批", assignee_role="hr")
            )
        defaults.append(
            StepDefinition(name="请假记录", type=StepType.TASK, description="记录请假信息", assignee_role="system")
        )
        steps = self._build_steps(WorkflowType.ATTENDANCE, defaults, custom_steps)

        spec = InstanceSpec(
            company_id=company_id,
            template_id=LEAVE_TEMPLATE,
            template_name="请假审批流程",
            type=WorkflowType.ATTENDANCE,
            name=f"{employee_name} - {policy.name}",
            description=f"{request.get('start_date')} 至 {request.get('end_date')}，共{days}天",
            initiator_id=initiator_id,
            initiator_name=initiator_name,
            related_entity_type=EntityKind.LEAVE_REQUEST.value,
            related_entity_id=leave_request_id,
            related_entity_name=f"{employee_name} - {policy.name}",
            form_data={
                "leave_request_id": leave_request_id,
                "employee_id": employee_id,
                "employee_name": employee_name,
                "leave_type": leave_type,
                "leave_type_name": policy.name,
                "start_date": request.get("start_date"),
                "end_date": request.get("end_date"),
                "days": days,
                "reason": request.get("reason"),
            },
            steps=steps,
            priority=Priority.MEDIUM if days > LONG_LEAVE_DAYS else Priority.LOW,
        )
        return await self._start_workflow(
            spec,
            f"创建请假工作流实例：{employee_name} - {policy.name}",
            {"leave_request_id": leave_request_id, "employee_id": employee_id, "days": days},
            on_created=self._mark_processing(EntityKind.LEAVE_REQUEST, leave_request_id, request),
        )

    async def create_overtime_workflow(
        self,
        company_id: str,
        overtime_request_id: str,
        initiator_id: str,
        initiator_name: str,
        custom_steps: CustomSteps = None,
    ) -> WorkflowInstance:
        request = await self._load_entity(EntityKind.OVERTIME_REQUEST, overtime_request_id, company_id)
        employee_id = request.get("employee_id")
        employee = await self._load_entity(EntityKind.EMPLOYEE, employee_id, company_id)
        employee_name = employee.get("name", "")
        hours = request.get("hours") or 0

        defaults = [_manager_step(employee.get("manager_id"), "直属上级审批加班申请")]
        if hours > LONG_OVERTIME_HOURS:
            defaults.append(_department_head_step("加班超过4小时需部门负责人审批"))
        defaults.append(
            StepDefinition(name="加班记录", type=StepType.TASK, description="记录加班信息", assignee_role="system")
        )
        steps = self._build_steps(WorkflowType.ATTENDANCE, defaults, custom_steps)

        overtime_date = request.get("overtime_date")
        spec = InstanceSpec(
            company_id=company_id,
            template_id=OVERTIME_TEMPLATE,
            template_name="加班审批流程",
            type=WorkflowType.ATTENDANCE,
            name=f"{employee_name} - 加班申请",
            description=f"{overtime_date} {request.get('start_time')}-{request.get('end_time')}，共{hours}小时",
            initiator_id=initiator_id,
            initiator_name=initiator_name,
            related_entity_type=EntityKind.OVERTIME_REQUEST.value,
            related_entity_id=overtime_request_id,
            related_entity_name=f"{employee_name} - 加班申请",
            form_data={
                "overtime_request_id": overtime_request_id,
                "employee_id": employee_id,
                "employee_name": employee_name,
                "overtime_date": overtime_date,
                "start_time": request.get("start_time"),
                "end_time": request.get("end_time"),
                "hours": hours,
                "reason": request.get("reason"),
            },
            steps=steps,
            priority=Priority.MEDIUM if hours > LONG_OVERTIME_HOURS else Priority.LOW,
        )
        return await self._start_workflow(
            spec,
            f"创建加班工作流实例：{employee_name}",
            {"overtime_request_id": overtime_request_id, "employee_id": employee_id, "hours": hours},
            on_created=self._mark_processing(EntityKind.OVERTIME_REQUEST, overtime_request_id, request),
        )

    def _mark_processing(self, kind: EntityKind, request_id: str, request: dict[str, Any]):
        async def mark(instance: WorkflowInstance) -> None:
            metadata = {**(request.get("metadata") or {}), "workflow_instance_id": instance.id}
            await self._update_entity(kind, request_id, {"status": "processing", "metadata": metadata})

        return mark

    async def advance_attendance_step(
        self, instance_id: str, result: StepResult, actor: Actor
    ) -> WorkflowInstance:
        return await self.advance(instance_id, result, actor)

    async def approve_attendance(
        self, instance_id: str, actor: Actor, comments: Optional[str] = None
    ) -> WorkflowInstance:
        return await self.approve(instance_id, actor, comments)

    async def _apply_effect(
        self, instance: WorkflowInstance, step: WorkflowStep, result: StepResult, actor: Actor
    ) -> None:
        if step.effect is StepEffect.APPROVE_ATTENDANCE_REQUEST:
            await self._update_entity(
                EntityKind(instance.related_entity_type),
                instance.related_entity_id,
                {"status": "approved", "approved_by": actor.id, "approved_at": self.manager.now().isoformat()},
            )

    async def _on_completed(
        self, instance: WorkflowInstance, result: StepResult, actor: Actor
    ) -> dict[str, Any]:
        return {f"{instance.related_entity_type}_id": instance.related_entity_id}

    async def reject_attendance(self, instance_id: str, reason: str, actor: Actor) -> WorkflowInstance:
        instance = await self._load_instance(instance_id, actor.company_id)
        kind = EntityKind(instance.related_entity_type)
        label = "请假" if kind is EntityKind.LEAVE_REQUEST else "加班"
        return await self._reject(instance_id, reason, actor, kind, f"拒绝{label}申请：{reason}")

    async def get_leave_workflow(self, leave_request_id: str, company_id: str) -> WorkflowInstance | None:
        return await self._find_workflow(WorkflowType.ATTENDANCE, leave_request_id, company_id, LEAVE_TEMPLATE)

    async def get_overtime_workflow(
        self, overtime_request_id: str, company_id: str
    ) -> WorkflowInstance | None:
        return await self._find_workflow(
            WorkflowType.ATTENDANCE, overtime_request_id, company_id, OVERTIME_TEMPLATE
        )

    async def get_attendance_stats(self, company_id: str) -> WorkflowStats:
        return await self.get_stats(company_id)
