"""Employee lifecycle: onboarding, promotion, transfer and salary adjustment."""

from __future__ import annotations

import logging
from typing import Any, Optional

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
from .base import TYPE_LABELS, CustomSteps, WorkflowAdapter

logger = logging.getLogger(__name__)

EMPLOYEE_WORKFLOW_TYPES = (
    WorkflowType.ONBOARDING,
    WorkflowType.PROMOTION,
    WorkflowType.TRANSFER,
    WorkflowType.SALARY_ADJUSTMENT,
)


def _step(name: str, type: StepType, description: str, user_id: Optional[str], role: str) -> StepDefinition:
    return StepDefinition.for_user_or_role(user_id, role, name=name, type=type, description=description)


def _hr_step(name: str, type: StepType, description: str) -> StepDefinition:
    return StepDefinition(name=name, type=type, description=description, assignee_role="hr")


class EmployeeWorkflowAdapter(WorkflowAdapter):
    """One adapter for the four processes that act on an employee record.

    The effect of the closing step (new position, department or salary) is
    taken from the instance ``form_data`` captured at creation.
    """

    workflow_types = EMPLOYEE_WORKFLOW_TYPES
    effect_catalogue = {
        WorkflowType.PROMOTION: {"晋升生效": StepEffect.APPLY_PROMOTION},
        WorkflowType.TRANSFER: {"转岗生效": StepEffect.APPLY_TRANSFER},
        WorkflowType.SALARY_ADJUSTMENT: {"薪资生效": StepEffect.APPLY_SALARY_ADJUSTMENT},
    }
    supported_effects = frozenset(
        {
            StepEffect.APPLY_PROMOTION,
            StepEffect.APPLY_TRANSFER,
            StepEffect.APPLY_SALARY_ADJUSTMENT,
        }
    )
    rate_name = "completion_rate"
    effects_require_advance = True

    async def _name_of(self, kind: EntityKind, entity_id: Optional[str], company_id: str) -> str:
        if not entity_id:
            return ""
        record = await self._load_entity(kind, entity_id, company_id)
        return record.get("name", "")

    def _spec(
        self,
        workflow_type: WorkflowType,
        template_name: str,
        company_id: str,
        employee_id: str,
        employee: dict[str, Any],
        description: str,
        initiator_id: str,
        initiator_name: str,
        form_data: dict[str, Any],
        steps: list[WorkflowStep],
        priority: Priority = Priority.MEDIUM,
    ) -> InstanceSpec:
        employee_name = employee.get("name", "")
        return InstanceSpec(
            company_id=company_id,
            template_id=f"{workflow_type.value}-default",
            template_name=template_name,
            type=workflow_type,
            name=f"{employee_name} - {TYPE_LABELS[workflow_type]}流程",
            description=description,
            initiator_id=initiator_id,
            initiator_name=initiator_name,
            related_entity_type=EntityKind.EMPLOYEE.value,
            related_entity_id=employee_id,
            related_entity_name=employee_name,
            form_data={"employee_id": employee_id, "employee_name": employee_name, **form_data},
            steps=steps,
            priority=priority,
        )

    # ------------------------------------------------------------------
    # Creation
    async def create_onboarding_workflow(
        self,
        company_id: str,
        employee_id: str,
        initiator_id: str,
        initiator_name: str,
        custom_steps: CustomSteps = None,
    ) -> WorkflowInstance:
        employee = await self._load_entity(EntityKind.EMPLOYEE, employee_id, company_id)
        employee_name = employee.get("name", "")
        department_name = await self._name_of(EntityKind.DEPARTMENT, employee.get("department_id"), company_id)
        position_name = await self._name_of(EntityKind.POSITION, employee.get("position_id"), company_id)

        defaults = [
            _step("入职审批", StepType.APPROVAL, "部门负责人审批", employee.get("manager_id"), "manager"),
            _hr_step("HR审批", StepType.APPROVAL, "HR部门审批"),
            StepDefinition(name="入职准备", type=StepType.TASK, description="准备工位、设备、账号等", assignee_role="admin"),
            _hr_step("合同签订", StepType.TASK, "签订劳动合同"),
            _step("入职培训", StepType.TASK, "完成入职培训", employee.get("user_id"), "employee"),
        ]
        spec = self._spec(
            WorkflowType.ONBOARDING,
            "标准入职流程",
            company_id,
            employee_id,
            employee,
            f"员工：{employee_name}，职位：{position_name}，部门：{department_name}",
            initiator_id,
            initiator_name,
            {
                "department_id": employee.get("department_id"),
                "department_name": department_name,
                "position_id": employee.get("position_id"),
                "position_name": position_name,
                "hire_date": employee.get("hire_date"),
            },
            self._build_steps(WorkflowType.ONBOARDING, defaults, custom_steps),
            priority=Priority.HIGH,
        )
        return await self._start_workflow(
            spec,
            f"创建入职工作流实例：{employee_name}",
            {"employee_id": employee_id, "hire_date": employee.get("hire_date")},
        )

    async def create_promotion_workflow(
        self,
        company_id: str,
        employee_id: str,
        target_position_id: str,
        initiator_id: str,
        initiator_name: str,
        custom_steps: CustomSteps = None,
    ) -> WorkflowInstance:
        employee = await self._load_entity(EntityKind.EMPLOYEE, employee_id, company_id)
        employee_name = employee.get("name", "")
        target_position = await self._load_entity(EntityKind.POSITION, target_position_id, company_id)
        target_position_name = target_position.get("name", "")

        defaults = [
            _step("晋升申请", StepType.TASK, "填写晋升申请", employee.get("user_id"), "employee"),
            _step("直属上级审批", StepType.APPROVAL, "直属上级审批", employee.get("manager_id"), "manager"),
            StepDefinition(name="部门负责人审批", type=StepType.APPROVAL, description="部门负责人审批", assignee_role="department_manager"),
            _hr_step("HR审批", StepType.APPROVAL, "HR部门审批"),
            _hr_step("薪资调整", StepType.TASK, "调整薪资待遇"),
            _hr_step("晋升生效", StepType.TASK, "正式晋升生效"),
        ]
        spec = self._spec(
            WorkflowType.PROMOTION,
            "标准晋升流程",
            company_id,
            employee_id,
            employee,
            f"员工：{employee_name}，晋升至：{target_position_name}",
            initiator_id,
            initiator_name,
            {
                "current_position_id": employee.get("position_id"),
                "target_position_id": target_position_id,
                "target_position_name": target_position_name,
                "department_id": employee.get("department_id"),
            },
            self._build_steps(WorkflowType.PROMOTION, defaults, custom_steps),
        )
        return await self._start_workflow(
            spec,
            f"创建晋升工作流实例：{employee_name}",
            {
                "employee_id": employee_id,
                "current_position_id": employee.get("position_id"),
                "target_position_id": target_position_id,
            },
        )

    async def create_transfer_workflow(
        self,
        company_id: str,
        employee_id: str,
        target_department_id: str,
        target_position_id: str,
        initiator_id: str,
        initiator_name: str,
        custom_steps: CustomSteps = None,
    ) -> WorkflowInstance:
        employee = await self._load_entity(EntityKind.EMPLOYEE, employee_id, company_id)
        employee_name = employee.get("name", "")
        target_department = await self._load_entity(EntityKind.DEPARTMENT, target_department_id, company_id)
        target_department_name = target_department.get("name", "")
        target_position = await self._load_entity(EntityKind.POSITION, target_position_id, company_id)
        target_position_name = target_position.get("name", "")

        defaults = [
            _step("转岗申请", StepType.TASK, "填写转岗申请", employee.get("user_id"), "employee"),
            _step("原部门审批", StepType.APPROVAL, "原部门负责人审批", employee.get("manager_id"), "manager"),
            _step(
                "目标部门审批",
                StepType.APPROVAL,
                "目标部门负责人审批",
                target_department.get("manager_id"),
                "department_manager",
            ),
            _hr_step("HR审批", StepType.APPROVAL, "HR部门审批"),
            _step("工作交接", StepType.TASK, "完成原岗位工作交接", employee.get("user_id"), "employee"),
            _hr_step("转岗生效", StepType.TASK, "正式转岗生效"),
        ]
        spec = self._spec(
            WorkflowType.TRANSFER,
            "标准转岗流程",
            company_id,
            employee_id,
            employee,
            f"员工：{employee_name}，转岗至：{target_position_name}（{target_department_name}）",
            initiator_id,
            initiator_name,
            {
                "current_department_id": employee.get("department_id"),
                "current_position_id": employee.get("position_id"),
                "target_department_id": target_department_id,
                "target_department_name": target_department_name,
                "target_position_id": target_position_id,
                "target_position_name": target_position_name,
            },
            self._build_steps(WorkflowType.TRANSFER, defaults, custom_steps),
        )
        return await self._start_workflow(
            spec,
            f"创建转岗工作流实例：{employee_name}",
            {
                "employee_id": employee_id,
                "target_department_id": target_department_id,
                "target_position_id": target_position_id,
            },
        )

    async def create_salary_adjustment_workflow(
        self,
        company_id: str,
        employee_id: str,
        new_salary: float,
        reason: str,
        initiator_id: str,
        initiator_name: str,
        current_salary: Optional[float] = None,
        custom_steps: CustomSteps = None,
    ) -> WorkflowInstance:
        employee = await self._load_entity(EntityKind.EMPLOYEE, employee_id, company_id)
        employee_name = employee.get("name", "")
        if current_salary is None:
            current_salary = employee.get("salary") or 0
        adjustment = new_salary - current_salary
        adjustment_percent = round(adjustment / current_salary * 100, 2) if current_salary else None

        defaults = [
            _step("调薪申请", StepType.TASK, "填写调薪申请", employee.get("user_id"), "employee"),
            _step("直属上级审批", StepType.APPROVAL, "直属上级审批", employee.get("manager_id"), "manager"),
            StepDefinition(name="部门负责人审批", type=StepType.APPROVAL, description="部门负责人审批", assignee_role="department_manager"),
            _hr_step("HR审批", StepType.APPROVAL, "HR部门审批"),
            _hr_step("薪资生效", StepType.TASK, "薪资调整生效"),
        ]
        spec = self._spec(
            WorkflowType.SALARY_ADJUSTMENT,
            "标准调薪流程",
            company_id,
            employee_id,
            employee,
            f"员工：{employee_name}，调薪：{current_salary} → {new_salary}",
            initiator_id,
            initiator_name,
            {
                "current_salary": current_salary,
                "new_salary": new_salary,
                "adjustment": adjustment,
                "adjustment_percent": adjustment_percent,
                "reason": reason,
                "department_id": employee.get("department_id"),
                "position_id": employee.get("position_id"),
            },
            self._build_steps(WorkflowType.SALARY_ADJUSTMENT, defaults, custom_steps),
        )
        return await self._start_workflow(
            spec,
            f"创建调薪工作流实例：{employee_name}",
            {
                "employee_id": employee_id,
                "current_salary": current_salary,
                "new_salary": new_salary,
                "reason": reason,
            },
        )

    # ------------------------------------------------------------------
    # Advancement
    async def advance_employee_workflow_step(
        self, instance_id: str, result: StepResult, actor: Actor
    ) -> WorkflowInstance:
        return await self.advance(instance_id, result, actor)

    async def _apply_effect(
        self, instance: WorkflowInstance, step: WorkflowStep, result: StepResult, actor: Actor
    ) -> None:
        form_data = instance.form_data
        patch: dict[str, Any] = {}
        if step.effect is StepEffect.APPLY_PROMOTION:
            patch["position_id"] = form_data.get("target_position_id")
        elif step.effect is StepEffect.APPLY_TRANSFER:
            patch["department_id"] = form_data.get("target_department_id")
            patch["position_id"] = form_data.get("target_position_id")
        elif step.effect is StepEffect.APPLY_SALARY_ADJUSTMENT:
            patch["salary"] = form_data.get("new_salary")
        patch = {key: value for key, value in patch.items() if value is not None}
        if not patch:
            if step.effect is not StepEffect.NONE:
                logger.warning(
                    f"Step {step.name} of instance {instance.id} has effect {step.effect.value} "
                    "but no target values in form data"
                )
            return
        await self._update_entity(EntityKind.EMPLOYEE, instance.related_entity_id, patch)

    # ------------------------------------------------------------------
    # Queries
    async def get_employee_workflow(
        self, employee_id: str, workflow_type: WorkflowType, company_id: str
    ) -> WorkflowInstance | None:
        return await self._find_workflow(workflow_type, employee_id, company_id)

    async def get_employee_workflow_stats(
        self, company_id: str, workflow_type: WorkflowType
    ) -> WorkflowStats:
        return await self.get_stats(company_id, workflow_type)
