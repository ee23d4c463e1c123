"""Points: award requests, exchanges for goods, and changes to the award rules."""

from __future__ import annotations

import logging
from typing import Any, Optional

from ..contracts import Actor, InstanceSpec, StepDefinition, StepResult
from ..exceptions import InsufficientPointsError
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

logger = logging.getLogger(__name__)

APPROVAL_TEMPLATE = "points-approval-default"
EXCHANGE_TEMPLATE = "points-exchange-default"
RULE_CHANGE_TEMPLATE = "points-rule-change-default"

DEPARTMENT_HEAD_THRESHOLD = 500
HR_THRESHOLD = 1000

RULE_CHANGE_LABELS = {"create": "新增", "update": "修改", "delete": "删除"}


def _system_step(name: str, description: str) -> StepDefinition:
    return StepDefinition(name=name, type=StepType.TASK, description=description, assignee_role="system")


class PointsWorkflowAdapter(WorkflowAdapter):
    """Keeps ``points`` on the employee record in step with approved requests."""

    workflow_types = (WorkflowType.POINTS,)
    effect_catalogue = {
        WorkflowType.POINTS: {
            "积分发放": StepEffect.GRANT_POINTS,
            "积分扣除": StepEffect.DEDUCT_POINTS,
            "规则生效": StepEffect.APPLY_POINTS_RULE_CHANGE,
        }
    }
    supported_effects = frozenset(
        {StepEffect.GRANT_POINTS, StepEffect.DEDUCT_POINTS, StepEffect.APPLY_POINTS_RULE_CHANGE}
    )
    rate_name = "approval_rate"

    async def create_points_approval_workflow(
        self,
        company_id: str,
        points_request_id: str,
        initiator_id: str,
        initiator_name: str,
        custom_steps: CustomSteps = None,
    ) -> WorkflowInstance:
        request = await self._load_entity(EntityKind.POINTS_REQUEST, points_request_id, company_id)
        employee_id = request.get("employee_id")
        employee = await self._load_entity(EntityKind.EMPLOYEE, employee_id, company_id)
        employee_name = employee.get("name", "")
        points = request.get("points") or 0
        category = request.get("category") or ""

        defaults = [
            StepDefinition.for_user_or_role(
                employee.get("manager_id"),
                "manager",
                name="直属上级审批",
                type=StepType.APPROVAL,
                description="直属上级审批积分申请",
            )
        ]
        if points > DEPARTMENT_HEAD_THRESHOLD:
            defaults.append(
                StepDefinition(
                    name="部门负责人审批",
                    type=StepType.APPROVAL,
                    description="积分超过500需部门负责人审批",
                    assignee_role="department_manager",
                )
            )
        if points > HR_THRESHOLD:
            defaults.append(
                StepDefinition(
                    name="HR审批", type=StepType.APPROVAL, description="积分超过1000需HR审批", assignee_role="hr"
                )
            )
        defaults.append(_system_step("积分发放", "发放积分到员工账户"))
        steps = self._build_steps(WorkflowType.POINTS, defaults, custom_steps)

        spec = InstanceSpec(
            company_id=company_id,
            template_id=APPROVAL_TEMPLATE,
            template_name="积分申请流程",
            type=WorkflowType.POINTS,
            name=f"{employee_name} - {category}积分申请",
            description=f"申请积分：{points}，原因：{request.get('reason', '')}",
            initiator_id=initiator_id,
            initiator_name=initiator_name,
            related_entity_type=EntityKind.POINTS_REQUEST.value,
            related_entity_id=points_request_id,
            related_entity_name=f"{employee_name} - {category}积分申请",
            form_data={
                "points_request_id": points_request_id,
                "employee_id": employee_id,
                "employee_name": employee_name,
                "points": points,
                "category": category,
                "reason": request.get("reason"),
            },
            steps=steps,
            priority=Priority.HIGH if points > HR_THRESHOLD else Priority.MEDIUM,
        )
        return await self._start_workflow(
            spec,
            f"创建积分申请工作流实例：{employee_name}",
            {"points_request_id": points_request_id, "employee_id": employee_id, "points": points},
            on_created=self._link(EntityKind.POINTS_REQUEST, points_request_id, request),
        )

    async def create_points_exchange_workflow(
        self,
        company_id: str,
        exchange_id: str,
        initiator_id: str,
        initiator_name: str,
        custom_steps: CustomSteps = None,
    ) -> WorkflowInstance:
        exchange = await self._load_entity(EntityKind.POINTS_EXCHANGE, exchange_id, company_id)
        employee_id = exchange.get("employee_id")
        employee = await self._load_entity(EntityKind.EMPLOYEE, employee_id, company_id)
        employee_name = employee.get("name", "")
        item_name = exchange.get("item_name", "")
        points = exchange.get("points") or 0

        defaults = [
            StepDefinition.for_user_or_role(
                employee.get("user_id"), "employee", name="兑换申请", type=StepType.TASK, description="提交兑换申请"
            ),
            _system_step("积分扣除", "扣除兑换所需积分"),
            StepDefinition(name="发放商品", type=StepType.TASK, description="发放兑换商品", assignee_role="hr"),
            _system_step("兑换完成", "确认兑换完成"),
        ]
        steps = self._build_steps(WorkflowType.POINTS, defaults, custom_steps)

        spec = InstanceSpec(
            company_id=company_id,
            template_id=EXCHANGE_TEMPLATE,
            template_name="积分兑换流程",
            type=WorkflowType.POINTS,
            name=f"{employee_name} - 兑换{item_name}",
            description=f"兑换商品：{item_name}，消耗积分：{points}",
            initiator_id=initiator_id,
            initiator_name=initiator_name,
            related_entity_type=EntityKind.POINTS_EXCHANGE.value,
            related_entity_id=exchange_id,
            related_entity_name=f"{employee_name} - 兑换{item_name}",
            form_data={
                "exchange_id": exchange_id,
                "employee_id": employee_id,
                "employee_name": employee_name,
                "item_id": exchange.get("item_id"),
                "item_name": item_name,
                "points": points,
            },
            steps=steps,
            priority=Priority.MEDIUM,
        )
        return await self._start_workflow(
            spec,
            f"创建积分兑换工作流实例：{employee_name} - {item_name}",
            {"exchange_id": exchange_id, "employee_id": employee_id, "points": points},
            on_created=self._link(EntityKind.POINTS_EXCHANGE, exchange_id, exchange),
        )

    async def create_points_rule_change_workflow(
        self,
        company_id: str,
        rule_id: str,
        change_type: str,
        description: str,
        initiator_id: str,
        initiator_name: str,
        changes: Optional[dict[str, Any]] = None,
        custom_steps: CustomSteps = None,
    ) -> WorkflowInstance:
        if change_type not in RULE_CHANGE_LABELS:
            raise ValueError(f"Unknown points rule change type: {change_type}")
        rule = await self._load_entity(EntityKind.POINTS_RULE, rule_id, company_id)
        rule_name = rule.get("name", "")
        label = RULE_CHANGE_LABELS[change_type]

        defaults = [
            StepDefinition(name="HR审核", type=StepType.APPROVAL, description="HR部门审核规则变更", assignee_role="hr"),
            StepDefinition(name="管理层审批", type=StepType.APPROVAL, description="管理层审批", assignee_role="ceo"),
            _system_step("规则生效", "积分规则变更生效"),
            StepDefinition(name="通知员工", type=StepType.TASK, description="通知全体员工", assignee_role="hr"),
        ]
        steps = self._build_steps(WorkflowType.POINTS, defaults, custom_steps)

        spec = InstanceSpec(
            company_id=company_id,
            template_id=RULE_CHANGE_TEMPLATE,
            template_name="积分规则变更流程",
            type=WorkflowType.POINTS,
            name=f"{rule_name} - 规则{label}",
            description=description,
            initiator_id=initiator_id,
            initiator_name=initiator_name,
            related_entity_type=EntityKind.POINTS_RULE.value,
            related_entity_id=rule_id,
            related_entity_name=rule_name,
            form_data={
                "rule_id": rule_id,
                "rule_name": rule_name,
                "change_type": change_type,
                "changes": changes or {},
            },
            steps=steps,
            priority=Priority.HIGH,
        )
        return await self._start_workflow(
            spec,
            f"创建积分规则变更工作流实例：{rule_name}",
            {"rule_id": rule_id, "change_type": change_type},
        )

    def _link(self, kind: EntityKind, entity_id: str, record: dict[str, Any]):
        async def link(instance: WorkflowInstance) -> None:
            metadata = {**(record.get("metadata") or {}), "workflow_instance_id": instance.id}
            await self._update_entity(kind, entity_id, {"status": "processing", "metadata": metadata})

        return link

    async def advance_points_step(
        self, instance_id: str, result: StepResult, actor: Actor
    ) -> WorkflowInstance:
        return await self.advance(instance_id, result, actor)

    async def approve_points(
        self, instance_id: str, actor: Actor, comments: Optional[str] = None
    ) -> WorkflowInstance:
        return await self.approve(instance_id, actor, comments)

    async def _adjust_balance(self, instance: WorkflowInstance, delta: float) -> None:
        employee_id = instance.form_data.get("employee_id")
        employee = await self._load_entity(EntityKind.EMPLOYEE, employee_id, instance.company_id)
        balance = employee.get("points") or 0
        if balance + delta < 0:
            raise InsufficientPointsError(employee_id, balance, -delta)
        await self._update_entity(EntityKind.EMPLOYEE, employee_id, {"points": balance + delta})

    async def _apply_effect(
        self, instance: WorkflowInstance, step: WorkflowStep, result: StepResult, actor: Actor
    ) -> None:
        points = instance.form_data.get("points") or 0
        if step.effect is StepEffect.GRANT_POINTS:
            await self._adjust_balance(instance, points)
        elif step.effect is StepEffect.DEDUCT_POINTS:
            await self._adjust_balance(instance, -points)
        elif step.effect is StepEffect.APPLY_POINTS_RULE_CHANGE:
            change_type = instance.form_data.get("change_type")
            if change_type == "delete":
                patch: dict[str, Any] = {"status": "deleted", "is_active": False}
            else:
                patch = {**(instance.form_data.get("changes") or {}), "status": "active", "is_active": True}
            await self._update_entity(EntityKind.POINTS_RULE, instance.related_entity_id, patch)
            logger.info(f"Applied points rule {change_type} for rule {instance.related_entity_id}")

    async def _on_completed(
        self, instance: WorkflowInstance, result: StepResult, actor: Actor
    ) -> dict[str, Any]:
        kind = EntityKind(instance.related_entity_type)
        if kind is not EntityKind.POINTS_RULE:
            await self._update_entity(
                kind,
                instance.related_entity_id,
                {"status": "completed", "completed_at": instance.end_date.isoformat()},
            )
        return {f"{kind.value}_id": instance.related_entity_id}

    async def reject_points(self, instance_id: str, reason: str, actor: Actor) -> WorkflowInstance:
        """Cancel a points process; a rule under change keeps its current state."""
        instance = await self._load_instance(instance_id, actor.company_id)
        kind = EntityKind(instance.related_entity_type)
        if kind is EntityKind.POINTS_RULE:
            return await self._reject(instance_id, reason, actor, None, f"拒绝积分规则变更：{reason}")
        label = "积分兑换" if kind is EntityKind.POINTS_EXCHANGE else "积分申请"
        return await self._reject(instance_id, reason, actor, kind, f"拒绝{label}：{reason}")

    async def get_points_workflow(
        self, related_entity_id: str, company_id: str, template_id: Optional[str] = None
    ) -> WorkflowInstance | None:
        return await self._find_workflow(WorkflowType.POINTS, related_entity_id, company_id, template_id)

    async def get_points_stats(self, company_id: str) -> WorkflowStats:
        return await self.get_stats(company_id)
