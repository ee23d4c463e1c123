"""Monthly payroll run for a company."""

from __future__ import annotations

from typing import Any, Optional

from ..contracts import Actor, InstanceSpec, StepDefinition, StepResult
from ..persistence.models import Priority, StepType, WorkflowInstance, WorkflowType
from ..stats import WorkflowStats
from .base import CustomSteps, WorkflowAdapter

SALARY_CALCULATION_ENTITY = "salary_calculation"


def calculation_id(year: int, month: int) -> str:
    return f"{year}-{month:02d}"


class PayrollWorkflowAdapter(WorkflowAdapter):
    """Drives the review and payout of one month's salaries.

    The run has no record of its own in the entity store; it is identified
    by ``YYYY-MM``.
    """

    workflow_types = (WorkflowType.SALARY_CALCULATION,)
    rate_name = "completion_rate"

    async def create_salary_calculation_workflow(
        self,
        company_id: str,
        year: int,
        month: int,
        initiator_id: str,
        initiator_name: str,
        custom_steps: CustomSteps = None,
    ) -> WorkflowInstance:
        if not 1 <= month <= 12:
            raise ValueError(f"Invalid payroll month: {month}")

        defaults = [
            StepDefinition(name="数据核对", type=StepType.TASK, description="核对考勤与绩效数据", assignee_role="hr"),
            StepDefinition(name="薪资计算", type=StepType.TASK, description="计算员工薪资", assignee_role="hr"),
            StepDefinition(
                name="薪资审核", type=StepType.APPROVAL, description="HR总监审核薪资", assignee_role="hr_director"
            ),
            StepDefinition(name="财务审批", type=StepType.APPROVAL, description="财务部门审批", assignee_role="finance"),
            StepDefinition(name="薪资发放", type=StepType.TASK, description="发放薪资", assignee_role="hr"),
            StepDefinition(name="发放确认", type=StepType.TASK, description="员工确认到账", assignee_role="employee"),
        ]
        steps = self._build_steps(WorkflowType.SALARY_CALCULATION, defaults, custom_steps)

        period = calculation_id(year, month)
        title = f"{year}年{month}月薪资核算"
        spec = InstanceSpec(
            company_id=company_id,
            template_id="salary-calculation-default",
            template_name="薪资核算流程",
            type=WorkflowType.SALARY_CALCULATION,
            name=title,
            description=f"核算{year}年{month}月员工薪资",
            initiator_id=initiator_id,
            initiator_name=initiator_name,
            related_entity_type=SALARY_CALCULATION_ENTITY,
            related_entity_id=period,
            related_entity_name=title,
            form_data={"year": year, "month": month, "calculation_date": self.manager.now().isoformat()},
            steps=steps,
            priority=Priority.HIGH,
        )
        return await self._start_workflow(
            spec, f"创建薪资核算工作流实例：{title}", {"year": year, "month": month}
        )

    async def advance_payroll_step(
        self, instance_id: str, result: StepResult, actor: Actor
    ) -> WorkflowInstance:
        return await self.advance(instance_id, result, actor)

    async def approve_salary_calculation(
        self, instance_id: str, actor: Actor, comments: Optional[str] = None
    ) -> WorkflowInstance:
        return await self.approve(instance_id, actor, comments)

    async def _on_completed(
        self, instance: WorkflowInstance, result: StepResult, actor: Actor
    ) -> dict[str, Any]:
        return {"period": instance.related_entity_id}

    async def reject_salary_calculation(
        self, instance_id: str, reason: str, actor: Actor
    ) -> WorkflowInstance:
        return await self._reject(instance_id, reason, actor, None, f"薪资核算被驳回，原因：{reason}")

    async def get_payroll_workflow(
        self, year: int, month: int, company_id: str
    ) -> WorkflowInstance | None:
        return await self._find_workflow(
            WorkflowType.SALARY_CALCULATION, calculation_id(year, month), company_id
        )

    async def get_payroll_stats(self, company_id: str) -> WorkflowStats:
        return await self.get_stats(company_id)
