"""Training: employee enrollment in a course and development of new courses."""

from __future__ import annotations

from typing import Any, Optional

from ..contracts import Actor, InstanceSpec, StepDefinition, StepResult, TrainingStepResult
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

ENROLLMENT_TEMPLATE = "training-enrollment-default"
DEVELOPMENT_TEMPLATE = "training-development-default"

COURSE_FIELDS = ("duration", "price", "type", "category")


class TrainingWorkflowAdapter(WorkflowAdapter):
    """Both training processes share one workflow type; the template tells them apart."""

    workflow_types = (WorkflowType.TRAINING,)
    effect_catalogue = {
        WorkflowType.TRAINING: {
            "培训考核": StepEffect.RECORD_TRAINING_RESULT,
            "课程发布": StepEffect.PUBLISH_TRAINING_COURSE,
        }
    }
    supported_effects = frozenset({StepEffect.RECORD_TRAINING_RESULT, StepEffect.PUBLISH_TRAINING_COURSE})
    rate_name = "completion_rate"

    async def create_training_enrollment_workflow(
        self,
        company_id: str,
        record_id: str,
        initiator_id: str,
        initiator_name: str,
        custom_steps: CustomSteps = None,
    ) -> WorkflowInstance:
        record = await self._load_entity(EntityKind.TRAINING_RECORD, record_id, company_id)
        course_id = record.get("course_id")
        course = await self._load_entity(EntityKind.TRAINING_COURSE, course_id, company_id)
        employee_id = record.get("employee_id")
        employee = await self._load_entity(EntityKind.EMPLOYEE, employee_id, company_id)
        employee_name, course_title = employee.get("name", ""), course.get("title", "")

        user_id = employee.get("user_id")
        defaults = [
            StepDefinition.for_user_or_role(
                employee.get("manager_id"),
                "manager",
                name="直属上级审批",
                type=StepType.APPROVAL,
                description="直属上级审批培训申请",
            ),
            StepDefinition(
                name="部门负责人审批",
                type=StepType.APPROVAL,
                description="部门负责人审批",
                assignee_role="department_manager",
            ),
            StepDefinition(name="HR审批", type=StepType.APPROVAL, description="HR部门审批", assignee_role="hr"),
            StepDefinition.for_user_or_role(
                user_id, "employee", name="培训报名", type=StepType.TASK, description="完成培训报名"
            ),
            StepDefinition.for_user_or_role(
                user_id, "employee", name="参加培训", type=StepType.TASK, description="参加培训课程"
            ),
            StepDefinition.for_user_or_role(
                user_id, "employee", name="培训考核", type=StepType.APPROVAL, description="完成培训考核"
            ),
            StepDefinition.for_user_or_role(
                user_id, "employee", name="培训评估", type=StepType.TASK, description="填写培训评估"
            ),
        ]
        steps = self._build_steps(WorkflowType.TRAINING, defaults, custom_steps)

        subject = f"{employee_name} - {course_title}"
        spec = InstanceSpec(
            company_id=company_id,
            template_id=ENROLLMENT_TEMPLATE,
            template_name="培训申请流程",
            type=WorkflowType.TRAINING,
            name=f"{subject} 培训申请",
            description=f"员工：{employee_name}，课程：{course_title}",
            initiator_id=initiator_id,
            initiator_name=initiator_name,
            related_entity_type=EntityKind.TRAINING_RECORD.value,
            related_entity_id=record_id,
            related_entity_name=subject,
            form_data={
                "record_id": record_id,
                "course_id": course_id,
                "course_title": course_title,
                "employee_id": employee_id,
                "employee_name": employee_name,
                "department_id": employee.get("department_id"),
                **{f"course_{field}": course.get(field) for field in COURSE_FIELDS},
            },
            steps=steps,
            priority=Priority.MEDIUM,
        )

        async def link_record(instance: WorkflowInstance) -> None:
            metadata = {**(record.get("metadata") or {}), "workflow_instance_id": instance.id}
            await self._update_entity(EntityKind.TRAINING_RECORD, record_id, {"metadata": metadata})

        return await self._start_workflow(
            spec,
            f"创建培训申请工作流实例：{subject}",
            {"record_id": record_id, "course_id": course_id, "employee_id": employee_id},
            on_created=link_record,
        )

    async def create_training_development_workflow(
        self,
        company_id: str,
        title: str,
        initiator_id: str,
        initiator_name: str,
        course_id: Optional[str] = None,
        custom_steps: CustomSteps = None,
    ) -> WorkflowInstance:
        course = await self._load_entity(EntityKind.TRAINING_COURSE, course_id, company_id) if course_id else None

        defaults = [
            StepDefinition(name="课程设计", type=StepType.TASK, description="设计课程大纲", assignee_id=initiator_id),
            StepDefinition(name="内容制作", type=StepType.TASK, description="制作课程内容", assignee_id=initiator_id),
            StepDefinition(name="专家审核", type=StepType.APPROVAL, description="专家审核课程内容", assignee_role="expert"),
            StepDefinition(name="HR审核", type=StepType.APPROVAL, description="HR部门审核", assignee_role="hr"),
            StepDefinition(name="课程发布", type=StepType.TASK, description="发布课程", assignee_role="hr"),
        ]
        steps = self._build_steps(WorkflowType.TRAINING, defaults, custom_steps)

        spec = InstanceSpec(
            company_id=company_id,
            template_id=DEVELOPMENT_TEMPLATE,
            template_name="培训开发流程",
            type=WorkflowType.TRAINING,
            name=f"{title} - 课程开发",
            description=f"课程开发：{title}",
            initiator_id=initiator_id,
            initiator_name=initiator_name,
            related_entity_type=EntityKind.TRAINING_COURSE.value,
            related_entity_id=course_id,
            related_entity_name=title,
            form_data={"title": title, "course_id": course_id},
            steps=steps,
            priority=Priority.MEDIUM,
        )

        async def link_course(instance: WorkflowInstance) -> None:
            if course is None:
                return
            metadata = {**(course.get("metadata") or {}), "workflow_instance_id": instance.id}
            await self._update_entity(EntityKind.TRAINING_COURSE, course_id, {"metadata": metadata})

        return await self._start_workflow(
            spec,
            f"创建课程开发工作流实例：{title}",
            {"title": title, "course_id": course_id},
            on_created=link_course,
        )

    async def advance_training_step(
        self, instance_id: str, result: StepResult, actor: Actor
    ) -> WorkflowInstance:
        return await self.advance(instance_id, result, actor)

    async def approve_training(
        self, instance_id: str, actor: Actor, comments: Optional[str] = None
    ) -> WorkflowInstance:
        return await self.approve(instance_id, actor, comments)

    async def _apply_effect(
        self, instance: WorkflowInstance, step: WorkflowStep, result: StepResult, actor: Actor
    ) -> None:
        if step.effect is StepEffect.RECORD_TRAINING_RESULT:
            scores = result.scores if isinstance(result, TrainingStepResult) else None
            if scores is None or (scores.training_score is None and scores.assessment_score is None):
                return
            score = scores.assessment_score if scores.assessment_score is not None else scores.training_score
            patch: dict[str, Any] = {
                "status": "completed",
                "progress": 100,
                "score": score,
                "completion_date": self.manager.now().isoformat(),
            }
            if scores.satisfaction_score is not None:
                patch["satisfaction_score"] = scores.satisfaction_score
            if result.comments:
                patch["feedback"] = result.comments
            await self._update_entity(EntityKind.TRAINING_RECORD, instance.related_entity_id, patch)
        elif step.effect is StepEffect.PUBLISH_TRAINING_COURSE and instance.related_entity_id:
            await self._update_entity(
                EntityKind.TRAINING_COURSE, instance.related_entity_id, {"is_active": True, "status": "published"}
            )

    async def _on_completed(
        self, instance: WorkflowInstance, result: StepResult, actor: Actor
    ) -> dict[str, Any]:
        key = "record_id" if instance.template_id == ENROLLMENT_TEMPLATE else "course_id"
        return {key: instance.related_entity_id}

    async def reject_training(self, instance_id: str, reason: str, actor: Actor) -> WorkflowInstance:
        """Cancel either training process.

        An enrollment's record becomes ``cancelled``; a linked course under
        development becomes ``rejected``.
        """
        instance = await self._load_instance(instance_id, actor.company_id)
        if instance.template_id == ENROLLMENT_TEMPLATE:
            return await self._reject(
                instance_id,
                reason,
                actor,
                EntityKind.TRAINING_RECORD,
                f"拒绝培训申请：{reason}",
                entity_status="cancelled",
            )
        kind = EntityKind.TRAINING_COURSE if instance.related_entity_id else None
        return await self._reject(instance_id, reason, actor, kind, f"拒绝课程开发：{reason}")

    async def get_training_workflow(
        self, related_entity_id: str, company_id: str, template_id: Optional[str] = None
    ) -> WorkflowInstance | None:
        return await self._find_workflow(WorkflowType.TRAINING, related_entity_id, company_id, template_id)

    async def get_training_stats(self, company_id: str) -> WorkflowStats:
        return await self.get_stats(company_id)
