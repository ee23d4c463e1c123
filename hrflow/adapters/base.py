"""Shared machinery for process-specific workflow adapters."""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, ClassVar, Mapping, Optional, Sequence, Union

from pydantic import ValidationError

from ..contracts import Actor, InstancePatch, InstanceSpec, StepDefinition, StepResult
from ..exceptions import (
    InvalidStepGraphError,
    InvalidTransitionError,
    NotApprovalStepError,
    NotFoundError,
    StepMismatchError,
    UnsupportedWorkflowTypeError,
)
from ..manager import WorkflowManager
from ..persistence import EntityRepository
from ..persistence.models import (
    EntityKind,
    HistoryAction,
    InstanceFilters,
    InstanceStatus,
    StepEffect,
    StepStatus,
    StepType,
    WorkflowInstance,
    WorkflowStep,
    WorkflowType,
)
from ..stats import StatisticsAggregator, WorkflowStats

logger = logging.getLogger(__name__)

CustomSteps = Optional[Sequence[Union[StepDefinition, Mapping[str, Any]]]]

TYPE_LABELS: dict[WorkflowType, str] = {
    WorkflowType.RECRUITMENT: "招聘",
    WorkflowType.ONBOARDING: "入职",
    WorkflowType.PROMOTION: "晋升",
    WorkflowType.TRANSFER: "转岗",
    WorkflowType.SALARY_ADJUSTMENT: "调薪",
    WorkflowType.PERFORMANCE: "绩效",
    WorkflowType.RESIGNATION: "离职",
    WorkflowType.TRAINING: "培训",
    WorkflowType.ATTENDANCE: "考勤",
    WorkflowType.POINTS: "积分",
    WorkflowType.SALARY_CALCULATION: "薪资核算",
}

INITIATOR_ROLE = "initiator"


class WorkflowAdapter:
    """Base class for the adapters that seed and drive one family of processes.

    Subclasses declare which workflow types they own, the effect each
    default step name carries (``effect_catalogue``) and the effects custom
    graphs may use (``supported_effects``). They implement ``_apply_effect``
    and, where the process has one, ``_on_completed``.
    """

    workflow_types: ClassVar[tuple[WorkflowType, ...]] = ()
    effect_catalogue: ClassVar[dict[WorkflowType, dict[str, StepEffect]]] = {}
    supported_effects: ClassVar[frozenset[StepEffect]] = frozenset()
    rate_name: ClassVar[str] = "completion_rate"
    # Employee lifecycle effects only fire once the step is advanced past.
    effects_require_advance: ClassVar[bool] = False

    def __init__(self, manager: WorkflowManager, entities: EntityRepository | None = None):
        self.manager = manager
        self.entities = entities or manager.repository
        self.stats = StatisticsAggregator(manager.repository)

    # ------------------------------------------------------------------
    # Entities
    async def _load_entity(
        self, kind: EntityKind, entity_id: Optional[str], company_id: str
    ) -> dict[str, Any]:
        """Return the record or raise ``NotFoundError`` (also across tenants)."""
        record = await self.entities.get_entity(kind, entity_id) if entity_id else None
        if record is None or record.get("company_id") != company_id:
            raise NotFoundError(kind.value, entity_id)
        return record

    async def _update_entity(
        self, kind: EntityKind, entity_id: Optional[str], patch: dict[str, Any]
    ) -> dict[str, Any]:
        record = await self.entities.update_entity(kind, entity_id, patch) if entity_id else None
        if record is None:
            raise NotFoundError(kind.value, entity_id)
        logger.info(f"Updated {kind.value} {entity_id}: {sorted(patch)}")
        return record

    # ------------------------------------------------------------------
    # Step graphs
    def _resolve_effect(self, workflow_type: WorkflowType, definition: StepDefinition) -> StepEffect:
        if definition.effect is None:
            return self.effect_catalogue.get(workflow_type, {}).get(definition.name, StepEffect.NONE)
        if definition.effect is not StepEffect.NONE and definition.effect not in self.supported_effects:
            raise InvalidStepGraphError(
                f"Effect {definition.effect.value} is not available to {workflow_type.value} workflows"
            )
        return definition.effect

    def _build_steps(
        self,
        workflow_type: WorkflowType,
        defaults: Sequence[StepDefinition],
        custom_steps: CustomSteps = None,
    ) -> list[WorkflowStep]:
        """Turn step definitions into a started graph.

        A non-empty ``custom_steps`` replaces ``defaults`` entirely. Step 0
        is started, the rest are pending.
        """
        if custom_steps:
            try:
                definitions = [StepDefinition.model_validate(item) for item in custom_steps]
            except ValidationError as exc:
                raise InvalidStepGraphError(f"Invalid custom step: {exc}") from exc
        else:
            definitions = list(defaults)
        if not definitions:
            raise InvalidStepGraphError(f"{workflow_type.value} workflow needs at least one step")

        steps = [definition.to_step(self._resolve_effect(workflow_type, definition)) for definition in definitions]
        ids = [step.id for step in steps]
        if len(set(ids)) != len(ids):
            raise InvalidStepGraphError(f"Duplicate step ids in {workflow_type.value} workflow")

        steps[0].status = StepStatus.IN_PROGRESS
        steps[0].start_time = self.manager.now()
        return steps

    # ------------------------------------------------------------------
    # Creation
    async def _start_workflow(
        self,
        spec: InstanceSpec,
        description: str,
        metadata: dict[str, Any],
        on_created: Optional[Callable[[WorkflowInstance], Awaitable[None]]] = None,
    ) -> WorkflowInstance:
        """Persist the instance, run the creation mutation and log ``created``."""
        initiator = Actor(
            id=spec.initiator_id,
            name=spec.initiator_name,
            role=INITIATOR_ROLE,
            company_id=spec.company_id,
        )
        async with self.manager.unit_of_work():
            instance = await self.manager.create_instance(spec)
            if on_created is not None:
                await on_created(instance)
            await self.manager.record_event(
                instance, HistoryAction.CREATED, initiator, description, metadata=metadata
            )
        return instance

    # ------------------------------------------------------------------
    # Advancement
    async def _load_instance(self, instance_id: str, company_id: str) -> WorkflowInstance:
        instance = await self.manager.get_instance_by_id(instance_id, company_id)
        if instance is None or instance.type not in self.workflow_types:
            raise NotFoundError("workflow_instance", instance_id)
        return instance

    async def advance(self, instance_id: str, result: StepResult, actor: Actor) -> WorkflowInstance:
        """Complete the active step and, unless told otherwise, move on.

        Everything runs in one unit of work: the step update, its history,
        the business side effect and the advancement either all persist or
        none do.
        """
        async with self.manager.unit_of_work(instance_id):
            instance = await self._load_instance(instance_id, actor.company_id)
            if instance.status is not InstanceStatus.ACTIVE:
                raise InvalidTransitionError(instance_id, instance.status.value, "advance")
            step = instance.current_step
            if step is None or step.id != result.step_id:
                raise StepMismatchError(instance_id, step.id if step else None, result.step_id)

            step.status = StepStatus.COMPLETED
            step.end_time = self.manager.now()
            step.result = result.result
            if result.comments is not None:
                step.comments = result.comments
            if result.form_data is not None:
                step.form_data = result.form_data
            instance = await self.manager.update_instance(
                instance_id, InstancePatch(steps=instance.steps), expected_version=instance.version
            )

            label = TYPE_LABELS.get(instance.type, instance.type.value)
            await self.manager.record_event(
                instance,
                HistoryAction.STEP_COMPLETED,
                actor,
                f"完成{label}步骤：{step.name}",
                step=step,
                metadata={
                    "result": result.result,
                    "comments": result.comments,
                    "form_data": result.form_data,
                },
            )

            if result.advance_to_next or not self.effects_require_advance:
                await self._apply_effect(instance, step, result, actor)
            if not result.advance_to_next:
                return instance

            instance = await self.manager.advance_step(instance_id)
            if instance.status is InstanceStatus.COMPLETED:
                metadata = await self._on_completed(instance, result, actor)
                await self.manager.record_event(
                    instance,
                    HistoryAction.COMPLETED,
                    actor,
                    f"{label}流程已完成",
                    metadata={"end_date": instance.end_date.isoformat(), **metadata},
                )
            else:
                next_step = instance.current_step
                await self.manager.record_event(
                    instance,
                    HistoryAction.STEP_STARTED,
                    actor,
                    f"开始{label}步骤：{next_step.name}",
                    step=next_step,
                )
        return instance

    async def approve(
        self, instance_id: str, actor: Actor, comments: Optional[str] = None
    ) -> WorkflowInstance:
        """Complete the active approval step with result ``approved``."""
        instance = await self._load_instance(instance_id, actor.company_id)
        step = instance.current_step
        if step is None or step.type is not StepType.APPROVAL:
            raise NotApprovalStepError(instance_id, step.name if step else None)
        return await self.advance(
            instance_id, StepResult(step_id=step.id, result="approved", comments=comments), actor
        )

    async def _apply_effect(
        self, instance: WorkflowInstance, step: WorkflowStep, result: StepResult, actor: Actor
    ) -> None:
        """Fire the business mutation bound to ``step.effect``."""

    async def _on_completed(
        self, instance: WorkflowInstance, result: StepResult, actor: Actor
    ) -> dict[str, Any]:
        """Terminal mutation; returns extra metadata for the ``completed`` entry."""
        return {}

    # ------------------------------------------------------------------
    # Rejection
    async def _reject(
        self,
        instance_id: str,
        reason: str,
        actor: Actor,
        entity_kind: Optional[EntityKind],
        description: str,
        entity_status: str = "rejected",
    ) -> WorkflowInstance:
        """Cancel the instance and set its related record to ``entity_status``.

        With no ``entity_kind`` only the instance is cancelled.
        """
        async with self.manager.unit_of_work(instance_id):
            instance = await self._load_instance(instance_id, actor.company_id)
            updated = await self.manager.update_instance_status(
                instance_id, InstanceStatus.CANCELLED, cancel_reason=reason
            )
            metadata = {"reason": reason}
            if entity_kind is not None:
                await self._update_entity(entity_kind, instance.related_entity_id, {"status": entity_status})
                metadata[f"{entity_kind.value}_id"] = instance.related_entity_id
            await self.manager.record_event(
                updated, HistoryAction.CANCELLED, actor, description, metadata=metadata
            )
        logger.info(f"Rejected {instance.type.value} instance {instance_id}: {reason}")
        return updated

    # ------------------------------------------------------------------
    # Queries
    async def _find_workflow(
        self,
        workflow_type: WorkflowType,
        related_entity_id: str,
        company_id: str,
        template_id: Optional[str] = None,
    ) -> WorkflowInstance | None:
        instances = await self.manager.get_instances(
            InstanceFilters(
                company_id=company_id,
                type=workflow_type,
                related_entity_id=related_entity_id,
                template_id=template_id,
                limit=1,
            )
        )
        return instances[0] if instances else None

    async def get_stats(self, company_id: str, workflow_type: Optional[WorkflowType] = None) -> WorkflowStats:
        workflow_type = workflow_type or self.workflow_types[0]
        if workflow_type not in self.workflow_types:
            raise UnsupportedWorkflowTypeError(workflow_type.value, type(self).__name__)
        return await self.stats.compute(company_id, workflow_type, self.rate_name)
