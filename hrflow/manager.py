"""Core workflow engine: instance lifecycle, step advancement and audit trail."""

from __future__ import annotations

import asyncio
import logging
import weakref
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Callable, Optional

from .config import HrflowConfig, load_config
from .contracts import Actor, InstancePatch, InstanceSpec, PendingStep
from .exceptions import ConcurrencyConflictError, InvalidTransitionError, NotFoundError
from .persistence import Repository, get_repository
from .persistence.models import (
    ALLOWED_TRANSITIONS,
    TERMINAL_STATUSES,
    HistoryAction,
    HistoryEntry,
    HistoryFilters,
    InstanceFilters,
    InstanceStatus,
    StepStatus,
    WorkflowInstance,
    WorkflowStep,
    utcnow,
)

logger = logging.getLogger(__name__)


class WorkflowManager:
    """Owns instance creation, advancement, status transitions and history.

    The manager never marks the outgoing step completed; adapters do that
    because only they know what completing a step means for their process.
    All writes to an instance are compare-and-swap on its ``version``.
    """

    def __init__(
        self,
        repository: Repository | None = None,
        config: HrflowConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._config = config or load_config()
        self._repository = repository or get_repository(config=config)
        self._clock = clock
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    @property
    def repository(self) -> Repository:
        return self._repository

    @property
    def config(self) -> HrflowConfig:
        return self._config

    def now(self) -> datetime:
        return self._clock()

    # ------------------------------------------------------------------
    # Serialization
    def _instance_lock(self, instance_id: str) -> asyncio.Lock:
        lock = self._locks.get(instance_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[instance_id] = lock
        return lock

    @asynccontextmanager
    async def unit_of_work(self, instance_id: Optional[str] = None) -> AsyncIterator[None]:
        """Serialize work on ``instance_id`` and run it in one transaction."""
        if instance_id is None:
            async with self._repository.transaction():
                yield
            return
        lock = self._instance_lock(instance_id)
        async with lock:
            async with self._repository.transaction():
                yield

    async def _write(self, instance: WorkflowInstance) -> WorkflowInstance:
        expected = instance.version
        instance.version = expected + 1
        instance.updated_at = self.now()
        await self._repository.update_instance(instance, expected)
        return instance

    # ------------------------------------------------------------------
    # Instances
    async def create_instance(self, spec: InstanceSpec) -> WorkflowInstance:
        now = self.now()
        instance = WorkflowInstance.model_validate(spec.model_dump())
        instance.created_at = now
        instance.updated_at = now
        if instance.start_date is None and instance.status is InstanceStatus.ACTIVE:
            instance.start_date = now
        await self._repository.create_instance(instance)
        logger.info(
            f"Created {instance.type.value} instance {instance.id} "
            f"with {len(instance.steps)} steps for company={instance.company_id}"
        )
        return instance

    async def get_instance_by_id(
        self, instance_id: str, company_id: Optional[str] = None
    ) -> WorkflowInstance | None:
        """Return the instance, or ``None`` if absent or owned by another tenant."""
        instance = await self._repository.get_instance(instance_id)
        if instance is None:
            return None
        if company_id is not None and instance.company_id != company_id:
            logger.warning(
                f"Instance {instance_id} requested for company={company_id} "
                f"but belongs to company={instance.company_id}"
            )
            return None
        return instance

    async def get_instances(self, filters: InstanceFilters) -> list[WorkflowInstance]:
        max_limit = self._config.pagination.max_limit
        if filters.limit is not None and filters.limit > max_limit:
            filters = filters.model_copy(update={"limit": max_limit})
        return await self._repository.list_instances(filters)

    async def update_instance(
        self,
        instance_id: str,
        patch: InstancePatch,
        expected_version: Optional[int] = None,
    ) -> WorkflowInstance | None:
        instance = await self._repository.get_instance(instance_id)
        if instance is None:
            return None
        if expected_version is not None and instance.version != expected_version:
            raise ConcurrencyConflictError(instance_id, expected_version)
        for field in patch.model_fields_set:
            setattr(instance, field, getattr(patch, field))
        return await self._write(instance)

    async def advance_step(self, instance_id: str) -> WorkflowInstance | None:
        """Move the pointer past the active step.

        Completes the instance when the active step is the last one,
        otherwise starts the next step. Returns ``None`` if the instance
        does not exist.
        """
        instance = await self._repository.get_instance(instance_id)
        if instance is None:
            return None
        if instance.status is not InstanceStatus.ACTIVE:
            logger.warning(f"Refusing to advance {instance.status.value} instance {instance_id}")
            raise InvalidTransitionError(instance_id, instance.status.value, "advance")

        now = self.now()
        if instance.current_step_index >= len(instance.steps):
            instance.status = InstanceStatus.COMPLETED
            instance.end_date = now
            logger.info(f"Instance {instance_id} completed")
        else:
            instance.current_step_index += 1
            step = instance.steps[instance.current_step_index - 1]
            step.status = StepStatus.IN_PROGRESS
            step.start_time = now
            logger.info(
                f"Instance {instance_id} advanced to step "
                f"{instance.current_step_index}/{len(instance.steps)} ({step.name})"
            )
        return await self._write(instance)

    async def update_instance_status(
        self,
        instance_id: str,
        status: InstanceStatus,
        cancel_reason: Optional[str] = None,
        end_date: Optional[datetime] = None,
    ) -> WorkflowInstance | None:
        """Out-of-band transition (pause, resume, cancel, error).

        ``end_date`` (default: now) is only recorded for terminal statuses.
        Steps are left untouched.
        """
        instance = await self._repository.get_instance(instance_id)
        if instance is None:
            return None
        current = instance.status
        if status not in ALLOWED_TRANSITIONS[current]:
            logger.warning(
                f"Rejected transition {current.value} -> {status.value} for instance {instance_id}"
            )
            raise InvalidTransitionError(instance_id, current.value, status.value)

        instance.status = status
        if status is InstanceStatus.ACTIVE and instance.start_date is None:
            instance.start_date = self.now()
        if status in TERMINAL_STATUSES:
            instance.end_date = end_date or self.now()
        if cancel_reason is not None:
            instance.cancel_reason = cancel_reason
        logger.info(f"Instance {instance_id} moved {current.value} -> {status.value}")
        return await self._write(instance)

    # ------------------------------------------------------------------
    # History
    async def add_history(self, entry: HistoryEntry) -> HistoryEntry:
        await self._repository.add_history(entry)
        logger.debug(f"History {entry.action.value} recorded for instance {entry.instance_id}")
        return entry

    async def get_history(self, filters: HistoryFilters) -> list[HistoryEntry]:
        return await self._repository.list_history(filters)

    async def record_event(
        self,
        instance: WorkflowInstance,
        action: HistoryAction,
        actor: Actor,
        description: str,
        step: Optional[WorkflowStep] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> HistoryEntry:
        """Build and append the history entry describing ``action``."""
        return await self.add_history(
            HistoryEntry(
                company_id=instance.company_id,
                instance_id=instance.id,
                instance_name=instance.name,
                template_id=instance.template_id,
                type=instance.type,
                action=action,
                actor_id=actor.id,
                actor_name=actor.name,
                actor_role=actor.role,
                step_id=step.id if step else None,
                step_name=step.name if step else None,
                description=description,
                metadata=metadata or {},
                created_at=self.now(),
            )
        )

    # ------------------------------------------------------------------
    # Generic out-of-band operations
    async def _transition(
        self,
        instance_id: str,
        status: InstanceStatus,
        action: HistoryAction,
        actor: Actor,
        description: str,
        reason: Optional[str] = None,
    ) -> WorkflowInstance:
        async with self.unit_of_work(instance_id):
            if await self.get_instance_by_id(instance_id, actor.company_id) is None:
                raise NotFoundError("workflow_instance", instance_id)
            updated = await self.update_instance_status(instance_id, status, cancel_reason=reason)
            metadata = {"reason": reason} if reason is not None else {}
            await self.record_event(updated, action, actor, description, metadata=metadata)
        return updated

    async def pause_instance(self, instance_id: str, actor: Actor) -> WorkflowInstance:
        return await self._transition(
            instance_id, InstanceStatus.PAUSED, HistoryAction.PAUSED, actor, "流程已暂停"
        )

    async def resume_instance(self, instance_id: str, actor: Actor) -> WorkflowInstance:
        return await self._transition(
            instance_id, InstanceStatus.ACTIVE, HistoryAction.RESUMED, actor, "流程已恢复"
        )

    async def cancel_instance(
        self, instance_id: str, reason: str, actor: Actor
    ) -> WorkflowInstance:
        return await self._transition(
            instance_id,
            InstanceStatus.CANCELLED,
            HistoryAction.CANCELLED,
            actor,
            f"流程已取消，原因：{reason}",
            reason=reason,
        )

    # ------------------------------------------------------------------
    # Work queue
    async def get_pending_steps(
        self,
        company_id: str,
        user_id: Optional[str] = None,
        roles: tuple[str, ...] = (),
    ) -> list[PendingStep]:
        """Active steps of active instances assigned to ``user_id`` or ``roles``."""
        instances = await self._repository.list_instances(
            InstanceFilters(company_id=company_id, status=InstanceStatus.ACTIVE)
        )
        pending = []
        for instance in instances:
            step = instance.current_step
            if step is None or step.status is not StepStatus.IN_PROGRESS:
                continue
            if step.is_assigned_to(user_id, roles):
                pending.append(
                    PendingStep(
                        instance_id=instance.id,
                        instance_name=instance.name,
                        type=instance.type,
                        step=step,
                    )
                )
        return pending
