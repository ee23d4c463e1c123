"""In-memory implementation of the workflow and entity repositories."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict

from ..exceptions import ConcurrencyConflictError, StoreFailureError
from .models import (
    EntityKind,
    HistoryEntry,
    HistoryFilters,
    InstanceFilters,
    WorkflowInstance,
)
from .repository import EntityRepository, WorkflowRepository


class InMemoryWorkflowRepository(WorkflowRepository, EntityRepository):
    """Store workflow state and business records in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts. Stored objects are copies, so callers
    can mutate what they read without touching the store.
    """

    def __init__(self) -> None:
        self._instances: Dict[str, WorkflowInstance] = {}
        self._history: list[HistoryEntry] = []
        self._entities: Dict[EntityKind, Dict[str, dict[str, Any]]] = {}
        self._lock = asyncio.Lock()
        self._owner: asyncio.Task | None = None

    # ------------------------------------------------------------------
    # Transactions
    def _owns_transaction(self) -> bool:
        return self._owner is not None and self._owner is asyncio.current_task()

    @asynccontextmanager
    async def _guard(self) -> AsyncIterator[None]:
        if self._owns_transaction():
            yield
            return
        async with self._lock:
            yield

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        if self._owns_transaction():
            yield
            return
        async with self._lock:
            self._owner = asyncio.current_task()
            snapshot = (
                dict(self._instances),
                list(self._history),
                {kind: dict(records) for kind, records in self._entities.items()},
            )
            try:
                yield
            except BaseException:
                self._instances, self._history, self._entities = snapshot
                raise
            finally:
                self._owner = None

    # ------------------------------------------------------------------
    # Instances
    async def create_instance(self, instance: WorkflowInstance) -> None:
        async with self._guard():
            if instance.id in self._instances:
                raise StoreFailureError(f"Instance {instance.id} already exists")
            self._instances[instance.id] = instance.model_copy(deep=True)

    async def get_instance(self, instance_id: str) -> WorkflowInstance | None:
        async with self._guard():
            stored = self._instances.get(instance_id)
            return stored.model_copy(deep=True) if stored else None

    async def list_instances(self, filters: InstanceFilters) -> list[WorkflowInstance]:
        async with self._guard():
            matches = [
                wf
                for wf in self._instances.values()
                if wf.company_id == filters.company_id
                and (filters.type is None or wf.type == filters.type)
                and (filters.template_id is None or wf.template_id == filters.template_id)
                and (
                    filters.related_entity_id is None
                    or wf.related_entity_id == filters.related_entity_id
                )
                and (filters.status is None or wf.status == filters.status)
            ]
        matches.sort(key=lambda wf: wf.created_at, reverse=True)
        end = filters.skip + filters.limit if filters.limit is not None else None
        return [wf.model_copy(deep=True) for wf in matches[filters.skip : end]]

    async def update_instance(self, instance: WorkflowInstance, expected_version: int) -> None:
        async with self._guard():
            stored = self._instances.get(instance.id)
            if stored is None or stored.version != expected_version:
                raise ConcurrencyConflictError(instance.id, expected_version)
            self._instances[instance.id] = instance.model_copy(deep=True)

    # ------------------------------------------------------------------
    # History
    async def add_history(self, entry: HistoryEntry) -> None:
        async with self._guard():
            self._history.append(entry)

    async def list_history(self, filters: HistoryFilters) -> list[HistoryEntry]:
        async with self._guard():
            return [
                entry
                for entry in self._history
                if entry.company_id == filters.company_id
                and (filters.instance_id is None or entry.instance_id == filters.instance_id)
                and (filters.type is None or entry.type == filters.type)
            ]

    # ------------------------------------------------------------------
    # Business records
    async def get_entity(self, kind: EntityKind, entity_id: str) -> dict[str, Any] | None:
        async with self._guard():
            record = self._entities.get(kind, {}).get(entity_id)
            return dict(record) if record is not None else None

    async def update_entity(
        self, kind: EntityKind, entity_id: str, patch: dict[str, Any]
    ) -> dict[str, Any] | None:
        async with self._guard():
            records = self._entities.get(kind, {})
            record = records.get(entity_id)
            if record is None:
                return None
            records[entity_id] = {**record, **patch}
            return dict(records[entity_id])

    async def put_entity(self, kind: EntityKind, entity_id: str, data: dict[str, Any]) -> None:
        async with self._guard():
            self._entities.setdefault(kind, {})[entity_id] = {**data, "id": entity_id}
