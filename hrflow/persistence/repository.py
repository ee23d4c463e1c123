"""Repository abstractions for workflow state and business records."""

from __future__ import annotations

from contextlib import AbstractAsyncContextManager
from typing import Any, Protocol

from .models import (
    EntityKind,
    HistoryEntry,
    HistoryFilters,
    InstanceFilters,
    WorkflowInstance,
)


class WorkflowRepository(Protocol):
    """Protocol for instance store and history log backends.

    Instance writes are compare-and-swap on ``WorkflowInstance.version``.
    History is append-only and offers no update or delete.
    """

    def transaction(self) -> AbstractAsyncContextManager[None]:
        """Group the enclosed writes into one atomic unit.

        Nested calls from the same task join the outer transaction.
        """

    async def create_instance(self, instance: WorkflowInstance) -> None:
        """Persist a new instance."""

    async def get_instance(self, instance_id: str) -> WorkflowInstance | None:
        """Retrieve an instance by id."""

    async def list_instances(self, filters: InstanceFilters) -> list[WorkflowInstance]:
        """Return the tenant's instances matching ``filters``, newest first."""

    async def update_instance(self, instance: WorkflowInstance, expected_version: int) -> None:
        """Overwrite the stored instance if it is still at ``expected_version``.

        Raises:
            ConcurrencyConflictError: the stored version differs.
        """

    async def add_history(self, entry: HistoryEntry) -> None:
        """Append an audit entry."""

    async def list_history(self, filters: HistoryFilters) -> list[HistoryEntry]:
        """Return matching audit entries in insertion order."""


class EntityRepository(Protocol):
    """Keyed store of the business records workflows act upon."""

    async def get_entity(self, kind: EntityKind, entity_id: str) -> dict[str, Any] | None:
        """Return the record or ``None``."""

    async def update_entity(
        self, kind: EntityKind, entity_id: str, patch: dict[str, Any]
    ) -> dict[str, Any] | None:
        """Merge ``patch`` into the record and return it, ``None`` if absent."""

    async def put_entity(self, kind: EntityKind, entity_id: str, data: dict[str, Any]) -> None:
        """Insert or replace a record."""


class Repository(WorkflowRepository, EntityRepository, Protocol):
    """Backend serving both protocols, so one transaction spans both."""
