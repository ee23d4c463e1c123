"""SQLite implementation of the workflow and entity repositories."""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Callable

from ..exceptions import ConcurrencyConflictError, StoreFailureError
from .models import (
    EntityKind,
    HistoryEntry,
    HistoryFilters,
    InstanceFilters,
    WorkflowInstance,
)
from .repository import EntityRepository, WorkflowRepository

logger = logging.getLogger(__name__)


class SQLiteWorkflowRepository(WorkflowRepository, EntityRepository):
    """Persist workflow state and business records using SQLite.

    Instances and history entries are stored as JSON documents next to the
    columns used for filtering. The connection runs in autocommit mode and
    ``transaction()`` issues explicit ``BEGIN IMMEDIATE``/``COMMIT``.
    """

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(
            self.db_path, check_same_thread=False, isolation_level=None
        )
        self._conn.row_factory = sqlite3.Row
        self._lock = asyncio.Lock()
        self._owner: asyncio.Task | None = None
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_instances (
                id TEXT PRIMARY KEY,
                company_id TEXT NOT NULL,
                type TEXT NOT NULL,
                related_entity_id TEXT,
                status TEXT NOT NULL,
                version INTEGER NOT NULL,
                created_at TEXT NOT NULL,
                data TEXT NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_history (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT NOT NULL UNIQUE,
                company_id TEXT NOT NULL,
                instance_id TEXT NOT NULL,
                type TEXT NOT NULL,
                data TEXT NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS entities (
                kind TEXT NOT NULL,
                id TEXT NOT NULL,
                data TEXT NOT NULL,
                PRIMARY KEY (kind, id)
            )
            """
        )
        cur.execute(
            "CREATE INDEX IF NOT EXISTS ix_instances_company_type ON workflow_instances (company_id, type)"
        )
        cur.execute(
            "CREATE INDEX IF NOT EXISTS ix_history_company_instance ON workflow_history (company_id, instance_id)"
        )

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> int:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.rowcount

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchall()

    async def _call(self, func: Callable[..., Any], *args: Any) -> Any:
        try:
            return await asyncio.to_thread(func, *args)
        except sqlite3.Error as exc:
            logger.error(f"SQLite operation failed on {self.db_path}: {exc}")
            raise StoreFailureError(str(exc)) from exc

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
            await self._call(self._execute, "BEGIN IMMEDIATE")
            self._owner = asyncio.current_task()
            try:
                yield
            except BaseException:
                await self._call(self._execute, "ROLLBACK")
                raise
            else:
                await self._call(self._execute, "COMMIT")
            finally:
                self._owner = None

    # ------------------------------------------------------------------
    # Instances
    async def create_instance(self, instance: WorkflowInstance) -> None:
        async with self._guard():
            await self._call(
                self._execute,
                """
                INSERT INTO workflow_instances
                    (id, company_id, type, related_entity_id, status, version, created_at, data)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                instance.id,
                instance.company_id,
                instance.type.value,
                instance.related_entity_id,
                instance.status.value,
                instance.version,
                instance.created_at.isoformat(),
                instance.model_dump_json(),
            )

    async def get_instance(self, instance_id: str) -> WorkflowInstance | None:
        async with self._guard():
            row = await self._call(
                self._fetchone,
                "SELECT data FROM workflow_instances WHERE id = ?",
                instance_id,
            )
        if not row:
            return None
        return WorkflowInstance.model_validate_json(row["data"])

    async def list_instances(self, filters: InstanceFilters) -> list[WorkflowInstance]:
        clauses = ["company_id = ?"]
        params: list[Any] = [filters.company_id]
        if filters.type is not None:
            clauses.append("type = ?")
            params.append(filters.type.value)
        if filters.template_id is not None:
            clauses.append("json_extract(data, '$.template_id') = ?")
            params.append(filters.template_id)
        if filters.related_entity_id is not None:
            clauses.append("related_entity_id = ?")
            params.append(filters.related_entity_id)
        if filters.status is not None:
            clauses.append("status = ?")
            params.append(filters.status.value)
        params.extend([filters.limit if filters.limit is not None else -1, filters.skip])
        async with self._guard():
            rows = await self._call(
                self._fetchall,
                f"""
                SELECT data FROM workflow_instances
                WHERE {' AND '.join(clauses)}
                ORDER BY created_at DESC, rowid DESC
                LIMIT ? OFFSET ?
                """,
                *params,
            )
        return [WorkflowInstance.model_validate_json(row["data"]) for row in rows]

    async def update_instance(self, instance: WorkflowInstance, expected_version: int) -> None:
        async with self._guard():
            updated = await self._call(
                self._execute,
                """
                UPDATE workflow_instances
                SET status = ?, version = ?, related_entity_id = ?, data = ?
                WHERE id = ? AND version = ?
                """,
                instance.status.value,
                instance.version,
                instance.related_entity_id,
                instance.model_dump_json(),
                instance.id,
                expected_version,
            )
        if updated == 0:
            raise ConcurrencyConflictError(instance.id, expected_version)

    # ------------------------------------------------------------------
    # History
    async def add_history(self, entry: HistoryEntry) -> None:
        async with self._guard():
            await self._call(
                self._execute,
                "INSERT INTO workflow_history (id, company_id, instance_id, type, data) VALUES (?, ?, ?, ?, ?)",
                entry.id,
                entry.company_id,
                entry.instance_id,
                entry.type.value,
                entry.model_dump_json(),
            )

    async def list_history(self, filters: HistoryFilters) -> list[HistoryEntry]:
        clauses = ["company_id = ?"]
        params: list[Any] = [filters.company_id]
        if filters.instance_id is not None:
            clauses.append("instance_id = ?")
            params.append(filters.instance_id)
        if filters.type is not None:
            clauses.append("type = ?")
            params.append(filters.type.value)
        async with self._guard():
            rows = await self._call(
                self._fetchall,
                f"SELECT data FROM workflow_history WHERE {' AND '.join(clauses)} ORDER BY seq",
                *params,
            )
        return [HistoryEntry.model_validate_json(row["data"]) for row in rows]

    # ------------------------------------------------------------------
    # Business records
    async def get_entity(self, kind: EntityKind, entity_id: str) -> dict[str, Any] | None:
        async with self._guard():
            row = await self._call(
                self._fetchone,
                "SELECT data FROM entities WHERE kind = ? AND id = ?",
                kind.value,
                entity_id,
            )
        return json.loads(row["data"]) if row else None

    async def update_entity(
        self, kind: EntityKind, entity_id: str, patch: dict[str, Any]
    ) -> dict[str, Any] | None:
        async with self._guard():
            row = await self._call(
                self._fetchone,
                "SELECT data FROM entities WHERE kind = ? AND id = ?",
                kind.value,
                entity_id,
            )
            if not row:
                return None
            record = {**json.loads(row["data"]), **patch}
            await self._call(
                self._execute,
                "UPDATE entities SET data = ? WHERE kind = ? AND id = ?",
                json.dumps(record, default=str),
                kind.value,
                entity_id,
            )
        return record

    async def put_entity(self, kind: EntityKind, entity_id: str, data: dict[str, Any]) -> None:
        async with self._guard():
            await self._call(
                self._execute,
                "INSERT OR REPLACE INTO entities (kind, id, data) VALUES (?, ?, ?)",
                kind.value,
                entity_id,
                json.dumps({**data, "id": entity_id}, default=str),
            )

    def close(self) -> None:
        self._conn.close()
