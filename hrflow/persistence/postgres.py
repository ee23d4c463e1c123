"""PostgreSQL implementation of the workflow and entity repositories."""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import asyncpg

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


class PostgresWorkflowRepository(WorkflowRepository, EntityRepository):
    """Persist workflow state and business records using PostgreSQL.

    Each call opens its own connection unless the calling task is inside
    ``transaction()``, in which case the transaction's connection is reused.
    """

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False
        self._tx_connections: dict[asyncio.Task, asyncpg.Connection] = {}

    async def _connect(self) -> asyncpg.Connection:
        try:
            conn = await asyncpg.connect(self._dsn)
            if not self._initialized:
                await self._ensure_schema(conn)
                self._initialized = True
        except (OSError, asyncpg.PostgresError) as exc:
            logger.error(f"Could not connect to PostgreSQL: {exc}")
            raise StoreFailureError(str(exc)) from exc
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_instances (
                id TEXT PRIMARY KEY,
                company_id TEXT NOT NULL,
                type TEXT NOT NULL,
                related_entity_id TEXT,
                status TEXT NOT NULL,
                version INTEGER NOT NULL,
                created_at TIMESTAMPTZ NOT NULL,
                data JSONB NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_history (
                seq BIGSERIAL PRIMARY KEY,
                id TEXT NOT NULL UNIQUE,
                company_id TEXT NOT NULL,
                instance_id TEXT NOT NULL,
                type TEXT NOT NULL,
                data JSONB NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS entities (
                kind TEXT NOT NULL,
                id TEXT NOT NULL,
                data JSONB NOT NULL,
                PRIMARY KEY (kind, id)
            )
            """
        )

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[asyncpg.Connection]:
        tx_conn = self._tx_connections.get(asyncio.current_task())
        if tx_conn is not None:
            yield tx_conn
            return
        conn = await self._connect()
        try:
            yield conn
        except asyncpg.PostgresError as exc:
            logger.error(f"PostgreSQL operation failed: {exc}")
            raise StoreFailureError(str(exc)) from exc
        finally:
            await conn.close()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        task = asyncio.current_task()
        if task in self._tx_connections:
            yield
            return
        conn = await self._connect()
        self._tx_connections[task] = conn
        try:
            async with conn.transaction():
                yield
        except asyncpg.PostgresError as exc:
            logger.error(f"PostgreSQL transaction failed: {exc}")
            raise StoreFailureError(str(exc)) from exc
        finally:
            self._tx_connections.pop(task, None)
            await conn.close()

    # ------------------------------------------------------------------
    # Instances
    async def create_instance(self, instance: WorkflowInstance) -> None:
        async with self._connection() as conn:
            await conn.execute(
                """
                INSERT INTO workflow_instances
                    (id, company_id, type, related_entity_id, status, version, created_at, data)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                """,
                instance.id,
                instance.company_id,
                instance.type.value,
                instance.related_entity_id,
                instance.status.value,
                instance.version,
                instance.created_at,
                instance.model_dump_json(),
            )

    async def get_instance(self, instance_id: str) -> WorkflowInstance | None:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                "SELECT data FROM workflow_instances WHERE id = $1", instance_id
            )
        if not row:
            return None
        return WorkflowInstance.model_validate_json(row["data"])

    async def list_instances(self, filters: InstanceFilters) -> list[WorkflowInstance]:
        clauses = ["company_id = $1"]
        params: list[Any] = [filters.company_id]
        for column, value in (
            ("type", filters.type.value if filters.type else None),
            ("related_entity_id", filters.related_entity_id),
            ("status", filters.status.value if filters.status else None),
        ):
            if value is not None:
                params.append(value)
                clauses.append(f"{column} = ${len(params)}")
        if filters.template_id is not None:
            params.append(filters.template_id)
            clauses.append(f"data->>'template_id' = ${len(params)}")
        query = (
            f"SELECT data FROM workflow_instances WHERE {' AND '.join(clauses)} "
            "ORDER BY created_at DESC"
        )
        if filters.limit is not None:
            params.append(filters.limit)
            query += f" LIMIT ${len(params)}"
        params.append(filters.skip)
        query += f" OFFSET ${len(params)}"
        async with self._connection() as conn:
            rows = await conn.fetch(query, *params)
        return [WorkflowInstance.model_validate_json(r["data"]) for r in rows]

    async def update_instance(self, instance: WorkflowInstance, expected_version: int) -> None:
        async with self._connection() as conn:
            status = await conn.execute(
                """
                UPDATE workflow_instances
                SET status = $1, version = $2, related_entity_id = $3, data = $4
                WHERE id = $5 AND version = $6
                """,
                instance.status.value,
                instance.version,
                instance.related_entity_id,
                instance.model_dump_json(),
                instance.id,
                expected_version,
            )
        if status.endswith(" 0"):
            raise ConcurrencyConflictError(instance.id, expected_version)

    # ------------------------------------------------------------------
    # History
    async def add_history(self, entry: HistoryEntry) -> None:
        async with self._connection() as conn:
            await conn.execute(
                "INSERT INTO workflow_history (id, company_id, instance_id, type, data) VALUES ($1, $2, $3, $4, $5)",
                entry.id,
                entry.company_id,
                entry.instance_id,
                entry.type.value,
                entry.model_dump_json(),
            )

    async def list_history(self, filters: HistoryFilters) -> list[HistoryEntry]:
        clauses = ["company_id = $1"]
        params: list[Any] = [filters.company_id]
        if filters.instance_id is not None:
            params.append(filters.instance_id)
            clauses.append(f"instance_id = ${len(params)}")
        if filters.type is not None:
            params.append(filters.type.value)
            clauses.append(f"type = ${len(params)}")
        async with self._connection() as conn:
            rows = await conn.fetch(
                f"SELECT data FROM workflow_history WHERE {' AND '.join(clauses)} ORDER BY seq",
                *params,
            )
        return [HistoryEntry.model_validate_json(r["data"]) for r in rows]

    # ------------------------------------------------------------------
    # Business records
    async def get_entity(self, kind: EntityKind, entity_id: str) -> dict[str, Any] | None:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                "SELECT data FROM entities WHERE kind = $1 AND id = $2", kind.value, entity_id
            )
        return json.loads(row["data"]) if row else None

    async def update_entity(
        self, kind: EntityKind, entity_id: str, patch: dict[str, Any]
    ) -> dict[str, Any] | None:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                """
                UPDATE entities SET data = data || $1::jsonb
                WHERE kind = $2 AND id = $3
                RETURNING data
                """,
                json.dumps(patch, default=str),
                kind.value,
                entity_id,
            )
        return json.loads(row["data"]) if row else None

    async def put_entity(self, kind: EntityKind, entity_id: str, data: dict[str, Any]) -> None:
        async with self._connection() as conn:
            await conn.execute(
                """
                INSERT INTO entities (kind, id, data) VALUES ($1, $2, $3)
                ON CONFLICT (kind, id) DO UPDATE SET data = EXCLUDED.data
                """,
                kind.value,
                entity_id,
                json.dumps({**data, "id": entity_id}, default=str),
            )
