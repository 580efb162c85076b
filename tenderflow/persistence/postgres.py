"""PostgreSQL implementation of the workflow repository."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable

import asyncpg

from ..contracts import (
    InstanceStatus,
    StepStatus,
    WorkflowAction,
    WorkflowInstance,
    WorkflowStep,
    WorkflowTemplate,
)
from .models import DueTimer
from .repository import WorkflowRepository


class PostgresWorkflowRepository(WorkflowRepository):
    """Persist workflow state using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_templates (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                version INTEGER NOT NULL,
                active BOOLEAN NOT NULL,
                created_at TIMESTAMPTZ NOT NULL,
                data JSONB NOT NULL
            );
            CREATE TABLE IF NOT EXISTS workflow_instances (
                id TEXT PRIMARY KEY,
                template_id TEXT NOT NULL,
                entity_type TEXT NOT NULL,
                entity_id TEXT NOT NULL,
                status TEXT NOT NULL,
                created_at TIMESTAMPTZ NOT NULL,
                data JSONB NOT NULL
            );
            CREATE TABLE IF NOT EXISTS workflow_steps (
                id TEXT PRIMARY KEY,
                instance_id TEXT NOT NULL,
                step_order INTEGER NOT NULL,
                status TEXT NOT NULL,
                created_at TIMESTAMPTZ NOT NULL,
                data JSONB NOT NULL
            );
            CREATE TABLE IF NOT EXISTS workflow_actions (
                seq BIGSERIAL PRIMARY KEY,
                id TEXT NOT NULL UNIQUE,
                instance_id TEXT NOT NULL,
                step_id TEXT NOT NULL,
                data JSONB NOT NULL
            );
            CREATE TABLE IF NOT EXISTS workflow_timers (
                step_id TEXT PRIMARY KEY,
                instance_id TEXT NOT NULL,
                fire_at TIMESTAMPTZ NOT NULL
            );
            """
        )

    async def _execute(self, query: str, *params: Any) -> None:
        conn = await self._connect()
        try:
            await conn.execute(query, *params)
        finally:
            await conn.close()

    async def _fetch(self, query: str, *params: Any) -> list[asyncpg.Record]:
        conn = await self._connect()
        try:
            return await conn.fetch(query, *params)
        finally:
            await conn.close()

    async def _fetchrow(self, query: str, *params: Any) -> asyncpg.Record | None:
        conn = await self._connect()
        try:
            return await conn.fetchrow(query, *params)
        finally:
            await conn.close()

    # ------------------------------------------------------------------
    async def save_template(self, template: WorkflowTemplate) -> None:
        await self._execute(
            """
            INSERT INTO workflow_templates (id, name, version, active, created_at, data)
            VALUES ($1, $2, $3, $4, $5, $6::jsonb)
            ON CONFLICT (id) DO UPDATE SET
                name = EXCLUDED.name, version = EXCLUDED.version,
                active = EXCLUDED.active, data = EXCLUDED.data
            """,
            template.id,
            template.name,
            template.version,
            template.active,
            template.created_at,
            template.model_dump_json(),
        )

    async def get_template(self, template_id: str) -> WorkflowTemplate | None:
        row = await self._fetchrow(
            "SELECT data::text AS data FROM workflow_templates WHERE id = $1",
            template_id,
        )
        return WorkflowTemplate.model_validate_json(row["data"]) if row else None

    async def list_templates(self, active_only: bool = False) -> list[WorkflowTemplate]:
        query = "SELECT data::text AS data FROM workflow_templates"
        if active_only:
            query += " WHERE active"
        rows = await self._fetch(query + " ORDER BY created_at DESC")
        return [WorkflowTemplate.model_validate_json(r["data"]) for r in rows]

    # ------------------------------------------------------------------
    async def save_instance(self, instance: WorkflowInstance) -> None:
        await self._execute(
            """
            INSERT INTO workflow_instances
                (id, template_id, entity_type, entity_id, status, created_at, data)
            VALUES ($1, $2, $3, $4, $5, $6, $7::jsonb)
            ON CONFLICT (id) DO UPDATE SET
                status = EXCLUDED.status, data = EXCLUDED.data
            """,
            instance.id,
            instance.template_id,
            instance.entity_type,
            instance.entity_id,
            instance.status.value,
            instance.created_at,
            instance.model_dump_json(),
        )

    async def get_instance(self, instance_id: str) -> WorkflowInstance | None:
        row = await self._fetchrow(
            "SELECT data::text AS data FROM workflow_instances WHERE id = $1",
            instance_id,
        )
        return WorkflowInstance.model_validate_json(row["data"]) if row else None

    async def list_instances(
        self,
        status: InstanceStatus | None = None,
        entity_type: str | None = None,
        entity_id: str | None = None,
        template_id: str | None = None,
    ) -> list[WorkflowInstance]:
        clauses: list[str] = []
        params: list[Any] = []
        for column, value in (
            ("status", status.value if status else None),
            ("entity_type", entity_type),
            ("entity_id", entity_id),
            ("template_id", template_id),
        ):
            if value is not None:
                params.append(value)
                clauses.append(f"{column} = ${len(params)}")
        query = "SELECT data::text AS data FROM workflow_instances"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        rows = await self._fetch(query + " ORDER BY created_at DESC", *params)
        return [WorkflowInstance.model_validate_json(r["data"]) for r in rows]

    async def delete_instance(self, instance_id: str) -> None:
        conn = await self._connect()
        try:
            async with conn.transaction():
                await conn.execute(
                    "DELETE FROM workflow_timers WHERE instance_id = $1", instance_id
                )
                await conn.execute(
                    "DELETE FROM workflow_actions WHERE instance_id = $1", instance_id
                )
                await conn.execute(
                    "DELETE FROM workflow_steps WHERE instance_id = $1", instance_id
                )
                await conn.execute(
                    "DELETE FROM workflow_instances WHERE id = $1", instance_id
                )
        finally:
            await conn.close()

    async def save_steps(self, steps: Iterable[WorkflowStep]) -> None:
        rows = [
            (s.id, s.instance_id, s.order, s.status.value, s.created_at, s.model_dump_json())
            for s in steps
        ]
        if not rows:
            return
        conn = await self._connect()
        try:
            await conn.executemany(
                """
                INSERT INTO workflow_steps
                    (id, instance_id, step_order, status, created_at, data)
                VALUES ($1, $2, $3, $4, $5, $6::jsonb)
                ON CONFLICT (id) DO UPDATE SET
                    status = EXCLUDED.status, data = EXCLUDED.data
                """,
                rows,
            )
        finally:
            await conn.close()

    async def get_step(self, step_id: str) -> WorkflowStep | None:
        row = await self._fetchrow(
            "SELECT data::text AS data FROM workflow_steps WHERE id = $1", step_id
        )
        return WorkflowStep.model_validate_json(row["data"]) if row else None

    async def list_steps(self, instance_id: str) -> list[WorkflowStep]:
        rows = await self._fetch(
            "SELECT data::text AS data FROM workflow_steps "
            "WHERE instance_id = $1 ORDER BY step_order",
            instance_id,
        )
        return [WorkflowStep.model_validate_json(r["data"]) for r in rows]

    async def list_active_steps(self) -> list[WorkflowStep]:
        rows = await self._fetch(
            "SELECT data::text AS data FROM workflow_steps "
            "WHERE status = $1 ORDER BY created_at",
            StepStatus.ACTIVE.value,
        )
        return [WorkflowStep.model_validate_json(r["data"]) for r in rows]

    async def save_action(self, action: WorkflowAction) -> None:
        await self._execute(
            """
            INSERT INTO workflow_actions (id, instance_id, step_id, data)
            VALUES ($1, $2, $3, $4::jsonb)
            ON CONFLICT (id) DO UPDATE SET data = EXCLUDED.data
            """,
            action.id,
            action.instance_id,
            action.step_id,
            action.model_dump_json(),
        )

    async def list_actions(self, instance_id: str) -> list[WorkflowAction]:
        rows = await self._fetch(
            "SELECT data::text AS data FROM workflow_actions "
            "WHERE instance_id = $1 ORDER BY seq",
            instance_id,
        )
        return [WorkflowAction.model_validate_json(r["data"]) for r in rows]

    # ------------------------------------------------------------------
    async def save_timer(self, timer: DueTimer) -> None:
        await self._execute(
            """
            INSERT INTO workflow_timers (step_id, instance_id, fire_at) VALUES ($1, $2, $3)
            ON CONFLICT (step_id) DO UPDATE SET fire_at = EXCLUDED.fire_at
            """,
            timer.step_id,
            timer.instance_id,
            timer.fire_at,
        )

    async def delete_timer(self, step_id: str) -> None:
        await self._execute("DELETE FROM workflow_timers WHERE step_id = $1", step_id)

    async def list_due_timers(self, now: datetime) -> list[DueTimer]:
        rows = await self._fetch(
            "SELECT step_id, instance_id, fire_at FROM workflow_timers "
            "WHERE fire_at <= $1 ORDER BY fire_at",
            now,
        )
        return [DueTimer(**dict(r)) for r in rows]

    async def list_timers(self) -> list[DueTimer]:
        rows = await self._fetch(
            "SELECT step_id, instance_id, fire_at FROM workflow_timers ORDER BY fire_at"
        )
        return [DueTimer(**dict(r)) for r in rows]
