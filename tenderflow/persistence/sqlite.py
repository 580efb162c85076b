"""SQLite implementation of the workflow repository."""

from __future__ import annotations

import asyncio
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable

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


def _ts(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


class SQLiteWorkflowRepository(WorkflowRepository):
    """Persist workflow state using SQLite.

    Each record is stored as a JSON document next to the columns used for
    lookups and ordering.
    """

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.executescript(
            """
            CREATE TABLE IF NOT EXISTS workflow_templates (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                version INTEGER NOT NULL,
                active INTEGER NOT NULL,
                created_at TEXT NOT NULL,
                data TEXT NOT NULL
            );
            CREATE TABLE IF NOT EXISTS workflow_instances (
                id TEXT PRIMARY KEY,
                template_id TEXT NOT NULL,
                entity_type TEXT NOT NULL,
                entity_id TEXT NOT NULL,
                status TEXT NOT NULL,
                created_at TEXT NOT NULL,
                data TEXT NOT NULL
            );
            CREATE TABLE IF NOT EXISTS workflow_steps (
                id TEXT PRIMARY KEY,
                instance_id TEXT NOT NULL,
                step_order INTEGER NOT NULL,
                status TEXT NOT NULL,
                created_at TEXT NOT NULL,
                data TEXT NOT NULL
            );
            CREATE TABLE IF NOT EXISTS workflow_actions (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT NOT NULL UNIQUE,
                instance_id TEXT NOT NULL,
                step_id TEXT NOT NULL,
                data TEXT NOT NULL
            );
            CREATE TABLE IF NOT EXISTS workflow_timers (
                step_id TEXT PRIMARY KEY,
                instance_id TEXT NOT NULL,
                fire_at TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_steps_instance ON workflow_steps (instance_id);
            CREATE INDEX IF NOT EXISTS idx_actions_instance ON workflow_actions (instance_id);
            """
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        self._conn.commit()

    def _executemany(self, query: str, rows: list[tuple]) -> None:
        cur = self._conn.cursor()
        cur.executemany(query, rows)
        self._conn.commit()

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchall()

    def close(self) -> None:
        self._conn.close()

    # ------------------------------------------------------------------
    # Template store
    async def save_template(self, template: WorkflowTemplate) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO workflow_templates (id, name, version, active, created_at, data)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                name = excluded.name, version = excluded.version,
                active = excluded.active, data = excluded.data
            """,
            template.id,
            template.name,
            template.version,
            int(template.active),
            _ts(template.created_at),
            template.model_dump_json(),
        )

    async def get_template(self, template_id: str) -> WorkflowTemplate | None:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT data FROM workflow_templates WHERE id = ?",
            template_id,
        )
        return WorkflowTemplate.model_validate_json(row["data"]) if row else None

    async def list_templates(self, active_only: bool = False) -> list[WorkflowTemplate]:
        query = "SELECT data FROM workflow_templates"
        if active_only:
            query += " WHERE active = 1"
        rows = await asyncio.to_thread(
            self._fetchall, query + " ORDER BY created_at DESC"
        )
        return [WorkflowTemplate.model_validate_json(r["data"]) for r in rows]

    # ------------------------------------------------------------------
    # Instance store
    async def save_instance(self, instance: WorkflowInstance) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO workflow_instances
                (id, template_id, entity_type, entity_id, status, created_at, data)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                status = excluded.status, data = excluded.data
            """,
            instance.id,
            instance.template_id,
            instance.entity_type,
            instance.entity_id,
            instance.status.value,
            _ts(instance.created_at),
            instance.model_dump_json(),
        )

    async def get_instance(self, instance_id: str) -> WorkflowInstance | None:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT data FROM workflow_instances WHERE id = ?",
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
                clauses.append(f"{column} = ?")
                params.append(value)
        query = "SELECT data FROM workflow_instances"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY created_at DESC"
        rows = await asyncio.to_thread(self._fetchall, query, *params)
        return [WorkflowInstance.model_validate_json(r["data"]) for r in rows]

    async def delete_instance(self, instance_id: str) -> None:
        def _delete() -> None:
            cur = self._conn.cursor()
            cur.execute("DELETE FROM workflow_timers WHERE instance_id = ?", (instance_id,))
            cur.execute("DELETE FROM workflow_actions WHERE instance_id = ?", (instance_id,))
            cur.execute("DELETE FROM workflow_steps WHERE instance_id = ?", (instance_id,))
            cur.execute("DELETE FROM workflow_instances WHERE id = ?", (instance_id,))
            self._conn.commit()

        await asyncio.to_thread(_delete)

    async def save_steps(self, steps: Iterable[WorkflowStep]) -> None:
        rows = [
            (
                s.id,
                s.instance_id,
                s.order,
                s.status.value,
                _ts(s.created_at),
                s.model_dump_json(),
            )
            for s in steps
        ]
        if not rows:
            return
        await asyncio.to_thread(
            self._executemany,
            """
            INSERT INTO workflow_steps (id, instance_id, step_order, status, created_at, data)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                status = excluded.status, data = excluded.data
            """,
            rows,
        )

    async def get_step(self, step_id: str) -> WorkflowStep | None:
        row = await asyncio.to_thread(
            self._fetchone, "SELECT data FROM workflow_steps WHERE id = ?", step_id
        )
        return WorkflowStep.model_validate_json(row["data"]) if row else None

    async def list_steps(self, instance_id: str) -> list[WorkflowStep]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT data FROM workflow_steps WHERE instance_id = ? ORDER BY step_order",
            instance_id,
        )
        return [WorkflowStep.model_validate_json(r["data"]) for r in rows]

    async def list_active_steps(self) -> list[WorkflowStep]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT data FROM workflow_steps WHERE status = ? ORDER BY created_at",
            StepStatus.ACTIVE.value,
        )
        return [WorkflowStep.model_validate_json(r["data"]) for r in rows]

    async def save_action(self, action: WorkflowAction) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO workflow_actions (id, instance_id, step_id, data)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET data = excluded.data
            """,
            action.id,
            action.instance_id,
            action.step_id,
            action.model_dump_json(),
        )

    async def list_actions(self, instance_id: str) -> list[WorkflowAction]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT data FROM workflow_actions WHERE instance_id = ? ORDER BY seq",
            instance_id,
        )
        return [WorkflowAction.model_validate_json(r["data"]) for r in rows]

    # ------------------------------------------------------------------
    # Timer table
    async def save_timer(self, timer: DueTimer) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO workflow_timers (step_id, instance_id, fire_at) VALUES (?, ?, ?)
            ON CONFLICT(step_id) DO UPDATE SET fire_at = excluded.fire_at
            """,
            timer.step_id,
            timer.instance_id,
            _ts(timer.fire_at),
        )

    async def delete_timer(self, step_id: str) -> None:
        await asyncio.to_thread(
            self._execute, "DELETE FROM workflow_timers WHERE step_id = ?", step_id
        )

    async def list_due_timers(self, now: datetime) -> list[DueTimer]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT step_id, instance_id, fire_at FROM workflow_timers "
            "WHERE fire_at <= ? ORDER BY fire_at",
            _ts(now),
        )
        return [self._timer(r) for r in rows]

    async def list_timers(self) -> list[DueTimer]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT step_id, instance_id, fire_at FROM workflow_timers ORDER BY fire_at",
        )
        return [self._timer(r) for r in rows]

    @staticmethod
    def _timer(row: sqlite3.Row) -> DueTimer:
        return DueTimer(
            step_id=row["step_id"],
            instance_id=row["instance_id"],
            fire_at=datetime.fromisoformat(row["fire_at"]),
        )
