"""PostgreSQL implementation of the entity store."""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Optional, Sequence

import asyncpg

from ..errors import PersistenceError
from ..models import Result, Task, TaskStatus, Workflow, WorkflowStatus
from .repository import EntityStore

_TASK_COLUMNS = (
    "task_id, workflow_id, client_id, task_type, step_number, name, status, "
    "progress, dependency_id, result_id, payload, error, sequence, created_at, "
    "finished_at"
)
_WORKFLOW_COLUMNS = "workflow_id, client_id, name, status, final_result, created_at"
# A dropped connection raises InterfaceError, which is not a PostgresError.
_BACKEND_ERRORS = (OSError, asyncpg.PostgresError, asyncpg.InterfaceError)


def _task_from_record(r: asyncpg.Record) -> Task:
    data = dict(r)
    data["status"] = TaskStatus(data["status"])
    return Task(**data)


def _workflow_from_record(r: asyncpg.Record) -> Workflow:
    data = dict(r)
    data["status"] = WorkflowStatus(data["status"])
    return Workflow(**data)


class PostgresEntityStore(EntityStore):
    """Persist workflow state using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[asyncpg.Connection]:
        try:
            conn = await asyncpg.connect(self._dsn)
        except _BACKEND_ERRORS as exc:
            raise PersistenceError(f"PostgreSQL store unavailable: {exc}") from exc
        try:
            if not self._initialized:
                await self._ensure_schema(conn)
                self._initialized = True
            yield conn
        except _BACKEND_ERRORS as exc:
            raise PersistenceError(f"PostgreSQL store failure: {exc}") from exc
        finally:
            try:
                await conn.close()
            except _BACKEND_ERRORS:
                conn.terminate()

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflows (
                workflow_id TEXT PRIMARY KEY,
                client_id TEXT NOT NULL,
                name TEXT,
                status TEXT NOT NULL,
                final_result TEXT,
                created_at TIMESTAMPTZ NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS tasks (
                sequence BIGSERIAL PRIMARY KEY,
                task_id TEXT NOT NULL UNIQUE,
                workflow_id TEXT NOT NULL REFERENCES workflows(workflow_id) ON DELETE CASCADE,
                client_id TEXT NOT NULL,
                task_type TEXT NOT NULL,
                step_number INTEGER NOT NULL,
                name TEXT,
                status TEXT NOT NULL,
                progress TEXT,
                dependency_id TEXT,
                result_id TEXT,
                payload TEXT,
                error TEXT,
                created_at TIMESTAMPTZ NOT NULL,
                finished_at TIMESTAMPTZ
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS results (
                result_id TEXT PRIMARY KEY,
                task_id TEXT NOT NULL UNIQUE REFERENCES tasks(task_id) ON DELETE CASCADE,
                data TEXT NOT NULL,
                created_at TIMESTAMPTZ NOT NULL
            )
            """
        )

    # ------------------------------------------------------------------
    async def create_workflow(self, workflow: Workflow) -> Workflow:
        async with self._connection() as conn:
            await conn.execute(
                f"INSERT INTO workflows ({_WORKFLOW_COLUMNS}) VALUES ($1, $2, $3, $4, $5, $6)",
                workflow.workflow_id,
                workflow.client_id,
                workflow.name,
                workflow.status.value,
                workflow.final_result,
                workflow.created_at,
            )
        return workflow

    async def delete_workflow(self, workflow_id: str) -> None:
        async with self._connection() as conn:
            await conn.execute("DELETE FROM workflows WHERE workflow_id = $1", workflow_id)

    async def create_tasks(self, tasks: Sequence[Task]) -> list[Task]:
        saved: list[Task] = []
        async with self._connection() as conn:
            async with conn.transaction():
                for task in tasks:
                    sequence = await conn.fetchval(
                        """
                        INSERT INTO tasks (task_id, workflow_id, client_id, task_type,
                            step_number, name, status, progress, dependency_id, result_id,
                            payload, error, created_at, finished_at)
                        VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14)
                        RETURNING sequence
                        """,
                        task.task_id,
                        task.workflow_id,
                        task.client_id,
                        task.task_type,
                        task.step_number,
                        task.name,
                        task.status.value,
                        task.progress,
                        task.dependency_id,
                        task.result_id,
                        task.payload,
                        task.error,
                        task.created_at,
                        task.finished_at,
                    )
                    saved.append(task.model_copy(update={"sequence": sequence}))
        return saved

    async def find_ready_task(self) -> Optional[Task]:
        columns = ", ".join("t." + c.strip() for c in _TASK_COLUMNS.split(","))
        async with self._connection() as conn:
            row = await conn.fetchrow(
                f"""
                SELECT {columns}
                FROM tasks t
                LEFT JOIN tasks d ON d.task_id = t.dependency_id
                WHERE t.status = $1
                  AND (t.dependency_id IS NULL OR d.status = $2)
                ORDER BY t.step_number ASC, t.sequence ASC
                LIMIT 1
                """,
                TaskStatus.QUEUED.value,
                TaskStatus.COMPLETED.value,
            )
        return _task_from_record(row) if row else None

    async def claim_task(self, task_id: str, progress: str) -> Optional[Task]:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                f"""
                UPDATE tasks SET status = $1, progress = $2
                WHERE task_id = $3 AND status = $4
                RETURNING {_TASK_COLUMNS}
                """,
                TaskStatus.IN_PROGRESS.value,
                progress,
                task_id,
                TaskStatus.QUEUED.value,
            )
        return _task_from_record(row) if row else None

    async def complete_task(self, task_id: str, data: str) -> Result:
        result = Result(task_id=task_id, data=data)
        async with self._connection() as conn:
            async with conn.transaction():
                status = await conn.execute(
                    """
                    UPDATE tasks SET status = $1, progress = NULL, result_id = $2,
                        finished_at = $3
                    WHERE task_id = $4 AND status = $5
                    """,
                    TaskStatus.COMPLETED.value,
                    result.result_id,
                    datetime.now(timezone.utc),
                    task_id,
                    TaskStatus.IN_PROGRESS.value,
                )
                if status == "UPDATE 0":
                    raise PersistenceError(
                        f"Task {task_id} is not in progress", task_id=task_id
                    )
                await conn.execute(
                    "INSERT INTO results (result_id, task_id, data, created_at) "
                    "VALUES ($1, $2, $3, $4)",
                    result.result_id,
                    result.task_id,
                    result.data,
                    result.created_at,
                )
        return result

    async def fail_task(self, task_id: str, error: str) -> Task:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                f"""
                UPDATE tasks SET status = $1, progress = NULL, error = $2, finished_at = $3
                WHERE task_id = $4 AND status = $5
                RETURNING {_TASK_COLUMNS}
                """,
                TaskStatus.FAILED.value,
                error,
                datetime.now(timezone.utc),
                task_id,
                TaskStatus.IN_PROGRESS.value,
            )
        if row is None:
            raise PersistenceError(f"Task {task_id} is not in progress", task_id=task_id)
        return _task_from_record(row)

    async def get_task(self, task_id: str) -> Optional[Task]:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                f"SELECT {_TASK_COLUMNS} FROM tasks WHERE task_id = $1", task_id
            )
        return _task_from_record(row) if row else None

    async def list_tasks(self, workflow_id: str) -> list[Task]:
        async with self._connection() as conn:
            rows = await conn.fetch(
                f"SELECT {_TASK_COLUMNS} FROM tasks WHERE workflow_id = $1 "
                "ORDER BY step_number ASC, sequence ASC",
                workflow_id,
            )
        return [_task_from_record(r) for r in rows]

    async def list_results(self, workflow_id: str) -> list[Result]:
        async with self._connection() as conn:
            rows = await conn.fetch(
                """
                SELECT r.result_id, r.task_id, r.data, r.created_at
                FROM results r JOIN tasks t ON t.task_id = r.task_id
                WHERE t.workflow_id = $1
                """,
                workflow_id,
            )
        return [Result(**dict(r)) for r in rows]

    async def update_workflow(
        self,
        workflow_id: str,
        status: WorkflowStatus,
        final_result: Optional[str] = None,
    ) -> None:
        async with self._connection() as conn:
            outcome = await conn.execute(
                "UPDATE workflows SET status = $1, final_result = $2 WHERE workflow_id = $3",
                status.value,
                final_result,
                workflow_id,
            )
        if outcome == "UPDATE 0":
            raise PersistenceError(
                f"Workflow {workflow_id} does not exist", workflow_id=workflow_id
            )

    async def get_workflow(self, workflow_id: str) -> Optional[Workflow]:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                f"SELECT {_WORKFLOW_COLUMNS} FROM workflows WHERE workflow_id = $1",
                workflow_id,
            )
        return _workflow_from_record(row) if row else None

    async def list_workflows(self) -> list[Workflow]:
        async with self._connection() as conn:
            rows = await conn.fetch(
                f"SELECT {_WORKFLOW_COLUMNS} FROM workflows ORDER BY created_at"
            )
        return [_workflow_from_record(r) for r in rows]
