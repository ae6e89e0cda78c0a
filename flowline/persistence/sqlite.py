"""SQLite implementation of the entity store."""

from __future__ import annotations

import asyncio
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional, Sequence, TypeVar

from ..errors import PersistenceError
from ..models import Result, Task, TaskStatus, Workflow, WorkflowStatus
from .repository import EntityStore

T = TypeVar("T")

_TASK_COLUMNS = (
    "task_id, workflow_id, client_id, task_type, step_number, name, status, "
    "progress, dependency_id, result_id, payload, error, sequence, created_at, "
    "finished_at"
)


def _ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class SQLiteEntityStore(EntityStore):
    """Persist workflow state using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")
        self._mutex = threading.Lock()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workflows (
                workflow_id TEXT PRIMARY KEY,
                client_id TEXT NOT NULL,
                name TEXT,
                status TEXT NOT NULL,
                final_result TEXT,
                created_at TEXT NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS tasks (
                sequence INTEGER PRIMARY KEY AUTOINCREMENT,
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
                created_at TEXT NOT NULL,
                finished_at TEXT
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS results (
                result_id TEXT PRIMARY KEY,
                task_id TEXT NOT NULL UNIQUE REFERENCES tasks(task_id) ON DELETE CASCADE,
                data TEXT NOT NULL,
                created_at TEXT NOT NULL
            )
            """
        )
        cur.execute(
            "CREATE INDEX IF NOT EXISTS ix_tasks_ready ON tasks (status, step_number, sequence)"
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    async def _run(self, fn: Callable[..., T], *args: Any) -> T:
        try:
            return await asyncio.to_thread(self._locked, fn, *args)
        except sqlite3.Error as exc:
            raise PersistenceError(f"SQLite store failure: {exc}") from exc

    def _locked(self, fn: Callable[..., T], *args: Any) -> T:
        with self._mutex:
            try:
                value = fn(*args)
                self._conn.commit()
                return value
            except Exception:
                self._conn.rollback()
                raise

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

    @staticmethod
    def _task_from_row(r: sqlite3.Row) -> Task:
        return Task(
            task_id=r["task_id"],
            workflow_id=r["workflow_id"],
            client_id=r["client_id"],
            task_type=r["task_type"],
            step_number=r["step_number"],
            name=r["name"],
            status=TaskStatus(r["status"]),
            progress=r["progress"],
            dependency_id=r["dependency_id"],
            result_id=r["result_id"],
            payload=r["payload"],
            error=r["error"],
            sequence=r["sequence"],
            created_at=_parse_ts(r["created_at"]),
            finished_at=_parse_ts(r["finished_at"]),
        )

    @staticmethod
    def _workflow_from_row(r: sqlite3.Row) -> Workflow:
        return Workflow(
            workflow_id=r["workflow_id"],
            client_id=r["client_id"],
            name=r["name"],
            status=WorkflowStatus(r["status"]),
            final_result=r["final_result"],
            created_at=_parse_ts(r["created_at"]),
        )

    # ------------------------------------------------------------------
    # Store API
    async def create_workflow(self, workflow: Workflow) -> Workflow:
        await self._run(
            self._execute,
            "INSERT INTO workflows (workflow_id, client_id, name, status, final_result, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            workflow.workflow_id,
            workflow.client_id,
            workflow.name,
            workflow.status.value,
            workflow.final_result,
            _ts(workflow.created_at),
        )
        return workflow

    async def delete_workflow(self, workflow_id: str) -> None:
        await self._run(
            self._execute, "DELETE FROM workflows WHERE workflow_id = ?", workflow_id
        )

    def _insert_tasks(self, tasks: Sequence[Task]) -> list[Task]:
        saved: list[Task] = []
        cur = self._conn.cursor()
        for task in tasks:
            cur.execute(
                """
                INSERT INTO tasks (task_id, workflow_id, client_id, task_type, step_number,
                    name, status, progress, dependency_id, result_id, payload, error,
                    created_at, finished_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
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
                    _ts(task.created_at),
                    _ts(task.finished_at),
                ),
            )
            saved.append(task.model_copy(update={"sequence": cur.lastrowid}))
        return saved

    async def create_tasks(self, tasks: Sequence[Task]) -> list[Task]:
        return await self._run(self._insert_tasks, list(tasks))

    async def find_ready_task(self) -> Optional[Task]:
        row = await self._run(
            self._fetchone,
            f"""
            SELECT {", ".join("t." + c.strip() for c in _TASK_COLUMNS.split(","))}
            FROM tasks t
            LEFT JOIN tasks d ON d.task_id = t.dependency_id
            WHERE t.status = ?
              AND (t.dependency_id IS NULL OR d.status = ?)
            ORDER BY t.step_number ASC, t.sequence ASC
            LIMIT 1
            """,
            TaskStatus.QUEUED.value,
            TaskStatus.COMPLETED.value,
        )
        return self._task_from_row(row) if row else None

    def _claim(self, task_id: str, progress: str) -> Optional[sqlite3.Row]:
        updated = self._execute(
            "UPDATE tasks SET status = ?, progress = ? WHERE task_id = ? AND status = ?",
            TaskStatus.IN_PROGRESS.value,
            progress,
            task_id,
            TaskStatus.QUEUED.value,
        )
        if not updated:
            return None
        return self._fetchone(f"SELECT {_TASK_COLUMNS} FROM tasks WHERE task_id = ?", task_id)

    async def claim_task(self, task_id: str, progress: str) -> Optional[Task]:
        row = await self._run(self._claim, task_id, progress)
        return self._task_from_row(row) if row else None

    def _complete(self, task_id: str, result: Result, finished_at: str) -> None:
        updated = self._execute(
            """
            UPDATE tasks SET status = ?, progress = NULL, result_id = ?, finished_at = ?
            WHERE task_id = ? AND status = ?
            """,
            TaskStatus.COMPLETED.value,
            result.result_id,
            finished_at,
            task_id,
            TaskStatus.IN_PROGRESS.value,
        )
        if not updated:
            raise PersistenceError(f"Task {task_id} is not in progress", task_id=task_id)
        self._execute(
            "INSERT INTO results (result_id, task_id, data, created_at) VALUES (?, ?, ?, ?)",
            result.result_id,
            result.task_id,
            result.data,
            _ts(result.created_at),
        )

    async def complete_task(self, task_id: str, data: str) -> Result:
        result = Result(task_id=task_id, data=data)
        await self._run(
            self._complete, task_id, result, _ts(datetime.now(timezone.utc))
        )
        return result

    def _fail(self, task_id: str, error: str, finished_at: str) -> sqlite3.Row:
        updated = self._execute(
            """
            UPDATE tasks SET status = ?, progress = NULL, error = ?, finished_at = ?
            WHERE task_id = ? AND status = ?
            """,
            TaskStatus.FAILED.value,
            error,
            finished_at,
            task_id,
            TaskStatus.IN_PROGRESS.value,
        )
        if not updated:
            raise PersistenceError(f"Task {task_id} is not in progress", task_id=task_id)
        return self._fetchone(f"SELECT {_TASK_COLUMNS} FROM tasks WHERE task_id = ?", task_id)

    async def fail_task(self, task_id: str, error: str) -> Task:
        row = await self._run(self._fail, task_id, error, _ts(datetime.now(timezone.utc)))
        return self._task_from_row(row)

    async def get_task(self, task_id: str) -> Optional[Task]:
        row = await self._run(
            self._fetchone, f"SELECT {_TASK_COLUMNS} FROM tasks WHERE task_id = ?", task_id
        )
        return self._task_from_row(row) if row else None

    async def list_tasks(self, workflow_id: str) -> list[Task]:
        rows = await self._run(
            self._fetchall,
            f"SELECT {_TASK_COLUMNS} FROM tasks WHERE workflow_id = ? "
            "ORDER BY step_number ASC, sequence ASC",
            workflow_id,
        )
        return [self._task_from_row(r) for r in rows]

    async def list_results(self, workflow_id: str) -> list[Result]:
        rows = await self._run(
            self._fetchall,
            """
            SELECT r.result_id, r.task_id, r.data, r.created_at
            FROM results r JOIN tasks t ON t.task_id = r.task_id
            WHERE t.workflow_id = ?
            """,
            workflow_id,
        )
        return [
            Result(
                result_id=r["result_id"],
                task_id=r["task_id"],
                data=r["data"],
                created_at=_parse_ts(r["created_at"]),
            )
            for r in rows
        ]

    async def update_workflow(
        self,
        workflow_id: str,
        status: WorkflowStatus,
        final_result: Optional[str] = None,
    ) -> None:
        updated = await self._run(
            self._execute,
            "UPDATE workflows SET status = ?, final_result = ? WHERE workflow_id = ?",
            status.value,
            final_result,
            workflow_id,
        )
        if not updated:
            raise PersistenceError(
                f"Workflow {workflow_id} does not exist", workflow_id=workflow_id
            )

    async def get_workflow(self, workflow_id: str) -> Optional[Workflow]:
        row = await self._run(
            self._fetchone,
            "SELECT workflow_id, client_id, name, status, final_result, created_at "
            "FROM workflows WHERE workflow_id = ?",
            workflow_id,
        )
        return self._workflow_from_row(row) if row else None

    async def list_workflows(self) -> list[Workflow]:
        rows = await self._run(
            self._fetchall,
            "SELECT workflow_id, client_id, name, status, final_result, created_at "
            "FROM workflows ORDER BY created_at",
        )
        return [self._workflow_from_row(r) for r in rows]

    def close(self) -> None:
        self._conn.close()
