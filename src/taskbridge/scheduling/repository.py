"""Task and execution-history persistence."""

from __future__ import annotations

import sqlite3
import uuid

from taskbridge.infrastructure.config import HISTORY_LIMIT
from taskbridge.scheduling.types import ScheduledTask, SchedulerBackend, TaskExecutionResult, TaskStatus


class TaskRepository:
    def __init__(self, db: sqlite3.Connection) -> None:
        self._db = db

    def save_task(self, task: ScheduledTask) -> None:
        """Insert or replace by id."""
        self._db.execute(
            """INSERT INTO tasks (id, backend, name, body, created_at, modified_at)
               VALUES (?, ?, ?, ?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET
                   backend = excluded.backend,
                   name = excluded.name,
                   body = excluded.body,
                   modified_at = excluded.modified_at""",
            (
                str(task.id), task.backend.value, task.name, task.model_dump_json(),
                task.created_at.isoformat(), task.modified_at.isoformat(),
            ),
        )
        self._db.commit()

    def get_task_by_id(self, id: uuid.UUID) -> ScheduledTask | None:
        row = self._db.execute("SELECT body FROM tasks WHERE id = ?", (str(id),)).fetchone()
        if not row:
            return None
        return ScheduledTask.model_validate_json(row["body"])

    def get_all_tasks(self) -> list[ScheduledTask]:
        rows = self._db.execute("SELECT body FROM tasks ORDER BY created_at").fetchall()
        return [ScheduledTask.model_validate_json(row["body"]) for row in rows]

    def get_tasks_for_backend(self, backend: SchedulerBackend) -> list[ScheduledTask]:
        rows = self._db.execute(
            "SELECT body FROM tasks WHERE backend = ? ORDER BY created_at", (backend.value,)
        ).fetchall()
        return [ScheduledTask.model_validate_json(row["body"]) for row in rows]

    def update_status(self, id: uuid.UUID, status: TaskStatus) -> None:
        task = self.get_task_by_id(id)
        if task is None:
            return
        self.save_task(task.model_copy(update={"status": status}))

    def delete_task(self, id: uuid.UUID) -> None:
        self._db.execute("DELETE FROM task_history WHERE task_id = ?", (str(id),))
        self._db.execute("DELETE FROM tasks WHERE id = ?", (str(id),))
        self._db.commit()


class HistoryRepository:
    def __init__(self, db: sqlite3.Connection, limit: int = HISTORY_LIMIT) -> None:
        self._db = db
        self._limit = limit

    def add_result(self, result: TaskExecutionResult) -> None:
        """Record a run and keep only the newest ``limit`` runs for the task."""
        self._db.execute(
            """INSERT INTO task_history (id, task_id, start_time, exit_code, body)
               VALUES (?, ?, ?, ?, ?)""",
            (
                str(result.id), str(result.task_id), result.start_time.isoformat(),
                result.exit_code, result.model_dump_json(),
            ),
        )
        self._db.execute(
            """DELETE FROM task_history
               WHERE task_id = ? AND id NOT IN (
                   SELECT id FROM task_history WHERE task_id = ?
                   ORDER BY start_time DESC LIMIT ?
               )""",
            (str(result.task_id), str(result.task_id), self._limit),
        )
        self._db.commit()

    def get_history(self, task_id: uuid.UUID) -> list[TaskExecutionResult]:
        """Newest first."""
        rows = self._db.execute(
            "SELECT body FROM task_history WHERE task_id = ? ORDER BY start_time DESC",
            (str(task_id),),
        ).fetchall()
        return [TaskExecutionResult.model_validate_json(row["body"]) for row in rows]
