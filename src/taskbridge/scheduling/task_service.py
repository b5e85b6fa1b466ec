"""Task manager — task lifecycle across backends and the local store."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Callable

from taskbridge.backends.factory import service_for as default_service_for
from taskbridge.backends.launchd import label_for
from taskbridge.backends.service import SchedulerError, SchedulerErrorKind, SchedulerService
from taskbridge.execution.process import Runner
from taskbridge.infrastructure.config import TimeoutConfig
from taskbridge.infrastructure.logger import logger
from taskbridge.scheduling.repository import HistoryRepository, TaskRepository
from taskbridge.scheduling.types import (
    ScheduledTask,
    SchedulerBackend,
    TaskExecutionResult,
    TaskState,
    TaskStatus,
)

ServiceFactory = Callable[..., SchedulerService]


class TaskManager:
    def __init__(
        self,
        task_repo: TaskRepository,
        history_repo: HistoryRepository,
        service_for: ServiceFactory = default_service_for,
        runner: Runner | None = None,
        timeouts: TimeoutConfig | None = None,
    ) -> None:
        self._task_repo = task_repo
        self._history_repo = history_repo
        self._service_for = service_for
        self._runner = runner
        self._timeouts = timeouts

    def _service(self, backend: SchedulerBackend) -> SchedulerService:
        return self._service_for(backend, self._runner, self._timeouts)

    def _require(self, task_id: uuid.UUID) -> ScheduledTask:
        task = self._task_repo.get_task_by_id(task_id)
        if task is None:
            raise SchedulerError(SchedulerErrorKind.TASK_NOT_FOUND, str(task_id))
        return task

    @staticmethod
    def _check_writable(task: ScheduledTask, action: str) -> None:
        if task.backend.is_discover_only:
            raise SchedulerError(
                SchedulerErrorKind.NOT_SUPPORTED, f"cannot {action} {task.backend.value} tasks"
            )
        if task.is_read_only:
            raise SchedulerError(SchedulerErrorKind.NOT_SUPPORTED, f"{task.name} is read-only")

    def _check_label_free(self, task: ScheduledTask) -> None:
        """A label names the launchd plist, so two tasks must never share one."""
        for other in self._task_repo.get_tasks_for_backend(task.backend):
            if other.label == task.label and other.id != task.id:
                raise SchedulerError(
                    SchedulerErrorKind.INVALID_TASK,
                    f"label {task.label} is already used by {other.name}",
                )

    def _set_status(self, task: ScheduledTask, **changes: object) -> ScheduledTask:
        updated = task.model_copy(update={"status": task.status.model_copy(update=changes)})
        self._task_repo.save_task(updated)
        return updated

    # --- Queries ---

    def get_by_id(self, task_id: uuid.UUID) -> ScheduledTask | None:
        return self._task_repo.get_task_by_id(task_id)

    def get_all(self) -> list[ScheduledTask]:
        return self._task_repo.get_all_tasks()

    def history(self, task_id: uuid.UUID) -> list[TaskExecutionResult]:
        return self._history_repo.get_history(task_id)

    # --- Lifecycle ---

    async def create(self, task: ScheduledTask) -> ScheduledTask:
        self._check_writable(task, "create")
        if task.backend == SchedulerBackend.LAUNCHD and not task.label:
            task = task.model_copy(update={"label": label_for(task)})
        if task.label:
            self._check_label_free(task)
        service = self._service(task.backend)
        await service.install(task)
        if task.is_enabled:
            await service.enable(task)
        self._task_repo.save_task(task)
        logger.info("Task created", task_id=str(task.id), backend=task.backend.value, name=task.name)
        return task

    async def update(self, task: ScheduledTask) -> ScheduledTask:
        """Apply an edited task. A backend change removes it from the old backend first."""
        previous = self._require(task.id)
        self._check_writable(previous, "update")
        self._check_writable(task, "update")
        if task.label:
            self._check_label_free(task)

        if previous.backend != task.backend:
            await self._service(previous.backend).uninstall(previous)
            service = self._service(task.backend)
            await service.install(task)
            if task.is_enabled:
                await service.enable(task)
        else:
            await self._service(task.backend).update(task, previous)

        updated = task.model_copy(update={"modified_at": datetime.now()})
        self._task_repo.save_task(updated)
        logger.info("Task updated", task_id=str(task.id), backend=task.backend.value)
        return updated

    async def remove(self, task_id: uuid.UUID) -> None:
        task = self._require(task_id)
        self._check_writable(task, "remove")
        await self._service(task.backend).uninstall(task)
        self._task_repo.delete_task(task_id)
        logger.info("Task removed", task_id=str(task_id))

    async def enable(self, task_id: uuid.UUID) -> ScheduledTask:
        task = self._require(task_id)
        await self._service(task.backend).enable(task)
        logger.info("Task enabled", task_id=str(task_id))
        return self._set_status(task, state=TaskState.ENABLED, last_error=None)

    async def disable(self, task_id: uuid.UUID) -> ScheduledTask:
        task = self._require(task_id)
        await self._service(task.backend).disable(task)
        logger.info("Task disabled", task_id=str(task_id))
        return self._set_status(task, state=TaskState.DISABLED)

    async def run_now(self, task_id: uuid.UUID) -> TaskExecutionResult:
        """Run once, record the result in history and the task status."""
        task = self._require(task_id)
        try:
            result = await self._service(task.backend).run_now(task)
        except SchedulerError as err:
            self._set_status(task, state=TaskState.ERROR, last_error=str(err))
            raise

        self._history_repo.add_result(result)
        self._set_status(
            task,
            last_run=result.start_time,
            last_exit_code=result.exit_code,
            last_error=None if result.success else (result.standard_error.strip() or f"exit code {result.exit_code}"),
            run_count=task.status.run_count + 1,
        )
        logger.info(
            "Task run finished",
            task_id=str(task_id),
            exit_code=result.exit_code,
            duration_s=round(result.duration, 3),
        )
        return result

    async def refresh_status(self, task_id: uuid.UUID) -> TaskStatus:
        """Re-read installed/running state from the backend."""
        task = self._require(task_id)
        service = self._service(task.backend)
        if not await service.is_installed(task):
            state = TaskState.ERROR
            error: str | None = "Task is no longer installed"
        elif await service.is_running(task):
            state, error = TaskState.RUNNING, task.status.last_error
        else:
            state = TaskState.ENABLED if task.is_enabled else TaskState.DISABLED
            error = task.status.last_error
        return self._set_status(task, state=state, last_error=error).status

    async def discover(self, backend: SchedulerBackend) -> list[ScheduledTask]:
        """Import what the backend already has. Known tasks keep their local name and run history."""
        discovered = await self._service(backend).discover_tasks()
        by_label = {t.label: t for t in self._task_repo.get_tasks_for_backend(backend) if t.label}
        merged: list[ScheduledTask] = []
        for task in discovered:
            existing = self._task_repo.get_task_by_id(task.id) or by_label.get(task.label)
            if existing is not None:
                status = task.status.model_copy(update={
                    "last_run": existing.status.last_run,
                    "last_exit_code": existing.status.last_exit_code,
                    "last_error": existing.status.last_error,
                    "run_count": existing.status.run_count,
                })
                task = task.model_copy(update={
                    "id": existing.id,
                    "name": existing.name,
                    "description": existing.description or task.description,
                    "created_at": existing.created_at,
                    "status": status,
                })
            self._task_repo.save_task(task)
            merged.append(task)
        logger.info("Discovery merged", backend=backend.value, count=len(merged))
        return merged
