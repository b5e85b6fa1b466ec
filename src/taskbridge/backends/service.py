"""Scheduler backend contract and its error taxonomy."""

from __future__ import annotations

import os
from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum

from taskbridge.execution.process import CommandResult, CommandRunner, Runner, ToolNotFoundError
from taskbridge.infrastructure.config import TimeoutConfig
from taskbridge.scheduling.types import ScheduledTask, SchedulerBackend, TaskExecutionResult


class SchedulerErrorKind(str, Enum):
    ARTIFACT_CREATION_FAILED = "artifact_creation_failed"
    LOAD_FAILED = "load_failed"
    UNLOAD_FAILED = "unload_failed"
    COMMAND_EXECUTION_FAILED = "command_execution_failed"
    PERMISSION_DENIED = "permission_denied"
    FILE_SYSTEM_ERROR = "file_system_error"
    TOOL_NOT_AVAILABLE = "tool_not_available"
    NOT_SUPPORTED = "not_supported"
    TASK_NOT_FOUND = "task_not_found"
    INVALID_TASK = "invalid_task"


_MESSAGE_PREFIX = {
    SchedulerErrorKind.ARTIFACT_CREATION_FAILED: "Failed to create task artifact",
    SchedulerErrorKind.LOAD_FAILED: "Failed to load task",
    SchedulerErrorKind.UNLOAD_FAILED: "Failed to unload task",
    SchedulerErrorKind.COMMAND_EXECUTION_FAILED: "Command execution failed",
    SchedulerErrorKind.PERMISSION_DENIED: "Permission denied",
    SchedulerErrorKind.FILE_SYSTEM_ERROR: "File system error",
    SchedulerErrorKind.TOOL_NOT_AVAILABLE: "Tool not available",
    SchedulerErrorKind.NOT_SUPPORTED: "Operation not supported",
    SchedulerErrorKind.TASK_NOT_FOUND: "Task not found",
    SchedulerErrorKind.INVALID_TASK: "Invalid task",
}


class SchedulerError(Exception):
    """A backend operation failed. ``kind`` is one of a closed set of failure kinds."""

    def __init__(self, kind: SchedulerErrorKind, message: str) -> None:
        super().__init__(f"{_MESSAGE_PREFIX[kind]}: {message}")
        self.kind = kind
        self.message = message

    @classmethod
    def from_os_error(cls, err: OSError, action: str) -> SchedulerError:
        if isinstance(err, PermissionError):
            return cls(SchedulerErrorKind.PERMISSION_DENIED, f"{action}: {err}")
        return cls(SchedulerErrorKind.FILE_SYSTEM_ERROR, f"{action}: {err}")


class SchedulerService(ABC):
    """Operations every backend implements.

    Calls for one task must not overlap: ``update`` is uninstall, install,
    then enable, with no rollback between steps.
    """

    backend: SchedulerBackend

    def __init__(self, runner: Runner | None = None, timeouts: TimeoutConfig | None = None) -> None:
        self._runner: Runner = runner or CommandRunner()
        self._timeouts = timeouts or TimeoutConfig()

    @abstractmethod
    async def install(self, task: ScheduledTask) -> None: ...

    @abstractmethod
    async def uninstall(self, task: ScheduledTask) -> None: ...

    @abstractmethod
    async def enable(self, task: ScheduledTask) -> None: ...

    @abstractmethod
    async def disable(self, task: ScheduledTask) -> None: ...

    @abstractmethod
    async def run_now(self, task: ScheduledTask) -> TaskExecutionResult: ...

    @abstractmethod
    async def is_installed(self, task: ScheduledTask) -> bool: ...

    @abstractmethod
    async def is_running(self, task: ScheduledTask) -> bool: ...

    @abstractmethod
    async def discover_tasks(self) -> list[ScheduledTask]: ...

    async def update(self, task: ScheduledTask, previous: ScheduledTask | None = None) -> None:
        """Apply an edited task. ``previous`` is the stored version, when the caller has one."""
        await self.uninstall(previous or task)
        await self.install(task)
        if task.is_enabled:
            await self.enable(task)

    # --- Helpers for subclasses ---

    async def _exec(
        self,
        argv: list[str],
        failure: SchedulerErrorKind = SchedulerErrorKind.COMMAND_EXECUTION_FAILED,
        input_text: str | None = None,
        timeout: float | None = None,
        check: bool = True,
    ) -> CommandResult:
        """Run a backend tool. With ``check``, a non-zero exit raises ``failure``."""
        try:
            result = await self._runner.run(
                argv, input_text=input_text, timeout=timeout or self._timeouts.command_timeout
            )
        except ToolNotFoundError as err:
            raise SchedulerError(SchedulerErrorKind.TOOL_NOT_AVAILABLE, str(err)) from err
        if check and not result.ok:
            detail = result.output or f"exit code {result.returncode}"
            raise SchedulerError(failure, f"{argv[0]} {' '.join(argv[1:2])}: {detail}")
        return result

    async def _run_program(self, task: ScheduledTask, argv: list[str]) -> TaskExecutionResult:
        """Execute ``argv`` in the action's directory and environment, as an execution result."""
        action = task.action
        env = {**os.environ, **action.environment_variables} if action.environment_variables else None
        start = datetime.now()
        try:
            result = await self._runner.run(
                argv, timeout=self._timeouts.for_run_now(), cwd=action.working_directory or None, env=env
            )
        except ToolNotFoundError as err:
            raise SchedulerError(SchedulerErrorKind.COMMAND_EXECUTION_FAILED, str(err)) from err
        return TaskExecutionResult(
            task_id=task.id,
            start_time=start,
            end_time=datetime.now(),
            exit_code=result.returncode,
            standard_output=result.stdout,
            standard_error=result.stderr,
        )
