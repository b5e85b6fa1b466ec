"""Scheduling domain types: tasks, actions, triggers and execution results."""

from __future__ import annotations

import shlex
import uuid
from datetime import datetime
from enum import Enum
from pathlib import PurePosixPath
from typing import Annotated, ClassVar, Literal, Union

from pydantic import BaseModel, Field, model_validator

from taskbridge.containers.types import ContainerInfo, VMInfo

# Fixed namespace so the same label always yields the same task id.
TASK_ID_NAMESPACE = uuid.UUID("6f1c5c2e-3b8a-4f0e-9d51-7a2c4b1e8d90")

SHELL_PATH = "/bin/sh"
OSASCRIPT_PATH = "/usr/bin/osascript"
SHELL_NAMES = ("sh", "bash", "zsh")


def has_control_characters(text: str) -> bool:
    """True for line breaks, tabs and other C0/DEL control characters."""
    return any(ord(ch) < 0x20 or ord(ch) == 0x7F for ch in text)


class SchedulerBackend(str, Enum):
    LAUNCHD = "launchd"
    CRON = "cron"
    DOCKER = "docker"
    PARALLELS = "parallels"
    VIRTUALBOX = "virtualbox"
    UTM = "utm"
    VMWARE_FUSION = "vmware_fusion"

    @property
    def is_vm(self) -> bool:
        return self in (
            SchedulerBackend.PARALLELS,
            SchedulerBackend.VIRTUALBOX,
            SchedulerBackend.UTM,
            SchedulerBackend.VMWARE_FUSION,
        )

    @property
    def is_discover_only(self) -> bool:
        return self.is_vm


class TaskState(str, Enum):
    ENABLED = "enabled"
    DISABLED = "disabled"
    RUNNING = "running"
    ERROR = "error"


class TaskStatus(BaseModel):
    state: TaskState = TaskState.DISABLED
    last_run: datetime | None = None
    last_exit_code: int | None = None
    last_error: str | None = None
    run_count: int = 0


# --- Calendar schedule ---


class CalendarSchedule(BaseModel):
    """Calendar fields; ``None`` means every value."""

    minute: int | None = Field(default=None, ge=0, le=59)
    hour: int | None = Field(default=None, ge=0, le=23)
    day: int | None = Field(default=None, ge=1, le=31)
    weekday: int | None = Field(default=None, ge=0, le=6)
    month: int | None = Field(default=None, ge=1, le=12)

    @property
    def display_string(self) -> str:
        from taskbridge.scheduling.cron import from_calendar_schedule

        return from_calendar_schedule(self).display_string


# --- Triggers ---


class CalendarTrigger(BaseModel):
    type: Literal["calendar"] = "calendar"
    schedule: CalendarSchedule

    supports_cron: ClassVar[bool] = True

    @property
    def display_string(self) -> str:
        return self.schedule.display_string


class IntervalTrigger(BaseModel):
    type: Literal["interval"] = "interval"
    seconds: int = Field(gt=0)

    supports_cron: ClassVar[bool] = False

    @property
    def display_string(self) -> str:
        for unit, size in (("day", 86400), ("hour", 3600), ("minute", 60)):
            if self.seconds % size == 0:
                count = self.seconds // size
                return f"Every {count} {unit}{'s' if count != 1 else ''}"
        return f"Every {self.seconds} seconds"


class AtLoginTrigger(BaseModel):
    type: Literal["at_login"] = "at_login"

    supports_cron: ClassVar[bool] = False
    display_string: ClassVar[str] = "At login"


class AtStartupTrigger(BaseModel):
    type: Literal["at_startup"] = "at_startup"

    supports_cron: ClassVar[bool] = True
    display_string: ClassVar[str] = "At startup"


class OnDemandTrigger(BaseModel):
    type: Literal["on_demand"] = "on_demand"

    supports_cron: ClassVar[bool] = False
    display_string: ClassVar[str] = "On demand"


TaskTrigger = Annotated[
    Union[CalendarTrigger, IntervalTrigger, AtLoginTrigger, AtStartupTrigger, OnDemandTrigger],
    Field(discriminator="type"),
]


# --- Actions ---


class _ActionBase(BaseModel):
    path: str = ""
    arguments: list[str] = Field(default_factory=list)
    working_directory: str | None = None
    environment_variables: dict[str, str] = Field(default_factory=dict)
    script_content: str | None = None

    @property
    def display_name(self) -> str:
        if self.path:
            return PurePosixPath(self.path).name
        return self.type  # type: ignore[attr-defined]


class ExecutableAction(_ActionBase):
    type: Literal["executable"] = "executable"

    @property
    def command_preview(self) -> str:
        return " ".join([self.path, *self.arguments])

    def program_arguments(self) -> list[str]:
        return [self.path, *self.arguments]


class ShellScriptAction(_ActionBase):
    type: Literal["shell_script"] = "shell_script"

    @model_validator(mode="after")
    def _requires_source(self) -> ShellScriptAction:
        if not self.path and not self.script_content:
            raise ValueError("Script path or content is required")
        return self

    @property
    def command_preview(self) -> str:
        return self.script_content or self.path

    def program_arguments(self) -> list[str]:
        if self.script_content:
            # sh -c takes $0 before the positional parameters
            if self.arguments:
                return [SHELL_PATH, "-c", self.script_content, PurePosixPath(SHELL_PATH).name, *self.arguments]
            return [SHELL_PATH, "-c", self.script_content]
        return [SHELL_PATH, self.path, *self.arguments]


class AppleScriptAction(_ActionBase):
    type: Literal["apple_script"] = "apple_script"

    @model_validator(mode="after")
    def _requires_source(self) -> AppleScriptAction:
        if not self.path and not self.script_content:
            raise ValueError("AppleScript path or content is required")
        return self

    @property
    def command_preview(self) -> str:
        if self.script_content:
            return self.script_content if len(self.script_content) <= 50 else f"{self.script_content[:50]}..."
        return self.path

    def program_arguments(self) -> list[str]:
        if self.script_content:
            return [OSASCRIPT_PATH, "-e", self.script_content, *self.arguments]
        return [OSASCRIPT_PATH, self.path, *self.arguments]


TaskAction = Annotated[
    Union[ExecutableAction, ShellScriptAction, AppleScriptAction],
    Field(discriminator="type"),
]


def action_from_program_arguments(
    argv: list[str], working_directory: str | None = None
) -> ExecutableAction | ShellScriptAction | AppleScriptAction:
    """Rebuild an action from a discovered argv (inverse of ``program_arguments``)."""
    if not argv:
        raise ValueError("Empty program arguments")
    program, rest = argv[0], argv[1:]
    name = PurePosixPath(program).name

    if name in SHELL_NAMES and rest:
        if rest[0] == "-c" and len(rest) >= 2:
            return ShellScriptAction(
                path=program, script_content=rest[1], arguments=rest[3:], working_directory=working_directory
            )
        if not rest[0].startswith("-"):
            return ShellScriptAction(path=rest[0], arguments=rest[1:], working_directory=working_directory)
    if name == "osascript" and rest:
        if rest[0] == "-e" and len(rest) >= 2:
            return AppleScriptAction(
                path=program, script_content=rest[1], arguments=rest[2:], working_directory=working_directory
            )
        if not rest[0].startswith("-"):
            return AppleScriptAction(path=rest[0], arguments=rest[1:], working_directory=working_directory)
    return ExecutableAction(path=program, arguments=rest, working_directory=working_directory)


# --- Task ---


class ScheduledTask(BaseModel):
    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    name: str
    description: str = ""
    backend: SchedulerBackend = SchedulerBackend.LAUNCHD
    action: TaskAction
    trigger: TaskTrigger = Field(default_factory=OnDemandTrigger)
    status: TaskStatus = Field(default_factory=TaskStatus)
    label: str = ""
    is_read_only: bool = False
    run_at_load: bool = False
    keep_alive: bool = False
    standard_out_path: str | None = None
    standard_error_path: str | None = None
    created_at: datetime = Field(default_factory=datetime.now)
    modified_at: datetime = Field(default_factory=datetime.now)
    container_info: ContainerInfo | None = None
    vm_info: VMInfo | None = None

    @model_validator(mode="after")
    def _single_backend_payload(self) -> ScheduledTask:
        if self.container_info is not None and self.vm_info is not None:
            raise ValueError("A task carries container info or VM info, not both")
        if self.container_info is not None and self.backend != SchedulerBackend.DOCKER:
            raise ValueError(f"Container info is only valid for the docker backend, not {self.backend.value}")
        if self.vm_info is not None and not self.backend.is_vm:
            raise ValueError(f"VM info is only valid for VM backends, not {self.backend.value}")
        return self

    @staticmethod
    def id_from_label(label: str) -> uuid.UUID:
        return uuid.uuid5(TASK_ID_NAMESPACE, label)

    @property
    def is_enabled(self) -> bool:
        return self.status.state in (TaskState.ENABLED, TaskState.RUNNING)

    @property
    def command_line(self) -> str:
        return shlex.join(self.action.program_arguments())


class TaskExecutionResult(BaseModel):
    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    task_id: uuid.UUID
    start_time: datetime
    end_time: datetime
    exit_code: int
    standard_output: str = ""
    standard_error: str = ""

    @property
    def duration(self) -> float:
        return (self.end_time - self.start_time).total_seconds()

    @property
    def success(self) -> bool:
        return self.exit_code == 0
