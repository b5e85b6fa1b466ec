"""Task edit state for the launchd and cron backends."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import PurePosixPath

from taskbridge.containers.translator import parse_command
from taskbridge.scheduling.types import (
    SHELL_NAMES,
    AppleScriptAction,
    AtLoginTrigger,
    AtStartupTrigger,
    CalendarSchedule,
    CalendarTrigger,
    ExecutableAction,
    IntervalTrigger,
    OnDemandTrigger,
    ScheduledTask,
    SchedulerBackend,
    ShellScriptAction,
    TaskState,
    TaskStatus,
    has_control_characters,
)

_TRIGGERS = {
    "calendar": CalendarTrigger,
    "interval": IntervalTrigger,
    "at_login": AtLoginTrigger,
    "at_startup": AtStartupTrigger,
    "on_demand": OnDemandTrigger,
}

_ACTIONS = {
    "executable": ExecutableAction,
    "shell_script": ShellScriptAction,
    "apple_script": AppleScriptAction,
}


class IntervalUnit(str, Enum):
    SECONDS = "seconds"
    MINUTES = "minutes"
    HOURS = "hours"
    DAYS = "days"

    @property
    def multiplier(self) -> int:
        return {"seconds": 1, "minutes": 60, "hours": 3600, "days": 86400}[self.value]

    @classmethod
    def split(cls, seconds: int) -> tuple[int, IntervalUnit]:
        """Largest unit that divides ``seconds`` exactly."""
        for unit in (cls.DAYS, cls.HOURS, cls.MINUTES):
            if seconds % unit.multiplier == 0:
                return seconds // unit.multiplier, unit
        return seconds, cls.SECONDS


def _is_interpreter(path: str, action_type: str) -> bool:
    name = PurePosixPath(path).name
    if action_type == "shell_script":
        return name in SHELL_NAMES
    return action_type == "apple_script" and name == "osascript"


@dataclass
class TaskDraft:
    name: str = ""
    description: str = ""
    backend: SchedulerBackend = SchedulerBackend.LAUNCHD
    action_type: str = "executable"
    executable_path: str = ""
    arguments: str = ""
    working_directory: str = ""
    script_content: str = ""
    trigger_type: str = "on_demand"
    schedule: CalendarSchedule = field(default_factory=lambda: CalendarSchedule(minute=0, hour=0))
    interval_value: int = 60
    interval_unit: IntervalUnit = IntervalUnit.MINUTES
    run_at_load: bool = False
    keep_alive: bool = False
    standard_out_path: str = ""
    standard_error_path: str = ""
    original: ScheduledTask | None = field(default=None, repr=False)

    @classmethod
    def from_task(cls, task: ScheduledTask) -> TaskDraft:
        action = task.action
        path, args = action.path, list(action.arguments)
        # A discovered "/bin/sh script.sh" keeps the interpreter in path
        if _is_interpreter(path, action.type):
            if action.script_content:
                path = ""
            elif args and not args[0].startswith("-"):
                path, args = args[0], args[1:]
            else:
                path = ""

        draft = cls(
            name=task.name,
            description=task.description,
            backend=task.backend,
            action_type=action.type,
            executable_path=path,
            arguments=" ".join(args),
            working_directory=action.working_directory or "",
            script_content=action.script_content or "",
            trigger_type=task.trigger.type,
            run_at_load=task.run_at_load,
            keep_alive=task.keep_alive,
            standard_out_path=task.standard_out_path or "",
            standard_error_path=task.standard_error_path or "",
            original=task,
        )
        if isinstance(task.trigger, CalendarTrigger):
            draft.schedule = task.trigger.schedule.model_copy()
        elif isinstance(task.trigger, IntervalTrigger):
            draft.interval_value, draft.interval_unit = IntervalUnit.split(task.trigger.seconds)
        return draft

    @property
    def is_editing(self) -> bool:
        return self.original is not None

    @property
    def title(self) -> str:
        return "Edit Task" if self.is_editing else "New Task"

    @property
    def interval_seconds(self) -> int:
        return self.interval_value * self.interval_unit.multiplier

    def validate(self) -> list[str]:
        errors: list[str] = []
        if not self.name.strip():
            errors.append("Task name is required")
        elif has_control_characters(self.name):
            errors.append("Task name cannot contain line breaks or control characters")

        if self.action_type == "executable":
            if not self.executable_path:
                errors.append("Executable path is required")
        elif self.action_type == "shell_script":
            if not self.executable_path and not self.script_content:
                errors.append("Script path or content is required")
        elif self.action_type == "apple_script":
            if not self.executable_path and not self.script_content:
                errors.append("AppleScript path or content is required")
        else:
            errors.append(f"Unknown action type '{self.action_type}'")

        trigger_cls = _TRIGGERS.get(self.trigger_type)
        if trigger_cls is None:
            errors.append(f"Unknown trigger type '{self.trigger_type}'")
        elif self.backend == SchedulerBackend.CRON and not trigger_cls.supports_cron:
            errors.append(f"'{self.trigger_type}' trigger is not supported by cron")

        if self.trigger_type == "interval" and self.interval_value <= 0:
            errors.append("Interval must be greater than 0")

        if self.backend not in (SchedulerBackend.LAUNCHD, SchedulerBackend.CRON):
            errors.append(f"Tasks cannot be edited for the {self.backend.value} backend")

        if self.backend == SchedulerBackend.CRON:
            if "\n" in self.script_content or "\r" in self.script_content:
                errors.append("Multi-line scripts cannot be scheduled with cron; save the script to a file")
            single_line = (
                self.executable_path, self.arguments, self.working_directory,
                self.standard_out_path, self.standard_error_path,
            )
            if any("\n" in value or "\r" in value for value in single_line):
                errors.append("Cron entries cannot contain line breaks")
        return errors

    def build_task(self) -> ScheduledTask:
        """New task from the draft. Call ``validate`` first."""
        action = _ACTIONS[self.action_type](
            path=self.executable_path,
            arguments=parse_command(self.arguments),
            working_directory=self.working_directory or None,
            environment_variables=dict(self.original.action.environment_variables) if self.original else {},
            script_content=self.script_content or None,
        )

        if self.trigger_type == "calendar":
            trigger = CalendarTrigger(schedule=self.schedule.model_copy())
        elif self.trigger_type == "interval":
            trigger = IntervalTrigger(seconds=self.interval_seconds)
        else:
            trigger = _TRIGGERS[self.trigger_type]()

        original = self.original
        return ScheduledTask(
            id=original.id if original else uuid.uuid4(),
            name=self.name.strip(),
            description=self.description,
            backend=self.backend,
            action=action,
            trigger=trigger,
            status=original.status.model_copy() if original else TaskStatus(state=TaskState.ENABLED),
            label=original.label if original else "",
            run_at_load=self.run_at_load,
            keep_alive=self.keep_alive,
            standard_out_path=self.standard_out_path or None,
            standard_error_path=self.standard_error_path or None,
            created_at=original.created_at if original else datetime.now(),
            modified_at=datetime.now(),
        )
