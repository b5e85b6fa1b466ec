"""Cron backend: entries in the user's crontab, each preceded by an ownership marker.

Table layout for one task::

    # taskbridge:<task-id> <task name>
    30 9 * * * cd /work && /usr/bin/backup --fast >> /tmp/out.log

A disabled entry keeps its line, commented out with ``#disabled# ``.
"""

from __future__ import annotations

import re
import shlex
import uuid
from dataclasses import dataclass, field
from typing import Any

from taskbridge.backends.service import SchedulerError, SchedulerErrorKind, SchedulerService
from taskbridge.infrastructure.config import CRON_DISABLED_PREFIX, CRON_MARKER
from taskbridge.infrastructure.logger import backend_logger
from taskbridge.scheduling import cron
from taskbridge.scheduling.types import (
    AtStartupTrigger,
    CalendarTrigger,
    ScheduledTask,
    SchedulerBackend,
    TaskExecutionResult,
    TaskState,
    TaskStatus,
    action_from_program_arguments,
    has_control_characters,
)

log = backend_logger("cron")

CRONTAB = "crontab"
REBOOT = "@reboot"

MACROS = {
    "@yearly": "0 0 1 1 *",
    "@annually": "0 0 1 1 *",
    "@monthly": "0 0 1 * *",
    "@weekly": "0 0 * * 0",
    "@daily": "0 0 * * *",
    "@midnight": "0 0 * * *",
    "@hourly": "0 * * * *",
}

_ASSIGNMENT_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*=")


def schedule_field(task: ScheduledTask) -> str:
    trigger = task.trigger
    if isinstance(trigger, CalendarTrigger):
        return cron.from_calendar_schedule(trigger.schedule).expression
    if isinstance(trigger, AtStartupTrigger):
        return REBOOT
    raise SchedulerError(
        SchedulerErrorKind.INVALID_TASK,
        f"'{trigger.type}' trigger is not supported by cron",
    )


def build_command(task: ScheduledTask) -> str:
    """Shell command for the entry. ``%`` is escaped because cron treats it as a newline.

    A crontab entry ends at the first line break, so commands spanning
    several lines (inline multi-line scripts, paths with newlines) are refused.
    """
    action = task.action
    parts: list[str] = []
    if action.working_directory:
        parts.extend(["cd", shlex.quote(action.working_directory), "&&"])
    for key, value in action.environment_variables.items():
        parts.append(f"{key}={shlex.quote(value)}")
    parts.append(shlex.join(action.program_arguments()))
    if task.standard_out_path:
        parts.extend([">>", shlex.quote(task.standard_out_path)])
    if task.standard_error_path:
        parts.extend(["2>>", shlex.quote(task.standard_error_path)])
    command = " ".join(parts)
    if "\n" in command or "\r" in command:
        raise SchedulerError(
            SchedulerErrorKind.INVALID_TASK,
            "cron entries must fit on one line; save multi-line scripts to a file",
        )
    return command.replace("%", "\\%")


def build_entry(task: ScheduledTask, enabled: bool) -> list[str]:
    if has_control_characters(task.name):
        raise SchedulerError(
            SchedulerErrorKind.INVALID_TASK,
            "task name cannot contain line breaks or control characters",
        )
    marker = f"{CRON_MARKER}{task.id} {task.name}".rstrip()
    line = f"{schedule_field(task)} {build_command(task)}"
    return [marker, line if enabled else f"{CRON_DISABLED_PREFIX}{line}"]


@dataclass
class ParsedCommand:
    argv: list[str]
    working_directory: str | None = None
    environment: dict[str, str] = field(default_factory=dict)
    stdout_path: str | None = None
    stderr_path: str | None = None


def parse_command(command: str) -> ParsedCommand:
    """Inverse of ``build_command``."""
    tokens = shlex.split(command.replace("\\%", "%"))
    parsed = ParsedCommand(argv=[])

    if len(tokens) >= 3 and tokens[0] == "cd" and tokens[2] == "&&":
        parsed.working_directory = tokens[1]
        tokens = tokens[3:]

    while tokens and _ASSIGNMENT_RE.match(tokens[0]):
        key, _, value = tokens.pop(0).partition("=")
        parsed.environment[key] = value

    while len(tokens) >= 2 and tokens[-2] in (">>", "2>>"):
        target = tokens[-1]
        if tokens[-2] == ">>":
            parsed.stdout_path = target
        else:
            parsed.stderr_path = target
        tokens = tokens[:-2]

    parsed.argv = tokens
    return parsed


def split_schedule(line: str) -> tuple[str, str] | None:
    """Split an entry into (schedule, command)."""
    stripped = line.strip()
    if stripped.startswith("@"):
        macro, _, command = stripped.partition(" ")
        return macro, command.strip()
    fields = stripped.split(None, 5)
    if len(fields) < 6:
        return None
    return " ".join(fields[:5]), fields[5]


def task_from_entry(marker: str, line: str) -> ScheduledTask | None:
    """Rebuild a task from its marker and entry line. Unrecognised entries yield None."""
    header = marker[len(CRON_MARKER):]
    task_id_text, _, name = header.partition(" ")
    try:
        task_id = uuid.UUID(task_id_text)
    except ValueError:
        return None

    enabled = not line.startswith(CRON_DISABLED_PREFIX)
    body = line[len(CRON_DISABLED_PREFIX):] if not enabled else line
    split = split_schedule(body)
    if split is None:
        return None
    schedule, command = split

    try:
        parsed = parse_command(command)
    except ValueError:
        return None
    if not parsed.argv:
        return None

    read_only = False
    trigger: Any
    if schedule == REBOOT:
        trigger = AtStartupTrigger()
    else:
        expression = cron.parse(MACROS.get(schedule, schedule))
        if expression is None or cron.validate(expression.expression):
            return None
        calendar = cron.to_calendar_schedule(expression)
        # Ranges, steps and lists do not survive the calendar model
        read_only = cron.from_calendar_schedule(calendar) != expression
        trigger = CalendarTrigger(schedule=calendar)

    action = action_from_program_arguments(parsed.argv, parsed.working_directory)
    if parsed.environment:
        action = action.model_copy(update={"environment_variables": parsed.environment})

    return ScheduledTask(
        id=task_id,
        name=name or action.display_name,
        backend=SchedulerBackend.CRON,
        action=action,
        trigger=trigger,
        status=TaskStatus(state=TaskState.ENABLED if enabled else TaskState.DISABLED),
        is_read_only=read_only,
        standard_out_path=parsed.stdout_path,
        standard_error_path=parsed.stderr_path,
    )


def _find_marker(lines: list[str], task_id: uuid.UUID) -> int | None:
    prefix = f"{CRON_MARKER}{task_id}"
    for idx, line in enumerate(lines):
        if line == prefix or line.startswith(prefix + " "):
            return idx
    return None


def remove_entry(lines: list[str], task_id: uuid.UUID) -> list[str]:
    idx = _find_marker(lines, task_id)
    if idx is None:
        return list(lines)
    return lines[:idx] + lines[idx + 2 :]


class CronService(SchedulerService):
    backend = SchedulerBackend.CRON

    # --- Table I/O ---

    async def read_table(self) -> str:
        result = await self._exec([CRONTAB, "-l"], check=False)
        if result.ok:
            return result.stdout
        if "no crontab" in result.stderr.lower():
            return ""
        raise SchedulerError(SchedulerErrorKind.COMMAND_EXECUTION_FAILED, f"crontab -l: {result.output}")

    async def write_table(self, lines: list[str], snapshot: str) -> None:
        """Replace the whole table, provided nobody changed it since ``snapshot`` was read."""
        current = await self.read_table()
        if current != snapshot:
            raise SchedulerError(
                SchedulerErrorKind.ARTIFACT_CREATION_FAILED,
                "crontab was modified concurrently; reload and retry",
            )
        content = "\n".join(lines).strip("\n")
        content = f"{content}\n" if content else ""
        await self._exec(
            [CRONTAB, "-"], failure=SchedulerErrorKind.ARTIFACT_CREATION_FAILED, input_text=content
        )

    async def _set_enabled(self, task: ScheduledTask, enabled: bool) -> None:
        snapshot = await self.read_table()
        lines = snapshot.splitlines()
        idx = _find_marker(lines, task.id)
        if idx is None or idx + 1 >= len(lines):
            raise SchedulerError(SchedulerErrorKind.TASK_NOT_FOUND, str(task.id))
        line = lines[idx + 1]
        is_enabled = not line.startswith(CRON_DISABLED_PREFIX)
        if is_enabled == enabled:
            return
        lines[idx + 1] = line[len(CRON_DISABLED_PREFIX):] if enabled else f"{CRON_DISABLED_PREFIX}{line}"
        await self.write_table(lines, snapshot)

    # --- Contract ---

    async def install(self, task: ScheduledTask) -> None:
        entry = build_entry(task, enabled=task.is_enabled)
        snapshot = await self.read_table()
        lines = remove_entry(snapshot.splitlines(), task.id) + entry
        await self.write_table(lines, snapshot)
        log.info("Installed cron entry", task_id=str(task.id), schedule=entry[1].split(" ", 1)[0])

    async def uninstall(self, task: ScheduledTask) -> None:
        snapshot = await self.read_table()
        lines = snapshot.splitlines()
        if _find_marker(lines, task.id) is None:
            return
        await self.write_table(remove_entry(lines, task.id), snapshot)
        log.info("Removed cron entry", task_id=str(task.id))

    async def enable(self, task: ScheduledTask) -> None:
        await self._set_enabled(task, True)
        log.info("Enabled cron entry", task_id=str(task.id))

    async def disable(self, task: ScheduledTask) -> None:
        await self._set_enabled(task, False)
        log.info("Disabled cron entry", task_id=str(task.id))

    async def run_now(self, task: ScheduledTask) -> TaskExecutionResult:
        log.info("Running task now", task_id=str(task.id))
        return await self._run_program(task, task.action.program_arguments())

    async def is_installed(self, task: ScheduledTask) -> bool:
        return _find_marker((await self.read_table()).splitlines(), task.id) is not None

    async def is_running(self, task: ScheduledTask) -> bool:
        # cron keeps no record of running jobs
        return False

    async def discover_tasks(self) -> list[ScheduledTask]:
        lines = (await self.read_table()).splitlines()
        tasks: list[ScheduledTask] = []
        for idx, line in enumerate(lines):
            if not line.startswith(CRON_MARKER) or idx + 1 >= len(lines):
                continue
            task = task_from_entry(line, lines[idx + 1])
            if task is None:
                log.warning("Skipping unrecognised cron entry", line=lines[idx + 1])
                continue
            tasks.append(task)
        log.info("Discovered cron tasks", count=len(tasks))
        return tasks
