"""launchd backend: property-list descriptors loaded with launchctl."""

from __future__ import annotations

import os
import plistlib
import re
import tempfile
from pathlib import Path
from typing import Any

from taskbridge.backends.service import SchedulerError, SchedulerErrorKind, SchedulerService
from taskbridge.execution.process import Runner
from taskbridge.infrastructure.config import LABEL_PREFIX, LAUNCH_AGENTS_DIR, TimeoutConfig
from taskbridge.infrastructure.logger import backend_logger
from taskbridge.scheduling.types import (
    AtLoginTrigger,
    AtStartupTrigger,
    CalendarSchedule,
    CalendarTrigger,
    IntervalTrigger,
    OnDemandTrigger,
    ScheduledTask,
    SchedulerBackend,
    TaskExecutionResult,
    TaskState,
    TaskStatus,
    action_from_program_arguments,
)

log = backend_logger("launchd")

LAUNCHCTL = "launchctl"

# CalendarSchedule attribute -> StartCalendarInterval key
_CALENDAR_KEYS = {"minute": "Minute", "hour": "Hour", "day": "Day", "weekday": "Weekday", "month": "Month"}

_PID_RE = re.compile(r'"PID"\s*=\s*(\d+);')
_LABEL_SUFFIX_RE = re.compile(r"\.[0-9a-f]{8}$")


def label_for(task: ScheduledTask) -> str:
    """Job label, also the plist file name. The id suffix keeps same-named tasks apart."""
    if task.label:
        return task.label
    slug = re.sub(r"[^a-z0-9]+", "-", task.name.lower()).strip("-") or "task"
    return f"{LABEL_PREFIX}{slug}.{task.id.hex[:8]}"


def name_from_label(label: str) -> str:
    if not label.startswith(LABEL_PREFIX):
        return label
    return _LABEL_SUFFIX_RE.sub("", label[len(LABEL_PREFIX):])


def build_plist(task: ScheduledTask) -> dict[str, Any]:
    """launchd descriptor for ``task``."""
    action = task.action
    plist: dict[str, Any] = {
        "Label": label_for(task),
        "ProgramArguments": action.program_arguments(),
    }

    trigger = task.trigger
    if isinstance(trigger, CalendarTrigger):
        interval = {
            key: getattr(trigger.schedule, attr)
            for attr, key in _CALENDAR_KEYS.items()
            if getattr(trigger.schedule, attr) is not None
        }
        plist["StartCalendarInterval"] = interval
    elif isinstance(trigger, IntervalTrigger):
        plist["StartInterval"] = trigger.seconds

    if task.run_at_load or isinstance(trigger, (AtLoginTrigger, AtStartupTrigger)):
        plist["RunAtLoad"] = True
    if task.keep_alive:
        plist["KeepAlive"] = True
    if action.working_directory:
        plist["WorkingDirectory"] = action.working_directory
    if action.environment_variables:
        plist["EnvironmentVariables"] = dict(action.environment_variables)
    if task.standard_out_path:
        plist["StandardOutPath"] = task.standard_out_path
    if task.standard_error_path:
        plist["StandardErrorPath"] = task.standard_error_path
    return plist


def task_from_plist(plist: dict[str, Any], state: TaskState = TaskState.DISABLED) -> ScheduledTask:
    """Inverse of ``build_plist``. Raises ValueError for descriptors it cannot represent."""
    label = plist.get("Label")
    argv = plist.get("ProgramArguments") or ([plist["Program"]] if plist.get("Program") else [])
    if not label or not argv:
        raise ValueError("Descriptor has no Label or ProgramArguments")

    run_at_load = bool(plist.get("RunAtLoad", False))
    calendar = plist.get("StartCalendarInterval")
    if isinstance(calendar, list):
        # Several intervals cannot be expressed; keep the first
        calendar = calendar[0] if calendar else None

    if isinstance(calendar, dict):
        schedule = CalendarSchedule(**{attr: calendar.get(key) for attr, key in _CALENDAR_KEYS.items()})
        trigger: Any = CalendarTrigger(schedule=schedule)
    elif plist.get("StartInterval"):
        trigger = IntervalTrigger(seconds=int(plist["StartInterval"]))
    elif run_at_load:
        trigger = AtLoginTrigger()
        run_at_load = False
    else:
        trigger = OnDemandTrigger()

    action = action_from_program_arguments(list(argv), plist.get("WorkingDirectory"))
    env = plist.get("EnvironmentVariables")
    if env:
        action = action.model_copy(update={"environment_variables": dict(env)})

    return ScheduledTask(
        id=ScheduledTask.id_from_label(label),
        name=name_from_label(label),
        backend=SchedulerBackend.LAUNCHD,
        action=action,
        trigger=trigger,
        status=TaskStatus(state=state),
        label=label,
        run_at_load=run_at_load,
        keep_alive=bool(plist.get("KeepAlive", False)),
        standard_out_path=plist.get("StandardOutPath"),
        standard_error_path=plist.get("StandardErrorPath"),
    )


def write_plist_atomic(path: Path, plist: dict[str, Any]) -> None:
    """Write to a temp file in the same directory, then rename over ``path``."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as fh:
            plistlib.dump(plist, fh)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def parse_launchctl_list(output: str) -> dict[str, int | None]:
    """``launchctl list`` table -> {label: pid or None}."""
    loaded: dict[str, int | None] = {}
    for line in output.splitlines()[1:]:
        parts = line.split("\t")
        if len(parts) != 3:
            continue
        pid, _status, label = parts
        loaded[label.strip()] = int(pid) if pid.strip().isdigit() else None
    return loaded


class LaunchdService(SchedulerService):
    backend = SchedulerBackend.LAUNCHD

    def __init__(
        self,
        runner: Runner | None = None,
        timeouts: TimeoutConfig | None = None,
        agents_dir: Path | None = None,
    ) -> None:
        super().__init__(runner, timeouts)
        self._agents_dir = agents_dir or LAUNCH_AGENTS_DIR

    def plist_path(self, task: ScheduledTask) -> Path:
        return self._agents_dir / f"{label_for(task)}.plist"

    async def install(self, task: ScheduledTask) -> None:
        path = self.plist_path(task)
        try:
            write_plist_atomic(path, build_plist(task))
        except OSError as err:
            raise SchedulerError(SchedulerErrorKind.ARTIFACT_CREATION_FAILED, f"{path}: {err}") from err
        except (TypeError, OverflowError) as err:
            raise SchedulerError(SchedulerErrorKind.INVALID_TASK, str(err)) from err
        log.info("Installed launchd descriptor", task_id=str(task.id), path=str(path))

    async def uninstall(self, task: ScheduledTask) -> None:
        path = self.plist_path(task)
        if not path.exists():
            return
        await self._exec([LAUNCHCTL, "unload", "-w", str(path)], check=False)
        try:
            path.unlink(missing_ok=True)
        except OSError as err:
            raise SchedulerError.from_os_error(err, f"removing {path}") from err
        log.info("Uninstalled launchd descriptor", task_id=str(task.id), path=str(path))

    async def enable(self, task: ScheduledTask) -> None:
        path = self.plist_path(task)
        if not path.exists():
            raise SchedulerError(SchedulerErrorKind.TASK_NOT_FOUND, str(path))
        await self._exec([LAUNCHCTL, "load", "-w", str(path)], failure=SchedulerErrorKind.LOAD_FAILED)
        log.info("Loaded task", task_id=str(task.id), label=label_for(task))

    async def disable(self, task: ScheduledTask) -> None:
        path = self.plist_path(task)
        if not path.exists():
            raise SchedulerError(SchedulerErrorKind.TASK_NOT_FOUND, str(path))
        await self._exec([LAUNCHCTL, "unload", "-w", str(path)], failure=SchedulerErrorKind.UNLOAD_FAILED)
        log.info("Unloaded task", task_id=str(task.id), label=label_for(task))

    async def run_now(self, task: ScheduledTask) -> TaskExecutionResult:
        log.info("Running task now", task_id=str(task.id))
        return await self._run_program(task, task.action.program_arguments())

    async def is_installed(self, task: ScheduledTask) -> bool:
        return self.plist_path(task).exists()

    async def is_running(self, task: ScheduledTask) -> bool:
        result = await self._exec([LAUNCHCTL, "list", label_for(task)], check=False)
        return result.ok and _PID_RE.search(result.stdout) is not None

    async def discover_tasks(self) -> list[ScheduledTask]:
        if not self._agents_dir.is_dir():
            return []
        listing = await self._exec([LAUNCHCTL, "list"], check=False)
        loaded = parse_launchctl_list(listing.stdout) if listing.ok else {}

        tasks: list[ScheduledTask] = []
        for path in sorted(self._agents_dir.glob(f"{LABEL_PREFIX}*.plist")):
            try:
                with path.open("rb") as fh:
                    plist = plistlib.load(fh)
                label = plist.get("Label", "")
                if label not in loaded:
                    state = TaskState.DISABLED
                elif loaded[label] is not None:
                    state = TaskState.RUNNING
                else:
                    state = TaskState.ENABLED
                tasks.append(task_from_plist(plist, state))
            except (OSError, plistlib.InvalidFileException, ValueError) as err:
                log.warning("Skipping unreadable descriptor", path=str(path), error=str(err))
        log.info("Discovered launchd tasks", count=len(tasks))
        return tasks
