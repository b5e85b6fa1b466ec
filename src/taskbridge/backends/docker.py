"""Docker backend — one container per task, driven through the docker CLI."""

from __future__ import annotations

import json
import uuid
from datetime import datetime
from typing import Any

from taskbridge.backends.service import SchedulerError, SchedulerErrorKind, SchedulerService
from taskbridge.containers.editor import task_for_container
from taskbridge.containers.recreation import needs_recreation
from taskbridge.containers.translator import (
    TASK_ID_LABEL,
    build_run_arguments,
    container_info_from_inspect,
)
from taskbridge.containers.types import ContainerInfo, ContainerRuntime
from taskbridge.execution.container_runtime import ContainerCli, DockerCli
from taskbridge.execution.process import Runner
from taskbridge.infrastructure.config import TimeoutConfig
from taskbridge.infrastructure.logger import backend_logger
from taskbridge.scheduling.types import ScheduledTask, SchedulerBackend, TaskExecutionResult

log = backend_logger("docker")


def default_container_name(task: ScheduledTask) -> str:
    return f"taskbridge-{task.id.hex[:12]}"


def _container_info(task: ScheduledTask) -> ContainerInfo:
    if task.container_info is None:
        raise SchedulerError(SchedulerErrorKind.INVALID_TASK, f"{task.name}: no container configuration")
    return task.container_info


class DockerService(SchedulerService):
    backend = SchedulerBackend.DOCKER

    def __init__(
        self,
        runner: Runner | None = None,
        timeouts: TimeoutConfig | None = None,
        cli: ContainerCli | None = None,
    ) -> None:
        super().__init__(runner, timeouts)
        self._cli: ContainerCli = cli or DockerCli()

    def _docker(self, *args: str) -> list[str]:
        return [self._cli.bin, *args]

    async def _locate(self, task: ScheduledTask) -> str | None:
        """Container id for ``task``: by ownership label, then discovered id, then name."""
        result = await self._exec(
            self._docker("ps", "-a", "-q", "--no-trunc", "--filter", f"label={TASK_ID_LABEL}={task.id}")
        )
        ids = result.stdout.split()
        if ids:
            return ids[0]

        info = task.container_info
        refs = [info.full_id, info.container_name] if info else []
        for ref in refs:
            if not ref:
                continue
            probe = await self._exec(self._docker("inspect", "--format", "{{.Id}}", ref), check=False)
            if probe.ok and probe.stdout.strip():
                return probe.stdout.strip()
        return None

    async def _require(self, task: ScheduledTask) -> str:
        container_id = await self._locate(task)
        if container_id is None:
            raise SchedulerError(SchedulerErrorKind.TASK_NOT_FOUND, f"no container for task {task.id}")
        return container_id

    async def _inspect(self, refs: list[str]) -> list[dict[str, Any]]:
        result = await self._exec(self._docker("inspect", *refs))
        try:
            data = json.loads(result.stdout or "[]")
        except ValueError as err:
            raise SchedulerError(
                SchedulerErrorKind.COMMAND_EXECUTION_FAILED, f"docker inspect: unreadable output ({err})"
            ) from err
        return data if isinstance(data, list) else []

    async def _runtime(self) -> ContainerRuntime:
        result = await self._exec(self._docker("context", "show"), check=False)
        if not result.ok:
            return ContainerRuntime.UNKNOWN
        return self._cli.runtime_for_context(result.stdout)

    # --- Contract ---

    async def install(self, task: ScheduledTask) -> None:
        info = _container_info(task)
        if not info.container_name:
            info = info.model_copy(update={"container_name": default_container_name(task)})
        args = build_run_arguments(info, labels={TASK_ID_LABEL: str(task.id)})
        result = await self._exec(
            self._docker("create", *args), failure=SchedulerErrorKind.ARTIFACT_CREATION_FAILED
        )
        log.info(
            "Created container",
            task_id=str(task.id),
            container=info.container_name,
            container_id=result.stdout.strip()[:12],
        )

    async def uninstall(self, task: ScheduledTask) -> None:
        container_id = await self._locate(task)
        if container_id is None:
            return
        await self._exec(self._docker("rm", "-f", container_id), failure=SchedulerErrorKind.UNLOAD_FAILED)
        log.info("Removed container", task_id=str(task.id), container_id=container_id[:12])

    async def enable(self, task: ScheduledTask) -> None:
        container_id = await self._require(task)
        await self._exec(self._docker("start", container_id), failure=SchedulerErrorKind.LOAD_FAILED)
        log.info("Started container", task_id=str(task.id), container_id=container_id[:12])

    async def disable(self, task: ScheduledTask) -> None:
        container_id = await self._require(task)
        await self._exec(self._docker("stop", container_id), failure=SchedulerErrorKind.UNLOAD_FAILED)
        log.info("Stopped container", task_id=str(task.id), container_id=container_id[:12])

    async def run_now(self, task: ScheduledTask) -> TaskExecutionResult:
        container_id = await self._require(task)
        log.info("Running container now", task_id=str(task.id), container_id=container_id[:12])
        start = datetime.now()
        result = await self._exec(
            self._docker("start", "-a", container_id),
            timeout=self._timeouts.for_run_now(),
            check=False,
        )
        return TaskExecutionResult(
            task_id=task.id,
            start_time=start,
            end_time=datetime.now(),
            exit_code=result.returncode,
            standard_output=result.stdout,
            standard_error=result.stderr,
        )

    async def is_installed(self, task: ScheduledTask) -> bool:
        return await self._locate(task) is not None

    async def is_running(self, task: ScheduledTask) -> bool:
        container_id = await self._locate(task)
        if container_id is None:
            return False
        result = await self._exec(
            self._docker("inspect", "--format", "{{.State.Running}}", container_id), check=False
        )
        return result.ok and result.stdout.strip() == "true"

    async def discover_tasks(self) -> list[ScheduledTask]:
        listing = await self._exec(self._docker("ps", "-a", "-q", "--no-trunc"))
        ids = listing.stdout.split()
        if not ids:
            return []

        runtime = await self._runtime()
        tasks: list[ScheduledTask] = []
        for data in await self._inspect(ids):
            info = container_info_from_inspect(data, runtime)
            labels = (data.get("Config") or {}).get("Labels") or {}
            task_id = None
            if labels.get(TASK_ID_LABEL):
                try:
                    task_id = uuid.UUID(labels[TASK_ID_LABEL])
                except ValueError:
                    log.warning("Ignoring malformed task label", container_id=info.container_id)
            tasks.append(task_for_container(info, task_id=task_id))
        log.info("Discovered containers", count=len(tasks), runtime=runtime.value)
        return tasks

    async def update(self, task: ScheduledTask, previous: ScheduledTask | None = None) -> None:
        """Apply in place when only the restart policy changed, else destroy and recreate."""
        new_info = _container_info(task)
        old_info = previous.container_info if previous else None
        if old_info is None or needs_recreation(old_info, new_info):
            log.info("Recreating container", task_id=str(task.id))
            await super().update(task, previous)
            return

        if old_info.restart_policy != new_info.restart_policy:
            container_id = await self._require(task)
            await self._exec(
                self._docker("update", "--restart", new_info.restart_policy.value, container_id),
                failure=SchedulerErrorKind.COMMAND_EXECUTION_FAILED,
            )
            log.info(
                "Updated restart policy",
                task_id=str(task.id),
                restart_policy=new_info.restart_policy.value,
            )
