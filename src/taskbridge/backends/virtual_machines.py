"""Hypervisor backends. Discover-only: VMs are listed, started and stopped, never created."""

from __future__ import annotations

import json
import re
from abc import abstractmethod
from datetime import datetime
from pathlib import PurePosixPath

from taskbridge.backends.service import SchedulerError, SchedulerErrorKind, SchedulerService
from taskbridge.containers.types import VMInfo
from taskbridge.infrastructure.logger import backend_logger
from taskbridge.scheduling.types import (
    ExecutableAction,
    ScheduledTask,
    SchedulerBackend,
    TaskExecutionResult,
    TaskState,
    TaskStatus,
)

log = backend_logger("vm")

_VBOX_LINE_RE = re.compile(r'^"(?P<name>.*)"\s+\{(?P<uuid>[0-9a-fA-F-]+)\}$')


class VirtualMachineService(SchedulerService):
    tool: str
    product: str

    @abstractmethod
    async def list_vms(self) -> list[VMInfo]: ...

    @abstractmethod
    def start_argv(self, vm_id: str) -> list[str]: ...

    @abstractmethod
    def stop_argv(self, vm_id: str) -> list[str]: ...

    def task_for_vm(self, vm: VMInfo) -> ScheduledTask:
        label = f"{self.backend.value}.{vm.vm_id}"
        argv = self.start_argv(vm.vm_id)
        return ScheduledTask(
            id=ScheduledTask.id_from_label(label),
            name=vm.vm_name,
            description=f"{self.product} virtual machine",
            backend=self.backend,
            action=ExecutableAction(path=argv[0], arguments=argv[1:]),
            status=TaskStatus(state=TaskState.RUNNING if vm.is_running else TaskState.DISABLED),
            label=label,
            is_read_only=True,
            vm_info=vm,
        )

    def _vm_id(self, task: ScheduledTask) -> str:
        if task.vm_info is None:
            raise SchedulerError(SchedulerErrorKind.INVALID_TASK, f"{task.name}: no virtual machine attached")
        return task.vm_info.vm_id

    async def _find(self, task: ScheduledTask) -> VMInfo | None:
        vm_id = self._vm_id(task)
        return next((vm for vm in await self.list_vms() if vm.vm_id == vm_id), None)

    # --- Contract ---

    async def install(self, task: ScheduledTask) -> None:
        raise SchedulerError(SchedulerErrorKind.NOT_SUPPORTED, f"{self.product} machines cannot be created here")

    async def uninstall(self, task: ScheduledTask) -> None:
        raise SchedulerError(SchedulerErrorKind.NOT_SUPPORTED, f"{self.product} machines cannot be removed here")

    async def enable(self, task: ScheduledTask) -> None:
        await self._exec(self.start_argv(self._vm_id(task)), failure=SchedulerErrorKind.LOAD_FAILED)
        log.info("Started virtual machine", backend=self.backend.value, vm=task.name)

    async def disable(self, task: ScheduledTask) -> None:
        await self._exec(self.stop_argv(self._vm_id(task)), failure=SchedulerErrorKind.UNLOAD_FAILED)
        log.info("Stopped virtual machine", backend=self.backend.value, vm=task.name)

    async def run_now(self, task: ScheduledTask) -> TaskExecutionResult:
        start = datetime.now()
        result = await self._exec(self.start_argv(self._vm_id(task)), check=False)
        return TaskExecutionResult(
            task_id=task.id,
            start_time=start,
            end_time=datetime.now(),
            exit_code=result.returncode,
            standard_output=result.stdout,
            standard_error=result.stderr,
        )

    async def is_installed(self, task: ScheduledTask) -> bool:
        return await self._find(task) is not None

    async def is_running(self, task: ScheduledTask) -> bool:
        vm = await self._find(task)
        return vm is not None and vm.is_running

    async def discover_tasks(self) -> list[ScheduledTask]:
        tasks = [self.task_for_vm(vm) for vm in await self.list_vms()]
        log.info("Discovered virtual machines", backend=self.backend.value, count=len(tasks))
        return tasks


class ParallelsService(VirtualMachineService):
    backend = SchedulerBackend.PARALLELS
    tool = "prlctl"
    product = "Parallels Desktop"

    async def list_vms(self) -> list[VMInfo]:
        result = await self._exec([self.tool, "list", "-a", "--json"])
        try:
            entries = json.loads(result.stdout or "[]")
        except ValueError as err:
            raise SchedulerError(
                SchedulerErrorKind.COMMAND_EXECUTION_FAILED, f"prlctl list: unreadable output ({err})"
            ) from err
        return [
            VMInfo(vm_id=entry["uuid"].strip("{}"), vm_name=entry.get("name", ""), vm_state=entry.get("status", ""))
            for entry in entries
            if entry.get("uuid")
        ]

    def start_argv(self, vm_id: str) -> list[str]:
        return [self.tool, "start", vm_id]

    def stop_argv(self, vm_id: str) -> list[str]:
        return [self.tool, "stop", vm_id]


def parse_vboxmanage_list(output: str) -> dict[str, str]:
    """``VBoxManage list vms`` -> {uuid: name}."""
    machines: dict[str, str] = {}
    for line in output.splitlines():
        match = _VBOX_LINE_RE.match(line.strip())
        if match:
            machines[match["uuid"]] = match["name"]
    return machines


class VirtualBoxService(VirtualMachineService):
    backend = SchedulerBackend.VIRTUALBOX
    tool = "VBoxManage"
    product = "VirtualBox"

    async def list_vms(self) -> list[VMInfo]:
        everything = parse_vboxmanage_list((await self._exec([self.tool, "list", "vms"])).stdout)
        running = parse_vboxmanage_list((await self._exec([self.tool, "list", "runningvms"])).stdout)
        return [
            VMInfo(vm_id=vm_id, vm_name=name, vm_state="running" if vm_id in running else "stopped")
            for vm_id, name in everything.items()
        ]

    def start_argv(self, vm_id: str) -> list[str]:
        return [self.tool, "startvm", vm_id, "--type", "headless"]

    def stop_argv(self, vm_id: str) -> list[str]:
        return [self.tool, "controlvm", vm_id, "acpipowerbutton"]


def parse_utmctl_list(output: str) -> list[VMInfo]:
    """``utmctl list`` table: UUID, status, then the name (which may contain spaces)."""
    vms: list[VMInfo] = []
    for line in output.splitlines()[1:]:
        parts = line.split(None, 2)
        if len(parts) != 3:
            continue
        vm_id, state, name = parts
        vms.append(VMInfo(vm_id=vm_id, vm_name=name.strip(), vm_state=state.lower()))
    return vms


class UTMService(VirtualMachineService):
    backend = SchedulerBackend.UTM
    tool = "utmctl"
    product = "UTM"

    async def list_vms(self) -> list[VMInfo]:
        return parse_utmctl_list((await self._exec([self.tool, "list"])).stdout)

    def start_argv(self, vm_id: str) -> list[str]:
        return [self.tool, "start", vm_id]

    def stop_argv(self, vm_id: str) -> list[str]:
        return [self.tool, "stop", vm_id]


class VMwareFusionService(VirtualMachineService):
    """vmrun only reports running machines; stopped ones are not discovered."""

    backend = SchedulerBackend.VMWARE_FUSION
    tool = "vmrun"
    product = "VMware Fusion"

    async def list_vms(self) -> list[VMInfo]:
        lines = (await self._exec([self.tool, "list"])).stdout.splitlines()
        return [
            VMInfo(vm_id=path, vm_name=PurePosixPath(path).stem, vm_state="running")
            for path in (line.strip() for line in lines[1:])
            if path
        ]

    def start_argv(self, vm_id: str) -> list[str]:
        return [self.tool, "start", vm_id, "nogui"]

    def stop_argv(self, vm_id: str) -> list[str]:
        return [self.tool, "stop", vm_id, "soft"]
