"""Backend selection: a fresh adapter per call, no shared registry."""

from __future__ import annotations

from taskbridge.backends.cron_table import CronService
from taskbridge.backends.docker import DockerService
from taskbridge.backends.launchd import LaunchdService
from taskbridge.backends.service import SchedulerService
from taskbridge.backends.virtual_machines import (
    ParallelsService,
    UTMService,
    VirtualBoxService,
    VMwareFusionService,
)
from taskbridge.execution.process import Runner
from taskbridge.infrastructure.config import TimeoutConfig
from taskbridge.scheduling.types import SchedulerBackend

_SERVICES: dict[SchedulerBackend, type[SchedulerService]] = {
    SchedulerBackend.LAUNCHD: LaunchdService,
    SchedulerBackend.CRON: CronService,
    SchedulerBackend.DOCKER: DockerService,
    SchedulerBackend.PARALLELS: ParallelsService,
    SchedulerBackend.VIRTUALBOX: VirtualBoxService,
    SchedulerBackend.UTM: UTMService,
    SchedulerBackend.VMWARE_FUSION: VMwareFusionService,
}


def service_for(
    backend: SchedulerBackend,
    runner: Runner | None = None,
    timeouts: TimeoutConfig | None = None,
) -> SchedulerService:
    return _SERVICES[backend](runner, timeouts)
