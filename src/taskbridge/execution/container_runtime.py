"""Docker-compatible CLI protocol and the docker implementation."""

from __future__ import annotations

import shutil
from typing import Protocol

from taskbridge.containers.types import ContainerRuntime

# `docker context show` names used by the common desktop runtimes
_CONTEXT_FLAVOURS = {
    "desktop-linux": ContainerRuntime.DOCKER_DESKTOP,
    "orbstack": ContainerRuntime.ORBSTACK,
    "colima": ContainerRuntime.COLIMA,
    "rancher-desktop": ContainerRuntime.RANCHER,
}


class ContainerCli(Protocol):
    """Interface for docker-compatible command line tools."""

    @property
    def bin(self) -> str:
        """Path to the CLI binary (e.g. 'docker')."""
        ...

    def runtime_for_context(self, context: str) -> ContainerRuntime:
        """Which desktop runtime a CLI context name belongs to."""
        ...


class DockerCli:
    """Docker CLI."""

    def __init__(self, bin: str | None = None) -> None:
        self._bin = bin or shutil.which("docker") or "docker"

    @property
    def bin(self) -> str:
        return self._bin

    def runtime_for_context(self, context: str) -> ContainerRuntime:
        name = context.strip().lower()
        for prefix, runtime in _CONTEXT_FLAVOURS.items():
            if name.startswith(prefix):
                return runtime
        return ContainerRuntime.UNKNOWN
