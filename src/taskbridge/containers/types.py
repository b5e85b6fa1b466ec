"""Container and virtual machine metadata types."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class RestartPolicy(str, Enum):
    NO = "no"
    ALWAYS = "always"
    UNLESS_STOPPED = "unless-stopped"
    ON_FAILURE = "on-failure"

    @property
    def display_name(self) -> str:
        return self.value.replace("-", " ").title()

    @property
    def starts_at_boot(self) -> bool:
        return self in (RestartPolicy.ALWAYS, RestartPolicy.UNLESS_STOPPED)

    @classmethod
    def parse(cls, value: str | None) -> RestartPolicy:
        """Lenient lookup: unknown or empty policy names map to ``no``."""
        try:
            return cls(value or "no")
        except ValueError:
            return cls.NO


class ContainerRuntime(str, Enum):
    DOCKER_DESKTOP = "Docker Desktop"
    ORBSTACK = "OrbStack"
    COLIMA = "Colima"
    RANCHER = "Rancher Desktop"
    UNKNOWN = "Docker"


class ContainerLaunchOrigin(str, Enum):
    COMPOSE = "Docker Compose"
    BOOT = "Boot Container"
    MANUAL = "Manual"
    DOCKERFILE = "Dockerfile"
    COMMAND = "Command"


class ContainerInfo(BaseModel):
    # Configuration
    image_name: str
    container_name: str = ""
    restart_policy: RestartPolicy = RestartPolicy.NO
    ports: list[str] = Field(default_factory=list)  # canonical "host:container/proto"
    volumes: list[str] = Field(default_factory=list)  # "host:container[:mode]"
    environment_variables: dict[str, str] = Field(default_factory=dict)
    command: list[str] = Field(default_factory=list)
    entrypoint: list[str] | None = None
    network_mode: str | None = None
    compose_project: str | None = None
    compose_service: str | None = None

    # Read-only, filled in by discovery
    container_id: str = ""  # short 12-char id
    full_id: str = ""
    container_status: str = ""  # raw runtime status, e.g. "running"
    created_at: datetime | None = None
    launch_origin: ContainerLaunchOrigin = ContainerLaunchOrigin.COMMAND
    runtime: ContainerRuntime = ContainerRuntime.UNKNOWN

    @property
    def is_compose_managed(self) -> bool:
        return self.compose_project is not None


class VMInfo(BaseModel):
    vm_id: str
    vm_name: str
    vm_state: str  # "running", "stopped", "paused", "suspended", ...
    os_type: str | None = None
    cpu_count: int | None = None
    memory_mb: int | None = None

    @property
    def is_running(self) -> bool:
        return self.vm_state.lower() in ("running", "started")
