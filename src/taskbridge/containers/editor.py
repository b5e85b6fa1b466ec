"""Container edit state: load from a task, validate strictly, build a new task."""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from taskbridge.containers.env_import import import_env_file, import_env_text, is_dangerous_env_var
from taskbridge.containers.recreation import needs_recreation
from taskbridge.containers.translator import (
    PortMapping,
    VolumeMount,
    format_port_mappings,
    parse_command,
    parse_port_mapping,
    parse_volume,
)
from taskbridge.containers.types import ContainerInfo, RestartPolicy
from taskbridge.scheduling.types import (
    AtStartupTrigger,
    OnDemandTrigger,
    ScheduledTask,
    SchedulerBackend,
    ShellScriptAction,
    TaskState,
    TaskStatus,
)

IMAGE_NAME_RE = re.compile(r"[A-Za-z0-9][A-Za-z0-9._/:@-]*")
CONTAINER_NAME_RE = re.compile(r"[A-Za-z0-9][A-Za-z0-9_.-]*")


def is_valid_image_name(name: str) -> bool:
    return IMAGE_NAME_RE.fullmatch(name) is not None


def is_valid_container_name(name: str) -> bool:
    return CONTAINER_NAME_RE.fullmatch(name) is not None


def is_valid_port(port: int) -> bool:
    return 1 <= port <= 65535


def docker_label(container_name: str, image_name: str) -> str:
    if container_name:
        return f"docker.{container_name}"
    return f"docker.{image_name.replace('/', '-').replace(':', '-')}"


def container_state(info: ContainerInfo) -> TaskState:
    """Task state for a container's runtime status."""
    status = info.container_status.lower()
    if status in ("running", "restarting"):
        return TaskState.RUNNING
    if status == "dead":
        return TaskState.ERROR
    if info.restart_policy.starts_at_boot:
        return TaskState.ENABLED
    return TaskState.DISABLED


def task_for_container(
    info: ContainerInfo,
    task_id: uuid.UUID | None = None,
    original: ScheduledTask | None = None,
) -> ScheduledTask:
    """Wrap a container spec in a docker-backend task.

    Containers that restart on their own are shown as starting at boot,
    everything else runs on demand.
    """
    label = docker_label(info.container_name, info.image_name)
    trigger = AtStartupTrigger() if info.restart_policy.starts_at_boot else OnDemandTrigger()
    now = datetime.now()

    return ScheduledTask(
        id=original.id if original else (task_id or ScheduledTask.id_from_label(label)),
        name=info.container_name or info.image_name,
        description=info.image_name,
        backend=SchedulerBackend.DOCKER,
        action=ShellScriptAction(
            path=info.image_name,
            script_content=" ".join(info.command) or None,
        ),
        trigger=trigger,
        status=original.status if original else TaskStatus(state=container_state(info)),
        label=original.label if original and original.label else label,
        is_read_only=info.is_compose_managed,
        created_at=original.created_at if original else now,
        modified_at=now,
        container_info=info,
    )


@dataclass
class EnvVar:
    key: str = ""
    value: str = ""


@dataclass
class ContainerDraft:
    image_name: str = ""
    container_name: str = ""
    port_mappings: list[PortMapping] = field(default_factory=list)
    env_vars: list[EnvVar] = field(default_factory=list)
    volume_mounts: list[VolumeMount] = field(default_factory=list)
    restart_policy: RestartPolicy = RestartPolicy.NO
    network_mode: str = ""
    command_override: str = ""
    original: ScheduledTask | None = field(default=None, repr=False)

    @classmethod
    def from_task(cls, task: ScheduledTask) -> ContainerDraft:
        info = task.container_info
        if info is None:
            return cls(original=task)
        return cls(
            image_name=info.image_name,
            container_name=info.container_name,
            port_mappings=[m for m in (parse_port_mapping(p) for p in info.ports) if m is not None],
            env_vars=[EnvVar(k, v) for k, v in sorted(info.environment_variables.items())],
            volume_mounts=[v for v in (parse_volume(s) for s in info.volumes) if v is not None],
            restart_policy=info.restart_policy,
            network_mode=info.network_mode or "",
            command_override=" ".join(info.command),
            original=task,
        )

    @property
    def is_editing(self) -> bool:
        return self.original is not None

    @property
    def title(self) -> str:
        return "Edit Container" if self.is_editing else "New Docker Container"

    # --- .env import ---

    def _merge_env(self, merged: dict[str, str]) -> None:
        seen: set[str] = set()
        for row in self.env_vars:
            key = row.key.strip()
            if key in merged:
                row.value = merged[key]
                seen.add(key)
        for key, value in merged.items():
            if key not in seen and not any(r.key.strip() == key for r in self.env_vars):
                self.env_vars.append(EnvVar(key, value))

    def _env_dict(self) -> dict[str, str]:
        return {row.key.strip(): row.value for row in self.env_vars if row.key.strip()}

    def import_env_text(self, text: str) -> None:
        self._merge_env(import_env_text(text, self._env_dict()))

    def import_env_file(self, path: Path) -> None:
        self._merge_env(import_env_file(path, self._env_dict()))

    # --- Validation ---

    def validate(self) -> list[str]:
        """Every problem with the draft; an empty list means it can be saved."""
        errors: list[str] = []

        image = self.image_name.strip()
        if not image:
            errors.append("Docker image name is required")
        elif not is_valid_image_name(image):
            errors.append("Invalid image name. Allowed: alphanumeric, '.', '-', '_', '/', ':', '@'")

        name = self.container_name.strip()
        if name and not is_valid_container_name(name):
            errors.append("Invalid container name. Must start with alphanumeric, then alphanumeric + '_', '.', '-'")

        for i, mapping in enumerate(self.port_mappings, start=1):
            for label, raw in (("host", mapping.host_port), ("container", mapping.container_port)):
                value = raw.strip()
                if not value:
                    continue
                if not value.isdigit():
                    errors.append(f"Port mapping #{i}: {label} port must be a number")
                elif not is_valid_port(int(value)):
                    errors.append(f"Port mapping #{i}: {label} port must be 1-65535")

        for i, env in enumerate(self.env_vars, start=1):
            key = env.key.strip()
            if not key and not env.value:
                continue
            if not key:
                errors.append(f"Environment variable #{i}: key is required")
            elif is_dangerous_env_var(key):
                errors.append(f"Environment variable '{key}' is blocked for security reasons")
            if "\0" in env.key or "\0" in env.value:
                errors.append(f"Environment variable #{i}: null bytes not allowed")

        for i, mount in enumerate(self.volume_mounts, start=1):
            if bool(mount.host_path.strip()) != bool(mount.container_path.strip()):
                errors.append(f"Volume #{i}: host and container path are both required")

        if "\0" in self.image_name:
            errors.append("Image name contains null bytes")
        if "\0" in self.container_name:
            errors.append("Container name contains null bytes")
        if "\0" in self.command_override:
            errors.append("Command contains null bytes")

        return errors

    # --- Build ---

    def build_container_info(self) -> ContainerInfo:
        previous = self.original.container_info if self.original else None
        update = {
            "image_name": self.image_name.strip(),
            "container_name": self.container_name.strip(),
            "restart_policy": self.restart_policy,
            "ports": format_port_mappings(self.port_mappings),
            "volumes": [spec for spec in (m.spec for m in self.volume_mounts) if spec is not None],
            "environment_variables": self._env_dict(),
            "command": parse_command(self.command_override),
            "network_mode": self.network_mode.strip() or None,
        }
        if previous is not None:
            # Keeps entrypoint, compose metadata and discovery fields
            return previous.model_copy(update=update, deep=True)
        return ContainerInfo(**update)

    def build_task(self) -> ScheduledTask:
        return task_for_container(self.build_container_info(), original=self.original)

    @property
    def requires_recreation(self) -> bool:
        """True when saving the edit must destroy and recreate the container."""
        if self.original is None or self.original.container_info is None:
            return False
        return needs_recreation(self.original.container_info, self.build_container_info())
