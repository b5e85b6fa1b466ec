"""Conversion between structured container configuration and container-tool strings.

Two directions:
  - install: ContainerInfo -> ``docker create`` arguments, canonical
    ``host:container/proto`` port strings and ``host:container[:mode]`` volumes.
  - discovery: ``docker inspect`` JSON and ``docker port`` style strings
    (``80/tcp -> 0.0.0.0:8080``) -> canonical ContainerInfo.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from taskbridge.containers.types import (
    ContainerInfo,
    ContainerLaunchOrigin,
    ContainerRuntime,
    RestartPolicy,
)

DISCOVERY_SEPARATOR = " -> "
DEFAULT_PROTOCOL = "tcp"

COMPOSE_PROJECT_LABEL = "com.docker.compose.project"
COMPOSE_SERVICE_LABEL = "com.docker.compose.service"
TASK_ID_LABEL = "taskbridge.task-id"


# --- Ports ---


@dataclass
class PortMapping:
    host_port: str = ""
    container_port: str = ""
    protocol: str = DEFAULT_PROTOCOL

    @property
    def spec(self) -> str | None:
        """Canonical run-spec form, or None when both ports are empty."""
        host = self.host_port.strip()
        container = self.container_port.strip()
        proto = self.protocol.strip() or DEFAULT_PROTOCOL
        if host and container:
            return f"{host}:{container}/{proto}"
        if container:
            return f"{container}/{proto}"
        return None


def parse_port_mapping(text: str) -> PortMapping | None:
    """Parse either the discovery or the install port shape. Malformed input yields None."""
    text = text.strip()
    if not text:
        return None

    if DISCOVERY_SEPARATOR in text:
        parts = text.split(DISCOVERY_SEPARATOR)
        if len(parts) != 2:
            return None
        container_part, host_part = parts
        pieces = container_part.split("/")
        mapping = PortMapping(container_port=pieces[0])
        if len(pieces) > 1 and pieces[1]:
            mapping.protocol = pieces[1]
        colon_idx = host_part.rfind(":")
        mapping.host_port = host_part[colon_idx + 1 :] if colon_idx != -1 else host_part
        return mapping

    proto_parts = text.split("/")
    port_part = proto_parts[0]
    protocol = proto_parts[1] if len(proto_parts) > 1 and proto_parts[1] else DEFAULT_PROTOCOL

    if ":" in port_part:
        colon_parts = port_part.split(":")
        if len(colon_parts) != 2:
            return None
        return PortMapping(host_port=colon_parts[0], container_port=colon_parts[1], protocol=protocol)

    # Container-only mapping, as emitted by PortMapping.spec
    if port_part.isdigit():
        return PortMapping(container_port=port_part, protocol=protocol)
    return None


def format_port_mappings(mappings: list[PortMapping]) -> list[str]:
    return [spec for spec in (m.spec for m in mappings) if spec is not None]


def canonical_port(text: str) -> str:
    """Canonical form of a port string; unparseable strings are returned unchanged."""
    mapping = parse_port_mapping(text)
    spec = mapping.spec if mapping else None
    return spec if spec is not None else text


# --- Volumes ---


@dataclass
class VolumeMount:
    host_path: str = ""
    container_path: str = ""
    options: list[str] = field(default_factory=list)

    @property
    def spec(self) -> str | None:
        host = self.host_path.strip()
        container = self.container_path.strip()
        if not host or not container:
            return None
        return ":".join([host, container, *self.options])

    @property
    def read_only(self) -> bool:
        return "ro" in self.options


def parse_volume(text: str) -> VolumeMount | None:
    parts = text.split(":")
    if len(parts) < 2:
        return None
    return VolumeMount(host_path=parts[0], container_path=parts[1], options=parts[2:])


# --- Command ---


def parse_command(text: str) -> list[str]:
    """Split on single spaces. Quotes and escapes are not interpreted."""
    trimmed = text.strip()
    if not trimmed:
        return []
    return [token for token in trimmed.split(" ") if token]


# --- docker create ---


def build_run_arguments(info: ContainerInfo, labels: dict[str, str] | None = None) -> list[str]:
    """Arguments for ``docker create`` (without the binary and subcommand)."""
    args: list[str] = []
    if info.container_name:
        args.extend(["--name", info.container_name])
    if info.restart_policy != RestartPolicy.NO:
        args.extend(["--restart", info.restart_policy.value])
    for key, value in sorted((labels or {}).items()):
        args.extend(["--label", f"{key}={value}"])
    for port in info.ports:
        args.extend(["-p", canonical_port(port)])
    for key, value in info.environment_variables.items():
        args.extend(["-e", f"{key}={value}"])
    for volume in info.volumes:
        args.extend(["-v", volume])
    if info.network_mode:
        args.extend(["--network", info.network_mode])
    if info.entrypoint:
        # --entrypoint takes one executable; remaining tokens go before the command
        args.extend(["--entrypoint", info.entrypoint[0]])
    args.append(info.image_name)
    if info.entrypoint:
        args.extend(info.entrypoint[1:])
    args.extend(info.command)
    return args


# --- docker inspect ---


def _ports_from_inspect(ports: dict[str, list[dict[str, str]] | None] | None) -> list[str]:
    result: list[str] = []
    for container_spec, bindings in (ports or {}).items():
        if not bindings:
            continue
        for binding in bindings:
            discovered = f"{container_spec}{DISCOVERY_SEPARATOR}{binding.get('HostIp', '')}:{binding.get('HostPort', '')}"
            canonical = canonical_port(discovered)
            if canonical not in result:
                result.append(canonical)
    return result


def _volumes_from_inspect(mounts: list[dict[str, Any]] | None) -> list[str]:
    result: list[str] = []
    for mount in mounts or []:
        source = mount.get("Name") if mount.get("Type") == "volume" else mount.get("Source")
        destination = mount.get("Destination")
        if not source or not destination:
            continue
        spec = f"{source}:{destination}"
        if mount.get("RW") is False:
            spec += ":ro"
        result.append(spec)
    return result


def _env_from_inspect(env: list[str] | None) -> dict[str, str]:
    result: dict[str, str] = {}
    for entry in env or []:
        key, sep, value = entry.partition("=")
        if key and sep:
            result[key] = value
    return result


def _parse_created(value: str | None) -> datetime | None:
    if not value:
        return None
    # Docker reports nanoseconds; fromisoformat handles at most microseconds.
    trimmed = value.rstrip("Z")
    if "." in trimmed:
        head, frac = trimmed.split(".", 1)
        trimmed = f"{head}.{frac[:6]}"
    try:
        return datetime.fromisoformat(trimmed)
    except ValueError:
        return None


def container_info_from_inspect(data: dict[str, Any], runtime: ContainerRuntime = ContainerRuntime.UNKNOWN) -> ContainerInfo:
    """Canonical ContainerInfo from one ``docker inspect`` object."""
    config = data.get("Config") or {}
    host_config = data.get("HostConfig") or {}
    labels = config.get("Labels") or {}
    restart = RestartPolicy.parse((host_config.get("RestartPolicy") or {}).get("Name"))

    compose_project = labels.get(COMPOSE_PROJECT_LABEL)
    if compose_project:
        origin = ContainerLaunchOrigin.COMPOSE
    elif restart.starts_at_boot:
        origin = ContainerLaunchOrigin.BOOT
    elif TASK_ID_LABEL in labels:
        origin = ContainerLaunchOrigin.COMMAND
    else:
        origin = ContainerLaunchOrigin.MANUAL

    network_mode = host_config.get("NetworkMode")
    full_id = data.get("Id", "")

    return ContainerInfo(
        image_name=config.get("Image", ""),
        container_name=(data.get("Name") or "").lstrip("/"),
        restart_policy=restart,
        ports=_ports_from_inspect((data.get("NetworkSettings") or {}).get("Ports")),
        volumes=_volumes_from_inspect(data.get("Mounts")),
        environment_variables=_env_from_inspect(config.get("Env")),
        command=list(config.get("Cmd") or []),
        entrypoint=list(config["Entrypoint"]) if config.get("Entrypoint") else None,
        network_mode=network_mode if network_mode and network_mode != "default" else None,
        compose_project=compose_project,
        compose_service=labels.get(COMPOSE_SERVICE_LABEL),
        container_id=full_id[:12],
        full_id=full_id,
        container_status=(data.get("State") or {}).get("Status", ""),
        created_at=_parse_created(data.get("Created")),
        launch_origin=origin,
        runtime=runtime,
    )
