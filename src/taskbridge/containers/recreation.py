"""Decide whether a container edit can be applied in place or needs destroy-and-recreate."""

from __future__ import annotations

from taskbridge.containers.translator import canonical_port
from taskbridge.containers.types import ContainerInfo

# Restart policy is the one setting `docker update` can change on a live container.
LIVE_UPDATABLE_FIELDS = ("restart_policy",)

# Runtime state reported by discovery; never part of the requested configuration.
RUNTIME_STATE_FIELDS = (
    "container_id",
    "full_id",
    "container_status",
    "created_at",
    "launch_origin",
    "runtime",
)


def comparable_projection(info: ContainerInfo) -> ContainerInfo:
    """Copy of ``info`` with ignored fields reset to their defaults and ports canonicalised."""
    defaults = ContainerInfo(image_name=info.image_name)
    reset = {name: getattr(defaults, name) for name in (*LIVE_UPDATABLE_FIELDS, *RUNTIME_STATE_FIELDS)}
    reset["ports"] = [canonical_port(port) for port in info.ports]
    return info.model_copy(update=reset, deep=True)


def needs_recreation(old: ContainerInfo, new: ContainerInfo) -> bool:
    """True unless the two specs differ only in live-updatable or runtime-state fields."""
    return comparable_projection(old) != comparable_projection(new)
