"""Configuration constants, .env parsing, and timeout settings."""

from __future__ import annotations

import os
from pathlib import Path


def parse_env_line(line: str) -> tuple[str, str] | None:
    """Split one ``KEY=value`` line of a .env file.

    Returns None for blank lines, ``#`` comments and lines without ``=``.
    Null characters are removed from key and value, and one matching pair
    of surrounding single or double quotes is stripped from the value.
    """
    trimmed = line.strip()
    if not trimmed or trimmed.startswith("#"):
        return None
    eq_idx = trimmed.find("=")
    if eq_idx == -1:
        return None
    key = trimmed[:eq_idx].strip().replace("\0", "")
    if not key:
        return None
    value = trimmed[eq_idx + 1 :].strip().replace("\0", "")
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        value = value[1:-1]
    return key, value


def read_env_file(keys: list[str], env_file: Path | None = None) -> dict[str, str]:
    """Parse the project .env file and return values for requested keys.

    Does NOT load into os.environ. Empty values are skipped.
    """
    path = env_file or Path.cwd() / ".env"
    try:
        content = path.read_text()
    except OSError:
        return {}

    wanted = set(keys)
    result: dict[str, str] = {}
    for line in content.splitlines():
        parsed = parse_env_line(line)
        if parsed is None:
            continue
        key, value = parsed
        if key in wanted and value:
            result[key] = value
    return result


_env_config = read_env_file([
    "TASKBRIDGE_LABEL_PREFIX",
    "TASKBRIDGE_LAUNCH_AGENTS_DIR",
    "TASKBRIDGE_STORE_DIR",
    "TASKBRIDGE_COMMAND_TIMEOUT",
    "TASKBRIDGE_RUN_NOW_TIMEOUT",
])


def _setting(key: str, default: str) -> str:
    return os.environ.get(key) or _env_config.get(key, default)


# Label namespace for launchd descriptors and the deterministic task ids.
LABEL_PREFIX: str = _setting("TASKBRIDGE_LABEL_PREFIX", "com.taskbridge.")

# Marker written on the line preceding every crontab entry we own.
CRON_MARKER: str = "# taskbridge:"
CRON_DISABLED_PREFIX: str = "#disabled# "

HOME_DIR: Path = Path.home()
LAUNCH_AGENTS_DIR: Path = Path(
    _setting("TASKBRIDGE_LAUNCH_AGENTS_DIR", str(HOME_DIR / "Library" / "LaunchAgents"))
).expanduser()
STORE_DIR: Path = Path(_setting("TASKBRIDGE_STORE_DIR", str(HOME_DIR / ".taskbridge"))).expanduser()

COMMAND_TIMEOUT: float = float(_setting("TASKBRIDGE_COMMAND_TIMEOUT", "60"))  # seconds
RUN_NOW_TIMEOUT: float = float(_setting("TASKBRIDGE_RUN_NOW_TIMEOUT", "300"))  # seconds

MAX_ENV_VARS: int = 500
HISTORY_LIMIT: int = 50


class TimeoutConfig:
    """Timeouts applied to external tool invocations."""

    def __init__(self, command_timeout: float = COMMAND_TIMEOUT, run_now_timeout: float = RUN_NOW_TIMEOUT) -> None:
        self.command_timeout = command_timeout
        self.run_now_timeout = run_now_timeout

    def for_run_now(self) -> float:
        """A run-now call never gets less time than an ordinary tool call."""
        return max(self.run_now_timeout, self.command_timeout)
