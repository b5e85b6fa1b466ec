"""Environment variable import from .env text, with a dangerous-name blocklist."""

from __future__ import annotations

from pathlib import Path

from taskbridge.infrastructure.config import MAX_ENV_VARS, parse_env_line
from taskbridge.infrastructure.logger import logger

# Names that change how the dynamic loader, a shell or an interpreter starts up.
DANGEROUS_ENV_VARS: frozenset[str] = frozenset({
    "BASH_ENV",
    "BASHOPTS",
    "CDPATH",
    "ENV",
    "GLOBIGNORE",
    "IFS",
    "NODE_OPTIONS",
    "PERL5LIB",
    "PERL5OPT",
    "PROMPT_COMMAND",
    "PS4",
    "PYTHONINSPECT",
    "PYTHONSTARTUP",
    "RUBYOPT",
    "SHELLOPTS",
    "ZDOTDIR",
})
DANGEROUS_ENV_PREFIXES: tuple[str, ...] = ("DYLD_", "LD_")


def is_dangerous_env_var(key: str) -> bool:
    upper = key.strip().upper()
    return upper in DANGEROUS_ENV_VARS or upper.startswith(DANGEROUS_ENV_PREFIXES)


def import_env_text(text: str, existing: dict[str, str] | None = None) -> dict[str, str]:
    """Merge ``KEY=value`` lines into a copy of ``existing``.

    Lenient: comments, blank lines, lines without ``=`` and blocklisted keys
    are skipped. Existing keys are overwritten in place (last write wins).
    Import stops once the map holds MAX_ENV_VARS keys.
    """
    merged = dict(existing or {})
    skipped = 0

    for line in text.splitlines():
        if len(merged) >= MAX_ENV_VARS:
            logger.warning("Environment import capped", limit=MAX_ENV_VARS)
            break
        parsed = parse_env_line(line)
        if parsed is None:
            continue
        key, value = parsed
        if is_dangerous_env_var(key):
            skipped += 1
            continue
        merged[key] = value

    if skipped:
        logger.info("Skipped blocked environment variables", count=skipped)
    return merged


def import_env_file(path: Path, existing: dict[str, str] | None = None) -> dict[str, str]:
    """Read a .env file and merge it. Unreadable files leave ``existing`` unchanged."""
    try:
        content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as err:
        logger.warning("Failed to read env file", path=str(path), error=str(err))
        return dict(existing or {})
    return import_env_text(content, existing)
