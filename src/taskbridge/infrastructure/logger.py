"""structlog configuration shared by the CLI and the backend adapters.

Everything goes to stderr so command output on stdout stays parseable.
``TASKBRIDGE_LOG_LEVEL`` (or the generic ``LOG_LEVEL``) picks the threshold.
"""

from __future__ import annotations

import logging
import os
import sys

import structlog


def level_from_env(default: int = logging.INFO) -> int:
    name = (os.environ.get("TASKBRIDGE_LOG_LEVEL") or os.environ.get("LOG_LEVEL") or "").upper()
    level = logging.getLevelName(name) if name else default
    return level if isinstance(level, int) else default


def configure(level: int) -> structlog.stdlib.BoundLogger:
    colors = sys.stderr.isatty()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.set_exc_info,
            structlog.dev.ConsoleRenderer(colors=colors),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )
    # Third-party libraries logging through stdlib share the threshold
    logging.basicConfig(level=level, stream=sys.stderr, format="%(name)s: %(message)s")
    return structlog.get_logger("taskbridge")


logger: structlog.stdlib.BoundLogger = configure(level_from_env())


def backend_logger(backend: str) -> structlog.stdlib.BoundLogger:
    return logger.bind(backend=backend)


def _log_uncaught(exc_type, exc_value, exc_traceback) -> None:  # type: ignore[no-untyped-def]
    if issubclass(exc_type, KeyboardInterrupt):
        sys.__excepthook__(exc_type, exc_value, exc_traceback)
        return
    logger.critical("Unhandled error", exc_info=(exc_type, exc_value, exc_traceback))


sys.excepthook = _log_uncaught
