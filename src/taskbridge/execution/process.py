"""Runs external tools through an async subprocess with a hard timeout."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Protocol

from taskbridge.infrastructure.config import COMMAND_TIMEOUT
from taskbridge.infrastructure.logger import logger


@dataclass
class CommandResult:
    argv: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""
    duration_s: float = 0.0
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out

    @property
    def output(self) -> str:
        """stderr when present, else stdout; used for error messages."""
        return (self.stderr or self.stdout).strip()


class ToolNotFoundError(Exception):
    """The program in argv[0] could not be executed."""

    def __init__(self, program: str) -> None:
        super().__init__(f"{program} not found")
        self.program = program


class Runner(Protocol):
    async def run(
        self,
        argv: list[str],
        input_text: str | None = None,
        timeout: float | None = None,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
    ) -> CommandResult: ...


class CommandRunner:
    """Executes commands and captures their output.

    A command that outlives its timeout is killed and reported with
    ``timed_out=True`` and return code -1.
    """

    def __init__(self, default_timeout: float = COMMAND_TIMEOUT) -> None:
        self._default_timeout = default_timeout

    async def run(
        self,
        argv: list[str],
        input_text: str | None = None,
        timeout: float | None = None,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
    ) -> CommandResult:
        start = time.monotonic()
        logger.debug("Running command", argv=argv)

        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE if input_text is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
                env=env,
            )
        except (FileNotFoundError, PermissionError) as err:
            raise ToolNotFoundError(argv[0]) from err

        stdin_data = input_text.encode() if input_text is not None else None
        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(stdin_data),
                timeout=timeout if timeout is not None else self._default_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Command timed out, killing", argv=argv)
            try:
                proc.kill()
            except ProcessLookupError:
                pass
            await proc.wait()
            return CommandResult(
                argv=argv,
                returncode=-1,
                stderr="Command timed out",
                duration_s=time.monotonic() - start,
                timed_out=True,
            )

        result = CommandResult(
            argv=argv,
            returncode=proc.returncode if proc.returncode is not None else -1,
            stdout=stdout.decode(errors="replace"),
            stderr=stderr.decode(errors="replace"),
            duration_s=time.monotonic() - start,
        )
        if not result.ok:
            logger.debug("Command failed", argv=argv, code=result.returncode, stderr=result.stderr.strip()[:200])
        return result
