from __future__ import annotations

from dataclasses import dataclass, field

import pytest

from taskbridge.execution.process import CommandResult, ToolNotFoundError
from taskbridge.infrastructure.database import AppDatabase


@dataclass
class Call:
    argv: list[str]
    input_text: str | None = None
    timeout: float | None = None
    cwd: str | None = None
    env: dict[str, str] | None = None


@dataclass
class FakeRunner:
    """Records argv and answers with scripted results matched by argv prefix.

    The most recently scripted matching response wins; unmatched commands
    succeed with no output.
    """

    calls: list[Call] = field(default_factory=list)
    missing: set[str] = field(default_factory=set)
    _responses: list[tuple[list[str], CommandResult]] = field(default_factory=list)

    def respond(self, prefix: list[str], stdout: str = "", stderr: str = "", returncode: int = 0) -> None:
        self._responses.append((prefix, CommandResult(argv=prefix, returncode=returncode, stdout=stdout, stderr=stderr)))

    def argvs(self) -> list[list[str]]:
        return [call.argv for call in self.calls]

    async def run(
        self,
        argv: list[str],
        input_text: str | None = None,
        timeout: float | None = None,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
    ) -> CommandResult:
        self.calls.append(Call(list(argv), input_text, timeout, cwd, env))
        if argv[0] in self.missing:
            raise ToolNotFoundError(argv[0])
        for prefix, result in reversed(self._responses):
            if argv[: len(prefix)] == prefix:
                return CommandResult(
                    argv=list(argv), returncode=result.returncode, stdout=result.stdout, stderr=result.stderr
                )
        return CommandResult(argv=list(argv), returncode=0)


@pytest.fixture
def db() -> AppDatabase:
    """Create an in-memory database for testing."""
    app_db = AppDatabase()
    app_db._init_test()
    return app_db


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()
