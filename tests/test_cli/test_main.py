"""Tests for the command line entry point."""

import uuid

import pytest

from taskbridge.__main__ import build_parser, main
from taskbridge.infrastructure.database import AppDatabase
from taskbridge.scheduling.types import ExecutableAction, ScheduledTask, SchedulerBackend


@pytest.fixture
def db_path(tmp_path, monkeypatch):
    path = tmp_path / "tasks.db"
    original_init = AppDatabase.init
    monkeypatch.setattr(AppDatabase, "init", lambda self, db_path=None: original_init(self, path))
    return path


class TestParser:
    def test_run_requires_uuid(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["run", "not-a-uuid"])

    def test_discover_backend_choices(self):
        args = build_parser().parse_args(["discover", "vmware_fusion"])
        assert args.backend == "vmware_fusion"
        with pytest.raises(SystemExit):
            build_parser().parse_args(["discover", "systemd"])


class TestCronCheck:
    def test_valid_expression(self, capsys):
        assert main(["cron-check", "0 9 * * 1"]) == 0
        out = capsys.readouterr().out.splitlines()
        assert out[0] == "At 09:00 on Monday"
        assert out[1].startswith("Next run: ")

    def test_invalid_expression(self, capsys):
        assert main(["cron-check", "60 * * * *"]) == 1
        assert "Invalid minute field: 60 (must be 0-59 or *)" in capsys.readouterr().err


class TestTaskCommands:
    def test_list(self, db_path, capsys):
        seed = AppDatabase()
        seed.init()
        task = ScheduledTask(name="Backup", backend=SchedulerBackend.CRON, action=ExecutableAction(path="/bin/true"))
        seed.task_repo.save_task(task)
        seed.close()

        assert main(["list"]) == 0
        out = capsys.readouterr().out
        assert str(task.id) in out
        assert "Backup" in out

    def test_run_unknown_task(self, db_path, capsys):
        assert main(["run", str(uuid.uuid4())]) == 1
        assert "Task not found" in capsys.readouterr().err
