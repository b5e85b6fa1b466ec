"""Entry point: python -m taskbridge"""

from __future__ import annotations

import argparse
import asyncio
import sys
import uuid

from taskbridge.backends.service import SchedulerError
from taskbridge.infrastructure.database import AppDatabase
from taskbridge.infrastructure.logger import logger
from taskbridge.scheduling import cron
from taskbridge.scheduling.task_service import TaskManager
from taskbridge.scheduling.types import SchedulerBackend


def cron_check(expression: str) -> int:
    errors = cron.validate(expression)
    if errors:
        for error in errors:
            print(error, file=sys.stderr)
        return 1
    print(cron.to_display_string(cron.parse(expression)))
    print(f"Next run: {cron.next_run(expression).isoformat(sep=' ', timespec='minutes')}")
    return 0


def _manager(database: AppDatabase) -> TaskManager:
    assert database.task_repo is not None and database.history_repo is not None
    return TaskManager(database.task_repo, database.history_repo)


async def discover(database: AppDatabase, backend: SchedulerBackend) -> int:
    tasks = await _manager(database).discover(backend)
    for task in tasks:
        print(f"{task.id}  {task.status.state.value:<8}  {task.name}  ({task.trigger.display_string})")
    return 0


def list_tasks(database: AppDatabase) -> int:
    for task in _manager(database).get_all():
        print(f"{task.id}  {task.backend.value:<13}  {task.status.state.value:<8}  {task.name}")
    return 0


async def run_task(database: AppDatabase, task_id: uuid.UUID) -> int:
    result = await _manager(database).run_now(task_id)
    if result.standard_output:
        sys.stdout.write(result.standard_output)
    if result.standard_error:
        sys.stderr.write(result.standard_error)
    return result.exit_code


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="taskbridge", description="Manage scheduled tasks across backends")
    sub = parser.add_subparsers(dest="command", required=True)

    check = sub.add_parser("cron-check", help="Validate and describe a cron expression")
    check.add_argument("expression", help="Five-field cron expression, quoted")

    disc = sub.add_parser("discover", help="Import tasks a backend already has")
    disc.add_argument("backend", choices=[b.value for b in SchedulerBackend])

    sub.add_parser("list", help="List known tasks")

    run = sub.add_parser("run", help="Run a task now")
    run.add_argument("task_id", type=uuid.UUID)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    if args.command == "cron-check":
        return cron_check(args.expression)

    database = AppDatabase()
    database.init()
    try:
        if args.command == "discover":
            return asyncio.run(discover(database, SchedulerBackend(args.backend)))
        if args.command == "list":
            return list_tasks(database)
        return asyncio.run(run_task(database, args.task_id))
    except SchedulerError as err:
        logger.error("Command failed", command=args.command, kind=err.kind.value, error=err.message)
        print(str(err), file=sys.stderr)
        return 1
    finally:
        database.close()


def run() -> None:
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
