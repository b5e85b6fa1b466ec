"""SQLite database schema and AppDatabase composition root."""

from __future__ import annotations

import sqlite3
from pathlib import Path

from taskbridge.infrastructure.config import STORE_DIR
from taskbridge.infrastructure.logger import logger


def create_schema(db: sqlite3.Connection) -> None:
    """Create all tables and indexes. Safe to call multiple times (IF NOT EXISTS)."""
    db.executescript("""
        CREATE TABLE IF NOT EXISTS tasks (
            id TEXT PRIMARY KEY,
            backend TEXT NOT NULL,
            name TEXT NOT NULL,
            body TEXT NOT NULL,
            created_at TEXT NOT NULL,
            modified_at TEXT NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_tasks_backend ON tasks(backend);

        CREATE TABLE IF NOT EXISTS task_history (
            id TEXT PRIMARY KEY,
            task_id TEXT NOT NULL,
            start_time TEXT NOT NULL,
            exit_code INTEGER NOT NULL,
            body TEXT NOT NULL,
            FOREIGN KEY (task_id) REFERENCES tasks(id)
        );
        CREATE INDEX IF NOT EXISTS idx_task_history ON task_history(task_id, start_time);
    """)


class AppDatabase:
    """Composition root that initializes the DB and exposes repositories."""

    def __init__(self) -> None:
        self._db: sqlite3.Connection | None = None
        # Repositories are set after init
        self.task_repo: TaskRepository | None = None  # type: ignore[name-defined]
        self.history_repo: HistoryRepository | None = None  # type: ignore[name-defined]

    @property
    def db(self) -> sqlite3.Connection:
        assert self._db is not None, "Database not initialized. Call init() first."
        return self._db

    def init(self, db_path: Path | None = None) -> None:
        """Open (or create) the database file at the standard location."""
        db_path = db_path or STORE_DIR / "tasks.db"
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db = sqlite3.connect(str(db_path))
        self._db.row_factory = sqlite3.Row
        self._init_repos()
        logger.debug("Database opened", path=str(db_path))

    def _init_test(self) -> None:
        """For tests only. Creates a fresh in-memory database."""
        self._db = sqlite3.connect(":memory:")
        self._db.row_factory = sqlite3.Row
        self._init_repos()

    def _init_repos(self) -> None:
        assert self._db is not None
        create_schema(self._db)

        # Import here to avoid circular imports
        from taskbridge.scheduling.repository import HistoryRepository, TaskRepository

        self.task_repo = TaskRepository(self._db)
        self.history_repo = HistoryRepository(self._db)

    def close(self) -> None:
        if self._db is not None:
            self._db.close()
            self._db = None
