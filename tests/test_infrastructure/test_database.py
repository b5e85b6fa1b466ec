"""Tests for database initialization and schema."""

from taskbridge.infrastructure.database import AppDatabase


class TestAppDatabase:
    def test_init_creates_schema(self):
        db = AppDatabase()
        db._init_test()
        tables = db.db.execute(
            "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name"
        ).fetchall()
        assert [row[0] for row in tables] == ["task_history", "tasks"]

    def test_repos_initialized(self):
        db = AppDatabase()
        db._init_test()
        assert db.task_repo is not None
        assert db.history_repo is not None

    def test_multiple_init_is_safe(self):
        db = AppDatabase()
        db._init_test()
        db._init_test()

    def test_file_database(self, tmp_path):
        path = tmp_path / "nested" / "tasks.db"
        db = AppDatabase()
        db.init(path)
        assert path.exists()
        db.close()

        reopened = AppDatabase()
        reopened.init(path)
        assert reopened.task_repo.get_all_tasks() == []
        reopened.close()

    def test_close_is_idempotent(self):
        db = AppDatabase()
        db._init_test()
        db.close()
        db.close()
