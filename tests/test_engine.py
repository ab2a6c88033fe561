"""Tests for database initialization."""

from agent_board.db.engine import init_db


def _columns(conn, table):
    return {row["name"] for row in conn.execute(f"PRAGMA table_info({table})")}


def test_init_db_is_repeatable(tmp_path):
    db_path = tmp_path / "nested" / "board.db"
    first = init_db(db_path)
    first.execute(
        "INSERT INTO tasks (id, title, created_at, updated_at) VALUES ('t', 'T', 'now', 'now')"
    )
    first.commit()
    first.close()

    second = init_db(db_path)
    assert second.execute("SELECT id FROM tasks").fetchone()["id"] == "t"
    assert {"attempt", "version"} <= _columns(second, "jobs")
    assert {"pr_status", "version"} <= _columns(second, "tasks")
    assert "event_log" in {
        row["name"] for row in second.execute("SELECT name FROM sqlite_master WHERE type='table'")
    }
    second.close()
