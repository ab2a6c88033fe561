"""Task storage operations.

Every write is checked against the row's ``version`` (and, for moves, the
status the caller validated against). A write that loses a race raises
``ConflictError`` rather than overwriting the newer row.
"""

import json
import re
import sqlite3
import uuid

from agent_board.core.errors import ConflictError, NotFoundError, ValidationError
from agent_board.core.workflow import TransitionGuard, validate_status
from agent_board.db.models import (
    PR_STATUSES,
    PRIORITIES,
    TASK_STATUSES,
    Comment,
    Task,
    TaskEvent,
    parse_dt,
    utcnow,
)

UPDATABLE_FIELDS = {
    "title",
    "description",
    "priority",
    "assignee",
    "project_id",
    "branch",
    "refinement",
    "pr_url",
    "pr_status",
    "labels",
    "sort_order",
}

PR_URL_PATTERN = re.compile(
    r"^https?://(?:[\w.-]*github[\w.-]*/[^/\s]+/[^/\s]+/pull/\d+"
    r"|[\w.-]*gitlab[\w.-]*/\S+/-?/?merge_requests/\d+)/?$"
)


def slugify(title: str) -> str:
    """Convert a title to a URL-friendly slug."""
    slug = title.lower().strip()
    slug = re.sub(r"[^\w\s-]", "", slug)
    slug = re.sub(r"[\s_]+", "-", slug)
    slug = re.sub(r"-+", "-", slug)
    return slug.strip("-")[:60]


def _unique_id(db: sqlite3.Connection, base_slug: str) -> str:
    """Generate a unique task ID from a slug, appending a number if needed."""
    base_slug = base_slug or "task"
    existing = db.execute(
        "SELECT id FROM tasks WHERE id = ?", (base_slug,)
    ).fetchone()
    if not existing:
        return base_slug

    i = 2
    while True:
        candidate = f"{base_slug}-{i}"
        existing = db.execute(
            "SELECT id FROM tasks WHERE id = ?", (candidate,)
        ).fetchone()
        if not existing:
            return candidate
        i += 1


def _validate_fields(fields: dict) -> dict:
    """Check field values shared by create and update; returns DB-ready values."""
    if "title" in fields:
        title = fields["title"]
        if not isinstance(title, str) or not title.strip():
            raise ValidationError("Title is required and must be a non-empty string")
        fields["title"] = title.strip()
    if "priority" in fields and fields["priority"] not in PRIORITIES:
        raise ValidationError(
            f"Invalid priority '{fields['priority']}'. Must be one of: {', '.join(PRIORITIES)}"
        )
    if fields.get("pr_status") is not None and fields["pr_status"] not in PR_STATUSES:
        raise ValidationError(
            f"Invalid PR status '{fields['pr_status']}'. Must be one of: {', '.join(PR_STATUSES)}"
        )
    if "labels" in fields:
        labels = fields["labels"] or []
        if not isinstance(labels, list) or not all(isinstance(l, str) for l in labels):
            raise ValidationError("Labels must be a list of strings")
        fields["labels"] = json.dumps(labels)
    if "sort_order" in fields:
        try:
            fields["sort_order"] = int(fields["sort_order"])
        except (TypeError, ValueError):
            raise ValidationError("sort_order must be an integer") from None
    return fields


def create_task(
    db: sqlite3.Connection,
    title: str,
    description: str = "",
    priority: str = "medium",
    assignee: str | None = None,
    project_id: str | None = None,
    branch: str | None = None,
    labels: list[str] | None = None,
    status: str = "backlog",
    sort_order: int = 0,
) -> Task:
    """Create a new task."""
    if not isinstance(title, str) or not title.strip():
        raise ValidationError("Title is required and must be a non-empty string")
    validate_status(status)
    fields = _validate_fields({
        "title": title,
        "priority": priority,
        "labels": labels or [],
        "sort_order": sort_order,
    })
    task_id = _unique_id(db, slugify(fields["title"]))
    now = utcnow().isoformat()

    db.execute(
        """INSERT INTO tasks (id, title, description, status, priority, assignee, project_id,
                              branch, labels, sort_order, created_at, updated_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (
            task_id, fields["title"], description or "", status, fields["priority"], assignee,
            project_id, branch, fields["labels"], fields["sort_order"], now, now,
        ),
    )
    _log_event(db, task_id, "created", None, status)
    db.commit()
    return get_task(db, task_id)


def get_task(db: sqlite3.Connection, task_id: str) -> Task | None:
    """Get a task by ID."""
    row = db.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
    if not row:
        return None
    return _row_to_task(row)


def list_tasks(
    db: sqlite3.Connection,
    status: str | None = None,
    assignee: str | None = None,
    priority: str | None = None,
    labels: list[str] | None = None,
    project_id: str | None = None,
) -> list[Task]:
    """List tasks matching every given filter."""
    query = "SELECT * FROM tasks WHERE 1=1"
    params: list = []

    if status:
        query += " AND status = ?"
        params.append(status)
    if assignee:
        query += " AND assignee = ?"
        params.append(assignee)
    if priority:
        query += " AND priority = ?"
        params.append(priority)
    if project_id:
        query += " AND project_id = ?"
        params.append(project_id)

    query += " ORDER BY sort_order ASC, created_at ASC"
    tasks = [_row_to_task(r) for r in db.execute(query, params).fetchall()]

    if labels:
        wanted = set(labels)
        tasks = [t for t in tasks if wanted.issubset(t.labels)]
    return tasks


def tasks_by_status(
    db: sqlite3.Connection,
    project_id: str | None = None,
) -> dict[str, list[Task]]:
    """Group tasks into the board's columns, keeping empty columns."""
    columns: dict[str, list[Task]] = {status: [] for status in TASK_STATUSES}
    for task in list_tasks(db, project_id=project_id):
        columns[task.status].append(task)
    return columns


def task_stats(db: sqlite3.Connection) -> dict:
    """Count tasks by status, priority and assignee."""
    by_status = {status: 0 for status in TASK_STATUSES}
    by_priority = {priority: 0 for priority in PRIORITIES}
    by_assignee: dict[str, int] = {}
    rows = db.execute("SELECT status, priority, assignee FROM tasks").fetchall()
    for row in rows:
        by_status[row["status"]] += 1
        by_priority[row["priority"]] += 1
        if row["assignee"]:
            by_assignee[row["assignee"]] = by_assignee.get(row["assignee"], 0) + 1
    return {
        "total": len(rows),
        "by_status": by_status,
        "by_priority": by_priority,
        "by_assignee": by_assignee,
    }


def update_task(
    db: sqlite3.Connection,
    task_id: str,
    fields: dict,
) -> Task | None:
    """Patch task fields other than status. Returns the updated task."""
    if "status" in fields:
        raise ValidationError("Status cannot be updated directly; move the task instead")
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise ValidationError(f"Unknown task fields: {', '.join(sorted(unknown))}")

    task = get_task(db, task_id)
    if not task:
        return None
    if not fields:
        return task

    updates = _validate_fields(dict(fields))
    _compare_and_swap(db, task, updates)

    for key in sorted(fields):
        old = getattr(task, key)
        new = fields[key]
        if old != new and key not in ("refinement", "description"):
            _log_event(db, task_id, f"{key}_changed", _as_text(old), _as_text(new))
    if "refinement" in fields and fields["refinement"] != task.refinement:
        _log_event(db, task_id, "refinement_changed", None, None)
    db.commit()
    return get_task(db, task_id)


def move_task(
    db: sqlite3.Connection,
    task_id: str,
    status: str,
    guard: TransitionGuard,
    sort_order: int | None = None,
) -> Task | None:
    """Move a task to a new status column if the pipeline allows it."""
    task = get_task(db, task_id)
    if not task:
        return None

    guard.check(task.status, status)
    updates = {"status": status}
    if sort_order is not None:
        updates = _validate_fields({"status": status, "sort_order": sort_order})

    _compare_and_swap(db, task, updates, expected_status=task.status)
    _log_event(db, task_id, "status_changed", task.status, status)
    db.commit()
    return get_task(db, task_id)


def assign_task(db: sqlite3.Connection, task_id: str, agent_id: str) -> Task | None:
    """Assign a task to an agent."""
    if not agent_id or not isinstance(agent_id, str):
        raise ValidationError("Agent ID is required")
    task = get_task(db, task_id)
    if not task:
        return None
    _compare_and_swap(db, task, {"assignee": agent_id})
    _log_event(db, task_id, "assigned", task.assignee, agent_id)
    db.commit()
    return get_task(db, task_id)


def link_pr(db: sqlite3.Connection, task_id: str, pr_url: str) -> Task | None:
    """Attach a pull request URL to a task and mark it open."""
    if not pr_url or not PR_URL_PATTERN.match(pr_url):
        raise ValidationError("Invalid pull request URL")
    task = get_task(db, task_id)
    if not task:
        return None
    _compare_and_swap(db, task, {"pr_url": pr_url, "pr_status": "open"})
    _log_event(db, task_id, "pr_linked", task.pr_url, pr_url)
    db.commit()
    return get_task(db, task_id)


def add_comment(
    db: sqlite3.Connection,
    task_id: str,
    author: str,
    content: str,
) -> Comment:
    """Add a comment to a task."""
    if not get_task(db, task_id):
        raise NotFoundError(f"Task not found: {task_id}")
    if not content or not content.strip():
        raise ValidationError("Comment content is required")

    comment = Comment(
        id=uuid.uuid4().hex,
        task_id=task_id,
        author=author or "user",
        content=content.strip(),
        created_at=utcnow(),
    )
    db.execute(
        "INSERT INTO comments (id, task_id, author, content, created_at) VALUES (?, ?, ?, ?, ?)",
        (comment.id, task_id, comment.author, comment.content, comment.created_at.isoformat()),
    )
    _log_event(db, task_id, "commented", None, comment.author)
    db.commit()
    return comment


def list_comments(db: sqlite3.Connection, task_id: str) -> list[Comment]:
    rows = db.execute(
        "SELECT * FROM comments WHERE task_id = ? ORDER BY created_at, rowid",
        (task_id,),
    ).fetchall()
    return [
        Comment(
            id=r["id"],
            task_id=r["task_id"],
            author=r["author"],
            content=r["content"],
            created_at=parse_dt(r["created_at"]),
        )
        for r in rows
    ]


def delete_task(db: sqlite3.Connection, task_id: str) -> bool:
    """Delete a task with its comments, chat history, jobs and activity."""
    task = get_task(db, task_id)
    if not task:
        return False

    db.execute("DELETE FROM jobs WHERE task_id = ?", (task_id,))
    db.execute("DELETE FROM chat_messages WHERE task_id = ?", (task_id,))
    db.execute("DELETE FROM comments WHERE task_id = ?", (task_id,))
    db.execute("DELETE FROM task_events WHERE task_id = ?", (task_id,))
    db.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
    db.commit()
    return True


def get_task_events(db: sqlite3.Connection, task_id: str) -> list[TaskEvent]:
    """Get the event history for a task."""
    rows = db.execute(
        "SELECT * FROM task_events WHERE task_id = ? ORDER BY id",
        (task_id,),
    ).fetchall()
    return [
        TaskEvent(
            id=r["id"],
            task_id=r["task_id"],
            event_type=r["event_type"],
            old_value=r["old_value"],
            new_value=r["new_value"],
            created_at=parse_dt(r["created_at"]),
        )
        for r in rows
    ]


def _compare_and_swap(
    db: sqlite3.Connection,
    task: Task,
    updates: dict,
    expected_status: str | None = None,
):
    """Write ``updates`` only if the row still has the version we read."""
    set_parts = [f"{k} = ?" for k in updates]
    set_parts += ["version = version + 1", "updated_at = ?"]
    values = list(updates.values()) + [utcnow().isoformat(), task.id, task.version]

    query = f"UPDATE tasks SET {', '.join(set_parts)} WHERE id = ? AND version = ?"
    if expected_status is not None:
        query += " AND status = ?"
        values.append(expected_status)

    cursor = db.execute(query, values)
    if cursor.rowcount == 0:
        db.rollback()
        if not get_task(db, task.id):
            raise NotFoundError(f"Task not found: {task.id}")
        raise ConflictError(f"Task '{task.id}' was modified concurrently; reload and retry")


def _log_event(
    db: sqlite3.Connection,
    task_id: str,
    event_type: str,
    old_value: str | None,
    new_value: str | None,
):
    db.execute(
        """INSERT INTO task_events (task_id, event_type, old_value, new_value, created_at)
           VALUES (?, ?, ?, ?, ?)""",
        (task_id, event_type, old_value, new_value, utcnow().isoformat()),
    )


def _as_text(value) -> str | None:
    if value is None:
        return None
    if isinstance(value, list):
        return ",".join(value)
    return str(value)


def _row_to_task(row: sqlite3.Row) -> Task:
    return Task(
        id=row["id"],
        title=row["title"],
        description=row["description"] or "",
        status=row["status"],
        priority=row["priority"],
        assignee=row["assignee"],
        project_id=row["project_id"],
        branch=row["branch"],
        refinement=row["refinement"],
        pr_url=row["pr_url"],
        pr_status=row["pr_status"],
        labels=json.loads(row["labels"] or "[]"),
        sort_order=row["sort_order"],
        version=row["version"],
        created_at=parse_dt(row["created_at"]),
        updated_at=parse_dt(row["updated_at"]),
    )
