"""JSON-ready dictionaries for board records."""

from agent_board.db.models import BoardEvent, ChatMessage, Comment, JobRecord, Task, TaskEvent


def _iso(dt) -> str | None:
    return dt.isoformat() if dt else None


def task_dict(t: Task) -> dict:
    return {
        "id": t.id,
        "title": t.title,
        "description": t.description,
        "status": t.status,
        "priority": t.priority,
        "assignee": t.assignee,
        "project_id": t.project_id,
        "branch": t.branch,
        "refinement": t.refinement,
        "pr_url": t.pr_url,
        "pr_status": t.pr_status,
        "labels": t.labels,
        "sort_order": t.sort_order,
        "version": t.version,
        "created_at": _iso(t.created_at),
        "updated_at": _iso(t.updated_at),
    }


def comment_dict(c: Comment) -> dict:
    return {
        "id": c.id,
        "task_id": c.task_id,
        "author": c.author,
        "content": c.content,
        "created_at": _iso(c.created_at),
    }


def chat_dict(m: ChatMessage) -> dict:
    return {
        "id": m.id,
        "role": m.role,
        "content": m.content,
        "attachments": m.attachments,
        "timestamp": _iso(m.created_at),
        "agent_id": m.agent_id,
    }


def event_dict(e: TaskEvent) -> dict:
    return {
        "id": e.id,
        "event_type": e.event_type,
        "old_value": e.old_value,
        "new_value": e.new_value,
        "created_at": _iso(e.created_at),
    }


def job_dict(j: JobRecord) -> dict:
    """Job record in the runtime's camelCase wire shape; optional fields are omitted."""
    if j.status == "idle":
        return {"status": "idle", "taskId": j.task_id, "jobType": j.job_type}
    data = {
        "status": j.status,
        "agentId": j.agent_id,
        "taskId": j.task_id,
        "jobType": j.job_type,
        "startedAt": _iso(j.started_at),
        "attempt": j.attempt,
    }
    optional = {
        "prompt": j.prompt,
        "sessionKey": j.session_key,
        "completedAt": _iso(j.completed_at),
        "summary": j.summary,
        "error": j.error,
    }
    data.update({k: v for k, v in optional.items() if v is not None})
    return data


def board_event_dict(e: BoardEvent) -> dict:
    return {
        "type": e.type,
        "payload": e.payload,
        "timestamp": _iso(e.timestamp),
    }
