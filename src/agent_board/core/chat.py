"""Append-only per-task chat transcript."""

import json
import sqlite3
import uuid

from agent_board.core.errors import NotFoundError, ValidationError
from agent_board.db.models import ChatMessage, parse_dt, utcnow

ROLES = ("user", "agent")


def append_message(
    db: sqlite3.Connection,
    task_id: str,
    content: str,
    role: str = "user",
    agent_id: str | None = None,
    attachments: list[str] | None = None,
) -> ChatMessage:
    """Append a message to a task's transcript."""
    if role not in ROLES:
        raise ValidationError(f"Invalid role '{role}'. Must be one of: {', '.join(ROLES)}")
    if not content or not content.strip():
        raise ValidationError("Content required")
    if not db.execute("SELECT 1 FROM tasks WHERE id = ?", (task_id,)).fetchone():
        raise NotFoundError(f"Task not found: {task_id}")

    message = ChatMessage(
        id=uuid.uuid4().hex,
        task_id=task_id,
        role=role,
        content=content.strip(),
        attachments=list(attachments or []),
        agent_id=agent_id,
        created_at=utcnow(),
    )
    seq = db.execute(
        "SELECT COALESCE(MAX(seq), 0) + 1 FROM chat_messages WHERE task_id = ?",
        (task_id,),
    ).fetchone()[0]
    db.execute(
        """INSERT INTO chat_messages (id, task_id, role, content, attachments, agent_id, created_at, seq)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
        (
            message.id, task_id, role, message.content, json.dumps(message.attachments),
            agent_id, message.created_at.isoformat(), seq,
        ),
    )
    db.commit()
    return message


def list_messages(db: sqlite3.Connection, task_id: str) -> list[ChatMessage]:
    rows = db.execute(
        "SELECT * FROM chat_messages WHERE task_id = ? ORDER BY seq",
        (task_id,),
    ).fetchall()
    return [
        ChatMessage(
            id=r["id"],
            task_id=r["task_id"],
            role=r["role"],
            content=r["content"],
            attachments=json.loads(r["attachments"] or "[]"),
            agent_id=r["agent_id"],
            created_at=parse_dt(r["created_at"]),
        )
        for r in rows
    ]


def format_transcript(messages: list[ChatMessage], user_label: str = "User") -> str:
    """Render a transcript as prompt context, one line per message."""
    lines = []
    for m in messages:
        speaker = user_label if m.role == "user" else (m.agent_id or "Agent")
        line = f"[{speaker}]: {m.content}"
        if m.attachments:
            line += f" ({len(m.attachments)} attachment(s))"
        lines.append(line)
    return "\n".join(lines)
