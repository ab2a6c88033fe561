"""Data models for the agent board."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

TASK_STATUSES = (
    "backlog",
    "refinement",
    "pending_approval",
    "todo",
    "in_progress",
    "review",
    "done",
)

PRIORITIES = ("critical", "high", "medium", "low")

PR_STATUSES = ("open", "merged", "closed", "ci_passing", "ci_failing")

JOB_TYPES = ("refinement", "execution")

JOB_STATUSES = ("idle", "pending", "spawning", "running", "done", "error")

ACTIVE_JOB_STATUSES = ("pending", "spawning", "running")

EVENT_TYPES = (
    "task:created",
    "task:updated",
    "task:moved",
    "task:deleted",
    "task:commented",
    "task:assigned",
    "agent:updated",
    "board:refresh",
)

REFINEMENT_PLACEHOLDER = "> ⏳ Refinement in progress..."


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_dt(val: str | None) -> datetime | None:
    if val is None:
        return None
    dt = datetime.fromisoformat(val)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


@dataclass
class Task:
    id: str
    title: str
    description: str = ""
    status: str = "backlog"
    priority: str = "medium"
    assignee: str | None = None
    project_id: str | None = None
    branch: str | None = None
    refinement: str | None = None
    pr_url: str | None = None
    pr_status: str | None = None
    labels: list[str] = field(default_factory=list)
    sort_order: int = 0
    version: int = 1
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_refined(self) -> bool:
        return bool(self.refinement) and not self.refinement.startswith("> ⏳")


@dataclass
class Comment:
    id: str
    task_id: str
    author: str
    content: str
    created_at: datetime | None = None


@dataclass
class ChatMessage:
    id: str
    task_id: str
    role: str
    content: str
    attachments: list[str] = field(default_factory=list)
    agent_id: str | None = None
    created_at: datetime | None = None


@dataclass
class TaskEvent:
    id: int | None = None
    task_id: str = ""
    event_type: str = ""
    old_value: str | None = None
    new_value: str | None = None
    created_at: datetime | None = None


@dataclass
class JobRecord:
    task_id: str
    job_type: str
    status: str = "pending"
    agent_id: str | None = None
    prompt: str | None = None
    session_key: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    summary: str | None = None
    error: str | None = None
    attempt: int = 1
    version: int = 0

    @classmethod
    def idle(cls, task_id: str, job_type: str) -> "JobRecord":
        return cls(task_id=task_id, job_type=job_type, status="idle", attempt=0)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_JOB_STATUSES


@dataclass
class BoardEvent:
    type: str
    payload: Any = None
    timestamp: datetime = field(default_factory=utcnow)
