"""Board service: task operations that publish change events.

Wraps the task storage functions with not-found handling, event
publication after each committed write, and the hand-off of moved tasks to
the workflow dispatcher.
"""

import logging
import sqlite3

from agent_board.core import chat as chat_mod
from agent_board.core import tasks as tasks_mod
from agent_board.core.errors import NotFoundError
from agent_board.core.events import EventBus
from agent_board.core.serialize import comment_dict, task_dict
from agent_board.core.workflow import TransitionGuard
from agent_board.db.models import ChatMessage, Comment, Task

logger = logging.getLogger(__name__)


class Board:
    def __init__(
        self,
        db: sqlite3.Connection,
        bus: EventBus,
        guard: TransitionGuard | None = None,
    ):
        self.db = db
        self.bus = bus
        self.guard = guard or TransitionGuard()
        self.dispatcher = None

    # ── Reads ────────────────────────────────────────────────────────────

    def get(self, task_id: str) -> Task:
        task = tasks_mod.get_task(self.db, task_id)
        if not task:
            raise NotFoundError(f"Task not found: {task_id}")
        return task

    def list_tasks(self, **filters) -> list[Task]:
        return tasks_mod.list_tasks(self.db, **filters)

    def list_by_status(self, project_id: str | None = None) -> dict[str, list[Task]]:
        return tasks_mod.tasks_by_status(self.db, project_id=project_id)

    def stats(self) -> dict:
        return tasks_mod.task_stats(self.db)

    def comments(self, task_id: str) -> list[Comment]:
        self.get(task_id)
        return tasks_mod.list_comments(self.db, task_id)

    def history(self, task_id: str):
        return tasks_mod.get_task_events(self.db, task_id)

    def transcript(self, task_id: str) -> list[ChatMessage]:
        self.get(task_id)
        return chat_mod.list_messages(self.db, task_id)

    # ── Mutations ────────────────────────────────────────────────────────

    def create(self, title: str, **fields) -> Task:
        task = tasks_mod.create_task(self.db, title, **fields)
        logger.info("Created task %s (%s)", task.id, task.status)
        self.bus.emit("task:created", task_dict(task))
        return task

    def update(self, task_id: str, fields: dict) -> Task:
        task = tasks_mod.update_task(self.db, task_id, fields)
        if not task:
            raise NotFoundError(f"Task not found: {task_id}")
        self.bus.emit("task:updated", task_dict(task))
        return task

    async def move(self, task_id: str, status: str, sort_order: int | None = None) -> Task:
        """Move a task and schedule whatever stage the new status triggers.

        Must run inside an event loop; the triggered stage runs as a
        separate task and never delays the return.
        """
        before = self.get(task_id)
        task = tasks_mod.move_task(self.db, task_id, status, self.guard, sort_order=sort_order)
        if not task:
            raise NotFoundError(f"Task not found: {task_id}")
        logger.info("Moved task %s: %s -> %s", task_id, before.status, task.status)
        self.bus.emit("task:moved", task_dict(task))
        if self.dispatcher is not None:
            self.dispatcher.dispatch(task, before.status)
        return task

    def assign(self, task_id: str, agent_id: str) -> Task:
        task = tasks_mod.assign_task(self.db, task_id, agent_id)
        if not task:
            raise NotFoundError(f"Task not found: {task_id}")
        self.bus.emit("task:assigned", task_dict(task))
        return task

    def link_pr(self, task_id: str, pr_url: str) -> Task:
        task = tasks_mod.link_pr(self.db, task_id, pr_url)
        if not task:
            raise NotFoundError(f"Task not found: {task_id}")
        self.bus.emit("task:updated", task_dict(task))
        return task

    def add_comment(self, task_id: str, author: str, content: str) -> Comment:
        comment = tasks_mod.add_comment(self.db, task_id, author, content)
        self.bus.emit("task:commented", {"task_id": task_id, "comment": comment_dict(comment)})
        return comment

    def delete(self, task_id: str) -> bool:
        deleted = tasks_mod.delete_task(self.db, task_id)
        if deleted:
            logger.info("Deleted task %s", task_id)
            self.bus.emit("task:deleted", {"id": task_id})
        return deleted

    def chat(
        self,
        task_id: str,
        content: str,
        role: str = "user",
        agent_id: str | None = None,
        attachments: list[str] | None = None,
    ) -> ChatMessage:
        return chat_mod.append_message(
            self.db, task_id, content, role=role, agent_id=agent_id, attachments=attachments
        )
