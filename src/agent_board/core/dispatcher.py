"""Fires the next pipeline stage after a task moves.

Triggers run as asyncio tasks so the move returns immediately. Each task's
outcome is collected by a done-callback: failures are logged and kept in a
bounded list for inspection. Nothing retries a failed trigger; stalled jobs
are picked up by the recovery sweep.
"""

import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime

from agent_board.core.errors import NotFoundError
from agent_board.db.models import Task, utcnow

logger = logging.getLogger(__name__)


@dataclass
class TriggerFailure:
    trigger: str
    task_id: str
    error: str
    failed_at: datetime = field(default_factory=utcnow)


class WorkflowDispatcher:
    def __init__(
        self,
        tracker,
        pull_requests: Callable[[str], Awaitable[object]] | None = None,
        max_failures: int = 100,
    ):
        self.tracker = tracker
        self.pull_requests = pull_requests
        self._pending: set[asyncio.Task] = set()
        self._failures: deque[TriggerFailure] = deque(maxlen=max_failures)

    @staticmethod
    def triggers_for(task: Task) -> list[str]:
        """Names of the stages a task's current status should start."""
        if task.status == "refinement" and task.assignee:
            return ["refinement"]
        if task.status == "todo":
            return ["execution"]
        if task.status == "done" and task.branch:
            return ["pull_request"]
        return []

    def dispatch(self, task: Task, previous_status: str | None = None) -> list[asyncio.Task]:
        """Schedule the triggers for a task that just moved."""
        scheduled = []
        for trigger in self.triggers_for(task):
            if trigger == "pull_request" and self.pull_requests is None:
                logger.info("No pull request creator configured; skipping %s", task.id)
                continue
            logger.debug(
                "Triggering %s for %s (%s -> %s)", trigger, task.id, previous_status, task.status
            )
            coro = self._fire(trigger, task.id, task.status, task.assignee)
            scheduled.append(self._schedule(trigger, task.id, coro))
        return scheduled

    async def _fire(self, trigger: str, task_id: str, fired_status: str, assignee: str | None):
        # The task may have moved on before this trigger got to run.
        try:
            current = self.tracker.board.get(task_id)
        except NotFoundError:
            logger.debug("Skipping %s for %s: task was deleted", trigger, task_id)
            return None
        if current.status != fired_status:
            logger.debug(
                "Skipping %s for %s: status is now %s, not %s",
                trigger,
                task_id,
                current.status,
                fired_status,
            )
            return None
        if trigger == "pull_request":
            return await self.pull_requests(task_id)
        return await self.tracker.start(task_id, trigger, agent_id=assignee)

    def _schedule(self, trigger: str, task_id: str, coro: Awaitable) -> asyncio.Task:
        job = asyncio.ensure_future(coro)
        self._pending.add(job)

        def observe(done: asyncio.Task):
            self._pending.discard(done)
            if done.cancelled():
                logger.warning("%s trigger for %s was cancelled", trigger, task_id)
                return
            exc = done.exception()
            if exc is not None:
                logger.error(
                    "%s trigger for %s failed: %s", trigger, task_id, exc, exc_info=exc
                )
                self._failures.append(TriggerFailure(trigger, task_id, str(exc)))

        job.add_done_callback(observe)
        return job

    @property
    def pending(self) -> int:
        return len(self._pending)

    def recent_failures(self) -> list[TriggerFailure]:
        return list(self._failures)

    async def drain(self):
        """Wait until every scheduled trigger has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
