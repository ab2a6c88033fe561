"""Detection and requeueing of jobs that stopped making progress.

The runtime does not report heartbeats, so a job counts as stuck once it
has sat in an active status for longer than the staleness window since its
attempt started.
"""

import asyncio
import logging
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from agent_board.core import chat as chat_mod
from agent_board.core.events import EventBus
from agent_board.core.jobs import list_jobs, save_job
from agent_board.db.models import ACTIVE_JOB_STATUSES, JobRecord, utcnow

logger = logging.getLogger(__name__)

STALE_THRESHOLD = timedelta(minutes=5)
MAX_ATTEMPTS = 3


@dataclass
class StuckJob:
    task_id: str
    job_type: str
    record: JobRecord


@dataclass
class RecoveredJob:
    task_id: str
    job_type: str
    previous_status: str
    status: str = "pending"


class RecoveryScanner:
    def __init__(
        self,
        db: sqlite3.Connection,
        stale_after: timedelta = STALE_THRESHOLD,
        clock: Callable[[], datetime] = utcnow,
        max_attempts: int = MAX_ATTEMPTS,
    ):
        self.db = db
        self.stale_after = stale_after
        self.clock = clock
        self.max_attempts = max_attempts

    def scan(self) -> list[StuckJob]:
        """List active jobs older than the staleness window. Read-only."""
        now = self.clock()
        stuck = []
        for record in list_jobs(self.db):
            if record.status not in ACTIVE_JOB_STATUSES or record.started_at is None:
                continue
            if now - record.started_at > self.stale_after:
                stuck.append(StuckJob(record.task_id, record.job_type, record))
        return stuck

    def recover(self) -> list[RecoveredJob]:
        """Requeue every stuck job as pending with no bound agent.

        A job already on its last allowed attempt is marked ``error``
        instead, which takes it out of later scans.
        """
        recovered = []
        for item in self.scan():
            try:
                if item.record.attempt >= self.max_attempts:
                    recovered.append(self._abandon(item))
                else:
                    recovered.append(self._requeue(item))
            except Exception:
                logger.exception(
                    "Failed to recover %s job for %s", item.job_type, item.task_id
                )
        if recovered:
            logger.info("Recovered %d stuck job(s)", len(recovered))
        return recovered

    def _requeue(self, item: StuckJob) -> RecoveredJob:
        record = item.record
        previous_status = record.status
        minutes = int(self.stale_after.total_seconds() // 60)

        record.status = "pending"
        record.agent_id = None
        record.session_key = None
        record.attempt += 1
        record.started_at = self.clock()
        save_job(self.db, record)

        chat_mod.append_message(
            self.db,
            item.task_id,
            f"🔄 {item.job_type.capitalize()} job recovered from stuck \"{previous_status}\" "
            f"status after {minutes}+ minutes. Re-queued for processing.",
            role="agent",
            agent_id="system",
        )
        logger.info(
            "Requeued %s job for %s (was %s, attempt %d)",
            item.job_type, item.task_id, previous_status, record.attempt,
        )
        return RecoveredJob(item.task_id, item.job_type, previous_status)

    def _abandon(self, item: StuckJob) -> RecoveredJob:
        record = item.record
        previous_status = record.status

        record.status = "error"
        record.error = (
            f"Gave up after {record.attempt} attempt(s); last stuck in \"{previous_status}\""
        )
        record.completed_at = self.clock()
        save_job(self.db, record)

        chat_mod.append_message(
            self.db,
            item.task_id,
            f"❌ {item.job_type.capitalize()} job stuck in \"{previous_status}\" after "
            f"{record.attempt} attempt(s). Giving up; start it again to retry.",
            role="agent",
            agent_id="system",
        )
        logger.warning(
            "Abandoned %s job for %s after %d attempt(s)",
            item.job_type, item.task_id, record.attempt,
        )
        return RecoveredJob(item.task_id, item.job_type, previous_status, status="error")


class RecoverySweeper:
    """Runs ``recover()`` periodically inside the server's event loop."""

    def __init__(self, scanner: RecoveryScanner, bus: EventBus, interval: float = 60.0):
        self.scanner = scanner
        self.bus = bus
        self.interval = interval
        self._task: asyncio.Task | None = None

    def start(self):
        """Start the sweep loop."""
        if self._task and not self._task.done():
            return
        self._task = asyncio.create_task(self._run(), name="recovery-sweeper")
        logger.info("Recovery sweeper started (every %.0fs)", self.interval)

    async def stop(self):
        """Cancel the sweep loop and wait for it to exit."""
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Recovery sweeper stopped")

    def sweep_once(self) -> list[RecoveredJob]:
        recovered = self.scanner.recover()
        if recovered:
            self.bus.emit("board:refresh", {"recovered": len(recovered)})
        return recovered

    async def _run(self):
        """Main sweep loop."""
        while True:
            try:
                self.sweep_once()
            except Exception:
                logger.exception("Error in recovery sweep")
            await asyncio.sleep(self.interval)
