"""Refinement and execution jobs delegated to the agent runtime.

One record exists per (task, job type). Starting a job replaces the record;
the runtime acknowledges it and reports completion through callbacks. The
record's ``started_at`` marks when the current attempt began and is what the
recovery scanner measures staleness against.
"""

import logging
import sqlite3

from agent_board.core import chat as chat_mod
from agent_board.core.board import Board
from agent_board.core.errors import (
    ConflictError,
    DownstreamUnavailable,
    NotFoundError,
    ValidationError,
)
from agent_board.core.prompts import build_prompt
from agent_board.db.models import (
    JOB_STATUSES,
    JOB_TYPES,
    REFINEMENT_PLACEHOLDER,
    JobRecord,
    parse_dt,
    utcnow,
)
from agent_board.integrations.runtime import AgentRuntimeClient

logger = logging.getLogger(__name__)

_LABELS = {"refinement": "Refinement", "execution": "Execution"}


# ── Storage ─────────────────────────────────────────────────────────────────


def _check_job_type(job_type: str):
    if job_type not in JOB_TYPES:
        raise ValidationError(
            f"Invalid job type '{job_type}'. Must be one of: {', '.join(JOB_TYPES)}"
        )


def get_job(db: sqlite3.Connection, task_id: str, job_type: str) -> JobRecord | None:
    row = db.execute(
        "SELECT * FROM jobs WHERE task_id = ? AND job_type = ?",
        (task_id, job_type),
    ).fetchone()
    if not row:
        return None
    return _row_to_job(row)


def list_jobs(
    db: sqlite3.Connection,
    status: str | None = None,
    job_type: str | None = None,
) -> list[JobRecord]:
    """List stored job records, oldest attempt first."""
    query = "SELECT * FROM jobs WHERE 1=1"
    params: list = []
    if status:
        query += " AND status = ?"
        params.append(status)
    if job_type:
        query += " AND job_type = ?"
        params.append(job_type)
    query += " ORDER BY started_at ASC"
    return [_row_to_job(r) for r in db.execute(query, params).fetchall()]


def replace_job(db: sqlite3.Connection, record: JobRecord) -> JobRecord:
    """Insert a record, overwriting any existing one for the same task and type."""
    db.execute(
        """INSERT INTO jobs (task_id, job_type, status, agent_id, prompt, session_key,
                             started_at, completed_at, summary, error, attempt, version)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 1)
           ON CONFLICT(task_id, job_type) DO UPDATE SET
               status = excluded.status,
               agent_id = excluded.agent_id,
               prompt = excluded.prompt,
               session_key = excluded.session_key,
               started_at = excluded.started_at,
               completed_at = excluded.completed_at,
               summary = excluded.summary,
               error = excluded.error,
               attempt = excluded.attempt,
               version = jobs.version + 1""",
        _job_values(record),
    )
    db.commit()
    return get_job(db, record.task_id, record.job_type)


def save_job(db: sqlite3.Connection, record: JobRecord) -> JobRecord:
    """Write a record back only if it is still the version that was read."""
    cursor = db.execute(
        """UPDATE jobs SET status = ?, agent_id = ?, prompt = ?, session_key = ?,
                          started_at = ?, completed_at = ?, summary = ?, error = ?,
                          attempt = ?, version = version + 1
           WHERE task_id = ? AND job_type = ? AND version = ?""",
        (
            record.status, record.agent_id, record.prompt, record.session_key,
            _iso(record.started_at), _iso(record.completed_at), record.summary,
            record.error, record.attempt,
            record.task_id, record.job_type, record.version,
        ),
    )
    if cursor.rowcount == 0:
        db.rollback()
        raise ConflictError(
            f"{_LABELS[record.job_type]} job for task '{record.task_id}' changed concurrently"
        )
    db.commit()
    return get_job(db, record.task_id, record.job_type)


def _iso(dt) -> str | None:
    return dt.isoformat() if dt else None


def _job_values(record: JobRecord) -> tuple:
    return (
        record.task_id, record.job_type, record.status, record.agent_id, record.prompt,
        record.session_key, _iso(record.started_at), _iso(record.completed_at),
        record.summary, record.error, record.attempt,
    )


def _row_to_job(row: sqlite3.Row) -> JobRecord:
    return JobRecord(
        task_id=row["task_id"],
        job_type=row["job_type"],
        status=row["status"],
        agent_id=row["agent_id"],
        prompt=row["prompt"],
        session_key=row["session_key"],
        started_at=parse_dt(row["started_at"]),
        completed_at=parse_dt(row["completed_at"]),
        summary=row["summary"],
        error=row["error"],
        attempt=row["attempt"],
        version=row["version"],
    )


# ── Tracker ─────────────────────────────────────────────────────────────────


class JobTracker:
    """Starts, acknowledges and completes delegated jobs."""

    def __init__(
        self,
        board: Board,
        runtime: AgentRuntimeClient,
        default_agent: str = "worker-code",
        job_timeout_seconds: int = 900,
    ):
        self.board = board
        self.runtime = runtime
        self.default_agent = default_agent
        self.job_timeout_seconds = job_timeout_seconds

    @property
    def db(self) -> sqlite3.Connection:
        return self.board.db

    async def start(
        self,
        task_id: str,
        job_type: str,
        agent_id: str | None = None,
        prompt: str | None = None,
    ) -> JobRecord:
        """Record a pending job and notify the runtime.

        A dispatch failure is stored on the returned record as ``error``
        rather than raised.
        """
        _check_job_type(job_type)
        task = self.board.get(task_id)
        if job_type == "execution" and not task.is_refined:
            raise ValidationError("Task must be refined before execution")

        agent_id = agent_id or task.assignee or self.default_agent
        if prompt is None:
            transcript = chat_mod.format_transcript(chat_mod.list_messages(self.db, task_id))
            prompt = build_prompt(job_type, task, transcript)

        if job_type == "execution" and task.status == "todo":
            await self.board.move(task_id, "in_progress")

        previous = get_job(self.db, task_id, job_type)
        if previous and previous.is_active:
            logger.info(
                "Superseding %s job for %s (was %s)", job_type, task_id, previous.status
            )

        record = replace_job(
            self.db,
            JobRecord(
                task_id=task_id,
                job_type=job_type,
                status="pending",
                agent_id=agent_id,
                prompt=prompt,
                started_at=utcnow(),
            ),
        )

        if job_type == "refinement":
            self.board.update(task_id, {"refinement": REFINEMENT_PLACEHOLDER})
            announce = "⏳ Analyzing task and generating refinement..."
        else:
            announce = "🚀 Starting execution..."
        self.board.chat(task_id, announce, role="agent", agent_id=agent_id)

        try:
            receipt = await self.runtime.spawn(
                prompt, agent_id, label=f"{job_type}:{task_id}",
                timeout_seconds=self.job_timeout_seconds,
            )
        except DownstreamUnavailable as e:
            logger.warning("Dispatch of %s job for %s failed: %s", job_type, task_id, e)
            record.status = "error"
            record.error = str(e)
            record.completed_at = utcnow()
            record = self._save_latest(record)
            self.board.chat(
                task_id,
                f"❌ Could not dispatch {job_type}: {e}",
                role="agent",
                agent_id=agent_id,
            )
            return record

        if not receipt.accepted:
            return record

        record.status = "spawning"
        record.session_key = receipt.session_key
        logger.info("Dispatched %s job for %s to %s", job_type, task_id, agent_id)
        return self._save_latest(record)

    def poll(self, task_id: str, job_type: str) -> JobRecord:
        """Current record for a task's job, or an idle record if none exists."""
        _check_job_type(job_type)
        return get_job(self.db, task_id, job_type) or JobRecord.idle(task_id, job_type)

    def list_jobs(self, status: str | None = None, job_type: str | None = None) -> list[JobRecord]:
        if status and status not in JOB_STATUSES:
            raise ValidationError(f"Invalid job status '{status}'")
        if job_type:
            _check_job_type(job_type)
        return list_jobs(self.db, status=status, job_type=job_type)

    def acknowledge(
        self,
        task_id: str,
        job_type: str,
        session_key: str | None = None,
        agent_id: str | None = None,
    ) -> JobRecord:
        """Runtime reports the job is actually running."""
        record = self._require(task_id, job_type)
        if record.status == "running":
            return record
        if not record.is_active:
            raise ValidationError(
                f"{_LABELS[job_type]} job for task '{task_id}' is already {record.status}"
            )
        record.status = "running"
        record.session_key = session_key or record.session_key
        record.agent_id = agent_id or record.agent_id
        return save_job(self.db, record)

    async def complete(
        self,
        task_id: str,
        job_type: str,
        result: str | None = None,
        error: str | None = None,
        agent_id: str | None = None,
    ) -> JobRecord:
        """Ingest the runtime's completion report.

        Repeating the call for a job that is already done changes nothing.
        """
        record = self._require(task_id, job_type)
        task = self.board.get(task_id)
        if record.status == "done":
            logger.info("%s job for %s already done; ignoring callback", job_type, task_id)
            return record

        label = _LABELS[job_type]
        agent_id = agent_id or record.agent_id

        if error:
            record.status = "error"
            record.error = error
            record.agent_id = agent_id
            record.completed_at = utcnow()
            record = save_job(self.db, record)
            self.board.chat(task_id, f"❌ {label} failed: {error}", role="agent", agent_id=agent_id)
            return record

        if job_type == "refinement" and (not result or not result.strip()):
            raise ValidationError("refinement content required")

        record.status = "done"
        record.error = None
        record.agent_id = agent_id
        record.completed_at = utcnow()
        record.summary = "Refinement complete" if job_type == "refinement" else (result or "Completed")
        record = save_job(self.db, record)

        if job_type == "refinement":
            self.board.update(task_id, {"refinement": result})
            self.board.chat(task_id, "✅ Refinement complete.", role="agent", agent_id=agent_id)
        else:
            if task.status == "in_progress":
                await self.board.move(task_id, "review")
            else:
                logger.info(
                    "Execution for %s finished while task is %s; status left as is",
                    task_id, task.status,
                )
            self.board.chat(
                task_id, f"✅ Execution complete: {record.summary}", role="agent", agent_id=agent_id
            )
        return record

    def _require(self, task_id: str, job_type: str) -> JobRecord:
        _check_job_type(job_type)
        self.board.get(task_id)
        record = get_job(self.db, task_id, job_type)
        if not record:
            raise NotFoundError(f"No {job_type} job for task: {task_id}")
        return record

    def _save_latest(self, record: JobRecord) -> JobRecord:
        """Save, or return the stored record if a callback got there first."""
        try:
            return save_job(self.db, record)
        except ConflictError:
            logger.info(
                "%s job for %s changed during dispatch; keeping stored state",
                record.job_type, record.task_id,
            )
            return get_job(self.db, record.task_id, record.job_type)
