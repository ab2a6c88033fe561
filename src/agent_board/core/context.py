"""Wiring of the board services for one process."""

import sqlite3
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import timedelta

from agent_board.config import Config
from agent_board.core.board import Board
from agent_board.core.dispatcher import WorkflowDispatcher
from agent_board.core.events import EventBus
from agent_board.core.jobs import JobTracker
from agent_board.core.pulls import PullRequestOpener
from agent_board.core.recovery import RecoveryScanner, RecoverySweeper
from agent_board.core.relay import EventJournal, EventRelay, new_origin
from agent_board.core.workflow import TransitionGuard
from agent_board.db.engine import init_db
from agent_board.integrations.runtime import AgentRuntimeClient


@dataclass
class BoardContext:
    config: Config
    db: sqlite3.Connection
    bus: EventBus
    board: Board
    runtime: AgentRuntimeClient
    jobs: JobTracker
    dispatcher: WorkflowDispatcher
    scanner: RecoveryScanner
    sweeper: RecoverySweeper
    relay: EventRelay
    journal: EventJournal | None = None

    async def aclose(self):
        await self.sweeper.stop()
        await self.relay.stop()
        await self.runtime.aclose()
        self.db.close()


def build_context(
    config: Config,
    db: sqlite3.Connection | None = None,
    bus: EventBus | None = None,
    runtime: AgentRuntimeClient | None = None,
    pull_requests: Callable[[str], Awaitable[object]] | None = None,
    journal: bool = False,
) -> BoardContext:
    """Create the services sharing one connection and one event bus.

    Processes other than the web server pass ``journal=True`` so their
    events are recorded for the server to relay.
    """
    db = db or init_db(config.db_path)
    bus = bus or EventBus()
    board = Board(db, bus, TransitionGuard.from_preset(config.transitions))
    runtime = runtime or AgentRuntimeClient(
        config.runtime_url,
        config.runtime_token,
        spawn_path=config.runtime_spawn_path,
        timeout=config.runtime_timeout,
    )
    jobs = JobTracker(
        board,
        runtime,
        default_agent=config.default_agent,
        job_timeout_seconds=config.job_timeout_seconds,
    )
    dispatcher = WorkflowDispatcher(jobs, pull_requests or PullRequestOpener(board, config))
    board.dispatcher = dispatcher
    scanner = RecoveryScanner(
        db,
        stale_after=timedelta(minutes=config.stale_minutes),
        max_attempts=config.max_attempts,
    )
    sweeper = RecoverySweeper(scanner, bus, interval=config.sweep_seconds)
    origin = new_origin()
    relay = EventRelay(db, bus, origin, interval=config.relay_seconds)
    event_journal = None
    if journal:
        event_journal = EventJournal(db, origin)
        event_journal.attach(bus)
    return BoardContext(
        config=config,
        db=db,
        bus=bus,
        board=board,
        runtime=runtime,
        jobs=jobs,
        dispatcher=dispatcher,
        scanner=scanner,
        sweeper=sweeper,
        relay=relay,
        journal=event_journal,
    )
