"""Carries board events between processes sharing one database.

The CLI and the stdio MCP server run in their own processes with their own
``EventBus``. They record every event in the ``event_log`` table; the web
server tails that table and republishes foreign rows on its bus, so SSE
clients see changes no matter which process made them.
"""

import asyncio
import json
import logging
import sqlite3
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta

from agent_board.core.events import EventBus
from agent_board.db.models import EVENT_TYPES, BoardEvent, parse_dt, utcnow

logger = logging.getLogger(__name__)

RETENTION = timedelta(hours=1)


def new_origin() -> str:
    return uuid.uuid4().hex[:12]


class EventJournal:
    """Bus subscriber that appends each event to ``event_log``."""

    def __init__(self, db: sqlite3.Connection, origin: str):
        self.db = db
        self.origin = origin

    def attach(self, bus: EventBus) -> Callable[[], None]:
        return bus.subscribe(self.record)

    def record(self, event: BoardEvent):
        self.db.execute(
            "INSERT INTO event_log (origin, event_type, payload, created_at) VALUES (?, ?, ?, ?)",
            (
                self.origin,
                event.type,
                json.dumps(event.payload, default=str),
                event.timestamp.isoformat(),
            ),
        )
        self.db.commit()


class EventRelay:
    """Republishes events recorded by other processes on the local bus."""

    def __init__(
        self,
        db: sqlite3.Connection,
        bus: EventBus,
        origin: str,
        interval: float = 1.0,
        retention: timedelta = RETENTION,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.bus = bus
        self.origin = origin
        self.interval = interval
        self.retention = retention
        self.clock = clock
        self._task: asyncio.Task | None = None
        # Only events written after startup are relayed.
        row = db.execute("SELECT COALESCE(MAX(id), 0) FROM event_log").fetchone()
        self._cursor = row[0]

    def poll_once(self) -> int:
        """Publish rows newer than the cursor. Returns how many were relayed."""
        rows = self.db.execute(
            "SELECT * FROM event_log WHERE id > ? ORDER BY id", (self._cursor,)
        ).fetchall()
        relayed = 0
        for row in rows:
            self._cursor = row["id"]
            if row["origin"] == self.origin:
                continue
            if row["event_type"] not in EVENT_TYPES:
                logger.warning("Dropping unknown relayed event %s", row["event_type"])
                continue
            payload = json.loads(row["payload"]) if row["payload"] else None
            self.bus.publish(
                BoardEvent(
                    type=row["event_type"],
                    payload=payload,
                    timestamp=parse_dt(row["created_at"]),
                )
            )
            relayed += 1
        self._prune()
        return relayed

    def _prune(self):
        cutoff = (self.clock() - self.retention).isoformat()
        cur = self.db.execute("DELETE FROM event_log WHERE created_at < ?", (cutoff,))
        if cur.rowcount:
            logger.debug("Pruned %d relayed event(s)", cur.rowcount)
        self.db.commit()

    def start(self):
        if self._task and not self._task.done():
            return
        self._task = asyncio.create_task(self._run(), name="event-relay")
        logger.info("Event relay started (every %.1fs)", self.interval)

    async def stop(self):
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _run(self):
        while True:
            try:
                self.poll_once()
            except sqlite3.Error:
                logger.exception("Error relaying board events")
            await asyncio.sleep(self.interval)
