"""Server-sent events stream of board events."""

import asyncio
import json
import logging
from collections.abc import AsyncIterator

from starlette.requests import Request
from starlette.responses import StreamingResponse

from agent_board.core.events import EventBus
from agent_board.core.serialize import board_event_dict
from agent_board.db.models import BoardEvent

logger = logging.getLogger(__name__)

KEEPALIVE = ": keepalive\n\n"


def format_sse(data: dict) -> str:
    return f"data: {json.dumps(data)}\n\n"


async def sse_events(bus: EventBus, keepalive_seconds: float = 30.0) -> AsyncIterator[str]:
    """Yield SSE frames for every event emitted while the stream is open.

    The bus subscription exists only while the generator is running and is
    removed when it is closed or cancelled.
    """
    queue: asyncio.Queue[BoardEvent] = asyncio.Queue()
    unsubscribe = bus.subscribe(queue.put_nowait)
    logger.debug("SSE client connected (%d subscribers)", bus.connection_count)
    try:
        yield format_sse({"type": "connected"})
        while True:
            try:
                event = await asyncio.wait_for(queue.get(), timeout=keepalive_seconds)
            except asyncio.TimeoutError:
                yield KEEPALIVE
                continue
            yield format_sse(board_event_dict(event))
    finally:
        unsubscribe()
        logger.debug("SSE client disconnected (%d subscribers)", bus.connection_count)


async def api_events(request: Request):
    ctx = request.app.state.ctx
    return StreamingResponse(
        sse_events(ctx.bus, ctx.config.keepalive_seconds),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )
