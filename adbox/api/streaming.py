"""AdBox — Server-Sent Events relay.

Bridges a fan-out registry subscription to an SSE response. Listeners may be
invoked from any thread, so events cross into the request's loop through
``call_soon_threadsafe``.
"""

import asyncio
import json
from typing import Any, AsyncIterator, Iterable

from fastapi import Request
from pydantic import BaseModel

from adbox.core.clock import utcnow
from adbox.core.logging import get_logger
from adbox.sync.events import EventRegistry

logger = get_logger("api.streaming")

PING_SECONDS = 10.0
MAX_QUEUED_EVENTS = 100

STREAM_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def format_sse(event: Any) -> str:
    if isinstance(event, BaseModel):
        data = event.model_dump_json()
    else:
        data = json.dumps(event, default=str)
    return f"data: {data}\n\n"


def _offer(queue: asyncio.Queue, event: Any) -> None:
    try:
        queue.put_nowait(event)
    except asyncio.QueueFull:
        # Slow viewer; it catches up through the poll endpoint
        logger.warning("SSE queue full, dropping event")


async def relay_events(
    request: Request,
    registry: EventRegistry,
    topic_keys: Iterable[str],
    ping_seconds: float = PING_SECONDS,
) -> AsyncIterator[str]:
    """Yield SSE frames for every event published under ``topic_keys``."""
    keys = list(topic_keys)
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue(maxsize=MAX_QUEUED_EVENTS)
    unsubscribe = registry.subscribe(
        keys, lambda event: loop.call_soon_threadsafe(_offer, queue, event)
    )
    try:
        yield format_sse({"type": "connected", "keys": keys})
        while True:
            if await request.is_disconnected():
                break
            try:
                event = await asyncio.wait_for(queue.get(), ping_seconds)
            except asyncio.TimeoutError:
                yield format_sse({"type": "ping", "t": utcnow().isoformat()})
                continue
            yield format_sse(event)
    except asyncio.CancelledError:
        return
    finally:
        unsubscribe()
