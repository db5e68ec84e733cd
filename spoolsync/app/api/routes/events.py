"""Server-sent event stream of spool synchronization events."""

import asyncio
import json
import logging
from collections.abc import AsyncIterator

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from spoolsync.app.core.config import settings
from spoolsync.app.core.events import SpoolEventBroadcaster
from spoolsync.app.schemas.events import SyncEventBase

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/events", tags=["events"])


def get_broadcaster(request: Request) -> SpoolEventBroadcaster:
    """Broadcaster created by the application lifespan."""
    return request.app.state.broadcaster


def format_frame(data: dict) -> str:
    return f"data: {json.dumps(data)}\n\n"


async def event_stream(
    broadcaster: SpoolEventBroadcaster,
    request: Request,
    heartbeat_seconds: float = 30.0,
    reconnect_seconds: float = 5.0,
) -> AsyncIterator[str]:
    """Yield SSE frames for every event published while the client is connected."""
    queue: asyncio.Queue[SyncEventBase] = asyncio.Queue()
    callback = broadcaster.subscribe(queue.put_nowait)
    logger.info("Live update client connected (%d active)", broadcaster.subscriber_count)

    try:
        yield f"retry: {int(reconnect_seconds * 1000)}\n\n"
        yield format_frame({"type": "connected"})

        while not broadcaster.closed:
            if await request.is_disconnected():
                break
            try:
                event = await asyncio.wait_for(queue.get(), timeout=heartbeat_seconds)
            except asyncio.TimeoutError:
                yield format_frame({"type": "heartbeat"})
                continue
            yield format_frame(event.model_dump(mode="json"))
    finally:
        broadcaster.unsubscribe(callback)
        logger.info("Live update client disconnected (%d active)", broadcaster.subscriber_count)


@router.get("/")
async def stream_events(
    request: Request,
    broadcaster: SpoolEventBroadcaster = Depends(get_broadcaster),
):
    """Stream usage, assignment and warning events as they happen."""
    return StreamingResponse(
        event_stream(
            broadcaster,
            request,
            heartbeat_seconds=settings.event_heartbeat_seconds,
            reconnect_seconds=settings.event_reconnect_seconds,
        ),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
