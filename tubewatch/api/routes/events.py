import asyncio
import json
from datetime import datetime
from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from typing import List, Optional

from tubewatch.api.deps import get_broadcaster, get_monitor
from tubewatch.api.schemas import EventView
from tubewatch.monitor.events import Broadcaster
from tubewatch.monitor.poller import Monitor

router = APIRouter(prefix="/events", tags=["events"])

KEEPALIVE_SEC = 15

def format_sse(message: dict) -> str:
    return f"event: {message['event']}\ndata: {json.dumps(message['data'], default=str)}\n\n"

@router.get("", response_model=List[EventView])
async def recent_events(
    limit: int = Query(50, ge=1, le=500),
    since: Optional[datetime] = None,
    channel_id: Optional[str] = None,
    monitor: Monitor = Depends(get_monitor),
):
    if since is not None:
        events = await monitor.store.list_events_since(since)
    elif channel_id is not None:
        events = await monitor.store.list_channel_events(channel_id, limit)
    else:
        events = await monitor.store.list_recent_events(limit)
    return [EventView.of(e) for e in events]

@router.get("/stream")
async def stream(broadcaster: Broadcaster = Depends(get_broadcaster)):
    queue = broadcaster.open_stream()

    async def _messages():
        try:
            yield ": connected\n\n"
            while True:
                try:
                    message = await asyncio.wait_for(queue.get(), timeout=KEEPALIVE_SEC)
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
                    continue
                yield format_sse(message)
        finally:
            broadcaster.close_stream(queue)

    return StreamingResponse(
        _messages(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
