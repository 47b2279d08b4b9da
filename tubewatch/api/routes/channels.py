from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from typing import List

from tubewatch.api.deps import get_monitor
from tubewatch.api.schemas import ChannelView, ItemView
from tubewatch.monitor.poller import Monitor
from tubewatch.net.client import FetchError

router = APIRouter(prefix="/channels", tags=["channels"])

class AddChannel(BaseModel):
    url: str

class CheckResponse(BaseModel):
    channel_id: str
    items: int
    events: int

@router.get("", response_model=List[ChannelView])
async def list_channels(monitor: Monitor = Depends(get_monitor)):
    return [ChannelView.of(c) for c in await monitor.store.list_active_channels()]

@router.post("", response_model=ChannelView, status_code=201)
async def add_channel(body: AddChannel, monitor: Monitor = Depends(get_monitor)):
    try:
        channel = await monitor.add_channel(body.url)
    except FetchError as e:
        raise HTTPException(502, f"Channel lookup failed: {e}")
    if channel is None:
        raise HTTPException(404, f"Channel not found: {body.url}")
    return ChannelView.of(channel)

@router.delete("/{channel_id}", status_code=204)
async def remove_channel(channel_id: str, hard: bool = False, monitor: Monitor = Depends(get_monitor)):
    removed = await (monitor.delete_channel(channel_id) if hard else monitor.remove_channel(channel_id))
    if not removed:
        raise HTTPException(404, f"Channel not found: {channel_id}")

@router.get("/{channel_id}/videos", response_model=List[ItemView])
async def channel_videos(channel_id: str, limit: int = 50, monitor: Monitor = Depends(get_monitor)):
    if await monitor.store.get_channel(channel_id) is None:
        raise HTTPException(404, f"Channel not found: {channel_id}")
    return [ItemView.of(i) for i in await monitor.store.list_items_by_channel(channel_id, limit)]

@router.post("/{channel_id}/check", response_model=CheckResponse)
async def check_channel(channel_id: str, monitor: Monitor = Depends(get_monitor)):
    result = await monitor.check_channel(channel_id)
    if result is None:
        raise HTTPException(502, f"Check failed for {channel_id}")
    if result.skipped:
        raise HTTPException(404, f"Channel not found: {channel_id}")
    return CheckResponse(channel_id=channel_id, items=len(result.items), events=result.events)
