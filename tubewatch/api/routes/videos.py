from fastapi import APIRouter, Depends, HTTPException
from typing import List, Optional

from tubewatch.api.deps import get_monitor
from tubewatch.api.schemas import ItemView
from tubewatch.monitor.poller import Monitor

router = APIRouter(prefix="/videos", tags=["videos"])

@router.get("/live", response_model=List[ItemView])
async def live(channel_id: Optional[str] = None, monitor: Monitor = Depends(get_monitor)):
    return [ItemView.of(i) for i in await monitor.store.list_live_items(channel_id)]

@router.get("/scheduled", response_model=List[ItemView])
async def scheduled(channel_id: Optional[str] = None, monitor: Monitor = Depends(get_monitor)):
    return [ItemView.of(i) for i in await monitor.store.list_scheduled_items(channel_id)]

@router.get("/bookmarks", response_model=List[ItemView])
async def bookmarks(monitor: Monitor = Depends(get_monitor)):
    return [ItemView.of(i) for i in await monitor.store.list_bookmarked_items()]

@router.post("/{video_id}/bookmark", response_model=ItemView)
async def bookmark(video_id: str, monitor: Monitor = Depends(get_monitor)):
    return await _set_bookmark(monitor, video_id, True)

@router.delete("/{video_id}/bookmark", response_model=ItemView)
async def unbookmark(video_id: str, monitor: Monitor = Depends(get_monitor)):
    return await _set_bookmark(monitor, video_id, False)

async def _set_bookmark(monitor: Monitor, video_id: str, value: bool) -> ItemView:
    if not await monitor.store.set_bookmark(video_id, value):
        raise HTTPException(404, f"Video not found: {video_id}")
    return ItemView.of(await monitor.store.get_item(video_id))
