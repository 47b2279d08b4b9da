from datetime import timedelta
from fastapi import APIRouter
from pydantic import BaseModel, Field
from typing import List, Optional, Dict
from tubewatch.api import deps
from tubewatch.config.settings import settings
from tubewatch.monitor.classifier import FeedHintStrategy, PageSignalStrategy

router = APIRouter(prefix="/settings", tags=["settings"])

dynamic_overrides: Dict[str, str] = {}

class SettingsView(BaseModel):
    poll_interval_sec: int
    classify_videos: bool
    max_items_per_feed: int
    max_items_per_channel: int
    event_retention_days: float
    channel_ids: List[str]
    store_backend: str
    log_format: str
    metrics_port: Optional[int]
    api_port: int
    overrides: Dict[str, str]

class SettingsPatch(BaseModel):
    poll_interval_sec: Optional[int] = Field(None, ge=30, le=86400)
    classify_videos: Optional[bool] = None
    max_items_per_channel: Optional[int] = Field(None, ge=1, le=500)
    event_retention_days: Optional[float] = Field(None, gt=0, le=365)

@router.get("", response_model=SettingsView)
async def get_settings():
    return SettingsView(
        poll_interval_sec=settings.poll_interval_sec,
        classify_videos=settings.classify_videos,
        max_items_per_feed=settings.max_items_per_feed,
        max_items_per_channel=settings.max_items_per_channel,
        event_retention_days=settings.event_retention_days,
        channel_ids=settings.channel_ids,
        store_backend=settings.store_backend,
        log_format=settings.log_format,
        metrics_port=settings.metrics_port,
        api_port=settings.api_port,
        overrides=dynamic_overrides,
    )

@router.patch("", response_model=SettingsView)
async def patch_settings(patch: SettingsPatch):
    # changes reach the running monitor from its next pass on
    monitor = deps.current_monitor()
    if patch.poll_interval_sec is not None:
        settings.poll_interval_sec = patch.poll_interval_sec
        dynamic_overrides["poll_interval_sec"] = str(patch.poll_interval_sec)
        if monitor is not None:
            monitor.interval = patch.poll_interval_sec
    if patch.classify_videos is not None:
        settings.classify_videos = patch.classify_videos
        dynamic_overrides["classify_videos"] = str(patch.classify_videos).lower()
        if monitor is not None:
            client = monitor.aggregator.client
            monitor.classifier.strategy = PageSignalStrategy(client) if patch.classify_videos else FeedHintStrategy()
    if patch.max_items_per_channel is not None:
        settings.max_items_per_channel = patch.max_items_per_channel
        dynamic_overrides["max_items_per_channel"] = str(patch.max_items_per_channel)
        if monitor is not None:
            monitor.max_items_per_channel = patch.max_items_per_channel
    if patch.event_retention_days is not None:
        settings.event_retention_days = patch.event_retention_days
        dynamic_overrides["event_retention_days"] = str(patch.event_retention_days)
        if monitor is not None:
            monitor.event_retention = timedelta(days=patch.event_retention_days)
    return await get_settings()
