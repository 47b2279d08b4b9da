from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel

from tubewatch.monitor.models import Channel, Event, Item


class ChannelView(BaseModel):
    channel_id: str
    title: str
    description: Optional[str] = None
    thumbnail_url: Optional[str] = None
    is_active: bool
    last_checked_at: Optional[datetime] = None

    @classmethod
    def of(cls, channel: Channel) -> "ChannelView":
        return cls(**vars(channel))


class ItemView(BaseModel):
    video_id: str
    channel_id: str
    title: str
    published_at: datetime
    thumbnail_url: str
    type: str
    duration: Optional[int] = None
    scheduled_start: Optional[datetime] = None
    is_live_now: bool
    was_live_recording: bool
    is_upcoming: bool
    bookmarked: bool

    @classmethod
    def of(cls, item: Item) -> "ItemView":
        data = vars(item).copy()
        data["type"] = item.type.value
        return cls(**data)


class EventView(BaseModel):
    id: Optional[int]
    kind: str
    video_id: str
    channel_id: str
    data: Dict[str, Any]
    created_at: datetime

    @classmethod
    def of(cls, event: Event) -> "EventView":
        return cls(
            id=event.id,
            kind=event.kind.value,
            video_id=event.video_id,
            channel_id=event.channel_id,
            data=dict(event.data),
            created_at=event.created_at,
        )
