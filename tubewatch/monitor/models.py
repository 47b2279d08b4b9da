from dataclasses import dataclass, field, asdict, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ItemType(str, Enum):
    VIDEO = "video"
    SHORT = "short"
    LIVE = "live"
    SCHEDULED = "scheduled"
    RECORDING = "recording"


class FeedCategory(str, Enum):
    LIVES = "lives"
    VIDEOS = "videos"
    SHORTS = "shorts"


# Merge order: a video present in both lives and videos is first seen as a recording.
FEED_ORDER = (FeedCategory.LIVES, FeedCategory.VIDEOS, FeedCategory.SHORTS)


class EventKind(str, Enum):
    NEW_VIDEO = "new_video"
    LIVE_STARTED = "live_started"
    LIVE_ENDED = "live_ended"
    SCHEDULED_LIVE = "scheduled_live"
    VIDEO_UPDATED = "video_updated"


@dataclass
class Channel:
    channel_id: str
    title: str = ""
    description: Optional[str] = None
    thumbnail_url: Optional[str] = None
    is_active: bool = True
    last_checked_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["last_checked_at"] = self.last_checked_at.isoformat() if self.last_checked_at else None
        return data


@dataclass
class Signals:
    """Raw classification signals for a single watch or live page."""
    is_live_now: bool = False
    is_upcoming: bool = False
    was_live_recording: bool = False
    duration: Optional[int] = None
    scheduled_start: Optional[datetime] = None


@dataclass
class ItemStub:
    video_id: str
    title: str
    published_at: datetime
    thumbnail_url: str = ""


@dataclass
class Item:
    video_id: str
    channel_id: str
    title: str
    published_at: datetime
    thumbnail_url: str = ""
    type: ItemType = ItemType.VIDEO
    duration: Optional[int] = None
    scheduled_start: Optional[datetime] = None
    is_live_now: bool = False
    was_live_recording: bool = False
    is_upcoming: bool = False
    bookmarked: bool = False

    def copy(self, **changes) -> "Item":
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["type"] = self.type.value
        data["published_at"] = self.published_at.isoformat()
        data["scheduled_start"] = self.scheduled_start.isoformat() if self.scheduled_start else None
        return data


@dataclass(frozen=True)
class Event:
    kind: EventKind
    video_id: str
    channel_id: str
    data: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)
    id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "video_id": self.video_id,
            "channel_id": self.channel_id,
            "data": dict(self.data),
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class CycleSummary:
    channels: int
    items: int
    events: int

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)
