from collections import defaultdict
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from itertools import count
from typing import Any, Dict, List, Optional

from tubewatch.monitor.models import Channel, Event, Item, utcnow
from tubewatch.storage.base import Store, Upserted

_FAR_FUTURE = datetime.max.replace(tzinfo=timezone.utc)


class MemoryStore(Store):
    """Dictionary-backed store. Every method completes without awaiting, so each
    call is atomic with respect to other tasks on the loop."""

    def __init__(self):
        self._channels: Dict[str, Channel] = {}
        self._items: Dict[str, Item] = {}
        self._events: List[Event] = []
        self._ids = count(1)

    async def upsert_channel(self, channel: Channel) -> Upserted[Channel]:
        previous = self._channels.get(channel.channel_id)
        current = Channel(
            channel_id=channel.channel_id,
            title=channel.title,
            description=channel.description,
            thumbnail_url=channel.thumbnail_url,
            is_active=True,
            last_checked_at=previous.last_checked_at if previous else None,
        )
        self._channels[channel.channel_id] = current
        return Upserted(replace(previous) if previous else None, replace(current))

    async def get_channel(self, channel_id: str) -> Optional[Channel]:
        channel = self._channels.get(channel_id)
        return replace(channel) if channel else None

    async def list_active_channels(self) -> List[Channel]:
        return [replace(c) for c in self._channels.values() if c.is_active]

    async def deactivate_channel(self, channel_id: str) -> bool:
        channel = self._channels.get(channel_id)
        if channel is None:
            return False
        channel.is_active = False
        return True

    async def delete_channel(self, channel_id: str) -> bool:
        self._events = [e for e in self._events if e.channel_id != channel_id]
        for video_id in [v for v, i in self._items.items() if i.channel_id == channel_id]:
            del self._items[video_id]
        return self._channels.pop(channel_id, None) is not None

    async def touch_channel(self, channel_id: str, checked_at: datetime) -> None:
        channel = self._channels.get(channel_id)
        if channel is not None:
            channel.last_checked_at = checked_at

    async def upsert_item(self, item: Item) -> Upserted[Item]:
        previous = self._items.get(item.video_id)
        if previous is None:
            current = item.copy(bookmarked=False)
        else:
            # first sighting fixes ownership and publication time
            current = item.copy(
                channel_id=previous.channel_id,
                published_at=previous.published_at,
                bookmarked=previous.bookmarked,
            )
        self._items[item.video_id] = current
        return Upserted(previous.copy() if previous else None, current.copy())

    async def get_item(self, video_id: str) -> Optional[Item]:
        item = self._items.get(video_id)
        return item.copy() if item else None

    async def list_items_by_channel(self, channel_id: str, limit: int = 50) -> List[Item]:
        items = [i for i in self._items.values() if i.channel_id == channel_id]
        items.sort(key=lambda i: i.published_at, reverse=True)
        return [i.copy() for i in items[:limit]]

    async def list_live_items(self, channel_id: Optional[str] = None) -> List[Item]:
        return [
            i.copy() for i in self._items.values()
            if i.is_live_now and (channel_id is None or i.channel_id == channel_id)
        ]

    async def list_scheduled_items(self, channel_id: Optional[str] = None) -> List[Item]:
        items = [
            i for i in self._items.values()
            if i.is_upcoming and (channel_id is None or i.channel_id == channel_id)
        ]
        items.sort(key=lambda i: i.scheduled_start or _FAR_FUTURE)
        return [i.copy() for i in items]

    async def delete_item(self, video_id: str) -> bool:
        self._events = [e for e in self._events if e.video_id != video_id]
        return self._items.pop(video_id, None) is not None

    async def set_bookmark(self, video_id: str, bookmarked: bool) -> bool:
        item = self._items.get(video_id)
        if item is None:
            return False
        item.bookmarked = bookmarked
        return True

    async def list_bookmarked_items(self) -> List[Item]:
        return [i.copy() for i in self._items.values() if i.bookmarked]

    async def add_event(self, event: Event) -> Event:
        stored = Event(
            kind=event.kind,
            video_id=event.video_id,
            channel_id=event.channel_id,
            data=dict(event.data),
            created_at=event.created_at,
            id=next(self._ids),
        )
        self._events.append(stored)
        return stored

    async def list_recent_events(self, limit: int = 100) -> List[Event]:
        return sorted(self._events, key=lambda e: (e.created_at, e.id), reverse=True)[:limit]

    async def list_events_since(self, since: datetime) -> List[Event]:
        return sorted((e for e in self._events if e.created_at > since), key=lambda e: (e.created_at, e.id))

    async def list_channel_events(self, channel_id: str, limit: int = 50) -> List[Event]:
        events = [e for e in self._events if e.channel_id == channel_id]
        return sorted(events, key=lambda e: (e.created_at, e.id), reverse=True)[:limit]

    async def prune_events_older_than(self, age: timedelta) -> int:
        cutoff = utcnow() - age
        before = len(self._events)
        self._events = [e for e in self._events if e.created_at >= cutoff]
        return before - len(self._events)

    async def prune_items_exceeding(self, max_per_channel: int) -> int:
        by_channel: Dict[str, List[Item]] = defaultdict(list)
        for item in self._items.values():
            if not item.bookmarked:
                by_channel[item.channel_id].append(item)
        doomed: List[str] = []
        for items in by_channel.values():
            items.sort(key=lambda i: i.published_at, reverse=True)
            doomed.extend(i.video_id for i in items[max_per_channel:])
        for video_id in doomed:
            await self.delete_item(video_id)
        return len(doomed)

    async def prune_orphaned_events(self) -> int:
        before = len(self._events)
        self._events = [e for e in self._events if e.video_id in self._items]
        return before - len(self._events)

    async def stats(self) -> Dict[str, Any]:
        day_ago = utcnow() - timedelta(hours=24)
        items = list(self._items.values())
        return {
            "total_channels": len(self._channels),
            "active_channels": sum(1 for c in self._channels.values() if c.is_active),
            "total_items": len(items),
            "live_now": sum(1 for i in items if i.is_live_now),
            "scheduled": sum(1 for i in items if i.is_upcoming),
            "recent_events": sum(1 for e in self._events if e.created_at >= day_ago),
        }
