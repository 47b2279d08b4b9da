"""
Abstract store interface for channels, items and events.

Implementations:
- MemoryStore: process-local dictionaries, used by tests and STORE_BACKEND=memory
- SqliteStore: single-file SQLite database
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Generic, List, Optional, TypeVar

from tubewatch.monitor.models import Channel, Event, Item

T = TypeVar("T")


@dataclass
class Upserted(Generic[T]):
    previous: Optional[T]
    current: T

    @property
    def created(self) -> bool:
        return self.previous is None


@dataclass
class CleanupResult:
    deleted_items: int = 0
    deleted_events: int = 0
    deleted_orphan_events: int = 0


class Store(ABC):
    # channels

    @abstractmethod
    async def upsert_channel(self, channel: Channel) -> Upserted[Channel]:
        """Insert or update channel metadata and reactivate it. Returns previous and new."""

    @abstractmethod
    async def get_channel(self, channel_id: str) -> Optional[Channel]:
        pass

    @abstractmethod
    async def list_active_channels(self) -> List[Channel]:
        pass

    @abstractmethod
    async def deactivate_channel(self, channel_id: str) -> bool:
        pass

    @abstractmethod
    async def delete_channel(self, channel_id: str) -> bool:
        """Hard delete the channel together with its items and events."""

    @abstractmethod
    async def touch_channel(self, channel_id: str, checked_at: datetime) -> None:
        pass

    # items

    @abstractmethod
    async def upsert_item(self, item: Item) -> Upserted[Item]:
        """
        Insert or update an item atomically and return the previous value.

        The stored bookmark flag always wins over the incoming one.
        """

    @abstractmethod
    async def get_item(self, video_id: str) -> Optional[Item]:
        pass

    @abstractmethod
    async def list_items_by_channel(self, channel_id: str, limit: int = 50) -> List[Item]:
        """Newest first by published time."""

    @abstractmethod
    async def list_live_items(self, channel_id: Optional[str] = None) -> List[Item]:
        pass

    @abstractmethod
    async def list_scheduled_items(self, channel_id: Optional[str] = None) -> List[Item]:
        """Upcoming items ordered by scheduled start."""

    @abstractmethod
    async def delete_item(self, video_id: str) -> bool:
        """Delete an item and its events."""

    @abstractmethod
    async def set_bookmark(self, video_id: str, bookmarked: bool) -> bool:
        pass

    @abstractmethod
    async def list_bookmarked_items(self) -> List[Item]:
        pass

    # events

    @abstractmethod
    async def add_event(self, event: Event) -> Event:
        """Persist an event and return it with its assigned id."""

    @abstractmethod
    async def list_recent_events(self, limit: int = 100) -> List[Event]:
        """Newest first."""

    @abstractmethod
    async def list_events_since(self, since: datetime) -> List[Event]:
        """Oldest first."""

    @abstractmethod
    async def list_channel_events(self, channel_id: str, limit: int = 50) -> List[Event]:
        pass

    # retention

    @abstractmethod
    async def prune_events_older_than(self, age: timedelta) -> int:
        pass

    @abstractmethod
    async def prune_items_exceeding(self, max_per_channel: int) -> int:
        """Keep the newest ``max_per_channel`` unbookmarked items per channel.

        Bookmarked items are never deleted and do not count against the limit.
        """

    @abstractmethod
    async def prune_orphaned_events(self) -> int:
        pass

    async def run_cleanup(self, *, max_items_per_channel: int, event_age: timedelta) -> CleanupResult:
        return CleanupResult(
            deleted_items=await self.prune_items_exceeding(max_items_per_channel),
            deleted_events=await self.prune_events_older_than(event_age),
            deleted_orphan_events=await self.prune_orphaned_events(),
        )

    @abstractmethod
    async def stats(self) -> Dict[str, Any]:
        pass

    async def close(self) -> None:
        return None
