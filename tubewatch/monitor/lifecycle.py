"""Per-item lifecycle transitions.

    previous            observed              event
    absent              live now              live_started
    absent              upcoming              scheduled_live
    absent              neither               new_video
    not live            live now              live_started
    live                not live              live_ended
    same live flag      type or title change  video_updated
    same live flag      no change             (none)
"""
import logging
from typing import Any, Dict, List, Optional, Tuple

from tubewatch.monitor.models import Event, EventKind, Item
from tubewatch.storage.base import Store

log = logging.getLogger(__name__)


def derive_event(previous: Optional[Item], current: Item) -> Optional[EventKind]:
    if previous is None:
        if current.is_live_now:
            return EventKind.LIVE_STARTED
        if current.is_upcoming:
            return EventKind.SCHEDULED_LIVE
        return EventKind.NEW_VIDEO
    if not previous.is_live_now and current.is_live_now:
        return EventKind.LIVE_STARTED
    if previous.is_live_now and not current.is_live_now:
        return EventKind.LIVE_ENDED
    if previous.type != current.type or previous.title != current.title:
        return EventKind.VIDEO_UPDATED
    return None


def event_payload(previous: Optional[Item], current: Item) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "previous_type": previous.type.value if previous else None,
        "new_type": current.type.value,
        "was_live": bool(previous and previous.is_live_now),
        "is_live": current.is_live_now,
    }
    if previous is not None and previous.title != current.title:
        data["previous_title"] = previous.title
    return data


class LifecycleTracker:
    """Persists observed items and records the transition each one implies."""

    def __init__(self, store: Store):
        self.store = store

    async def record(self, item: Item) -> Tuple[Item, Optional[Event]]:
        upserted = await self.store.upsert_item(item)
        kind = derive_event(upserted.previous, upserted.current)
        if kind is None:
            return upserted.current, None
        event = await self.store.add_event(
            Event(
                kind=kind,
                video_id=item.video_id,
                channel_id=item.channel_id,
                data=event_payload(upserted.previous, upserted.current),
            )
        )
        return upserted.current, event

    async def retire_stale_lives(self, channel_id: str, current_live: Optional[Item]) -> List[Item]:
        """Delete every live item of the channel other than ``current_live``.

        Returns the retired items with their live flag cleared.
        """
        retired: List[Item] = []
        keep = current_live.video_id if current_live else None
        for item in await self.store.list_live_items(channel_id):
            if item.video_id == keep:
                continue
            await self.store.delete_item(item.video_id)
            log.info("Live ended, removed %s %r from %s", item.video_id, item.title, channel_id)
            retired.append(item.copy(is_live_now=False))
        return retired
