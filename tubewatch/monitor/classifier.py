"""Type classification and cross-feed merge for one channel's feed snapshot."""
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence, Tuple

from tubewatch.monitor.models import FEED_ORDER, FeedCategory, Item, ItemStub, ItemType, Signals
from tubewatch.net.client import FetchClient, FetchError
from tubewatch.youtube.signals import extract_signals

log = logging.getLogger(__name__)

SHORTS_MAX_DURATION = 90
SPECIFIC_TYPES = (ItemType.RECORDING, ItemType.LIVE, ItemType.SCHEDULED)

Candidate = Tuple[Item, FeedCategory]


def watch_url(video_id: str) -> str:
    return f"https://www.youtube.com/watch?v={video_id}"


def classify(signals: Signals, feed_hint: Optional[FeedCategory] = None) -> ItemType:
    """First matching rule wins."""
    if signals.is_upcoming and signals.scheduled_start is not None:
        return ItemType.SCHEDULED
    if signals.is_live_now:
        return ItemType.LIVE
    if signals.was_live_recording:
        return ItemType.RECORDING
    if signals.duration is not None and signals.duration <= SHORTS_MAX_DURATION:
        return ItemType.SHORT
    if feed_hint is FeedCategory.SHORTS:
        return ItemType.SHORT
    return ItemType.VIDEO


def apply_signals(item: Item, signals: Signals, feed_hint: Optional[FeedCategory] = None) -> None:
    item.type = classify(signals, feed_hint)
    item.duration = signals.duration
    item.scheduled_start = signals.scheduled_start
    item.is_live_now = signals.is_live_now
    item.was_live_recording = signals.was_live_recording
    item.is_upcoming = signals.is_upcoming


def item_from_stub(channel_id: str, stub: ItemStub, category: FeedCategory) -> Item:
    item = Item(
        video_id=stub.video_id,
        channel_id=channel_id,
        title=stub.title,
        published_at=stub.published_at,
        thumbnail_url=stub.thumbnail_url,
    )
    if category is FeedCategory.SHORTS:
        item.type = ItemType.SHORT
    elif category is FeedCategory.LIVES:
        item.type = ItemType.RECORDING
        item.was_live_recording = True
    return item


def _rank(item: Item) -> Tuple[bool, bool, bool, bool]:
    return (item.is_live_now, item.was_live_recording, item.is_upcoming, item.type in SPECIFIC_TYPES)


def dominates(newcomer: Item, kept: Item) -> bool:
    return _rank(newcomer) > _rank(kept)


def deduplicate(items: Sequence[Item]) -> List[Item]:
    kept: Dict[str, Item] = {}
    for item in items:
        existing = kept.get(item.video_id)
        if existing is None or dominates(item, existing):
            kept[item.video_id] = item
    return list(kept.values())


class ClassificationStrategy(ABC):
    @abstractmethod
    async def refine(self, candidates: List[Candidate]) -> None:
        """Update candidate items in place with better type information."""


class FeedHintStrategy(ClassificationStrategy):
    """Keeps the type implied by the feed an item was found in. Costs no requests."""

    async def refine(self, candidates: List[Candidate]) -> None:
        return None


class PageSignalStrategy(ClassificationStrategy):
    """Fetches every candidate's watch page and classifies it from page signals.

    One extra request per distinct item. A page that cannot be fetched leaves the feed
    typing in place.
    """

    def __init__(self, client: FetchClient):
        self.client = client

    async def refine(self, candidates: List[Candidate]) -> None:
        if not candidates:
            return
        outcomes = await self.client.fetch_many(watch_url(item.video_id) for item, _ in candidates)
        for item, category in candidates:
            outcome = outcomes.get(watch_url(item.video_id))
            if isinstance(outcome, FetchError) or outcome is None:
                log.debug("Keeping feed type for %s: %s", item.video_id, outcome)
                continue
            apply_signals(item, extract_signals(outcome), category)


class FeedClassifier:
    def __init__(self, strategy: Optional[ClassificationStrategy] = None, max_items_per_feed: int = 15):
        self.strategy = strategy or FeedHintStrategy()
        self.max_items_per_feed = max_items_per_feed

    def candidates(self, channel_id: str, snapshot: Dict[FeedCategory, List[ItemStub]]) -> List[Candidate]:
        out: List[Candidate] = []
        for category in FEED_ORDER:
            for stub in snapshot.get(category, [])[: self.max_items_per_feed]:
                out.append((item_from_stub(channel_id, stub, category), category))
        return out

    async def canonical_items(self, channel_id: str, snapshot: Dict[FeedCategory, List[ItemStub]]) -> List[Item]:
        candidates = self.candidates(channel_id, snapshot)
        await self.strategy.refine(candidates)
        return deduplicate([item for item, _ in candidates])
