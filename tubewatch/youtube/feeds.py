import asyncio
import calendar
import logging
import re
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

import feedparser

from tubewatch.monitor.models import FEED_ORDER, FeedCategory, ItemStub, utcnow
from tubewatch.net.client import FetchClient, FetchError

log = logging.getLogger(__name__)

FEED_BASE = "https://www.youtube.com/feeds/videos.xml"
PLAYLIST_PREFIXES = {
    FeedCategory.LIVES: "UULV",
    FeedCategory.SHORTS: "UUSH",
}
WATCH_ID_RE = re.compile(r"watch\?v=([a-zA-Z0-9_-]{11})")

FeedSnapshot = Dict[FeedCategory, List[ItemStub]]


def feed_url(channel_id: str, category: FeedCategory) -> str:
    if category is FeedCategory.VIDEOS:
        return f"{FEED_BASE}?channel_id={channel_id}"
    playlist_id = re.sub(r"^UC", PLAYLIST_PREFIXES[category], channel_id)
    return f"{FEED_BASE}?playlist_id={playlist_id}"


def _published(entry) -> datetime:
    parsed = entry.get("published_parsed") or entry.get("updated_parsed")
    if not parsed:
        return utcnow()
    return datetime.fromtimestamp(calendar.timegm(parsed), tz=timezone.utc)


def _entry_video_id(entry) -> Optional[str]:
    video_id = entry.get("yt_videoid")
    if video_id:
        return video_id
    m = WATCH_ID_RE.search(entry.get("link") or "")
    return m.group(1) if m else None


def parse_feed(document: str) -> List[ItemStub]:
    feed = feedparser.parse(document)
    stubs: List[ItemStub] = []
    for entry in feed.entries:
        video_id = _entry_video_id(entry)
        if not video_id:
            continue
        thumbnail_url = f"https://i.ytimg.com/vi/{video_id}/hqdefault.jpg"
        thumbnails = entry.get("media_thumbnail")
        if isinstance(thumbnails, list) and thumbnails and thumbnails[0].get("url"):
            thumbnail_url = thumbnails[0]["url"]
        stubs.append(
            ItemStub(
                video_id=video_id,
                title=entry.get("title", ""),
                published_at=_published(entry),
                thumbnail_url=thumbnail_url,
            )
        )
    return stubs


class FeedAggregator:
    """Collects the lives, videos and shorts feeds of a channel concurrently.

    The uploads feed is mandatory and its failures propagate. The lives and shorts
    playlists do not exist for many channels, so any failure there reads as empty.
    """

    def __init__(self, client: FetchClient, categories: Sequence[FeedCategory] = FEED_ORDER):
        self.client = client
        self.categories = tuple(c for c in FEED_ORDER if c in categories)

    async def fetch_category(self, channel_id: str, category: FeedCategory) -> List[ItemStub]:
        url = feed_url(channel_id, category)
        try:
            document = await self.client.fetch(url)
        except FetchError as e:
            if category is FeedCategory.VIDEOS:
                raise
            if e.status != 404:
                log.warning("Feed %s unavailable for %s: %s", category.value, channel_id, e)
            return []
        return parse_feed(document)

    async def collect(self, channel_id: str) -> FeedSnapshot:
        results = await asyncio.gather(*(self.fetch_category(channel_id, c) for c in self.categories))
        return dict(zip(self.categories, results))
