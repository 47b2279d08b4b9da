import logging
import re
from typing import Optional

from tubewatch.monitor.models import Item, ItemType, utcnow
from tubewatch.net.client import FetchClient, FetchError
from tubewatch.youtube.signals import extract_signals, extract_title

log = logging.getLogger(__name__)

VIDEO_ID = r"[a-zA-Z0-9_-]{11}"
PAIR_WINDOW = 2000
PROXIMITY_WINDOW = 500

# A pairing never spans a closing brace or another identifier of the same kind, so
# each video id is matched to the channel id of its own renderer object.
VIDEO_THEN_CHANNEL = re.compile(
    r'"videoId":"(' + VIDEO_ID + r')"(?:(?!"videoId")[^}]){0,%d}?"channelId":"([^"]+)"' % PAIR_WINDOW
)
CHANNEL_THEN_VIDEO = re.compile(
    r'"channelId":"([^"]+)"(?:(?!"channelId")[^}]){0,%d}?"videoId":"(' % PAIR_WINDOW + VIDEO_ID + r')"'
)
VIDEO_ID_FIELD = re.compile(r'"videoId":"(' + VIDEO_ID + r')"')


def live_url(channel_id: str) -> str:
    return f"https://www.youtube.com/channel/{channel_id}/live"


def resolve_owned_video_id(page: str, channel_id: str) -> Optional[str]:
    """Find the video id that belongs to ``channel_id`` on a live page.

    Live pages also reference broadcasts from other channels (recommendations,
    raids), so the first video id on the page is not necessarily ours.
    """
    for m in VIDEO_THEN_CHANNEL.finditer(page):
        if m.group(2) == channel_id:
            log.debug("Live owner resolved by video/channel pairing: %s", m.group(1))
            return m.group(1)

    for m in CHANNEL_THEN_VIDEO.finditer(page):
        if m.group(1) == channel_id:
            log.debug("Live owner resolved by channel/video pairing: %s", m.group(2))
            return m.group(2)

    anchor = page.find(f'"channelId":"{channel_id}"')
    if anchor == -1:
        return None
    before = VIDEO_ID_FIELD.findall(page[max(0, anchor - PROXIMITY_WINDOW):anchor])
    if before:
        log.debug("Live owner resolved by proximity (before): %s", before[-1])
        return before[-1]
    after = VIDEO_ID_FIELD.search(page, anchor, anchor + PROXIMITY_WINDOW)
    if after:
        log.debug("Live owner resolved by proximity (after): %s", after.group(1))
        return after.group(1)
    return None


class LiveDetector:
    """Single-request live check against a channel's /live page."""

    def __init__(self, client: FetchClient):
        self.client = client

    async def probe(self, channel_id: str) -> Optional[Item]:
        try:
            page = await self.client.fetch(live_url(channel_id))
        except FetchError as e:
            # channels without a live page answer 404; that is the normal idle case
            log.debug("Live page unavailable for %s: %s", channel_id, e)
            return None
        signals = extract_signals(page)
        if not signals.is_live_now:
            return None
        video_id = resolve_owned_video_id(page, channel_id)
        if not video_id:
            log.info("Live flag set but no broadcast owned by %s on page (%d bytes)", channel_id, len(page))
            return None
        title = extract_title(page)
        log.info("Live broadcast for %s: %s %r", channel_id, video_id, title)
        return Item(
            video_id=video_id,
            channel_id=channel_id,
            title=title,
            published_at=utcnow(),
            thumbnail_url=f"https://i.ytimg.com/vi/{video_id}/maxresdefault.jpg",
            type=ItemType.LIVE,
            scheduled_start=signals.scheduled_start,
            is_live_now=True,
        )
