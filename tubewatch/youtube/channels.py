import logging
import re
from typing import Optional

from tubewatch.monitor.models import Channel
from tubewatch.net.client import FetchClient, FetchError
from tubewatch.youtube.signals import decode_entities

log = logging.getLogger(__name__)

CHANNEL_ID_RE = re.compile(r"^UC[a-zA-Z0-9_-]{22}$")

# Checked in order; the canonical link is the most reliable, feed links the least.
CHANNEL_ID_PATTERNS = [
    re.compile(r'<link rel="canonical" href="https://www\.youtube\.com/channel/(UC[a-zA-Z0-9_-]{22})">'),
    re.compile(r'<meta itemprop="channelId" content="(UC[a-zA-Z0-9_-]{22})">'),
    re.compile(r'"channelId":"(UC[a-zA-Z0-9_-]{22})"'),
    re.compile(r'"externalChannelId":"(UC[a-zA-Z0-9_-]{22})"'),
    re.compile(r'"browseId":"(UC[a-zA-Z0-9_-]{22})"'),
    re.compile(r"channel_id=(UC[a-zA-Z0-9_-]{22})"),
]
TITLE_PATTERNS = [
    re.compile(r'<meta property="og:title" content="([^"]+)">'),
    re.compile(r'<meta name="title" content="([^"]+)">'),
    re.compile(r'"ownerChannelName":"([^"]+)"'),
    re.compile(r"<title>([^<]+) - YouTube</title>"),
]
DESCRIPTION_PATTERNS = [
    re.compile(r'<meta property="og:description" content="([^"]+)">'),
    re.compile(r'<meta name="description" content="([^"]+)">'),
]
THUMBNAIL_PATTERNS = [
    re.compile(r'<meta property="og:image" content="([^"]+)">'),
    re.compile(r'<link rel="image_src" href="([^"]+)">'),
]


class ChannelNotFoundError(LookupError):
    def __init__(self, reference: str):
        super().__init__(f"Channel not found: {reference}")
        self.reference = reference


def channel_url(reference: str) -> str:
    """Normalise a channel id, @handle, path or URL into a channel page URL."""
    reference = reference.strip()
    if CHANNEL_ID_RE.match(reference):
        return f"https://www.youtube.com/channel/{reference}"
    if reference.startswith("http"):
        return reference
    if reference.startswith("@") or "/" in reference:
        return f"https://www.youtube.com/{reference.lstrip('/')}"
    return f"https://www.youtube.com/@{reference}"


def _first(patterns, page: str) -> Optional[str]:
    for pattern in patterns:
        m = pattern.search(page)
        if m:
            return m.group(1)
    return None


def extract_channel_id(page: str) -> Optional[str]:
    return _first(CHANNEL_ID_PATTERNS, page)


def extract_channel(page: str) -> Optional[Channel]:
    channel_id = extract_channel_id(page)
    if not channel_id:
        return None
    title = _first(TITLE_PATTERNS, page)
    description = _first(DESCRIPTION_PATTERNS, page)
    return Channel(
        channel_id=channel_id,
        title=decode_entities(title) if title else "",
        description=decode_entities(description) if description else None,
        thumbnail_url=_first(THUMBNAIL_PATTERNS, page),
    )


class ChannelResolver:
    def __init__(self, client: FetchClient):
        self.client = client

    async def lookup(self, reference: str) -> Channel:
        url = channel_url(reference)
        try:
            page = await self.client.fetch(url)
        except FetchError as e:
            if not e.retryable:
                raise ChannelNotFoundError(reference) from e
            raise
        channel = extract_channel(page)
        if channel is None:
            raise ChannelNotFoundError(reference)
        log.info("Resolved %s to %s (%s)", reference, channel.channel_id, channel.title)
        return channel
