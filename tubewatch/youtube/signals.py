"""Signal extraction from YouTube watch and live pages.

Only the ``ytInitialPlayerResponse`` flags that drive classification are read. A field
missing from the page is simply absent from the returned signals; it never raises.
"""
import html
import re
from datetime import datetime, timezone
from typing import Optional

from tubewatch.monitor.models import Signals

LIVE_PATTERNS = [
    re.compile(r'"isLive"\s*:\s*true'),
    re.compile(r'"isLiveNow"\s*:\s*true'),
]
UPCOMING_PATTERNS = [re.compile(r'"isUpcoming"\s*:\s*true')]
LIVE_CONTENT_PATTERNS = [re.compile(r'"isLiveContent"\s*:\s*true')]
SCHEDULED_START_PATTERNS = [
    re.compile(r'"scheduledStartTime"\s*:\s*"(\d+)"'),
    re.compile(r'"startTimestamp"\s*:\s*"([^"]+)"'),
]
DURATION_SECONDS_PATTERN = re.compile(r'"lengthSeconds"\s*:\s*"(\d+)"')
DURATION_MS_PATTERN = re.compile(r'"approxDurationMs"\s*:\s*"(\d+)"')

TITLE_PATTERNS = [
    re.compile(r'"title":\{"runs":\[\{"text":"([^"]+)"\}\]'),
    re.compile(r'"title":"([^"]+)"'),
    re.compile(r'<meta name="title" content="([^"]+)">'),
    re.compile(r'<title>([^<]+)</title>'),
]


def decode_entities(text: str) -> str:
    return html.unescape(text)


def _parse_timestamp(raw: str) -> Optional[datetime]:
    if raw.isdigit():
        return datetime.fromtimestamp(int(raw), tz=timezone.utc)
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def extract_signals(page: str) -> Signals:
    signals = Signals(
        is_live_now=any(p.search(page) for p in LIVE_PATTERNS),
        is_upcoming=any(p.search(page) for p in UPCOMING_PATTERNS),
        was_live_recording=any(p.search(page) for p in LIVE_CONTENT_PATTERNS),
    )
    for pattern in SCHEDULED_START_PATTERNS:
        m = pattern.search(page)
        if m:
            signals.scheduled_start = _parse_timestamp(m.group(1))
            break
    m = DURATION_SECONDS_PATTERN.search(page)
    if m:
        signals.duration = int(m.group(1))
    else:
        m = DURATION_MS_PATTERN.search(page)
        if m:
            signals.duration = int(m.group(1)) // 1000
    return signals


def extract_title(page: str) -> str:
    for pattern in TITLE_PATTERNS:
        m = pattern.search(page)
        if m:
            title = m.group(1)
            if title.endswith(" - YouTube"):
                title = title[: -len(" - YouTube")]
            return decode_entities(title)
    return ""
