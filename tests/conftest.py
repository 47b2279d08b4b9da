"""
Shared fixtures: a FetchClient wired to httpx.MockTransport with recorded sleeps,
and both store backends.
"""
import asyncio
from datetime import datetime, timedelta, timezone
from typing import Callable, List

import httpx
import pytest

from tubewatch.monitor.models import Channel, Item
from tubewatch.net.client import FetchClient
from tubewatch.storage.memory import MemoryStore
from tubewatch.storage.sqlite import SqliteStore

CHANNEL_ID = "UCabcdefghijklmnopqrstuv"
OTHER_CHANNEL_ID = "UCzyxwvutsrqponmlkjihgfe"
BASE_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class RecordingSleep:
    def __init__(self) -> None:
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def sleeper() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def make_client(sleeper) -> Callable[..., FetchClient]:
    def factory(handler, **kwargs) -> FetchClient:
        kwargs.setdefault("min_delay", 0)
        kwargs.setdefault("max_delay", 0)
        kwargs.setdefault("sleep", sleeper)
        return FetchClient(transport=httpx.MockTransport(handler), **kwargs)
    return factory


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    if request.param == "memory":
        yield MemoryStore()
        return
    s = SqliteStore(str(tmp_path / "tubewatch.db"))
    yield s
    asyncio.run(s.close())


def make_item(video_id: str, channel_id: str = CHANNEL_ID, age_hours: float = 0, **fields) -> Item:
    fields.setdefault("title", f"Video {video_id}")
    return Item(
        video_id=video_id,
        channel_id=channel_id,
        published_at=BASE_TIME - timedelta(hours=age_hours),
        **fields,
    )


def make_channel(channel_id: str = CHANNEL_ID, title: str = "Test Channel") -> Channel:
    return Channel(channel_id=channel_id, title=title)
