import asyncio

import pytest

from tubewatch.monitor.lifecycle import LifecycleTracker, derive_event, event_payload
from tubewatch.monitor.models import EventKind, ItemType
from tubewatch.storage.memory import MemoryStore

from conftest import make_channel, make_item

VIDEO = make_item("v1")
LIVE = make_item("v1", type=ItemType.LIVE, is_live_now=True)
UPCOMING = make_item("v1", type=ItemType.SCHEDULED, is_upcoming=True)
RENAMED = make_item("v1", title="New title")
RECORDING = make_item("v1", type=ItemType.RECORDING, was_live_recording=True)


@pytest.mark.parametrize(
    "previous, current, expected",
    [
        (None, LIVE, EventKind.LIVE_STARTED),
        (None, UPCOMING, EventKind.SCHEDULED_LIVE),
        (None, VIDEO, EventKind.NEW_VIDEO),
        (VIDEO, LIVE, EventKind.LIVE_STARTED),
        (UPCOMING, LIVE, EventKind.LIVE_STARTED),
        (LIVE, RECORDING, EventKind.LIVE_ENDED),
        (LIVE, VIDEO, EventKind.LIVE_ENDED),
        (VIDEO, RENAMED, EventKind.VIDEO_UPDATED),
        (VIDEO, RECORDING, EventKind.VIDEO_UPDATED),
        (VIDEO, VIDEO, None),
        (LIVE, LIVE, None),
    ],
)
def test_transitions(previous, current, expected):
    assert derive_event(previous, current) is expected


def test_payload_carries_type_and_live_change():
    data = event_payload(LIVE, RECORDING)
    assert data == {"previous_type": "live", "new_type": "recording", "was_live": True, "is_live": False}


def test_payload_carries_previous_title():
    assert event_payload(VIDEO, RENAMED)["previous_title"] == "Video v1"
    assert event_payload(None, VIDEO)["previous_type"] is None


def test_record_persists_item_and_event():
    store = MemoryStore()
    tracker = LifecycleTracker(store)

    async def run():
        await store.upsert_channel(make_channel())
        first = await tracker.record(make_item("v1"))
        again = await tracker.record(make_item("v1"))
        renamed = await tracker.record(make_item("v1", title="Renamed"))
        return first, again, renamed, await store.list_recent_events()

    (stored, event), (_, repeat), (_, update), events = asyncio.run(run())

    assert stored.type is ItemType.VIDEO
    assert event.kind is EventKind.NEW_VIDEO
    assert event.id is not None
    assert repeat is None
    assert update.kind is EventKind.VIDEO_UPDATED
    assert [e.kind for e in events] == [EventKind.VIDEO_UPDATED, EventKind.NEW_VIDEO]


def test_retire_stale_lives_keeps_current():
    store = MemoryStore()
    tracker = LifecycleTracker(store)

    async def run():
        await store.upsert_channel(make_channel())
        await tracker.record(make_item("old", type=ItemType.LIVE, is_live_now=True))
        current = make_item("new", type=ItemType.LIVE, is_live_now=True)
        await tracker.record(current)
        retired = await tracker.retire_stale_lives(current.channel_id, current)
        return retired, await store.list_live_items()

    retired, live = asyncio.run(run())
    assert [i.video_id for i in retired] == ["old"]
    assert not retired[0].is_live_now
    assert [i.video_id for i in live] == ["new"]
