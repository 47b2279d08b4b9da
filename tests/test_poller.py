import asyncio
from datetime import timedelta
from typing import Dict, List, Optional

import pytest

from tubewatch.monitor.events import NullSink
from tubewatch.monitor.models import Channel, EventKind, FeedCategory, Item, ItemStub, ItemType
from tubewatch.monitor.poller import Monitor, is_trackable
from tubewatch.net.client import FetchError
from tubewatch.storage.memory import MemoryStore
from tubewatch.youtube.channels import ChannelNotFoundError

from conftest import BASE_TIME, CHANNEL_ID, OTHER_CHANNEL_ID, make_channel, make_item


class AggregatorStub:
    def __init__(self) -> None:
        self.snapshots: Dict[str, Dict[FeedCategory, List[ItemStub]]] = {}
        self.failing: set = set()
        self.client = None

    def set_videos(self, channel_id: str, *video_ids: str) -> None:
        self.snapshots.setdefault(channel_id, {})[FeedCategory.VIDEOS] = [
            ItemStub(video_id=v, title=f"Video {v}", published_at=BASE_TIME - timedelta(hours=n))
            for n, v in enumerate(video_ids)
        ]

    async def collect(self, channel_id: str):
        if channel_id in self.failing:
            raise FetchError(f"https://feeds.test/{channel_id}", "HTTP 500", status=500)
        return self.snapshots.get(channel_id, {})


class DetectorStub:
    def __init__(self) -> None:
        self.live: Dict[str, Item] = {}
        self.probed: List[str] = []

    async def probe(self, channel_id: str) -> Optional[Item]:
        self.probed.append(channel_id)
        return self.live.get(channel_id)


class ResolverStub:
    def __init__(self, *channels: Channel) -> None:
        self.channels = {c.channel_id: c for c in channels}
        self.unreachable: set = set()

    async def lookup(self, reference: str) -> Channel:
        if reference in self.unreachable:
            raise FetchError(f"https://www.youtube.test/{reference}", "HTTP 503", status=503)
        if reference not in self.channels:
            raise ChannelNotFoundError(reference)
        return self.channels[reference]


class RecordingSink(NullSink):
    def __init__(self) -> None:
        self.transitions = []
        self.checked = []
        self.cycles = []
        self.errors = []

    def transition(self, kind, item, channel):
        self.transitions.append((kind, item.video_id))

    def channel_checked(self, channel_id, count):
        self.checked.append((channel_id, count))

    def cycle_complete(self, summary):
        self.cycles.append(summary)

    def error(self, exc, channel_id=None):
        self.errors.append((exc, channel_id))


def live_item(video_id: str, channel_id: str = CHANNEL_ID) -> Item:
    return make_item(video_id, channel_id, type=ItemType.LIVE, is_live_now=True)


@pytest.fixture
def env():
    store = MemoryStore()
    aggregator = AggregatorStub()
    detector = DetectorStub()
    sink = RecordingSink()
    monitor = Monitor(
        store,
        aggregator,
        detector,
        ResolverStub(make_channel(), make_channel(OTHER_CHANNEL_ID, "Other")),
        sink=sink,
        interval=3600,
        max_items_per_channel=10,
        event_retention=timedelta(days=3),
    )
    asyncio.run(store.upsert_channel(make_channel()))
    return monitor, store, aggregator, detector, sink


@pytest.mark.parametrize(
    "item, expected",
    [
        (make_item("v"), True),
        (make_item("v", type=ItemType.SHORT), False),
        (make_item("v", duration=60), False),
        (make_item("v", duration=600), True),
        (make_item("v", title="Quick tip #Shorts"), False),
        (make_item("v", type=ItemType.RECORDING, was_live_recording=True), False),
        (make_item("v", type=ItemType.SCHEDULED, is_upcoming=True, was_live_recording=True), True),
        (make_item("v", type=ItemType.LIVE, is_live_now=True), False),
    ],
)
def test_trackable_items(item, expected):
    assert is_trackable(item, set()) is expected


def test_shorts_feed_membership_excludes_item():
    assert not is_trackable(make_item("v"), {"v"})


def test_first_sighting_emits_new_video(env):
    monitor, store, aggregator, _, sink = env
    aggregator.set_videos(CHANNEL_ID, "AAAAAAAAAAA")

    summary = asyncio.run(monitor.run_cycle())

    assert sink.transitions == [(EventKind.NEW_VIDEO, "AAAAAAAAAAA")]
    stored = asyncio.run(store.get_item("AAAAAAAAAAA"))
    assert stored.type is ItemType.VIDEO
    assert [e.kind for e in asyncio.run(store.list_recent_events())] == [EventKind.NEW_VIDEO]
    assert (summary.channels, summary.items, summary.events) == (1, 1, 1)
    assert sink.checked == [(CHANNEL_ID, 1)]
    assert sink.cycles == [summary]


def test_unchanged_items_emit_nothing(env):
    monitor, _, aggregator, _, sink = env
    aggregator.set_videos(CHANNEL_ID, "AAAAAAAAAAA")
    asyncio.run(monitor.run_cycle())
    asyncio.run(monitor.run_cycle())
    assert len(sink.transitions) == 1


def test_live_start_then_end(env):
    monitor, store, aggregator, detector, sink = env
    aggregator.set_videos(CHANNEL_ID, "AAAAAAAAAAA")
    asyncio.run(monitor.run_cycle())

    detector.live[CHANNEL_ID] = live_item("AAAAAAAAAAA")
    asyncio.run(monitor.run_cycle())
    asyncio.run(monitor.run_cycle())
    assert sink.transitions[1:] == [(EventKind.LIVE_STARTED, "AAAAAAAAAAA")]

    del detector.live[CHANNEL_ID]
    asyncio.run(monitor.run_cycle())
    assert sink.transitions[2:] == [(EventKind.LIVE_ENDED, "AAAAAAAAAAA")]
    assert asyncio.run(store.list_live_items()) == []


def test_live_missing_from_feeds_is_retired(env):
    monitor, store, _, detector, sink = env
    detector.live[CHANNEL_ID] = live_item("LLLLLLLLLLL")
    asyncio.run(monitor.run_cycle())

    del detector.live[CHANNEL_ID]
    summary = asyncio.run(monitor.run_cycle())

    assert sink.transitions == [
        (EventKind.LIVE_STARTED, "LLLLLLLLLLL"),
        (EventKind.LIVE_ENDED, "LLLLLLLLLLL"),
    ]
    assert summary.events == 1
    assert asyncio.run(store.get_item("LLLLLLLLLLL")) is None


def test_one_live_item_per_channel(env):
    monitor, store, _, detector, sink = env
    detector.live[CHANNEL_ID] = live_item("FIRSTLIVE01")
    asyncio.run(monitor.run_cycle())
    detector.live[CHANNEL_ID] = live_item("SECONDLIVE1")
    asyncio.run(monitor.run_cycle())

    assert [i.video_id for i in asyncio.run(store.list_live_items(CHANNEL_ID))] == ["SECONDLIVE1"]
    assert (EventKind.LIVE_ENDED, "FIRSTLIVE01") in sink.transitions
    assert (EventKind.LIVE_STARTED, "SECONDLIVE1") in sink.transitions


def test_scheduled_items_are_kept(env):
    monitor, store, aggregator, _, sink = env

    class ScheduledClassifier:
        async def canonical_items(self, channel_id, snapshot):
            return [make_item("SCHEDULED01", type=ItemType.SCHEDULED, is_upcoming=True, scheduled_start=BASE_TIME)]

    monitor.classifier = ScheduledClassifier()
    asyncio.run(monitor.run_cycle())
    assert sink.transitions == [(EventKind.SCHEDULED_LIVE, "SCHEDULED01")]
    assert [i.video_id for i in asyncio.run(store.list_scheduled_items())] == ["SCHEDULED01"]


def test_deleted_channel_is_skipped_silently(env):
    monitor, store, aggregator, detector, sink = env
    aggregator.set_videos(CHANNEL_ID, "AAAAAAAAAAA")
    asyncio.run(monitor.run_cycle())
    assert monitor.cached_channel(CHANNEL_ID) is not None

    asyncio.run(store.delete_channel(CHANNEL_ID))
    result = asyncio.run(monitor.check_channel(CHANNEL_ID))
    summary = asyncio.run(monitor.run_cycle())

    assert result.skipped
    assert monitor.cached_channel(CHANNEL_ID) is None
    assert sink.errors == []
    assert summary.channels == 0
    assert detector.probed == [CHANNEL_ID]


def test_channel_failure_does_not_stop_the_pass(env):
    monitor, store, aggregator, _, sink = env
    asyncio.run(store.upsert_channel(make_channel(OTHER_CHANNEL_ID, "Other")))
    aggregator.failing.add(CHANNEL_ID)
    aggregator.set_videos(OTHER_CHANNEL_ID, "BBBBBBBBBBB")

    summary = asyncio.run(monitor.run_cycle())

    assert summary.channels == 2
    assert sink.transitions == [(EventKind.NEW_VIDEO, "BBBBBBBBBBB")]
    assert len(sink.errors) == 1
    assert sink.errors[0][1] == CHANNEL_ID


def test_cycle_applies_retention(env):
    monitor, store, aggregator, _, _ = env
    aggregator.set_videos(CHANNEL_ID, *[f"VIDEO{n:06d}" for n in range(12)])
    monitor.classifier.max_items_per_feed = 15

    asyncio.run(monitor.run_cycle())

    remaining = asyncio.run(store.list_items_by_channel(CHANNEL_ID, limit=100))
    assert len(remaining) == 10
    assert "VIDEO000011" not in {i.video_id for i in remaining}


def test_pruned_uploads_are_not_reannounced(env):
    monitor, _, aggregator, _, sink = env
    aggregator.set_videos(CHANNEL_ID, *[f"VIDEO{n:06d}" for n in range(12)])
    monitor.classifier.max_items_per_feed = 15

    asyncio.run(monitor.run_cycle())
    assert len(sink.transitions) == 10
    assert (EventKind.NEW_VIDEO, "VIDEO000011") not in sink.transitions

    sink.transitions.clear()
    summary = asyncio.run(monitor.run_cycle())
    assert sink.transitions == []
    assert summary.events == 0


def test_add_channel_resolves_and_checks(env):
    monitor, store, aggregator, _, sink = env
    aggregator.set_videos(OTHER_CHANNEL_ID, "BBBBBBBBBBB")

    channel = asyncio.run(monitor.add_channel(OTHER_CHANNEL_ID))

    assert channel.title == "Other"
    assert monitor.cached_channel(OTHER_CHANNEL_ID) == channel
    assert asyncio.run(store.get_item("BBBBBBBBBBB")) is not None
    assert sink.transitions == [(EventKind.NEW_VIDEO, "BBBBBBBBBBB")]


def test_add_unknown_channel(env):
    monitor, _, _, _, sink = env
    assert asyncio.run(monitor.add_channel("@nobody")) is None
    assert isinstance(sink.errors[0][0], ChannelNotFoundError)


def test_add_channel_propagates_transient_lookup_failure(env):
    monitor, store, _, _, sink = env
    monitor.resolver.unreachable.add(OTHER_CHANNEL_ID)

    with pytest.raises(FetchError):
        asyncio.run(monitor.add_channel(OTHER_CHANNEL_ID))

    assert len(sink.errors) == 1
    assert asyncio.run(store.get_channel(OTHER_CHANNEL_ID)) is None


def test_removed_channel_is_not_polled(env):
    monitor, store, _, detector, _ = env
    assert asyncio.run(monitor.remove_channel(CHANNEL_ID))
    asyncio.run(monitor.run_cycle())
    assert detector.probed == []
    assert asyncio.run(store.get_channel(CHANNEL_ID)) is not None


def test_start_stop_join(env):
    monitor, _, _, _, sink = env

    async def scenario():
        monitor.start()
        monitor.start()
        assert monitor.is_running
        for _ in range(100):
            if sink.cycles:
                break
            await asyncio.sleep(0.01)
        monitor.stop()
        await asyncio.wait_for(monitor.join(), timeout=5)
        return monitor.is_running

    assert asyncio.run(scenario()) is False
    assert len(sink.cycles) == 1


def test_status(env):
    monitor, _, _, _, _ = env
    status = asyncio.run(monitor.status())
    assert status["running"] is False
    assert status["interval_sec"] == 3600
    assert status["stats"]["active_channels"] == 1
    assert [c["channel_id"] for c in status["channels"]] == [CHANNEL_ID]


def test_restart_while_pass_in_flight_keeps_one_loop(env):
    monitor, _, _, detector, sink = env

    async def scenario():
        entered = asyncio.Event()
        release = asyncio.Event()

        async def held_live_check(channel_id):
            entered.set()
            await release.wait()
            return None

        detector.probe = held_live_check
        monitor.start()
        await asyncio.wait_for(entered.wait(), timeout=5)
        first = monitor._task

        monitor.stop()
        monitor.start()
        assert monitor._task is first
        assert monitor.is_running

        release.set()
        for _ in range(100):
            if sink.cycles:
                break
            await asyncio.sleep(0.01)
        monitor.stop()
        await asyncio.wait_for(monitor.join(), timeout=5)

    asyncio.run(scenario())
    assert len(sink.cycles) == 1


def test_overlapping_checks_run_one_at_a_time(env):
    monitor, _, aggregator, detector, sink = env
    aggregator.set_videos(CHANNEL_ID, "AAAAAAAAAAA")
    active = []
    peak = []

    async def counting_live_check(channel_id):
        active.append(channel_id)
        peak.append(len(active))
        await asyncio.sleep(0)
        active.pop()
        return None

    detector.probe = counting_live_check

    async def scenario():
        return await asyncio.gather(monitor.check_channel(CHANNEL_ID), monitor.check_channel(CHANNEL_ID))

    first, second = asyncio.run(scenario())
    assert max(peak) == 1
    assert first.events + second.events == 1
    assert sink.transitions == [(EventKind.NEW_VIDEO, "AAAAAAAAAAA")]
