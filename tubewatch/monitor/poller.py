import asyncio
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, List, Optional, Set

from tubewatch.config.settings import settings
from tubewatch.metrics.registry import (
    channels_total,
    items_pruned_total,
    last_poll_timestamp,
    live_items,
    live_items_retired_total,
    poll_duration_seconds,
    poll_errors_total,
)
from tubewatch.monitor.classifier import FeedClassifier
from tubewatch.monitor.events import EventSink, NullSink
from tubewatch.monitor.lifecycle import LifecycleTracker
from tubewatch.monitor.models import Channel, CycleSummary, EventKind, FeedCategory, Item, ItemType, utcnow
from tubewatch.net.client import FetchError
from tubewatch.storage.base import Store
from tubewatch.youtube.channels import ChannelNotFoundError, ChannelResolver
from tubewatch.youtube.feeds import FeedAggregator
from tubewatch.youtube.live_detector import LiveDetector

log = logging.getLogger(__name__)

SHORTS_TITLE_TAG = "#shorts"
MIN_TRACKED_DURATION = 120


def is_trackable(item: Item, shorts_ids: Set[str]) -> bool:
    """Regular uploads and scheduled broadcasts only.

    Shorts, past broadcasts and running broadcasts are dropped; running broadcasts
    come from the live probe instead.
    """
    if item.type is ItemType.SHORT or item.video_id in shorts_ids:
        return False
    if item.duration and item.duration < MIN_TRACKED_DURATION:
        return False
    if SHORTS_TITLE_TAG in item.title.lower():
        return False
    if item.type is ItemType.RECORDING or (item.was_live_recording and not item.is_upcoming):
        return False
    if item.type is ItemType.LIVE or item.is_live_now:
        return False
    return True


@dataclass
class ChannelCheck:
    channel_id: str
    items: List[Item] = field(default_factory=list)
    events: int = 0
    skipped: bool = False


class Monitor:
    """Polls every active channel and turns observed changes into lifecycle events.

    Channels are checked one after another so outbound pressure never exceeds one
    channel's worth of fetches. ``stop()`` only prevents the next pass; a pass already
    running completes, and ``join()`` waits for it.
    """

    def __init__(
        self,
        store: Store,
        aggregator: FeedAggregator,
        detector: LiveDetector,
        resolver: Optional[ChannelResolver] = None,
        *,
        classifier: Optional[FeedClassifier] = None,
        sink: Optional[EventSink] = None,
        interval: Optional[float] = None,
        max_items_per_channel: Optional[int] = None,
        event_retention: Optional[timedelta] = None,
    ):
        self.store = store
        self.aggregator = aggregator
        self.detector = detector
        self.resolver = resolver
        self.classifier = classifier or FeedClassifier(max_items_per_feed=settings.max_items_per_feed)
        self.sink: EventSink = sink or NullSink()
        self.interval = interval if interval is not None else settings.poll_interval_sec
        self.max_items_per_channel = (
            max_items_per_channel if max_items_per_channel is not None else settings.max_items_per_channel
        )
        self.event_retention = event_retention or timedelta(days=settings.event_retention_days)
        self.tracker = LifecycleTracker(store)
        self._channels: Dict[str, Channel] = {}
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        # serialises manual checks with the pass
        self._checking = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return (
            self._task is not None
            and not self._task.done()
            and self._stop_event is not None
            and not self._stop_event.is_set()
        )

    def start(self) -> None:
        if self._task is not None and not self._task.done():
            # a loop still finishing its pass after stop() is resumed, never doubled
            if self._stop_event.is_set():
                self._stop_event.clear()
                log.info("Monitor resumed")
            else:
                log.info("Monitor already running")
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run(self._stop_event))

    def stop(self) -> None:
        if self._stop_event is not None and not self._stop_event.is_set():
            self._stop_event.set()
            log.info("Monitor stopping")

    async def join(self) -> None:
        if self._task is not None:
            await self._task

    async def _run(self, stop_event: asyncio.Event) -> None:
        log.info("Monitor started (interval %ss)", self.interval)
        while not stop_event.is_set():
            try:
                await self.run_cycle()
            except Exception as e:
                log.exception("Cycle failed: %s", e)
                self.sink.error(e)
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass
        log.info("Monitor stopped")

    def cached_channel(self, channel_id: str) -> Optional[Channel]:
        return self._channels.get(channel_id)

    # ------------------------------------------------------------------ #

    async def add_channel(self, reference: str) -> Optional[Channel]:
        if self.resolver is None:
            raise RuntimeError("Monitor has no channel resolver")
        try:
            channel = await self.resolver.lookup(reference)
        except ChannelNotFoundError as e:
            log.error("Could not add channel %s: %s", reference, e)
            self.sink.error(e)
            return None
        except FetchError as e:
            log.error("Lookup failed for %s: %s", reference, e)
            self.sink.error(e)
            raise
        upserted = await self.store.upsert_channel(channel)
        self._channels[channel.channel_id] = upserted.current
        log.info("Channel added: %s (%s)", upserted.current.title, upserted.current.channel_id)
        await self.check_channel(channel.channel_id)
        return upserted.current

    async def remove_channel(self, channel_id: str) -> bool:
        self._channels.pop(channel_id, None)
        removed = await self.store.deactivate_channel(channel_id)
        if removed:
            log.info("Channel removed: %s", channel_id)
        return removed

    async def delete_channel(self, channel_id: str) -> bool:
        self._channels.pop(channel_id, None)
        return await self.store.delete_channel(channel_id)

    async def check_channel(self, channel_id: str) -> Optional[ChannelCheck]:
        try:
            async with self._checking:
                return await self._check(channel_id)
        except Exception as e:
            poll_errors_total.inc()
            log.exception("Check failed channel=%s error=%s", channel_id, e)
            self.sink.error(e, channel_id)
            return None

    async def _resolve_channel(self, channel_id: str) -> Optional[Channel]:
        stored = await self.store.get_channel(channel_id)
        if stored is None or not stored.is_active:
            if self._channels.pop(channel_id, None) is not None:
                log.info("Channel %s no longer in store, evicted", channel_id)
            return None
        if self._channels.get(channel_id) != stored:
            self._channels[channel_id] = stored
        return self._channels[channel_id]

    async def _check(self, channel_id: str) -> ChannelCheck:
        channel = await self._resolve_channel(channel_id)
        if channel is None:
            return ChannelCheck(channel_id, skipped=True)

        snapshot = await self.aggregator.collect(channel_id)
        items = await self.classifier.canonical_items(channel_id, snapshot)
        shorts_ids = {stub.video_id for stub in snapshot.get(FeedCategory.SHORTS, [])}
        tracked = [item for item in items if is_trackable(item, shorts_ids)]
        # only the newest items within the retention cap are recorded
        tracked.sort(key=lambda item: item.published_at, reverse=True)
        tracked = tracked[: self.max_items_per_channel]

        live = await self.detector.probe(channel_id)
        if live is not None:
            # the probe owns a running broadcast; its feed copy would read as ended
            tracked = [item for item in tracked if item.video_id != live.video_id]

        result = ChannelCheck(channel_id, items=items)
        for item in tracked:
            stored, event = await self.tracker.record(item)
            if event is not None:
                self.sink.transition(event.kind, stored, channel)
                result.events += 1

        if live is not None:
            stored, event = await self.tracker.record(live)
            if event is not None:
                self.sink.transition(event.kind, stored, channel)
                result.events += 1

        for ended in await self.tracker.retire_stale_lives(channel_id, live):
            live_items_retired_total.inc()
            self.sink.transition(EventKind.LIVE_ENDED, ended, channel)
            result.events += 1

        await self.store.touch_channel(channel_id, utcnow())
        self.sink.channel_checked(channel_id, len(items))
        log.debug("Checked %s: %d items, %d tracked, %d events", channel_id, len(items), len(tracked), result.events)
        return result

    async def run_cycle(self) -> CycleSummary:
        loop = asyncio.get_running_loop()
        start = loop.time()
        channels = await self.store.list_active_channels()
        channels_total.set(len(channels))
        log.info("Checking %d channels", len(channels))

        total_items = 0
        total_events = 0
        for channel in channels:
            result = await self.check_channel(channel.channel_id)
            if result is not None:
                total_items += len(result.items)
                total_events += result.events

        cleanup = await self.store.run_cleanup(
            max_items_per_channel=self.max_items_per_channel,
            event_age=self.event_retention,
        )
        items_pruned_total.inc(cleanup.deleted_items)
        if cleanup.deleted_items or cleanup.deleted_events or cleanup.deleted_orphan_events:
            log.info(
                "Cleanup: %d items, %d events, %d orphaned events removed",
                cleanup.deleted_items, cleanup.deleted_events, cleanup.deleted_orphan_events,
            )
        live_items.set(len(await self.store.list_live_items()))

        summary = CycleSummary(channels=len(channels), items=total_items, events=total_events)
        self.sink.cycle_complete(summary)
        poll_duration_seconds.observe(loop.time() - start)
        last_poll_timestamp.set_to_current_time()
        return summary

    async def status(self) -> Dict[str, Any]:
        channels = await self.store.list_active_channels()
        return {
            "running": self.is_running,
            "interval_sec": self.interval,
            "stats": await self.store.stats(),
            "channels": [c.to_dict() for c in channels],
        }
