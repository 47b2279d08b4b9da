import asyncio
import logging
from typing import Any, Dict, List, Optional, Protocol

from tubewatch.metrics.registry import events_emitted_total
from tubewatch.monitor.models import Channel, CycleSummary, EventKind, Item, utcnow

log = logging.getLogger(__name__)


class EventSink(Protocol):
    def transition(self, kind: EventKind, item: Item, channel: Channel) -> None: ...

    def channel_checked(self, channel_id: str, count: int) -> None: ...

    def cycle_complete(self, summary: CycleSummary) -> None: ...

    def error(self, exc: BaseException, channel_id: Optional[str] = None) -> None: ...


class NullSink:
    def transition(self, kind: EventKind, item: Item, channel: Channel) -> None:
        pass

    def channel_checked(self, channel_id: str, count: int) -> None:
        pass

    def cycle_complete(self, summary: CycleSummary) -> None:
        pass

    def error(self, exc: BaseException, channel_id: Optional[str] = None) -> None:
        pass


class LoggingSink(NullSink):
    def transition(self, kind: EventKind, item: Item, channel: Channel) -> None:
        log.info("%s: %r (%s)", kind.value, item.title, channel.title or channel.channel_id)

    def cycle_complete(self, summary: CycleSummary) -> None:
        log.info("Cycle complete: %d channels, %d items, %d events", summary.channels, summary.items, summary.events)

    def error(self, exc: BaseException, channel_id: Optional[str] = None) -> None:
        log.error("Error%s: %s", f" on channel {channel_id}" if channel_id else "", exc)


class Broadcaster:
    """Synchronous fan-out to every registered sink.

    Also hands a message dict to each streaming queue (the SSE endpoint); a full
    queue drops the message for that listener only.
    """

    def __init__(self, sinks: Optional[List[EventSink]] = None, queue_size: int = 100):
        self._sinks: List[EventSink] = list(sinks or [])
        self._queues: List[asyncio.Queue] = []
        self.queue_size = queue_size

    def subscribe(self, sink: EventSink) -> None:
        self._sinks.append(sink)

    def unsubscribe(self, sink: EventSink) -> None:
        if sink in self._sinks:
            self._sinks.remove(sink)

    def open_stream(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        self._queues.append(queue)
        return queue

    def close_stream(self, queue: asyncio.Queue) -> None:
        if queue in self._queues:
            self._queues.remove(queue)

    def _dispatch(self, method: str, *args) -> None:
        for sink in list(self._sinks):
            try:
                getattr(sink, method)(*args)
            except Exception:
                log.exception("Subscriber %r failed on %s", sink, method)

    def _publish(self, event: str, data: Dict[str, Any]) -> None:
        message = {"event": event, "data": {**data, "timestamp": utcnow().isoformat()}}
        for queue in list(self._queues):
            try:
                queue.put_nowait(message)
            except asyncio.QueueFull:
                log.warning("Stream listener lagging, dropped %s", event)

    def transition(self, kind: EventKind, item: Item, channel: Channel) -> None:
        events_emitted_total.labels(kind=kind.value).inc()
        self._dispatch("transition", kind, item, channel)
        self._publish(kind.value, {"video": item.to_dict(), "channel": channel.to_dict()})

    def channel_checked(self, channel_id: str, count: int) -> None:
        self._dispatch("channel_checked", channel_id, count)

    def cycle_complete(self, summary: CycleSummary) -> None:
        self._dispatch("cycle_complete", summary)
        self._publish("cycle_complete", summary.to_dict())

    def error(self, exc: BaseException, channel_id: Optional[str] = None) -> None:
        self._dispatch("error", exc, channel_id)
        self._publish("error", {"message": str(exc), "channel_id": channel_id})
