import json
import logging
import asyncio
import pathlib
import sys
from prometheus_client import start_http_server
from tubewatch.config.settings import settings
from tubewatch.api.server import app, set_monitor
from tubewatch.monitor.classifier import FeedClassifier, FeedHintStrategy, PageSignalStrategy
from tubewatch.monitor.events import Broadcaster, EventSink, LoggingSink
from tubewatch.monitor.poller import Monitor
from tubewatch.net.client import FetchClient, FetchError
from tubewatch.storage.base import Store
from tubewatch.storage.memory import MemoryStore
from tubewatch.storage.sqlite import SqliteStore
from tubewatch.youtube.channels import ChannelResolver
from tubewatch.youtube.feeds import FeedAggregator
from tubewatch.youtube.live_detector import LiveDetector
import uvicorn

log = logging.getLogger(__name__)


class JsonFormatter(logging.Formatter):
    def format(self, record):
        base = {
            'time': self.formatTime(record),
            'level': record.levelname,
            'logger': record.name,
            'msg': record.getMessage(),
        }
        if record.exc_info:
            base['exc'] = self.formatException(record.exc_info)
        return json.dumps(base, ensure_ascii=False)


def configure_logging(log_format: str = "plain", level: int = logging.INFO):
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    if log_format == 'json':
        root = logging.getLogger()
        for h in list(root.handlers):
            root.removeHandler(h)
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JsonFormatter())
        root.addHandler(handler)
        root.setLevel(level)


def build_client() -> FetchClient:
    return FetchClient(
        min_delay=settings.fetch_min_delay_ms / 1000,
        max_delay=settings.fetch_max_delay_ms / 1000,
        max_concurrent=settings.fetch_max_concurrent,
        max_retries=settings.fetch_max_retries,
        timeout=settings.fetch_timeout_sec,
    )


def build_store() -> Store:
    if settings.store_backend == "memory":
        return MemoryStore()
    if settings.store_backend != "sqlite":
        raise ValueError(f"Unknown store backend: {settings.store_backend}")
    path = pathlib.Path(settings.database_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    return SqliteStore(str(path))


def build_monitor(store: Store, client: FetchClient, sink: EventSink) -> Monitor:
    strategy = PageSignalStrategy(client) if settings.classify_videos else FeedHintStrategy()
    return Monitor(
        store,
        FeedAggregator(client),
        LiveDetector(client),
        ChannelResolver(client),
        classifier=FeedClassifier(strategy, max_items_per_feed=settings.max_items_per_feed),
        sink=sink,
    )


async def main():
    configure_logging(settings.log_format)
    if settings.metrics_port:
        start_http_server(settings.metrics_port)
    store = build_store()
    client = build_client()
    broadcaster = Broadcaster([LoggingSink()])
    monitor = build_monitor(store, client, broadcaster)
    set_monitor(monitor, broadcaster)
    try:
        for reference in settings.channel_ids:
            try:
                await monitor.add_channel(reference)
            except FetchError as e:
                log.warning("Skipping seed channel %s: %s", reference, e)
        monitor.start()
        config = uvicorn.Config(app, host=settings.api_host, port=settings.api_port, log_level="info", lifespan="on")
        server = uvicorn.Server(config)
        await server.serve()
    finally:
        monitor.stop()
        await monitor.join()
        set_monitor(None)
        await client.aclose()
        await store.close()

if __name__ == "__main__":
    asyncio.run(main())
