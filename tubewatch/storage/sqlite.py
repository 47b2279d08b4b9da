import asyncio
import json
import logging
import sqlite3
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, TypeVar

from tubewatch.monitor.models import Channel, Event, EventKind, Item, ItemType, utcnow
from tubewatch.storage.base import Store, Upserted

log = logging.getLogger(__name__)

T = TypeVar("T")

SCHEMA = """
CREATE TABLE IF NOT EXISTS channels (
  channel_id TEXT PRIMARY KEY,
  title TEXT NOT NULL,
  description TEXT,
  thumbnail_url TEXT,
  is_active INTEGER NOT NULL DEFAULT 1,
  last_checked_at TEXT,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS items (
  video_id TEXT PRIMARY KEY,
  channel_id TEXT NOT NULL REFERENCES channels(channel_id),
  title TEXT NOT NULL,
  thumbnail_url TEXT,
  published_at TEXT NOT NULL,
  type TEXT NOT NULL CHECK(type IN ('video', 'short', 'live', 'scheduled', 'recording')),
  duration INTEGER,
  scheduled_start TEXT,
  is_live_now INTEGER NOT NULL DEFAULT 0,
  was_live_recording INTEGER NOT NULL DEFAULT 0,
  is_upcoming INTEGER NOT NULL DEFAULT 0,
  bookmarked INTEGER NOT NULL DEFAULT 0,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS events (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  kind TEXT NOT NULL,
  video_id TEXT NOT NULL,
  channel_id TEXT NOT NULL,
  data TEXT,
  created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_items_channel_id ON items(channel_id);
CREATE INDEX IF NOT EXISTS idx_items_is_live_now ON items(is_live_now);
CREATE INDEX IF NOT EXISTS idx_items_published_at ON items(published_at);
CREATE INDEX IF NOT EXISTS idx_events_created_at ON events(created_at);
CREATE INDEX IF NOT EXISTS idx_events_channel_id ON events(channel_id);
"""


def _ts(value: Optional[datetime]) -> Optional[str]:
    # fixed-width UTC so timestamps compare correctly as text
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f+00:00")


def _dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _channel(row: sqlite3.Row) -> Channel:
    return Channel(
        channel_id=row["channel_id"],
        title=row["title"],
        description=row["description"],
        thumbnail_url=row["thumbnail_url"],
        is_active=bool(row["is_active"]),
        last_checked_at=_dt(row["last_checked_at"]),
    )


def _item(row: sqlite3.Row) -> Item:
    return Item(
        video_id=row["video_id"],
        channel_id=row["channel_id"],
        title=row["title"],
        published_at=_dt(row["published_at"]),
        thumbnail_url=row["thumbnail_url"] or "",
        type=ItemType(row["type"]),
        duration=row["duration"],
        scheduled_start=_dt(row["scheduled_start"]),
        is_live_now=bool(row["is_live_now"]),
        was_live_recording=bool(row["was_live_recording"]),
        is_upcoming=bool(row["is_upcoming"]),
        bookmarked=bool(row["bookmarked"]),
    )


def _event(row: sqlite3.Row) -> Event:
    return Event(
        kind=EventKind(row["kind"]),
        video_id=row["video_id"],
        channel_id=row["channel_id"],
        data=json.loads(row["data"]) if row["data"] else {},
        created_at=_dt(row["created_at"]),
        id=row["id"],
    )


class SqliteStore(Store):
    """
    SQLite-backed store.

    One connection guarded by a lock; calls run on worker threads so the event
    loop never blocks on disk. Each public method is a single transaction.
    """

    def __init__(self, path: str):
        self.path = path
        if path != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(path, timeout=30, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")
        if path != ":memory:":
            self._conn.execute("PRAGMA journal_mode = WAL")
            self._conn.execute("PRAGMA synchronous = NORMAL")
        self._conn.executescript(SCHEMA)
        self._conn.commit()
        log.debug("SQLite store ready at %s", path)

    def _transact(self, fn: Callable[[sqlite3.Connection], T]) -> T:
        with self._lock:
            try:
                result = fn(self._conn)
                self._conn.commit()
                return result
            except Exception:
                self._conn.rollback()
                raise

    async def _run(self, fn: Callable[[sqlite3.Connection], T]) -> T:
        return await asyncio.to_thread(self._transact, fn)

    async def close(self) -> None:
        with self._lock:
            self._conn.close()

    # channels

    async def upsert_channel(self, channel: Channel) -> Upserted[Channel]:
        def op(conn):
            row = conn.execute("SELECT * FROM channels WHERE channel_id = ?", (channel.channel_id,)).fetchone()
            now = _ts(utcnow())
            conn.execute(
                """
                INSERT INTO channels (channel_id, title, description, thumbnail_url, is_active, created_at, updated_at)
                VALUES (?, ?, ?, ?, 1, ?, ?)
                ON CONFLICT(channel_id) DO UPDATE SET
                  title = excluded.title,
                  description = excluded.description,
                  thumbnail_url = excluded.thumbnail_url,
                  is_active = 1,
                  updated_at = excluded.updated_at
                """,
                (channel.channel_id, channel.title, channel.description, channel.thumbnail_url, now, now),
            )
            current = conn.execute("SELECT * FROM channels WHERE channel_id = ?", (channel.channel_id,)).fetchone()
            return Upserted(_channel(row) if row else None, _channel(current))
        return await self._run(op)

    async def get_channel(self, channel_id: str) -> Optional[Channel]:
        def op(conn):
            row = conn.execute("SELECT * FROM channels WHERE channel_id = ?", (channel_id,)).fetchone()
            return _channel(row) if row else None
        return await self._run(op)

    async def list_active_channels(self) -> List[Channel]:
        def op(conn):
            return [_channel(r) for r in conn.execute("SELECT * FROM channels WHERE is_active = 1 ORDER BY created_at")]
        return await self._run(op)

    async def deactivate_channel(self, channel_id: str) -> bool:
        def op(conn):
            cur = conn.execute("UPDATE channels SET is_active = 0, updated_at = ? WHERE channel_id = ?", (_ts(utcnow()), channel_id))
            return cur.rowcount > 0
        return await self._run(op)

    async def delete_channel(self, channel_id: str) -> bool:
        def op(conn):
            conn.execute("DELETE FROM events WHERE channel_id = ?", (channel_id,))
            conn.execute("DELETE FROM items WHERE channel_id = ?", (channel_id,))
            cur = conn.execute("DELETE FROM channels WHERE channel_id = ?", (channel_id,))
            return cur.rowcount > 0
        return await self._run(op)

    async def touch_channel(self, channel_id: str, checked_at: datetime) -> None:
        def op(conn):
            conn.execute("UPDATE channels SET last_checked_at = ? WHERE channel_id = ?", (_ts(checked_at), channel_id))
        await self._run(op)

    # items

    async def upsert_item(self, item: Item) -> Upserted[Item]:
        def op(conn):
            row = conn.execute("SELECT * FROM items WHERE video_id = ?", (item.video_id,)).fetchone()
            now = _ts(utcnow())
            conn.execute(
                """
                INSERT INTO items (
                  video_id, channel_id, title, thumbnail_url, published_at, type, duration, scheduled_start,
                  is_live_now, was_live_recording, is_upcoming, bookmarked, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 0, ?, ?)
                ON CONFLICT(video_id) DO UPDATE SET
                  title = excluded.title,
                  thumbnail_url = excluded.thumbnail_url,
                  type = excluded.type,
                  duration = excluded.duration,
                  scheduled_start = excluded.scheduled_start,
                  is_live_now = excluded.is_live_now,
                  was_live_recording = excluded.was_live_recording,
                  is_upcoming = excluded.is_upcoming,
                  updated_at = excluded.updated_at
                """,
                (
                    item.video_id, item.channel_id, item.title, item.thumbnail_url, _ts(item.published_at),
                    item.type.value, item.duration, _ts(item.scheduled_start),
                    int(item.is_live_now), int(item.was_live_recording), int(item.is_upcoming), now, now,
                ),
            )
            current = conn.execute("SELECT * FROM items WHERE video_id = ?", (item.video_id,)).fetchone()
            return Upserted(_item(row) if row else None, _item(current))
        return await self._run(op)

    async def get_item(self, video_id: str) -> Optional[Item]:
        def op(conn):
            row = conn.execute("SELECT * FROM items WHERE video_id = ?", (video_id,)).fetchone()
            return _item(row) if row else None
        return await self._run(op)

    async def list_items_by_channel(self, channel_id: str, limit: int = 50) -> List[Item]:
        def op(conn):
            rows = conn.execute(
                "SELECT * FROM items WHERE channel_id = ? ORDER BY published_at DESC LIMIT ?", (channel_id, limit)
            )
            return [_item(r) for r in rows]
        return await self._run(op)

    async def list_live_items(self, channel_id: Optional[str] = None) -> List[Item]:
        def op(conn):
            if channel_id:
                rows = conn.execute("SELECT * FROM items WHERE is_live_now = 1 AND channel_id = ?", (channel_id,))
            else:
                rows = conn.execute("SELECT * FROM items WHERE is_live_now = 1")
            return [_item(r) for r in rows]
        return await self._run(op)

    async def list_scheduled_items(self, channel_id: Optional[str] = None) -> List[Item]:
        def op(conn):
            order = " ORDER BY scheduled_start IS NULL, scheduled_start ASC"
            if channel_id:
                rows = conn.execute("SELECT * FROM items WHERE is_upcoming = 1 AND channel_id = ?" + order, (channel_id,))
            else:
                rows = conn.execute("SELECT * FROM items WHERE is_upcoming = 1" + order)
            return [_item(r) for r in rows]
        return await self._run(op)

    async def delete_item(self, video_id: str) -> bool:
        def op(conn):
            conn.execute("DELETE FROM events WHERE video_id = ?", (video_id,))
            return conn.execute("DELETE FROM items WHERE video_id = ?", (video_id,)).rowcount > 0
        return await self._run(op)

    async def set_bookmark(self, video_id: str, bookmarked: bool) -> bool:
        def op(conn):
            cur = conn.execute(
                "UPDATE items SET bookmarked = ?, updated_at = ? WHERE video_id = ?",
                (int(bookmarked), _ts(utcnow()), video_id),
            )
            return cur.rowcount > 0
        return await self._run(op)

    async def list_bookmarked_items(self) -> List[Item]:
        def op(conn):
            return [_item(r) for r in conn.execute("SELECT * FROM items WHERE bookmarked = 1 ORDER BY updated_at DESC")]
        return await self._run(op)

    # events

    async def add_event(self, event: Event) -> Event:
        def op(conn):
            cur = conn.execute(
                "INSERT INTO events (kind, video_id, channel_id, data, created_at) VALUES (?, ?, ?, ?, ?)",
                (event.kind.value, event.video_id, event.channel_id, json.dumps(event.data), _ts(event.created_at)),
            )
            row = conn.execute("SELECT * FROM events WHERE id = ?", (cur.lastrowid,)).fetchone()
            return _event(row)
        return await self._run(op)

    async def list_recent_events(self, limit: int = 100) -> List[Event]:
        def op(conn):
            rows = conn.execute("SELECT * FROM events ORDER BY created_at DESC, id DESC LIMIT ?", (limit,))
            return [_event(r) for r in rows]
        return await self._run(op)

    async def list_events_since(self, since: datetime) -> List[Event]:
        def op(conn):
            rows = conn.execute("SELECT * FROM events WHERE created_at > ? ORDER BY created_at ASC, id ASC", (_ts(since),))
            return [_event(r) for r in rows]
        return await self._run(op)

    async def list_channel_events(self, channel_id: str, limit: int = 50) -> List[Event]:
        def op(conn):
            rows = conn.execute(
                "SELECT * FROM events WHERE channel_id = ? ORDER BY created_at DESC, id DESC LIMIT ?", (channel_id, limit)
            )
            return [_event(r) for r in rows]
        return await self._run(op)

    # retention

    async def prune_events_older_than(self, age: timedelta) -> int:
        def op(conn):
            return conn.execute("DELETE FROM events WHERE created_at < ?", (_ts(utcnow() - age),)).rowcount
        return await self._run(op)

    async def prune_items_exceeding(self, max_per_channel: int) -> int:
        def op(conn):
            doomed = [
                r["video_id"]
                for r in conn.execute(
                    """
                    SELECT video_id FROM (
                      SELECT video_id,
                             ROW_NUMBER() OVER (PARTITION BY channel_id ORDER BY published_at DESC) AS rn
                      FROM items WHERE bookmarked = 0
                    ) WHERE rn > ?
                    """,
                    (max_per_channel,),
                )
            ]
            for video_id in doomed:
                conn.execute("DELETE FROM events WHERE video_id = ?", (video_id,))
                conn.execute("DELETE FROM items WHERE video_id = ?", (video_id,))
            return len(doomed)
        return await self._run(op)

    async def prune_orphaned_events(self) -> int:
        def op(conn):
            return conn.execute("DELETE FROM events WHERE video_id NOT IN (SELECT video_id FROM items)").rowcount
        return await self._run(op)

    async def stats(self) -> Dict[str, Any]:
        def op(conn):
            def scalar(sql: str, *params) -> int:
                return conn.execute(sql, params).fetchone()[0]
            return {
                "total_channels": scalar("SELECT COUNT(*) FROM channels"),
                "active_channels": scalar("SELECT COUNT(*) FROM channels WHERE is_active = 1"),
                "total_items": scalar("SELECT COUNT(*) FROM items"),
                "live_now": scalar("SELECT COUNT(*) FROM items WHERE is_live_now = 1"),
                "scheduled": scalar("SELECT COUNT(*) FROM items WHERE is_upcoming = 1"),
                "recent_events": scalar(
                    "SELECT COUNT(*) FROM events WHERE created_at >= ?", _ts(utcnow() - timedelta(hours=24))
                ),
            }
        return await self._run(op)
