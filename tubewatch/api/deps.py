from typing import Optional

from fastapi import HTTPException

from tubewatch.monitor.events import Broadcaster
from tubewatch.monitor.poller import Monitor

_monitor: Optional[Monitor] = None
_broadcaster: Optional[Broadcaster] = None


def set_monitor(monitor: Optional[Monitor], broadcaster: Optional[Broadcaster] = None):
    global _monitor, _broadcaster
    _monitor = monitor
    _broadcaster = broadcaster


def get_monitor() -> Monitor:
    if _monitor is None:
        raise HTTPException(503, "Monitor not available")
    return _monitor


def get_broadcaster() -> Broadcaster:
    if _broadcaster is None:
        raise HTTPException(503, "Event stream not available")
    return _broadcaster


def current_monitor() -> Optional[Monitor]:
    return _monitor
