from fastapi import APIRouter, Depends
from pydantic import BaseModel
from typing import Any, Dict, List

from tubewatch.api.deps import get_monitor
from tubewatch.monitor.poller import Monitor

router = APIRouter(prefix="/system", tags=["system"])

class Health(BaseModel):
    status: str

class Status(BaseModel):
    running: bool
    interval_sec: float
    stats: Dict[str, Any]
    channels: List[Dict[str, Any]]

@router.get('/health', response_model=Health)
async def health():
    return Health(status='ok')

@router.get('/status', response_model=Status)
async def status(monitor: Monitor = Depends(get_monitor)):
    return Status(**await monitor.status())
