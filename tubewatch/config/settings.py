from typing import List, Optional
import re
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    poll_interval_sec: int = Field(default=180, alias="POLL_INTERVAL_SEC")
    classify_videos: bool = Field(default=False, alias="CLASSIFY_VIDEOS")
    max_items_per_feed: int = Field(default=15, alias="MAX_ITEMS_PER_FEED")
    max_items_per_channel: int = Field(default=10, alias="MAX_ITEMS_PER_CHANNEL")
    event_retention_days: float = Field(default=3, alias="EVENT_RETENTION_DAYS")
    fetch_min_delay_ms: int = Field(default=200, alias="FETCH_MIN_DELAY_MS")
    fetch_max_delay_ms: int = Field(default=800, alias="FETCH_MAX_DELAY_MS")
    fetch_max_concurrent: int = Field(default=2, alias="FETCH_MAX_CONCURRENT")
    fetch_max_retries: int = Field(default=3, alias="FETCH_MAX_RETRIES")
    fetch_timeout_sec: float = Field(default=10, alias="FETCH_TIMEOUT_SEC")
    store_backend: str = Field(default="sqlite", alias="STORE_BACKEND")
    database_path: str = Field(default="data/tubewatch.db", alias="DATABASE_PATH")
    channel_ids_raw: str = Field(default="", alias="CHANNEL_IDS")
    log_format: str = Field(default="plain", alias="LOG_FORMAT")
    metrics_port: Optional[int] = Field(default=9100, alias="METRICS_PORT")
    api_host: str = Field(default="0.0.0.0", alias="API_HOST")
    api_port: int = Field(default=8000, alias="API_PORT")

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore", populate_by_name=True)

    @property
    def channel_ids(self) -> List[str]:
        parts = re.split(r"[,\n\s]+", self.channel_ids_raw.strip()) if self.channel_ids_raw else []
        return [p for p in (s.strip() for s in parts) if p]

settings = Settings()
