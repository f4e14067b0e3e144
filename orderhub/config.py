from pydantic import AnyUrl
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from typing import Literal

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    ENV: str = "dev"
    SERVICE_PORT: int = 4000
    LOG_JSON: bool = True
    LOG_LEVEL: str = "INFO"
    MAX_EVENT_SIZE: int = 65536
    # Event store backend: "memory", "sqlite" or "redis"
    STORE_ADAPTER: Literal["memory", "sqlite", "redis"] = "sqlite"
    DATABASE_URL: str = "sqlite+aiosqlite:///./orderhub.db"
    REDIS_URL: AnyUrl | None = None
    # Event history paging
    EVENTS_DEFAULT_LIMIT: int = 200
    EVENTS_HISTORY_CEILING: int = 500
    # Live stream
    KEEPALIVE_INTERVAL: float = 15.0
    SUBSCRIBER_QUEUE_SIZE: int = 100
    # IANA zone used for the "today" sales bucket; system local time when unset
    TIMEZONE: str | None = None
    # JSON list of {"name": ..., "price_cents": ...} used for order totals
    MENU_FILE: str | None = None
    # Reject status changes for unknown orders instead of logging them
    STRICT_STATUS_UPDATES: bool = False

@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
