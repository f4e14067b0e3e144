"""Event store service with pluggable backend adapters."""
from ..event_models import StoredEvent
from ..adapters.base import EventStoreAdapter
from ..adapters.memory import InMemoryAdapter
from ..adapters.sqlite import SQLiteAdapter
from ..adapters.redis_store import RedisStoreAdapter
from ..config import Settings, get_settings
from ..errors import StorageError
from typing import Iterable
import structlog

log = structlog.get_logger()


class EventStore:
    """
    Append-only event log that delegates to a pluggable backend adapter.

    The adapter is selected based on the STORE_ADAPTER configuration setting.
    Backend failures are raised as StorageError; callers never see driver
    exceptions.
    """

    def __init__(self, adapter: EventStoreAdapter | None = None, settings: Settings | None = None):
        """
        Initialize event store with optional adapter.

        Args:
            adapter: Backend adapter to use (defaults to configured adapter)
            settings: Settings to read limits from (defaults to global settings)
        """
        self._settings = settings or get_settings()
        if adapter is None:
            adapter = create_adapter(self._settings)
        self._adapter = adapter

    @property
    def adapter(self) -> EventStoreAdapter:
        return self._adapter

    async def initialize(self) -> None:
        try:
            await self._adapter.initialize()
        except Exception as e:
            log.error("store.initialize_failed", error=str(e))
            raise StorageError("Failed to initialize event store") from e

    async def append(self, evt: StoredEvent) -> StoredEvent:
        """Durably append an event; returns only once the backend confirmed."""
        try:
            return await self._adapter.append(evt)
        except Exception as e:
            log.error("store.append_failed", error=str(e), event_id=evt.id, type=evt.type)
            raise StorageError("Failed to record event") from e

    async def query_by_type_and_range(
        self,
        event_type: str,
        from_ms: int | None = None,
        to_ms: int | None = None,
        descending: bool = False,
    ) -> list[StoredEvent]:
        """Events of ``event_type`` with ``from_ms <= ts < to_ms``."""
        try:
            return await self._adapter.query_by_type_and_range(
                event_type, from_ms, to_ms, descending=descending
            )
        except Exception as e:
            log.error("store.query_failed", error=str(e), type=event_type)
            raise StorageError("Failed to read events") from e

    async def query_recent(self, limit: int | None = None) -> list[StoredEvent]:
        """
        Newest events first.

        Non-positive or missing limits use EVENTS_DEFAULT_LIMIT; every limit
        is capped at EVENTS_HISTORY_CEILING.
        """
        if not limit or limit <= 0:
            limit = self._settings.EVENTS_DEFAULT_LIMIT
        limit = min(limit, self._settings.EVENTS_HISTORY_CEILING)
        try:
            return await self._adapter.list_recent(limit)
        except Exception as e:
            log.error("store.query_failed", error=str(e), limit=limit)
            raise StorageError("Failed to read events") from e

    async def replay(self) -> Iterable[StoredEvent]:
        """Every event in log order."""
        try:
            return await self._adapter.replay()
        except Exception as e:
            log.error("store.replay_failed", error=str(e))
            raise StorageError("Failed to replay events") from e

    async def health_check(self) -> bool:
        """Check backend adapter health."""
        return await self._adapter.health_check()

    async def close(self) -> None:
        await self._adapter.close()


def create_adapter(settings: Settings) -> EventStoreAdapter:
    """
    Create the adapter selected by configuration.

    Returns:
        EventStoreAdapter instance based on STORE_ADAPTER setting
    """
    if settings.STORE_ADAPTER == "redis":
        if not settings.REDIS_URL:
            log.warning(
                "adapter.fallback",
                requested="redis",
                actual="memory",
                reason="REDIS_URL not configured"
            )
            return InMemoryAdapter()

        log.info("adapter.selected", type="redis", url=str(settings.REDIS_URL))
        return RedisStoreAdapter(redis_url=str(settings.REDIS_URL))
    if settings.STORE_ADAPTER == "sqlite":
        log.info("adapter.selected", type="sqlite", url=settings.DATABASE_URL)
        return SQLiteAdapter(database_url=settings.DATABASE_URL)
    log.info("adapter.selected", type="memory")
    return InMemoryAdapter()
