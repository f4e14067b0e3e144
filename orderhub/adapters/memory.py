"""In-memory event store adapter."""
from typing import Iterable
import asyncio
import structlog
from .base import EventStoreAdapter
from ..event_models import StoredEvent

log = structlog.get_logger()


class InMemoryAdapter(EventStoreAdapter):
    """In-memory implementation of the event log, for tests and development."""

    def __init__(self):
        self._log: list[StoredEvent] = []
        self._lock = asyncio.Lock()

    async def append(self, evt: StoredEvent) -> StoredEvent:
        """Append event to the in-memory log."""
        async with self._lock:
            stored = evt.model_copy(update={"seq": len(self._log) + 1})
            self._log.append(stored)
        log.info(
            "event.appended",
            id=stored.id,
            seq=stored.seq,
            type=stored.type,
            adapter="memory"
        )
        return stored

    async def query_by_type_and_range(
        self,
        event_type: str,
        from_ms: int | None = None,
        to_ms: int | None = None,
        descending: bool = False,
    ) -> list[StoredEvent]:
        matches = [
            e for e in self._log
            if e.type == event_type
            and (from_ms is None or e.ts >= from_ms)
            and (to_ms is None or e.ts < to_ms)
        ]
        return sorted(matches, key=lambda e: e.sort_key, reverse=descending)

    async def list_recent(self, limit: int) -> list[StoredEvent]:
        """List recent events from the in-memory log."""
        return sorted(self._log, key=lambda e: e.sort_key, reverse=True)[:limit]

    async def replay(self) -> Iterable[StoredEvent]:
        return list(self._log)

    async def health_check(self) -> bool:
        """In-memory adapter is always healthy."""
        return True
