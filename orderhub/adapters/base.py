"""Base adapter interface for event store backends."""
from abc import ABC, abstractmethod
from typing import Iterable
from ..event_models import StoredEvent


class EventStoreAdapter(ABC):
    """Abstract interface for append-only event log backends.

    Ordering everywhere is by ``(ts, seq)``: event time first, log position
    as the tie-breaker.
    """

    @abstractmethod
    async def append(self, evt: StoredEvent) -> StoredEvent:
        """
        Durably append an event to the log.

        Args:
            evt: Fully populated event; its ``seq`` is ignored

        Returns:
            The stored event with its assigned ``seq``
        """
        pass

    @abstractmethod
    async def query_by_type_and_range(
        self,
        event_type: str,
        from_ms: int | None = None,
        to_ms: int | None = None,
        descending: bool = False,
    ) -> list[StoredEvent]:
        """
        Events of one type with ``from_ms <= ts < to_ms``.

        Args:
            event_type: Event type tag
            from_ms: Inclusive lower bound, open when None
            to_ms: Exclusive upper bound, open when None
            descending: Newest first when True
        """
        pass

    @abstractmethod
    async def list_recent(self, limit: int) -> list[StoredEvent]:
        """Newest events first, at most ``limit``."""
        pass

    @abstractmethod
    async def replay(self) -> Iterable[StoredEvent]:
        """Every event in log (``seq``) order."""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """
        Check if the backend is healthy and accessible.

        Returns:
            True if backend is healthy, False otherwise
        """
        pass

    async def initialize(self) -> None:
        """Prepare backend structures (tables, indexes)."""
        return None

    async def close(self) -> None:
        """Release backend resources."""
        return None
