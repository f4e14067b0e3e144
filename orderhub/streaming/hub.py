"""Live broadcast hub: fans newly stored events out to connected subscribers."""
import asyncio
import time
import uuid
import structlog
from typing import Any, Set
from ..errors import BroadcastError
from ..event_models import StoredEvent

log = structlog.get_logger()

# Queued after the last message of a closed subscriber
_CLOSED = object()


class StreamClosed(Exception):
    """The subscriber was closed; its writer should stop."""


class Subscriber:
    """
    One live connection's outbound queue.

    The hub only ever does non-blocking puts. A writer task owned by the
    transport (SSE response, WebSocket handler) drains the queue.
    """

    def __init__(self, queue_size: int = 100):
        self.id = str(uuid.uuid4())
        self.connected_at = time.time()
        self.closed = False
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)

    def offer(self, payload: dict[str, Any]) -> None:
        """
        Queue a message without waiting.

        Raises:
            asyncio.QueueFull: if the writer has fallen too far behind
        """
        self._queue.put_nowait(payload)

    async def get(self, timeout: float | None = None) -> dict[str, Any] | None:
        """
        Next queued message, or None if ``timeout`` elapses first.

        Raises:
            StreamClosed: once the subscriber is closed and drained
        """
        if self.closed and self._queue.empty():
            raise StreamClosed()
        try:
            item = self._queue.get_nowait()
        except asyncio.QueueEmpty:
            try:
                item = await asyncio.wait_for(self._queue.get(), timeout=timeout)
            except asyncio.TimeoutError:
                return None
        if item is _CLOSED:
            raise StreamClosed()
        return item

    def close(self) -> None:
        """Discard pending messages and wake the writer so it can exit."""
        if self.closed:
            return
        self.closed = True
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(_CLOSED)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def connected_seconds(self) -> float:
        return time.time() - self.connected_at


class BroadcastHub:
    """
    Registry of live subscribers.

    Features:
    - Non-blocking publish to every subscriber queue
    - Stalled subscribers (full queue) are pruned, never awaited
    - Idempotent unsubscribe
    - Explicit shutdown that closes every subscriber
    """

    def __init__(self, queue_size: int = 100, metrics=None):
        """
        Initialize hub.

        Args:
            queue_size: Per-subscriber queue bound
            metrics: Optional Metrics instance for subscriber/drop gauges
        """
        self._subscribers: Set[Subscriber] = set()
        self._queue_size = queue_size
        self._metrics = metrics

    def subscribe(self) -> Subscriber:
        """Register a new subscriber."""
        subscriber = Subscriber(self._queue_size)
        self._subscribers.add(subscriber)
        self._report()
        log.info("hub.subscribed", subscriber_id=subscriber.id, total_subscribers=len(self._subscribers))
        return subscriber

    def unsubscribe(self, subscriber: Subscriber) -> bool:
        """
        Remove a subscriber. Removing one that is already gone is a no-op.

        Returns:
            True if the subscriber was registered
        """
        if subscriber not in self._subscribers:
            return False
        self._subscribers.discard(subscriber)
        subscriber.close()
        self._report()
        log.info(
            "hub.unsubscribed",
            subscriber_id=subscriber.id,
            connected_seconds=round(subscriber.connected_seconds, 3),
            total_subscribers=len(self._subscribers),
        )
        return True

    def publish(self, event: StoredEvent) -> int:
        """
        Queue an event for every subscriber.

        Delivery failures are isolated: the failing subscriber is dropped
        and the remaining ones still receive the event.

        Returns:
            Number of subscribers the event was queued for
        """
        if not self._subscribers:
            return 0

        payload = event.to_payload()
        delivered = 0
        for subscriber in list(self._subscribers):
            try:
                subscriber.offer(payload)
                delivered += 1
            except asyncio.QueueFull:
                self._drop(subscriber, BroadcastError(
                    f"Subscriber {subscriber.id} is not draining its queue",
                    kind="subscriber_stalled",
                ))
        return delivered

    def _drop(self, subscriber: Subscriber, error: BroadcastError) -> None:
        log.warning(
            "broadcast.subscriber_dropped",
            subscriber_id=subscriber.id,
            error=error.kind,
            message=error.message,
        )
        if self._metrics is not None:
            self._metrics.broadcast_dropped_total.inc()
        self.unsubscribe(subscriber)

    def close(self) -> None:
        """Close every subscriber; their writers finish and disconnect."""
        count = len(self._subscribers)
        for subscriber in list(self._subscribers):
            self.unsubscribe(subscriber)
        log.info("hub.closed", closed_subscribers=count)

    def _report(self) -> None:
        if self._metrics is not None:
            self._metrics.subscribers_active.set(len(self._subscribers))

    @property
    def subscriber_count(self) -> int:
        """Get number of live subscribers."""
        return len(self._subscribers)
