"""Server-Sent Events writer for hub subscribers."""
from typing import Any, AsyncIterator
import asyncio
import orjson
import structlog
from .hub import BroadcastHub, StreamClosed, Subscriber
from ..event_models import now_ms

log = structlog.get_logger()

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def format_event(payload: dict[str, Any]) -> str:
    """One default-type SSE message carrying a JSON event."""
    return f"data: {orjson.dumps(payload).decode()}\n\n"


def format_ping(data: Any) -> str:
    return f"event: ping\ndata: {orjson.dumps(data).decode()}\n\n"


async def sse_stream(hub: BroadcastHub, keepalive_interval: float = 15.0) -> AsyncIterator[str]:
    """
    Subscribe to ``hub`` and yield its events as SSE text.

    Emits a ``connected`` ping first, then a timestamp ping every
    ``keepalive_interval`` seconds whether or not events are flowing. The
    subscriber is removed from the hub when the stream ends for any reason,
    including client disconnect (the response task is cancelled).
    """
    subscriber: Subscriber = hub.subscribe()
    try:
        yield format_ping("connected")
        loop = asyncio.get_running_loop()
        next_ping = loop.time() + keepalive_interval
        while True:
            try:
                payload = await subscriber.get(timeout=max(next_ping - loop.time(), 0))
            except StreamClosed:
                break
            if payload is not None:
                yield format_event(payload)
            if loop.time() >= next_ping:
                yield format_ping(now_ms())
                next_ping = loop.time() + keepalive_interval
    finally:
        hub.unsubscribe(subscriber)
        log.info("sse.stream_closed", subscriber_id=subscriber.id)
