"""WebSocket writer for hub subscribers."""
import asyncio
import contextlib
import structlog
from fastapi import WebSocket, WebSocketDisconnect
from .hub import BroadcastHub, StreamClosed, Subscriber
from ..event_models import now_ms

log = structlog.get_logger()


async def _read_client(websocket: WebSocket, hub: BroadcastHub, subscriber: Subscriber):
    """
    Consume client frames until the client goes away.

    Answers "ping" with "pong". On disconnect the subscriber is removed,
    which wakes the writer loop.
    """
    try:
        while True:
            message = await websocket.receive_text()
            if message == "ping":
                await websocket.send_text("pong")
            elif message == "pong":
                log.debug("websocket.pong_received", subscriber_id=subscriber.id)
    except WebSocketDisconnect:
        log.info("websocket.client_disconnected", subscriber_id=subscriber.id)
    except Exception as e:
        log.warning("websocket.read_failed", subscriber_id=subscriber.id, error=str(e))
    finally:
        hub.unsubscribe(subscriber)


async def handle_websocket_stream(
    websocket: WebSocket,
    hub: BroadcastHub,
    keepalive_interval: float = 15.0,
):
    """
    Stream hub events to one WebSocket client.

    Frames:
    - {"type": "ping", "data": "connected"} once after accept
    - {"type": "event", "data": <event>} per published event
    - {"type": "ping", "ts": <ms>} every ``keepalive_interval`` seconds
    """
    await websocket.accept()
    subscriber = hub.subscribe()
    reader = asyncio.create_task(_read_client(websocket, hub, subscriber))

    try:
        await websocket.send_json({"type": "ping", "data": "connected"})
        loop = asyncio.get_running_loop()
        next_ping = loop.time() + keepalive_interval
        while True:
            try:
                payload = await subscriber.get(timeout=max(next_ping - loop.time(), 0))
            except StreamClosed:
                break
            if payload is not None:
                await websocket.send_json({"type": "event", "data": payload})
            if loop.time() >= next_ping:
                await websocket.send_json({"type": "ping", "ts": now_ms()})
                next_ping = loop.time() + keepalive_interval
    except WebSocketDisconnect:
        log.info("websocket.client_disconnected", subscriber_id=subscriber.id)
    except Exception as e:
        log.error("websocket.error", subscriber_id=subscriber.id, error=str(e), exc_info=True)
    finally:
        hub.unsubscribe(subscriber)
        reader.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await reader
