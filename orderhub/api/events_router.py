"""Event ingestion, history and live stream routes."""
from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import StreamingResponse
from .deps import NO_STORE, Services, get_services, read_json_body
from ..streaming.sse import SSE_HEADERS, sse_stream

router = APIRouter(prefix="/api/events", tags=["events"])


@router.post("")
async def ingest_event(request: Request, services: Services = Depends(get_services)):
    """
    Ingest one event from a client device.

    Orders without ``total_cents`` are priced from the current menu. The
    stored event (with its computed total) is echoed back.
    """
    body = await read_json_body(request, services.settings.MAX_EVENT_SIZE)
    stored = await services.ingestion.ingest(body)
    return {"ok": True, "received": stored.to_payload()}


@router.get("")
async def list_events(
    response: Response,
    limit: int | None = None,
    services: Services = Depends(get_services),
):
    """Recent events, newest first. ``limit`` is capped server-side."""
    events = await services.store.query_recent(limit)
    response.headers["Cache-Control"] = NO_STORE
    return [e.to_payload() for e in events]


@router.get("/stream")
async def stream_events(services: Services = Depends(get_services)):
    """
    Server-Sent Events feed of newly stored events.

    Each ``data:`` message is one JSON event. ``ping`` events keep
    intermediaries from timing the connection out.
    """
    return StreamingResponse(
        sse_stream(services.hub, services.settings.KEEPALIVE_INTERVAL),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
