"""WebSocket routes for event streaming."""
from fastapi import APIRouter, WebSocket
from ..streaming.websocket import handle_websocket_stream

router = APIRouter(tags=["websocket"])


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """
    WebSocket feed of newly stored events, same content as the SSE stream.

    Example client (JavaScript):
    ```javascript
    const ws = new WebSocket('ws://localhost:4000/ws');
    ws.onmessage = (msg) => {
        const frame = JSON.parse(msg.data);
        if (frame.type === 'event') console.log('Received:', frame.data);
    };
    ```
    """
    services = websocket.app.state.services
    await handle_websocket_stream(
        websocket,
        services.hub,
        keepalive_interval=services.settings.KEEPALIVE_INTERVAL,
    )
