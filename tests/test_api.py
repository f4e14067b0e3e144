"""End-to-end tests for the HTTP and WebSocket API."""
import asyncio
import orjson
import pytest
from fastapi.testclient import TestClient
from orderhub.event_models import StoredEvent, now_ms


async def _drained(hub, timeout: float = 2.0):
    """Wait until every subscriber has taken its queued messages."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while any(s.pending for s in list(hub._subscribers)):
        if loop.time() > deadline:
            raise AssertionError("subscribers did not drain")
        await asyncio.sleep(0.01)
    await asyncio.sleep(0.05)


@pytest.mark.asyncio
async def test_order_lifecycle(client):
    """Order is priced, listed as active, then delivered."""
    response = await client.post(
        "/api/events",
        json={"type": "order", "items": ["Salmon", "Udon"], "table": "3", "companyName": "Acme"},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["ok"] is True
    order = body["received"]
    assert order["total_cents"] == 2100
    assert order["status"] == "ordered"
    assert order["table"] == "3"

    active = (await client.get("/api/orders", params={"active": "true"})).json()
    assert [o["id"] for o in active] == [order["id"]]

    response = await client.patch(f"/api/orders/{order['id']}/status", json={"status": "delivered"})
    assert response.status_code == 200
    status_event = response.json()["event"]
    assert status_event["type"] == "order_status"
    assert status_event["orderId"] == order["id"]

    assert (await client.get("/api/orders", params={"active": "true"})).json() == []
    all_orders = (await client.get("/api/orders")).json()
    assert all_orders[0]["status"] == "delivered"
    assert all_orders[0]["companyName"] == "Acme"

    response = await client.get("/api/events")
    assert response.headers["cache-control"].startswith("no-store")
    assert {e["id"] for e in response.json()} == {order["id"], status_event["id"]}


@pytest.mark.asyncio
async def test_delivered_order_with_client_ts_ahead_of_server(client):
    """PATCH applies even when the POS clock is an hour ahead."""
    order = (await client.post(
        "/api/events",
        json={"type": "order", "items": ["Salmon"], "total_cents": 1200, "ts": now_ms() + 3_600_000},
    )).json()["received"]
    active = (await client.get("/api/orders", params={"active": "true"})).json()
    assert [(o["id"], o["status"]) for o in active] == [(order["id"], "ordered")]

    response = await client.patch(f"/api/orders/{order['id']}/status", json={"status": "delivered"})
    assert response.status_code == 200

    assert (await client.get("/api/orders", params={"active": "true"})).json() == []


@pytest.mark.asyncio
async def test_empty_body_records_default_tap(client):
    response = await client.post("/api/events", content=b"", headers={"content-type": "application/json"})

    assert response.status_code == 200
    received = response.json()["received"]
    assert received["type"] == "tap"
    assert received["message"] == "button pressed"
    assert received["deviceId"] == "ios"


@pytest.mark.asyncio
async def test_events_listed_newest_first(client):
    for ts in (1000, 3000, 2000):
        await client.post("/api/events", json={"type": "tap", "ts": ts})

    events = (await client.get("/api/events", params={"limit": 2})).json()

    assert [e["ts"] for e in events] == [3000, 2000]


@pytest.mark.asyncio
async def test_event_history_limit_is_capped(client, services):
    for i in range(505):
        await services.store.append(StoredEvent(type="tap", ts=1000 + i))

    capped = (await client.get("/api/events", params={"limit": 10000})).json()
    default = (await client.get("/api/events")).json()

    assert len(capped) == 500
    assert len(default) == 200
    assert capped[0]["ts"] == 1504


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "content,kind",
    [
        (b"{not json", "invalid_json"),
        (b"[1, 2]", "invalid_body"),
        (b'{"type": "order", "items": "Salmon"}', "invalid_items"),
        (b'{"type": "order_status", "status": "cooking"}', "order_id_required"),
        (b'{"type": "order", "total_cents": "lots"}', "invalid_total"),
        (b'{"type": "order", "total_cents": 10000000000000000000}', "invalid_total"),
        (b'{"type": "tap", "ts": 1e30}', "invalid_ts"),
    ],
)
async def test_rejected_events(client, services, content, kind):
    response = await client.post(
        "/api/events", content=content, headers={"content-type": "application/json"}
    )

    assert response.status_code == 400
    body = response.json()
    assert body["error"] == kind
    assert body["path"] == "/api/events"
    assert body["correlation_id"] == response.headers["x-correlation-id"]
    assert list(await services.store.replay()) == []


@pytest.mark.asyncio
async def test_oversized_payload(client, services):
    big = orjson.dumps({"type": "tap", "note": "x" * (services.settings.MAX_EVENT_SIZE + 1)})

    response = await client.post(
        "/api/events", content=big, headers={"content-type": "application/json"}
    )

    assert response.status_code == 413
    assert response.json()["error"] == "payload_too_large"
    assert list(await services.store.replay()) == []


@pytest.mark.asyncio
async def test_status_change_errors(client):
    order = (await client.post("/api/events", json={"type": "order"})).json()["received"]

    response = await client.patch(f"/api/orders/{order['id']}/status", json={"status": "eaten"})
    assert response.status_code == 400
    assert response.json()["error"] == "invalid_status"

    response = await client.patch(f"/api/orders/{order['id']}/status", json={})
    assert response.status_code == 400
    assert response.json()["error"] == "invalid_status"

    # Unknown ids are accepted and leave the order list alone
    response = await client.patch("/api/orders/missing/status", json={"status": "cooking"})
    assert response.status_code == 200
    assert [o["id"] for o in (await client.get("/api/orders")).json()] == [order["id"]]


@pytest.mark.asyncio
async def test_status_change_unknown_order_strict(settings, store, menu):
    from httpx import ASGITransport, AsyncClient
    from orderhub.main import create_app

    app = create_app(settings.model_copy(update={"STRICT_STATUS_UPDATES": True}), store=store, menu=menu)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.patch("/api/orders/missing/status", json={"status": "cooking"})

    assert response.status_code == 404
    assert response.json()["error"] == "order_not_found"


@pytest.mark.asyncio
async def test_sales_in_range(client):
    for ts, items in ((1000, ["Salmon"]), (2000, ["Udon", "Udon"]), (3000, ["Salmon"])):
        await client.post("/api/events", json={"type": "order", "ts": ts, "items": items})

    response = await client.get("/api/orders/sales", params={"from": 1000, "to": 3000})

    assert response.status_code == 200
    sales = response.json()
    assert sales["from"] == 1000
    assert sales["to"] == 3000
    assert sales["orders_count"] == 2
    assert sales["total_cents"] == 3000
    assert sales["byItem"]["Udon"] == {"count": 2, "total_cents": 3600}
    assert sales["daily"] == [{"date": "1970-01-01", "total_cents": 3000}]


@pytest.mark.asyncio
async def test_sales_range_defaults_to_last_week(client):
    recent = now_ms() - 60_000
    await client.post("/api/events", json={"type": "order", "ts": recent, "items": ["Udon"]})
    await client.post("/api/events", json={"type": "order", "ts": 5000, "items": ["Udon"]})

    sales = (await client.get("/api/orders/sales")).json()

    assert sales["orders_count"] == 1
    assert sales["to"] - sales["from"] == 7 * 24 * 3600 * 1000


@pytest.mark.asyncio
async def test_sales_range_errors(client):
    response = await client.get("/api/orders/sales", params={"from": 3000, "to": 1000})
    assert response.status_code == 400
    assert response.json()["error"] == "invalid_range"

    response = await client.get("/api/orders/sales", params={"from": "yesterday"})
    assert response.status_code == 422
    assert response.json()["error"] == "validation_error"


@pytest.mark.asyncio
async def test_sales_summary_and_stats(client):
    ts = now_ms() - 60_000
    order = (await client.post(
        "/api/events", json={"type": "order", "ts": ts, "items": ["Green Tea"], "companyName": "Acme"}
    )).json()["received"]
    await client.patch(f"/api/orders/{order['id']}/status", json={"status": "cooking"})

    summary = (await client.get("/api/orders/sales/summary")).json()
    stats = (await client.get("/api/orders/stats")).json()

    assert set(summary) == {"today", "d7", "d30", "d90", "d180", "d365"}
    assert summary["d7"]["orders_count"] == 1
    assert summary["d7"]["topItems"] == [{"name": "Green Tea", "count": 1}]
    assert summary["d365"]["total_cents"] == 300
    assert stats["byStatus"] == {"cooking": 1}
    assert stats["byCompany"] == {"Acme": 1}


@pytest.mark.asyncio
async def test_unexpected_error_hides_details(client, services, monkeypatch):
    async def boom(now=None):
        raise RuntimeError("secret connection string")

    monkeypatch.setattr(services.sales, "order_stats", boom)

    response = await client.get("/api/orders/stats")

    assert response.status_code == 500
    assert response.json()["error"] == "internal_error"
    assert "secret" not in response.text


@pytest.mark.asyncio
async def test_sse_stream_delivers_new_events(client, services, wait_for_subscribers):
    hub = services.hub
    stream = asyncio.create_task(client.get("/api/events/stream"))
    await wait_for_subscribers(hub, 1)

    posted = (await client.post("/api/events", json={"type": "tap", "message": "live"})).json()["received"]
    await _drained(hub)
    hub.close()
    response = await asyncio.wait_for(stream, timeout=5)

    assert response.headers["content-type"].startswith("text/event-stream")
    assert response.headers["x-accel-buffering"] == "no"
    chunks = [c for c in response.text.split("\n\n") if c]
    assert chunks[0] == 'event: ping\ndata: "connected"'
    assert orjson.loads(chunks[1][len("data: "):]) == posted
    assert hub.subscriber_count == 0


def test_websocket_stream(app):
    with TestClient(app) as client:
        with client.websocket_connect("/ws") as websocket:
            assert websocket.receive_json() == {"type": "ping", "data": "connected"}

            posted = client.post("/api/events", json={"type": "order", "items": ["Udon"]}).json()["received"]
            frame = websocket.receive_json()
            assert frame == {"type": "event", "data": posted}

            websocket.send_text("ping")
            assert websocket.receive_text() == "pong"


def test_lifespan_rebuilds_orders_from_log(app, services):
    """Orders already in the log are listed after startup."""
    order = StoredEvent(type="order", status="ordered", items=["Udon"], ts=1000)
    asyncio.run(services.store.append(order))

    with TestClient(app) as client:
        orders = client.get("/api/orders").json()

    assert [o["id"] for o in orders] == [order.id]
    assert services.hub.subscriber_count == 0
