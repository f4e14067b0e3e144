"""Tests for the ingestion write path."""
import asyncio
import pytest
from sqlalchemy import insert, update
from orderhub.adapters.sqlite import SQLiteAdapter, menu_items_table
from orderhub.adapters.memory import InMemoryAdapter
from orderhub.errors import NotFoundError, StorageError, ValidationError
from orderhub.event_models import StoredEvent
from orderhub.main import select_menu
from orderhub.metrics import Metrics
from orderhub.services.event_store import EventStore
from orderhub.services.ingestion import IngestionService
from orderhub.services.menu import SqlMenu, StaticMenu, compute_total
from orderhub.services.projection import OrderProjection
from orderhub.streaming.hub import BroadcastHub


class SlowFirstAdapter(InMemoryAdapter):
    """Delays the first append so a later request could overtake it."""

    def __init__(self):
        super().__init__()
        self._calls = 0

    async def append(self, evt: StoredEvent) -> StoredEvent:
        self._calls += 1
        if self._calls == 1:
            await asyncio.sleep(0.05)
        return await super().append(evt)


class FailingAdapter(InMemoryAdapter):
    async def append(self, evt: StoredEvent) -> StoredEvent:
        raise OSError("database is locked")


async def _insert_menu(adapter, rows):
    await adapter.initialize()
    async with adapter.engine.begin() as conn:
        await conn.execute(insert(menu_items_table), [{"name": n, "price_cents": p} for n, p in rows])


def _service(menu, adapter=None, strict=False, metrics=None):
    store = EventStore(adapter or InMemoryAdapter())
    projection = OrderProjection()
    hub = BroadcastHub()
    service = IngestionService(
        store, projection, hub, menu, metrics=metrics, strict_status_updates=strict
    )
    return service, store, projection, hub


@pytest.mark.asyncio
async def test_compute_total_counts_every_occurrence(menu):
    assert await compute_total(["Salmon", "Salmon", "Udon"], menu) == 3300
    assert await compute_total([], menu) == 0


@pytest.mark.asyncio
async def test_compute_total_unknown_item_is_free(menu):
    assert await compute_total(["Salmon", "Dragon Roll"], menu) == 1200


def test_menu_from_items_later_entry_wins():
    menu = StaticMenu.from_items([
        {"name": "Udon", "price_cents": 900},
        {"name": "", "price_cents": 100},
        {"name": "Udon", "price_cents": 950},
        {"name": "Tea", "price_cents": "n/a"},
    ])

    assert menu.price_of("Udon") == 950
    assert menu.price_of("Tea") == 0
    assert len(menu) == 2


def test_menu_from_file(tmp_path):
    path = tmp_path / "menu.json"
    path.write_text('[{"name": "Miso", "price_cents": 250}]')

    assert StaticMenu.from_file(path).price_of("Miso") == 250


@pytest.mark.asyncio
async def test_order_total_computed_from_menu(menu):
    service, store, projection, _ = _service(menu)

    stored = await service.ingest({"type": "order", "items": ["Salmon", "Green Tea"]})

    assert stored.total_cents == 1500
    assert stored.status == "ordered"
    assert projection.get(stored.id).total_cents == 1500
    assert [e.id for e in await store.replay()] == [stored.id]


@pytest.mark.asyncio
async def test_client_total_is_kept(menu):
    service, *_ = _service(menu)

    stored = await service.ingest({"type": "order", "items": ["Salmon"], "total_cents": 999})

    assert stored.total_cents == 999


@pytest.mark.asyncio
async def test_telemetry_total_is_zero(menu):
    service, *_ = _service(menu)

    stored = await service.ingest({"message": "hello"})

    assert stored.type == "tap"
    assert stored.total_cents == 0


@pytest.mark.asyncio
async def test_price_is_captured_at_ingest(tmp_path):
    """Menu edits apply to the next order and leave stored totals alone."""
    adapter = SQLiteAdapter(database_url=f"sqlite+aiosqlite:///{tmp_path / 'orders.db'}")
    try:
        await _insert_menu(adapter, [("Udon", 900)])
        service, store, *_ = _service(SqlMenu(adapter), adapter=adapter)
        before = await service.ingest({"type": "order", "items": ["Udon"]})

        async with adapter.engine.begin() as conn:
            await conn.execute(
                update(menu_items_table).where(menu_items_table.c.name == "Udon").values(price_cents=1500)
            )
        after = await service.ingest({"type": "order", "items": ["Udon"]})

        totals = {e.id: e.total_cents for e in await store.replay()}
        assert totals == {before.id: 900, after.id: 1500}
    finally:
        await adapter.close()


@pytest.mark.asyncio
async def test_sql_menu_lookup(tmp_path):
    adapter = SQLiteAdapter(database_url=f"sqlite+aiosqlite:///{tmp_path / 'orders.db'}")
    try:
        await _insert_menu(adapter, [("Salmon", 1200), ("Tea", 300), ("Tea", 350)])
        menu = SqlMenu(adapter)

        assert await menu.prices(["Salmon", "Tea", "Dragon Roll"]) == {"Salmon": 1200, "Tea": 350}
        assert await menu.prices([]) == {}
        assert await compute_total(["Salmon", "Salmon", "Dragon Roll"], menu) == 2400
    finally:
        await adapter.close()


@pytest.mark.asyncio
async def test_invalid_body_writes_nothing(menu):
    service, store, _, hub = _service(menu)
    subscriber = hub.subscribe()

    with pytest.raises(ValidationError):
        await service.ingest({"type": "order", "items": "Salmon"})

    assert list(await store.replay()) == []
    assert subscriber.pending == 0


@pytest.mark.asyncio
async def test_broadcast_follows_log_order(menu):
    """Concurrent requests are broadcast in the order they were stored."""
    service, store, _, hub = _service(menu, adapter=SlowFirstAdapter())
    subscriber = hub.subscribe()

    await asyncio.gather(
        service.ingest({"type": "tap", "message": "first"}),
        service.ingest({"type": "tap", "message": "second"}),
    )

    received = [(await subscriber.get(timeout=1)) for _ in range(2)]
    assert [p["seq"] for p in received] == [1, 2]
    assert [e.id for e in await store.replay()] == [p["id"] for p in received]


@pytest.mark.asyncio
async def test_storage_failure_skips_projection_and_broadcast(menu):
    service, _, projection, hub = _service(menu, adapter=FailingAdapter())
    subscriber = hub.subscribe()

    with pytest.raises(StorageError):
        await service.ingest({"type": "order", "items": ["Udon"]})

    assert projection.list_orders() == []
    assert subscriber.pending == 0


@pytest.mark.asyncio
async def test_change_status_appends_event(menu):
    service, store, projection, hub = _service(menu)
    order = await service.ingest({"type": "order", "items": ["Udon"]})
    subscriber = hub.subscribe()

    event = await service.change_status(order.id, "cooking")

    assert event.type == "order_status"
    assert event.order_id == order.id
    assert event.device_id == "admin"
    assert event.message == "status changed"
    assert projection.get(order.id).status == "cooking"
    assert (await subscriber.get(timeout=1))["id"] == event.id
    assert len(list(await store.replay())) == 2


@pytest.mark.asyncio
async def test_change_status_rejects_unknown_status(menu):
    service, store, *_ = _service(menu)
    order = await service.ingest({"type": "order"})

    for status in ("eaten", None, 3):
        with pytest.raises(ValidationError) as exc_info:
            await service.change_status(order.id, status)
        assert exc_info.value.kind == "invalid_status"

    assert len(list(await store.replay())) == 1


@pytest.mark.asyncio
async def test_change_status_unknown_order_is_recorded(menu):
    service, store, projection, _ = _service(menu)

    event = await service.change_status("no-such-order", "delivered")

    assert event.order_id == "no-such-order"
    assert projection.list_orders() == []
    assert [e.id for e in await store.replay()] == [event.id]


@pytest.mark.asyncio
async def test_change_status_unknown_order_strict(menu):
    service, store, *_ = _service(menu, strict=True)

    with pytest.raises(NotFoundError) as exc_info:
        await service.change_status("no-such-order", "delivered")

    assert exc_info.value.kind == "order_not_found"
    assert exc_info.value.status_code == 404
    assert list(await store.replay()) == []


@pytest.mark.asyncio
async def test_ingest_records_metrics(menu):
    metrics = Metrics()
    service, *_ = _service(menu, metrics=metrics)

    order = await service.ingest({"type": "order", "items": ["Udon"]})
    await service.ingest({"type": "tap"})
    await service.change_status(order.id, "delivered")

    sample = metrics.registry.get_sample_value
    assert sample("orderhub_events_ingested_total", {"event_type": "order"}) == 1.0
    assert sample("orderhub_events_ingested_total", {"event_type": "tap"}) == 1.0
    assert sample("orderhub_events_ingested_total", {"event_type": "order_status"}) == 1.0
    assert sample("orderhub_orders_active") == 0.0


def test_menu_selection(settings, tmp_path):
    path = tmp_path / "menu.json"
    path.write_text('[{"name": "Miso", "price_cents": 250}]')
    sqlite_settings = settings.model_copy(update={
        "STORE_ADAPTER": "sqlite",
        "DATABASE_URL": f"sqlite+aiosqlite:///{tmp_path / 'orders.db'}",
    })
    sqlite_store = EventStore(settings=sqlite_settings)

    assert isinstance(select_menu(sqlite_settings, sqlite_store), SqlMenu)
    with_file = sqlite_settings.model_copy(update={"MENU_FILE": str(path)})
    assert isinstance(select_menu(with_file, sqlite_store), StaticMenu)
    assert len(select_menu(settings, EventStore(InMemoryAdapter(), settings=settings))) == 0
