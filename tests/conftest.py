"""Shared fixtures: a fresh in-memory app per test."""
import asyncio
import pytest
from httpx import AsyncClient, ASGITransport
from orderhub.adapters.memory import InMemoryAdapter
from orderhub.config import Settings
from orderhub.main import create_app
from orderhub.services.event_store import EventStore
from orderhub.services.menu import StaticMenu


@pytest.fixture
def settings():
    return Settings(
        STORE_ADAPTER="memory",
        LOG_JSON=False,
        TIMEZONE="UTC",
        KEEPALIVE_INTERVAL=15.0,
        SUBSCRIBER_QUEUE_SIZE=100,
    )


@pytest.fixture
def menu():
    return StaticMenu({"Salmon": 1200, "Udon": 900, "Green Tea": 300})


@pytest.fixture
def store(settings):
    return EventStore(InMemoryAdapter(), settings=settings)


@pytest.fixture
def app(settings, store, menu):
    return create_app(settings, store=store, menu=menu)


@pytest.fixture
def services(app):
    return app.state.services


@pytest.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


async def _wait_for_subscribers(hub, count: int, timeout: float = 2.0):
    """Poll until ``hub`` has ``count`` subscribers."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while hub.subscriber_count != count:
        if loop.time() > deadline:
            raise AssertionError(f"expected {count} subscribers, have {hub.subscriber_count}")
        await asyncio.sleep(0.01)


@pytest.fixture
def wait_for_subscribers():
    return _wait_for_subscribers
