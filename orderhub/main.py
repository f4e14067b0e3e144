"""
orderhub - Restaurant order intake and live order feed.

Features:
- Append-only event log (memory, SQLite or Redis backend)
- Projected order list with active/delivered filtering
- Live fan-out over Server-Sent Events and WebSocket
- Sales statistics over arbitrary and preset time ranges
- Structured logging with correlation IDs, Prometheus metrics, health checks
"""
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app
from .config import Settings, get_settings
from .logging import setup_logging, get_logger
from .api.deps import Services
from .api.events_router import router as events_router
from .api.orders_router import router as orders_router
from .api.ws_router import router as ws_router
from .health import HealthChecker
from .metrics import Metrics
from .middleware.correlation import CorrelationIdMiddleware
from .middleware.error_handler import ErrorHandlerMiddleware, request_validation_handler
from .middleware.metrics import MetricsMiddleware
from .middleware.validation import PayloadLimitMiddleware
from .services.event_store import EventStore
from .services.ingestion import IngestionService
from .adapters.sqlite import SQLiteAdapter
from .services.menu import MenuLookup, SqlMenu, StaticMenu
from .services.projection import OrderProjection
from .services.sales import SalesAggregator, resolve_timezone
from .streaming.hub import BroadcastHub

SERVICE_NAME = "orderhub"
VERSION = "0.1.0"

logger = get_logger()


def select_menu(settings: Settings, store: EventStore) -> MenuLookup:
    """MENU_FILE snapshot if configured, else the live menu_items table of a SQLite store."""
    if settings.MENU_FILE:
        return StaticMenu.from_file(settings.MENU_FILE)
    if isinstance(store.adapter, SQLiteAdapter):
        return SqlMenu(store.adapter)
    logger.warning("menu.empty", reason="no MENU_FILE and store is not sqlite")
    return StaticMenu()


def build_services(
    settings: Settings,
    store: EventStore | None = None,
    menu: MenuLookup | None = None,
) -> Services:
    """Wire the process-wide components."""
    metrics = Metrics(service_name=SERVICE_NAME, version=VERSION)
    store = store or EventStore(settings=settings)
    if menu is None:
        menu = select_menu(settings, store)
    projection = OrderProjection()
    hub = BroadcastHub(queue_size=settings.SUBSCRIBER_QUEUE_SIZE, metrics=metrics)

    return Services(
        settings=settings,
        store=store,
        projection=projection,
        hub=hub,
        menu=menu,
        ingestion=IngestionService(
            store,
            projection,
            hub,
            menu,
            metrics=metrics,
            strict_status_updates=settings.STRICT_STATUS_UPDATES,
        ),
        sales=SalesAggregator(store, projection, tz=resolve_timezone(settings.TIMEZONE)),
        health=HealthChecker(store, service_name=SERVICE_NAME, version=VERSION),
        metrics=metrics,
    )


def create_app(
    settings: Settings | None = None,
    store: EventStore | None = None,
    menu: MenuLookup | None = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Settings (defaults to environment settings)
        store: Event store (defaults to the configured backend)
        menu: Menu price lookup (defaults to MENU_FILE, or an empty menu)
    """
    settings = settings or get_settings()
    services = build_services(settings, store=store, menu=menu)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "service_starting",
            version=VERSION,
            env=settings.ENV,
            store_adapter=type(services.store.adapter).__name__,
        )
        await services.store.initialize()
        await services.projection.rebuild(services.store)
        services.metrics.orders_active.set(services.projection.active_count)
        yield
        logger.info("service_stopping", subscribers=services.hub.subscriber_count)
        services.hub.close()
        await services.store.close()
        services.metrics.app_up.labels(service=SERVICE_NAME, version=VERSION).set(0)

    app = FastAPI(
        title="orderhub",
        version=VERSION,
        description="Restaurant order intake, live order feed and sales statistics",
        lifespan=lifespan,
    )
    app.state.services = services

    # Last added runs first: correlation ID, metrics, size limit, errors
    app.add_middleware(ErrorHandlerMiddleware)
    app.add_middleware(PayloadLimitMiddleware, max_size=settings.MAX_EVENT_SIZE)
    app.add_middleware(MetricsMiddleware, metrics=services.metrics)
    app.add_middleware(CorrelationIdMiddleware)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    app.include_router(events_router)
    app.include_router(orders_router)
    app.include_router(ws_router)

    app.mount("/metrics", make_asgi_app(registry=services.metrics.registry))

    @app.get("/health")
    async def health():
        """
        Liveness probe - basic health check.

        Returns 200 if service is running.
        """
        logger.debug("health_check_liveness")
        return services.health.liveness()

    @app.get("/health/ready")
    async def health_ready():
        """
        Readiness probe - event store, disk and memory checks.

        Returns:
            200: Service is ready to handle traffic
            503: Service is not ready
        """
        logger.debug("health_check_readiness")
        services.metrics.update_system_metrics()
        result = await services.health.readiness()
        status_code = 200 if result["status"] == "ready" else 503
        return JSONResponse(result, status_code=status_code)

    return app


_settings = get_settings()
setup_logging(json_output=_settings.LOG_JSON, service_name=SERVICE_NAME, level=_settings.LOG_LEVEL)
app = create_app(_settings)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "orderhub.main:app",
        host="0.0.0.0",
        port=_settings.SERVICE_PORT,
        reload=_settings.ENV == "dev",
    )
