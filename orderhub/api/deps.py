"""Shared request dependencies."""
from dataclasses import dataclass
from typing import Any
from fastapi import Request
import orjson
from ..config import Settings
from ..errors import PayloadTooLargeError, ValidationError
from ..health import HealthChecker
from ..metrics import Metrics
from ..services.event_store import EventStore
from ..services.ingestion import IngestionService
from ..services.menu import MenuLookup
from ..services.projection import OrderProjection
from ..services.sales import SalesAggregator
from ..streaming.hub import BroadcastHub

NO_STORE = "no-store, no-cache, must-revalidate, proxy-revalidate"


@dataclass
class Services:
    """Process-wide components, created with the app and closed at shutdown."""
    settings: Settings
    store: EventStore
    projection: OrderProjection
    hub: BroadcastHub
    menu: MenuLookup
    ingestion: IngestionService
    sales: SalesAggregator
    health: HealthChecker
    metrics: Metrics


def get_services(request: Request) -> Services:
    return request.app.state.services


async def read_json_body(request: Request, max_size: int) -> Any:
    """
    Read and decode a JSON request body.

    Raises:
        PayloadTooLargeError: body longer than ``max_size`` bytes
        ValidationError: body is not valid JSON
    """
    body = await request.body()
    if len(body) > max_size:
        raise PayloadTooLargeError(f"Request payload exceeds maximum size of {max_size} bytes")
    if not body:
        return {}
    try:
        return orjson.loads(body)
    except orjson.JSONDecodeError:
        raise ValidationError("Request body is not valid JSON", kind="invalid_json")
