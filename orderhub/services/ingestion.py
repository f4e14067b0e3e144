"""Event ingestion: the write path shared by every endpoint that records events.

Per request: validate -> compute total (orders only) -> append -> update the
order projection -> broadcast -> respond. Broadcasting happens strictly after
the append returned, so no subscriber sees an event the log does not hold.
"""
from typing import Any
import asyncio
import time
import structlog
from ..errors import NotFoundError, ValidationError
from ..event_models import (
    ORDER,
    ORDER_STATUS,
    ORDER_STATUSES,
    OrderRequest,
    StoredEvent,
    now_ms,
    parse_event_request,
)
from .menu import MenuLookup, compute_total

log = structlog.get_logger()


class IngestionService:
    """Orchestrates validation, persistence, projection and fan-out."""

    def __init__(self, store, projection, hub, menu: MenuLookup, metrics=None, strict_status_updates: bool = False):
        self._store = store
        self._projection = projection
        self._hub = hub
        self._menu = menu
        self._metrics = metrics
        self._strict_status_updates = strict_status_updates
        # Keeps projection updates and broadcasts in log order
        self._commit_lock = asyncio.Lock()

    async def ingest(self, body: Any) -> StoredEvent:
        """
        Validate and record one raw event body.

        Raises:
            ValidationError: malformed body, nothing written
            StorageError: the store failed, nothing projected or broadcast
        """
        request = parse_event_request(body)

        total = request.total_cents
        if total is None:
            if isinstance(request, OrderRequest):
                # Prices are captured now; later menu edits leave this total alone
                total = await compute_total(request.items, self._menu)
            else:
                total = 0

        return await self._commit(request.to_stored(total_cents=total, received_ms=now_ms()))

    async def change_status(self, order_id: str, status: Any) -> StoredEvent:
        """
        Record a status change for ``order_id`` as a new ``order_status`` event.

        Unknown order ids are logged like any other status change and leave
        the projection untouched, unless strict status updates are enabled.

        Raises:
            ValidationError: status outside the allowed set
            NotFoundError: unknown order id with strict status updates
        """
        if not isinstance(status, str) or status not in ORDER_STATUSES:
            raise ValidationError(
                f"status must be one of {', '.join(ORDER_STATUSES)}", kind="invalid_status"
            )
        if self._strict_status_updates and self._projection.get(order_id) is None:
            raise NotFoundError(f"Order {order_id} not found", kind="order_not_found")

        return await self.ingest({
            "type": ORDER_STATUS,
            "orderId": order_id,
            "status": status,
            "message": "status changed",
            "deviceId": "admin",
        })

    async def _commit(self, event: StoredEvent) -> StoredEvent:
        start_time = time.time()
        async with self._commit_lock:
            stored = await self._store.append(event)
            order = self._projection.apply(stored)
            delivered = self._hub.publish(stored)

        if self._metrics is not None:
            self._metrics.record_event_ingested(stored.type, time.time() - start_time)
            self._metrics.orders_active.set(self._projection.active_count)

        if stored.type == ORDER:
            log.info("order.received", id=stored.id, items=len(stored.items or []),
                     total_cents=stored.total_cents, subscribers=delivered)
        elif stored.type == ORDER_STATUS:
            log.info("order.status_changed", order_id=stored.order_id, status=stored.status,
                     known_order=order is not None, subscribers=delivered)
        else:
            log.info("event.received", id=stored.id, type=stored.type, subscribers=delivered)
        return stored
