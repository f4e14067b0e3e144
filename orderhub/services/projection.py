"""Current order state derived from the event log.

An order is the fold of its ``order`` event and every ``order_status`` event
that references it. The order event only sets the initial status: any
status event overrides it, and among status events the one with the
greatest ``(ts, seq)`` wins. Status events for unknown order ids are ignored.

The same ``apply`` step maintains the live view and performs full replays,
so a view built incrementally always equals one rebuilt from the log.
"""
from typing import Iterable
from pydantic import BaseModel, ConfigDict, Field
import structlog
from ..event_models import ORDER, ORDER_STATUS, OrderStatus, StoredEvent

log = structlog.get_logger()


class Order(BaseModel):
    """Latest known state of one order."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    seq: int
    ts: int
    created_at: str = Field(alias="createdAt")
    device_id: str = Field(alias="deviceId")
    message: str
    table: str | None = None
    items: list[str] = Field(default_factory=list)
    note: str | None = None
    company_name: str | None = Field(None, alias="companyName")
    customer_name: str | None = Field(None, alias="customerName")
    total_cents: int = 0
    status: str = OrderStatus.ORDERED.value
    status_ts: int = Field(alias="statusTs")
    status_seq: int = Field(alias="statusSeq")

    @property
    def is_active(self) -> bool:
        return self.status != OrderStatus.DELIVERED.value

    def to_payload(self) -> dict:
        return self.model_dump(by_alias=True)

    @classmethod
    def from_event(cls, event: StoredEvent) -> "Order":
        return cls(
            id=event.id,
            seq=event.seq,
            ts=event.ts,
            created_at=event.created_at,
            device_id=event.device_id,
            message=event.message,
            table=event.table,
            items=list(event.items or []),
            note=event.note,
            company_name=event.company_name,
            customer_name=event.customer_name,
            total_cents=event.total_cents,
            status=event.status or OrderStatus.ORDERED.value,
            status_ts=event.ts,
            status_seq=event.seq,
        )


class OrderProjection:
    """In-memory materialized view of orders keyed by order id."""

    def __init__(self):
        self._orders: dict[str, Order] = {}
        # (ts, seq) of the status event behind each order's current status
        self._status_keys: dict[str, tuple[int, int]] = {}

    def apply(self, event: StoredEvent) -> Order | None:
        """
        Fold one stored event into the view.

        Returns:
            The affected order, or None when the event touches no known order
        """
        if event.type == ORDER:
            existing = self._orders.get(event.id)
            if existing is not None:
                return existing
            order = Order.from_event(event)
            self._orders[order.id] = order
            return order

        if event.type != ORDER_STATUS or not event.status:
            return None

        order = self._orders.get(event.order_id or "")
        if order is None:
            log.debug("projection.dangling_status", order_id=event.order_id, event_id=event.id)
            return None

        # The order event's own ts never competes. Equal ts: later log position wins
        current = self._status_keys.get(order.id)
        if current is None or event.sort_key >= current:
            self._status_keys[order.id] = event.sort_key
            order = order.model_copy(update={
                "status": event.status,
                "status_ts": event.ts,
                "status_seq": event.seq,
            })
            self._orders[order.id] = order
        return order

    def get(self, order_id: str) -> Order | None:
        return self._orders.get(order_id)

    def list_orders(self, active_only: bool = False) -> list[Order]:
        """Orders newest first; ``active_only`` drops delivered orders."""
        orders = self._orders.values()
        if active_only:
            orders = [o for o in orders if o.is_active]
        return sorted(orders, key=lambda o: (o.ts, o.seq), reverse=True)

    @property
    def active_count(self) -> int:
        return sum(1 for o in self._orders.values() if o.is_active)

    def load(self, events: Iterable[StoredEvent]) -> None:
        """Replace the view with a replay of ``events`` in log order."""
        self._orders = {}
        self._status_keys = {}
        for event in sorted(events, key=lambda e: e.seq):
            self.apply(event)

    async def rebuild(self, store) -> None:
        """Rebuild from the full log of ``store`` (an EventStore)."""
        self.load(await store.replay())
        log.info("projection.rebuilt", orders=len(self._orders), active=self.active_count)


def fold_orders(events: Iterable[StoredEvent]) -> OrderProjection:
    """Replay ``events`` from an empty view."""
    projection = OrderProjection()
    projection.load(events)
    return projection
