"""Sales statistics computed on demand from ``order`` events.

Notes on the arithmetic, kept for compatibility with existing dashboards:

- Ranges are half-open: ``from_ms <= ts < to_ms``.
- ``byItem[name].count`` counts every occurrence of ``name`` in an order's
  item list, so an item listed twice in one order counts twice.
- ``byItem[name].total_cents`` adds the full order total once per
  occurrence. The order total is attributed to every listed item, not
  divided between them, so per-item totals do not sum to the range total.
- ``daily`` buckets use the UTC calendar date of ``ts``.
"""
from datetime import datetime, time, timedelta, timezone, tzinfo
from typing import Any, Iterable
from zoneinfo import ZoneInfo
import structlog
from ..event_models import ORDER, OrderStatus, StoredEvent, now_ms

log = structlog.get_logger()

DAY_MS = 24 * 3600 * 1000

# Lookback presets in days; "today" is handled separately
LOOKBACK_PRESETS = {
    "d7": 7,
    "d30": 30,
    "d90": 90,
    "d180": 180,
    "d365": 365,
}

TOP_ITEMS_LIMIT = 5
STATS_WINDOW_DAYS = 7


def resolve_timezone(name: str | None) -> tzinfo | None:
    """ZoneInfo for ``name``; None means the system local zone."""
    return ZoneInfo(name) if name else None


def utc_day(ts: int) -> str:
    return datetime.fromtimestamp(ts / 1000, timezone.utc).date().isoformat()


def local_day_bounds(ts: int, tz: tzinfo | None = None) -> tuple[int, int]:
    """Epoch-ms bounds of the local calendar day containing ``ts``: [midnight, next midnight)."""
    if tz is None:
        day = datetime.fromtimestamp(ts / 1000).date()
        start = datetime.combine(day, time.min)
        end = datetime.combine(day + timedelta(days=1), time.min)
    else:
        day = datetime.fromtimestamp(ts / 1000, tz).date()
        start = datetime.combine(day, time.min, tzinfo=tz)
        end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    return int(start.timestamp() * 1000), int(end.timestamp() * 1000)


def summarize(orders: Iterable[StoredEvent], from_ms: int, to_ms: int) -> dict[str, Any]:
    """Aggregate already-filtered order events."""
    orders = list(orders)
    by_item: dict[str, dict[str, int]] = {}
    by_day: dict[str, int] = {}
    total = 0

    for order in orders:
        total += order.total_cents
        for name in order.items or []:
            bucket = by_item.setdefault(name, {"count": 0, "total_cents": 0})
            bucket["count"] += 1
            bucket["total_cents"] += order.total_cents
        day = utc_day(order.ts)
        by_day[day] = by_day.get(day, 0) + order.total_cents

    return {
        "from": from_ms,
        "to": to_ms,
        "orders_count": len(orders),
        "total_cents": total,
        "byItem": by_item,
        "daily": [
            {"date": day, "total_cents": cents}
            for day, cents in sorted(by_day.items())
        ],
    }


def top_items(orders: Iterable[StoredEvent], limit: int = TOP_ITEMS_LIMIT) -> list[dict[str, Any]]:
    """Most frequent item names; equal counts keep first-seen order."""
    counter: dict[str, int] = {}
    for order in orders:
        for name in order.items or []:
            counter[name] = counter.get(name, 0) + 1
    ranked = sorted(counter.items(), key=lambda kv: kv[1], reverse=True)
    return [{"name": name, "count": count} for name, count in ranked[:limit]]


class SalesAggregator:
    """Revenue and bestseller statistics over the event log."""

    def __init__(self, store, projection=None, tz: tzinfo | None = None):
        """
        Args:
            store: EventStore to read order events from
            projection: OrderProjection used to resolve current statuses
            tz: Zone for the "today" preset (system local when None)
        """
        self._store = store
        self._projection = projection
        self._tz = tz

    async def _orders(self, from_ms: int | None, to_ms: int | None) -> list[StoredEvent]:
        return await self._store.query_by_type_and_range(ORDER, from_ms, to_ms)

    async def sales_in_range(self, from_ms: int, to_ms: int) -> dict[str, Any]:
        """Sales for orders with ``from_ms <= ts < to_ms``."""
        orders = await self._orders(from_ms, to_ms)
        return summarize(orders, from_ms, to_ms)

    def preset_ranges(self, now: int | None = None) -> dict[str, tuple[int, int]]:
        now = now if now is not None else now_ms()
        ranges = {"today": local_day_bounds(now, self._tz)}
        for key, days in LOOKBACK_PRESETS.items():
            ranges[key] = (now - days * DAY_MS, now)
        return ranges

    async def sales_summary(self, now: int | None = None) -> dict[str, dict[str, Any]]:
        """Sales plus top items for each preset range."""
        out = {}
        for key, (from_ms, to_ms) in self.preset_ranges(now).items():
            orders = await self._orders(from_ms, to_ms)
            bucket = summarize(orders, from_ms, to_ms)
            bucket["topItems"] = top_items(orders)
            out[key] = bucket
        return out

    async def order_stats(self, now: int | None = None) -> dict[str, dict[str, int]]:
        """Order counts by resolved status, UTC day and company over the last week."""
        now = now if now is not None else now_ms()
        orders = await self._orders(now - STATS_WINDOW_DAYS * DAY_MS, None)

        by_status: dict[str, int] = {}
        by_day: dict[str, int] = {}
        by_company: dict[str, int] = {}
        for order in orders:
            status = order.status or OrderStatus.ORDERED.value
            if self._projection is not None:
                current = self._projection.get(order.id)
                if current is not None:
                    status = current.status
            by_status[status] = by_status.get(status, 0) + 1
            day = utc_day(order.ts)
            by_day[day] = by_day.get(day, 0) + 1
            company = order.company_name or "Unknown"
            by_company[company] = by_company.get(company, 0) + 1

        return {"byStatus": by_status, "byDay": by_day, "byCompany": by_company}
