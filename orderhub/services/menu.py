"""Menu price lookup.

The menu itself is managed by the admin application; order ingestion only
needs the current price of each ordered item at the moment an order arrives.
"""
from pathlib import Path
from typing import Iterable, Protocol
import orjson
import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from ..adapters.sqlite import SQLiteAdapter, menu_items_table
from ..errors import StorageError

log = structlog.get_logger()


class MenuLookup(Protocol):
    async def prices(self, names: Iterable[str]) -> dict[str, int]:
        """Current price in cents for every name the menu knows; others are absent."""
        ...


class StaticMenu:
    """Name -> price table held in memory.

    Names are matched exactly. When the source lists a name twice the later
    entry wins.
    """

    def __init__(self, prices: dict[str, int] | None = None):
        self._prices: dict[str, int] = dict(prices or {})

    @classmethod
    def from_items(cls, items: Iterable[dict]) -> "StaticMenu":
        prices = {}
        for item in items:
            name = item.get("name")
            if not name:
                continue
            try:
                prices[str(name)] = int(item.get("price_cents") or 0)
            except (TypeError, ValueError):
                prices[str(name)] = 0
        return cls(prices)

    @classmethod
    def from_file(cls, path: str | Path) -> "StaticMenu":
        """Load a JSON list of ``{"name": ..., "price_cents": ...}`` objects."""
        items = orjson.loads(Path(path).read_bytes())
        menu = cls.from_items(items)
        log.info("menu.loaded", path=str(path), items=len(menu))
        return menu

    def price_of(self, name: str) -> int | None:
        return self._prices.get(name)

    async def prices(self, names: Iterable[str]) -> dict[str, int]:
        return {name: self._prices[name] for name in set(names) if name in self._prices}

    def __len__(self) -> int:
        return len(self._prices)


class SqlMenu:
    """Reads the ``menu_items`` table on every lookup.

    Shares the event store's SQLite engine, so price edits made by the menu
    admin apply to the next order without a restart.
    """

    def __init__(self, adapter: SQLiteAdapter):
        self._adapter = adapter

    async def prices(self, names: Iterable[str]) -> dict[str, int]:
        """
        Current prices for ``names``; a name listed twice resolves to its last row.

        Raises:
            StorageError: if the menu table cannot be read
        """
        wanted = sorted(set(names))
        if not wanted:
            return {}
        stmt = (
            select(menu_items_table.c.name, menu_items_table.c.price_cents)
            .where(menu_items_table.c.name.in_(wanted))
            .order_by(menu_items_table.c.id)
        )
        try:
            await self._adapter.initialize()
            async with self._adapter.engine.connect() as conn:
                rows = (await conn.execute(stmt)).all()
        except SQLAlchemyError as e:
            log.error("menu.lookup_failed", error=str(e), items=len(wanted))
            raise StorageError("Failed to read menu prices") from e
        return {row.name: row.price_cents or 0 for row in rows}


async def compute_total(items: Iterable[str], menu: MenuLookup) -> int:
    """
    Sum current menu prices for every listed item occurrence.

    Names missing from the menu contribute zero.
    """
    items = list(items)
    prices = await menu.prices(items)
    return sum(prices.get(name, 0) for name in items)
