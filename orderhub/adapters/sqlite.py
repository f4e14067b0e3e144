"""SQLite event store adapter (SQLAlchemy async engine over aiosqlite)."""
from typing import Any, Iterable
import asyncio
import structlog
import orjson
from sqlalchemy import (
    BigInteger,
    Column,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    select,
    text,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from .base import EventStoreAdapter
from ..event_models import StoredEvent
from ..config import get_settings

log = structlog.get_logger()

metadata = MetaData()

events_table = Table(
    "events",
    metadata,
    # INTEGER PRIMARY KEY aliases the rowid: insertion order
    Column("seq", Integer, primary_key=True, autoincrement=True),
    Column("id", String(36), nullable=False, unique=True),
    Column("ts", BigInteger, nullable=False),
    Column("type", String(64), nullable=False),
    Column("message", Text),
    Column("device_id", Text),
    Column("order_id", String(36)),
    Column("table_no", Text),
    Column("items_json", Text),
    Column("note", Text),
    Column("created_at", Text, nullable=False),
    Column("company_name", Text),
    Column("customer_name", Text),
    Column("status", String(16)),
    Column("total_cents", Integer, nullable=False, default=0),
    # Every statistics query scans by type and time
    Index("ix_events_type_ts", "type", "ts"),
    Index("ix_events_ts", "ts"),
)

# Maintained by the menu admin; order ingestion only reads it
menu_items_table = Table(
    "menu_items",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", Text, nullable=False),
    Column("price_cents", Integer, nullable=False, default=0),
    Index("ix_menu_items_name", "name"),
)


def _to_row(evt: StoredEvent) -> dict[str, Any]:
    return {
        "id": evt.id,
        "ts": evt.ts,
        "type": evt.type,
        "message": evt.message,
        "device_id": evt.device_id,
        "order_id": evt.order_id,
        "table_no": evt.table,
        "items_json": orjson.dumps(evt.items).decode() if evt.items is not None else None,
        "note": evt.note,
        "created_at": evt.created_at,
        "company_name": evt.company_name,
        "customer_name": evt.customer_name,
        "status": evt.status,
        "total_cents": evt.total_cents,
    }


def _from_row(row) -> StoredEvent:
    return StoredEvent(
        seq=row.seq,
        id=row.id,
        ts=row.ts,
        type=row.type,
        message=row.message,
        device_id=row.device_id,
        order_id=row.order_id,
        table=row.table_no,
        items=orjson.loads(row.items_json) if row.items_json else None,
        note=row.note,
        created_at=row.created_at,
        company_name=row.company_name,
        customer_name=row.customer_name,
        status=row.status,
        total_cents=row.total_cents or 0,
    )


class SQLiteAdapter(EventStoreAdapter):
    """SQLite implementation of the event log.

    Each append is its own transaction. The schema is created on first use.
    """

    def __init__(self, database_url: str | None = None, engine: AsyncEngine | None = None):
        """
        Initialize SQLite adapter.

        Args:
            database_url: SQLAlchemy URL (defaults to settings.DATABASE_URL)
            engine: Pre-built engine, mostly for tests
        """
        self.database_url = database_url or get_settings().DATABASE_URL
        self._engine = engine or create_async_engine(self.database_url, echo=False)
        self._write_lock = asyncio.Lock()
        self._schema_lock = asyncio.Lock()
        self._schema_ready = False

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    async def initialize(self) -> None:
        """Create the events and menu_items tables and their indexes if missing."""
        if self._schema_ready:
            return
        async with self._schema_lock:
            if self._schema_ready:
                return
            async with self._engine.begin() as conn:
                await conn.run_sync(metadata.create_all)
            self._schema_ready = True
            log.info("sqlite.schema_ready", url=self.database_url)

    async def append(self, evt: StoredEvent) -> StoredEvent:
        """
        Insert event and return it with its rowid as ``seq``.

        Raises:
            SQLAlchemyError: If the insert fails; nothing is written
        """
        await self.initialize()
        try:
            async with self._write_lock:
                async with self._engine.begin() as conn:
                    result = await conn.execute(events_table.insert().values(**_to_row(evt)))
                    seq = result.inserted_primary_key[0]
        except SQLAlchemyError as e:
            log.error("sqlite.append_failed", error=str(e), event_id=evt.id)
            raise

        stored = evt.model_copy(update={"seq": seq})
        log.info(
            "event.appended",
            id=stored.id,
            seq=stored.seq,
            type=stored.type,
            adapter="sqlite"
        )
        return stored

    async def _select(self, stmt) -> list[StoredEvent]:
        await self.initialize()
        async with self._engine.connect() as conn:
            result = await conn.execute(stmt)
            return [_from_row(row) for row in result]

    async def query_by_type_and_range(
        self,
        event_type: str,
        from_ms: int | None = None,
        to_ms: int | None = None,
        descending: bool = False,
    ) -> list[StoredEvent]:
        stmt = select(events_table).where(events_table.c.type == event_type)
        if from_ms is not None:
            stmt = stmt.where(events_table.c.ts >= from_ms)
        if to_ms is not None:
            stmt = stmt.where(events_table.c.ts < to_ms)
        if descending:
            stmt = stmt.order_by(events_table.c.ts.desc(), events_table.c.seq.desc())
        else:
            stmt = stmt.order_by(events_table.c.ts.asc(), events_table.c.seq.asc())
        return await self._select(stmt)

    async def list_recent(self, limit: int) -> list[StoredEvent]:
        stmt = (
            select(events_table)
            .order_by(events_table.c.ts.desc(), events_table.c.seq.desc())
            .limit(limit)
        )
        return await self._select(stmt)

    async def replay(self) -> Iterable[StoredEvent]:
        return await self._select(select(events_table).order_by(events_table.c.seq.asc()))

    async def health_check(self) -> bool:
        try:
            async with self._engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except Exception as e:
            log.warning("sqlite.health_check_failed", error=str(e))
            return False

    async def close(self) -> None:
        await self._engine.dispose()
