"""Redis event store adapter.

Layout under the key prefix:

- ``<prefix>:seq``         INCR counter for log positions
- ``<prefix>:data``        hash of event id -> serialized event
- ``<prefix>:all``         sorted set of event ids scored by ``ts``
- ``<prefix>:type:<type>`` sorted set per event type scored by ``ts``
"""
from typing import Iterable
import asyncio
import structlog
import orjson
from redis import Redis
from redis.exceptions import RedisError
from .base import EventStoreAdapter
from ..event_models import StoredEvent
from ..config import get_settings

log = structlog.get_logger()


class RedisStoreAdapter(EventStoreAdapter):
    """Redis implementation of the event log.

    The per-type sorted sets give range scans by ``(type, ts)``; ties on
    ``ts`` are resolved by ``seq`` after fetching.
    """

    def __init__(self, redis_url: str | None = None, prefix: str = "orderhub:events"):
        """
        Initialize Redis store adapter.

        Args:
            redis_url: Redis connection URL (defaults to settings.REDIS_URL)
            prefix: Key prefix for every structure this adapter owns
        """
        self.redis_url = redis_url or str(get_settings().REDIS_URL)
        self._client: Redis | None = None
        self._prefix = prefix
        self._lock = asyncio.Lock()

    @property
    def _seq_key(self) -> str:
        return f"{self._prefix}:seq"

    @property
    def _data_key(self) -> str:
        return f"{self._prefix}:data"

    @property
    def _all_key(self) -> str:
        return f"{self._prefix}:all"

    def _type_key(self, event_type: str) -> str:
        return f"{self._prefix}:type:{event_type}"

    def _get_client(self) -> Redis:
        """Get or create Redis client."""
        if self._client is None:
            self._client = Redis.from_url(
                self.redis_url,
                decode_responses=False,  # We'll handle encoding ourselves
                socket_connect_timeout=5,
                socket_timeout=5
            )
        return self._client

    async def append(self, evt: StoredEvent) -> StoredEvent:
        """
        Append event: assign ``seq`` then write data and indexes atomically.

        Raises:
            RedisError: If unable to write to Redis
        """
        try:
            async with self._lock:
                client = self._get_client()
                seq = int(client.incr(self._seq_key))
                stored = evt.model_copy(update={"seq": seq})

                pipe = client.pipeline(transaction=True)
                pipe.hset(self._data_key, stored.id, orjson.dumps(stored.to_payload()))
                pipe.zadd(self._all_key, {stored.id: stored.ts})
                pipe.zadd(self._type_key(stored.type), {stored.id: stored.ts})
                pipe.execute()
        except RedisError as e:
            log.error("redis.append_failed", error=str(e), event_id=evt.id)
            raise

        log.info(
            "event.appended",
            id=stored.id,
            seq=stored.seq,
            type=stored.type,
            adapter="redis"
        )
        return stored

    def _load(self, ids: list) -> list[StoredEvent]:
        if not ids:
            return []
        raw = self._get_client().hmget(self._data_key, ids)
        return [StoredEvent.model_validate(orjson.loads(r)) for r in raw if r is not None]

    async def query_by_type_and_range(
        self,
        event_type: str,
        from_ms: int | None = None,
        to_ms: int | None = None,
        descending: bool = False,
    ) -> list[StoredEvent]:
        low = from_ms if from_ms is not None else "-inf"
        # "(" makes the upper bound exclusive
        high = f"({to_ms}" if to_ms is not None else "+inf"
        ids = self._get_client().zrangebyscore(self._type_key(event_type), low, high)
        events = self._load(ids)
        return sorted(events, key=lambda e: e.sort_key, reverse=descending)

    async def list_recent(self, limit: int) -> list[StoredEvent]:
        ids = self._get_client().zrevrange(self._all_key, 0, limit - 1)
        events = self._load(ids)
        return sorted(events, key=lambda e: e.sort_key, reverse=True)

    async def replay(self) -> Iterable[StoredEvent]:
        ids = self._get_client().zrange(self._all_key, 0, -1)
        return sorted(self._load(ids), key=lambda e: e.seq)

    async def health_check(self) -> bool:
        """
        Check Redis connection health.

        Returns:
            True if Redis is accessible, False otherwise
        """
        try:
            client = self._get_client()
            return bool(client.ping())
        except Exception as e:
            log.warning("redis.health_check_failed", error=str(e))
            return False

    async def close(self) -> None:
        """Close Redis connection."""
        if self._client:
            self._client.close()
            self._client = None
