"""
Key-value backends.

The cache layer talks to a single logical key-value service through the
KeyValueBackend protocol:

- get(key) -> bytes | None
- set(key, value, ttl_seconds)
- delete(key)
- list(prefix, cursor, limit) -> KeyListPage

RedisKeyValueBackend is the production backend; InMemoryKeyValueBackend
serves local development and tests. Both raise BackendUnavailableError on
failure and leave recovery to the caller.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Protocol, Tuple

import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool
from redis.exceptions import RedisError

from market_cache.config.models import CacheConfig
from market_cache.exceptions import BackendUnavailableError

logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 1000

_GLOB_SPECIAL = re.compile(r"([*?\[\]\\])")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class KeyListPage:
    """One page of a prefix listing."""

    keys: List[str] = field(default_factory=list)
    cursor: Optional[str] = None
    complete: bool = True


class KeyValueBackend(Protocol):
    async def get(self, key: str) -> Optional[bytes]: ...

    async def set(self, key: str, value: bytes, ttl_seconds: int) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def list(
        self,
        prefix: str,
        cursor: Optional[str] = None,
        limit: int = DEFAULT_LIST_LIMIT,
    ) -> KeyListPage: ...

    async def close(self) -> None: ...


class RedisKeyValueBackend:
    """
    Async Redis backend with connection pooling.

    Prefix listing uses SCAN with a MATCH pattern, so a page may hold more
    or fewer keys than requested; the listing is complete when Redis returns
    cursor 0.
    """

    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        max_connections: int = 10,
        socket_timeout: float = 5.0,
        socket_connect_timeout: float = 5.0,
        client: Optional[redis.Redis] = None,
    ):
        """
        Initialize the Redis backend.

        Args:
            url: Redis connection URL (redis://host:port/db)
            max_connections: Maximum connections in pool
            socket_timeout: Socket timeout in seconds
            socket_connect_timeout: Socket connect timeout in seconds
            client: Pre-built client (skips pool creation)
        """
        self.url = url
        self.max_connections = max_connections
        self.socket_timeout = socket_timeout
        self.socket_connect_timeout = socket_connect_timeout
        self.pool: Optional[ConnectionPool] = None
        self.client: Optional[redis.Redis] = client

    @classmethod
    def from_config(cls, config: CacheConfig) -> "RedisKeyValueBackend":
        return cls(
            url=config.redis_url,
            max_connections=config.max_connections,
            socket_timeout=config.socket_timeout,
            socket_connect_timeout=config.socket_connect_timeout,
        )

    async def connect(self) -> None:
        """Create the connection pool and ping the server."""
        if self.client is None:
            self.pool = ConnectionPool.from_url(
                self.url,
                max_connections=self.max_connections,
                socket_timeout=self.socket_timeout,
                socket_connect_timeout=self.socket_connect_timeout,
                decode_responses=False,
            )
            self.client = redis.Redis(connection_pool=self.pool)

        try:
            await self.client.ping()
        except (RedisError, OSError) as e:
            raise BackendUnavailableError("connect", self.url, e) from e
        logger.info(f"Redis cache backend connected: {self.url}")

    async def close(self) -> None:
        """Close the client and its connection pool."""
        if self.client is not None:
            await self.client.aclose()
            self.client = None
        if self.pool is not None:
            await self.pool.disconnect()
            self.pool = None
        logger.info("Redis cache backend disconnected")

    async def health_check(self) -> bool:
        if self.client is None:
            return False
        try:
            await self.client.ping()
            return True
        except (RedisError, OSError) as e:
            logger.error(f"Redis health check failed: {e}")
            return False

    def _require_client(self, operation: str, key: str) -> redis.Redis:
        if self.client is None:
            raise BackendUnavailableError(operation, key, RuntimeError("not connected"))
        return self.client

    async def get(self, key: str) -> Optional[bytes]:
        client = self._require_client("get", key)
        try:
            return await client.get(key)
        except (RedisError, OSError) as e:
            raise BackendUnavailableError("get", key, e) from e

    async def set(self, key: str, value: bytes, ttl_seconds: int) -> None:
        client = self._require_client("set", key)
        try:
            await client.set(key, value, ex=ttl_seconds)
        except (RedisError, OSError) as e:
            raise BackendUnavailableError("set", key, e) from e

    async def delete(self, key: str) -> None:
        client = self._require_client("delete", key)
        try:
            await client.delete(key)
        except (RedisError, OSError) as e:
            raise BackendUnavailableError("delete", key, e) from e

    async def list(
        self,
        prefix: str,
        cursor: Optional[str] = None,
        limit: int = DEFAULT_LIST_LIMIT,
    ) -> KeyListPage:
        client = self._require_client("list", prefix)
        pattern = _GLOB_SPECIAL.sub(r"\\\1", prefix) + "*"
        try:
            next_cursor, raw_keys = await client.scan(
                cursor=int(cursor or 0), match=pattern, count=limit
            )
        except (RedisError, OSError) as e:
            raise BackendUnavailableError("list", prefix, e) from e

        keys = [k.decode("utf-8") if isinstance(k, bytes) else k for k in raw_keys]
        complete = int(next_cursor) == 0
        return KeyListPage(
            keys=keys,
            cursor=None if complete else str(next_cursor),
            complete=complete,
        )


class InMemoryKeyValueBackend:
    """
    Dict-backed backend for development and tests.

    Honors the backend TTL against an injectable clock. Listing pages are
    ordered by key and the cursor is the last key returned, so deleting the
    keys of a page never shifts later pages.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self.clock = clock
        self._entries: Dict[str, Tuple[bytes, datetime]] = {}

    def _live(self, key: str) -> Optional[bytes]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at <= self.clock():
            del self._entries[key]
            return None
        return value

    async def get(self, key: str) -> Optional[bytes]:
        return self._live(key)

    async def set(self, key: str, value: bytes, ttl_seconds: int) -> None:
        self._entries[key] = (value, self.clock() + timedelta(seconds=ttl_seconds))

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    async def list(
        self,
        prefix: str,
        cursor: Optional[str] = None,
        limit: int = DEFAULT_LIST_LIMIT,
    ) -> KeyListPage:
        matching = sorted(
            key
            for key in list(self._entries)
            if key.startswith(prefix)
            and (cursor is None or key > cursor)
            and self._live(key) is not None
        )
        page = matching[:limit]
        complete = len(matching) <= limit
        return KeyListPage(
            keys=page,
            cursor=None if complete or not page else page[-1],
            complete=complete,
        )

    async def close(self) -> None:
        self._entries.clear()

    def keys(self) -> List[str]:
        """Snapshot of live keys (inspection helper)."""
        return sorted(key for key in list(self._entries) if self._live(key) is not None)
