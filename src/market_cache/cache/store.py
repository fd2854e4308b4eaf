"""
Envelope cache store.

Wraps a KeyValueBackend with:
- A JSON envelope {data, cached_at, expires_at} around every payload
- Dual expiration: the logical expires_at check on read, plus the backend's
  own TTL on write
- Per-call deadlines on backend operations
- Failure isolation: backend errors, timeouts and malformed entries become
  a miss (reads) or a no-op (writes), never an exception
"""

import asyncio
import logging
from datetime import datetime, timedelta
from functools import lru_cache
from typing import Any, Awaitable, Callable, Optional, TypeVar

from pydantic import TypeAdapter, ValidationError

from market_cache.cache.backend import KeyValueBackend, utcnow
from market_cache.cache.payloads import CachedResult, CacheEnvelope
from market_cache.exceptions import BackendUnavailableError, MalformedEntryError

logger = logging.getLogger(__name__)

R = TypeVar("R")


@lru_cache(maxsize=None)
def payload_adapter(payload_type: Any) -> TypeAdapter:
    return TypeAdapter(payload_type)


class CacheStore:
    """
    Generic get/set over a key-value backend.

    Features:
    - Envelope with timestamps
    - Lazy expiration with opportunistic cleanup
    - Typed payload validation
    - Hit/miss statistics
    """

    def __init__(
        self,
        backend: KeyValueBackend,
        operation_timeout: Optional[float] = 2.0,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize the store.

        Args:
            backend: Key-value backend to wrap
            operation_timeout: Deadline in seconds for each backend call
                (None disables the deadline)
            clock: Returns the current UTC time (injectable for tests)
        """
        self.backend = backend
        self.operation_timeout = operation_timeout
        self.clock = clock
        self.stats = self._empty_stats()

    @staticmethod
    def _empty_stats() -> dict:
        return {
            "hits": 0,
            "misses": 0,
            "expired": 0,
            "sets": 0,
            "deletes": 0,
            "errors": 0,
        }

    async def call_backend(self, operation: str, key: str, awaitable: Awaitable[R]) -> R:
        """Run a backend call under the deadline; any failure is a backend error."""
        try:
            if self.operation_timeout is None:
                return await awaitable
            return await asyncio.wait_for(awaitable, timeout=self.operation_timeout)
        except asyncio.TimeoutError as e:
            raise BackendUnavailableError(
                operation, key, TimeoutError(f"timed out after {self.operation_timeout}s")
            ) from e
        except BackendUnavailableError:
            raise
        except Exception as e:
            raise BackendUnavailableError(operation, key, e) from e

    def _decode(self, key: str, raw: bytes, payload_type: Any, now: datetime) -> CacheEnvelope:
        try:
            envelope = CacheEnvelope.model_validate_json(raw)
            if payload_type is not None:
                envelope.data = payload_adapter(payload_type).validate_python(envelope.data)
        except (ValidationError, ValueError) as e:
            raise MalformedEntryError(key, str(e)) from e

        if envelope.expires_at <= envelope.cached_at:
            raise MalformedEntryError(key, "expires_at is not after cached_at")
        if envelope.cached_at > now:
            raise MalformedEntryError(
                key, f"cached_at {envelope.cached_at.isoformat()} is in the future"
            )
        return envelope

    async def get(self, key: str, payload_type: Any = None) -> Optional[CachedResult]:
        """
        Get a live entry.

        Args:
            key: Cache key
            payload_type: Shape to validate the payload against (None keeps
                the decoded JSON as-is)

        Returns:
            CachedResult with from_cache=True, or None on miss, expiry,
            malformed entry or backend failure
        """
        try:
            raw = await self.call_backend("get", key, self.backend.get(key))
        except BackendUnavailableError as e:
            logger.error(f"Cache get error for {key}: {e}")
            self.stats["errors"] += 1
            return None

        if raw is None:
            self.stats["misses"] += 1
            logger.debug(f"Cache MISS: {key}")
            return None

        now = self.clock()
        try:
            envelope = self._decode(key, raw, payload_type, now)
        except MalformedEntryError as e:
            logger.error(str(e))
            self.stats["errors"] += 1
            self.stats["misses"] += 1
            await self.delete(key)
            return None

        if envelope.expires_at <= now:
            self.stats["expired"] += 1
            self.stats["misses"] += 1
            logger.debug(f"Cache EXPIRED: {key} (expired at {envelope.expires_at.isoformat()})")
            await self.delete(key)
            return None

        self.stats["hits"] += 1
        logger.debug(f"Cache HIT: {key}")
        return CachedResult(
            data=envelope.data,
            from_cache=True,
            cached_at=envelope.cached_at,
            expires_at=envelope.expires_at,
        )

    async def set(
        self,
        key: str,
        data: Any,
        ttl_seconds: int,
        payload_type: Any = None,
    ) -> bool:
        """
        Store data under key for ttl_seconds.

        The backend TTL is set to the same value so the backend reclaims the
        key even if the logical expiry check is never reached.

        Returns:
            True if written, False otherwise
        """
        if ttl_seconds <= 0:
            logger.warning(f"Refusing to cache {key} with non-positive TTL {ttl_seconds}")
            return False

        now = self.clock()
        try:
            if payload_type is not None:
                adapter = payload_adapter(payload_type)
                data = adapter.validate_python(data)
            else:
                adapter = payload_adapter(type(data))
            payload = adapter.dump_python(data, mode="json", by_alias=True)
            envelope = CacheEnvelope(
                data=payload,
                cached_at=now,
                expires_at=now + timedelta(seconds=ttl_seconds),
            )
            serialized = envelope.model_dump_json().encode("utf-8")
        except (ValidationError, ValueError, TypeError) as e:
            logger.error(f"Failed to serialize value for {key}: {e}")
            self.stats["errors"] += 1
            return False

        try:
            await self.call_backend("set", key, self.backend.set(key, serialized, ttl_seconds))
        except BackendUnavailableError as e:
            logger.error(f"Cache set error for {key}: {e}")
            self.stats["errors"] += 1
            return False

        self.stats["sets"] += 1
        logger.debug(f"Cache SET: {key} (TTL: {ttl_seconds}s)")
        return True

    async def delete(self, key: str) -> bool:
        """
        Delete a key.

        Returns:
            True if the delete was issued, False on backend failure
        """
        try:
            await self.call_backend("delete", key, self.backend.delete(key))
        except BackendUnavailableError as e:
            logger.error(f"Cache delete error for {key}: {e}")
            self.stats["errors"] += 1
            return False

        self.stats["deletes"] += 1
        logger.debug(f"Cache DELETE: {key}")
        return True

    def get_stats(self) -> dict:
        """
        Get cache statistics.

        Returns:
            Dict with hits, misses, expired, sets, deletes, errors,
            total_requests, hit_rate (percent)
        """
        total_requests = self.stats["hits"] + self.stats["misses"]
        hit_rate = (self.stats["hits"] / total_requests * 100) if total_requests else 0.0
        return {
            **self.stats,
            "total_requests": total_requests,
            "hit_rate": round(hit_rate, 2),
        }

    def reset_stats(self) -> None:
        self.stats = self._empty_stats()
        logger.info("Cache statistics reset")
