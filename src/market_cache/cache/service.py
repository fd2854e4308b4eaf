"""
Marketplace cache façade.

Typed read/write/read-through operations for the four cached views:

| View              | Key                           | Payload                  |
|-------------------|-------------------------------|--------------------------|
| category listings | category:{category_id}:listings | CategoryListingsResult |
| search results    | search:{param_hash}:results   | ListingSearchResult      |
| category tree     | categories:all                | List[Category]           |
| user profile      | user:{user_id}:profile        | UserProfile              |

Build one MarketplaceCache per process (from_config or cache_context) and
pass it to the request handlers and write-path services that need it.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Mapping, Optional, Union

from pydantic import ValidationError

from market_cache.cache.backend import (
    InMemoryKeyValueBackend,
    KeyValueBackend,
    RedisKeyValueBackend,
    utcnow,
)
from market_cache.cache.cache_keys import CacheKeyBuilder, SearchParamHasher
from market_cache.cache.invalidation import BulkPrefixInvalidator, InvalidationCoordinator
from market_cache.cache.payloads import (
    PAYLOAD_TYPES,
    CachedResult,
    CacheOptions,
    Category,
    CategoryListingsResult,
    ListingSearch,
    ListingSearchResult,
    UserProfile,
)
from market_cache.cache.store import CacheStore, payload_adapter
from market_cache.config.models import CacheConfig, CacheTTLConfig
from market_cache.config.settings import get_cache_config, get_cache_ttl
from market_cache.exceptions import BackendUnavailableError, InvalidCacheKeyError

logger = logging.getLogger(__name__)

SearchParams = Union[ListingSearch, Mapping[str, Any], None]

HEALTH_CHECK_KEY = "health:probe"
HEALTH_CHECK_TTL = 60


class MarketplaceCache:
    """
    Read-through cache over the marketplace's read-optimized views.

    Reads return None on a miss (or when bypass_cache is set); fetch_*
    methods go to the source of truth on a miss and populate the cache.
    Cache failures never surface to callers; failures of the source of
    truth do.
    """

    def __init__(
        self,
        store: CacheStore,
        coordinator: InvalidationCoordinator,
        keys: Optional[CacheKeyBuilder] = None,
        hasher: Optional[SearchParamHasher] = None,
        ttl: Optional[CacheTTLConfig] = None,
        enabled: bool = True,
    ):
        self.store = store
        self.coordinator = coordinator
        self.keys = keys or coordinator.keys
        self.hasher = hasher or SearchParamHasher()
        self.ttl = ttl or CacheTTLConfig()
        self.enabled = enabled

    @classmethod
    def from_config(
        cls,
        config: Optional[CacheConfig] = None,
        backend: Optional[KeyValueBackend] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> "MarketplaceCache":
        """
        Wire backend, store, invalidator and coordinator from config.

        Args:
            config: Cache config (default: config.yaml with env overrides)
            backend: Backend to use instead of the configured one
            clock: Current-time source shared by the store (and an in-memory
                backend, when one is created here)
        """
        config = config or get_cache_config()
        if backend is None:
            if config.backend == "memory":
                backend = InMemoryKeyValueBackend(clock=clock)
            else:
                backend = RedisKeyValueBackend.from_config(config)

        store = CacheStore(backend, operation_timeout=config.operation_timeout, clock=clock)
        keys = CacheKeyBuilder()
        invalidator = BulkPrefixInvalidator(
            store,
            page_size=config.invalidation.page_size,
            max_in_flight=config.invalidation.max_in_flight_deletes,
        )
        coordinator = InvalidationCoordinator(store, invalidator, keys, enabled=config.enabled)
        return cls(store, coordinator, keys=keys, ttl=config.ttl, enabled=config.enabled)

    # ==================== Internals ====================

    def _ttl_for(self, namespace: str, options: CacheOptions) -> int:
        if options.ttl:
            return options.ttl
        return get_cache_ttl(namespace, self.ttl)

    async def _read(self, key_fn: Callable[[], str], namespace: str) -> Optional[CachedResult]:
        if not self.enabled:
            return None
        try:
            key = key_fn()
        except (InvalidCacheKeyError, ValidationError) as e:
            logger.error(f"Cannot build {namespace} cache key: {e}")
            return None
        return await self.store.get(key, PAYLOAD_TYPES[namespace])

    async def _write(
        self,
        key_fn: Callable[[], str],
        namespace: str,
        data: Any,
        options: CacheOptions,
        ttl_namespace: str,
    ) -> bool:
        if not self.enabled or options.bypass_cache:
            return False
        try:
            key = key_fn()
        except (InvalidCacheKeyError, ValidationError) as e:
            logger.error(f"Cannot build {namespace} cache key: {e}")
            return False
        return await self.store.set(
            key, data, self._ttl_for(ttl_namespace, options), PAYLOAD_TYPES[namespace]
        )

    async def _read_through(
        self,
        key_fn: Callable[[], str],
        namespace: str,
        ttl_namespace: str,
        fetch: Callable[[], Awaitable[Any]],
        options: CacheOptions,
    ) -> CachedResult:
        if not options.bypass_cache:
            cached = await self._read(key_fn, namespace)
            if cached is not None:
                return cached

        # Misses return the same type as hits; a fetch of the wrong shape raises
        data = payload_adapter(PAYLOAD_TYPES[namespace]).validate_python(await fetch())
        await self._write(key_fn, namespace, data, options, ttl_namespace)
        return CachedResult(data=data, from_cache=False)

    def _search_key(self, search_params: SearchParams) -> str:
        return self.keys.search_results(self.hasher.hash(search_params))

    # ==================== Category listings ====================

    async def get_category_listings(
        self, category_id: int, options: Optional[CacheOptions] = None
    ) -> Optional[CachedResult[CategoryListingsResult]]:
        options = options or CacheOptions()
        if options.bypass_cache:
            return None
        return await self._read(lambda: self.keys.category_listings(category_id), "category")

    async def set_category_listings(
        self,
        category_id: int,
        data: CategoryListingsResult,
        options: Optional[CacheOptions] = None,
    ) -> bool:
        return await self._write(
            lambda: self.keys.category_listings(category_id),
            "category",
            data,
            options or CacheOptions(),
            "listings",
        )

    async def fetch_category_listings(
        self,
        category_id: int,
        fetch: Callable[[], Awaitable[CategoryListingsResult]],
        options: Optional[CacheOptions] = None,
    ) -> CachedResult[CategoryListingsResult]:
        return await self._read_through(
            lambda: self.keys.category_listings(category_id),
            "category",
            "listings",
            fetch,
            options or CacheOptions(),
        )

    # ==================== Search results ====================

    async def get_search_results(
        self, search_params: SearchParams, options: Optional[CacheOptions] = None
    ) -> Optional[CachedResult[ListingSearchResult]]:
        options = options or CacheOptions()
        if options.bypass_cache:
            return None
        return await self._read(lambda: self._search_key(search_params), "search")

    async def set_search_results(
        self,
        search_params: SearchParams,
        data: ListingSearchResult,
        options: Optional[CacheOptions] = None,
    ) -> bool:
        return await self._write(
            lambda: self._search_key(search_params),
            "search",
            data,
            options or CacheOptions(),
            "search",
        )

    async def fetch_search_results(
        self,
        search_params: SearchParams,
        fetch: Callable[[], Awaitable[ListingSearchResult]],
        options: Optional[CacheOptions] = None,
    ) -> CachedResult[ListingSearchResult]:
        return await self._read_through(
            lambda: self._search_key(search_params),
            "search",
            "search",
            fetch,
            options or CacheOptions(),
        )

    # ==================== Category tree ====================

    async def get_categories(
        self, options: Optional[CacheOptions] = None
    ) -> Optional[CachedResult[List[Category]]]:
        options = options or CacheOptions()
        if options.bypass_cache:
            return None
        return await self._read(self.keys.categories_all, "categories")

    async def set_categories(
        self, data: List[Category], options: Optional[CacheOptions] = None
    ) -> bool:
        return await self._write(
            self.keys.categories_all, "categories", data, options or CacheOptions(), "categories"
        )

    async def fetch_categories(
        self,
        fetch: Callable[[], Awaitable[List[Category]]],
        options: Optional[CacheOptions] = None,
    ) -> CachedResult[List[Category]]:
        return await self._read_through(
            self.keys.categories_all, "categories", "categories", fetch, options or CacheOptions()
        )

    # ==================== User profile ====================

    async def get_user_profile(
        self, user_id: int, options: Optional[CacheOptions] = None
    ) -> Optional[CachedResult[UserProfile]]:
        options = options or CacheOptions()
        if options.bypass_cache:
            return None
        return await self._read(lambda: self.keys.user_profile(user_id), "user")

    async def set_user_profile(
        self, user_id: int, data: UserProfile, options: Optional[CacheOptions] = None
    ) -> bool:
        return await self._write(
            lambda: self.keys.user_profile(user_id), "user", data, options or CacheOptions(), "user"
        )

    async def fetch_user_profile(
        self,
        user_id: int,
        fetch: Callable[[], Awaitable[UserProfile]],
        options: Optional[CacheOptions] = None,
    ) -> CachedResult[UserProfile]:
        return await self._read_through(
            lambda: self.keys.user_profile(user_id), "user", "user", fetch, options or CacheOptions()
        )

    # ==================== Mutation notifications ====================

    async def on_listing_change(self, listing: Any) -> Dict[str, int]:
        return await self.coordinator.on_listing_change(listing)

    async def on_category_change(self, category: Any) -> Dict[str, int]:
        return await self.coordinator.on_category_change(category)

    async def on_user_change(self, user_id: Union[int, str]) -> Dict[str, int]:
        return await self.coordinator.on_user_change(user_id)

    # ==================== Maintenance ====================

    async def warm_up(
        self,
        categories: Optional[Callable[[], Awaitable[List[Category]]]] = None,
    ) -> None:
        """
        Pre-populate common views.

        Failures of the source of truth are logged; warming is best-effort.
        """
        if categories is None:
            return
        try:
            await self.fetch_categories(categories)
        except Exception as e:
            logger.error(f"Error warming up category cache: {e}")

    async def get_cache_stats(self, limit: int = 10000) -> dict:
        """
        Count keys per namespace by walking the backend listing.

        Args:
            limit: Stop counting after this many keys

        Returns:
            Dict with total_keys, keys_by_prefix and the store counters
        """
        keys_by_prefix: Dict[str, int] = {}
        total_keys = 0
        cursor: Optional[str] = None
        page_size = self.coordinator.invalidator.page_size

        try:
            while total_keys < limit:
                page = await self.store.call_backend(
                    "list", "", self.store.backend.list("", cursor=cursor, limit=page_size)
                )
                for key in page.keys:
                    namespace = key.split(self.keys.delimiter, 1)[0]
                    keys_by_prefix[namespace] = keys_by_prefix.get(namespace, 0) + 1
                total_keys += len(page.keys)
                if page.complete or not page.cursor:
                    break
                cursor = page.cursor
        except BackendUnavailableError as e:
            logger.error(f"Cache stats error: {e}")

        return {
            "total_keys": total_keys,
            "keys_by_prefix": keys_by_prefix,
            "enabled": self.enabled,
            **self.store.get_stats(),
        }

    async def health_check(self) -> dict:
        """
        Verify the backend with a write/read/delete round trip of a probe key.

        Returns:
            Dict with status ("ok" or "error"), message and timestamp
        """
        timestamp = self.store.clock().isoformat()
        probe = {"timestamp": timestamp, "test": True}

        written = await self.store.set(HEALTH_CHECK_KEY, probe, HEALTH_CHECK_TTL)
        cached = await self.store.get(HEALTH_CHECK_KEY) if written else None
        await self.store.delete(HEALTH_CHECK_KEY)

        if cached is None or cached.data != probe:
            return {
                "status": "error",
                "message": "Cache service failed to write or read back the probe key",
                "timestamp": timestamp,
            }
        return {
            "status": "ok",
            "message": "Cache service read/write successful",
            "timestamp": timestamp,
        }

    async def close(self) -> None:
        await self.store.backend.close()


@asynccontextmanager
async def cache_context(
    config: Optional[CacheConfig] = None,
    backend: Optional[KeyValueBackend] = None,
) -> AsyncIterator[MarketplaceCache]:
    """
    Async context manager for the cache lifecycle.

    Usage:
        async with cache_context() as cache:
            result = await cache.fetch_categories(load_categories)
    """
    cache = MarketplaceCache.from_config(config, backend=backend)
    if isinstance(cache.store.backend, RedisKeyValueBackend) and cache.enabled:
        try:
            await cache.store.backend.connect()
        except BackendUnavailableError as e:
            # Reads miss and writes no-op until Redis comes back
            logger.error(f"Redis unavailable at startup: {e}")
    try:
        yield cache
    finally:
        await cache.close()
