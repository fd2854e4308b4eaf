"""
Cache utilities.

Provides the marketplace read-through cache with:
- Deterministic namespaced key generation and search param hashing
- Envelope storage with dual (logical + backend) expiration
- Cursor-driven prefix invalidation
- Mutation-event driven invalidation
"""

from market_cache.cache.backend import (
    InMemoryKeyValueBackend,
    KeyListPage,
    KeyValueBackend,
    RedisKeyValueBackend,
)
from market_cache.cache.cache_keys import (
    CacheKeyBuilder,
    SearchParamHasher,
)
from market_cache.cache.invalidation import (
    BulkPrefixInvalidator,
    InvalidationCoordinator,
    InvalidationReport,
)
from market_cache.cache.payloads import (
    CachedResult,
    CacheOptions,
    Category,
    CategoryListingsResult,
    Listing,
    ListingSearch,
    ListingSearchResult,
    UserProfile,
)
from market_cache.cache.service import MarketplaceCache, cache_context
from market_cache.cache.store import CacheStore

__all__ = [
    # Backends
    "KeyValueBackend",
    "KeyListPage",
    "RedisKeyValueBackend",
    "InMemoryKeyValueBackend",
    # Keys
    "CacheKeyBuilder",
    "SearchParamHasher",
    # Store
    "CacheStore",
    # Invalidation
    "BulkPrefixInvalidator",
    "InvalidationCoordinator",
    "InvalidationReport",
    # Payloads
    "CachedResult",
    "CacheOptions",
    "Category",
    "CategoryListingsResult",
    "Listing",
    "ListingSearch",
    "ListingSearchResult",
    "UserProfile",
    # Façade
    "MarketplaceCache",
    "cache_context",
]
