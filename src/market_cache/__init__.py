"""Marketplace cache - read-through caching and cascading invalidation.

Quick start:
    from market_cache import cache_context

    async with cache_context() as cache:
        listings = await cache.fetch_category_listings(5, load_category_listings)
        ...
        await cache.on_listing_change(listing)  # after the DB commit
"""

__version__ = "0.1.0"

from market_cache.cache import (
    CachedResult,
    CacheOptions,
    MarketplaceCache,
    cache_context,
)
from market_cache.exceptions import (
    BackendUnavailableError,
    CacheError,
    InvalidCacheKeyError,
    MalformedEntryError,
)

__all__ = [
    "MarketplaceCache",
    "cache_context",
    "CachedResult",
    "CacheOptions",
    "CacheError",
    "BackendUnavailableError",
    "MalformedEntryError",
    "InvalidCacheKeyError",
]
