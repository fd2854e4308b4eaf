"""Pytest configuration and shared fixtures for market_cache tests."""

import asyncio
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional, Set

import pytest

# Add src/ to path for imports
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root / "src"))

from market_cache.cache.backend import InMemoryKeyValueBackend, KeyListPage  # noqa: E402
from market_cache.cache.payloads import (  # noqa: E402
    Category,
    CategoryListingsResult,
    Listing,
    ListingSearchResult,
    UserProfile,
)
from market_cache.cache.service import MarketplaceCache  # noqa: E402
from market_cache.cache.store import CacheStore  # noqa: E402
from market_cache.config.models import CacheConfig  # noqa: E402


# ============================================================================
# Clock & Backend Fixtures
# ============================================================================


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FlakyBackend(InMemoryKeyValueBackend):
    """In-memory backend with switchable failures and latency."""

    def __init__(self, clock):
        super().__init__(clock=clock)
        self.fail_get = False
        self.fail_set = False
        self.fail_list = False
        self.fail_delete_keys: Set[str] = set()
        self.delay = 0.0
        self.in_flight_deletes = 0
        self.peak_in_flight_deletes = 0
        self.list_calls = 0

    async def get(self, key):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_get:
            raise ConnectionError("backend down")
        return await super().get(key)

    async def set(self, key, value, ttl_seconds):
        if self.fail_set:
            raise ConnectionError("backend down")
        await super().set(key, value, ttl_seconds)

    async def delete(self, key):
        self.in_flight_deletes += 1
        self.peak_in_flight_deletes = max(self.peak_in_flight_deletes, self.in_flight_deletes)
        try:
            await asyncio.sleep(0)
            if key in self.fail_delete_keys:
                raise ConnectionError(f"cannot delete {key}")
            await super().delete(key)
        finally:
            self.in_flight_deletes -= 1

    async def list(self, prefix, cursor=None, limit=1000) -> KeyListPage:
        self.list_calls += 1
        if self.fail_list:
            raise ConnectionError("backend down")
        return await super().list(prefix, cursor=cursor, limit=limit)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def backend(clock):
    return FlakyBackend(clock=clock)


@pytest.fixture
def store(backend, clock):
    return CacheStore(backend, operation_timeout=1.0, clock=clock)


@pytest.fixture
def cache_config():
    return CacheConfig(backend="memory")


@pytest.fixture
def cache(cache_config, backend, clock):
    """MarketplaceCache wired to the flaky in-memory backend."""
    return MarketplaceCache.from_config(cache_config, backend=backend, clock=clock)


# ============================================================================
# Payload Fixtures
# ============================================================================


def make_listing(listing_id: str = "L1", category_id: int = 5, user_id: int = 42, **extra) -> Listing:
    return Listing(
        id=listing_id,
        user_id=user_id,
        category_id=category_id,
        title=extra.pop("title", f"Listing {listing_id}"),
        price_usd=extra.pop("price_usd", 10.0),
        **extra,
    )


@pytest.fixture
def category_listings():
    return CategoryListingsResult(
        listings=[make_listing("L1"), make_listing("L2"), make_listing("L3")],
        total=3,
        has_more=False,
        category_id=5,
    )


@pytest.fixture
def search_result():
    return ListingSearchResult(listings=[make_listing("L1", title="phone")], total=1)


@pytest.fixture
def categories():
    return [
        Category(id=2, name="Electronics"),
        Category(id=5, name="Phones", parent_id=2),
    ]


@pytest.fixture
def user_profile():
    return UserProfile(telegram_id=42, username="seller", first_name="Sam")
