"""Tests for the envelope cache store."""

import json
from datetime import timedelta
from typing import List

import pytest

from market_cache.cache.backend import InMemoryKeyValueBackend
from market_cache.cache.payloads import Category, CategoryListingsResult
from market_cache.cache.store import CacheStore


class TestCacheStoreGetSet:
    """Tests for set followed by get."""

    @pytest.mark.asyncio
    async def test_set_then_get_returns_cached_data(self, store):
        assert await store.set("user:1:profile", {"name": "Sam"}, 300) is True

        result = await store.get("user:1:profile")

        assert result is not None
        assert result.data == {"name": "Sam"}
        assert result.from_cache is True
        assert result.expires_at - result.cached_at == timedelta(seconds=300)

    @pytest.mark.asyncio
    async def test_cached_at_uses_store_clock(self, store, clock):
        await store.set("k:1", [1, 2, 3], 60)

        result = await store.get("k:1")

        assert result.cached_at == clock.now
        assert result.expires_at == clock.now + timedelta(seconds=60)

    @pytest.mark.asyncio
    async def test_missing_key_is_a_miss(self, store):
        assert await store.get("category:404:listings") is None

    @pytest.mark.asyncio
    async def test_overwrite_replaces_value(self, store):
        await store.set("k:1", {"v": 1}, 60)
        await store.set("k:1", {"v": 2}, 60)

        result = await store.get("k:1")
        assert result.data == {"v": 2}

    @pytest.mark.asyncio
    async def test_backend_ttl_matches_logical_ttl(self, store, backend, clock):
        await store.set("k:1", {"v": 1}, 60)

        clock.advance(61)

        assert await backend.get("k:1") is None

    @pytest.mark.asyncio
    async def test_typed_payload_round_trip(self, store, category_listings):
        await store.set("category:5:listings", category_listings, 300, CategoryListingsResult)

        result = await store.get("category:5:listings", CategoryListingsResult)

        assert isinstance(result.data, CategoryListingsResult)
        assert result.data == category_listings

    @pytest.mark.asyncio
    async def test_payload_stored_with_camel_case_aliases(self, store, backend, category_listings):
        await store.set("category:5:listings", category_listings, 300, CategoryListingsResult)

        raw = json.loads(await backend.get("category:5:listings"))

        assert raw["data"]["categoryId"] == 5
        assert raw["data"]["hasMore"] is False
        assert "cached_at" in raw and "expires_at" in raw

    @pytest.mark.asyncio
    async def test_list_payload_round_trip(self, store, categories):
        await store.set("categories:all", categories, 3600, List[Category])

        result = await store.get("categories:all", List[Category])

        assert [c.name for c in result.data] == ["Electronics", "Phones"]

    @pytest.mark.asyncio
    async def test_set_rejects_payload_of_wrong_shape(self, store, backend):
        written = await store.set(
            "category:5:listings", {"listings": [], "total": 3}, 300, CategoryListingsResult
        )

        assert written is False
        assert await backend.get("category:5:listings") is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("ttl", [0, -5])
    async def test_non_positive_ttl_is_a_no_op(self, store, backend, ttl):
        assert await store.set("k:1", {"v": 1}, ttl) is False
        assert await backend.get("k:1") is None


class TestCacheStoreExpiration:
    """Tests for lazy (logical) expiration."""

    @pytest.mark.asyncio
    async def test_entry_absent_after_expiry(self, store, clock):
        await store.set("k:1", {"v": 1}, 300)

        clock.advance(301)

        assert await store.get("k:1") is None

    @pytest.mark.asyncio
    async def test_entry_absent_exactly_at_expiry(self, store, clock):
        await store.set("k:1", {"v": 1}, 300)

        clock.advance(300)

        assert await store.get("k:1") is None

    @pytest.mark.asyncio
    async def test_logical_expiry_without_backend_eviction(self, clock):
        # Backend clock frozen: only the envelope's expires_at can hide the entry
        frozen_now = clock.now
        backend = InMemoryKeyValueBackend(clock=lambda: frozen_now)
        store = CacheStore(backend, clock=clock)
        await store.set("k:1", {"v": 1}, 300)

        clock.advance(301)

        assert await store.get("k:1") is None
        assert backend.keys() == []
        assert store.get_stats()["expired"] == 1

    @pytest.mark.asyncio
    async def test_live_entry_before_expiry(self, store, clock):
        await store.set("k:1", {"v": 1}, 300)

        clock.advance(299)

        assert (await store.get("k:1")).data == {"v": 1}


class TestCacheStoreFailures:
    """Backend failures degrade to miss/no-op."""

    @pytest.mark.asyncio
    async def test_get_error_is_a_miss(self, store, backend):
        await store.set("k:1", {"v": 1}, 60)
        backend.fail_get = True

        assert await store.get("k:1") is None
        assert store.get_stats()["errors"] == 1

    @pytest.mark.asyncio
    async def test_set_error_is_a_no_op(self, store, backend):
        backend.fail_set = True

        assert await store.set("k:1", {"v": 1}, 60) is False

    @pytest.mark.asyncio
    async def test_delete_error_returns_false(self, store, backend):
        backend.fail_delete_keys.add("k:1")

        assert await store.delete("k:1") is False

    @pytest.mark.asyncio
    async def test_timeout_is_a_miss(self, backend, clock):
        store = CacheStore(backend, operation_timeout=0.01, clock=clock)
        await store.set("k:1", {"v": 1}, 60)
        backend.delay = 0.5

        assert await store.get("k:1") is None
        assert store.get_stats()["errors"] == 1

    @pytest.mark.asyncio
    async def test_malformed_envelope_is_deleted(self, store, backend):
        await backend.set("k:1", b"not json", 60)

        assert await store.get("k:1") is None
        assert await backend.get("k:1") is None

    @pytest.mark.asyncio
    async def test_naive_timestamps_are_malformed(self, store, backend):
        raw = (
            b'{"data": {"a": 1}, "cached_at": "2026-01-01T11:00:00", '
            b'"expires_at": "2026-01-01T13:00:00"}'
        )
        await backend.set("user:1:profile", raw, 300)

        assert await store.get("user:1:profile") is None
        assert await backend.get("user:1:profile") is None
        assert store.get_stats()["errors"] == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "cached_offset,expires_offset",
        [
            (60, 300),  # written in the future
            (-60, -60),  # expires_at == cached_at
            (-60, -120),  # expires_at before cached_at
        ],
    )
    async def test_inconsistent_timestamps_are_malformed(
        self, store, backend, clock, cached_offset, expires_offset
    ):
        envelope = {
            "data": {"a": 1},
            "cached_at": (clock.now + timedelta(seconds=cached_offset)).isoformat(),
            "expires_at": (clock.now + timedelta(seconds=expires_offset)).isoformat(),
        }
        await backend.set("user:1:profile", json.dumps(envelope).encode(), 300)

        assert await store.get("user:1:profile") is None
        assert await backend.get("user:1:profile") is None
        assert store.get_stats()["errors"] == 1
        assert store.get_stats()["expired"] == 0

    @pytest.mark.asyncio
    async def test_payload_of_wrong_shape_is_deleted(self, store, backend, clock):
        envelope = {
            "data": {"listings": [], "total": 3},
            "cached_at": clock.now.isoformat(),
            "expires_at": (clock.now + timedelta(seconds=60)).isoformat(),
        }
        await backend.set("category:5:listings", json.dumps(envelope).encode(), 60)

        assert await store.get("category:5:listings", CategoryListingsResult) is None
        assert await backend.get("category:5:listings") is None


class TestCacheStoreStats:
    """Tests for hit/miss statistics."""

    @pytest.mark.asyncio
    async def test_hit_rate(self, store):
        await store.set("k:1", {"v": 1}, 60)
        await store.get("k:1")
        await store.get("k:2")

        stats = store.get_stats()

        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["sets"] == 1
        assert stats["total_requests"] == 2
        assert stats["hit_rate"] == 50.0

    @pytest.mark.asyncio
    async def test_reset_stats(self, store):
        await store.get("k:1")

        store.reset_stats()

        assert store.get_stats()["misses"] == 0
        assert store.get_stats()["hit_rate"] == 0.0
