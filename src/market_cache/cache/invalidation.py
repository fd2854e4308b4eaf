"""
Cache invalidation utilities.

Provides:
- Cursor-driven bulk deletion of every key under a prefix
- Mapping of marketplace mutation events to the keys and prefixes they
  make stale

Write-path callers must notify the coordinator only after their commit to
the primary store is durable; otherwise a concurrent reader can repopulate
the cache with pre-write data.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Union

from pydantic import ValidationError

from market_cache.cache.cache_keys import (
    CATEGORY_NAMESPACE,
    SEARCH_NAMESPACE,
    CacheKeyBuilder,
)
from market_cache.cache.payloads import CategoryChange, ListingChange
from market_cache.cache.store import CacheStore
from market_cache.exceptions import BackendUnavailableError, InvalidCacheKeyError

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 1000
MAX_IN_FLIGHT_DELETES = 1000


@dataclass
class InvalidationReport:
    """Outcome of one prefix invalidation run."""

    prefix: str
    deleted: int = 0
    failed: int = 0
    pages: int = 0
    complete: bool = True


class BulkPrefixInvalidator:
    """
    Deletes every key sharing a prefix, one listing page at a time.

    Deletes within a page are issued concurrently, bounded by a semaphore.
    Keys written while a multi-page run is in progress may survive it; they
    expire by TTL or fall to the next run.
    """

    def __init__(
        self,
        store: CacheStore,
        page_size: int = DEFAULT_PAGE_SIZE,
        max_in_flight: int = MAX_IN_FLIGHT_DELETES,
    ):
        if page_size <= 0 or max_in_flight <= 0:
            raise ValueError("page_size and max_in_flight must be positive")
        self.store = store
        self.page_size = page_size
        self.max_in_flight = min(page_size, max_in_flight)

    async def _delete(self, key: str, semaphore: asyncio.Semaphore) -> bool:
        async with semaphore:
            return await self.store.delete(key)

    async def invalidate_by_prefix(self, prefix: str) -> InvalidationReport:
        """
        Delete all keys under prefix.

        Failed deletes are counted and logged and the run continues; a failed
        listing call ends the run early. Never raises.

        Args:
            prefix: Literal key prefix (e.g. "search:")

        Returns:
            InvalidationReport for the run
        """
        report = InvalidationReport(prefix=prefix)
        if not prefix:
            logger.error("Refusing to invalidate an empty prefix")
            report.complete = False
            return report

        semaphore = asyncio.Semaphore(self.max_in_flight)
        cursor: Optional[str] = None

        while True:
            try:
                page = await self.store.call_backend(
                    "list",
                    prefix,
                    self.store.backend.list(prefix, cursor=cursor, limit=self.page_size),
                )
            except BackendUnavailableError as e:
                logger.error(f"Cache invalidation listing failed for '{prefix}': {e}")
                report.complete = False
                break

            report.pages += 1
            if page.keys:
                results = await asyncio.gather(
                    *(self._delete(key, semaphore) for key in page.keys)
                )
                succeeded = sum(1 for ok in results if ok)
                report.deleted += succeeded
                report.failed += len(results) - succeeded

            if page.complete:
                break
            if not page.cursor:
                logger.warning(f"Backend reported incomplete listing without cursor for '{prefix}'")
                report.complete = False
                break
            cursor = page.cursor

        if report.failed:
            logger.warning(
                f"Partial invalidation of '{prefix}': {report.failed} deletes failed, "
                f"{report.deleted} succeeded; leftovers expire by TTL"
            )
        else:
            logger.debug(
                f"Invalidated {report.deleted} keys under '{prefix}' in {report.pages} page(s)"
            )
        return report


class InvalidationCoordinator:
    """
    Maps marketplace mutations to the cache entries they make stale.

    | Event            | Targets                                                  |
    |------------------|----------------------------------------------------------|
    | listing changed  | its category's listings, every search result, owner profile |
    | category changed | category tree, its listings, its parent's listings        |
    | user changed     | that user's profile                                       |

    Search results are dropped wholesale on any listing change since there is
    no index from listings to the cached queries that contain them.
    """

    def __init__(
        self,
        store: CacheStore,
        invalidator: BulkPrefixInvalidator,
        keys: Optional[CacheKeyBuilder] = None,
        enabled: bool = True,
    ):
        self.store = store
        self.invalidator = invalidator
        self.keys = keys or CacheKeyBuilder()
        self.enabled = enabled

    async def _delete_key(self, key: str) -> int:
        return 1 if await self.store.delete(key) else 0

    async def _delete_prefix(self, prefix: str) -> int:
        report = await self.invalidator.invalidate_by_prefix(prefix)
        return report.deleted

    # ==================== Narrow invalidations ====================

    async def invalidate_category_listings(self, category_id: Optional[int] = None) -> int:
        """
        Invalidate one category's listings, or all of them when category_id is None.

        Returns:
            Number of deletes issued
        """
        if not self.enabled:
            return 0
        try:
            if category_id is None:
                return await self._delete_prefix(self.keys.prefix(CATEGORY_NAMESPACE))
            return await self._delete_key(self.keys.category_listings(category_id))
        except InvalidCacheKeyError as e:
            logger.error(f"Cannot invalidate category listings for {category_id!r}: {e}")
            return 0

    async def invalidate_search_results(self) -> int:
        if not self.enabled:
            return 0
        return await self._delete_prefix(self.keys.prefix(SEARCH_NAMESPACE))

    async def invalidate_categories(self) -> int:
        if not self.enabled:
            return 0
        return await self._delete_key(self.keys.categories_all())

    async def invalidate_user_profile(self, user_id: Union[int, str]) -> int:
        if not self.enabled:
            return 0
        try:
            return await self._delete_key(self.keys.user_profile(user_id))
        except InvalidCacheKeyError as e:
            logger.error(f"Cannot invalidate profile for user {user_id!r}: {e}")
            return 0

    # ==================== Mutation events ====================

    async def on_listing_change(
        self, listing: Union[ListingChange, Mapping[str, Any], Any]
    ) -> Dict[str, int]:
        """
        Invalidate after a listing was created, updated, deleted or changed status.

        Search results are always dropped; the category and owner targets are
        skipped (with a warning) when the payload lacks their id.

        Args:
            listing: Anything with id, category_id and user_id (model
                instance, or mapping with camelCase or snake_case keys)

        Returns:
            Dict mapping each target to the number of deletes issued
        """
        try:
            change = _coerce(ListingChange, listing)
        except ValidationError as e:
            logger.error(f"Ignoring listing change with unusable payload: {e}")
            return {}

        results: Dict[str, int] = {}
        if change.category_id is not None:
            results[f"category:{change.category_id}:listings"] = (
                await self.invalidate_category_listings(change.category_id)
            )
        else:
            logger.warning(
                f"Listing {change.id} change has no categoryId, skipping category listings"
            )

        results["search:"] = await self.invalidate_search_results()

        if change.user_id is not None:
            results[f"user:{change.user_id}:profile"] = await self.invalidate_user_profile(
                change.user_id
            )
        else:
            logger.warning(f"Listing {change.id} change has no userId, skipping owner profile")

        logger.debug(f"Listing {change.id} changed, invalidated: {results}")
        return results

    async def on_category_change(
        self, category: Union[CategoryChange, Mapping[str, Any], Any]
    ) -> Dict[str, int]:
        """
        Invalidate after a category was created, updated or deleted.

        The parent's listings are dropped too, since a parent's listing view
        may roll up its children's listings.
        """
        try:
            change = _coerce(CategoryChange, category)
        except ValidationError as e:
            logger.error(f"Ignoring category change with unusable payload: {e}")
            return {}

        results = {
            "categories:all": await self.invalidate_categories(),
            f"category:{change.id}:listings": await self.invalidate_category_listings(change.id),
        }
        if change.parent_id:
            results[f"category:{change.parent_id}:listings"] = (
                await self.invalidate_category_listings(change.parent_id)
            )
        logger.debug(f"Category {change.id} changed, invalidated: {results}")
        return results

    async def on_user_change(self, user_id: Union[int, str]) -> Dict[str, int]:
        results = {f"user:{user_id}:profile": await self.invalidate_user_profile(user_id)}
        logger.debug(f"User {user_id} changed, invalidated: {results}")
        return results


def _coerce(model: Any, value: Any) -> Any:
    if isinstance(value, model):
        return value
    if isinstance(value, Mapping):
        return model.model_validate(dict(value))
    return model.model_validate(value, from_attributes=True)
