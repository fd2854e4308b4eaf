"""
Typed payloads stored in the cache.

Each namespace stores exactly one shape; PAYLOAD_TYPES is the closed registry
the store validates against. Models accept camelCase (as sent by the web app
and the worker) as well as snake_case field names.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Generic, List, Optional, TypeVar, Union

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

T = TypeVar("T")


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ListingStatus(str, Enum):
    """Listing lifecycle states."""

    DRAFT = "draft"
    ACTIVE = "active"
    EXPIRED = "expired"
    SOLD = "sold"
    ARCHIVED = "archived"
    HIDDEN = "hidden"


class SearchSort(str, Enum):
    NEWEST = "newest"
    OLDEST = "oldest"
    PRICE_ASC = "price_asc"
    PRICE_DESC = "price_desc"
    EXPIRING = "expiring"


class SearchStatus(str, Enum):
    """Status filter for searches; ``all`` disables the filter."""

    DRAFT = "draft"
    ACTIVE = "active"
    EXPIRED = "expired"
    SOLD = "sold"
    ARCHIVED = "archived"
    ALL = "all"


# =============================================================================
# Domain views
# =============================================================================


class Listing(_CamelModel):
    """Denormalized listing as shown in category and search pages."""

    id: str
    user_id: int
    category_id: int
    title: str
    description: str = ""
    price_usd: float = 0.0
    images: List[str] = Field(default_factory=list)
    status: ListingStatus = ListingStatus.ACTIVE
    created_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    bumped_at: Optional[datetime] = None
    is_sticky: bool = False
    is_highlighted: bool = False
    view_count: int = 0
    contact_username: Optional[str] = None


class Category(_CamelModel):
    id: int
    name: str
    parent_id: Optional[int] = None
    description: Optional[str] = None
    created_at: Optional[datetime] = None
    is_active: bool = True


class UserProfile(_CamelModel):
    """Public profile view of a marketplace user."""

    telegram_id: int
    username: Optional[str] = None
    first_name: str
    last_name: Optional[str] = None
    profile_photo_url: Optional[str] = None
    created_at: Optional[datetime] = None
    last_active: Optional[datetime] = None
    is_banned: bool = False
    active_listings: int = 0
    sold_listings: int = 0


class ListingSearch(_CamelModel):
    """
    Search filters for listings.

    Optional numeric filters use 0 and the free-text query uses "" as their
    "not set" sentinel, so omitting a field and passing its default describe
    the same search.
    """

    q: str = ""
    category_id: int = 0
    min_price: float = 0.0
    max_price: float = 0.0
    sort: SearchSort = SearchSort.NEWEST
    limit: int = Field(default=20, ge=1, le=50)
    offset: int = Field(default=0, ge=0)
    user_id: int = 0
    status: SearchStatus = SearchStatus.ACTIVE


class CategoryListingsResult(_CamelModel):
    listings: List[Listing] = Field(default_factory=list)
    total: int = 0
    has_more: bool = False
    category_id: int


class ListingSearchResult(_CamelModel):
    listings: List[Listing] = Field(default_factory=list)
    total: int = 0
    has_more: bool = False
    search_params: ListingSearch = Field(default_factory=ListingSearch)


# =============================================================================
# Change events (write path → invalidation)
# =============================================================================


class ListingChange(_CamelModel):
    """
    The fields of a changed listing that decide what to invalidate.

    A missing category_id or user_id only skips the target it names.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    id: Optional[Union[int, str]] = None
    category_id: Optional[int] = None
    user_id: Optional[int] = None


class CategoryChange(_CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    id: int
    parent_id: Optional[int] = None


# =============================================================================
# Cache envelope and results
# =============================================================================


class CacheEnvelope(BaseModel):
    """What is physically stored under a key. Timestamps must carry a UTC offset."""

    data: Any
    cached_at: AwareDatetime
    expires_at: AwareDatetime


class CachedResult(BaseModel, Generic[T]):
    """A value served by the cache layer."""

    data: T
    from_cache: bool
    cached_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None


class CacheOptions(BaseModel):
    """Per-call cache options."""

    ttl: Optional[int] = Field(default=None, gt=0, description="TTL override in seconds")
    bypass_cache: bool = Field(
        default=False, description="Skip cache read and write, go to the source of truth"
    )


# Namespace → payload shape
PAYLOAD_TYPES = {
    "category": CategoryListingsResult,
    "search": ListingSearchResult,
    "categories": List[Category],
    "user": UserProfile,
}
