"""
Cache key generation utilities.

Provides deterministic, namespaced key construction and a stable hash for
search filters, with support for prefix-based bulk invalidation.
"""

import hashlib
import json
from typing import Any, Mapping, Union

from market_cache.cache.payloads import ListingSearch
from market_cache.exceptions import InvalidCacheKeyError

KEY_DELIMITER = ":"
MAX_KEY_LENGTH = 200

# Namespaces; never reuse one for a different payload shape
CATEGORY_NAMESPACE = "category"
SEARCH_NAMESPACE = "search"
CATEGORIES_NAMESPACE = "categories"
USER_NAMESPACE = "user"

# Bump when the canonical form or digest of search params changes
SEARCH_HASH_SCHEME = "v2"

# Canonical field order for search param serialization
_SEARCH_FIELDS = (
    "q",
    "category_id",
    "min_price",
    "max_price",
    "sort",
    "limit",
    "offset",
    "user_id",
    "status",
)


class CacheKeyBuilder:
    """
    Builder for namespaced cache keys.

    Keys have the form ``namespace:part1:part2``. Parts are not escaped, so
    a part containing the delimiter is rejected instead of silently producing
    a key that collides with another namespace's prefix.
    """

    def __init__(self, delimiter: str = KEY_DELIMITER, max_length: int = MAX_KEY_LENGTH):
        self.delimiter = delimiter
        self.max_length = max_length

    def _check_part(self, part: Any) -> str:
        text = str(part)
        if not text:
            raise InvalidCacheKeyError("Cache key parts must not be empty")
        if self.delimiter in text:
            raise InvalidCacheKeyError(
                f"Cache key part {text!r} contains the delimiter {self.delimiter!r}"
            )
        return text

    def build_key(self, namespace: str, *parts: Union[str, int]) -> str:
        """
        Build a cache key.

        Args:
            namespace: Leading key segment identifying the entity type
            *parts: Remaining segments (numeric IDs, hash fragments)

        Returns:
            ``namespace + ":" + ":".join(parts)``; with no parts this is the
            namespace prefix (``"search:"``)

        Raises:
            InvalidCacheKeyError: On empty parts, parts containing the
                delimiter, or keys longer than max_length
        """
        segments = [self._check_part(namespace)]
        segments.extend(self._check_part(part) for part in parts)
        key = segments[0] + self.delimiter + self.delimiter.join(segments[1:])

        if len(key) > self.max_length:
            raise InvalidCacheKeyError(
                f"Cache key exceeds {self.max_length} characters: {key[:50]}..."
            )
        return key

    def prefix(self, namespace: str) -> str:
        """Prefix matching every key in a namespace."""
        return self.build_key(namespace)

    def category_listings(self, category_id: int) -> str:
        return self.build_key(CATEGORY_NAMESPACE, category_id, "listings")

    def search_results(self, param_hash: str) -> str:
        return self.build_key(SEARCH_NAMESPACE, param_hash, "results")

    def categories_all(self) -> str:
        return self.build_key(CATEGORIES_NAMESPACE, "all")

    def user_profile(self, user_id: int) -> str:
        return self.build_key(USER_NAMESPACE, user_id, "profile")


class SearchParamHasher:
    """
    Hash search filters into a stable key fragment.

    Equivalent filters always produce the same fragment regardless of key
    order, key casing (camelCase or snake_case), or whether a default-valued
    field was passed explicitly.
    """

    def __init__(self, scheme: str = SEARCH_HASH_SCHEME, digest_chars: int = 16):
        self.scheme = scheme
        self.digest_chars = digest_chars

    @staticmethod
    def normalize(params: Union[ListingSearch, Mapping[str, Any], None]) -> ListingSearch:
        """
        Coerce params into a ListingSearch with "not set" sentinels filled in.

        None values count as absent; falsy numeric filters collapse to 0 and
        an empty query to "".
        """
        if params is None:
            return ListingSearch()
        if isinstance(params, ListingSearch):
            search = params
        else:
            search = ListingSearch.model_validate(
                {k: v for k, v in params.items() if v is not None}
            )

        return search.model_copy(
            update={
                "q": search.q or "",
                "category_id": search.category_id or 0,
                "min_price": search.min_price or 0.0,
                "max_price": search.max_price or 0.0,
                "user_id": search.user_id or 0,
            }
        )

    @staticmethod
    def canonicalize(search: ListingSearch) -> str:
        """Serialize normalized params with a fixed field order."""
        dumped = search.model_dump(mode="json")
        ordered = [[field, dumped[field]] for field in _SEARCH_FIELDS]
        return json.dumps(ordered, ensure_ascii=False, separators=(",", ":"))

    def hash(self, params: Union[ListingSearch, Mapping[str, Any], None]) -> str:
        """
        Hash search params to a key fragment.

        Returns:
            Scheme tag followed by the first digest_chars hex chars of a
            SHA-256 digest, e.g. ``v2`` + 16 hex chars (64 bits)
        """
        canonical = self.canonicalize(self.normalize(params))
        digest = hashlib.sha256(canonical.encode("utf-8")).hexdigest()
        return f"{self.scheme}{digest[: self.digest_chars]}"
