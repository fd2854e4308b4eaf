"""
Exceptions raised inside the cache layer.

None of these reach read/write callers: the store, the invalidator and the
façade catch them and degrade to a miss or a no-op.
"""

from typing import Optional


class CacheError(Exception):
    """Base class for cache layer errors."""


class BackendUnavailableError(CacheError):
    """The key-value backend failed or timed out."""

    def __init__(self, operation: str, key: str, cause: Optional[Exception] = None):
        self.operation = operation
        self.key = key
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Backend {operation} failed for '{key}'{detail}")


class MalformedEntryError(CacheError):
    """A stored envelope or payload could not be deserialized."""

    def __init__(self, key: str, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Malformed cache entry '{key}': {reason}")


class InvalidCacheKeyError(CacheError, ValueError):
    """A key part is empty, contains the delimiter, or the key is too long."""
