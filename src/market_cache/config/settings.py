"""
Centralized configuration access module.

Credentials and connection URLs may come from environment variables (.env);
everything else comes from config.yaml.
"""

import logging
import os
from typing import Dict, Optional

from market_cache.config.core import load_infrastructure_config
from market_cache.config.models import CacheConfig, CacheTTLConfig, InfrastructureConfig

logger = logging.getLogger(__name__)

_TRUTHY = ("true", "1", "yes")

# Namespace → TTL field on CacheTTLConfig
_TTL_FIELDS = {
    "listings": "listings",
    "category": "listings",
    "categories": "categories",
    "search": "search",
    "user": "user",
}


def get_infrastructure_config(config_path: Optional[str] = None) -> InfrastructureConfig:
    """Get the validated config.yaml contents."""
    return load_infrastructure_config(config_path)


def get_cache_config(config_path: Optional[str] = None) -> CacheConfig:
    """
    Get the cache section of config.yaml with environment overrides applied.

    REDIS_URL replaces cache.redis_url and CACHE_ENABLED=false switches the
    cache off regardless of the file.
    """
    config = get_infrastructure_config(config_path).cache
    overrides = {}

    redis_url = os.getenv("REDIS_URL")
    if redis_url:
        overrides["redis_url"] = redis_url

    enabled_env = os.getenv("CACHE_ENABLED")
    if enabled_env is not None:
        overrides["enabled"] = config.enabled and enabled_env.lower() in _TRUTHY

    return config.model_copy(update=overrides) if overrides else config


def is_cache_enabled() -> bool:
    """Check whether caching is enabled."""
    return get_cache_config().enabled


def get_redis_url() -> str:
    """Get the Redis connection URL."""
    return get_cache_config().redis_url


def get_cache_ttl(namespace: str, ttl_config: Optional[CacheTTLConfig] = None) -> int:
    """
    Get the default TTL in seconds for a cache namespace.

    Args:
        namespace: "listings"/"category", "categories", "search" or "user"
        ttl_config: TTL table to read from (default: config.yaml)

    Returns:
        Configured TTL; the default TTL for unrecognized namespaces
    """
    ttl = ttl_config or get_cache_config().ttl
    field = _TTL_FIELDS.get(namespace)
    if field is None:
        return ttl.default
    return getattr(ttl, field)


# =============================================================================
# Logging Settings
# =============================================================================

def get_log_level() -> str:
    """
    Get the root log level name from config.yaml.

    Falls back to WARNING when the configured value is not a logging level.
    """
    level = get_infrastructure_config().log_level.upper()
    if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
        logger.warning(f"Invalid log_level '{level}', using WARNING")
        return "WARNING"
    return level


def get_log_format() -> str:
    """Get the log format string from config.yaml."""
    return get_infrastructure_config().log_format


def get_module_log_levels() -> Dict[str, str]:
    """Get per-module log levels from config.yaml (upper-cased)."""
    return {
        module: str(level).upper()
        for module, level in get_infrastructure_config().module_log_levels.items()
    }
