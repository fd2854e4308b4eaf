"""
Pydantic models for cache infrastructure configuration.

These models define the schema for config.yaml.
"""

from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class CacheTTLConfig(BaseModel):
    """TTL defaults (seconds) per cache namespace."""

    listings: int = Field(default=300, gt=0, description="Category listings TTL (5 minutes)")
    categories: int = Field(default=3600, gt=0, description="Category tree TTL (1 hour)")
    search: int = Field(default=600, gt=0, description="Search results TTL (10 minutes)")
    user: int = Field(default=900, gt=0, description="User profile TTL (15 minutes)")
    default: int = Field(
        default=300, gt=0, description="TTL for any unrecognized namespace (5 minutes)"
    )


class InvalidationConfig(BaseModel):
    """Bulk prefix invalidation settings."""

    page_size: int = Field(
        default=1000, gt=0, le=1000, description="Keys listed per backend page"
    )
    max_in_flight_deletes: int = Field(
        default=1000, gt=0, description="Upper bound on concurrent deletes per page"
    )


class CacheConfig(BaseModel):
    """Key-value cache configuration."""

    enabled: bool = Field(default=True, description="Enable/disable caching globally")
    backend: str = Field(default="redis", description='Backend: "redis" or "memory"')
    redis_url: str = Field(
        default="redis://localhost:6379/0", description="Redis connection URL"
    )
    max_connections: int = Field(default=10, description="Connection pool size")
    socket_timeout: float = Field(default=5.0, description="Socket timeout in seconds")
    socket_connect_timeout: float = Field(
        default=5.0, description="Socket connect timeout in seconds"
    )
    operation_timeout: Optional[float] = Field(
        default=2.0,
        description="Per-call deadline for backend operations (null disables)",
    )
    ttl: CacheTTLConfig = Field(default_factory=CacheTTLConfig)
    invalidation: InvalidationConfig = Field(default_factory=InvalidationConfig)


class InfrastructureConfig(BaseModel):
    """Root model for config.yaml."""

    model_config = ConfigDict(extra="allow")

    debug: bool = Field(default=False, description="Debug mode flag")

    # General Application Logging
    log_level: str = Field(default="warning", description="Root logger level")
    log_format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format string",
    )
    module_log_levels: Dict[str, str] = Field(
        default_factory=dict, description="Module-specific log levels"
    )

    cache: CacheConfig = Field(default_factory=CacheConfig)
