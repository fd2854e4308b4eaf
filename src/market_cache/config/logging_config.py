"""
Centralized Logging Configuration

Reads log settings from config.yaml and configures the root logger and
module-specific loggers.

Usage:
    from market_cache.config.logging_config import configure_logging

    # Call once at application startup
    configure_logging()
"""

import logging

from market_cache.config.settings import (
    get_log_format,
    get_log_level,
    get_module_log_levels,
)

_logging_configured = False

# Libraries the cache talks to
INFRASTRUCTURE_LIBRARIES = [
    "redis",
    "asyncio",
]

# Our own loggers, grouped so one line in config.yaml can tune them together
CACHE_MODULES = [
    "market_cache.cache.store",
    "market_cache.cache.backend",
    "market_cache.cache.invalidation",
    "market_cache.cache.service",
]

LIBRARY_GROUPS = {
    "infrastructure_libraries": INFRASTRUCTURE_LIBRARIES,
    "cache_modules": CACHE_MODULES,
}


def expand_module_log_levels(raw_config: dict) -> dict:
    """
    Expand ``group:<name>`` entries into the logger names of that group.

    Example:
        Input:  {'group:infrastructure_libraries': 'WARNING', 'market_cache': 'DEBUG'}
        Output: {'redis': 'WARNING', 'asyncio': 'WARNING', 'market_cache': 'DEBUG'}
    """
    expanded = {}

    for key, level in raw_config.items():
        if key.startswith("group:"):
            group_name = key[len("group:"):]
            if group_name in LIBRARY_GROUPS:
                for logger_name in LIBRARY_GROUPS[group_name]:
                    expanded[logger_name] = level
            else:
                logging.warning(
                    f"Unknown logger group '{group_name}'. "
                    f"Valid groups: {list(LIBRARY_GROUPS.keys())}"
                )
        else:
            expanded[key] = level

    return expanded


def configure_logging(force: bool = False) -> None:
    """
    Configure logging from config.yaml.

    Args:
        force: Reconfigure even if already configured (useful for tests)
    """
    global _logging_configured

    if _logging_configured and not force:
        return

    log_level = get_log_level()
    module_log_levels = expand_module_log_levels(get_module_log_levels())

    logging.basicConfig(
        level=getattr(logging, log_level),
        format=get_log_format(),
        force=True,
    )

    for module_name, level_str in module_log_levels.items():
        level = getattr(logging, level_str, None)
        if not isinstance(level, int):
            logging.warning(
                f"Invalid log level '{level_str}' for module '{module_name}'. "
                f"Valid levels: DEBUG, INFO, WARNING, ERROR, CRITICAL"
            )
            continue
        logging.getLogger(module_name).setLevel(level)

    _logging_configured = True

    logging.getLogger().debug(
        f"Logging configured: root_level={log_level}, "
        f"modules={list(module_log_levels.keys())}"
    )


def reset_logging_config() -> None:
    """Allow configure_logging() to run again (testing)."""
    global _logging_configured
    _logging_configured = False
