"""
Configuration loader for the cache infrastructure.

Reads config.yaml with:
- $VAR and ${VAR} environment variable substitution
- Search order: MARKET_CACHE_CONFIG env var → CWD → git root
- Caching to avoid repeated file reads
- Pydantic validation into InfrastructureConfig
"""

import logging
import os
import re
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from market_cache.config.models import InfrastructureConfig

logger = logging.getLogger(__name__)

CONFIG_FILE = "config.yaml"
CONFIG_PATH_ENV_VAR = "MARKET_CACHE_CONFIG"

_BRACED_VAR = re.compile(r"\$\{([^}]+)\}")


# =============================================================================
# Environment Variable Substitution
# =============================================================================


def substitute_env_vars(value: Any) -> Any:
    """
    Replace environment variable references in a string value.

    ``${VAR}`` may appear anywhere in the string; a bare ``$VAR`` is only
    substituted when it is the whole value. Unknown variables are left as-is.
    """
    if not isinstance(value, str):
        return value

    result = _BRACED_VAR.sub(lambda m: os.getenv(m.group(1), m.group(0)), value)

    if result.startswith("$") and not result.startswith("${"):
        name = result[1:]
        if name.isidentifier():
            return os.getenv(name, result)

    return result


def _substitute(node: Any) -> Any:
    if isinstance(node, dict):
        return {key: _substitute(value) for key, value in node.items()}
    if isinstance(node, list):
        return [_substitute(item) for item in node]
    return substitute_env_vars(node)


# =============================================================================
# Config File Search
# =============================================================================


def find_project_root(start_path: Optional[Path] = None) -> Optional[Path]:
    """Walk up from start_path until a directory containing .git is found."""
    current = start_path or Path.cwd()
    while current != current.parent:
        if (current / ".git").exists():
            return current
        current = current.parent
    return None


def get_config_search_paths(start_path: Optional[Path] = None) -> List[Path]:
    """Ordered directories searched for config.yaml: CWD, then the git root."""
    cwd = start_path or Path.cwd()
    paths = [cwd]
    project_root = find_project_root(cwd)
    if project_root and project_root != cwd:
        paths.append(project_root)
    return paths


def find_config_file(
    filename: str = CONFIG_FILE,
    search_paths: Optional[List[Path]] = None,
) -> Optional[Path]:
    """
    Find the config file to load.

    Args:
        filename: Name of the file to find
        search_paths: Directories to search (default: get_config_search_paths())

    Returns:
        Path to the first existing file, or None if not found
    """
    env_path = os.getenv(CONFIG_PATH_ENV_VAR)
    if env_path:
        path = Path(env_path)
        if path.exists():
            return path
        logger.warning(f"{CONFIG_PATH_ENV_VAR} points to missing file: {env_path}")

    if search_paths is None:
        search_paths = get_config_search_paths()

    for search_path in search_paths:
        candidate = search_path / filename
        if candidate.exists():
            return candidate

    return None


# =============================================================================
# YAML Loading with Caching
# =============================================================================

_yaml_cache: Dict[str, Dict[str, Any]] = {}


def load_yaml_config(file_path: str, use_cache: bool = True) -> Dict[str, Any]:
    """
    Load a YAML file and substitute environment variables in its values.

    Returns an empty dict when the file is missing or empty.
    """
    if not os.path.exists(file_path):
        logger.warning(f"Configuration file not found: {file_path}")
        return {}

    if use_cache and file_path in _yaml_cache:
        return _yaml_cache[file_path]

    with open(file_path, encoding="utf-8") as f:
        raw_config = yaml.safe_load(f)

    if not raw_config:
        logger.warning(f"Empty configuration file: {file_path}")
        return {}

    processed = _substitute(raw_config)
    logger.debug(f"Loaded configuration from {file_path} (settings: {len(processed)})")

    if use_cache:
        _yaml_cache[file_path] = processed
    return processed


@lru_cache(maxsize=1)
def load_infrastructure_config(config_path: Optional[str] = None) -> InfrastructureConfig:
    """
    Load and validate config.yaml.

    Cached so repeated accessor calls do not re-read or re-validate the file.

    Args:
        config_path: Optional explicit path to the config file

    Returns:
        Validated InfrastructureConfig (defaults when no file is found)
    """
    path = Path(config_path) if config_path else find_config_file()

    if path is None:
        logger.info("No config.yaml found, using defaults")
        return InfrastructureConfig()

    return InfrastructureConfig(**load_yaml_config(str(path)))


def clear_config_cache() -> None:
    """Drop cached config so the next access re-reads config.yaml."""
    _yaml_cache.clear()
    load_infrastructure_config.cache_clear()
    logger.debug("Configuration cache cleared")
