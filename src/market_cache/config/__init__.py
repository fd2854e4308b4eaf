from dotenv import load_dotenv

from .core import clear_config_cache, load_infrastructure_config, load_yaml_config
from .models import CacheConfig, CacheTTLConfig, InfrastructureConfig, InvalidationConfig
from .settings import get_cache_config, get_cache_ttl

# Load environment variables
load_dotenv()


__all__ = [
    # Models
    "InfrastructureConfig",
    "CacheConfig",
    "CacheTTLConfig",
    "InvalidationConfig",
    # Loading
    "load_infrastructure_config",
    "load_yaml_config",
    "clear_config_cache",
    # Accessors
    "get_cache_config",
    "get_cache_ttl",
]
