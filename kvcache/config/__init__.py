"""
kvcache — Configuration Module

Provides typed configuration loading and validation.
"""

from .loader import configure_logging, get_config, load_config, reload_config
from .schemas import (
    AnyEngineConfig,
    CacheBackend,
    EngineConfig,
    Environment,
    FailoverPolicy,
    FileEngineConfig,
    LogLevel,
    RedisClusterEngineConfig,
    RedisEngineConfig,
    Settings,
)

__all__ = [
    # Loader functions
    "load_config",
    "get_config",
    "reload_config",
    "configure_logging",
    # Root config
    "Settings",
    # Enums
    "Environment",
    "CacheBackend",
    "FailoverPolicy",
    "LogLevel",
    # Engine configs
    "EngineConfig",
    "AnyEngineConfig",
    "FileEngineConfig",
    "RedisEngineConfig",
    "RedisClusterEngineConfig",
]
