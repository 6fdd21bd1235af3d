"""
kvcache — Cache Module

Provides the cache engine contract and its pluggable backends.

Canonical exports:
- factory.py: engine creation and registry
- interface.py: abstract CacheEngine all backends implement
- backends/: file, redis and redis_cluster engines

Usage:
    from kvcache.cache import create_engine

    engine = await create_engine()
    await engine.write("key", "value", ttl=3600)
    value = await engine.read("key")
"""

from .factory import (
    build_engine,
    close_all_engines,
    create_engine,
    get_engine,
    list_engines,
    reset_engine_registry,
)
from .interface import CacheEngine, EngineState

__all__ = [
    # Factory functions
    "build_engine",
    "create_engine",
    "get_engine",
    "close_all_engines",
    "list_engines",
    "reset_engine_registry",
    # Interface
    "CacheEngine",
    "EngineState",
]
