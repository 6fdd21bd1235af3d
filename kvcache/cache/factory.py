"""
kvcache — Engine Factory

Canonical factory for creating cache engines from configuration.

Key points:
- The set of backends is closed: CacheBackend.FILE | REDIS | REDIS_CLUSTER
- Backends are selected by the config model's `backend` field
- Redis modules are imported lazily so the file engine works without redis
- Engines are registered by name; asking for a known name returns the same instance

Examples:
    from kvcache.cache.factory import create_engine
    from kvcache.config import FileEngineConfig

    engine = await create_engine(FileEngineConfig(path="/tmp/cache"), name="pages")
"""

from __future__ import annotations

import logging

from ..config import AnyEngineConfig, CacheBackend, get_config
from ..errors import ConfigurationError
from .backends.file import FileEngine
from .interface import CacheEngine

logger = logging.getLogger(__name__)

# Global engine registry
_engine_instances: dict[str, CacheEngine] = {}


def _import_redis_backend(backend: CacheBackend) -> type[CacheEngine]:
    """Import a Redis engine class, reporting a missing client library clearly."""
    try:
        if backend == CacheBackend.REDIS:
            from .backends.redis import RedisEngine

            return RedisEngine
        from .backends.redis_cluster import RedisClusterEngine

        return RedisClusterEngine
    except ImportError as e:
        logger.error(
            "Redis backend selected but redis client is not installed",
            extra={"package": "redis>=6.0", "error": str(e)},
        )
        raise ConfigurationError(
            "Redis backend selected but redis client is unavailable. Install with: pip install 'redis>=6.0'",
            details={"package": "redis>=6.0", "error": str(e), "backend": backend.value},
        ) from e


def build_engine(config: AnyEngineConfig) -> CacheEngine:
    """
    Construct (but do not initialize) the engine matching a configuration.

    Raises:
        ConfigurationError: If the backend is unknown or unavailable
    """
    try:
        backend = CacheBackend(config.backend)
    except ValueError as e:
        raise ConfigurationError(
            f"Unknown cache backend: {config.backend}",
            details={"backend": str(config.backend), "supported": [b.value for b in CacheBackend]},
        ) from e

    if backend == CacheBackend.FILE:
        return FileEngine(config)  # type: ignore[arg-type]
    return _import_redis_backend(backend)(config)  # type: ignore[call-arg]


async def create_engine(
    config: AnyEngineConfig | None = None,
    name: str = "default",
) -> CacheEngine:
    """
    Create and initialize an engine, registering it under a name.

    An engine whose initialization fails is still returned and registered;
    it is in the FAILED state and every operation on it returns its failure
    signal. Check `engine.is_active` or `engine.last_error`.

    Args:
        config: Engine configuration (uses the loaded Settings if not provided)
        name: Registry name

    Returns:
        The engine registered under name
    """
    if name in _engine_instances:
        logger.debug("Returning existing cache engine: %s", name)
        return _engine_instances[name]

    if config is None:
        config = get_config().engine
    backend = CacheBackend(config.backend).value

    logger.info(
        "Creating cache engine '%s' with backend: %s",
        name,
        backend,
        extra={"engine_name": name, "backend": backend},
    )

    engine = build_engine(config)
    await engine.initialize()
    _engine_instances[name] = engine

    if not engine.is_active:
        logger.warning(
            "Cache engine '%s' failed to initialize",
            name,
            extra={"engine_name": name, "backend": backend, "error": str(engine.last_error)},
        )
    return engine


def get_engine(name: str = "default") -> CacheEngine | None:
    """Get a registered engine by name."""
    return _engine_instances.get(name)


def list_engines() -> list[str]:
    """List all registered engine names."""
    return list(_engine_instances.keys())


async def close_all_engines() -> None:
    """
    Close all registered engines and shared Redis connections.

    Call during graceful shutdown.
    """
    if not _engine_instances:
        logger.debug("No cache engines to close")
    else:
        logger.info("Closing %d cache engine(s)...", len(_engine_instances))

    for name, engine in list(_engine_instances.items()):
        try:
            await engine.close()
            logger.info("Closed cache engine: %s", name)
        except Exception as e:
            logger.error(
                "Error closing cache engine '%s': %s",
                name,
                e,
                extra={"engine_name": name, "error": str(e)},
                exc_info=True,
            )
    _engine_instances.clear()

    try:
        from .backends.redis import close_persistent_connections
        from .backends.redis_cluster import close_persistent_clusters
    except ImportError:
        # redis not installed, so no persistent connections exist
        return
    await close_persistent_connections()
    await close_persistent_clusters()


def reset_engine_registry() -> None:
    """
    Forget all registered engines without closing them.

    Warning: Only use this in testing contexts.
    """
    count = len(_engine_instances)
    _engine_instances.clear()
    logger.debug("Reset engine registry, cleared %d instance reference(s)", count)
