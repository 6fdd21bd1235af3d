"""
kvcache — Configuration Loader

Loads and validates configuration from environment variables and .env files.
Provides a singleton configuration instance for the process.
"""

import logging
import os
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from pydantic import ValidationError

from ..errors import ConfigurationError
from .schemas import (
    CacheBackend,
    EngineConfig,
    FileEngineConfig,
    RedisClusterEngineConfig,
    RedisEngineConfig,
    Settings,
)

logger = logging.getLogger(__name__)

_config_instance: Settings | None = None

_ENGINE_MODELS: dict[str, type[EngineConfig]] = {
    CacheBackend.FILE.value: FileEngineConfig,
    CacheBackend.REDIS.value: RedisEngineConfig,
    CacheBackend.REDIS_CLUSTER.value: RedisClusterEngineConfig,
}


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes", "on")


def _env_list(name: str) -> list[str] | None:
    raw = os.getenv(name)
    if raw is None:
        return None
    return [item.strip() for item in raw.split(",") if item.strip()]


def _engine_options(backend: str, environment: str) -> dict[str, Any]:
    """Collect the options relevant to one backend from KVCACHE_* variables."""
    options: dict[str, Any] = {
        "prefix": os.getenv("KVCACHE_PREFIX", "cache_"),
        "duration": os.getenv("KVCACHE_DURATION", "3600"),
        "groups": _env_list("KVCACHE_GROUPS") or [],
    }

    if backend == CacheBackend.FILE.value:
        options.update(
            {
                "path": os.getenv("KVCACHE_PATH", "./cache"),
                "lock": _env_bool("KVCACHE_LOCK", "false"),
                "serialize": _env_bool("KVCACHE_SERIALIZE", "true"),
                "mask": os.getenv("KVCACHE_MASK", "0664"),
                # Only development-like environments create the cache root on demand
                "auto_create": environment in ("development", "test"),
            }
        )
    elif backend == CacheBackend.REDIS.value:
        options.update(
            {
                "server": os.getenv("KVCACHE_REDIS_SERVER", "127.0.0.1"),
                "port": int(os.getenv("KVCACHE_REDIS_PORT", "6379")),
                "password": os.getenv("KVCACHE_REDIS_PASSWORD") or None,
                "database": int(os.getenv("KVCACHE_REDIS_DATABASE", "0")),
                "timeout": float(os.getenv("KVCACHE_REDIS_TIMEOUT", "0")),
                "persistent": _env_bool("KVCACHE_REDIS_PERSISTENT", "true"),
                "unix_socket": os.getenv("KVCACHE_REDIS_UNIX_SOCKET") or None,
            }
        )
    elif backend == CacheBackend.REDIS_CLUSTER.value:
        options.update(
            {
                "seeds": _env_list("KVCACHE_CLUSTER_SEEDS") or ["127.0.0.1:7000"],
                "timeout": float(os.getenv("KVCACHE_REDIS_TIMEOUT", "0")),
                "read_timeout": float(os.getenv("KVCACHE_CLUSTER_READ_TIMEOUT", "0")),
                "persistent": _env_bool("KVCACHE_REDIS_PERSISTENT", "true"),
                "password": os.getenv("KVCACHE_REDIS_PASSWORD") or None,
                "database": int(os.getenv("KVCACHE_REDIS_DATABASE", "0")),
                "failover": os.getenv("KVCACHE_CLUSTER_FAILOVER", "none"),
            }
        )
    return options


def load_config(
    env_file: str | None = None,
    reload: bool = False,
) -> Settings:
    """
    Load configuration from environment variables and .env file.

    Args:
        env_file: Path to .env file (default: .env in the working directory)
        reload: Force reload even if config already loaded

    Returns:
        Validated Settings instance

    Raises:
        ConfigurationError: If configuration is invalid
    """
    global _config_instance

    if _config_instance is not None and not reload:
        return _config_instance

    if env_file:
        env_path = Path(env_file)
    else:
        env_path = Path.cwd() / ".env"

    if env_path.exists():
        logger.info(f"Loading environment from {env_path}")
        try:
            load_dotenv(env_path, override=True)
        except Exception as e:
            logger.error(
                f"Failed to load .env file from {env_path}: {e}",
                extra={"path": str(env_path), "error": str(e)},
                exc_info=True,
            )
            raise ConfigurationError(
                f"Failed to load environment file: {e}",
                details={"path": str(env_path), "error": str(e)},
            ) from e
    else:
        logger.debug("No .env file found, using environment variables only")

    environment = os.getenv("ENVIRONMENT", "development")
    backend = os.getenv("KVCACHE_BACKEND", CacheBackend.FILE.value).lower()

    model = _ENGINE_MODELS.get(backend)
    if model is None:
        raise ConfigurationError(
            f"Unknown cache backend: {backend}",
            details={"backend": backend, "supported": sorted(_ENGINE_MODELS)},
        )

    try:
        options = _engine_options(backend, environment)
        _config_instance = Settings(
            environment=environment,  # type: ignore[arg-type]
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),  # type: ignore[arg-type]
            engine=model(**options),
        )
        logger.info(
            f"Configuration loaded successfully (environment: {_config_instance.environment.value})",
            extra={"environment": _config_instance.environment.value, "backend": backend},
        )
        return _config_instance
    except ValidationError as e:
        logger.error(
            f"Configuration validation failed: {e}",
            extra={"validation_errors": e.errors(), "backend": backend},
            exc_info=True,
        )
        raise ConfigurationError(
            "Configuration validation failed. Check your environment variables and configuration.",
            details={"validation_errors": e.errors()},
        ) from e
    except ValueError as e:
        # int()/float() on malformed numeric variables
        logger.error(f"Invalid numeric configuration value: {e}", extra={"error": str(e)}, exc_info=True)
        raise ConfigurationError(
            f"Invalid numeric configuration value: {e}",
            details={"error": str(e)},
        ) from e


def get_config() -> Settings:
    """
    Get the current configuration instance.

    Loads it from the environment on first access.
    """
    if _config_instance is None:
        return load_config()

    return _config_instance


def reload_config(env_file: str | None = None) -> Settings:
    """
    Force reload configuration.

    Args:
        env_file: Optional path to .env file

    Returns:
        Reloaded Settings instance
    """
    return load_config(env_file=env_file, reload=True)


def configure_logging(level: str | None = None) -> None:
    """Apply the standard log format at the configured level."""
    logging.basicConfig(
        level=level or get_config().log_level.value,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
