"""
kvcache — Redis Cache Backend

Single-node Redis engine built on the redis-py asyncio client.

Connection modes:
- unix_socket: connect over a unix domain socket (never shared)
- persistent=False: a private connection pool, closed by close()
- persistent=True: a process-wide client keyed by (server, port, timeout,
  database, password), shared by every engine with the same settings and
  kept open for the life of the process

Requires: redis>=6.0 with asyncio support

Example:
    engine = RedisEngine(RedisEngineConfig(server="localhost", prefix="app_"))
    await engine.initialize()
    await engine.write("greeting", {"msg": "hello"}, ttl="+1 minute")
    val = await engine.read("greeting")
"""

from __future__ import annotations

import logging
from typing import Any

from ...config.schemas import RedisEngineConfig
from ...errors import InitializationError
from .redis_base import BaseRedisEngine

logger = logging.getLogger(__name__)

try:
    # redis-py asyncio client (v4+)
    from redis.asyncio import Redis
except ImportError as e:  # pragma: no cover
    raise ImportError(
        "Redis async client is required but not installed. "
        "Install with: pip install 'redis>=6.0' or add 'redis' to your dependencies."
    ) from e

# Persistent clients shared across engines for the life of the process
_persistent_clients: dict[tuple[str, int, float, int, str | None], Redis] = {}


def _build_client(config: RedisEngineConfig) -> Redis:
    timeout = config.timeout or None
    kwargs: dict[str, Any] = {
        "password": config.password,
        "db": config.database,
        "socket_timeout": timeout,
        "socket_connect_timeout": timeout,
        "decode_responses": False,
    }
    if config.unix_socket:
        return Redis(unix_socket_path=config.unix_socket, **kwargs)
    return Redis(host=config.server, port=config.port, **kwargs)


def _persistent_key(config: RedisEngineConfig) -> tuple[str, int, float, int, str | None]:
    # Engines with different credentials never share an authenticated client
    return (config.server, config.port, config.timeout, config.database, config.password)


async def close_persistent_connections() -> None:
    """
    Close every persistent Redis client.

    Call once during process shutdown; engines still using them will fail.
    """
    for key, client in list(_persistent_clients.items()):
        try:
            await client.aclose()
        except Exception as e:
            logger.warning(f"Error closing persistent Redis client {key}: {e}", extra={"error": str(e)})
    count = len(_persistent_clients)
    _persistent_clients.clear()
    logger.debug(f"Closed {count} persistent Redis client(s)")


class RedisEngine(BaseRedisEngine):
    """Redis cache engine for a single server."""

    backend_name = "redis"

    def __init__(self, config: RedisEngineConfig | None = None, client: Redis | None = None) -> None:
        """
        Initialize Redis cache engine.

        Args:
            config: Engine configuration (defaults to RedisEngineConfig())
            client: Optional pre-built client (e.g. for tests); the engine never closes it
        """
        super().__init__(config or RedisEngineConfig(), client=client)
        self.config: RedisEngineConfig

    async def _connect(self) -> None:
        config = self.config
        if self._client is None:
            if config.persistent and not config.unix_socket:
                key = _persistent_key(config)
                if key not in _persistent_clients:
                    _persistent_clients[key] = _build_client(config)
                self._client = _persistent_clients[key]
                self._shared = True
            else:
                self._client = _build_client(config)

        try:
            # AUTH and SELECT happen on connect, so PING surfaces both failures
            await self._client.ping()
        except self._errors as e:
            if self._shared:
                _persistent_clients.pop(_persistent_key(config), None)
            elif not self._injected:
                await self._client.aclose()
            self._client = None
            self._shared = False
            raise InitializationError(
                self.backend_name,
                f"cannot reach Redis: {e}",
                details={
                    "server": config.unix_socket or f"{config.server}:{config.port}",
                    "database": config.database,
                    "error": str(e),
                },
            ) from e

    async def _clear_prefix(self) -> int:
        removed = 0
        cursor = 0
        while True:
            cursor, keys = await self.client.scan(cursor=cursor, match=self._scan_pattern(), count=1000)
            if keys:
                removed += int(await self.client.delete(*keys))
            if cursor == 0:
                break
        return removed

    async def _backend_stats(self) -> dict[str, Any]:
        stats: dict[str, Any] = {
            "server": self.config.unix_socket or f"{self.config.server}:{self.config.port}",
            "database": self.config.database,
            "persistent": self._shared,
            "connected": False,
        }
        try:
            stats["connected"] = bool(await self.client.ping())
            info = await self.client.info(section="server")
            stats["redis_version"] = info.get("redis_version")
            stats["redis_mode"] = info.get("redis_mode")
        except Exception as e:
            # If INFO is restricted or fails, keep minimal stats
            logger.warning(f"Failed to get Redis INFO (restricted or unavailable): {e}", extra={"error": str(e)})
        return stats
