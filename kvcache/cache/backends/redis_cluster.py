"""
kvcache — Redis Cluster Cache Backend

Redis Cluster engine built on the redis-py asyncio cluster client.

Single-key commands (GET, SET, INCRBY, ...) are routed to the slot owner
by the client. No node holds the whole keyspace, so clear() walks every
primary with its own SCAN cursor.

Read failover policies:
- none / error: reads go to primaries only; an unreachable primary is an error
- distribute: reads round-robin across each shard's primary and replicas
- distribute_slaves: reads round-robin across replicas only
"""

from __future__ import annotations

import logging
from typing import Any

from redis.asyncio.cluster import ClusterNode, RedisCluster
from redis.cluster import LoadBalancingStrategy
from redis.exceptions import RedisClusterException, RedisError

from ...config.schemas import FailoverPolicy, RedisClusterEngineConfig
from ...errors import InitializationError
from .redis_base import BaseRedisEngine

logger = logging.getLogger(__name__)

SCAN_BATCH_SIZE = 1000

_LOAD_BALANCING: dict[FailoverPolicy, LoadBalancingStrategy | None] = {
    FailoverPolicy.NONE: None,
    FailoverPolicy.ERROR: None,
    FailoverPolicy.DISTRIBUTE: LoadBalancingStrategy.ROUND_ROBIN,
    FailoverPolicy.DISTRIBUTE_SLAVES: LoadBalancingStrategy.ROUND_ROBIN_REPLICAS,
}

# Persistent cluster clients shared across engines for the life of the process
_persistent_clusters: dict[tuple[tuple[str, ...], float, float, str, str | None], RedisCluster] = {}


def _build_client(config: RedisClusterEngineConfig) -> RedisCluster:
    kwargs: dict[str, Any] = {
        "startup_nodes": [ClusterNode(host, port) for host, port in config.startup_nodes()],
        "password": config.password,
        "socket_connect_timeout": config.timeout or None,
        "socket_timeout": config.read_timeout or None,
        "decode_responses": False,
    }
    strategy = _LOAD_BALANCING[config.failover]
    if strategy is not None:
        kwargs["load_balancing_strategy"] = strategy
    return RedisCluster(**kwargs)


def _persistent_key(config: RedisClusterEngineConfig) -> tuple[tuple[str, ...], float, float, str, str | None]:
    return (config.seeds, config.timeout, config.read_timeout, config.failover.value, config.password)


async def close_persistent_clusters() -> None:
    """Close every persistent cluster client (process shutdown)."""
    for key, client in list(_persistent_clusters.items()):
        try:
            await client.aclose()
        except Exception as e:
            logger.warning(f"Error closing persistent cluster client {key}: {e}", extra={"error": str(e)})
    _persistent_clusters.clear()


class RedisClusterEngine(BaseRedisEngine):
    """Redis cache engine for a sharded Redis Cluster."""

    backend_name = "redis_cluster"
    _errors = (RedisError, RedisClusterException)

    def __init__(self, config: RedisClusterEngineConfig | None = None, client: RedisCluster | None = None) -> None:
        """
        Initialize Redis Cluster cache engine.

        Args:
            config: Engine configuration (defaults to RedisClusterEngineConfig())
            client: Optional pre-built cluster client; the engine never closes it
        """
        super().__init__(config or RedisClusterEngineConfig(), client=client)
        self.config: RedisClusterEngineConfig

    async def _connect(self) -> None:
        config = self.config
        if config.database != 0:
            raise InitializationError(
                self.backend_name,
                "Redis Cluster only supports database 0",
                details={"database": config.database},
            )

        if self._client is None:
            if config.persistent:
                key = _persistent_key(config)
                if key not in _persistent_clusters:
                    _persistent_clusters[key] = _build_client(config)
                self._client = _persistent_clusters[key]
                self._shared = True
            else:
                self._client = _build_client(config)

        try:
            # Contacts the seeds and loads the slot map
            await self._client.initialize()
        except self._errors as e:
            if self._shared:
                _persistent_clusters.pop(_persistent_key(config), None)
            elif not self._injected:
                await self._client.aclose()
            self._client = None
            self._shared = False
            raise InitializationError(
                self.backend_name,
                f"cannot reach Redis Cluster: {e}",
                details={"seeds": list(config.seeds), "error": str(e)},
            ) from e

    async def _clear_prefix(self) -> int:
        """SCAN each primary until its cursor returns to 0, deleting every batch."""
        removed = 0
        pattern = self._scan_pattern()
        for node in self.client.get_primaries():
            cursor = 0
            while True:
                cursors, keys = await self.client.scan(
                    cursor=cursor, match=pattern, count=SCAN_BATCH_SIZE, target_nodes=node
                )
                if keys:
                    removed += int(await self.client.delete(*keys))
                cursor = cursors[node.name]
                if cursor == 0:
                    break
        return removed

    async def _mget(self, keys: list[str]) -> list[Any]:
        # Keys may live in different slots
        return await self.client.mget_nonatomic(keys)

    def _pipeline(self) -> Any:
        return self.client.pipeline()

    async def _backend_stats(self) -> dict[str, Any]:
        stats: dict[str, Any] = {
            "seeds": list(self.config.seeds),
            "failover": self.config.failover.value,
            "persistent": self._shared,
        }
        try:
            stats["nodes"] = len(self.client.get_nodes())
            stats["primaries"] = len(self.client.get_primaries())
        except Exception as e:
            logger.warning(f"Failed to read cluster topology: {e}", extra={"error": str(e)})
        return stats
