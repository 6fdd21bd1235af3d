"""
kvcache — Redis Engine Core

Behaviour shared by the single-node and cluster Redis engines:
- codec encoding (integers as plain text, so INCRBY works on written values)
- native TTL via SET EX (ttl == 0 -> plain SET, no expiry)
- atomic counters via INCRBY/DECRBY and atomic add() via SET NX
- group invalidation by bumping a per-group counter key
- MGET for get_multiple(), a pipeline for set_multiple()

Subclasses provide the client (_connect), the prefix scan used by clear(),
and the topology-specific bulk helpers.
"""

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from ...config.schemas import EngineConfig
from ...errors import CorruptEntryError, TransientBackendError
from .. import codec
from ..interface import CacheEngine, Duration, EngineState, requires_active
from ..keys import escape_pattern

logger = logging.getLogger(__name__)


class BaseRedisEngine(CacheEngine):
    """
    Common Redis engine implementation.

    Notes:
    - Keys are the normalized key with the configured prefix prepended.
    - clear(only_expired=True) is a no-op: Redis expires keys natively.
    - Stale grouped entries survive clear_group() until their own TTL fires.
    """

    atomic_add = True

    # Exceptions treated as per-call backend failures
    _errors: tuple[type[Exception], ...] = (RedisError,)

    def __init__(self, config: EngineConfig, client: Any | None = None) -> None:
        """
        Args:
            config: Engine configuration
            client: Pre-built redis client; it is used as-is and never closed by the engine
        """
        super().__init__(config)
        self._client = client
        self._injected = client is not None
        self._shared = False

    @property
    def client(self) -> Any:
        return self._client

    # ------------ Helpers ------------

    def _scan_pattern(self) -> str:
        return f"{escape_pattern(self.prefix)}*"

    def _group_key(self, group: str) -> str:
        return f"{self.prefix}{group}"

    def _log_failure(self, operation: str, key: Any, error: Exception) -> None:
        """Log a per-call failure; connection problems are reported as transient."""
        if isinstance(error, RedisConnectionError | RedisTimeoutError):
            error = TransientBackendError(
                f"{self.backend_name} unavailable during {operation}: {error}",
                details={"operation": operation},
            )
        logger.error(
            f"Failed to {operation} key '{key}' in {self.backend_name}: {error}",
            extra={"key": key, "prefix": self.prefix, "backend": self.backend_name, "error": str(error)},
            exc_info=True,
        )

    def _decode(self, key: Any, raw: bytes | str) -> Any | None:
        try:
            return codec.decode(raw)
        except CorruptEntryError as e:
            logger.warning(
                f"Corrupt cache entry for key '{key}', treating as miss",
                extra={"key": key, "backend": self.backend_name, **e.details},
            )
            return None

    def _encode(self, key: Any, value: Any) -> bytes | None:
        try:
            return codec.encode(value)
        except TypeError as e:
            logger.error(
                f"Failed to serialize value for key '{key}': {e}",
                extra={"key": key, "value_type": type(value).__name__, "error": str(e)},
            )
            return None

    async def _clear_prefix(self) -> int:
        """Delete every key under the prefix; returns the number removed."""
        raise NotImplementedError

    async def _mget(self, keys: list[str]) -> list[Any]:
        return await self.client.mget(keys)

    def _pipeline(self) -> Any:
        return self.client.pipeline(transaction=False)

    async def _release_client(self) -> None:
        await self.client.aclose()

    # ------------ Lifecycle ------------

    async def close(self) -> None:
        """
        Close the connection unless it is shared.

        Persistent connections live as long as the process; injected clients
        belong to the caller.
        """
        if self._client is None:
            return
        if self._shared or self._injected:
            logger.debug(f"Leaving shared {self.backend_name} connection open (prefix '{self.prefix}')")
            return
        try:
            await self._release_client()
            logger.info(f"Closed {self.backend_name} cache engine for prefix '{self.prefix}'")
        except Exception as e:
            logger.error(
                f"Error closing {self.backend_name} client: {e}",
                extra={"prefix": self.prefix, "error": str(e)},
                exc_info=True,
            )
        finally:
            self._client = None
            self.state = EngineState.UNINITIALIZED

    # ------------ Core Interface ------------

    @requires_active(failure=False)
    async def write(self, key: Any, value: Any, ttl: Duration | None = None) -> bool:
        """SET with EX when ttl > 0, plain SET when ttl == 0."""
        ns_key = self.key(key)
        seconds = self._ttl_seconds(ttl)
        if seconds < 0:
            return False
        payload = self._encode(key, value)
        if payload is None:
            return False

        try:
            res = await self.client.set(ns_key, payload, ex=seconds or None)
        except self._errors as e:
            self._log_failure("write", key, e)
            return False

        success = bool(res)
        if success:
            self._writes += 1
        return success

    @requires_active(failure=None)
    async def read(self, key: Any) -> Any | None:
        """GET and decode; missing or corrupt entries are misses."""
        ns_key = self.key(key)
        try:
            data = await self.client.get(ns_key)
        except self._errors as e:
            self._log_failure("read", key, e)
            self._misses += 1
            return None

        value = None if data is None else self._decode(key, data)
        if value is None:
            self._misses += 1
            return None
        self._hits += 1
        return value

    @requires_active(failure=False)
    async def delete(self, key: Any) -> bool:
        ns_key = self.key(key)
        try:
            deleted = await self.client.delete(ns_key)
        except self._errors as e:
            self._log_failure("delete", key, e)
            return False
        if deleted:
            self._deletes += 1
        return bool(deleted)

    @requires_active(failure=False)
    async def add(self, key: Any, value: Any, ttl: Duration | None = None) -> bool:
        """Atomic set-if-absent (SET NX)."""
        ns_key = self.key(key)
        seconds = self._ttl_seconds(ttl)
        if seconds < 0:
            return False
        payload = self._encode(key, value)
        if payload is None:
            return False

        try:
            res = await self.client.set(ns_key, payload, ex=seconds or None, nx=True)
        except self._errors as e:
            self._log_failure("add", key, e)
            return False

        success = bool(res)
        if success:
            self._writes += 1
        return success

    @requires_active(failure=None)
    async def increment(self, key: Any, offset: int = 1) -> int | None:
        """INCRBY; None if the stored value is not an integer or the call failed."""
        try:
            return int(await self.client.incrby(self.key(key), offset))
        except self._errors as e:
            self._log_failure("increment", key, e)
            return None

    @requires_active(failure=None)
    async def decrement(self, key: Any, offset: int = 1) -> int | None:
        """DECRBY; None if the stored value is not an integer or the call failed."""
        try:
            return int(await self.client.decrby(self.key(key), offset))
        except self._errors as e:
            self._log_failure("decrement", key, e)
            return None

    @requires_active(failure=False)
    async def clear(self, only_expired: bool = False) -> bool:
        """
        Clear all entries under the prefix.

        only_expired=True returns True immediately: Redis already evicts expired keys.
        """
        if only_expired:
            return True
        try:
            removed = await self._clear_prefix()
        except self._errors as e:
            self._log_failure("clear", self._scan_pattern(), e)
            return False

        self._deletes += removed
        logger.info(
            f"Cleared {removed} keys with prefix '{self.prefix}'",
            extra={"prefix": self.prefix, "backend": self.backend_name, "removed": removed},
        )
        return True

    # ------------ Groups ------------

    @requires_active(failure=list)
    async def groups(self) -> list[str]:
        """
        Versioned label for every configured group, e.g. ["posts1", "users3"].

        A group counter that does not exist yet is created with value 1. SET NX
        never resets a counter another caller has already created or bumped.
        """
        labels = []
        try:
            for group in self.config.groups:
                counter_key = self._group_key(group)
                await self.client.set(counter_key, 1, nx=True)
                value = await self.client.get(counter_key)
                labels.append(f"{group}{int(value)}")
        except self._errors as e:
            self._log_failure("groups", ",".join(self.config.groups), e)
            return []
        return labels

    @requires_active(failure=False)
    async def clear_group(self, group: str) -> bool:
        """Bump the group counter; entries under the old label are left to expire."""
        try:
            return bool(await self.client.incr(self._group_key(group)))
        except self._errors as e:
            self._log_failure("clear_group", group, e)
            return False

    # ------------ Batch operations ------------

    @requires_active(failure=dict)
    async def get_multiple(self, keys: Iterable[Any], default: Any = None) -> dict[Any, Any]:
        """MGET in one round-trip; misses map to default or are omitted."""
        keys = list(keys)
        if not keys:
            return {}

        try:
            values = await self._mget([self.key(k) for k in keys])
        except self._errors as e:
            self._log_failure("get_multiple", f"<{len(keys)} keys>", e)
            return {}

        result: dict[Any, Any] = {}
        for key, raw in zip(keys, values, strict=True):
            value = None if raw is None else self._decode(key, raw)
            if value is None:
                self._misses += 1
                if default is not None:
                    result[key] = default
                continue
            self._hits += 1
            result[key] = value
        return result

    @requires_active(failure=False)
    async def set_multiple(self, items: Mapping[Any, Any], ttl: Duration | None = None) -> bool:
        """
        Pipeline one SET per item with the same TTL.

        Not atomic: if any SET fails the result is False and the successful
        ones are kept.
        """
        if not items:
            return True
        seconds = self._ttl_seconds(ttl)
        if seconds < 0:
            return False

        pipe = self._pipeline()
        for key, value in items.items():
            payload = self._encode(key, value)
            if payload is None:
                return False
            pipe.set(self.key(key), payload, ex=seconds or None)

        try:
            results = await pipe.execute(raise_on_error=False)
        except self._errors as e:
            self._log_failure("set_multiple", f"<{len(items)} keys>", e)
            return False

        stored = sum(1 for r in results if r is True or r in ("OK", b"OK"))
        self._writes += stored
        if stored != len(items):
            logger.warning(
                "Partial set_multiple failure",
                extra={"backend": self.backend_name, "stored": stored, "total": len(items)},
            )
            return False
        return True

    @requires_active(failure=0)
    async def delete_multiple(self, keys: Iterable[Any]) -> int:
        """DEL all keys at once; returns the number removed."""
        ns_keys = [self.key(k) for k in keys]
        if not ns_keys:
            return 0
        try:
            deleted = int(await self.client.delete(*ns_keys))
        except self._errors as e:
            self._log_failure("delete_multiple", f"<{len(ns_keys)} keys>", e)
            return 0
        self._deletes += deleted
        return deleted
