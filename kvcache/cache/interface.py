"""
kvcache — Cache Engine Interface

Defines the abstract contract that all cache engines must implement.

Lifecycle:
    UNINITIALIZED --initialize() ok--> ACTIVE
    UNINITIALIZED --initialize() fails--> FAILED

There is no way back from FAILED; construct a new engine instead. Every
operation on an engine that is not ACTIVE returns the failure signal of its
return type without touching the backend.
"""

import functools
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Iterable, Mapping
from datetime import timedelta
from enum import Enum
from typing import Any, TypeVar

from ..config.schemas import EngineConfig
from ..durations import to_seconds
from ..errors import InitializationError
from .keys import normalize_key

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Awaitable[Any]])

Duration = int | float | str | timedelta


class EngineState(str, Enum):
    """Engine lifecycle state."""

    UNINITIALIZED = "uninitialized"
    ACTIVE = "active"
    FAILED = "failed"


def requires_active(failure: Any = None) -> Callable[[F], F]:
    """
    Decorator that short-circuits an engine operation unless the engine is ACTIVE.

    Args:
        failure: Value returned instead of calling the operation

    Example:
        >>> @requires_active(failure=False)
        ... async def write(self, key, value, ttl=None): ...
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        async def wrapper(self: "CacheEngine", *args: Any, **kwargs: Any) -> Any:
            if self.state is not EngineState.ACTIVE:
                logger.warning(
                    f"Ignoring {func.__name__}() on {self.backend_name} engine in state '{self.state.value}'",
                    extra={"operation": func.__name__, "backend": self.backend_name, "state": self.state.value},
                )
                return failure() if callable(failure) else failure
            return await func(self, *args, **kwargs)

        return wrapper  # type: ignore[return-value]

    return decorator


class CacheEngine(ABC):
    """
    Abstract base class for cache engines.

    Subclasses set `backend_name` and `atomic_add`. An engine that leaves
    `atomic_add = False` inherits the check-then-write `add()`: two callers
    may both see a miss and both write, the last write wins.
    """

    backend_name: str = "abstract"
    atomic_add: bool = False

    def __init__(self, config: EngineConfig) -> None:
        self.config = config
        self.state = EngineState.UNINITIALIZED
        self.last_error: InitializationError | None = None

        self._hits = 0
        self._misses = 0
        self._writes = 0
        self._deletes = 0

    # ------------ Lifecycle ------------

    @property
    def prefix(self) -> str:
        return self.config.prefix

    @property
    def default_ttl(self) -> int:
        return self.config.duration

    @property
    def is_active(self) -> bool:
        return self.state is EngineState.ACTIVE

    async def initialize(self) -> bool:
        """
        Bring the engine up.

        Returns:
            True if the engine is ACTIVE, False if it is (or just became) FAILED
        """
        if self.state is EngineState.ACTIVE:
            return True
        if self.state is EngineState.FAILED:
            return False

        try:
            await self._connect()
        except InitializationError as e:
            self.state = EngineState.FAILED
            self.last_error = e
            logger.error(
                f"Cache engine initialization failed: {e.message}",
                extra={"backend": self.backend_name, "prefix": self.prefix, **e.details},
            )
            return False

        self.state = EngineState.ACTIVE
        logger.info(
            f"Initialized {self.backend_name} cache engine (prefix '{self.prefix}')",
            extra={"backend": self.backend_name, "prefix": self.prefix},
        )
        return True

    @abstractmethod
    async def _connect(self) -> None:
        """
        Verify or open the backend.

        Raises:
            InitializationError: If the backend is unreachable or unusable
        """

    @abstractmethod
    async def close(self) -> None:
        """Release backend resources."""

    # ------------ Helpers ------------

    def key(self, raw_key: Any) -> str:
        """Normalized, prefixed key for a raw identifier."""
        return normalize_key(raw_key, self.prefix)

    def _ttl_seconds(self, ttl: Duration | None) -> int:
        """Resolve a TTL argument: None -> configured default."""
        if ttl is None:
            return self.default_ttl
        return to_seconds(ttl)

    # ------------ Core operations ------------

    @abstractmethod
    async def write(self, key: Any, value: Any, ttl: Duration | None = None) -> bool:
        """
        Store a value.

        Args:
            key: Raw cache key
            value: Value to cache
            ttl: Seconds, timedelta or relative expression (None = default, 0 = no expiry)

        Returns:
            True if stored successfully, False otherwise
        """

    @abstractmethod
    async def read(self, key: Any) -> Any | None:
        """
        Retrieve a value.

        Returns:
            The cached value, or None if absent, expired or unreadable
        """

    @abstractmethod
    async def delete(self, key: Any) -> bool:
        """
        Delete a key.

        Returns:
            True if the key was deleted, False if it didn't exist or couldn't be removed
        """

    @abstractmethod
    async def clear(self, only_expired: bool = False) -> bool:
        """
        Delete every key under this engine's prefix.

        Args:
            only_expired: Only remove entries whose expiry has passed
        """

    @abstractmethod
    async def increment(self, key: Any, offset: int = 1) -> int | None:
        """
        Atomically add to an integer entry.

        Returns:
            The new value, or None on failure

        Raises:
            UnsupportedOperationError: If the engine has no atomic counters
        """

    @abstractmethod
    async def decrement(self, key: Any, offset: int = 1) -> int | None:
        """Atomically subtract from an integer entry; see increment()."""

    @abstractmethod
    async def clear_group(self, group: str) -> bool:
        """Invalidate every entry tagged with a group."""

    async def gc(self) -> bool:
        """Garbage collection: permanently remove expired entries."""
        return await self.clear(only_expired=True)

    async def add(self, key: Any, value: Any, ttl: Duration | None = None) -> bool:
        """
        Store a value only if the key is currently a miss.

        Default implementation is check-then-write and is NOT atomic.
        Engines with a native set-if-absent override this and set atomic_add.
        """
        if await self.read(key) is None:
            return await self.write(key, value, ttl)
        return False

    async def groups(self) -> list[str]:
        """Group labels used to compose grouped keys."""
        return list(self.config.groups)

    # ------------ Bulk operations ------------

    async def get_multiple(self, keys: Iterable[Any], default: Any = None) -> dict[Any, Any]:
        """
        Retrieve multiple values.

        Default implementation calls read() for each key.

        Args:
            keys: Raw cache keys
            default: Value for misses; misses are omitted when None

        Returns:
            Dictionary mapping raw keys to values
        """
        result: dict[Any, Any] = {}
        for key in keys:
            value = await self.read(key)
            if value is None:
                if default is not None:
                    result[key] = default
                continue
            result[key] = value
        return result

    async def set_multiple(self, items: Mapping[Any, Any], ttl: Duration | None = None) -> bool:
        """
        Store multiple values with the same TTL.

        Not atomic: stops at the first failed write and returns False; keys
        written before the failure are kept.
        """
        for key, value in items.items():
            if not await self.write(key, value, ttl):
                logger.warning(
                    "Partial set_multiple failure",
                    extra={"backend": self.backend_name, "key": key, "total": len(items)},
                )
                return False
        return True

    async def delete_multiple(self, keys: Iterable[Any]) -> int:
        """
        Delete multiple keys.

        Returns:
            Number of keys actually deleted
        """
        count = 0
        for key in keys:
            if await self.delete(key):
                count += 1
        return count

    # ------------ Stats ------------

    async def get_stats(self) -> dict[str, Any]:
        """Engine counters plus backend-specific details."""
        total_requests = self._hits + self._misses
        stats: dict[str, Any] = {
            "backend": self.backend_name,
            "state": self.state.value,
            "prefix": self.prefix,
            "default_ttl": self.default_ttl,
            "atomic_add": self.atomic_add,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": round((self._hits / total_requests) * 100, 2) if total_requests else 0.0,
            "writes": self._writes,
            "deletes": self._deletes,
        }
        if self.is_active:
            stats.update(await self._backend_stats())
        return stats

    async def _backend_stats(self) -> dict[str, Any]:
        return {}
