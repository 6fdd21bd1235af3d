"""
kvcache — Engine Contract Tests

Exercises the shared CacheEngine behaviour with a small dict-backed engine.
"""

from typing import Any

import pytest

from kvcache.cache.interface import CacheEngine, Duration, EngineState, requires_active
from kvcache.config import EngineConfig
from kvcache.errors import InitializationError


class DictEngine(CacheEngine):
    """In-process engine used to test the base class."""

    backend_name = "dict"

    def __init__(self, config: EngineConfig | None = None, fail: bool = False, reject: set[str] | None = None):
        super().__init__(config or EngineConfig(prefix="t_"))
        self.data: dict[str, Any] = {}
        self.fail = fail
        self.reject = reject or set()
        self.connects = 0

    async def _connect(self) -> None:
        self.connects += 1
        if self.fail:
            raise InitializationError(self.backend_name, "backend offline")

    async def close(self) -> None:
        pass

    @requires_active(failure=False)
    async def write(self, key: Any, value: Any, ttl: Duration | None = None) -> bool:
        if self._ttl_seconds(ttl) < 0 or key in self.reject:
            return False
        self.data[self.key(key)] = value
        return True

    @requires_active(failure=None)
    async def read(self, key: Any) -> Any | None:
        return self.data.get(self.key(key))

    @requires_active(failure=False)
    async def delete(self, key: Any) -> bool:
        return self.data.pop(self.key(key), None) is not None

    @requires_active(failure=False)
    async def clear(self, only_expired: bool = False) -> bool:
        self.data.clear()
        return True

    @requires_active(failure=None)
    async def increment(self, key: Any, offset: int = 1) -> int | None:
        k = self.key(key)
        self.data[k] = self.data.get(k, 0) + offset
        return self.data[k]

    @requires_active(failure=None)
    async def decrement(self, key: Any, offset: int = 1) -> int | None:
        return await self.increment(key, -offset)

    @requires_active(failure=False)
    async def clear_group(self, group: str) -> bool:
        return True


class TestLifecycle:
    """State machine."""

    async def test_new_engine_is_uninitialized(self) -> None:
        engine = DictEngine()
        assert engine.state is EngineState.UNINITIALIZED
        assert engine.is_active is False

    async def test_initialize_activates(self) -> None:
        engine = DictEngine()
        assert await engine.initialize() is True
        assert engine.state is EngineState.ACTIVE

    async def test_initialize_is_idempotent(self) -> None:
        engine = DictEngine()
        await engine.initialize()
        assert await engine.initialize() is True
        assert engine.connects == 1

    async def test_failed_initialization(self) -> None:
        engine = DictEngine(fail=True)
        assert await engine.initialize() is False
        assert engine.state is EngineState.FAILED
        assert isinstance(engine.last_error, InitializationError)

    async def test_failed_is_terminal(self) -> None:
        engine = DictEngine(fail=True)
        await engine.initialize()
        engine.fail = False
        assert await engine.initialize() is False
        assert engine.connects == 1

    async def test_inactive_engine_returns_failure_signals(self) -> None:
        engine = DictEngine()
        assert await engine.write("k", 1) is False
        assert await engine.read("k") is None
        assert await engine.delete("k") is False
        assert await engine.clear() is False
        assert await engine.increment("k") is None
        assert engine.data == {}


class TestDefaults:
    """Default implementations on the base class."""

    @pytest.fixture
    async def engine(self) -> DictEngine:
        engine = DictEngine(EngineConfig(prefix="t_", duration="+5 minutes", groups="posts"))
        await engine.initialize()
        return engine

    async def test_properties(self, engine: DictEngine) -> None:
        assert engine.prefix == "t_"
        assert engine.default_ttl == 300

    async def test_key_is_normalized(self, engine: DictEngine) -> None:
        assert engine.key("Some Key") == "t_some_key"

    async def test_ttl_resolution(self, engine: DictEngine) -> None:
        assert engine._ttl_seconds(None) == 300
        assert engine._ttl_seconds(0) == 0
        assert engine._ttl_seconds("+1 hour") == 3600

    async def test_add_is_check_then_write(self, engine: DictEngine) -> None:
        assert engine.atomic_add is False
        assert await engine.add("k", 1) is True
        assert await engine.add("k", 2) is False
        assert await engine.read("k") == 1

    async def test_gc_delegates_to_clear(self, engine: DictEngine) -> None:
        await engine.write("k", 1)
        assert await engine.gc() is True

    async def test_groups_returns_configured_names(self, engine: DictEngine) -> None:
        assert await engine.groups() == ["posts"]

    async def test_get_multiple(self, engine: DictEngine) -> None:
        await engine.write("a", 1)
        assert await engine.get_multiple(["a", "b"]) == {"a": 1}
        assert await engine.get_multiple(["a", "b"], default="none") == {"a": 1, "b": "none"}

    async def test_set_multiple_stops_at_first_failure(self) -> None:
        engine = DictEngine(reject={"b"})
        await engine.initialize()

        assert await engine.set_multiple({"a": 1, "b": 2, "c": 3}) is False

        # Written before the failure and kept
        assert await engine.read("a") == 1
        assert await engine.read("c") is None

    async def test_delete_multiple_counts(self, engine: DictEngine) -> None:
        await engine.set_multiple({"a": 1, "b": 2})
        assert await engine.delete_multiple(["a", "b", "missing"]) == 2

    async def test_stats(self, engine: DictEngine) -> None:
        stats = await engine.get_stats()
        assert stats["backend"] == "dict"
        assert stats["state"] == "active"
        assert stats["default_ttl"] == 300
        assert stats["hit_rate"] == 0.0
