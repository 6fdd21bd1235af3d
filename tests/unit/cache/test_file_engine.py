"""
kvcache — Filesystem Engine Tests

Covers file layout, expiry, locking, groups, clearing and failed initialization.
"""

import asyncio
import fcntl
import os
import stat
import time
from pathlib import Path
from typing import Any

import pytest

from kvcache.cache.backends.file import FileEngine
from kvcache.cache.interface import EngineState
from kvcache.config import FileEngineConfig
from kvcache.errors import InvalidKeyError, UnsupportedOperationError


_real_time = time.time


def _freeze_time(monkeypatch: pytest.MonkeyPatch, offset: float) -> float:
    """Move the clock forward by offset seconds; returns the new now."""
    frozen = _real_time() + offset
    monkeypatch.setattr(time, "time", lambda: frozen)
    return frozen


async def _engine(cache_dir: Path, **options: Any) -> FileEngine:
    engine = FileEngine(FileEngineConfig(path=str(cache_dir), prefix="test_", **options))
    assert await engine.initialize() is True
    return engine


class TestFileEngine:
    """Core operations of the filesystem engine."""

    async def test_write_and_read(self, file_engine: FileEngine, sample_cache_data: dict[str, Any]) -> None:
        """Every sample value survives a write/read cycle."""
        for key, value in sample_cache_data.items():
            assert await file_engine.write(key, value) is True
            assert await file_engine.read(key) == value

    async def test_read_missing_key(self, file_engine: FileEngine) -> None:
        assert await file_engine.read("nonexistent") is None
        stats = await file_engine.get_stats()
        assert stats["misses"] == 1

    async def test_file_layout(self, file_engine: FileEngine, cache_dir: Path) -> None:
        """One file per key, named prefix + normalized key, expiry header first."""
        await file_engine.write("User List", {"a": 1}, ttl=0)

        path = cache_dir / "test_user_list"
        assert path.is_file()
        header, _, payload = path.read_bytes().partition(b"\n")
        assert float(header) == 0
        assert payload == b'{"a":1}'

    async def test_equivalent_keys_share_an_entry(self, file_engine: FileEngine) -> None:
        await file_engine.write("My Key", "first")
        assert await file_engine.read("my_key") == "first"

    async def test_overwrite(self, file_engine: FileEngine) -> None:
        await file_engine.write("key", "a much longer original value")
        await file_engine.write("key", "short")
        assert await file_engine.read("key") == "short"

    async def test_empty_values_are_rejected(self, file_engine: FileEngine) -> None:
        assert await file_engine.write("empty", "") is False
        assert await file_engine.write("empty", b"") is False
        assert await file_engine.read("empty") is None

    async def test_falsy_values_are_stored(self, file_engine: FileEngine) -> None:
        assert await file_engine.write("zero", 0) is True
        assert await file_engine.write("no", False) is True
        assert await file_engine.read("zero") == 0
        assert await file_engine.read("no") is False

    async def test_invalid_key_raises(self, file_engine: FileEngine) -> None:
        with pytest.raises(InvalidKeyError):
            await file_engine.write("   ", "value")

    async def test_unserializable_value(self, file_engine: FileEngine) -> None:
        assert await file_engine.write("bad", object()) is False

    async def test_delete(self, file_engine: FileEngine) -> None:
        await file_engine.write("key", "value")
        assert await file_engine.delete("key") is True
        assert await file_engine.read("key") is None
        assert await file_engine.delete("key") is False

    async def test_add_only_when_absent(self, file_engine: FileEngine) -> None:
        assert await file_engine.add("key", "first") is True
        assert await file_engine.add("key", "second") is False
        assert await file_engine.read("key") == "first"

    async def test_counters_are_unsupported(self, file_engine: FileEngine) -> None:
        with pytest.raises(UnsupportedOperationError):
            await file_engine.increment("counter")
        with pytest.raises(UnsupportedOperationError):
            await file_engine.decrement("counter", 5)

    async def test_corrupt_file_is_a_miss(self, file_engine: FileEngine, cache_dir: Path) -> None:
        (cache_dir / "test_broken").write_bytes(b"not a header")
        (cache_dir / "test_garbled").write_bytes(b"0\n{unterminated")

        assert await file_engine.read("broken") is None
        assert await file_engine.read("garbled") is None

    async def test_file_mode_follows_mask(self, cache_dir: Path) -> None:
        engine = await _engine(cache_dir, mask=0o600)
        await engine.write("secret", "value")
        mode = stat.S_IMODE((cache_dir / "test_secret").stat().st_mode)
        assert mode == 0o600

    async def test_multiple_operations(self, file_engine: FileEngine) -> None:
        assert await file_engine.set_multiple({"a": 1, "b": "two"}) is True
        assert await file_engine.get_multiple(["a", "b", "c"]) == {"a": 1, "b": "two"}
        assert await file_engine.get_multiple(["c"], default="fallback") == {"c": "fallback"}
        assert await file_engine.delete_multiple(["a", "b", "c"]) == 2

    async def test_stats(self, file_engine: FileEngine, cache_dir: Path) -> None:
        await file_engine.write("key", "value")
        await file_engine.read("key")
        stats = await file_engine.get_stats()
        assert stats["backend"] == "file"
        assert stats["state"] == "active"
        assert stats["hits"] == 1
        assert stats["writes"] == 1
        assert stats["entries"] == 1
        assert stats["path"] == str(cache_dir)


class TestFileEngineExpiry:
    """TTL handling."""

    async def test_entry_expires(self, file_engine: FileEngine, monkeypatch: pytest.MonkeyPatch) -> None:
        await file_engine.write("short", "value", ttl=10)
        assert await file_engine.read("short") == "value"

        _freeze_time(monkeypatch, 11)
        assert await file_engine.read("short") is None

    async def test_zero_ttl_never_expires(self, file_engine: FileEngine, monkeypatch: pytest.MonkeyPatch) -> None:
        await file_engine.write("forever", "value", ttl=0)
        _freeze_time(monkeypatch, 10 * 365 * 86400)
        assert await file_engine.read("forever") == "value"

    async def test_default_ttl_applies(self, file_engine: FileEngine, monkeypatch: pytest.MonkeyPatch) -> None:
        await file_engine.write("default", "value")
        _freeze_time(monkeypatch, 3599)
        assert await file_engine.read("default") == "value"
        _freeze_time(monkeypatch, 3601)
        assert await file_engine.read("default") is None

    async def test_relative_ttl(self, file_engine: FileEngine, monkeypatch: pytest.MonkeyPatch) -> None:
        await file_engine.write("rel", "value", ttl="+1 minute")
        _freeze_time(monkeypatch, 61)
        assert await file_engine.read("rel") is None

    async def test_sub_second_ttl_still_expires(
        self, file_engine: FileEngine, cache_dir: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        await file_engine.write("brief", "value", ttl=0.5)
        header = (cache_dir / "test_brief").read_bytes().partition(b"\n")[0]
        assert float(header) != 0

        _freeze_time(monkeypatch, 2)
        assert await file_engine.read("brief") is None

    async def test_negative_ttl_is_rejected(self, file_engine: FileEngine) -> None:
        assert await file_engine.write("key", "value", ttl=-5) is False

    async def test_entry_expires_in_real_time(self, cache_dir: Path) -> None:
        """Written with the engine default of 2 seconds, gone after 3."""
        engine = await _engine(cache_dir, duration=2)
        await engine.write("a", "x")
        assert await engine.read("a") == "x"

        await asyncio.sleep(3)
        assert await engine.read("a") is None


class TestFileEngineClear:
    """clear(), gc() and group invalidation."""

    async def test_clear_only_touches_prefixed_files(self, file_engine: FileEngine, cache_dir: Path) -> None:
        await file_engine.write("one", 1)
        await file_engine.write("two", 2)
        foreign = cache_dir / "other_key"
        foreign.write_bytes(b"0\n1")
        hidden = cache_dir / ".test_hidden"
        hidden.write_bytes(b"0\n1")

        assert await file_engine.clear() is True

        assert await file_engine.read("one") is None
        assert await file_engine.read("two") is None
        assert foreign.exists()
        assert hidden.exists()

    async def test_clear_keeps_other_prefixes(self, file_engine: FileEngine, cache_dir: Path) -> None:
        neighbour = FileEngine(FileEngineConfig(path=str(cache_dir), prefix="other_"))
        await neighbour.initialize()
        await neighbour.write("kept", "value")
        await file_engine.write("gone", "value")

        await file_engine.clear()

        assert await neighbour.read("kept") == "value"

    async def test_clear_descends_into_subdirectories(self, cache_dir: Path) -> None:
        grouped = await _engine(cache_dir, groups=["posts"])
        await grouped.write("nested", "value")
        plain = await _engine(cache_dir)

        await plain.clear()

        assert await grouped.read("nested") is None

    async def test_clear_only_expired(
        self, file_engine: FileEngine, cache_dir: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        await file_engine.write("expired", "value", ttl=1)
        await file_engine.write("forever", "value", ttl=0)
        await file_engine.write("recent", "value", ttl=1)

        now = _freeze_time(monkeypatch, 2 * 3600)
        # Touched within the default duration: skipped without being opened
        os.utime(cache_dir / "test_recent", (now, now))

        assert await file_engine.gc() is True

        assert not (cache_dir / "test_expired").exists()
        assert (cache_dir / "test_forever").exists()
        assert (cache_dir / "test_recent").exists()

    async def test_clear_only_expired_removes_corrupt_headers(
        self, file_engine: FileEngine, cache_dir: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        corrupt = cache_dir / "test_corrupt"
        corrupt.write_bytes(b"garbage\npayload")
        _freeze_time(monkeypatch, 2 * 3600)

        await file_engine.clear(only_expired=True)

        assert not corrupt.exists()

    async def test_group_directory_layout(self, cache_dir: Path) -> None:
        engine = await _engine(cache_dir, groups=["posts", "comments"])
        await engine.write("key", "value")
        assert (cache_dir / "posts" / "comments" / "test_key").is_file()
        assert await engine.groups() == ["posts", "comments"]

    async def test_clear_group(self, cache_dir: Path) -> None:
        posts = await _engine(cache_dir, groups=["posts"])
        users = await _engine(cache_dir, groups=["users"])
        await posts.write("p", "value")
        await users.write("u", "value")

        assert await posts.clear_group("posts") is True

        assert await posts.read("p") is None
        assert await users.read("u") == "value"

    async def test_clear_group_matches_any_depth(self, cache_dir: Path) -> None:
        engine = await _engine(cache_dir, groups=["archive", "posts"])
        await engine.write("deep", "value")

        await engine.clear_group("posts")

        assert await engine.read("deep") is None


class TestFileEngineOptions:
    """lock and serialize options."""

    async def test_locked_read_write(self, cache_dir: Path) -> None:
        engine = await _engine(cache_dir, lock=True)
        assert await engine.write("key", {"locked": True}) is True
        assert await engine.read("key") == {"locked": True}

    async def test_lock_wait_does_not_block_event_loop(self, cache_dir: Path) -> None:
        """A reader waiting on another process's exclusive lock leaves the loop free."""
        engine = await _engine(cache_dir, lock=True)
        await engine.write("held", "value")

        with open(cache_dir / "test_held", "rb") as fh:
            fcntl.flock(fh.fileno(), fcntl.LOCK_EX)
            try:
                pending = asyncio.create_task(engine.read("held"))
                await asyncio.sleep(0.1)
                assert not pending.done()
            finally:
                fcntl.flock(fh.fileno(), fcntl.LOCK_UN)

        assert await asyncio.wait_for(pending, timeout=5) == "value"

    async def test_concurrent_locked_writers(self, cache_dir: Path) -> None:
        engine = await _engine(cache_dir, lock=True)
        values = [f"value-{i}" * 50 for i in range(20)]

        await asyncio.gather(*(engine.write("shared", v) for v in values))

        assert await engine.read("shared") in values

    async def test_raw_storage(self, cache_dir: Path) -> None:
        engine = await _engine(cache_dir, serialize=False)
        assert await engine.write("text", "raw text") is True
        assert await engine.write("blob", b"\x00\x01") is True

        assert await engine.read("text") == b"raw text"
        assert await engine.read("blob") == b"\x00\x01"

    async def test_raw_storage_rejects_objects(self, cache_dir: Path) -> None:
        engine = await _engine(cache_dir, serialize=False)
        assert await engine.write("obj", {"a": 1}) is False


class TestFileEngineLifecycle:
    """Initialization and the failed state."""

    async def test_auto_create_makes_directory(self, tmp_path: Path) -> None:
        root = tmp_path / "nested" / "cache"
        engine = FileEngine(FileEngineConfig(path=str(root)))
        assert await engine.initialize() is True
        assert root.is_dir()

    async def test_missing_directory_without_auto_create(self, tmp_path: Path) -> None:
        engine = FileEngine(FileEngineConfig(path=str(tmp_path / "missing"), auto_create=False))

        assert await engine.initialize() is False
        assert engine.state is EngineState.FAILED
        assert engine.last_error is not None

    async def test_path_is_a_file(self, tmp_path: Path) -> None:
        target = tmp_path / "file"
        target.write_text("x")
        engine = FileEngine(FileEngineConfig(path=str(target)))

        assert await engine.initialize() is False
        assert engine.state is EngineState.FAILED

    async def test_failed_engine_returns_failure_signals(self, tmp_path: Path) -> None:
        engine = FileEngine(FileEngineConfig(path=str(tmp_path / "missing"), auto_create=False))
        await engine.initialize()

        assert await engine.write("key", "value") is False
        assert await engine.read("key") is None
        assert await engine.delete("key") is False
        assert await engine.clear() is False
        assert await engine.clear_group("g") is False
        # Stays failed
        assert await engine.initialize() is False

    async def test_uninitialized_engine_is_inert(self, cache_dir: Path) -> None:
        engine = FileEngine(FileEngineConfig(path=str(cache_dir)))
        assert await engine.write("key", "value") is False
        assert list(cache_dir.iterdir()) == []
