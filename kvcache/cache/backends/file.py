"""
kvcache — Filesystem Cache Backend

Stores each key as one file:

    <path>/[<group>/...]/<prefix><normalized key>

File content is a header line with the expiry timestamp (0 = never) followed
by the payload:

    b"1735689600.25\n" + payload

With serialize=True the payload is the codec encoding of the value. With
serialize=False the payload is the raw value (str stored as UTF-8, bytes
as-is) and read() returns bytes.

With lock=True every read holds a shared flock and every write an exclusive
flock for the whole truncate-and-rewrite. Without locking, concurrent
writers may interleave and corrupt an entry; corrupt entries read as misses.

Files cannot be incremented atomically, so increment()/decrement() raise
UnsupportedOperationError. add() is the racy check-then-write default.

All filesystem calls, including a flock that may wait on another process,
run in worker threads via asyncio.to_thread so the event loop never blocks.
"""

import asyncio
import logging
import os
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import IO, Any

from ...config.schemas import FileEngineConfig
from ...errors import CorruptEntryError, InitializationError, UnsupportedOperationError
from .. import codec
from ..interface import CacheEngine, Duration, requires_active
from ..keys import group_path

try:
    import fcntl
except ImportError:  # pragma: no cover - non-POSIX platforms
    fcntl = None  # type: ignore[assignment]

logger = logging.getLogger(__name__)

_VCS_DIRS = frozenset({".git", ".svn", ".hg", "CVS"})


class FileEngine(CacheEngine):
    """
    Filesystem cache engine.

    Notes:
    - Group sub-directories are created lazily on first write.
    - clear() walks the tree depth-first and only touches prefixed files.
    - Writing "" or b"" is rejected because it cannot be told apart from absent.
    """

    backend_name = "file"
    atomic_add = False

    def __init__(self, config: FileEngineConfig | None = None) -> None:
        """
        Initialize filesystem cache engine.

        Args:
            config: Engine configuration (defaults to FileEngineConfig())
        """
        super().__init__(config or FileEngineConfig())
        self.config: FileEngineConfig
        self.root = Path(self.config.path)

    # ------------ Lifecycle ------------

    async def _connect(self) -> None:
        if self.config.lock and fcntl is None:
            raise InitializationError(self.backend_name, "file locking requires fcntl (POSIX only)")
        await asyncio.to_thread(self._check_root)

    def _check_root(self) -> None:
        if self.config.auto_create:
            try:
                self.root.mkdir(mode=0o775, parents=True, exist_ok=True)
            except OSError as e:
                raise InitializationError(
                    self.backend_name,
                    f"cannot create cache directory {self.root}",
                    details={"path": str(self.root), "error": str(e)},
                ) from e

        if not self.root.is_dir():
            raise InitializationError(
                self.backend_name, f"{self.root} is not a directory", details={"path": str(self.root)}
            )
        if not os.access(self.root, os.W_OK):
            raise InitializationError(
                self.backend_name, f"{self.root} is not writable", details={"path": str(self.root)}
            )

    async def close(self) -> None:
        """Nothing is held open between calls."""
        logger.debug(f"Closed file cache engine at {self.root}")

    # ------------ Helpers ------------

    def _entry_dir(self) -> Path:
        return self.root / group_path(list(self.config.groups))

    def _entry_path(self, key: Any) -> Path:
        return self._entry_dir() / self.key(key)

    @contextmanager
    def _locked(self, fh: IO[bytes], exclusive: bool) -> Iterator[None]:
        """Hold a flock on fh for the duration of the block when locking is enabled."""
        if not self.config.lock:
            yield
            return
        fcntl.flock(fh.fileno(), fcntl.LOCK_EX if exclusive else fcntl.LOCK_SH)
        try:
            yield
        finally:
            fcntl.flock(fh.fileno(), fcntl.LOCK_UN)

    def _pack(self, value: Any, expires: float) -> bytes:
        if self.config.serialize:
            payload = codec.encode(value)
        elif isinstance(value, str):
            payload = value.encode("utf-8")
        elif isinstance(value, bytes | bytearray):
            payload = bytes(value)
        else:
            raise TypeError(f"serialize=False only stores str or bytes, got {type(value).__name__}")
        return f"{expires!r}\n".encode("ascii") + payload

    @staticmethod
    def _parse_header(header: bytes) -> float:
        try:
            return float(header)
        except ValueError as e:
            raise CorruptEntryError(
                "Invalid expiry header in cache file", details={"header": header[:32].decode("ascii", "replace")}
            ) from e

    def _unpack(self, data: bytes) -> tuple[float, bytes]:
        header, sep, payload = data.partition(b"\n")
        if not sep:
            raise CorruptEntryError("Cache file has no expiry header", details={"size": len(data)})
        return self._parse_header(header), payload

    @staticmethod
    def _is_expired(expires: float, now: float) -> bool:
        return expires != 0 and now >= expires

    def _unlink(self, path: str | Path) -> bool:
        try:
            os.unlink(path)
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.error(
                f"Failed to remove cache file {path}: {e}",
                extra={"path": str(path), "error": str(e)},
                exc_info=True,
            )
            return False
        self._deletes += 1
        return True

    def _walk(self, directory: Path) -> Iterator[os.DirEntry[str]]:
        """
        Depth-first walk yielding every cache file below directory once.

        Hidden entries and version control directories are skipped. Each
        directory is listed fully before its files are yielded so that
        deleting them during iteration is safe.
        """
        stack = [str(directory)]
        while stack:
            current = stack.pop()
            try:
                with os.scandir(current) as it:
                    entries = list(it)
            except OSError:
                continue
            for entry in entries:
                if entry.name.startswith(".") or entry.name in _VCS_DIRS:
                    continue
                if entry.is_dir(follow_symlinks=False):
                    stack.append(entry.path)
                elif entry.is_file(follow_symlinks=False):
                    yield entry

    def _read_expiry(self, path: str) -> float | None:
        """Expiry stamp from a cache file header, None if the file vanished."""
        try:
            with open(path, "rb") as fh:
                with self._locked(fh, exclusive=False):
                    header = fh.readline()
        except FileNotFoundError:
            return None
        try:
            return self._parse_header(header.rstrip(b"\n"))
        except CorruptEntryError:
            # garbage; collect it
            return -1.0

    # ------------ Blocking file I/O (run in worker threads) ------------

    def _write_file(self, key: Any, path: Path, contents: bytes) -> bool:
        try:
            path.parent.mkdir(mode=0o775, parents=True, exist_ok=True)
            created = not path.exists()
            fd = os.open(path, os.O_RDWR | os.O_CREAT, self.config.mask)
            with os.fdopen(fd, "r+b") as fh:
                with self._locked(fh, exclusive=True):
                    fh.seek(0)
                    fh.truncate()
                    fh.write(contents)
                    fh.flush()
            if created:
                # os.open honours the umask; apply the configured mode exactly
                os.chmod(path, self.config.mask)
        except OSError as e:
            logger.error(
                f"Failed to write cache file for key '{key}': {e}",
                extra={"key": key, "path": str(path), "error": str(e)},
                exc_info=True,
            )
            return False

        self._writes += 1
        return True

    def _read_file(self, key: Any, path: Path) -> bytes | None:
        try:
            with open(path, "rb") as fh:
                with self._locked(fh, exclusive=False):
                    return fh.read()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.error(
                f"Failed to read cache file for key '{key}': {e}",
                extra={"key": key, "path": str(path), "error": str(e)},
                exc_info=True,
            )
            return None

    def _clear_files(self, only_expired: bool) -> int:
        now = time.time()
        threshold = now - self.default_ttl
        removed = 0

        for entry in self._walk(self.root):
            if not entry.name.startswith(self.prefix):
                continue
            if only_expired:
                try:
                    if entry.stat().st_mtime > threshold:
                        continue
                except FileNotFoundError:
                    continue
                expires = self._read_expiry(entry.path)
                if expires is None or not self._is_expired(expires, now):
                    continue
            if self._unlink(entry.path):
                removed += 1
        return removed

    def _clear_group_files(self, group: str) -> int:
        removed = 0
        for entry in self._walk(self.root):
            if not entry.name.startswith(self.prefix):
                continue
            segments = Path(entry.path).relative_to(self.root).parts[:-1]
            if group in segments and self._unlink(entry.path):
                removed += 1
        return removed

    def _count_entries(self) -> int:
        return sum(1 for entry in self._walk(self.root) if entry.name.startswith(self.prefix))

    # ------------ Core Interface ------------

    @requires_active(failure=False)
    async def write(self, key: Any, value: Any, ttl: Duration | None = None) -> bool:
        """Write value to the key's file, replacing previous contents."""
        if isinstance(value, str | bytes) and len(value) == 0:
            logger.warning("Refusing to cache an empty value", extra={"key": key, "backend": self.backend_name})
            return False

        path = self._entry_path(key)
        seconds = self._ttl_seconds(ttl)
        if seconds < 0:
            return False
        expires = 0.0 if seconds == 0 else time.time() + seconds

        try:
            contents = self._pack(value, expires)
        except TypeError as e:
            logger.error(
                f"Failed to serialize value for key '{key}': {e}",
                extra={"key": key, "value_type": type(value).__name__, "error": str(e)},
            )
            return False

        return await asyncio.to_thread(self._write_file, key, path, contents)

    @requires_active(failure=None)
    async def read(self, key: Any) -> Any | None:
        """Read the key's file; expired and corrupt entries are misses."""
        path = self._entry_path(key)
        data = await asyncio.to_thread(self._read_file, key, path)
        if data is None:
            self._misses += 1
            return None

        try:
            expires, payload = self._unpack(data)
            if self._is_expired(expires, time.time()):
                self._misses += 1
                return None
            value = codec.decode(payload) if self.config.serialize else payload
        except CorruptEntryError as e:
            logger.warning(
                f"Corrupt cache entry for key '{key}', treating as miss",
                extra={"key": key, "path": str(path), **e.details},
            )
            self._misses += 1
            return None

        self._hits += 1
        return value

    @requires_active(failure=False)
    async def delete(self, key: Any) -> bool:
        """Remove the key's file."""
        return await asyncio.to_thread(self._unlink, self._entry_path(key))

    @requires_active(failure=False)
    async def clear(self, only_expired: bool = False) -> bool:
        """
        Remove prefixed cache files from the whole tree.

        With only_expired=True, files modified after now - duration are
        skipped without being opened; older files are removed only if their
        expiry stamp has passed.
        """
        removed = await asyncio.to_thread(self._clear_files, only_expired)
        logger.info(
            f"Cleared {removed} cache file(s) from {self.root}",
            extra={"path": str(self.root), "only_expired": only_expired, "removed": removed},
        )
        return True

    @requires_active(failure=False)
    async def clear_group(self, group: str) -> bool:
        """Remove every prefixed file stored below a directory named after the group."""
        removed = await asyncio.to_thread(self._clear_group_files, group)
        logger.info(
            f"Cleared {removed} cache file(s) in group '{group}'",
            extra={"path": str(self.root), "group": group, "removed": removed},
        )
        return True

    async def increment(self, key: Any, offset: int = 1) -> int | None:
        raise UnsupportedOperationError(self.backend_name, "increment", "files cannot be atomically incremented")

    async def decrement(self, key: Any, offset: int = 1) -> int | None:
        raise UnsupportedOperationError(self.backend_name, "decrement", "files cannot be atomically decremented")

    # ------------ Stats ------------

    async def _backend_stats(self) -> dict[str, Any]:
        return {
            "path": str(self.root),
            "lock": self.config.lock,
            "serialize": self.config.serialize,
            "entries": await asyncio.to_thread(self._count_entries),
        }
