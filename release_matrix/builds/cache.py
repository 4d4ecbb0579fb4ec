"""Content-addressed compiler output cache.

Entries live under ``<cache_dir>/binaries/<hash>/`` and hold the binaries
produced for one cache key plus an ``entry.json`` describing the inputs.
Entries are written into a private temporary directory and published with
a single rename, so concurrent variants and architectures can share the
namespace. Any cache failure is logged and treated as a miss.
"""

from __future__ import annotations

import fcntl
import json
import logging
import os
import shutil
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

ENTRY_METADATA = "entry.json"


@contextmanager
def cache_lock(lock_dir: Path, cache_key: str) -> Iterator[None]:
    """Hold an exclusive file lock for a cache key.

    Args:
        lock_dir: Directory for lock files.
        cache_key: Cache key to lock on.

    Yields:
        None when lock is acquired.
    """
    lock_dir.mkdir(parents=True, exist_ok=True)

    safe_key = cache_key.replace(":", "_").replace("/", "_")[:64]
    lock_file = lock_dir / f"cache_{safe_key}.lock"

    fd = os.open(str(lock_file), os.O_RDWR | os.O_CREAT, 0o600)
    try:
        fcntl.flock(fd, fcntl.LOCK_EX)
        logger.debug("Cache lock acquired for key: %s", cache_key[:32])
        yield
    finally:
        fcntl.flock(fd, fcntl.LOCK_UN)
        os.close(fd)


def _copy_atomic(src: Path, dest: Path) -> None:
    """Copy a file so readers never observe a partial destination."""
    dest.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=dest.parent, prefix=f".{dest.name}.")
    os.close(fd)
    tmp_path = Path(tmp_name)
    try:
        shutil.copy2(src, tmp_path)
        os.replace(tmp_path, dest)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise


class CompilerCache:
    """Cache of compiled binaries keyed by compile inputs."""

    def __init__(self, root: Path) -> None:
        self.root = root

    @property
    def entries_dir(self) -> Path:
        return self.root / "binaries"

    @property
    def lock_dir(self) -> Path:
        return self.root / "locks"

    def entry_dir(self, cache_key: str) -> Path:
        """Directory holding the entry for ``cache_key``."""
        return self.entries_dir / cache_key.split(":", 1)[-1]

    def lookup(self, cache_key: str, binary_names: list[str]) -> dict[str, Path] | None:
        """Find cached binaries for a key.

        Returns:
            Mapping of binary name to cached file, or None on a miss.
        """
        entry = self.entry_dir(cache_key)
        try:
            if not (entry / ENTRY_METADATA).is_file():
                return None
            files = {name: entry / name for name in binary_names}
            if not all(path.is_file() for path in files.values()):
                logger.warning("Incomplete cache entry ignored: %s", entry)
                return None
        except OSError as e:
            logger.warning("Compiler cache lookup failed: %s", e)
            return None
        return files

    def restore(self, cache_key: str, binary_names: list[str], dest_dir: Path) -> bool:
        """Copy cached binaries into ``dest_dir``.

        Returns:
            True on a hit, False on a miss or restore failure.
        """
        files = self.lookup(cache_key, binary_names)
        if files is None:
            logger.debug("Compiler cache miss: %s", cache_key[:32])
            return False
        try:
            for name, cached in files.items():
                _copy_atomic(cached, dest_dir / name)
        except OSError as e:
            logger.warning("Compiler cache restore failed, rebuilding: %s", e)
            return False
        logger.info("Compiler cache hit: %s", cache_key[:32])
        return True

    def store(
        self,
        cache_key: str,
        files: dict[str, Path],
        metadata: dict[str, Any] | None = None,
    ) -> bool:
        """Publish binaries under ``cache_key``.

        An entry that already exists is left untouched.

        Returns:
            True if the entry exists after the call.
        """
        entry = self.entry_dir(cache_key)
        try:
            with cache_lock(self.lock_dir, cache_key):
                if (entry / ENTRY_METADATA).is_file():
                    return True
                self.entries_dir.mkdir(parents=True, exist_ok=True)
                staging = Path(tempfile.mkdtemp(dir=self.entries_dir, prefix=".tmp-"))
                try:
                    for name, src in files.items():
                        shutil.copy2(src, staging / name)
                    with (staging / ENTRY_METADATA).open("w", encoding="utf-8") as f:
                        json.dump(
                            {"cache_key": cache_key, **(metadata or {})},
                            f,
                            indent=2,
                            sort_keys=True,
                        )
                    if entry.exists():
                        shutil.rmtree(entry)
                    os.rename(staging, entry)
                finally:
                    if staging.exists():
                        shutil.rmtree(staging, ignore_errors=True)
        except OSError as e:
            logger.warning("Compiler cache store failed: %s", e)
            return False
        logger.debug("Stored compiler cache entry: %s", cache_key[:32])
        return True


__all__ = ["ENTRY_METADATA", "CompilerCache", "cache_lock"]
