"""Content-addressed blob cache.

Blobs are stored by the SHA-256 digest of their bytes under a two-level
sharded layout::

    <cache_dir>/ab/cd/abcd...ef

so a lookup is a single path construction.  The cache directory may be
shared by several concurrent leyline-sync processes: blobs are only ever
written once per digest, via a temp file renamed into place, so readers
never see partial content and concurrent writers of the same digest are
harmless (last rename wins, bytes are identical).

Write failures never abort a sync.  ``put`` logs the problem, counts it
in ``CacheStats.put_failures`` and returns ``False``; the caller still
holds the bytes and carries on.
"""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass, field
from pathlib import Path

from leyline_sync.file_handler import atomic_write_bytes, hash_bytes
from leyline_sync.validators import is_valid_digest

logger = logging.getLogger(__name__)


class _Missing:
    """Sentinel type returned by ``ContentCache.get`` on a miss."""

    _instance: _Missing | None = None

    def __new__(cls) -> _Missing:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "MISSING"


MISSING = _Missing()


@dataclass
class CacheStats:
    """Counters for one sync run.  Safe to update from worker threads."""

    hits: int = 0
    misses: int = 0
    puts: int = 0
    put_failures: int = 0
    _lock: threading.Lock = field(
        default_factory=threading.Lock, repr=False, compare=False
    )

    def record_hit(self) -> None:
        with self._lock:
            self.hits += 1

    def record_miss(self) -> None:
        with self._lock:
            self.misses += 1

    def record_put(self) -> None:
        with self._lock:
            self.puts += 1

    def record_put_failure(self) -> None:
        with self._lock:
            self.put_failures += 1

    @property
    def total_lookups(self) -> int:
        return self.hits + self.misses

    @property
    def hit_ratio(self) -> float:
        total = self.total_lookups
        if total == 0:
            return 0.0
        return self.hits / total

    def to_dict(self) -> dict:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "puts": self.puts,
            "put_failures": self.put_failures,
            "hit_ratio": self.hit_ratio,
        }

    def format_stats(self, directory_stats: dict | None = None) -> str:
        """Human-readable cache statistics block."""
        lines = [
            "Cache Performance:",
            f"  Cache hits: {self.hits}",
            f"  Cache misses: {self.misses}",
            f"  Cache puts: {self.puts}",
            f"  Hit ratio: {self.hit_ratio * 100:.1f}%",
        ]
        if self.put_failures:
            lines.append(f"  Put failures: {self.put_failures}")
        if directory_stats:
            lines.append("")
            lines.append("Cache Directory:")
            lines.append(f"  Location: {directory_stats['path']}")
            lines.append(f"  Size: {_format_bytes(directory_stats['size'])}")
            lines.append(f"  Files: {directory_stats['file_count']}")
        return "\n".join(lines)


def _format_bytes(size: int) -> str:
    if size == 0:
        return "0 B"
    units = ["B", "KB", "MB", "GB"]
    value = float(size)
    idx = 0
    while value >= 1024 and idx < len(units) - 1:
        value /= 1024
        idx += 1
    return f"{value:.1f} {units[idx]}"


class ContentCache:
    """Content-addressed store rooted at *cache_dir*.

    Args:
        cache_dir: Root directory of the cache.  Created lazily on the
            first ``put``.
        stats: Optional shared ``CacheStats``; a fresh one is created
            otherwise.
    """

    def __init__(
        self, cache_dir: Path, stats: CacheStats | None = None
    ) -> None:
        self.cache_dir = Path(cache_dir).expanduser()
        self._stats = stats if stats is not None else CacheStats()

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def blob_path(self, digest: str) -> Path:
        """Return the sharded on-disk location for *digest*."""
        if not is_valid_digest(digest):
            raise ValueError(f"Invalid SHA-256 digest: {digest!r}")
        return self.cache_dir / digest[0:2] / digest[2:4] / digest

    def contains(self, digest: str) -> bool:
        """Return True if *digest* is stored.  Does not touch the stats."""
        return self.blob_path(digest).is_file()

    def get(self, digest: str) -> bytes | _Missing:
        """Return the bytes stored for *digest*, or ``MISSING``.

        Stored bytes are re-hashed; a blob that no longer matches its
        digest is treated as a miss.
        """
        path = self.blob_path(digest)
        try:
            data = path.read_bytes()
        except FileNotFoundError:
            self._stats.record_miss()
            return MISSING
        except OSError as exc:
            logger.warning("Cache read failed for %s: %s", digest, exc)
            self._stats.record_miss()
            return MISSING

        if hash_bytes(data) != digest:
            logger.warning(
                "Cache blob %s is corrupt (digest mismatch), ignoring",
                path,
            )
            self._stats.record_miss()
            return MISSING

        self._stats.record_hit()
        return data

    # ------------------------------------------------------------------
    # Store
    # ------------------------------------------------------------------

    def put(self, digest: str, data: bytes) -> bool:
        """Store *data* under *digest*.

        Idempotent: a digest that is already present is left untouched.

        Returns:
            ``True`` if the blob is present in the cache afterwards,
            ``False`` if the write failed (logged, not raised).

        Raises:
            ValueError: If *data* does not hash to *digest*.
        """
        if hash_bytes(data) != digest:
            raise ValueError(
                f"Refusing to cache bytes under wrong digest {digest}"
            )

        path = self.blob_path(digest)
        if path.is_file():
            return True

        try:
            atomic_write_bytes(path, data)
        except OSError as exc:
            logger.warning(
                "Cache write failed for %s (continuing without cache): %s",
                digest,
                exc,
            )
            self._stats.record_put_failure()
            return False

        self._stats.record_put()
        return True

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def stats(self) -> CacheStats:
        return self._stats

    def directory_stats(self) -> dict:
        """Return location, total size and blob count of the cache."""
        size = 0
        count = 0
        if self.cache_dir.is_dir():
            for shard in self.cache_dir.glob("??/??"):
                for blob in shard.iterdir():
                    if blob.is_file() and is_valid_digest(blob.name):
                        size += blob.stat().st_size
                        count += 1
        return {
            "path": str(self.cache_dir),
            "size": size,
            "file_count": count,
        }

    def health(self) -> dict:
        """Report whether the cache directory is usable.

        Returns:
            Dict with ``healthy`` flag and a list of ``issues``.
        """
        issues: list[dict] = []
        if self.cache_dir.exists():
            if not self.cache_dir.is_dir():
                issues.append(
                    {"type": "not_a_directory", "path": str(self.cache_dir)}
                )
            elif not os.access(self.cache_dir, os.W_OK):
                issues.append(
                    {"type": "not_writable", "path": str(self.cache_dir)}
                )
        else:
            parent = self.cache_dir.parent
            while not parent.exists() and parent != parent.parent:
                parent = parent.parent
            if not os.access(parent, os.W_OK):
                issues.append(
                    {"type": "cannot_create", "path": str(self.cache_dir)}
                )
        return {"healthy": not issues, "issues": issues}
