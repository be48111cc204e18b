"""Contracts for the remote side of a sync.

The engine never talks to git or HTTP directly.  It consumes two narrow
capabilities:

- ``RemoteManifestResolver``: which files exist at a source reference,
  with their digests and categories.
- ``BlobFetcher``: the bytes of one file at a source reference, used only
  on a cache miss.

Both are satisfied by the adapters in ``leyline_sync.core``.  The
``create_source()`` factory maps a configured source kind to an adapter
instance.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol

from leyline_sync.sync.mapper import CategoryMapper
from leyline_sync.sync.models import ManifestEntry

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


class RemoteManifestResolver(Protocol):
    """Describe the remote content at a source reference."""

    def resolve(
        self, source_ref: str, categories: list[str]
    ) -> list[ManifestEntry]:
        """Return the files offered for *categories* at *source_ref*.

        Must be deterministic for an immutable reference.

        Raises:
            UnresolvableRef: If the reference does not exist.
            UnknownCategoryError: If a category is not offered.
        """
        ...  # pragma: no cover


class BlobFetcher(Protocol):
    """Fetch the bytes of one file."""

    def fetch(self, source_ref: str, path: str) -> bytes:
        """Return the bytes of *path* at *source_ref*.

        Raises:
            FetchError: On network or VCS failure.
        """
        ...  # pragma: no cover


class RemoteSource(RemoteManifestResolver, BlobFetcher, Protocol):
    """An adapter that both resolves manifests and fetches blobs."""

    def categories(self, source_ref: str) -> list[str]:
        """Return every category offered at *source_ref*, sorted.

        Raises:
            UnresolvableRef: If the reference does not exist.
        """
        ...  # pragma: no cover


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

SOURCE_KINDS = ("git", "http")


def create_source(
    kind: str,
    url: str,
    *,
    cache_dir: Path,
    mapper: CategoryMapper | None = None,
    timeout: float = 60.0,
) -> RemoteSource:
    """Factory: create a source adapter from a source kind string.

    Args:
        kind: One of ``"git"`` or ``"http"``.
        url: Repository URL (git) or content API base URL (http).
        cache_dir: Cache root; the git adapter keeps its mirror below it.
        mapper: Category mapper for the upstream layout.
        timeout: Per-operation timeout in seconds.

    Raises:
        ValueError: If *kind* is not recognised.
    """
    if kind not in SOURCE_KINDS:
        raise ValueError(
            f"Unknown source kind: {kind!r}. "
            f"Valid kinds: {', '.join(SOURCE_KINDS)}"
        )
    logger.debug("Using %s source at %s", kind, url)
    # Adapters import the sync package; import them lazily.
    if kind == "git":
        from leyline_sync.core.git_source import GitSource

        return GitSource(
            url,
            mirror_root=Path(cache_dir) / "mirrors",
            mapper=mapper,
            timeout=timeout,
        )
    from leyline_sync.core.http_source import HttpSource

    return HttpSource(url, timeout=timeout)
