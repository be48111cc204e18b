"""Three-way classification of local, baseline and remote state.

For every path in the union of the local tree, the baseline and the remote
manifest, three digests are compared: ``L`` (on disk), ``B`` (baseline)
and ``R`` (remote), each possibly absent.  An absent value is a distinct
value: it equals only another absent value.

========================  =====================
Condition                 Classification
========================  =====================
R absent, B present       REMOVED
B absent, R present       NEW
B, R absent (L present)   UNTRACKED
L == B == R               UNMODIFIED
L == B, R != B            REMOTE_UPDATED
L != B, R == B            LOCALLY_MODIFIED
L != B, R != B, L != R    CONFLICTED
L != B, R != B, L == R    UNMODIFIED
========================  =====================

The last row covers a local edit that happens to match the new remote
bytes exactly; the path is treated as already synced and its baseline is
advanced by the planner.

Classification operates at whole-file granularity.  No blob bytes are
needed: digests from the baseline and the remote manifest suffice.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable, Mapping
from pathlib import Path

from leyline_sync.file_handler import hash_file
from leyline_sync.sync.mapper import CategoryMapper
from leyline_sync.sync.models import (
    BaselineManifest,
    Classification,
    ManifestEntry,
    PathClassification,
)

logger = logging.getLogger(__name__)

# Digest placeholder for local files that exist but cannot be read.  It
# never equals a real digest, so such files are never considered clean.
UNREADABLE = "unreadable"


def classify_path(
    local: str | None, baseline: str | None, remote: str | None
) -> Classification:
    """Classify one path from its three digests.

    Raises:
        ValueError: If all three digests are absent.
    """
    if local is None and baseline is None and remote is None:
        raise ValueError("Cannot classify a path absent everywhere")

    if remote is None and baseline is not None:
        return Classification.REMOVED
    if baseline is None and remote is not None:
        return Classification.NEW
    if baseline is None and remote is None:
        return Classification.UNTRACKED

    if local == baseline:
        if remote == baseline:
            return Classification.UNMODIFIED
        return Classification.REMOTE_UPDATED

    if remote == baseline:
        return Classification.LOCALLY_MODIFIED
    if local == remote:
        return Classification.UNMODIFIED
    return Classification.CONFLICTED


class DiffEngine:
    """Scan the local tree and classify paths.

    Args:
        mapper: Used to attribute a category to paths that are neither in
            the remote manifest nor in the baseline.
    """

    def __init__(self, mapper: CategoryMapper | None = None) -> None:
        self.mapper = mapper or CategoryMapper()

    # ------------------------------------------------------------------
    # Local scan
    # ------------------------------------------------------------------

    def scan_local(self, content_root: Path) -> dict[str, str]:
        """Hash every regular, non-hidden file under *content_root*.

        Returns:
            ``{relative_posix_path: digest}``.  Empty if the root does not
            exist yet (first sync).
        """
        tree: dict[str, str] = {}
        if not content_root.is_dir():
            return tree

        for dirpath, dirnames, filenames in os.walk(content_root):
            dirnames[:] = sorted(d for d in dirnames if not d.startswith("."))
            for filename in sorted(filenames):
                if filename.startswith("."):
                    continue
                full = Path(dirpath) / filename
                if full.is_symlink() or not full.is_file():
                    continue
                rel = full.relative_to(content_root).as_posix()
                try:
                    tree[rel] = hash_file(full)
                except OSError as exc:
                    logger.warning("Cannot read %s: %s", full, exc)
                    tree[rel] = UNREADABLE
        logger.debug("Scanned %d local files under %s", len(tree), content_root)
        return tree

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------

    def classify(
        self,
        local_tree: Mapping[str, str],
        baseline: BaselineManifest,
        remote: Iterable[ManifestEntry] | Mapping[str, ManifestEntry],
    ) -> dict[str, PathClassification]:
        """Classify every path seen locally, in the baseline or remotely.

        Args:
            local_tree: ``{path: digest}`` from ``scan_local``.
            baseline: Loaded baseline manifest.
            remote: Remote manifest entries (already category-filtered).

        Returns:
            ``{path: PathClassification}`` sorted by path.
        """
        remote_by_path = (
            dict(remote)
            if isinstance(remote, Mapping)
            else {e.path: e for e in remote}
        )

        paths = set(local_tree) | set(baseline.entries) | set(remote_by_path)
        result: dict[str, PathClassification] = {}
        for path in sorted(paths):
            local_digest = local_tree.get(path)
            base_entry = baseline.get(path)
            remote_entry = remote_by_path.get(path)
            baseline_digest = base_entry.digest if base_entry else None
            remote_digest = remote_entry.digest if remote_entry else None

            if remote_entry is not None:
                category = remote_entry.category
            elif base_entry is not None and base_entry.category:
                category = base_entry.category
            else:
                category = self.mapper.category_for(path)

            result[path] = PathClassification(
                path=path,
                classification=classify_path(
                    local_digest, baseline_digest, remote_digest
                ),
                local_digest=local_digest,
                baseline_digest=baseline_digest,
                remote_digest=remote_digest,
                category=category,
            )
        return result
