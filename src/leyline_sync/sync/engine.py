"""Sync engine that orchestrates a full consumer-side sync run.

The ``SyncEngine`` ties together the baseline store, the remote source,
the diff engine, the planner and the executor.  A run:

1. Validates the target directory and takes the per-target lock.
2. Loads the baseline manifest (a corrupt one aborts the run).
3. Resolves the remote manifest for the source reference and categories.
4. Filters the manifest to the selected categories and exclude globs.
5. Scans and hashes the local content tree.
6. Classifies every path (local vs. baseline vs. remote).
7. Plans actions honoring ``force``.
8. Previews (``dry_run``) or executes the plan.
9. Saves the baseline once, atomically, if anything in it changed.

Fatal errors (``ConfigurationError``, ``ResolutionError``) propagate
before any write.  Per-path failures are collected in the ``SyncReport``.

The engine also offers the read-only ``status()``, ``diff()`` and
``available_categories()`` views and the conflict-gated ``update()``.
"""

from __future__ import annotations

import contextlib
import difflib
import logging
from pathlib import Path

from leyline_sync.cache import MISSING, ContentCache
from leyline_sync.errors import (
    ConfigurationError,
    FetchError,
    LeylineSyncError,
)
from leyline_sync.file_handler import decode_text, hash_bytes, resolve_under
from leyline_sync.sync.baseline import BaselineStore
from leyline_sync.sync.diff import DiffEngine
from leyline_sync.sync.executor import SyncExecutor
from leyline_sync.sync.mapper import CategoryMapper, normalize_categories
from leyline_sync.sync.models import (
    BaselineManifest,
    Classification,
    FileDiff,
    ManifestEntry,
    PathClassification,
    StatusReport,
    SyncReport,
)
from leyline_sync.sync.planner import SyncPlanner
from leyline_sync.sync.resolver import RemoteSource
from leyline_sync.validators import validate_category_name, validate_source_ref

logger = logging.getLogger(__name__)

DEFAULT_DOCS_PATH = "docs/leyline"


class SyncEngine:
    """Synchronise one target directory against one source.

    Args:
        target_dir: Consumer directory (holds ``.leyline/``).
        source: Remote manifest resolver and blob fetcher.
        source_ref: Branch, tag or commit to sync from.
        categories: Selected categories; ``core`` is always added.
        docs_path: Content root relative to *target_dir*.
        cache: Content cache; ``None`` disables caching.
        mapper: Category mapper (exclude globs, extensions).
        max_workers: Fetch/write pool size.
        fetch_timeout: Seconds to wait for each path's fetch and write.
    """

    def __init__(
        self,
        target_dir: Path,
        source: RemoteSource,
        source_ref: str,
        categories: list[str] | None = None,
        *,
        docs_path: str = DEFAULT_DOCS_PATH,
        cache: ContentCache | None = None,
        mapper: CategoryMapper | None = None,
        max_workers: int = 4,
        fetch_timeout: float | None = None,
    ) -> None:
        self.target_dir = Path(target_dir)
        self.content_root = self.target_dir / docs_path
        self.source = source
        self.source_ref = source_ref
        self.categories = normalize_categories(categories or [])
        self.cache = cache
        self.mapper = mapper or CategoryMapper()

        self.baseline_store = BaselineStore()
        self.diff_engine = DiffEngine(self.mapper)
        self.planner = SyncPlanner()
        self.executor = SyncExecutor(
            self.content_root,
            fetcher=source,
            baseline_store=self.baseline_store,
            cache=cache,
            max_workers=max_workers,
            timeout=fetch_timeout,
            target_dir=self.target_dir,
        )

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _validate(self) -> None:
        if not self.target_dir.exists():
            raise ConfigurationError(
                f"Target directory does not exist: {self.target_dir}",
                context={"target_dir": str(self.target_dir)},
            )
        if not self.target_dir.is_dir():
            raise ConfigurationError(
                f"Target is not a directory: {self.target_dir}",
                context={"target_dir": str(self.target_dir)},
            )
        if self.content_root.exists() and not self.content_root.is_dir():
            raise ConfigurationError(
                f"Content root is not a directory: {self.content_root}",
                context={"content_root": str(self.content_root)},
            )
        ok, reason = validate_source_ref(self.source_ref)
        if not ok:
            raise ConfigurationError(reason)
        for category in self.categories:
            ok, reason = validate_category_name(category)
            if not ok:
                raise ConfigurationError(reason)

    # ------------------------------------------------------------------
    # Classification pipeline
    # ------------------------------------------------------------------

    def _remote_manifest(self) -> dict[str, ManifestEntry]:
        entries = self.source.resolve(self.source_ref, self.categories)
        entries = self.planner.filter_manifest(entries, self.categories)
        return {
            e.path: e
            for e in entries
            if not self.mapper.is_excluded(e.path)
        }

    def _classify(
        self,
        baseline: BaselineManifest,
        manifest: dict[str, ManifestEntry],
    ) -> dict[str, PathClassification]:
        local_tree = self.diff_engine.scan_local(self.content_root)
        return self.diff_engine.classify(local_tree, baseline, manifest)

    # ------------------------------------------------------------------
    # Main entry point
    # ------------------------------------------------------------------

    def run(self, dry_run: bool = False, force: bool = False) -> SyncReport:
        """Execute (or preview) one sync.

        Args:
            dry_run: Compute and return the plan without writing.
            force: Overwrite local edits, resolve conflicts in favour of
                the remote and delete paths removed upstream.

        Returns:
            A ``SyncReport`` describing what was (or would be) done.

        Raises:
            ConfigurationError: Bad target, corrupt baseline, or another
                process holds the lock.
            ResolutionError: Unknown source reference or category.
        """
        self._validate()
        logger.info(
            "Syncing %s from '%s' (categories: %s)%s",
            self.content_root,
            self.source_ref,
            ", ".join(self.categories),
            " [dry run]" if dry_run else "",
        )

        lock = (
            contextlib.nullcontext()
            if dry_run
            else self.baseline_store.lock(self.target_dir)
        )
        with lock:
            baseline = self.baseline_store.load(self.target_dir)
            before = baseline.model_dump(exclude={"last_sync"})

            manifest = self._remote_manifest()
            classifications = self._classify(baseline, manifest)
            plan = self.planner.plan(
                classifications,
                self.categories,
                force=force,
                dry_run=dry_run,
                source_ref=self.source_ref,
            )

            if dry_run:
                return self.executor.preview(plan)

            report = self.executor.execute(plan, manifest, baseline)

            baseline.source_ref = self.source_ref
            baseline.categories = list(self.categories)
            if baseline.model_dump(exclude={"last_sync"}) != before:
                self.baseline_store.save(self.target_dir, baseline)
            else:
                logger.debug("Baseline unchanged; not rewriting it")

        logger.info(
            "Sync finished: %d written, %d deleted, %d conflicts, %d errors",
            len(report.written),
            len(report.deleted),
            len(report.conflicted),
            len(report.errors),
        )
        return report

    def update(self, force: bool = False) -> SyncReport:
        """Preview, then apply unless the preview shows conflicts.

        Without *force* a plan containing conflicts is not applied; the
        returned report is the preview (``dry_run`` is ``True``).
        """
        preview = self.run(dry_run=True, force=force)
        if preview.conflicted and not force:
            logger.warning(
                "Update blocked by %d conflicts; re-run with --force "
                "to take the remote version",
                len(preview.conflicted),
            )
            return preview
        return self.run(dry_run=False, force=force)

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    def available_categories(self) -> list[str]:
        """Categories the source offers at the configured reference."""
        self._validate()
        return self.source.categories(self.source_ref)

    def status(self, categories: list[str] | None = None) -> StatusReport:
        """Compare the local tree against the baseline.  No network.

        Args:
            categories: Only report paths in these categories (``core``
                is always included).  ``None`` reports every path.
        """
        self._validate()
        baseline = self.baseline_store.load(self.target_dir)
        local_tree = self.diff_engine.scan_local(self.content_root)

        unchanged: list[str] = []
        modified: list[str] = []
        missing: list[str] = []
        for path, entry in sorted(baseline.entries.items()):
            local = local_tree.get(path)
            if local is None:
                missing.append(path)
            elif local == entry.digest:
                unchanged.append(path)
            else:
                modified.append(path)
        untracked = sorted(p for p in local_tree if p not in baseline.entries)

        if categories is not None:
            wanted = set(normalize_categories(categories))

            def keep(paths: list[str]) -> list[str]:
                kept = []
                for path in paths:
                    entry = baseline.entries.get(path)
                    category = entry.category if entry is not None else None
                    if (category or self.mapper.category_for(path)) in wanted:
                        kept.append(path)
                return kept

            unchanged, modified = keep(unchanged), keep(modified)
            missing, untracked = keep(missing), keep(untracked)

        return StatusReport(
            target_dir=str(self.target_dir),
            content_root=str(self.content_root),
            baseline_exists=self.baseline_store.exists(self.target_dir),
            last_sync=baseline.last_sync,
            source_ref=baseline.source_ref,
            categories=baseline.categories,
            unchanged=unchanged,
            modified=modified,
            missing=missing,
            untracked=untracked,
        )

    def diff(self, paths: list[str] | None = None) -> list[FileDiff]:
        """Unified diffs between local files and the remote versions.

        Args:
            paths: Restrict the output to these content paths.

        Returns:
            One ``FileDiff`` per path whose local and remote bytes differ,
            sorted by path.  Untracked files are not included.
        """
        self._validate()
        baseline = self.baseline_store.load(self.target_dir)
        manifest = self._remote_manifest()
        classifications = self._classify(baseline, manifest)

        wanted = set(paths) if paths else None
        diffs: list[FileDiff] = []
        for path, pc in classifications.items():
            if wanted is not None and path not in wanted:
                continue
            if pc.classification == Classification.UNTRACKED:
                continue
            if pc.local_digest == pc.remote_digest:
                continue
            diffs.append(self._file_diff(pc))
        return diffs

    def _file_diff(self, pc: PathClassification) -> FileDiff:
        try:
            local = b""
            if pc.local_digest is not None:
                local = resolve_under(self.content_root, pc.path).read_bytes()
            remote = b""
            if pc.remote_digest is not None:
                remote = self._remote_bytes(pc.path, pc.remote_digest)
        except (LeylineSyncError, OSError, ValueError) as exc:
            message = getattr(exc, "message", str(exc))
            logger.warning("Cannot diff %s: %s", pc.path, message)
            return FileDiff(
                path=pc.path,
                classification=pc.classification,
                error=message,
            )

        local_text, _ = decode_text(local)
        remote_text, _ = decode_text(remote)
        if local_text is None or remote_text is None:
            return FileDiff(
                path=pc.path, classification=pc.classification, binary=True
            )

        lines = difflib.unified_diff(
            local_text.splitlines(keepends=True),
            remote_text.splitlines(keepends=True),
            fromfile=f"local/{pc.path}",
            tofile=f"remote/{pc.path}",
        )
        return FileDiff(
            path=pc.path,
            classification=pc.classification,
            diff="".join(lines),
        )

    def _remote_bytes(self, path: str, digest: str) -> bytes:
        if self.cache is not None:
            data = self.cache.get(digest)
            if data is not MISSING:
                return data
        data = self.source.fetch(self.source_ref, path)
        if hash_bytes(data) != digest:
            raise FetchError(
                path, "fetched bytes do not match the manifest digest"
            )
        if self.cache is not None:
            self.cache.put(digest, data)
        return data
