"""Apply a ``SyncPlan`` to the content tree.

For each ``WRITE`` the bytes come from the content cache or, on a miss,
from the ``BlobFetcher``; fetched bytes are verified against the
expected digest and cached before they are written.  Files are written
atomically (temp file + rename), so a crash never leaves a truncated
document.

Fetch-and-write of distinct paths runs on a bounded thread pool.  Only
the calling thread mutates the baseline manifest, and the executor never
saves it: persisting the manifest once at the end of a run is the
engine's job.

Per-path ``FetchError`` / ``WriteError`` failures are recorded in the
report and do not stop the remaining paths.
A path whose worker outlives the per-path timeout is reported as failed;
the worker is left running and is never allowed to write.
"""

from __future__ import annotations

import concurrent.futures
import logging
import threading
from collections.abc import Mapping
from datetime import datetime, timezone
from pathlib import Path

from leyline_sync.cache import MISSING, ContentCache
from leyline_sync.errors import FetchError, LeylineSyncError, WriteError
from leyline_sync.file_handler import (
    atomic_write_bytes,
    hash_bytes,
    hash_file,
    remove_file,
    resolve_under,
)
from leyline_sync.sync.baseline import BaselineStore
from leyline_sync.sync.models import (
    BaselineManifest,
    ManifestEntry,
    PathResult,
    PlanAction,
    PlanItem,
    SyncPlan,
    SyncReport,
)
from leyline_sync.sync.resolver import BlobFetcher

logger = logging.getLogger(__name__)

_UNCHANGED = "unchanged"
_CACHED = "cached"
_FETCHED = "fetched"


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class _WriteGuard:
    """Lets the calling thread give up on a write that has not landed yet."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._abandoned = False
        self._written = False

    def abandon(self) -> bool:
        """Abandon the write.  ``False`` if it is already on disk."""
        with self._lock:
            if self._written:
                return False
            self._abandoned = True
            return True

    def write(self, path: str, target: Path, data: bytes) -> None:
        with self._lock:
            if self._abandoned:
                raise FetchError(path, "abandoned after timeout")
            try:
                atomic_write_bytes(target, data)
            except OSError as exc:
                raise WriteError(path, str(exc)) from exc
            self._written = True


class SyncExecutor:
    """Execute sync plans against one content root.

    Args:
        content_root: Directory the plan's paths are relative to.
        fetcher: Source of blob bytes on cache misses.
        baseline_store: Used to upsert/remove baseline entries.
        cache: Content cache; ``None`` disables caching.
        max_workers: Size of the fetch/write thread pool.
        timeout: Seconds to wait for each path's fetch and write.
        target_dir: Consumer directory reported in the ``SyncReport``
            (defaults to *content_root*).
    """

    def __init__(
        self,
        content_root: Path,
        fetcher: BlobFetcher,
        baseline_store: BaselineStore | None = None,
        cache: ContentCache | None = None,
        max_workers: int = 4,
        timeout: float | None = None,
        target_dir: Path | None = None,
    ) -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.content_root = Path(content_root)
        self.fetcher = fetcher
        self.baseline_store = baseline_store or BaselineStore()
        self.cache = cache
        self.max_workers = max_workers
        self.timeout = timeout
        self.target_dir = Path(target_dir) if target_dir else self.content_root

    # ------------------------------------------------------------------
    # Preview
    # ------------------------------------------------------------------

    def preview(self, plan: SyncPlan) -> SyncReport:
        """Report what *plan* would do without touching disk or network."""
        started_at = _utc_now()
        results = [
            PathResult(
                path=item.path,
                classification=item.classification,
                action=item.action,
                digest=item.digest,
                category=item.category,
                destructive=item.destructive,
            )
            for item in plan.items
        ]
        return self._report(plan, results, started_at, dry_run=True)

    # ------------------------------------------------------------------
    # Execute
    # ------------------------------------------------------------------

    def execute(
        self,
        plan: SyncPlan,
        manifest: Mapping[str, ManifestEntry],
        baseline: BaselineManifest,
    ) -> SyncReport:
        """Apply *plan*, mutating *baseline* in memory.

        Args:
            plan: Plan from ``SyncPlanner.plan``.  Must not be a dry run.
            manifest: Remote manifest by path; its digests are the bytes
                each ``WRITE`` must produce.
            baseline: Baseline manifest updated for every applied action.

        Returns:
            ``SyncReport`` with one result per plan item, in plan order.

        Raises:
            ValueError: If *plan* is a dry run.
            KeyboardInterrupt: Pending work is cancelled and the
                interrupt propagates; *baseline* holds only the paths
                completed so far.
        """
        if plan.dry_run:
            raise ValueError("Refusing to execute a dry-run plan")

        started_at = _utc_now()
        results: dict[str, PathResult] = {}

        writes: list[tuple[PlanItem, str]] = []
        for item in plan.items:
            if item.action != PlanAction.WRITE:
                continue
            entry = manifest.get(item.path)
            digest = entry.digest if entry is not None else item.digest
            if digest is None:
                results[item.path] = self._failure(
                    item,
                    FetchError(item.path, "no remote digest for write"),
                )
                continue
            writes.append((item, digest))

        if writes:
            self._run_writes(plan, writes, baseline, results)

        for item in plan.items:
            if item.path in results:
                continue
            if item.action == PlanAction.DELETE:
                results[item.path] = self._apply_delete(item, baseline)
            elif item.action in (PlanAction.SKIP, PlanAction.REPORT_CONFLICT):
                results[item.path] = PathResult(
                    path=item.path,
                    classification=item.classification,
                    action=item.action,
                    digest=item.digest,
                    category=item.category,
                )

        ordered = [results[item.path] for item in plan.items]
        return self._report(plan, ordered, started_at, dry_run=False)

    def _run_writes(
        self,
        plan: SyncPlan,
        writes: list[tuple[PlanItem, str]],
        baseline: BaselineManifest,
        results: dict[str, PathResult],
    ) -> None:
        pool = concurrent.futures.ThreadPoolExecutor(
            max_workers=min(self.max_workers, len(writes)),
            thread_name_prefix="leyline-sync",
        )
        guards = {item.path: _WriteGuard() for item, _ in writes}
        futures = {
            item.path: pool.submit(
                self._write_one,
                plan.source_ref,
                item.path,
                digest,
                guards[item.path],
            )
            for item, digest in writes
        }
        timed_out = False
        try:
            for item, digest in writes:
                future = futures[item.path]
                try:
                    outcome = future.result(timeout=self.timeout)
                except concurrent.futures.TimeoutError:
                    if guards[item.path].abandon():
                        timed_out = True
                        future.cancel()
                        results[item.path] = self._failure(
                            item,
                            FetchError(
                                item.path, f"timed out after {self.timeout}s"
                            ),
                        )
                        continue
                    # Landed while we were giving up on it.
                    outcome = future.result()
                except LeylineSyncError as exc:
                    results[item.path] = self._failure(item, exc)
                    continue

                self.baseline_store.upsert(
                    baseline,
                    item.path,
                    digest,
                    plan.source_ref,
                    category=item.category,
                )
                if item.destructive:
                    logger.warning("Overwrote local changes in %s", item.path)
                else:
                    logger.debug("Wrote %s (%s)", item.path, outcome)
                results[item.path] = PathResult(
                    path=item.path,
                    classification=item.classification,
                    action=item.action,
                    digest=digest,
                    category=item.category,
                    destructive=item.destructive,
                    from_cache=outcome == _CACHED,
                )
        except KeyboardInterrupt:
            logger.warning("Interrupted; cancelling pending writes")
            pool.shutdown(wait=False, cancel_futures=True)
            raise
        # Workers stuck in a fetch are left behind; their guards stop them
        # from writing.
        pool.shutdown(wait=not timed_out, cancel_futures=timed_out)

    def _write_one(
        self,
        source_ref: str,
        path: str,
        digest: str,
        guard: _WriteGuard | None = None,
    ) -> str:
        """Make *path* hold the bytes of *digest*.  Runs on a worker."""
        try:
            target = resolve_under(self.content_root, path)
        except ValueError as exc:
            raise WriteError(path, str(exc)) from exc

        # Already in place, e.g. from an interrupted previous run.
        if target.is_file():
            try:
                if hash_file(target) == digest:
                    return _UNCHANGED
            except OSError:
                pass

        outcome = _CACHED
        data = self.cache.get(digest) if self.cache is not None else MISSING
        if data is MISSING:
            outcome = _FETCHED
            data = self.fetcher.fetch(source_ref, path)
            if hash_bytes(data) != digest:
                raise FetchError(
                    path,
                    "fetched bytes do not match the manifest digest",
                    context={"expected": digest},
                )
            if self.cache is not None:
                self.cache.put(digest, data)

        (guard or _WriteGuard()).write(path, target, data)
        return outcome

    def _apply_delete(
        self, item: PlanItem, baseline: BaselineManifest
    ) -> PathResult:
        try:
            target = resolve_under(self.content_root, item.path)
            removed = remove_file(target)
        except (ValueError, OSError) as exc:
            return self._failure(item, WriteError(item.path, str(exc)))

        self.baseline_store.remove(baseline, item.path)
        if removed:
            logger.info("Deleted %s (removed upstream)", item.path)
        else:
            logger.debug("Dropped baseline entry for absent %s", item.path)
        return PathResult(
            path=item.path,
            classification=item.classification,
            action=item.action,
            category=item.category,
            destructive=item.destructive and removed,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _failure(self, item: PlanItem, exc: LeylineSyncError) -> PathResult:
        logger.error("%s", exc.message)
        return PathResult(
            path=item.path,
            classification=item.classification,
            action=item.action,
            success=False,
            error=exc.message,
            error_type=exc.error_type,
            digest=item.digest,
            category=item.category,
        )

    def _report(
        self,
        plan: SyncPlan,
        results: list[PathResult],
        started_at: str,
        dry_run: bool,
    ) -> SyncReport:
        cache_stats = (
            self.cache.stats().to_dict() if self.cache is not None else None
        )
        return SyncReport(
            source_ref=plan.source_ref,
            target_dir=str(self.target_dir),
            categories=plan.categories,
            dry_run=dry_run,
            force=plan.force,
            results=results,
            started_at=started_at,
            completed_at=_utc_now(),
            cache_stats=cache_stats,
        )
