"""Turn path classifications into an ordered action plan.

The planner is pure: it reads classifications and flags and returns a
``SyncPlan``.  It never touches the filesystem and never consults
``dry_run`` beyond recording it on the plan; keeping a previewed plan
away from the executor is the caller's job.

Action rules:

- ``NEW`` / ``REMOTE_UPDATED`` -> ``WRITE``.
- ``UNMODIFIED`` -> ``SKIP`` when the baseline already matches the
  remote, ``WRITE`` when the baseline has to advance.
- ``LOCALLY_MODIFIED`` -> ``SKIP``, or a destructive ``WRITE`` with force.
- ``CONFLICTED`` -> ``REPORT_CONFLICT``, or a destructive ``WRITE`` with
  force (remote wins).
- ``REMOVED`` -> ``SKIP`` (reported), or ``DELETE`` with force.  A path
  already gone from disk is ``DELETE``-d without force since only its
  baseline entry is dropped.
- ``UNTRACKED`` -> ``SKIP``.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping

from leyline_sync.sync.mapper import normalize_categories
from leyline_sync.sync.models import (
    Classification,
    ManifestEntry,
    PathClassification,
    PlanAction,
    PlanItem,
    SyncPlan,
)

logger = logging.getLogger(__name__)


class SyncPlanner:
    """Build ``SyncPlan`` objects from classifications."""

    # ------------------------------------------------------------------
    # Category filter
    # ------------------------------------------------------------------

    def filter_manifest(
        self, entries: Iterable[ManifestEntry], categories: Iterable[str]
    ) -> list[ManifestEntry]:
        """Drop manifest entries outside the selected categories.

        ``core`` is always selected.  Run this before classification so
        unselected content is invisible to the diff.
        """
        selected = set(normalize_categories(categories))
        entries = list(entries)
        kept = [e for e in entries if e.category in selected]
        dropped = len(entries) - len(kept)
        if dropped:
            logger.debug(
                "Category filter dropped %d manifest entries", dropped
            )
        return kept

    def _apply_filter(
        self,
        classifications: Mapping[str, PathClassification],
        selected: set[str],
    ) -> list[PathClassification]:
        result: list[PathClassification] = []
        for path in sorted(classifications):
            pc = classifications[path]
            if pc.category is None or pc.category in selected:
                result.append(pc)
                continue
            if pc.baseline_digest is None:
                # Never managed and not selected: not our business.
                continue
            if pc.classification != Classification.REMOVED:
                pc = pc.model_copy(
                    update={
                        "classification": Classification.REMOVED,
                        "remote_digest": None,
                    }
                )
            result.append(pc)
        return result

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def plan(
        self,
        classifications: Mapping[str, PathClassification],
        categories_filter: Iterable[str] = (),
        *,
        force: bool = False,
        dry_run: bool = False,
        source_ref: str,
    ) -> SyncPlan:
        """Compute the plan for one run.

        Args:
            classifications: Output of ``DiffEngine.classify``.
            categories_filter: Selected categories (``core`` is implied).
            force: Allow destructive writes and deletes.
            dry_run: Recorded on the plan for the caller.
            source_ref: Source reference the plan writes from.

        Returns:
            A ``SyncPlan`` with one item per path, sorted by path.
        """
        categories = normalize_categories(categories_filter)
        items = [
            self._plan_item(pc, force)
            for pc in self._apply_filter(classifications, set(categories))
        ]

        plan = SyncPlan(
            source_ref=source_ref,
            categories=categories,
            force=force,
            dry_run=dry_run,
            items=items,
        )
        logger.info(
            "Planned %d writes, %d deletes, %d conflicts, %d skips",
            len(plan.writes),
            len(plan.deletes),
            len(plan.conflicts),
            len(plan.skips),
        )
        if plan.destructive:
            logger.warning(
                "%d planned actions discard local changes",
                len(plan.destructive),
            )
        return plan

    def _plan_item(self, pc: PathClassification, force: bool) -> PlanItem:
        cls = pc.classification
        local = pc.local_digest
        remote = pc.remote_digest

        action = PlanAction.SKIP
        destructive = False

        if cls in (Classification.NEW, Classification.REMOTE_UPDATED):
            action = PlanAction.WRITE
            # A NEW path may land on top of a file the engine never wrote.
            destructive = (
                cls == Classification.NEW
                and local is not None
                and local != remote
            )
        elif cls == Classification.UNMODIFIED:
            if pc.baseline_digest != remote:
                action = PlanAction.WRITE
        elif cls == Classification.LOCALLY_MODIFIED:
            if force:
                action = PlanAction.WRITE
                destructive = local is not None
        elif cls == Classification.CONFLICTED:
            if force:
                action = PlanAction.WRITE
                destructive = local is not None
            else:
                action = PlanAction.REPORT_CONFLICT
        elif cls == Classification.REMOVED:
            if local is None:
                action = PlanAction.DELETE
            elif force:
                action = PlanAction.DELETE
                destructive = local != pc.baseline_digest

        return PlanItem(
            path=pc.path,
            action=action,
            classification=cls,
            digest=remote,
            category=pc.category,
            local_digest=local,
            destructive=destructive,
        )
