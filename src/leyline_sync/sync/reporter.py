"""Sync report formatting functions.

Provides human-readable and machine-readable output for sync operations:

- ``format_sync_report`` -- full post-sync summary.
- ``format_dry_run_preview`` -- dry-run preview grouped by action.
- ``format_status`` -- local-only status view.
- ``format_diff`` -- unified diffs for the ``diff`` command.
- ``format_categories`` -- categories offered by the source.
- ``report_to_json`` / ``status_to_json`` / ``diffs_to_json`` /
  ``categories_to_json`` -- structured dicts for ``--json`` output.
"""

from __future__ import annotations

from collections import defaultdict
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import FileDiff, StatusReport, SyncReport

from .models import Classification, PathResult, PlanAction

_MARK_DESTRUCTIVE = " (local changes discarded)"

# ------------------------------------------------------------------
# Human-readable report
# ------------------------------------------------------------------


def _label(result: PathResult) -> str:
    suffix = _MARK_DESTRUCTIVE if result.destructive else ""
    return f"  {result.path}{suffix}"


def format_sync_report(report: SyncReport) -> str:
    """Format a complete sync report as human-readable text.

    Sections are only included when they contain at least one result.
    Unchanged paths are summarised by count only.

    Args:
        report: The completed sync report.

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []

    header = f"Sync report for '{report.source_ref}'"
    if report.dry_run:
        header += " (DRY RUN)"
    lines.append(header)
    lines.append(f"Target: {report.target_dir}")
    lines.append(f"Categories: {', '.join(report.categories)}")
    lines.append(f"Started: {report.started_at}")
    if report.completed_at:
        lines.append(f"Completed: {report.completed_at}")
    lines.append("")

    lines.append(
        f"Synced {len(report.results)} files: "
        f"{len(report.written)} written, {len(report.deleted)} deleted, "
        f"{len(report.conflicted)} conflicts, {len(report.errors)} errors"
    )
    lines.append("")

    if report.written:
        lines.append("Written:")
        lines.extend(_label(r) for r in report.written)
        lines.append("")

    if report.deleted:
        lines.append("Deleted:")
        lines.extend(_label(r) for r in report.deleted)
        lines.append("")

    if report.conflicted:
        lines.append("Conflicts (local and remote both changed):")
        lines.extend(f"  {r.path}" for r in report.conflicted)
        lines.append("  Use --force to take the remote version.")
        lines.append("")

    if report.locally_modified:
        lines.append("Locally modified (kept):")
        lines.extend(f"  {r.path}" for r in report.locally_modified)
        lines.append("")

    if report.removed_pending:
        lines.append("Removed upstream (kept, use --force to delete):")
        lines.extend(f"  {r.path}" for r in report.removed_pending)
        lines.append("")

    if report.untracked:
        lines.append("Untracked (not managed by leyline-sync):")
        lines.extend(f"  {r.path}" for r in report.untracked)
        lines.append("")

    if report.errors:
        lines.append("Errors:")
        for r in report.errors:
            lines.append(f"  {r.path}: {r.error}")
        lines.append("")

    unchanged = [
        r
        for r in report.skipped
        if r.classification == Classification.UNMODIFIED
    ]
    if unchanged:
        lines.append(f"Unchanged: {len(unchanged)} files")
        lines.append("")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# Dry-run preview
# ------------------------------------------------------------------


def format_dry_run_preview(report: SyncReport) -> str:
    """Format a dry-run preview grouped by action type.

    Each proposed action is shown as ``[ACTION]`` followed by its paths
    and the classification that led to it.

    Args:
        report: A dry-run sync report (``dry_run=True``).

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []
    lines.append("DRY RUN -- No changes will be made")
    lines.append(f"Source: {report.source_ref}")
    lines.append(f"Categories: {', '.join(report.categories)}")
    lines.append("")

    groups: dict[PlanAction, list[PathResult]] = defaultdict(list)
    for r in report.results:
        groups[r.action].append(r)

    display_order = [
        PlanAction.WRITE,
        PlanAction.DELETE,
        PlanAction.REPORT_CONFLICT,
    ]

    for action in display_order:
        if action not in groups:
            continue
        label = action.value.upper().replace("_", " ")
        lines.append(f"[{label}]")
        for r in groups[action]:
            lines.append(f"{_label(r)} ({r.classification.value})")
        lines.append("")

    reported = [
        r
        for r in groups.get(PlanAction.SKIP, [])
        if r.classification != Classification.UNMODIFIED
    ]
    if reported:
        lines.append("[KEEP]")
        for r in reported:
            lines.append(f"  {r.path} ({r.classification.value})")
        lines.append("")

    skip_count = len(groups.get(PlanAction.SKIP, [])) - len(reported)
    if skip_count > 0:
        lines.append(f"Skipped: {skip_count} files (unchanged)")
        lines.append("")

    if not any(a != PlanAction.SKIP for a in groups):
        lines.append("No changes needed.")
        lines.append("")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# Status and diff
# ------------------------------------------------------------------


def format_status(status: StatusReport) -> str:
    """Format the local status of a target directory."""
    lines: list[str] = []
    lines.append(f"Leyline status for {status.target_dir}")
    if not status.baseline_exists:
        lines.append("Never synced (no baseline found).")
    else:
        lines.append(f"Last sync: {status.last_sync or 'unknown'}")
        lines.append(f"Source: {status.source_ref or 'unknown'}")
        lines.append(f"Categories: {', '.join(status.categories) or '-'}")
    lines.append("")

    sections = (
        ("Modified", status.modified),
        ("Missing", status.missing),
        ("Untracked", status.untracked),
    )
    for title, paths in sections:
        if paths:
            lines.append(f"{title}:")
            lines.extend(f"  {p}" for p in paths)
            lines.append("")

    lines.append(f"Unchanged: {len(status.unchanged)} files")
    if status.total_changes == 0:
        lines.append("No local changes.")
    return "\n".join(lines).rstrip()


def format_diff(diffs: list[FileDiff]) -> str:
    """Concatenate the unified diffs of several files."""
    if not diffs:
        return "No differences."
    chunks: list[str] = []
    for d in diffs:
        if d.error:
            chunks.append(f"{d.path}: cannot diff ({d.error})")
        elif d.binary:
            chunks.append(
                f"Binary files local/{d.path} and remote/{d.path} differ"
            )
        else:
            chunks.append(d.diff.rstrip())
    return "\n".join(chunks)


def format_categories(source_ref: str, categories: list[str]) -> str:
    """List the categories offered at *source_ref*."""
    lines = [f"Available categories at '{source_ref}':", ""]
    lines.extend(f"  - {c}" for c in categories)
    lines.append("")
    lines.append(
        "core is always synced; add others with: "
        "leyline-sync sync -c <category1>,<category2>"
    )
    return "\n".join(lines)


# ------------------------------------------------------------------
# JSON output
# ------------------------------------------------------------------


def report_to_json(report: SyncReport) -> dict:
    """Convert a sync report to a structured dict for JSON serialisation.

    Args:
        report: The sync report.

    Returns:
        Dict with run info, counts, and per-result details.
    """
    results_list = []
    for r in report.results:
        entry: dict = {
            "path": r.path,
            "classification": r.classification.value,
            "action": r.action.value,
            "success": r.success,
        }
        if r.category:
            entry["category"] = r.category
        if r.destructive:
            entry["destructive"] = True
        if r.error:
            entry["error"] = r.error
            entry["error_type"] = r.error_type
        results_list.append(entry)

    data = {
        "source_ref": report.source_ref,
        "target_dir": report.target_dir,
        "categories": report.categories,
        "dry_run": report.dry_run,
        "force": report.force,
        "started_at": report.started_at,
        "completed_at": report.completed_at,
        "exit_code": report.exit_code,
        "counts": {
            "total": len(report.results),
            "written": len(report.written),
            "deleted": len(report.deleted),
            "skipped": len(report.skipped),
            "conflicts": len(report.conflicted),
            "locally_modified": len(report.locally_modified),
            "removed_pending": len(report.removed_pending),
            "untracked": len(report.untracked),
            "errors": len(report.errors),
        },
        "results": results_list,
    }
    if report.cache_stats is not None:
        data["cache"] = report.cache_stats
    return data


def status_to_json(status: StatusReport) -> dict:
    """Convert a status report to a structured dict."""
    data = status.model_dump()
    data["total_changes"] = status.total_changes
    return data


def diffs_to_json(diffs: list[FileDiff]) -> list[dict]:
    return [d.model_dump(mode="json") for d in diffs]


def categories_to_json(source_ref: str, categories: list[str]) -> dict:
    return {
        "source_ref": source_ref,
        "categories": categories,
        "count": len(categories),
    }
