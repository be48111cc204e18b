"""Error taxonomy for leyline-sync.

Every error carries an ``error_type`` category, a ``context`` dict for
structured logging, and a list of ``recovery_suggestions`` so the CLI can
tell the user what to do next.

Fatal errors (abort the run before any write, no baseline update):

- ``ConfigurationError`` -- bad target directory, bad config values.
  - ``CorruptBaselineError`` -- baseline manifest cannot be trusted.
  - ``ConcurrentSyncError`` -- another process holds the target lock.
- ``ResolutionError`` -- the remote cannot describe what to sync.
  - ``UnresolvableRef`` -- the source reference does not exist.
  - ``UnknownCategoryError`` -- a requested category is not offered.

Per-path errors (recorded in the ``SyncReport``, the run continues):

- ``FetchError`` -- network/VCS failure fetching one blob.
- ``WriteError`` -- disk failure writing or deleting one path.

Conflicts are *not* errors and have no exception class.
"""

from __future__ import annotations

from typing import Any


class LeylineSyncError(Exception):
    """Base class for all leyline-sync errors."""

    error_type = "general"

    def __init__(
        self, message: str, *, context: dict[str, Any] | None = None
    ) -> None:
        super().__init__(message)
        self.message = message
        self.context = dict(context or {})

    @property
    def recovery_suggestions(self) -> list[str]:
        return [
            "Run the command with --debug for more detailed output",
        ]

    def to_dict(self) -> dict[str, Any]:
        """Structured representation for JSON output and logs."""
        return {
            "error_type": self.error_type,
            "error_class": type(self).__name__,
            "message": self.message,
            "context": self.context,
            "recovery_suggestions": self.recovery_suggestions,
        }


# ---------------------------------------------------------------------------
# Fatal errors
# ---------------------------------------------------------------------------


class ConfigurationError(LeylineSyncError):
    """Invalid configuration or target directory."""

    error_type = "configuration"

    @property
    def recovery_suggestions(self) -> list[str]:
        return [
            "Check .leyline/config.yml syntax (must be valid YAML)",
            "Ensure categories is a list of category names",
            "Verify the target directory exists and is writable",
        ]


class CorruptBaselineError(ConfigurationError):
    """The persisted baseline manifest is unreadable or invalid."""

    error_type = "corrupt_baseline"

    def __init__(
        self,
        message: str,
        *,
        baseline_file: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        ctx = dict(context or {})
        if baseline_file is not None:
            ctx.setdefault("baseline_file", baseline_file)
        super().__init__(message, context=ctx)
        self.baseline_file = baseline_file

    @property
    def recovery_suggestions(self) -> list[str]:
        return [
            "Inspect the baseline file for manual edits or truncation",
            "Restore it from version control if it is committed",
            "Delete it to start tracking from scratch; every synced file "
            "will then be treated as new and local edits may be overwritten",
        ]


class ConcurrentSyncError(ConfigurationError):
    """Another process is already syncing the same target directory."""

    error_type = "concurrent_sync"

    @property
    def recovery_suggestions(self) -> list[str]:
        return [
            "Wait for the other leyline-sync process to finish",
            "If no other process is running, remove the lock file "
            "reported in the error context",
        ]


class ResolutionError(LeylineSyncError):
    """The remote manifest could not be resolved."""

    error_type = "resolution"

    @property
    def recovery_suggestions(self) -> list[str]:
        return [
            "Check the source URL and reference",
            "Check network connectivity to the source",
        ]


class UnresolvableRef(ResolutionError):
    """The requested source reference does not exist."""

    error_type = "unresolvable_ref"

    def __init__(
        self,
        source_ref: str,
        *,
        reason: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        message = f"Source reference '{source_ref}' cannot be resolved"
        if reason:
            message += f": {reason}"
        ctx = dict(context or {})
        ctx.setdefault("source_ref", source_ref)
        super().__init__(message, context=ctx)
        self.source_ref = source_ref

    @property
    def recovery_suggestions(self) -> list[str]:
        return [
            "Verify the branch, tag or commit exists upstream",
            "Pass a different reference with --ref",
        ]


class UnknownCategoryError(ResolutionError):
    """One or more requested categories are not offered by the source."""

    error_type = "unknown_category"

    def __init__(
        self,
        categories: list[str],
        source_ref: str,
        *,
        available: list[str] | None = None,
    ) -> None:
        self.categories = sorted(categories)
        self.available = sorted(available or [])
        message = (
            f"Unknown categor{'y' if len(self.categories) == 1 else 'ies'} "
            f"at '{source_ref}': {', '.join(self.categories)}"
        )
        super().__init__(
            message,
            context={
                "source_ref": source_ref,
                "available": self.available,
            },
        )

    @property
    def recovery_suggestions(self) -> list[str]:
        suggestions = ["Check category names for typos"]
        if self.available:
            suggestions.append(
                f"Available categories: {', '.join(self.available)}"
            )
        return suggestions


# ---------------------------------------------------------------------------
# Per-path errors
# ---------------------------------------------------------------------------


class FetchError(LeylineSyncError):
    """A blob could not be fetched from the source."""

    error_type = "fetch"

    def __init__(
        self,
        path: str,
        reason: str,
        *,
        context: dict[str, Any] | None = None,
    ) -> None:
        ctx = dict(context or {})
        ctx.setdefault("path", path)
        super().__init__(f"Failed to fetch {path}: {reason}", context=ctx)
        self.path = path
        self.reason = reason

    @property
    def recovery_suggestions(self) -> list[str]:
        return [
            "Re-run the sync; completed paths are not fetched again",
            "Check network connectivity to the source",
        ]


class WriteError(LeylineSyncError):
    """A path could not be written to or removed from disk."""

    error_type = "write"

    def __init__(
        self,
        path: str,
        reason: str,
        *,
        context: dict[str, Any] | None = None,
    ) -> None:
        ctx = dict(context or {})
        ctx.setdefault("path", path)
        super().__init__(f"Failed to write {path}: {reason}", context=ctx)
        self.path = path
        self.reason = reason

    @property
    def recovery_suggestions(self) -> list[str]:
        return [
            "Check file permissions in the target directory",
            "Check available disk space",
        ]
