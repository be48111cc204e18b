"""Pydantic models for the sync engine.

Defines the core data contracts used across all sync modules:

- ``Classification``: Three-way comparison outcome for one path.
- ``PlanAction``: What the executor should do with one path.
- ``ManifestEntry``: One file offered by the remote at a source ref.
- ``BaselineEntry`` / ``BaselineManifest``: Last synchronised state.
- ``PathClassification``: Digests and classification of one path.
- ``PlanItem`` / ``SyncPlan``: Ordered action plan.
- ``PathResult`` / ``SyncReport``: Outcome of a sync run.
- ``StatusReport`` / ``FileDiff``: Read-only views for status and diff.

Everything except ``BaselineManifest`` is frozen.  The baseline manifest
is mutated in memory during a run and persisted once at the end.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, field_validator, model_validator

from leyline_sync.validators import is_valid_digest, validate_relative_path


class Classification(str, Enum):
    """Three-way classification of a path (local vs. baseline vs. remote)."""

    UNMODIFIED = "unmodified"
    LOCALLY_MODIFIED = "locally_modified"
    REMOTE_UPDATED = "remote_updated"
    CONFLICTED = "conflicted"
    NEW = "new"
    REMOVED = "removed"
    UNTRACKED = "untracked"


class PlanAction(str, Enum):
    """Possible actions for a path in a sync plan."""

    WRITE = "write"
    SKIP = "skip"
    REPORT_CONFLICT = "report_conflict"
    DELETE = "delete"


def _check_path(value: str) -> str:
    ok, reason = validate_relative_path(value)
    if not ok:
        raise ValueError(reason)
    return value


def _check_digest(value: str) -> str:
    if not is_valid_digest(value):
        raise ValueError(f"Invalid SHA-256 digest: {value!r}")
    return value


class ManifestEntry(BaseModel):
    """A file the remote offers at a given source reference.

    Attributes:
        path: POSIX path relative to the consumer's content root.
        digest: SHA-256 of the file bytes.
        category: Category the file belongs to (``core`` for tenets and
            core bindings).
    """

    path: str
    digest: str
    category: str

    model_config = {"frozen": True}

    @field_validator("path")
    @classmethod
    def path_is_relative(cls, value: str) -> str:
        return _check_path(value)

    @field_validator("digest")
    @classmethod
    def digest_is_sha256(cls, value: str) -> str:
        return _check_digest(value)


class BaselineEntry(BaseModel):
    """Last synchronised state of one path.

    Attributes:
        path: POSIX path relative to the content root.
        digest: SHA-256 of the bytes last written by the engine.
        source_ref: Source reference those bytes came from.
        synced_at: ISO 8601 timestamp of the write.
        category: Category the path belonged to when written.
    """

    path: str
    digest: str
    source_ref: str
    synced_at: str
    category: str | None = None

    model_config = {"frozen": True}

    @field_validator("path")
    @classmethod
    def path_is_relative(cls, value: str) -> str:
        return _check_path(value)

    @field_validator("digest")
    @classmethod
    def digest_is_sha256(cls, value: str) -> str:
        return _check_digest(value)


class BaselineManifest(BaseModel):
    """All baseline entries for one target directory.

    Attributes:
        version: Schema version of the persisted file.
        source_ref: Source reference of the last completed sync.
        categories: Categories selected in the last completed sync.
        last_sync: ISO 8601 timestamp of the last save.
        entries: Baseline entries keyed by path.
    """

    version: int = 1
    source_ref: str | None = None
    categories: list[str] = []
    last_sync: str | None = None
    entries: dict[str, BaselineEntry] = {}

    @model_validator(mode="after")
    def keys_match_paths(self) -> BaselineManifest:
        for key, entry in self.entries.items():
            if key != entry.path:
                raise ValueError(
                    f"Baseline key '{key}' does not match entry path "
                    f"'{entry.path}'"
                )
        return self

    def get(self, path: str) -> BaselineEntry | None:
        return self.entries.get(path)

    def digests(self) -> dict[str, str]:
        """Return ``{path: digest}`` for every entry."""
        return {p: e.digest for p, e in self.entries.items()}


class PathClassification(BaseModel):
    """Classification of one path with the digests that produced it."""

    path: str
    classification: Classification
    local_digest: str | None = None
    baseline_digest: str | None = None
    remote_digest: str | None = None
    category: str | None = None

    model_config = {"frozen": True}


class PlanItem(BaseModel):
    """One step of a sync plan.

    Attributes:
        path: Path relative to the content root.
        action: What to do.
        classification: Why.
        digest: Remote digest to write (``None`` for deletes/skips of
            removed paths).
        category: Remote (or baseline) category of the path.
        local_digest: Digest of the on-disk file when planned.
        destructive: True if applying the action discards local bytes
            that differ from what the engine last wrote.
    """

    path: str
    action: PlanAction
    classification: Classification
    digest: str | None = None
    category: str | None = None
    local_digest: str | None = None
    destructive: bool = False

    model_config = {"frozen": True}


class SyncPlan(BaseModel):
    """Ordered list of plan items for one run."""

    source_ref: str
    categories: list[str] = []
    force: bool = False
    dry_run: bool = False
    items: list[PlanItem] = []

    model_config = {"frozen": True}

    def by_action(self, action: PlanAction) -> list[PlanItem]:
        return [i for i in self.items if i.action == action]

    @property
    def writes(self) -> list[PlanItem]:
        return self.by_action(PlanAction.WRITE)

    @property
    def deletes(self) -> list[PlanItem]:
        return self.by_action(PlanAction.DELETE)

    @property
    def conflicts(self) -> list[PlanItem]:
        return self.by_action(PlanAction.REPORT_CONFLICT)

    @property
    def skips(self) -> list[PlanItem]:
        return self.by_action(PlanAction.SKIP)

    @property
    def destructive(self) -> list[PlanItem]:
        return [i for i in self.items if i.destructive]


class PathResult(BaseModel):
    """Result of applying (or previewing) one plan item.

    Attributes:
        path: Path relative to the content root.
        classification: Classification of the path.
        action: Planned action.
        success: Whether the action succeeded (always True for previews
            and skips).
        error: Error message if the action failed.
        error_type: ``fetch`` or ``write`` for failed actions.
        digest: Remote digest involved, if any.
        category: Category of the path.
        destructive: Whether the action discarded local changes.
        from_cache: Whether the bytes came from the content cache.
    """

    path: str
    classification: Classification
    action: PlanAction
    success: bool = True
    error: str | None = None
    error_type: str | None = None
    digest: str | None = None
    category: str | None = None
    destructive: bool = False
    from_cache: bool = False

    model_config = {"frozen": True}


EXIT_OK = 0
EXIT_ERRORS = 1
EXIT_FATAL = 2
EXIT_CONFLICTS = 3


class SyncReport(BaseModel):
    """Aggregate report for a sync run.

    Attributes:
        source_ref: Source reference synced against.
        target_dir: Consumer directory.
        categories: Selected categories (``core`` included).
        dry_run: Whether this was a preview (no changes applied).
        force: Whether destructive actions were allowed.
        results: Per-path results in plan order.
        started_at: ISO 8601 timestamp when the run started.
        completed_at: ISO 8601 timestamp when the run completed.
        cache_stats: Cache counters, if a cache was used.
    """

    source_ref: str
    target_dir: str
    categories: list[str] = []
    dry_run: bool = False
    force: bool = False
    results: list[PathResult] = []
    started_at: str
    completed_at: str | None = None
    cache_stats: dict | None = None

    model_config = {"frozen": True}

    @property
    def written(self) -> list[PathResult]:
        """Results where a write was performed (or previewed)."""
        return [
            r
            for r in self.results
            if r.action == PlanAction.WRITE and r.success
        ]

    @property
    def skipped(self) -> list[PathResult]:
        return [r for r in self.results if r.action == PlanAction.SKIP]

    @property
    def conflicted(self) -> list[PathResult]:
        return [
            r
            for r in self.results
            if r.action == PlanAction.REPORT_CONFLICT
        ]

    @property
    def deleted(self) -> list[PathResult]:
        return [
            r
            for r in self.results
            if r.action == PlanAction.DELETE and r.success
        ]

    @property
    def removed_pending(self) -> list[PathResult]:
        """Removed upstream but kept on disk (needs ``--force``)."""
        return [
            r
            for r in self.skipped
            if r.classification == Classification.REMOVED
        ]

    @property
    def locally_modified(self) -> list[PathResult]:
        """Local edits preserved because ``--force`` was not given."""
        return [
            r
            for r in self.skipped
            if r.classification == Classification.LOCALLY_MODIFIED
        ]

    @property
    def untracked(self) -> list[PathResult]:
        return [
            r
            for r in self.results
            if r.classification == Classification.UNTRACKED
        ]

    @property
    def destructive(self) -> list[PathResult]:
        return [r for r in self.results if r.destructive and r.success]

    @property
    def errors(self) -> list[PathResult]:
        return [r for r in self.results if not r.success]

    @property
    def exit_code(self) -> int:
        """Process exit status for this report."""
        if self.errors:
            return EXIT_ERRORS
        if self.conflicted:
            return EXIT_CONFLICTS
        return EXIT_OK

    def summary(self) -> str:
        """Format a short human-readable summary of the run.

        Returns:
            Multi-line summary string with counts by outcome.
        """
        lines = [
            f"Sync report for '{self.source_ref}'"
            + (" (dry run)" if self.dry_run else ""),
            f"  Written:          {len(self.written)}",
            f"  Deleted:          {len(self.deleted)}",
            f"  Skipped:          {len(self.skipped)}",
            f"  Conflicts:        {len(self.conflicted)}",
            f"  Removed upstream: {len(self.removed_pending)}",
            f"  Errors:           {len(self.errors)}",
            f"  Total:            {len(self.results)}",
        ]
        return "\n".join(lines)


class StatusReport(BaseModel):
    """Local-only comparison of the content tree against the baseline."""

    target_dir: str
    content_root: str
    baseline_exists: bool
    last_sync: str | None = None
    source_ref: str | None = None
    categories: list[str] = []
    unchanged: list[str] = []
    modified: list[str] = []
    missing: list[str] = []
    untracked: list[str] = []

    model_config = {"frozen": True}

    @property
    def total_changes(self) -> int:
        return len(self.modified) + len(self.missing) + len(self.untracked)


class FileDiff(BaseModel):
    """Unified diff between the local and remote version of a path."""

    path: str
    classification: Classification
    diff: str = ""
    binary: bool = False
    error: str | None = None

    model_config = {"frozen": True}
