"""Consumer-side document sync engine.

Public API for synchronising Leyline tenets and bindings from an upstream
source into a consumer directory without silently overwriting local
edits.

Architecture
------------
Every path is compared three ways: the digest of the file on disk, the
digest recorded in the baseline when the engine last wrote it, and the
digest the remote offers now.  Only whole-file digests are compared; no
text is ever merged.

Modules:

- ``engine``    -- ``SyncEngine``: orchestrates a full sync cycle.
- ``baseline``  -- ``BaselineStore``: load/save the per-target baseline,
  plus the per-target lock file.
- ``mapper``    -- ``CategoryMapper``: upstream layout and categories.
- ``models``    -- ``Classification``, ``PlanAction``, ``ManifestEntry``,
  ``BaselineManifest``, ``SyncPlan``, ``SyncReport`` and friends.
- ``diff``      -- ``DiffEngine``: local scan and three-way classification.
- ``planner``   -- ``SyncPlanner``: classifications to actions.
- ``executor``  -- ``SyncExecutor``: cache/fetch, atomic writes, baseline
  updates.
- ``resolver``  -- Remote source protocols and the ``create_source``
  factory.
- ``reporter``  -- Human-readable and JSON report formatting.

Usage example
-------------
::

    from pathlib import Path
    from leyline_sync.cache import ContentCache
    from leyline_sync.sync import SyncEngine, create_source, format_sync_report

    source = create_source(
        "git",
        "https://github.com/phrazzld/leyline.git",
        cache_dir=Path("~/.cache/leyline").expanduser(),
    )
    engine = SyncEngine(
        target_dir=Path("."),
        source=source,
        source_ref="master",
        categories=["go"],
        cache=ContentCache(Path("~/.cache/leyline")),
    )

    # Dry-run first to preview changes
    preview = engine.run(dry_run=True)
    print(format_dry_run_preview(preview))

    # Execute the sync
    report = engine.run()
    print(format_sync_report(report))
"""

from .baseline import BaselineStore
from .diff import DiffEngine, classify_path
from .engine import SyncEngine
from .executor import SyncExecutor
from .mapper import CategoryMapper
from .models import (
    BaselineEntry,
    BaselineManifest,
    Classification,
    FileDiff,
    ManifestEntry,
    PathResult,
    PlanAction,
    StatusReport,
    SyncPlan,
    SyncReport,
)
from .planner import SyncPlanner
from .reporter import (
    format_diff,
    format_dry_run_preview,
    format_status,
    format_sync_report,
    report_to_json,
    status_to_json,
)
from .resolver import create_source

__all__ = [
    "BaselineEntry",
    "BaselineManifest",
    "BaselineStore",
    "CategoryMapper",
    "Classification",
    "DiffEngine",
    "FileDiff",
    "ManifestEntry",
    "PathResult",
    "PlanAction",
    "StatusReport",
    "SyncEngine",
    "SyncExecutor",
    "SyncPlan",
    "SyncPlanner",
    "SyncReport",
    "classify_path",
    "create_source",
    "format_diff",
    "format_dry_run_preview",
    "format_status",
    "format_sync_report",
    "report_to_json",
    "status_to_json",
]
