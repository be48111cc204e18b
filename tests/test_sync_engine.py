"""Tests for the sync engine.

End-to-end runs against an in-memory source covering first sync,
idempotence, remote updates, local edits, conflicts, upstream removals,
category selection, dry runs, fatal errors, partial failures and the
read-only status/diff views.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from leyline_sync.cache import ContentCache
from leyline_sync.errors import (
    ConcurrentSyncError,
    ConfigurationError,
    CorruptBaselineError,
    UnknownCategoryError,
    UnresolvableRef,
)
from leyline_sync.file_handler import hash_bytes
from leyline_sync.sync.baseline import BaselineStore
from leyline_sync.sync.engine import SyncEngine
from leyline_sync.sync.mapper import CategoryMapper
from leyline_sync.sync.models import Classification, PlanAction

SIMPLICITY = "tenets/simplicity.md"
PURE = "bindings/core/pure-functions.md"
GO_ERRORS = "bindings/categories/go/error-wrapping.md"
RUST_OWNERSHIP = "bindings/categories/rust/ownership.md"

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _setup_engine(
    target_dir: Path,
    source,
    categories: list[str] | None = None,
    **kwargs,
) -> SyncEngine:
    return SyncEngine(target_dir, source, "master", categories, **kwargs)


def _content(target_dir: Path, path: str) -> Path:
    return target_dir / "docs" / "leyline" / path


def _seed(source) -> None:
    source.put(SIMPLICITY, "# Simplicity\n\nPrefer the simplest design.\n")
    source.put(PURE, "# Pure functions\n\nKeep side effects at the edges.\n")
    source.put(GO_ERRORS, "# Wrap errors\n\nAdd context.\n", category="go")
    source.put(RUST_OWNERSHIP, "# Ownership\n", category="rust")


def _by_path(report):
    return {r.path: r for r in report.results}


@pytest.fixture
def seeded(fake_source):
    _seed(fake_source)
    return fake_source


# ---------------------------------------------------------------------------
# First sync and idempotence
# ---------------------------------------------------------------------------


class TestFirstSync:
    def test_writes_core_and_selected_categories(self, target_dir, seeded):
        report = _setup_engine(target_dir, seeded, ["go"]).run()

        assert sorted(r.path for r in report.written) == sorted(
            [SIMPLICITY, PURE, GO_ERRORS]
        )
        assert _content(target_dir, GO_ERRORS).exists()
        assert not _content(target_dir, RUST_OWNERSHIP).exists()
        assert report.exit_code == 0
        assert report.categories == ["core", "go"]

        baseline = BaselineStore().load(target_dir)
        assert sorted(baseline.entries) == sorted([SIMPLICITY, PURE, GO_ERRORS])
        assert baseline.source_ref == "master"
        assert baseline.categories == ["core", "go"]

    def test_unselected_categories_are_invisible(self, target_dir, seeded):
        report = _setup_engine(target_dir, seeded).run()
        assert RUST_OWNERSHIP not in _by_path(report)
        assert GO_ERRORS not in _by_path(report)
        assert seeded.resolve_calls == [("master", ["core"])]

    def test_second_run_is_a_no_op(self, target_dir, seeded):
        engine = _setup_engine(target_dir, seeded, ["go"])
        engine.run()
        baseline_path = BaselineStore().baseline_path(target_dir)
        saved = baseline_path.read_bytes()
        seeded.fetch_calls.clear()

        report = engine.run()

        assert report.written == []
        assert all(r.action == PlanAction.SKIP for r in report.results)
        assert seeded.fetch_calls == []
        assert baseline_path.read_bytes() == saved

    def test_uses_cache_across_targets(self, tmp_path, seeded):
        cache = ContentCache(tmp_path / "cache")
        first = tmp_path / "one"
        second = tmp_path / "two"
        first.mkdir()
        second.mkdir()

        _setup_engine(first, seeded, cache=cache).run()
        fetched = len(seeded.fetch_calls)
        report = _setup_engine(second, seeded, cache=cache).run()

        assert len(seeded.fetch_calls) == fetched
        assert all(r.from_cache for r in report.written)

    def test_exclude_globs(self, target_dir, seeded):
        mapper = CategoryMapper(exclude=["bindings/core/*"])
        report = _setup_engine(target_dir, seeded, mapper=mapper).run()
        assert [r.path for r in report.written] == [SIMPLICITY]

    def test_custom_docs_path(self, target_dir, seeded):
        _setup_engine(target_dir, seeded, docs_path="guides/leyline").run()
        assert (target_dir / "guides" / "leyline" / SIMPLICITY).exists()


# ---------------------------------------------------------------------------
# Three-way scenarios
# ---------------------------------------------------------------------------


class TestThreeWay:
    def test_remote_update_applied(self, target_dir, seeded):
        engine = _setup_engine(target_dir, seeded)
        engine.run()
        new_digest = seeded.put(SIMPLICITY, "# Simplicity v2\n")

        report = engine.run()

        result = _by_path(report)[SIMPLICITY]
        assert result.classification == Classification.REMOTE_UPDATED
        assert result.action == PlanAction.WRITE
        assert result.destructive is False
        assert _content(target_dir, SIMPLICITY).read_text() == "# Simplicity v2\n"
        assert BaselineStore().load(target_dir).get(SIMPLICITY).digest == new_digest

    def test_local_edit_preserved(self, target_dir, seeded):
        engine = _setup_engine(target_dir, seeded)
        engine.run()
        _content(target_dir, SIMPLICITY).write_text("my notes\n")

        report = engine.run()

        assert [r.path for r in report.locally_modified] == [SIMPLICITY]
        assert _content(target_dir, SIMPLICITY).read_text() == "my notes\n"
        assert report.exit_code == 0

    def test_local_edit_overwritten_with_force(self, target_dir, seeded):
        engine = _setup_engine(target_dir, seeded)
        engine.run()
        _content(target_dir, SIMPLICITY).write_text("my notes\n")

        report = engine.run(force=True)

        assert [r.path for r in report.destructive] == [SIMPLICITY]
        assert _content(target_dir, SIMPLICITY).read_text().startswith("# Simplicity")

    def test_conflict_reported_not_overwritten(self, target_dir, seeded):
        engine = _setup_engine(target_dir, seeded)
        engine.run()
        old_digest = BaselineStore().load(target_dir).get(SIMPLICITY).digest
        _content(target_dir, SIMPLICITY).write_text("my notes\n")
        seeded.put(SIMPLICITY, "# Simplicity v2\n")

        report = engine.run()

        assert [r.path for r in report.conflicted] == [SIMPLICITY]
        assert report.exit_code == 3
        assert _content(target_dir, SIMPLICITY).read_text() == "my notes\n"
        assert BaselineStore().load(target_dir).get(SIMPLICITY).digest == old_digest

    def test_conflict_resolved_with_force(self, target_dir, seeded):
        engine = _setup_engine(target_dir, seeded)
        engine.run()
        _content(target_dir, SIMPLICITY).write_text("my notes\n")
        new_digest = seeded.put(SIMPLICITY, "# Simplicity v2\n")

        report = engine.run(force=True)

        result = _by_path(report)[SIMPLICITY]
        assert result.classification == Classification.CONFLICTED
        assert result.destructive is True
        assert _content(target_dir, SIMPLICITY).read_text() == "# Simplicity v2\n"
        assert BaselineStore().load(target_dir).get(SIMPLICITY).digest == new_digest

    def test_local_edit_matching_remote_advances_baseline(self, target_dir, seeded):
        engine = _setup_engine(target_dir, seeded)
        engine.run()
        _content(target_dir, SIMPLICITY).write_text("# Simplicity v2\n")
        new_digest = seeded.put(SIMPLICITY, "# Simplicity v2\n")
        seeded.fetch_calls.clear()

        report = engine.run()

        result = _by_path(report)[SIMPLICITY]
        assert result.classification == Classification.UNMODIFIED
        assert seeded.fetch_calls == []
        assert BaselineStore().load(target_dir).get(SIMPLICITY).digest == new_digest

    def test_locally_deleted_file_not_restored(self, target_dir, seeded):
        engine = _setup_engine(target_dir, seeded)
        engine.run()
        _content(target_dir, PURE).unlink()

        report = engine.run()

        assert _by_path(report)[PURE].classification == (
            Classification.LOCALLY_MODIFIED
        )
        assert not _content(target_dir, PURE).exists()

    def test_untracked_files_never_touched(self, target_dir, seeded, write_local):
        root = target_dir / "docs" / "leyline"
        write_local(root, "tenets/team-notes.md", "ours")

        report = _setup_engine(target_dir, seeded).run(force=True)

        assert [r.path for r in report.untracked] == ["tenets/team-notes.md"]
        assert (root / "tenets" / "team-notes.md").read_text() == "ours"
        assert "tenets/team-notes.md" not in BaselineStore().load(target_dir).entries

    def test_new_remote_file_over_local_file_is_destructive(
        self, target_dir, seeded, write_local
    ):
        write_local(target_dir / "docs" / "leyline", SIMPLICITY, "pre-existing\n")
        report = _setup_engine(target_dir, seeded).run()
        result = _by_path(report)[SIMPLICITY]
        assert result.classification == Classification.NEW
        assert result.destructive is True


# ---------------------------------------------------------------------------
# Removals and category changes
# ---------------------------------------------------------------------------


class TestRemovals:
    def test_removed_upstream_kept_without_force(self, target_dir, seeded):
        engine = _setup_engine(target_dir, seeded)
        engine.run()
        seeded.drop(PURE)

        report = engine.run()

        assert [r.path for r in report.removed_pending] == [PURE]
        assert _content(target_dir, PURE).exists()
        assert PURE in BaselineStore().load(target_dir).entries

    def test_removed_upstream_deleted_with_force(self, target_dir, seeded):
        engine = _setup_engine(target_dir, seeded)
        engine.run()
        seeded.drop(PURE)

        report = engine.run(force=True)

        assert [r.path for r in report.deleted] == [PURE]
        assert not _content(target_dir, PURE).exists()
        assert PURE not in BaselineStore().load(target_dir).entries

    def test_deselected_category_reported_as_removed(self, target_dir, seeded):
        _setup_engine(target_dir, seeded, ["go"]).run()

        report = _setup_engine(target_dir, seeded, []).run()

        result = _by_path(report)[GO_ERRORS]
        assert result.classification == Classification.REMOVED
        assert result.action == PlanAction.SKIP
        assert _content(target_dir, GO_ERRORS).exists()

    def test_deselected_category_deleted_with_force(self, target_dir, seeded):
        _setup_engine(target_dir, seeded, ["go"]).run()

        report = _setup_engine(target_dir, seeded, []).run(force=True)

        assert [r.path for r in report.deleted] == [GO_ERRORS]
        assert not _content(target_dir, GO_ERRORS).exists()
        baseline = BaselineStore().load(target_dir)
        assert GO_ERRORS not in baseline.entries
        assert baseline.categories == ["core"]


# ---------------------------------------------------------------------------
# Dry run and update
# ---------------------------------------------------------------------------


class TestDryRunAndUpdate:
    def test_dry_run_changes_nothing(self, target_dir, seeded):
        report = _setup_engine(target_dir, seeded).run(dry_run=True)

        assert report.dry_run is True
        assert len(report.written) == 2
        assert not (target_dir / "docs").exists()
        assert not BaselineStore().exists(target_dir)
        assert seeded.fetch_calls == []

    def test_dry_run_ignores_lock(self, target_dir, seeded):
        with BaselineStore().lock(target_dir):
            report = _setup_engine(target_dir, seeded).run(dry_run=True)
        assert report.dry_run is True

    def test_update_blocked_by_conflicts(self, target_dir, seeded):
        engine = _setup_engine(target_dir, seeded)
        engine.run()
        _content(target_dir, SIMPLICITY).write_text("my notes\n")
        seeded.put(SIMPLICITY, "# Simplicity v2\n")
        seeded.put(PURE, "# Pure functions v2\n")

        report = engine.update()

        assert report.dry_run is True
        assert report.exit_code == 3
        assert _content(target_dir, PURE).read_text().startswith("# Pure functions\n")

    def test_update_applies_without_conflicts(self, target_dir, seeded):
        engine = _setup_engine(target_dir, seeded)
        engine.run()
        seeded.put(PURE, "# Pure functions v2\n")

        report = engine.update()

        assert report.dry_run is False
        assert _content(target_dir, PURE).read_text() == "# Pure functions v2\n"

    def test_update_force_overrides_conflicts(self, target_dir, seeded):
        engine = _setup_engine(target_dir, seeded)
        engine.run()
        _content(target_dir, SIMPLICITY).write_text("my notes\n")
        seeded.put(SIMPLICITY, "# Simplicity v2\n")

        report = engine.update(force=True)

        assert report.dry_run is False
        assert _content(target_dir, SIMPLICITY).read_text() == "# Simplicity v2\n"


# ---------------------------------------------------------------------------
# Fatal errors
# ---------------------------------------------------------------------------


class TestFatalErrors:
    def test_missing_target(self, tmp_path, seeded):
        with pytest.raises(ConfigurationError, match="does not exist"):
            _setup_engine(tmp_path / "nope", seeded).run()

    def test_target_is_a_file(self, tmp_path, seeded):
        target = tmp_path / "file"
        target.write_text("x")
        with pytest.raises(ConfigurationError, match="not a directory"):
            _setup_engine(target, seeded).run()

    def test_invalid_ref(self, target_dir, seeded):
        engine = SyncEngine(target_dir, seeded, "--upload-pack=x")
        with pytest.raises(ConfigurationError, match="cannot start with '-'"):
            engine.run()

    def test_unresolvable_ref(self, target_dir, seeded):
        engine = SyncEngine(target_dir, seeded, "v99")
        with pytest.raises(UnresolvableRef):
            engine.run()
        assert not (target_dir / "docs").exists()
        assert not BaselineStore().exists(target_dir)

    def test_unknown_category(self, target_dir, seeded):
        with pytest.raises(UnknownCategoryError) as exc:
            _setup_engine(target_dir, seeded, ["cobol"]).run()
        assert exc.value.available == ["core", "go", "rust"]
        assert not (target_dir / "docs").exists()

    def test_corrupt_baseline_aborts(self, target_dir, seeded):
        path = BaselineStore().baseline_path(target_dir)
        path.parent.mkdir(parents=True)
        path.write_text("{truncated")

        with pytest.raises(CorruptBaselineError):
            _setup_engine(target_dir, seeded).run()
        assert not (target_dir / "docs").exists()
        assert path.read_text() == "{truncated"

    def test_concurrent_sync_rejected(self, target_dir, seeded):
        with BaselineStore().lock(target_dir):
            with pytest.raises(ConcurrentSyncError):
                _setup_engine(target_dir, seeded).run()
        assert not (target_dir / "docs").exists()

    def test_lock_released_after_run(self, target_dir, seeded):
        _setup_engine(target_dir, seeded).run()
        assert not BaselineStore().lock(target_dir).lock_path.exists()


# ---------------------------------------------------------------------------
# Partial failures and convergence
# ---------------------------------------------------------------------------


class TestPartialFailure:
    def test_failed_path_retried_on_next_run(self, target_dir, seeded):
        engine = _setup_engine(target_dir, seeded)
        seeded.fail_paths.add(PURE)

        first = engine.run()

        assert [r.path for r in first.errors] == [PURE]
        assert first.exit_code == 1
        assert _content(target_dir, SIMPLICITY).exists()
        baseline = BaselineStore().load(target_dir)
        assert PURE not in baseline.entries
        assert SIMPLICITY in baseline.entries

        seeded.fail_paths.clear()
        seeded.fetch_calls.clear()
        second = engine.run()

        assert [r.path for r in second.written] == [PURE]
        assert seeded.fetch_calls == [PURE]
        assert second.exit_code == 0

    def test_file_written_before_interruption_converges(self, target_dir, seeded):
        """A file on disk with the remote bytes but no baseline is adopted."""
        digest = hash_bytes(b"# Simplicity\n\nPrefer the simplest design.\n")
        _content(target_dir, SIMPLICITY).parent.mkdir(parents=True)
        _content(target_dir, SIMPLICITY).write_bytes(
            b"# Simplicity\n\nPrefer the simplest design.\n"
        )

        report = _setup_engine(target_dir, seeded).run()

        assert _by_path(report)[SIMPLICITY].destructive is False
        assert SIMPLICITY not in seeded.fetch_calls
        assert BaselineStore().load(target_dir).get(SIMPLICITY).digest == digest


# ---------------------------------------------------------------------------
# Status and diff
# ---------------------------------------------------------------------------


class TestStatus:
    def test_never_synced(self, target_dir, seeded):
        status = _setup_engine(target_dir, seeded).status()
        assert status.baseline_exists is False
        assert status.total_changes == 0

    def test_reports_local_changes_without_network(self, target_dir, seeded, write_local):
        engine = _setup_engine(target_dir, seeded)
        engine.run()
        seeded.resolve_calls.clear()
        _content(target_dir, SIMPLICITY).write_text("edited\n")
        _content(target_dir, PURE).unlink()
        write_local(target_dir / "docs" / "leyline", "tenets/extra.md", "x")

        status = engine.status()

        assert status.baseline_exists is True
        assert status.source_ref == "master"
        assert status.modified == [SIMPLICITY]
        assert status.missing == [PURE]
        assert status.untracked == ["tenets/extra.md"]
        assert status.total_changes == 3
        assert seeded.resolve_calls == []

    def test_category_filter(self, target_dir, seeded, write_local):
        engine = _setup_engine(target_dir, seeded, ["go", "rust"])
        engine.run()
        _content(target_dir, SIMPLICITY).write_text("edited\n")
        _content(target_dir, GO_ERRORS).write_text("edited\n")
        _content(target_dir, RUST_OWNERSHIP).unlink()
        write_local(
            target_dir / "docs" / "leyline",
            "bindings/categories/rust/extra.md",
            "x",
        )

        status = engine.status(["go"])

        assert status.modified == [GO_ERRORS, SIMPLICITY]
        assert status.missing == []
        assert status.untracked == []
        assert PURE in status.unchanged
        assert RUST_OWNERSHIP not in status.unchanged

    def test_no_filter_reports_every_category(self, target_dir, seeded):
        engine = _setup_engine(target_dir, seeded, ["rust"])
        engine.run()
        _content(target_dir, RUST_OWNERSHIP).unlink()
        assert engine.status().missing == [RUST_OWNERSHIP]


class TestAvailableCategories:
    def test_lists_categories_at_ref(self, target_dir, seeded):
        engine = _setup_engine(target_dir, seeded)
        assert engine.available_categories() == ["core", "go", "rust"]
        assert not (target_dir / "docs").exists()

    def test_unresolvable_ref(self, target_dir, seeded):
        engine = SyncEngine(target_dir, seeded, "v99", None)
        with pytest.raises(UnresolvableRef):
            engine.available_categories()


class TestDiff:
    def test_unified_diff_for_remote_update(self, target_dir, seeded):
        engine = _setup_engine(target_dir, seeded)
        engine.run()
        seeded.put(
            SIMPLICITY,
            "# Simplicity\n\nPrefer the simplest design.\n\nDelete dead code.\n",
        )

        diffs = engine.diff()

        assert [d.path for d in diffs] == [SIMPLICITY]
        assert diffs[0].classification == Classification.REMOTE_UPDATED
        assert "+Delete dead code." in diffs[0].diff
        assert f"--- local/{SIMPLICITY}" in diffs[0].diff

    def test_no_differences_after_sync(self, target_dir, seeded):
        engine = _setup_engine(target_dir, seeded)
        engine.run()
        assert engine.diff() == []

    def test_path_filter(self, target_dir, seeded):
        engine = _setup_engine(target_dir, seeded)
        diffs = engine.diff([PURE])
        assert [d.path for d in diffs] == [PURE]
        assert diffs[0].classification == Classification.NEW

    def test_fetch_failure_reported_per_file(self, target_dir, seeded):
        seeded.fail_paths.add(PURE)
        diffs = _setup_engine(target_dir, seeded).diff([PURE])
        assert "simulated outage" in diffs[0].error

    def test_non_ascii_text_decoded_as_utf8(self, target_dir, seeded):
        engine = _setup_engine(target_dir, seeded)
        engine.run()
        seeded.put(
            SIMPLICITY,
            "# Simplicité\n\nLes données sont validées à chaque étape, "
            "même les entrées déjà vérifiées.\n",
        )

        diffs = engine.diff([SIMPLICITY])

        assert not diffs[0].binary
        assert "+# Simplicité" in diffs[0].diff
        assert "+Les données sont validées à chaque étape" in diffs[0].diff
