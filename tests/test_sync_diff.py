"""Tests for three-way classification and the local tree scan.

Covers:
- classify_path over every presence/equality combination of L, B, R
- Absent digests only equal other absent digests
- scan_local: hashing, hidden entries, symlinks, missing root
- DiffEngine.classify: path union, sorting, category attribution
"""

from __future__ import annotations

import pytest

from leyline_sync.file_handler import hash_bytes
from leyline_sync.sync.diff import UNREADABLE, DiffEngine, classify_path
from leyline_sync.sync.models import (
    BaselineEntry,
    BaselineManifest,
    Classification,
    ManifestEntry,
)

A = "a" * 64
B = "b" * 64
C = "c" * 64


def _baseline(**digests: str) -> BaselineManifest:
    entries = {}
    for key, digest in digests.items():
        path = key.replace("__", "/") + ".md"
        entries[path] = BaselineEntry(
            path=path,
            digest=digest,
            source_ref="master",
            synced_at="2026-01-01T00:00:00+00:00",
        )
    return BaselineManifest(entries=entries)


# ---------------------------------------------------------------------------
# classify_path
# ---------------------------------------------------------------------------


class TestClassifyPath:
    @pytest.mark.parametrize(
        "local, baseline, remote, expected",
        [
            # All present
            (A, A, A, Classification.UNMODIFIED),
            (A, A, B, Classification.REMOTE_UPDATED),
            (B, A, A, Classification.LOCALLY_MODIFIED),
            (B, A, C, Classification.CONFLICTED),
            (B, A, B, Classification.UNMODIFIED),
            # Remote absent
            (A, A, None, Classification.REMOVED),
            (B, A, None, Classification.REMOVED),
            (None, A, None, Classification.REMOVED),
            # Baseline absent
            (None, None, A, Classification.NEW),
            (A, None, A, Classification.NEW),
            (B, None, A, Classification.NEW),
            (A, None, None, Classification.UNTRACKED),
            # Local absent with baseline and remote
            (None, A, A, Classification.LOCALLY_MODIFIED),
            (None, A, B, Classification.CONFLICTED),
        ],
    )
    def test_classification_table(self, local, baseline, remote, expected):
        assert classify_path(local, baseline, remote) == expected

    def test_absent_everywhere_raises(self):
        with pytest.raises(ValueError, match="absent everywhere"):
            classify_path(None, None, None)

    def test_unreadable_local_is_never_clean(self):
        assert classify_path(UNREADABLE, A, A) == Classification.LOCALLY_MODIFIED
        assert classify_path(UNREADABLE, A, B) == Classification.CONFLICTED

    def test_every_combination_classifies(self):
        """Each of the seven non-empty presence patterns yields a value."""
        values = (A, None)
        seen = set()
        for local in values:
            for baseline in values:
                for remote in values:
                    if local is baseline is remote is None:
                        continue
                    seen.add(classify_path(local, baseline, remote))
        assert Classification.UNMODIFIED in seen
        assert Classification.NEW in seen
        assert Classification.REMOVED in seen
        assert Classification.UNTRACKED in seen


# ---------------------------------------------------------------------------
# scan_local
# ---------------------------------------------------------------------------


class TestScanLocal:
    def test_missing_root_is_empty(self, tmp_path):
        assert DiffEngine().scan_local(tmp_path / "nope") == {}

    def test_hashes_nested_files(self, tmp_path, write_local):
        write_local(tmp_path, "tenets/a.md", "alpha")
        write_local(tmp_path, "bindings/core/b.md", "beta")
        tree = DiffEngine().scan_local(tmp_path)
        assert tree == {
            "bindings/core/b.md": hash_bytes(b"beta"),
            "tenets/a.md": hash_bytes(b"alpha"),
        }
        assert list(tree) == sorted(tree)

    def test_skips_hidden_entries(self, tmp_path, write_local):
        write_local(tmp_path, "tenets/.draft.md", "x")
        write_local(tmp_path, ".git/config", "x")
        write_local(tmp_path, "tenets/a.md", "a")
        assert list(DiffEngine().scan_local(tmp_path)) == ["tenets/a.md"]

    def test_skips_symlinks(self, tmp_path, write_local):
        real = write_local(tmp_path, "tenets/a.md", "a")
        (tmp_path / "tenets" / "link.md").symlink_to(real)
        assert list(DiffEngine().scan_local(tmp_path)) == ["tenets/a.md"]

    def test_unreadable_file_gets_placeholder(self, tmp_path, write_local, monkeypatch):
        write_local(tmp_path, "tenets/a.md", "a")

        def fail(path):
            raise PermissionError("denied")

        monkeypatch.setattr("leyline_sync.sync.diff.hash_file", fail)
        assert DiffEngine().scan_local(tmp_path) == {"tenets/a.md": UNREADABLE}


# ---------------------------------------------------------------------------
# DiffEngine.classify
# ---------------------------------------------------------------------------


class TestClassify:
    def test_union_of_all_three_sources(self):
        local = {"tenets/local.md": A, "tenets/shared.md": A}
        baseline = _baseline(tenets__shared=A, tenets__gone=A)
        remote = [
            ManifestEntry(path="tenets/shared.md", digest=B, category="core"),
            ManifestEntry(path="tenets/fresh.md", digest=C, category="core"),
        ]

        result = DiffEngine().classify(local, baseline, remote)

        assert list(result) == [
            "tenets/fresh.md",
            "tenets/gone.md",
            "tenets/local.md",
            "tenets/shared.md",
        ]
        assert result["tenets/fresh.md"].classification == Classification.NEW
        assert result["tenets/gone.md"].classification == Classification.REMOVED
        assert result["tenets/local.md"].classification == Classification.UNTRACKED
        shared = result["tenets/shared.md"]
        assert shared.classification == Classification.REMOTE_UPDATED
        assert (shared.local_digest, shared.baseline_digest, shared.remote_digest) == (
            A,
            A,
            B,
        )

    def test_accepts_mapping_manifest(self):
        entry = ManifestEntry(path="tenets/a.md", digest=A, category="core")
        result = DiffEngine().classify({}, BaselineManifest(), {entry.path: entry})
        assert result["tenets/a.md"].classification == Classification.NEW

    def test_category_attribution(self):
        baseline = BaselineManifest(
            entries={
                "bindings/categories/go/a.md": BaselineEntry(
                    path="bindings/categories/go/a.md",
                    digest=A,
                    source_ref="master",
                    synced_at="2026-01-01T00:00:00+00:00",
                    category="go",
                )
            }
        )
        local = {
            "bindings/categories/rust/x.md": B,
            "notes.md": C,
        }
        remote = [
            ManifestEntry(
                path="bindings/categories/ts/y.md", digest=C, category="typescript"
            )
        ]
        result = DiffEngine().classify(local, baseline, remote)
        # remote category wins, then baseline, then the path layout
        assert result["bindings/categories/ts/y.md"].category == "typescript"
        assert result["bindings/categories/go/a.md"].category == "go"
        assert result["bindings/categories/rust/x.md"].category == "rust"
        assert result["notes.md"].category is None
