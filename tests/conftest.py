"""Shared pytest fixtures for leyline-sync tests."""

from __future__ import annotations

from pathlib import Path

import pytest
from dotenv import load_dotenv

from leyline_sync.errors import FetchError, UnknownCategoryError, UnresolvableRef
from leyline_sync.file_handler import hash_bytes
from leyline_sync.sync.mapper import CORE_CATEGORY, normalize_categories
from leyline_sync.sync.models import ManifestEntry

load_dotenv()


def pytest_addoption(parser):
    """Add custom CLI options for test filtering."""
    parser.addoption(
        "--run-live",
        action="store_true",
        default=False,
        help="Run tests that need network access to the upstream source",
    )


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "live: mark test as requiring network access"
    )


def pytest_collection_modifyitems(config, items):
    """Skip live tests unless --run-live is passed."""
    if config.getoption("--run-live"):
        return
    skip_live = pytest.mark.skip(reason="need --run-live option to run")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


class FakeSource:
    """In-memory remote: a resolver and a blob fetcher in one.

    Files are ``{path: (bytes, category)}``.  Every ``fetch`` is recorded
    in ``fetch_calls``; paths in ``fail_paths`` raise ``FetchError``.
    """

    def __init__(self, refs: tuple[str, ...] = ("master",)) -> None:
        self.refs = set(refs)
        self.files: dict[str, tuple[bytes, str]] = {}
        self.fetch_calls: list[str] = []
        self.resolve_calls: list[tuple[str, list[str]]] = []
        self.fail_paths: set[str] = set()

    def put(self, path: str, content: str | bytes, category: str = "core"):
        data = content.encode("utf-8") if isinstance(content, str) else content
        self.files[path] = (data, category)
        return hash_bytes(data)

    def drop(self, path: str) -> None:
        del self.files[path]

    def resolve(self, source_ref: str, categories: list[str]):
        self.resolve_calls.append((source_ref, list(categories)))
        if source_ref not in self.refs:
            raise UnresolvableRef(source_ref, reason="no such ref")
        selected = normalize_categories(categories)
        available = {category for _, category in self.files.values()}
        unknown = [
            c for c in selected if c != CORE_CATEGORY and c not in available
        ]
        if unknown:
            raise UnknownCategoryError(
                unknown, source_ref, available=sorted(available)
            )
        return [
            ManifestEntry(path=path, digest=hash_bytes(data), category=cat)
            for path, (data, cat) in sorted(self.files.items())
            if cat in selected
        ]

    def categories(self, source_ref: str) -> list[str]:
        if source_ref not in self.refs:
            raise UnresolvableRef(source_ref, reason="no such ref")
        return sorted({category for _, category in self.files.values()})

    def fetch(self, source_ref: str, path: str) -> bytes:
        self.fetch_calls.append(path)
        if path in self.fail_paths:
            raise FetchError(path, "simulated outage")
        if path not in self.files:
            raise FetchError(path, "not found")
        return self.files[path][0]


@pytest.fixture
def fake_source() -> FakeSource:
    """An empty in-memory remote offering ref ``master``."""
    return FakeSource()


@pytest.fixture
def target_dir(tmp_path: Path) -> Path:
    """A consumer project directory."""
    target = tmp_path / "project"
    target.mkdir()
    return target


@pytest.fixture
def write_local():
    """Factory fixture: write a file below a content root."""

    def _write(root: Path, rel_path: str, content: str | bytes) -> Path:
        path = root / rel_path
        path.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, str):
            content = content.encode("utf-8")
        path.write_bytes(content)
        return path

    return _write
