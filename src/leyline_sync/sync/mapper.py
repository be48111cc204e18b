"""Category mapper for the upstream content layout.

Translates between upstream repository paths, content paths (relative to
the consumer's content root) and categories.

Upstream layout::

    docs/tenets/**                         -> category "core"
    docs/bindings/core/**                  -> category "core"
    docs/bindings/categories/<name>/**     -> category "<name>"

Content paths drop the leading ``docs/`` so that
``docs/bindings/categories/go/errors.md`` lands at
``<target>/docs/leyline/bindings/categories/go/errors.md``.

Mapping resolution:

1. **Extension check** -- only distributed extensions (``.md``) are kept.
2. **Exclude check** -- paths matching any exclude glob are skipped.
3. **Category** -- derived from the directory prefix; paths outside the
   known prefixes are not distributed.
"""

from __future__ import annotations

import fnmatch
from collections.abc import Iterable
from pathlib import PurePosixPath

CORE_CATEGORY = "core"
UPSTREAM_ROOT = "docs"

_TENETS_PREFIX = "tenets/"
_CORE_BINDINGS_PREFIX = "bindings/core/"
_CATEGORY_BINDINGS_PREFIX = "bindings/categories/"


def normalize_categories(categories: Iterable[str]) -> list[str]:
    """Return a sorted, de-duplicated category list that includes ``core``."""
    selected = {c.strip() for c in categories if c and c.strip()}
    selected.add(CORE_CATEGORY)
    return sorted(selected)


class CategoryMapper:
    """Map upstream and content paths to categories.

    Args:
        exclude: Glob patterns (matched against content paths) to skip.
        extensions: File suffixes that are distributed.
    """

    def __init__(
        self,
        exclude: list[str] | None = None,
        extensions: tuple[str, ...] = (".md",),
    ) -> None:
        self._exclude = list(exclude or [])
        self._extensions = extensions

    # ------------------------------------------------------------------
    # Path translation
    # ------------------------------------------------------------------

    def to_content_path(self, upstream_path: str) -> str | None:
        """Strip the upstream ``docs/`` root, or ``None`` if outside it."""
        prefix = UPSTREAM_ROOT + "/"
        if not upstream_path.startswith(prefix):
            return None
        return upstream_path[len(prefix) :]

    def to_upstream_path(self, content_path: str) -> str:
        return f"{UPSTREAM_ROOT}/{content_path}"

    # ------------------------------------------------------------------
    # Categories
    # ------------------------------------------------------------------

    def category_for(self, content_path: str) -> str | None:
        """Return the category of a content path, or ``None``."""
        if content_path.startswith(_TENETS_PREFIX):
            return CORE_CATEGORY
        if content_path.startswith(_CORE_BINDINGS_PREFIX):
            return CORE_CATEGORY
        if content_path.startswith(_CATEGORY_BINDINGS_PREFIX):
            rest = content_path[len(_CATEGORY_BINDINGS_PREFIX) :]
            name, sep, tail = rest.partition("/")
            if sep and name and tail:
                return name
        return None

    def is_excluded(self, content_path: str) -> bool:
        return any(
            fnmatch.fnmatch(content_path, pattern)
            for pattern in self._exclude
        )

    def is_distributed(self, content_path: str) -> bool:
        """True if the path is a distributed file under a known category."""
        if PurePosixPath(content_path).suffix not in self._extensions:
            return False
        if self.is_excluded(content_path):
            return False
        return self.category_for(content_path) is not None

    def upstream_prefixes(self, categories: Iterable[str]) -> list[str]:
        """Upstream directory prefixes that hold the given categories.

        ``core`` is always included.
        """
        prefixes = [
            f"{UPSTREAM_ROOT}/{_TENETS_PREFIX}",
            f"{UPSTREAM_ROOT}/{_CORE_BINDINGS_PREFIX}",
        ]
        for category in normalize_categories(categories):
            if category == CORE_CATEGORY:
                continue
            prefixes.append(
                f"{UPSTREAM_ROOT}/{_CATEGORY_BINDINGS_PREFIX}{category}/"
            )
        return prefixes

    def available_categories(self, content_paths: Iterable[str]) -> set[str]:
        """Collect the categories present in a set of content paths."""
        found: set[str] = set()
        for path in content_paths:
            category = self.category_for(path)
            if category is not None:
                found.add(category)
        return found
