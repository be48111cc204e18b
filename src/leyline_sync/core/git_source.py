"""Git-backed source adapter.

Keeps a bare mirror of the upstream repository under the cache directory
and answers manifest and blob requests with git plumbing commands:

- ``git fetch <url> <ref>`` brings the requested reference into the
  mirror (skipped when a full commit id is already present locally).
- ``git ls-tree -r`` enumerates the files below ``docs/``.
- ``git cat-file --batch`` reads blob bytes so SHA-256 digests can be
  computed for the manifest.
- ``git cat-file blob <commit>:<path>`` serves single-file fetches.

Every git invocation runs through ``subprocess.run`` with a timeout.  A
timeout or a git that cannot be started is a ``ResolutionError`` while
resolving and a ``FetchError`` while fetching one blob.
"""

from __future__ import annotations

import hashlib
import logging
import re
import shutil
import subprocess
import threading
from pathlib import Path

from leyline_sync.errors import (
    FetchError,
    ResolutionError,
    UnknownCategoryError,
    UnresolvableRef,
)
from leyline_sync.file_handler import hash_bytes
from leyline_sync.sync.mapper import (
    CORE_CATEGORY,
    UPSTREAM_ROOT,
    CategoryMapper,
    normalize_categories,
)
from leyline_sync.sync.models import ManifestEntry
from leyline_sync.validators import validate_relative_path, validate_source_ref

logger = logging.getLogger(__name__)

_FULL_SHA_RE = re.compile(r"^[0-9a-f]{40}$")
_MISSING_REF_MARKERS = (
    "couldn't find remote ref",
    "not our ref",
    "no such ref",
    "unknown revision",
    "invalid refspec",
)


def _mirror_name(url: str) -> str:
    return hashlib.sha256(url.encode("utf-8")).hexdigest()[:16] + ".git"


class GitSource:
    """Resolve manifests and fetch blobs from a git repository.

    Args:
        url: Anything ``git fetch`` accepts (https URL, ssh URL, local
            path, ``file://`` URL).
        mirror_root: Directory holding bare mirrors, one per URL.
        mapper: Category mapper for the upstream layout.
        timeout: Timeout in seconds for each git command.
    """

    def __init__(
        self,
        url: str,
        *,
        mirror_root: Path,
        mapper: CategoryMapper | None = None,
        timeout: float = 60.0,
    ) -> None:
        self.url = url
        self.mirror_dir = Path(mirror_root).expanduser() / _mirror_name(url)
        self.mapper = mapper or CategoryMapper()
        self.timeout = timeout
        self._commits: dict[str, str] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Git plumbing
    # ------------------------------------------------------------------

    def _git(
        self, *args: str, git_dir: bool = True, input: bytes | None = None
    ) -> subprocess.CompletedProcess:
        """Run ``git <args>``.

        Raises:
            ResolutionError: git timed out or could not be started.
        """
        cmd = ["git"]
        if git_dir:
            cmd += ["--git-dir", str(self.mirror_dir)]
        cmd += args
        logger.debug("Running %s", " ".join(cmd))
        try:
            return subprocess.run(
                cmd,
                input=input,
                capture_output=True,
                timeout=self.timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            raise ResolutionError(
                f"git {args[0]} timed out after {self.timeout}s",
                context={"url": self.url, "args": list(args)},
            ) from exc
        except OSError as exc:
            raise ResolutionError(
                f"Cannot run git {args[0]}: {exc}",
                context={"url": self.url, "args": list(args)},
            ) from exc

    def _ensure_mirror(self) -> None:
        if shutil.which("git") is None:
            raise ResolutionError(
                "git executable not found; install git or use "
                "--source-kind http"
            )
        if (self.mirror_dir / "HEAD").is_file():
            return
        try:
            self.mirror_dir.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ResolutionError(
                f"Cannot create git mirror at {self.mirror_dir}: {exc}",
                context={"mirror": str(self.mirror_dir)},
            ) from exc
        result = self._git(
            "init", "--bare", "--quiet", str(self.mirror_dir), git_dir=False
        )
        if result.returncode != 0:
            raise ResolutionError(
                f"Cannot create git mirror at {self.mirror_dir}: "
                f"{result.stderr.decode(errors='replace').strip()}",
                context={"mirror": str(self.mirror_dir)},
            )
        logger.info("Created git mirror %s for %s", self.mirror_dir, self.url)

    def _local_commit(self, ref: str) -> str | None:
        result = self._git("rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}")
        if result.returncode != 0:
            return None
        return result.stdout.decode().strip() or None

    def _resolve_commit(self, source_ref: str) -> str:
        """Fetch *source_ref* into the mirror and return its commit id."""
        with self._lock:
            cached = self._commits.get(source_ref)
            if cached is not None:
                return cached

            ok, reason = validate_source_ref(source_ref)
            if not ok:
                raise UnresolvableRef(source_ref, reason=reason)

            self._ensure_mirror()

            commit = None
            if _FULL_SHA_RE.match(source_ref):
                commit = self._local_commit(source_ref)

            if commit is None:
                result = self._git(
                    "fetch", "--quiet", "--no-tags", self.url, source_ref
                )
                if result.returncode != 0:
                    stderr = result.stderr.decode(errors="replace").strip()
                    if any(m in stderr.lower() for m in _MISSING_REF_MARKERS):
                        raise UnresolvableRef(source_ref, reason=stderr)
                    raise ResolutionError(
                        f"git fetch of '{source_ref}' failed: {stderr}",
                        context={"url": self.url, "source_ref": source_ref},
                    )
                commit = self._local_commit("FETCH_HEAD")
                if commit is None:
                    raise UnresolvableRef(
                        source_ref, reason="fetched ref is not a commit"
                    )

            logger.info("Resolved '%s' to commit %s", source_ref, commit[:12])
            self._commits[source_ref] = commit
            return commit

    def _list_blobs(self, commit: str) -> dict[str, str]:
        """Return ``{upstream_path: blob_id}`` for regular files in docs/."""
        result = self._git(
            "ls-tree", "-r", "-z", "--full-tree", commit, "--", UPSTREAM_ROOT
        )
        if result.returncode != 0:
            raise ResolutionError(
                f"git ls-tree failed for {commit}: "
                f"{result.stderr.decode(errors='replace').strip()}"
            )
        blobs: dict[str, str] = {}
        for record in result.stdout.split(b"\0"):
            if not record:
                continue
            meta, _, raw_path = record.partition(b"\t")
            mode, obj_type, oid = meta.decode().split()
            # Symlinks (120000) and submodules are not distributed.
            if obj_type != "blob" or mode not in ("100644", "100755"):
                continue
            blobs[raw_path.decode("utf-8")] = oid
        return blobs

    def _read_blobs(self, oids: list[str]) -> dict[str, bytes]:
        """Read many blobs with one ``git cat-file --batch`` call."""
        if not oids:
            return {}
        request = "".join(f"{oid}\n" for oid in oids).encode()
        result = self._git("cat-file", "--batch", input=request)
        if result.returncode != 0:
            raise ResolutionError(
                "git cat-file failed: "
                f"{result.stderr.decode(errors='replace').strip()}"
            )
        out = result.stdout
        blobs: dict[str, bytes] = {}
        pos = 0
        while pos < len(out):
            header_end = out.index(b"\n", pos)
            header = out[pos:header_end].decode().split()
            if len(header) != 3:
                raise ResolutionError(
                    f"Unexpected git cat-file output: {' '.join(header)}"
                )
            oid, _, size = header
            start = header_end + 1
            blobs[oid] = out[start : start + int(size)]
            pos = start + int(size) + 1
        return blobs

    # ------------------------------------------------------------------
    # RemoteManifestResolver / BlobFetcher
    # ------------------------------------------------------------------

    def _offered(self, commit: str) -> dict[str, tuple[str, str]]:
        """Return ``{content_path: (blob_id, category)}`` at *commit*."""
        found: dict[str, tuple[str, str]] = {}
        for upstream, oid in self._list_blobs(commit).items():
            content_path = self.mapper.to_content_path(upstream)
            if content_path is None or not self.mapper.is_distributed(
                content_path
            ):
                continue
            category = self.mapper.category_for(content_path)
            found[content_path] = (oid, category)
        return found

    def resolve(
        self, source_ref: str, categories: list[str]
    ) -> list[ManifestEntry]:
        commit = self._resolve_commit(source_ref)
        selected = normalize_categories(categories)
        found = self._offered(commit)

        available = {category for _, category in found.values()}
        unknown = [
            c for c in selected if c != CORE_CATEGORY and c not in available
        ]
        if unknown:
            raise UnknownCategoryError(
                unknown, source_ref, available=sorted(available)
            )

        wanted = {
            path: value
            for path, value in found.items()
            if value[1] in selected
        }
        contents = self._read_blobs(sorted({oid for oid, _ in wanted.values()}))
        entries = [
            ManifestEntry(
                path=path,
                digest=hash_bytes(contents[oid]),
                category=category,
            )
            for path, (oid, category) in sorted(wanted.items())
        ]
        logger.info(
            "Remote manifest at '%s': %d files in %d categories",
            source_ref,
            len(entries),
            len(selected),
        )
        return entries

    def categories(self, source_ref: str) -> list[str]:
        commit = self._resolve_commit(source_ref)
        found = self._offered(commit)
        return sorted({category for _, category in found.values()})

    def fetch(self, source_ref: str, path: str) -> bytes:
        ok, reason = validate_relative_path(path)
        if not ok:
            raise FetchError(path, reason)
        try:
            commit = self._resolve_commit(source_ref)
            object_name = f"{commit}:{self.mapper.to_upstream_path(path)}"
            result = self._git("cat-file", "blob", object_name)
        except ResolutionError as exc:
            raise FetchError(path, exc.message) from exc
        if result.returncode != 0:
            raise FetchError(
                path, result.stderr.decode(errors="replace").strip()
            )
        return result.stdout
