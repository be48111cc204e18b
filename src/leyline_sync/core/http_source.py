"""HTTP content API source adapter.

Expects a static layout served over HTTP(S)::

    <base_url>/<ref>/manifest.json   {"entries": [{"path", "digest", "category"}]}
    <base_url>/<ref>/<path>          raw file bytes

Uses one ``requests.Session`` per thread since blobs are fetched from the
executor's worker pool.
"""

from __future__ import annotations

import logging
import threading
from urllib.parse import quote

import requests
from pydantic import ValidationError

from leyline_sync.errors import (
    FetchError,
    ResolutionError,
    UnknownCategoryError,
    UnresolvableRef,
)
from leyline_sync.sync.mapper import CORE_CATEGORY, normalize_categories
from leyline_sync.sync.models import ManifestEntry
from leyline_sync.validators import validate_relative_path, validate_source_ref

logger = logging.getLogger(__name__)

_CONNECT_TIMEOUT = 10


class HttpSource:
    """Resolve manifests and fetch blobs from an HTTP content API.

    Args:
        base_url: API root; a trailing slash is ignored.
        timeout: Read timeout in seconds for each request.
    """

    def __init__(self, base_url: str, *, timeout: float = 60.0) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._thread_local = threading.local()

    @property
    def session(self) -> requests.Session:
        """The current thread's session."""
        return self._get_session()

    def _get_session(self) -> requests.Session:
        if not hasattr(self._thread_local, "session"):
            self._thread_local.session = self._create_session()
        return self._thread_local.session

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        session.headers["User-Agent"] = "leyline-sync"
        return session

    def _url(self, source_ref: str, path: str) -> str:
        return f"{self.base_url}/{quote(source_ref, safe='')}/{quote(path)}"

    def _get(self, url: str) -> requests.Response:
        return self._get_session().get(
            url, timeout=(_CONNECT_TIMEOUT, self.timeout)
        )

    # ------------------------------------------------------------------
    # RemoteManifestResolver / BlobFetcher
    # ------------------------------------------------------------------

    def _offered(self, source_ref: str) -> list[ManifestEntry]:
        """Download and validate every entry of the manifest at *source_ref*."""
        ok, reason = validate_source_ref(source_ref)
        if not ok:
            raise UnresolvableRef(source_ref, reason=reason)

        url = self._url(source_ref, "manifest.json")
        try:
            response = self._get(url)
            if response.status_code == 404:
                raise UnresolvableRef(
                    source_ref, reason=f"no manifest at {url}"
                )
            response.raise_for_status()
            payload = response.json()
        except requests.RequestException as exc:
            raise ResolutionError(
                f"Cannot download manifest {url}: {exc}",
                context={"url": url, "source_ref": source_ref},
            ) from exc
        except ValueError as exc:
            raise ResolutionError(
                f"Manifest {url} is not valid JSON: {exc}",
                context={"url": url},
            ) from exc

        raw_entries = (
            payload.get("entries") if isinstance(payload, dict) else None
        )
        if not isinstance(raw_entries, list):
            raise ResolutionError(
                f"Manifest {url} has no 'entries' list",
                context={"url": url},
            )
        try:
            offered = [ManifestEntry.model_validate(e) for e in raw_entries]
        except ValidationError as exc:
            raise ResolutionError(
                f"Manifest {url} contains an invalid entry: "
                f"{exc.errors()[0]['msg']}",
                context={"url": url, "error_count": exc.error_count()},
            ) from exc
        return offered

    def resolve(
        self, source_ref: str, categories: list[str]
    ) -> list[ManifestEntry]:
        offered = self._offered(source_ref)
        selected = normalize_categories(categories)
        available = {e.category for e in offered}
        unknown = [
            c for c in selected if c != CORE_CATEGORY and c not in available
        ]
        if unknown:
            raise UnknownCategoryError(
                unknown, source_ref, available=sorted(available)
            )

        entries = sorted(
            (e for e in offered if e.category in selected),
            key=lambda e: e.path,
        )
        logger.info(
            "Remote manifest at '%s': %d files in %d categories",
            source_ref,
            len(entries),
            len(selected),
        )
        return entries

    def categories(self, source_ref: str) -> list[str]:
        return sorted({e.category for e in self._offered(source_ref)})

    def fetch(self, source_ref: str, path: str) -> bytes:
        ok, reason = validate_relative_path(path)
        if not ok:
            raise FetchError(path, reason)
        url = self._url(source_ref, path)
        try:
            response = self._get(url)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise FetchError(path, str(exc), context={"url": url}) from exc
        return response.content
