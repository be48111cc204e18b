"""Baseline persistence layer.

Manages the JSON baseline file that records, for every path the engine
has written into a target directory, the digest and source reference of
the bytes written.  The baseline lives in ``<target>/.leyline/`` -- next
to, not inside, the synced content tree -- so it travels with the
consumer's checkout.

Key design choices:

* **Atomic writes** -- ``save()`` writes to a temp file then calls
  ``os.replace()`` so an interrupted sync never leaves a half-written
  baseline.
* **No guessing** -- a baseline that cannot be parsed or validated raises
  ``CorruptBaselineError``.  Silently starting from an empty baseline
  would make every local edit look like an untracked file and get it
  overwritten.
* **Single writer** -- ``lock()`` takes an exclusive lock file so two
  processes syncing the same target fail fast instead of interleaving.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path

from pydantic import ValidationError

from leyline_sync.errors import (
    ConcurrentSyncError,
    ConfigurationError,
    CorruptBaselineError,
)
from leyline_sync.file_handler import atomic_write_bytes, remove_file
from leyline_sync.sync.models import BaselineEntry, BaselineManifest

logger = logging.getLogger(__name__)

STATE_DIRNAME = ".leyline"
BASELINE_FILENAME = "baseline.json"
LOCK_FILENAME = "sync.lock"
SCHEMA_VERSION = 1


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _pid_alive(pid: int) -> bool:
    """Return True if a process with *pid* appears to be running."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but owned by someone else.
        return True
    except OSError:
        return True
    return True


def _read_pid(path: Path) -> int | None:
    try:
        return int(path.read_text(encoding="utf-8").strip())
    except (OSError, ValueError):
        return None


class BaselineLock:
    """Exclusive per-target lock file.

    Created with ``O_CREAT | O_EXCL`` and holding the owner's PID.  A lock
    left behind by a process that is no longer running is reclaimed by
    renaming it aside first, so of several processes reclaiming the same
    stale lock only one removes it.
    """

    def __init__(self, lock_path: Path) -> None:
        self.lock_path = lock_path
        self._held = False

    def acquire(self) -> None:
        try:
            self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise self._unwritable(exc) from exc
        for attempt in range(2):
            try:
                fd = os.open(
                    self.lock_path,
                    os.O_CREAT | os.O_EXCL | os.O_WRONLY,
                    0o644,
                )
            except FileExistsError:
                owner = _read_pid(self.lock_path)
                if (
                    attempt == 0
                    and owner is not None
                    and not _pid_alive(owner)
                    and self._reclaim(owner)
                ):
                    continue
                raise ConcurrentSyncError(
                    "Another leyline-sync process is syncing this target"
                    + (f" (pid {owner})" if owner is not None else ""),
                    context={"lock_file": str(self.lock_path)},
                ) from None
            except OSError as exc:
                raise self._unwritable(exc) from exc
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    fh.write(f"{os.getpid()}\n")
            except OSError as exc:
                remove_file(self.lock_path)
                raise self._unwritable(exc) from exc
            self._held = True
            logger.debug("Acquired sync lock %s", self.lock_path)
            return

    def _reclaim(self, owner: int) -> bool:
        """Remove the lock of dead *owner*.

        Returns:
            ``False`` if the lock changed hands since *owner* was read.
        """
        aside = self.lock_path.with_name(
            f"{self.lock_path.name}.{os.getpid()}.stale"
        )
        try:
            os.rename(self.lock_path, aside)
        except FileNotFoundError:
            # Another process already reclaimed it.
            return True
        except OSError as exc:
            raise self._unwritable(exc) from exc

        taken = _read_pid(aside)
        if taken == owner:
            logger.warning(
                "Removed stale sync lock %s (pid %d is not running)",
                self.lock_path,
                owner,
            )
            remove_file(aside)
            return True

        # Moved a fresh lock aside; put it back unless someone else has
        # created one in the meantime.
        try:
            os.link(aside, self.lock_path)
        except OSError as exc:
            logger.warning(
                "Could not restore sync lock %s: %s", self.lock_path, exc
            )
        remove_file(aside)
        return False

    def _unwritable(self, exc: OSError) -> ConfigurationError:
        return ConfigurationError(
            f"Cannot create sync lock {self.lock_path}: {exc}",
            context={"lock_file": str(self.lock_path)},
        )

    def release(self) -> None:
        if self._held:
            remove_file(self.lock_path)
            self._held = False
            logger.debug("Released sync lock %s", self.lock_path)

    def __enter__(self) -> BaselineLock:
        self.acquire()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()


class BaselineStore:
    """Load, save and edit the baseline manifest of a target directory."""

    # ------------------------------------------------------------------
    # Locations
    # ------------------------------------------------------------------

    @staticmethod
    def state_dir(target_dir: Path) -> Path:
        return Path(target_dir) / STATE_DIRNAME

    def baseline_path(self, target_dir: Path) -> Path:
        """Return the path to the baseline file for *target_dir*."""
        return self.state_dir(target_dir) / BASELINE_FILENAME

    def lock(self, target_dir: Path) -> BaselineLock:
        """Return an (unacquired) lock for *target_dir*."""
        return BaselineLock(self.state_dir(target_dir) / LOCK_FILENAME)

    def exists(self, target_dir: Path) -> bool:
        return self.baseline_path(target_dir).is_file()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load(self, target_dir: Path) -> BaselineManifest:
        """Load the baseline manifest from disk.

        Returns:
            The manifest.  If the file does not exist (first sync) an
            empty manifest is returned.

        Raises:
            CorruptBaselineError: If the file exists but cannot be parsed
                or fails validation.
            ConfigurationError: If the file exists but cannot be read.
        """
        path = self.baseline_path(target_dir)
        if not path.exists():
            return BaselineManifest(version=SCHEMA_VERSION)

        try:
            raw = path.read_bytes()
        except OSError as exc:
            raise ConfigurationError(
                f"Cannot read baseline {path}: {exc}",
                context={"baseline_file": str(path)},
            ) from exc

        try:
            data = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise CorruptBaselineError(
                f"Baseline {path} is not valid JSON: {exc}",
                baseline_file=str(path),
            ) from exc

        if not isinstance(data, dict):
            raise CorruptBaselineError(
                f"Baseline {path} must contain a JSON object",
                baseline_file=str(path),
            )

        version = data.get("version")
        if not isinstance(version, int):
            raise CorruptBaselineError(
                f"Baseline {path} has no schema version",
                baseline_file=str(path),
            )
        if version > SCHEMA_VERSION:
            raise CorruptBaselineError(
                f"Baseline {path} has schema version {version}, "
                f"this leyline-sync supports <= {SCHEMA_VERSION}",
                baseline_file=str(path),
            )

        try:
            manifest = BaselineManifest.model_validate(data)
        except ValidationError as exc:
            first = exc.errors()[0]
            location = ".".join(str(part) for part in first["loc"])
            raise CorruptBaselineError(
                f"Baseline {path} failed validation at '{location}': "
                f"{first['msg']}",
                baseline_file=str(path),
                context={"error_count": exc.error_count()},
            ) from exc

        logger.debug(
            "Loaded baseline %s (%d entries)", path, len(manifest.entries)
        )
        return manifest

    def save(self, target_dir: Path, manifest: BaselineManifest) -> None:
        """Persist the baseline manifest atomically.

        Creates the state directory if needed and stamps ``last_sync``
        with the current UTC time before writing.

        Raises:
            ConfigurationError: If the baseline cannot be written.
        """
        manifest.version = SCHEMA_VERSION
        manifest.last_sync = _utc_now()
        payload = json.dumps(
            manifest.model_dump(mode="json"), indent=2, sort_keys=True
        )
        path = self.baseline_path(target_dir)
        try:
            atomic_write_bytes(path, (payload + "\n").encode("utf-8"))
        except OSError as exc:
            raise ConfigurationError(
                f"Cannot save baseline {path}: {exc}",
                context={"baseline_file": str(path)},
            ) from exc
        logger.debug(
            "Saved baseline %s (%d entries)", path, len(manifest.entries)
        )

    # ------------------------------------------------------------------
    # Entry helpers
    # ------------------------------------------------------------------

    def upsert(
        self,
        manifest: BaselineManifest,
        path: str,
        digest: str,
        source_ref: str,
        category: str | None = None,
    ) -> BaselineEntry:
        """Insert or replace the entry for *path*.  Mutates *manifest*."""
        entry = BaselineEntry(
            path=path,
            digest=digest,
            source_ref=source_ref,
            synced_at=_utc_now(),
            category=category,
        )
        manifest.entries[path] = entry
        return entry

    def remove(self, manifest: BaselineManifest, path: str) -> None:
        """Remove *path* from the manifest.  No-op if not present."""
        manifest.entries.pop(path, None)
