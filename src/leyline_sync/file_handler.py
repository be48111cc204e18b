"""File handler module: hashing, atomic writes, encoding-aware reads, path safety.

Provides the file I/O infrastructure shared by the content cache, the
baseline store and the sync executor.  All writes go through
``atomic_write_bytes`` so a crash can never leave a truncated file behind.
"""

import hashlib
import os
import tempfile
from pathlib import Path

from charset_normalizer import from_bytes

from leyline_sync.validators import validate_relative_path

_CHUNK_SIZE = 65536

# =============================================================================
# Hashing
# =============================================================================


def hash_bytes(data: bytes) -> str:
    """Return the SHA-256 hex digest of *data*."""
    return hashlib.sha256(data).hexdigest()


def hash_file(path: Path) -> str:
    """Compute the SHA-256 hex digest of a file, reading it in chunks."""
    sha = hashlib.sha256()
    with open(path, "rb") as fh:
        for chunk in iter(lambda: fh.read(_CHUNK_SIZE), b""):
            sha.update(chunk)
    return sha.hexdigest()


# =============================================================================
# Path Safety
# =============================================================================


def resolve_under(root: Path, rel_path: str) -> Path:
    """Join a manifest path onto *root*, refusing anything that escapes it.

    Args:
        root: Directory the path must stay inside.
        rel_path: POSIX relative path from a manifest or baseline.

    Returns:
        Absolute path below *root*.

    Raises:
        ValueError: If the path is invalid or resolves outside *root*.
    """
    ok, reason = validate_relative_path(rel_path)
    if not ok:
        raise ValueError(reason)
    root_resolved = root.resolve()
    candidate = (root_resolved / rel_path).resolve()
    if not candidate.is_relative_to(root_resolved):
        raise ValueError(
            f"Path escapes content root: {rel_path} not under {root_resolved}"
        )
    return candidate


# =============================================================================
# File Read/Write
# =============================================================================


def atomic_write_bytes(path: Path, data: bytes) -> int:
    """Write *data* to *path* atomically, creating parent directories.

    The bytes go to a temporary file in the destination directory which
    is then renamed over *path* with ``os.replace``.  Readers observe
    either the old file or the complete new one.

    Returns:
        Number of bytes written.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(
        dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp"
    )
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        # Clean up temp file on any failure.
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise
    return len(data)


def remove_file(path: Path) -> bool:
    """Remove *path* if present.

    Returns:
        ``True`` if a file was removed, ``False`` if it was already absent.
    """
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    return True


def decode_text(raw: bytes) -> tuple[str | None, str]:
    """Decode raw bytes with automatic encoding detection.

    Strict UTF-8 is tried first; charset-normalizer only guesses the
    encoding of bytes that are not valid UTF-8.  Empty input decodes to
    ``""`` as UTF-8.

    Returns:
        Tuple of (text, encoding).  ``text`` is ``None`` when the bytes do
        not look like text in any known encoding.
    """
    if not raw:
        return ("", "utf-8")

    try:
        return (raw.decode("utf-8"), "utf-8")
    except UnicodeDecodeError:
        pass

    result = from_bytes(raw).best()
    if result is None:
        return (None, "binary")

    return (str(result), result.encoding)


def read_file_with_encoding(path: Path) -> tuple[str | None, str]:
    """Read a file and decode it with ``decode_text``."""
    return decode_text(path.read_bytes())
