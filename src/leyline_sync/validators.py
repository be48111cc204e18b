"""
Input validation functions for leyline-sync.

Provides validation for relative content paths, source references,
category names and digests before they reach the filesystem or a git
subprocess.
"""

import re

_DIGEST_PATTERN = re.compile(r"^[0-9a-f]{64}$")
_CATEGORY_PATTERN = re.compile(r"^[a-z0-9][a-z0-9_-]*$")


# ---------------------------------------------------------------------------
# Error message formatting helpers
# ---------------------------------------------------------------------------


def format_validation_error(field_name: str, reason: str) -> str:
    """
    Generate consistent error message for validation failures.

    Args:
        field_name: Human-readable field name (e.g., "Path")
        reason: Description of validation failure (e.g., "cannot be empty")

    Returns:
        Formatted error message string
    """
    return f"{field_name} {reason}"


def validate_relative_path(path: str) -> tuple[bool, str]:
    """
    Validate a manifest path relative to the content root.

    Args:
        path: POSIX-style relative path (e.g. ``tenets/simplicity.md``)

    Returns:
        Tuple of (is_valid, error_message).
        Returns (True, "") if valid, (False, reason) if invalid.

    Validation rules:
        - Cannot be empty or whitespace-only
        - Cannot be absolute
        - Cannot contain backslashes
        - Cannot contain '..' segments (path traversal protection)
        - Cannot have empty path segments (e.g., 'a//b')
    """
    if not path or not path.strip():
        return (False, format_validation_error("Path", "cannot be empty"))

    if path.startswith("/"):
        return (
            False,
            format_validation_error("Path", f"'{path}' must be relative"),
        )

    if "\\" in path:
        return (
            False,
            format_validation_error(
                "Path", f"'{path}' cannot contain backslashes"
            ),
        )

    segments = path.split("/")
    if ".." in segments or "." in segments:
        return (
            False,
            format_validation_error(
                "Path", f"'{path}' cannot contain '.' or '..' segments"
            ),
        )

    if "" in segments:
        return (
            False,
            format_validation_error(
                "Path", f"'{path}' cannot have empty path segments"
            ),
        )

    return (True, "")


def validate_source_ref(ref: str) -> tuple[bool, str]:
    """
    Validate a source reference (branch, tag or commit).

    Validation rules:
        - Cannot be empty
        - Cannot start with '-' (would be read as a git option)
        - Cannot contain whitespace
        - Cannot contain '..' (revision ranges and traversal)
    """
    if not ref or not ref.strip():
        return (
            False,
            format_validation_error("Source reference", "cannot be empty"),
        )

    if ref.startswith("-"):
        return (
            False,
            format_validation_error(
                "Source reference", f"'{ref}' cannot start with '-'"
            ),
        )

    if any(ch.isspace() for ch in ref):
        return (
            False,
            format_validation_error(
                "Source reference", f"'{ref}' cannot contain whitespace"
            ),
        )

    if ".." in ref:
        return (
            False,
            format_validation_error(
                "Source reference", f"'{ref}' cannot contain '..'"
            ),
        )

    return (True, "")


def validate_category_name(name: str) -> tuple[bool, str]:
    """
    Validate a category name.

    Category names are lower-case identifiers such as ``go``,
    ``typescript`` or ``database``.
    """
    if not name or not name.strip():
        return (
            False,
            format_validation_error("Category", "cannot be empty"),
        )

    if not _CATEGORY_PATTERN.match(name):
        return (
            False,
            format_validation_error(
                "Category",
                f"'{name}' must be lower-case letters, digits, '-' or '_'",
            ),
        )

    return (True, "")


def is_valid_digest(digest: str) -> bool:
    """Return True if *digest* is a lower-case SHA-256 hex string."""
    return bool(_DIGEST_PATTERN.match(digest or ""))
