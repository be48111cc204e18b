"""
Hierarchical configuration loader for leyline_sync.

Provides convention-based config file discovery, YAML !include support,
env var interpolation, and hierarchical merge with "project wins" semantics.

Usage:
    from leyline_sync.config_loader import load_hierarchical_config

    config = load_hierarchical_config(Path("."))
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

CONFIG_DIRNAME = ".leyline"

# ---------------------------------------------------------------------------
# 1. Env var interpolation
# ---------------------------------------------------------------------------

# Matches ${VAR} and ${VAR:-default}
_ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+?)(?::-(.*?))?\}")


def interpolate_env_vars(value: str) -> str:
    """Replace ``${VAR}`` and ``${VAR:-default}`` patterns with env values.

    * ``${VAR}`` is replaced with ``os.environ.get(VAR, "")``.
    * ``${VAR:-default}`` uses *default* when VAR is unset or empty.
    * Literal ``${`` with no closing ``}`` is left untouched.
    """

    def _replace(match: re.Match) -> str:
        env_val = os.environ.get(match.group(1))
        if env_val:
            return env_val
        return match.group(2) or ""

    return _ENV_VAR_PATTERN.sub(_replace, value)


def _interpolate_recursive(obj: Any) -> Any:
    """Walk a nested dict/list and interpolate env vars in all strings."""
    if isinstance(obj, str):
        return interpolate_env_vars(obj)
    if isinstance(obj, dict):
        return {k: _interpolate_recursive(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_interpolate_recursive(item) for item in obj]
    return obj


# ---------------------------------------------------------------------------
# 2. YAML !include support (dedicated SafeLoader subclass)
# ---------------------------------------------------------------------------


class ConfigLoader(yaml.SafeLoader):
    """YAML SafeLoader subclass with ``!include`` support.

    Uses a dedicated subclass so the global ``yaml.SafeLoader`` is never
    modified.  Tracks an *include stack* per-load to detect circular includes.
    """


def _include_constructor(
    loader: ConfigLoader, node: yaml.ScalarNode
) -> Any:
    """Handle ``!include path/to/file.yml`` directives."""
    include_path_str: str = loader.construct_scalar(node)

    # Relative includes resolve against the including file
    include_path = Path(include_path_str)
    if not include_path.is_absolute():
        include_path = Path(loader.name).resolve().parent / include_path
    include_path = include_path.resolve()

    include_stack: list[Path] = getattr(loader, "_include_stack", [])
    if include_path in include_stack:
        chain = " -> ".join(
            str(p) for p in [*include_stack, include_path]
        )
        raise ConfigurationError(f"Circular include detected: {chain}")

    if not include_path.exists():
        raise ConfigurationError(
            f"Include file not found: {include_path} "
            f"(referenced from {Path(loader.name).resolve()})"
        )

    return _load_yaml_with_includes(
        include_path, _include_stack=[*include_stack, include_path]
    )


ConfigLoader.add_constructor("!include", _include_constructor)


def _load_yaml_with_includes(
    path: Path,
    *,
    _include_stack: list[Path] | None = None,
) -> Any:
    """Load a YAML file using the ``ConfigLoader`` (with ``!include``)."""
    path = path.resolve()
    if _include_stack is None:
        _include_stack = [path]

    with open(path, "r", encoding="utf-8") as fh:
        loader = ConfigLoader(fh)
        loader._include_stack = _include_stack  # type: ignore[attr-defined]
        try:
            return loader.get_single_data()
        finally:
            loader.dispose()


# ---------------------------------------------------------------------------
# 3. Convention-based file discovery
# ---------------------------------------------------------------------------


def discover_config_files(project_dir: Path | None = None) -> list[Path]:
    """Return existing config file paths in precedence order (highest first).

    Search order:
        1. ``LEYLINE_CONFIG`` env var (explicit single path).
        2. ``.leyline/config.yml`` in the project directory.
        3. ``.leyline/config.yaml`` in the project directory.
        4. ``~/.config/leyline/config.yml`` (XDG global)

    Only paths that exist on disk are returned.

    Args:
        project_dir: Consumer directory; defaults to the CWD.
    """
    candidates: list[Path] = []

    env_path = os.environ.get("LEYLINE_CONFIG")
    if env_path:
        candidates.append(Path(env_path).expanduser().resolve())

    project = project_dir or Path.cwd()
    candidates.append(project / CONFIG_DIRNAME / "config.yml")
    candidates.append(project / CONFIG_DIRNAME / "config.yaml")

    candidates.append(Path.home() / ".config" / "leyline" / "config.yml")

    return [p for p in candidates if p.exists()]


# ---------------------------------------------------------------------------
# 3a. Config bootstrapping
# ---------------------------------------------------------------------------

_STARTER_CONFIG = """\
# leyline-sync configuration
#
# Values can also be set via environment variables:
#   LEYLINE_SOURCE_URL, LEYLINE_SOURCE_REF, LEYLINE_CATEGORIES,
#   LEYLINE_CACHE_DIR, LEYLINE_NO_CACHE
#
# source:
#   kind: git                 # git or http
#   url: https://github.com/phrazzld/leyline.git
#   ref: master
#
# sync:
#   categories:               # core is always included
#     - go
#     - typescript
#   docs_path: docs/leyline
#   exclude: []
#   max_workers: 4
#   fetch_timeout: 60
#
# cache:
#   enabled: true
#   dir: ~/.cache/leyline
#
# logging:
#   level: INFO
#   file: null
"""


def resolve_config_path(project_dir: Path | None = None) -> Path:
    """Return the single config file path that should be used.

    If config files already exist (per ``discover_config_files()``), return
    the highest-precedence one (first in the list).

    If no config files exist, return the default project-level path:
    ``<project>/.leyline/config.yml``.

    This does NOT create the file -- use ``ensure_config()`` for that.
    """
    existing = discover_config_files(project_dir)
    if existing:
        return existing[0]
    return (project_dir or Path.cwd()) / CONFIG_DIRNAME / "config.yml"


def ensure_config(
    target: Path | None = None, project_dir: Path | None = None
) -> Path:
    """Ensure a config file exists, creating directory and starter file if needed.

    If a config file already exists (per ``discover_config_files()``),
    return its path without modification.

    Args:
        target: Explicit path to create. If ``None``, uses
            ``resolve_config_path()``.
        project_dir: Consumer directory; defaults to the CWD.

    Returns:
        Path to the config file (existing or newly created).
    """
    existing = discover_config_files(project_dir)
    if existing:
        logger.debug("Config file already exists: %s", existing[0])
        return existing[0]

    config_path = target or resolve_config_path(project_dir)
    config_path.parent.mkdir(parents=True, exist_ok=True)

    config_path.write_text(_STARTER_CONFIG, encoding="utf-8")
    logger.info("Created starter config: %s", config_path)

    return config_path


# ---------------------------------------------------------------------------
# 4. Hierarchical merge
# ---------------------------------------------------------------------------


def load_hierarchical_config(
    project_dir: Path | None = None,
) -> dict[str, Any]:
    """Load and merge all discovered config files.

    Merge strategy ("project wins"):
        Files are loaded from lowest precedence to highest.  Each file's
        top-level keys **replace** (not deep-merge) those from earlier files.

    After merging, env var interpolation is applied to all string values.

    Returns an empty dict when no config files exist (zero-config).

    Raises:
        ConfigurationError: If a config file is not valid YAML.
    """
    paths = discover_config_files(project_dir)

    if not paths:
        logger.debug("No config files found, using zero-config defaults")
        return {}

    merged: dict[str, Any] = {}
    for path in reversed(paths):
        logger.debug("Loading config: %s", path)
        try:
            data = _load_yaml_with_includes(path)
        except yaml.YAMLError as exc:
            raise ConfigurationError(
                f"Config file {path} is not valid YAML: {exc}",
                context={"config_file": str(path)},
            ) from exc
        except OSError as exc:
            raise ConfigurationError(
                f"Cannot read config file {path}: {exc}",
                context={"config_file": str(path)},
            ) from exc

        if isinstance(data, dict):
            # Shallow merge: top-level keys from higher-precedence win
            merged.update(data)
        elif data is not None:
            logger.warning(
                "Config file %s has non-dict root (%s), skipping",
                path,
                type(data).__name__,
            )

    return _interpolate_recursive(merged)
