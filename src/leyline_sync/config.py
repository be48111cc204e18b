"""Runtime configuration for leyline-sync.

Resolves the settings of one run from CLI args, environment variables,
.env files, and YAML config file values.

Precedence (highest to lowest):
    CLI args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    LEYLINE_SOURCE_KIND: Source adapter, ``git`` or ``http`` (default: git)
    LEYLINE_SOURCE_URL: Repository URL or content API base URL
    LEYLINE_SOURCE_REF: Branch, tag or commit (default: master)
    LEYLINE_CATEGORIES: Comma-separated categories (core is implied)
    LEYLINE_CACHE_DIR: Blob cache directory (default: ~/.cache/leyline)
    LEYLINE_NO_CACHE: Disable the blob cache (optional, default: false)
    LEYLINE_MAX_WORKERS: Parallel fetch/write workers (optional, default: 4)
    LEYLINE_FETCH_TIMEOUT: Seconds per fetch (optional, default: 60)
    LEYLINE_DEBUG: Enable debug logging (optional, default: false)
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from .config_schema import (
    DEFAULT_DOCS_PATH,
    DEFAULT_SOURCE_REF,
    DEFAULT_SOURCE_URL,
    UnifiedConfig,
)
from .errors import ConfigurationError
from .validators import validate_category_name, validate_source_ref

logger = logging.getLogger(__name__)

SOURCE_KINDS = ("git", "http")


def default_cache_dir() -> Path:
    """``$XDG_CACHE_HOME/leyline``, falling back to ``~/.cache/leyline``."""
    xdg = os.getenv("XDG_CACHE_HOME")
    if xdg:
        return Path(xdg) / "leyline"
    return Path.home() / ".cache" / "leyline"


@dataclass
class Config:
    target_dir: Path
    source_kind: str = "git"
    source_url: str = DEFAULT_SOURCE_URL
    source_ref: str = DEFAULT_SOURCE_REF
    categories: list[str] = field(default_factory=list)
    docs_path: str = DEFAULT_DOCS_PATH
    exclude: list[str] = field(default_factory=list)
    cache_dir: Path = field(default_factory=default_cache_dir)
    cache_enabled: bool = True
    max_workers: int = 4
    fetch_timeout: float = 60.0
    debug: bool = False


def get_bool_env(key: str) -> bool | None:
    """Return True/False from env var, or None if unset."""
    val = os.getenv(key)
    if val is None:
        return None
    return val.lower() in ("true", "1", "yes", "on")


def parse_categories(value: str) -> list[str]:
    """Split a comma-separated category list."""
    return [c.strip() for c in value.split(",") if c.strip()]


def _int_env(key: str, low: int, high: int) -> int | None:
    raw = os.getenv(key)
    if raw is None:
        return None
    try:
        value = int(raw)
    except ValueError:
        raise ConfigurationError(
            f"Invalid {key} '{raw}': must be a number between {low} and {high}"
        ) from None
    if not (low <= value <= high):
        raise ConfigurationError(
            f"Invalid {key} '{raw}': must be a number between {low} and {high}"
        )
    return value


def validate_config(config: Config) -> None:
    """Validate configuration values and raise ConfigurationError if invalid.

    Args:
        config: Config instance to validate.

    Raises:
        ConfigurationError: If a value is out of range or malformed.
    """
    config.source_url = config.source_url.strip()
    if not config.source_url:
        raise ConfigurationError(
            "Source URL cannot be empty. Set LEYLINE_SOURCE_URL or "
            "source.url in .leyline/config.yml."
        )

    if config.source_kind not in SOURCE_KINDS:
        raise ConfigurationError(
            f"Invalid source kind '{config.source_kind}': "
            f"must be one of {', '.join(SOURCE_KINDS)}"
        )

    if config.source_kind == "http" and not config.source_url.startswith(
        ("http://", "https://")
    ):
        raise ConfigurationError(
            f"Invalid source URL '{config.source_url}': "
            "http sources must start with http:// or https://"
        )

    ok, reason = validate_source_ref(config.source_ref)
    if not ok:
        raise ConfigurationError(reason)

    if "all" in config.categories:
        raise ConfigurationError(
            "Use specific category names instead of 'all'"
        )
    for name in config.categories:
        ok, reason = validate_category_name(name)
        if not ok:
            raise ConfigurationError(reason)

    if not (1 <= config.max_workers <= 32):
        raise ConfigurationError(
            f"Invalid max_workers {config.max_workers}: must be 1-32"
        )
    if not (1 <= config.fetch_timeout <= 600):
        raise ConfigurationError(
            f"Invalid fetch_timeout {config.fetch_timeout}: must be 1-600"
        )

    if not config.target_dir.is_dir():
        raise ConfigurationError(
            f"Target directory does not exist: {config.target_dir}",
            context={"target_dir": str(config.target_dir)},
        )


def load_config(
    target_dir: Path | None = None,
    categories: list[str] | None = None,
    source_ref: str | None = None,
    source_url: str | None = None,
    source_kind: str | None = None,
    cache_dir: str | None = None,
    no_cache: bool = False,
    debug: bool = False,
    unified: UnifiedConfig | None = None,
) -> Config:
    """Load configuration with unified precedence.

    Resolution order for each field (highest to lowest):
        CLI arg > env var / .env > unified (YAML) config > built-in default

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are available via ``os.getenv()``.

    Args:
        target_dir: Consumer directory (default: CWD).
        categories: Categories from ``--categories``.
        source_ref: Reference from ``--ref``.
        source_url: URL from ``--source-url``.
        source_kind: Adapter from ``--source-kind``.
        cache_dir: Directory from ``--cache-dir``.
        no_cache: ``--no-cache`` flag.
        debug: ``--debug`` flag.
        unified: Values from the YAML config files.

    Returns:
        Validated Config instance.

    Raises:
        ConfigurationError: If any resolved value is invalid.
    """
    fb = unified or UnifiedConfig()

    # --- String fields: CLI > env > YAML > default ---

    final_kind = (
        source_kind or os.getenv("LEYLINE_SOURCE_KIND") or fb.source.kind
    )
    final_url = source_url or os.getenv("LEYLINE_SOURCE_URL") or fb.source.url
    final_ref = source_ref or os.getenv("LEYLINE_SOURCE_REF") or fb.source.ref

    if categories is not None:
        final_categories = list(categories)
    elif os.getenv("LEYLINE_CATEGORIES") is not None:
        final_categories = parse_categories(os.environ["LEYLINE_CATEGORIES"])
    else:
        final_categories = list(fb.sync.categories)
    final_categories = sorted(
        {c for c in final_categories if c != "core"}
    )

    if cache_dir:
        final_cache_dir = Path(cache_dir)
    elif os.getenv("LEYLINE_CACHE_DIR"):
        final_cache_dir = Path(os.environ["LEYLINE_CACHE_DIR"])
    elif fb.cache.dir:
        final_cache_dir = Path(fb.cache.dir)
    else:
        final_cache_dir = default_cache_dir()

    # --- Boolean fields: CLI > env > YAML > default ---

    if no_cache:
        final_cache_enabled = False
    else:
        env_no_cache = get_bool_env("LEYLINE_NO_CACHE")
        if env_no_cache is not None:
            final_cache_enabled = not env_no_cache
        else:
            final_cache_enabled = fb.cache.enabled

    if debug:
        final_debug = True
    else:
        final_debug = bool(get_bool_env("LEYLINE_DEBUG"))

    # --- Numeric fields: env > YAML > default ---

    final_workers = _int_env("LEYLINE_MAX_WORKERS", 1, 32)
    if final_workers is None:
        final_workers = fb.sync.max_workers

    final_timeout = _int_env("LEYLINE_FETCH_TIMEOUT", 1, 600)
    if final_timeout is None:
        final_timeout = fb.sync.fetch_timeout

    config = Config(
        target_dir=Path(target_dir or Path.cwd()).expanduser().resolve(),
        source_kind=final_kind,
        source_url=final_url,
        source_ref=final_ref,
        categories=final_categories,
        docs_path=fb.sync.docs_path,
        exclude=list(fb.sync.exclude),
        cache_dir=final_cache_dir.expanduser(),
        cache_enabled=final_cache_enabled,
        max_workers=final_workers,
        fetch_timeout=float(final_timeout),
        debug=final_debug,
    )

    validate_config(config)

    return config
