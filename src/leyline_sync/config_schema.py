"""Unified configuration schema for leyline_sync.

Defines Pydantic models for the YAML config structure with dedicated
sections for the content source, sync behaviour, the content cache and
logging.

Usage:
    from leyline_sync.config_schema import UnifiedConfig, build_config

    raw = load_hierarchical_config(project_dir)
    unified = build_config(raw)
"""

from __future__ import annotations

import logging
from typing import Literal

from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import ConfigurationError
from .validators import (
    validate_category_name,
    validate_relative_path,
    validate_source_ref,
)

logger = logging.getLogger(__name__)

DEFAULT_SOURCE_URL = "https://github.com/phrazzld/leyline.git"
DEFAULT_SOURCE_REF = "master"
DEFAULT_DOCS_PATH = "docs/leyline"


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class SourceConfig(BaseModel):
    """Where tenets and bindings come from."""

    kind: Literal["git", "http"] = Field(
        default="git", description="Source adapter"
    )
    url: str = Field(
        default=DEFAULT_SOURCE_URL,
        description="Git repository URL or HTTP content API base URL",
    )
    ref: str = Field(
        default=DEFAULT_SOURCE_REF,
        description="Branch, tag or commit to sync from",
    )

    model_config = {"frozen": True}

    @field_validator("ref")
    @classmethod
    def ref_is_safe(cls, value: str) -> str:
        ok, reason = validate_source_ref(value)
        if not ok:
            raise ValueError(reason)
        return value


class SyncSettings(BaseModel):
    """Which content to sync and how.

    Attributes:
        categories: Categories to sync in addition to ``core``.
        docs_path: Content root relative to the target directory.
        exclude: Glob patterns (content paths) never synced.
        max_workers: Parallel fetch/write workers (1-32).
        fetch_timeout: Seconds allowed per fetch (1-600).
    """

    categories: list[str] = Field(default_factory=list)
    docs_path: str = Field(default=DEFAULT_DOCS_PATH)
    exclude: list[str] = Field(default_factory=list)
    max_workers: int = Field(
        default=4,
        ge=1,
        le=32,
        description="Parallel fetch/write workers (1-32)",
    )
    fetch_timeout: float = Field(
        default=60.0,
        ge=1,
        le=600,
        description="Seconds allowed per fetch (1-600)",
    )

    model_config = {"frozen": True}

    @field_validator("categories")
    @classmethod
    def categories_are_valid(cls, value: list[str]) -> list[str]:
        if "all" in value:
            raise ValueError(
                "Use specific category names instead of 'all'"
            )
        result: list[str] = []
        for name in value:
            ok, reason = validate_category_name(name)
            if not ok:
                raise ValueError(reason)
            # core is always synced
            if name != "core" and name not in result:
                result.append(name)
        return result

    @field_validator("docs_path")
    @classmethod
    def docs_path_is_relative(cls, value: str) -> str:
        value = value.strip().rstrip("/")
        ok, reason = validate_relative_path(value)
        if not ok:
            raise ValueError(reason)
        return value


class CacheConfig(BaseModel):
    """Content cache settings."""

    enabled: bool = Field(default=True, description="Use the blob cache")
    dir: str | None = Field(
        default=None, description="Cache directory (default ~/.cache/leyline)"
    )

    model_config = {"frozen": True}


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level unified configuration.

    Aggregates all config sections. Every section has sensible defaults,
    so ``UnifiedConfig()`` (zero-config) is always valid.
    """

    source: SourceConfig = Field(default_factory=SourceConfig)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Factory function
# ---------------------------------------------------------------------------


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the raw dict returned by
    ``load_hierarchical_config()``.

    Handles missing sections gracefully; anything absent gets defaults.

    Args:
        raw_data: Merged configuration dictionary.

    Returns:
        Validated ``UnifiedConfig`` instance.

    Raises:
        ConfigurationError: If a value fails validation.
    """
    if not raw_data:
        return UnifiedConfig()

    try:
        return UnifiedConfig(**raw_data)
    except ValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first["loc"])
        raise ConfigurationError(
            f"Invalid configuration at '{location}': {first['msg']}",
            context={"error_count": exc.error_count()},
        ) from exc
