"""Content-addressed blob cache shared across sync runs and consumers."""

from .content_cache import MISSING, CacheStats, ContentCache

__all__ = ["MISSING", "CacheStats", "ContentCache"]
