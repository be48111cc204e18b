"""Source adapters: where remote manifests and blobs come from."""

from .git_source import GitSource
from .http_source import HttpSource

__all__ = ["GitSource", "HttpSource"]
