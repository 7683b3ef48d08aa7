"""Content-addressed cache APIs."""

from .keys import DependencyCacheInput, cache_key
from .store import DependencyCacheStore

__all__ = ["DependencyCacheInput", "DependencyCacheStore", "cache_key"]
