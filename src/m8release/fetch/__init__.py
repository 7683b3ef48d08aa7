"""Integrity-checked retrieval of pinned inputs."""

from __future__ import annotations

from .git import COMMIT_PATTERN, GitFetchResult, fetch_git
from .http import extract_archive, fetch

__all__ = ["COMMIT_PATTERN", "GitFetchResult", "extract_archive", "fetch", "fetch_git"]
