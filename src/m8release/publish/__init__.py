"""Release publishing on version-tag triggers."""

from __future__ import annotations

from m8release.config import PipelineConfig, release_token
from m8release.errors import ValidationError

from .manifest import ManifestEntry, ReleaseManifest
from .publisher import PublishOutcome, publish_release
from .stores import DirectoryReleaseStore, GitHubReleaseStore, ReleaseStore
from .trigger import RELEASE_TAG_PATTERN, match_release_tag


def get_store(config: PipelineConfig) -> ReleaseStore:
    release = config.release
    if release.store == "directory":
        return DirectoryReleaseStore(root=release.directory)
    if release.store == "github" and release.repository:
        return GitHubReleaseStore(
            repository=release.repository,
            token=release_token(),
            api_url=release.api_url,
            uploads_url=release.uploads_url,
        )
    raise ValidationError("Unsupported release store.", context={"store": release.store})


__all__ = [
    "DirectoryReleaseStore",
    "GitHubReleaseStore",
    "ManifestEntry",
    "PublishOutcome",
    "RELEASE_TAG_PATTERN",
    "ReleaseManifest",
    "ReleaseStore",
    "get_store",
    "match_release_tag",
    "publish_release",
]
