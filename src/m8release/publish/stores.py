"""Release store adapters."""

from __future__ import annotations

import json
import mimetypes
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol
from urllib.error import HTTPError, URLError
from urllib.parse import quote
from urllib.request import Request, urlopen

from m8release.errors import PublishFailure


class ReleaseStore(Protocol):
    name: str

    def upload(self, *, version: str, files: tuple[Path, ...]) -> str:
        """Upload *files* to the release keyed by *version* and return its location."""


@dataclass(slots=True)
class DirectoryReleaseStore:
    """Filesystem store laid out as ``<root>/<version>/<file>``."""

    root: Path
    name: str = "directory"

    def upload(self, *, version: str, files: tuple[Path, ...]) -> str:
        release_dir = Path(self.root) / version
        try:
            release_dir.mkdir(parents=True, exist_ok=True)
            for path in files:
                temp = release_dir / f".{path.name}.tmp"
                shutil.copyfile(path, temp)
                temp.replace(release_dir / path.name)
        except OSError as exc:
            raise PublishFailure(
                "Unable to copy release files into the directory store.",
                context={"store": self.name, "version": version, "reason": str(exc)},
            ) from exc
        return str(release_dir)


@dataclass(slots=True)
class GitHubReleaseStore:
    """GitHub Releases via the REST API; the release is created on first upload."""

    repository: str
    token: str | None
    api_url: str = "https://api.github.com"
    uploads_url: str = "https://uploads.github.com"
    name: str = "github"
    timeout: float = 60.0

    def upload(self, *, version: str, files: tuple[Path, ...]) -> str:
        if not self.token:
            raise PublishFailure(
                "GitHub release upload requires a token.",
                hint="Export GITHUB_TOKEN or M8RELEASE_TOKEN with contents:write access.",
                context={"store": self.name, "repository": self.repository},
            )
        release = self._get_or_create_release(version)
        release_id = release["id"]
        existing = {asset["name"]: asset["id"] for asset in release.get("assets", [])}
        for path in files:
            if path.name in existing:
                self._request(
                    "DELETE",
                    f"{self.api_url}/repos/{self.repository}/releases/assets/{existing[path.name]}",
                )
            content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
            try:
                content = path.read_bytes()
            except OSError as exc:
                raise PublishFailure(
                    "Release file could not be read.",
                    context={"store": self.name, "path": str(path), "reason": str(exc)},
                ) from exc
            self._request(
                "POST",
                (
                    f"{self.uploads_url}/repos/{self.repository}/releases/{release_id}"
                    f"/assets?name={quote(path.name)}"
                ),
                body=content,
                content_type=content_type,
            )
        return str(release.get("html_url", f"{self.repository}@{version}"))

    def _get_or_create_release(self, version: str) -> dict[str, Any]:
        try:
            return self._request(
                "GET",
                f"{self.api_url}/repos/{self.repository}/releases/tags/{quote(version)}",
            )
        except PublishFailure as exc:
            if exc.context.get("status") != "404":
                raise
        payload = json.dumps({"tag_name": version, "name": version}).encode("utf-8")
        return self._request(
            "POST",
            f"{self.api_url}/repos/{self.repository}/releases",
            body=payload,
            content_type="application/json",
        )

    def _request(
        self,
        method: str,
        url: str,
        *,
        body: bytes | None = None,
        content_type: str | None = None,
    ) -> dict[str, Any]:
        request = Request(url, data=body, method=method)
        request.add_header("Accept", "application/vnd.github+json")
        request.add_header("Authorization", f"Bearer {self.token}")
        request.add_header("X-GitHub-Api-Version", "2022-11-28")
        if content_type is not None:
            request.add_header("Content-Type", content_type)
        try:
            with urlopen(request, timeout=self.timeout) as response:  # noqa: S310 - fixed https API
                raw = response.read()
        except HTTPError as exc:
            raise PublishFailure(
                "GitHub API request failed.",
                hint="Check the token's permissions and the repository name.",
                context={
                    "store": self.name,
                    "method": method,
                    "url": url,
                    "status": str(exc.code),
                },
            ) from exc
        except URLError as exc:
            raise PublishFailure(
                "GitHub API is unreachable.",
                context={"store": self.name, "method": method, "url": url, "reason": str(exc)},
            ) from exc
        if not raw:
            return {}
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise PublishFailure(
                "GitHub API returned a non-JSON response.",
                context={"store": self.name, "method": method, "url": url, "reason": str(exc)},
            ) from exc
        return parsed if isinstance(parsed, dict) else {}
