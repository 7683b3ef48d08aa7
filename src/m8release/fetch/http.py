"""Integrity-enforced HTTP/file fetch implementation."""

from __future__ import annotations

import hashlib
import os
import tarfile
import zipfile
from pathlib import Path
from urllib.error import URLError
from urllib.request import urlopen

from m8release.errors import ReproducibilityError, ValidationError
from m8release.policy import Policy, ensure_network_allowed


def fetch(
    url: str,
    *,
    sha256: str,
    dest_dir: str | Path,
    policy: Policy | None = None,
) -> Path:
    """Fetch content and return its content-addressed path under *dest_dir*."""
    if policy is not None:
        ensure_network_allowed(policy=policy, operation="fetch")
    if not sha256:
        raise ValidationError("fetch() requires a sha256 value.", context={"url": url})
    dest_path = Path(dest_dir)
    dest_path.mkdir(parents=True, exist_ok=True)
    artifact_path = dest_path / sha256

    if artifact_path.exists():
        _assert_hash_matches(artifact_path, expected_sha256=sha256)
        return artifact_path

    try:
        with urlopen(url) as response:  # noqa: S310 - integrity check is mandatory below
            payload = response.read()
    except (URLError, OSError) as exc:
        raise ValidationError(
            "Unable to fetch pinned artifact.",
            hint="Ensure the URL is reachable and still serves the pinned content.",
            context={"operation": "fetch", "url": url, "reason": str(exc)},
        ) from exc

    actual_sha256 = hashlib.sha256(payload).hexdigest()
    if actual_sha256 != sha256:
        raise ReproducibilityError(
            "Fetched content hash mismatch.",
            hint="Update the expected hash or source URL to a trusted immutable artifact.",
            context={"operation": "fetch", "url": url, "expected": sha256, "actual": actual_sha256},
        )

    temp_path = artifact_path.with_suffix(".tmp")
    temp_path.write_bytes(payload)
    os.replace(temp_path, artifact_path)
    return artifact_path


def extract_archive(archive: Path, destination: str | Path) -> Path:
    """Unpack a tar or zip bundle, refusing members that escape *destination*."""
    target = Path(destination)
    target.mkdir(parents=True, exist_ok=True)
    if tarfile.is_tarfile(archive):
        with tarfile.open(archive) as bundle:
            bundle.extractall(target, filter="data")
        return target
    if zipfile.is_zipfile(archive):
        with zipfile.ZipFile(archive) as bundle:
            root = target.resolve()
            for name in bundle.namelist():
                if not (target / name).resolve().is_relative_to(root):
                    raise ValidationError(
                        "Archive member escapes the extraction directory.",
                        context={"operation": "extract", "member": name},
                    )
            bundle.extractall(target)
        return target
    raise ValidationError(
        "Unsupported archive format.",
        hint="Frontend archives must be tar (optionally compressed) or zip.",
        context={"operation": "extract", "path": str(archive)},
    )


def _assert_hash_matches(path: Path, *, expected_sha256: str) -> None:
    actual_sha256 = hashlib.sha256(path.read_bytes()).hexdigest()
    if actual_sha256 != expected_sha256:
        raise ReproducibilityError(
            "Fetched artifact hash mismatch.",
            hint="Clear the job scratch directory and refetch with trusted inputs.",
            context={
                "operation": "fetch",
                "path": str(path),
                "expected": expected_sha256,
                "actual": actual_sha256,
            },
        )
