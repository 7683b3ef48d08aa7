"""Write-once, content-addressed store for dependency build outputs.

Entries are directories named by cache key. An entry is staged in a private
temporary directory and renamed into place; when two writers race on the same
key, the loser's staging directory is discarded, so no locking is needed.
"""

from __future__ import annotations

import json
import os
import shutil
import tempfile
from pathlib import Path

from m8release.cache.keys import DependencyCacheInput, _to_payload, cache_key
from m8release.errors import ReproducibilityError
from m8release.hashing import tree_digest

ARTIFACTS_DIR = "artifacts"
MANIFEST_NAME = "manifest.json"


class DependencyCacheStore:
    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def contains(self, key: str) -> bool:
        return (self.root / key / MANIFEST_NAME).exists()

    def load(self, *, key: str, expected_inputs: DependencyCacheInput) -> Path | None:
        """Return the verified artifacts directory for *key*, or None on a miss."""
        entry = self.root / key
        artifacts_path = entry / ARTIFACTS_DIR
        manifest_path = entry / MANIFEST_NAME
        if not artifacts_path.is_dir() or not manifest_path.exists():
            return None

        manifest = self._read_manifest(manifest_path)
        if manifest.get("inputs") != _to_payload(expected_inputs):
            raise ReproducibilityError(
                "Cache manifest inputs do not match expected build inputs.",
                hint="Invalidate the cache entry and rebuild.",
                context={"operation": "cache_load", "key": key},
            )
        if manifest.get("key") != key:
            raise ReproducibilityError(
                "Cache manifest key mismatch.",
                hint="Invalidate the cache entry and rebuild.",
                context={"operation": "cache_load", "key": key},
            )
        actual_digest = tree_digest(artifacts_path)
        if manifest.get("artifacts_sha256") != actual_digest:
            raise ReproducibilityError(
                "Cache artifact digest mismatch.",
                hint="Invalidate the cache entry and rebuild.",
                context={"operation": "cache_load", "key": key},
            )
        return artifacts_path

    def save(self, *, inputs: DependencyCacheInput, artifacts: str | Path) -> str:
        """Copy *artifacts* into the store under the key derived from *inputs*."""
        key = cache_key(inputs)
        entry = self.root / key
        if entry.exists():
            return key

        staging = Path(tempfile.mkdtemp(prefix=f".{key[:12]}-", dir=str(self.root)))
        try:
            staged_artifacts = staging / ARTIFACTS_DIR
            shutil.copytree(artifacts, staged_artifacts, symlinks=True)
            manifest = {
                "key": key,
                "inputs": _to_payload(inputs),
                "artifacts_sha256": tree_digest(staged_artifacts),
            }
            (staging / MANIFEST_NAME).write_text(
                json.dumps(manifest, indent=2, sort_keys=True) + "\n",
                encoding="utf-8",
            )
            try:
                os.rename(staging, entry)
            except OSError:
                if not entry.exists():
                    raise
        finally:
            if staging.exists():
                shutil.rmtree(staging, ignore_errors=True)
        return key

    def _read_manifest(self, path: Path) -> dict[str, object]:
        try:
            parsed = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ReproducibilityError(
                "Cache manifest is not valid JSON.",
                hint="Invalidate the cache entry and rebuild.",
                context={"operation": "cache_load", "path": str(path)},
            ) from exc
        if not isinstance(parsed, dict):
            raise ReproducibilityError(
                "Cache manifest has invalid structure.",
                hint="Invalidate the cache entry and rebuild.",
                context={"operation": "cache_load", "path": str(path)},
            )
        return parsed
