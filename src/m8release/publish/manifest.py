"""Release manifest model and export."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path

import cbor2

from m8release.models import ReleaseArtifact


@dataclass(frozen=True, slots=True)
class ManifestEntry:
    platform: str
    archive: str
    checksum: str
    sha256: str


@dataclass(frozen=True, slots=True)
class ReleaseManifest:
    product: str
    version: str
    entries: tuple[ManifestEntry, ...] = ()
    failed: tuple[str, ...] = ()
    schema_version: int = 1

    @classmethod
    def from_artifacts(
        cls,
        *,
        product: str,
        version: str,
        artifacts: list[ReleaseArtifact],
        failed: tuple[str, ...] = (),
    ) -> ReleaseManifest:
        entries = tuple(
            ManifestEntry(
                platform=artifact.platform.slug,
                archive=artifact.archive.name,
                checksum=artifact.checksum.name,
                sha256=artifact.sha256,
            )
            for artifact in sorted(artifacts, key=lambda item: item.platform.slug)
        )
        return cls(product=product, version=version, entries=entries, failed=tuple(sorted(failed)))

    def to_json(self, path: str | Path | None = None) -> str:
        encoded = json.dumps(self._payload(), indent=2, sort_keys=True) + "\n"
        if path is not None:
            Path(path).write_text(encoded, encoding="utf-8")
        return encoded

    def to_cbor(self, path: str | Path | None = None) -> bytes:
        encoded = cbor2.dumps(self._payload(), canonical=True)
        if path is not None:
            Path(path).write_bytes(encoded)
        return encoded

    @classmethod
    def from_cbor(cls, data: bytes) -> ReleaseManifest:
        payload = cbor2.loads(data)
        return cls(
            product=payload["product"],
            version=payload["version"],
            entries=tuple(ManifestEntry(**entry) for entry in payload["entries"]),
            failed=tuple(payload.get("failed", ())),
            schema_version=payload["schema_version"],
        )

    def _payload(self) -> dict[str, object]:
        return {
            "schema_version": self.schema_version,
            "product": self.product,
            "version": self.version,
            "entries": [
                {
                    "platform": entry.platform,
                    "archive": entry.archive,
                    "checksum": entry.checksum,
                    "sha256": entry.sha256,
                }
                for entry in self.entries
            ],
            "failed": list(self.failed),
        }


__all__ = ["ManifestEntry", "ReleaseManifest"]
