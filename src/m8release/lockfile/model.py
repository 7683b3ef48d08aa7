"""Lockfile typed model."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True, slots=True)
class LockedFetch:
    source: str
    kind: str
    digest: str


@dataclass(frozen=True, slots=True)
class Lockfile:
    """Pinned release inputs; ``inputs_digest`` is the sha256 of canonical ``inputs``."""

    version: int
    inputs_digest: str
    inputs: dict[str, Any]
    dependencies: dict[str, list[str]]
    fetches: list[LockedFetch] = field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "inputs_digest": self.inputs_digest,
            "inputs": self.inputs,
            "dependencies": self.dependencies,
            "fetches": [
                {"source": item.source, "kind": item.kind, "digest": item.digest}
                for item in self.fetches
            ],
        }
