"""Dependency-compilation cache key derivation."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True, slots=True)
class DependencyCacheInput:
    lock_hash: str
    manifest_hash: str
    toolchain: str
    target: str
    dependencies: str
    env: dict[str, str] = field(default_factory=dict)
    profile: str = "release"


def cache_key(inputs: DependencyCacheInput) -> str:
    canonical = json.dumps(_to_payload(inputs), sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _to_payload(inputs: DependencyCacheInput) -> dict[str, Any]:
    return {
        "lock_hash": inputs.lock_hash,
        "manifest_hash": inputs.manifest_hash,
        "toolchain": inputs.toolchain,
        "target": inputs.target,
        "dependencies": inputs.dependencies,
        "env": dict(sorted(inputs.env.items())),
        "profile": inputs.profile,
    }
