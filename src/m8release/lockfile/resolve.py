"""Lockfile resolution from pipeline configuration."""

from __future__ import annotations

import hashlib
import json
from typing import Any

from m8release.config import PipelineConfig
from m8release.errors import LockfileError
from m8release.lockfile.model import LockedFetch, Lockfile
from m8release.platforms import resolve_dependencies

LOCKFILE_VERSION = 1


def inputs_digest(inputs: dict[str, Any]) -> str:
    canonical = json.dumps(inputs, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def pinned_inputs(config: PipelineConfig) -> dict[str, Any]:
    """Return every input that decides what a release build produces."""
    platforms: dict[str, Any] = {}
    for platform in config.matrix:
        dependencies = resolve_dependencies(platform)
        platforms[platform.slug] = {
            "platform": str(platform),
            "rust_target": platform.rust_target,
            "dependencies_digest": dependencies.digest(),
        }
    return {
        "product": {"name": config.product.name, "binary": config.product.binary},
        "toolchain": {"channel": config.toolchain.channel},
        "frontend": {
            "kind": config.frontend.kind,
            "source": config.frontend.source,
            "revision": config.frontend.revision,
            "sha256": config.frontend.sha256,
            "destination": config.frontend.destination,
            "tree_hash": config.frontend.tree_hash,
        },
        "platforms": platforms,
    }


def build_lockfile(config: PipelineConfig) -> Lockfile:
    inputs = pinned_inputs(config)
    dependencies = {
        platform.slug: list(resolve_dependencies(platform).packages())
        for platform in config.matrix
    }
    return Lockfile(
        version=LOCKFILE_VERSION,
        inputs_digest=inputs_digest(inputs),
        inputs=inputs,
        dependencies=dependencies,
        fetches=[
            LockedFetch(
                source=config.frontend.source,
                kind=config.frontend.kind,
                digest=config.frontend.digest,
            )
        ],
    )


def verify_lockfile(lock: Lockfile, config: PipelineConfig) -> None:
    current = pinned_inputs(config)
    current_digest = inputs_digest(current)
    if lock.inputs_digest == current_digest:
        return
    drifted = sorted(
        key
        for key in set(current) | set(lock.inputs)
        if current.get(key) != lock.inputs.get(key)
    )
    raise LockfileError(
        "Lockfile is stale for the current configuration.",
        hint="Run `m8release lock` and commit the updated lockfile.",
        context={
            "operation": "verify_lockfile",
            "expected": current_digest,
            "actual": lock.inputs_digest,
            "drifted": ",".join(drifted),
        },
    )
