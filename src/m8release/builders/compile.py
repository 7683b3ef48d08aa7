"""Two-step compilation: cached dependencies-only build, then the full build."""

from __future__ import annotations

import hashlib
import shutil
from pathlib import Path

from m8release.builders.base import CompileOutcome, Toolchain
from m8release.builders.cargo import LOCKFILE, iter_manifests
from m8release.cache import DependencyCacheInput, DependencyCacheStore, cache_key
from m8release.errors import CompileFailure
from m8release.hashing import file_sha256
from m8release.models import BuildDescriptor, CompiledBinary, DependencySet


def dependency_cache_input(
    descriptor: BuildDescriptor,
    dependencies: DependencySet,
    *,
    source: Path,
    toolchain_identity: str,
) -> DependencyCacheInput:
    lockfile = source / LOCKFILE
    manifests = hashlib.sha256()
    for manifest in iter_manifests(source):
        rel = manifest.relative_to(source).as_posix()
        manifests.update(f"{rel} {file_sha256(manifest)}\n".encode())
    return DependencyCacheInput(
        lock_hash=file_sha256(lockfile) if lockfile.exists() else "",
        manifest_hash=manifests.hexdigest(),
        toolchain=toolchain_identity,
        target=descriptor.toolchain.target,
        dependencies=dependencies.digest(),
        env=descriptor.profile_env("deps"),
    )


def build_dependencies_cached(
    descriptor: BuildDescriptor,
    dependencies: DependencySet,
    *,
    source: Path,
    store: DependencyCacheStore,
    toolchain: Toolchain,
    scratch_dir: Path,
) -> tuple[Path, str, bool]:
    """Return ``(artifacts_dir, key, cache_hit)`` for the dependency graph.

    On a hit the stored artifacts are only read; the toolchain is not run.
    """
    inputs = dependency_cache_input(
        descriptor,
        dependencies,
        source=source,
        toolchain_identity=toolchain.identity(),
    )
    key = cache_key(inputs)
    cached = store.load(key=key, expected_inputs=inputs)
    if cached is not None:
        return cached, key, True

    deps_target = scratch_dir / "deps-target"
    try:
        if deps_target.exists():
            shutil.rmtree(deps_target)
        deps_target.mkdir(parents=True)
        toolchain.build_dependencies(descriptor, source=source, target_dir=deps_target)
        store.save(inputs=inputs, artifacts=deps_target)
    except OSError as exc:
        raise CompileFailure(
            "Unable to build and store dependency artifacts.",
            context={"operation": "build_dependencies", "key": key, "reason": str(exc)},
        ) from exc
    finally:
        shutil.rmtree(deps_target, ignore_errors=True)

    stored = store.load(key=key, expected_inputs=inputs)
    if stored is None:
        raise CompileFailure(
            "Dependency artifacts were not persisted to the cache.",
            context={"operation": "build_dependencies", "key": key},
        )
    return stored, key, False


def compile_platform(
    descriptor: BuildDescriptor,
    dependencies: DependencySet,
    *,
    worktree: Path,
    store: DependencyCacheStore,
    toolchain: Toolchain,
    product: str,
    binary: str,
    version: str,
    scratch_dir: Path,
) -> CompileOutcome:
    deps_artifacts, key, hit = build_dependencies_cached(
        descriptor,
        dependencies,
        source=worktree,
        store=store,
        toolchain=toolchain,
        scratch_dir=scratch_dir,
    )

    target_dir = worktree / "target"
    try:
        if target_dir.exists():
            shutil.rmtree(target_dir)
        shutil.copytree(deps_artifacts, target_dir, symlinks=True)
    except OSError as exc:
        raise CompileFailure(
            "Unable to restore cached dependency artifacts.",
            context={"operation": "restore_dependencies", "key": key, "reason": str(exc)},
        ) from exc

    built = toolchain.build_product(
        descriptor,
        source=worktree,
        target_dir=target_dir,
        binary=binary,
    )

    output = scratch_dir / "compiled" / binary
    try:
        output.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(built, output)
    except OSError as exc:
        raise CompileFailure(
            "Unable to collect the compiled binary.",
            context={"operation": "build_product", "path": str(built), "reason": str(exc)},
        ) from exc
    return CompileOutcome(
        binary=CompiledBinary(
            product=product,
            platform=descriptor.platform,
            version=version,
            path=output,
            sha256=file_sha256(output),
        ),
        cache_key=key,
        cache_hit=hit,
    )
