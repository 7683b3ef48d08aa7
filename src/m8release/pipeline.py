"""Release pipeline orchestration.

Each platform job runs its stages strictly in order inside its own work
directory and stops at the first failure. Jobs for different platforms run
concurrently and share nothing except the write-once dependency cache; the
publisher runs once every job has finished.
"""

from __future__ import annotations

import json
import shutil
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, TypeVar

from m8release.builders import CargoToolchain, Toolchain, compile_platform
from m8release.cache import DependencyCacheStore
from m8release.config import PipelineConfig
from m8release.environment import (
    LINUX_POST_COMPILE_HOOKS,
    construct_descriptor,
    missing_optional_libraries,
)
from m8release.errors import (
    CompileFailure,
    MissingFrontendArtifact,
    PackagingFailure,
    PatchFailure,
    PublishFailure,
    ReleaseError,
    ValidationError,
)
from m8release.inject import inject_frontend
from m8release.lockfile import read_lockfile, verify_lockfile
from m8release.models import (
    BuildDescriptor,
    DependencySet,
    JobResult,
    ReleaseResult,
    Stage,
    StageRecord,
    StageStatus,
    TargetPlatform,
)
from m8release.observability import StructuredLogger
from m8release.packaging import package_binary
from m8release.platforms import materialize_sdk_shim, resolve_dependencies
from m8release.policy import ensure_frozen_policy
from m8release.postprocess import BinaryMetadataEditor, PatchelfEditor, build_patch_spec, patch_binary
from m8release.publish import ReleaseManifest, ReleaseStore, get_store, match_release_tag, publish_release

T = TypeVar("T")

_WORKTREE_IGNORE = shutil.ignore_patterns("target", ".git")
SDK_SHIM_DIRNAME = "MacOSX.sdk"

# Error raised for an unexpected I/O failure, by the stage it happened in.
_STAGE_IO_ERRORS: dict[Stage, type[ReleaseError]] = {
    "resolve": ValidationError,
    "environment": ValidationError,
    "inject": MissingFrontendArtifact,
    "compile": CompileFailure,
    "patch": PatchFailure,
    "package": PackagingFailure,
    "publish": PublishFailure,
}


def default_toolchain(config: PipelineConfig) -> CargoToolchain:
    return CargoToolchain(
        cargo=config.toolchain.cargo,
        rustc=config.toolchain.rustc,
        channel=config.toolchain.channel,
    )


def job_dir(config: PipelineConfig, platform: TargetPlatform) -> Path:
    return Path(config.work_dir) / platform.slug


def describe_platform(
    platform: TargetPlatform,
    config: PipelineConfig,
    *,
    source_root: Path | None = None,
    dependencies: DependencySet | None = None,
) -> BuildDescriptor:
    """Resolve *platform* and build its descriptor, materializing any SDK shim."""
    deps = dependencies if dependencies is not None else resolve_dependencies(platform)
    shim_path: Path | None = None
    if deps.sdk_shim is not None:
        shim_path = materialize_sdk_shim(
            deps.sdk_shim,
            framework_root=config.framework_root,
            destination=job_dir(config, platform) / "sdk" / SDK_SHIM_DIRNAME,
        )
    return construct_descriptor(
        platform,
        deps,
        source_root=source_root if source_root is not None else config.product.source,
        roots=config.roots,
        toolchain_channel=config.toolchain.channel,
        sdk_shim_path=shim_path,
    )


def prepare_worktree(source: Path, worktree: Path) -> Path:
    """Copy product sources into an isolated tree, leaving build output behind."""
    try:
        if worktree.exists():
            shutil.rmtree(worktree)
        worktree.parent.mkdir(parents=True, exist_ok=True)
        shutil.copytree(source, worktree, symlinks=True, ignore=_WORKTREE_IGNORE)
    except OSError as exc:
        raise ValidationError(
            "Unable to prepare an isolated working tree for the job.",
            hint="Check that [product].source points at the product checkout.",
            context={"operation": "prepare_worktree", "source": str(source), "reason": str(exc)},
        ) from exc
    return worktree


class _JobRecorder:
    def __init__(self, job: JobResult, logger: StructuredLogger) -> None:
        self.job = job
        self.logger = logger
        self.current: Stage = "resolve"

    def run(self, stage: Stage, action: Callable[[], T]) -> T:
        self.current = stage
        self.logger.log(
            operation="stage_start",
            platform=self.job.platform.slug,
            stage=stage,
            message="Starting stage.",
        )
        return action()

    def record(self, stage: Stage, status: StageStatus, **detail: str) -> None:
        self.job.stages.append(StageRecord(stage=stage, status=status, detail=detail))
        self.logger.log(
            operation=f"stage_{status}",
            platform=self.job.platform.slug,
            stage=stage,
            level="error" if status == "failed" else "info",
            message=f"Stage {status}.",
            extra=dict(detail) if detail else None,
        )

    def fail(self, error: ReleaseError) -> None:
        self.job.status = "failed"
        self.job.error = error.to_dict()
        self.record(self.current, "failed", code=error.code)


def run_platform_job(
    platform: TargetPlatform,
    config: PipelineConfig,
    *,
    version: str,
    toolchain: Toolchain,
    editor: BinaryMetadataEditor,
    cache: DependencyCacheStore,
    strip_tool: str | None = None,
) -> JobResult:
    """Run one platform job to a terminal state; errors are captured, not raised."""
    job = JobResult(platform=platform)
    logger = StructuredLogger()
    recorder = _JobRecorder(job, logger)
    workdir = job_dir(config, platform)
    details: dict[str, Any] = {}

    try:
        dependencies = recorder.run("resolve", lambda: resolve_dependencies(platform))
        recorder.record("resolve", "ok", digest=dependencies.digest())

        worktree = recorder.run(
            "environment",
            lambda: prepare_worktree(Path(config.product.source), workdir / "src"),
        )
        descriptor = describe_platform(
            platform, config, source_root=worktree, dependencies=dependencies
        )
        missing_optional = missing_optional_libraries(dependencies, config.roots)
        for dep in missing_optional:
            logger.log(
                operation="optional_library_missing",
                platform=platform.slug,
                stage="environment",
                level="warning",
                message="Optional library is not installed; its feature is unavailable.",
                extra={"package": dep.package, "soname": dep.soname, "role": dep.role},
            )
        environment_detail = {"target": descriptor.toolchain.target}
        if missing_optional:
            environment_detail["missing_optional"] = ",".join(dep.package for dep in missing_optional)
        recorder.record("environment", "ok", **environment_detail)

        frontend = recorder.run(
            "inject",
            lambda: inject_frontend(
                config.frontend,
                worktree=worktree,
                scratch_dir=workdir / "frontend",
                policy=config.policy,
            ),
        )
        details["frontend"] = {"revision": frontend.revision, "digest": frontend.digest}
        recorder.record("inject", "ok", revision=frontend.revision, digest=frontend.digest)

        outcome = recorder.run(
            "compile",
            lambda: compile_platform(
                descriptor,
                dependencies,
                worktree=worktree,
                store=cache,
                toolchain=toolchain,
                product=config.product.name,
                binary=config.product.binary,
                version=version,
                scratch_dir=workdir,
            ),
        )
        details["cache"] = {"key": outcome.cache_key, "hit": outcome.cache_hit}
        recorder.record(
            "compile",
            "ok",
            cache_key=outcome.cache_key,
            cache_hit=str(outcome.cache_hit).lower(),
        )

        binary = outcome.binary
        if set(LINUX_POST_COMPILE_HOOKS) <= set(descriptor.post_compile_hooks):
            binary = recorder.run(
                "patch",
                lambda: patch_binary(
                    outcome.binary,
                    build_patch_spec(dependencies),
                    editor=editor,
                    output_dir=workdir / "patched",
                ),
            )
            recorder.record("patch", "ok", sha256=binary.sha256)
        else:
            recorder.record("patch", "skipped")

        artifact = recorder.run(
            "package",
            lambda: package_binary(
                binary,
                dist_dir=config.package.dist_dir,
                binary_name=config.product.binary,
                strip=config.package.strip,
                strip_tool=strip_tool,
            ),
        )
        job.artifact = artifact
        recorder.record("package", "ok", archive=artifact.archive.name, sha256=artifact.sha256)
    except ReleaseError as exc:
        recorder.fail(exc)
    except OSError as exc:
        error_type = _STAGE_IO_ERRORS[recorder.current]
        recorder.fail(
            error_type(
                f"I/O failure during the {recorder.current} stage.",
                context={"operation": recorder.current, "reason": str(exc)},
            )
        )

    try:
        job.report_path = _write_report(
            job, logger, workdir=workdir, version=version, details=details
        )
    except OSError as exc:
        logger.log(
            operation="report_failed",
            platform=platform.slug,
            stage=None,
            level="error",
            message="Job report could not be written.",
            extra={"reason": str(exc)},
        )
    return job


def _write_report(
    job: JobResult,
    logger: StructuredLogger,
    *,
    workdir: Path,
    version: str,
    details: dict[str, Any],
) -> Path:
    workdir.mkdir(parents=True, exist_ok=True)
    report_path = workdir / "report.json"
    artifact = job.artifact
    payload = {
        "platform": str(job.platform),
        "version": version,
        "status": job.status,
        "stages": [
            {"stage": record.stage, "status": record.status, "detail": dict(record.detail)}
            for record in job.stages
        ],
        "artifact": (
            None
            if artifact is None
            else {
                "archive": str(artifact.archive),
                "checksum": str(artifact.checksum),
                "sha256": artifact.sha256,
            }
        ),
        "error": job.error,
        "logs": logger.records,
        **details,
    }
    report_path.write_text(json.dumps(payload, indent=2, sort_keys=True) + "\n", encoding="utf-8")
    return report_path


def run_release(
    ref: str,
    config: PipelineConfig,
    *,
    toolchain: Toolchain | None = None,
    editor: BinaryMetadataEditor | None = None,
    store: ReleaseStore | None = None,
    frozen: bool = False,
    strip_tool: str | None = None,
    logger: StructuredLogger | None = None,
) -> ReleaseResult:
    """Build every matrix platform for *ref* and publish the ones that succeed.

    References that are not release tags never build for release and never
    publish.
    """
    log = logger if logger is not None else StructuredLogger()
    version = match_release_tag(ref)
    if version is None:
        log.log(
            operation="release_skipped",
            platform=None,
            stage=None,
            message="Reference is not a release tag; nothing is published.",
            extra={"ref": ref},
        )
        return ReleaseResult(ref=ref, version=None)

    _check_lock(config, frozen=frozen)
    toolchain = toolchain if toolchain is not None else default_toolchain(config)
    editor = editor if editor is not None else PatchelfEditor()
    cache = DependencyCacheStore(config.cache_dir)

    with ThreadPoolExecutor(max_workers=len(config.matrix)) as pool:
        futures = {
            platform.slug: pool.submit(
                run_platform_job,
                platform,
                config,
                version=version,
                toolchain=toolchain,
                editor=editor,
                cache=cache,
                strip_tool=strip_tool,
            )
            for platform in config.matrix
        }
        jobs = {slug: future.result() for slug, future in futures.items()}

    result = ReleaseResult(ref=ref, version=version, jobs=jobs)
    for job in jobs.values():
        log.log(
            operation="job_complete",
            platform=job.platform.slug,
            stage=None,
            level="info" if job.ok else "error",
            message=f"Platform job {job.status}.",
            extra={"report": str(job.report_path)},
        )

    release_store = store if store is not None else get_store(config)
    outcome = publish_release(
        version=version,
        matrix=config.matrix,
        jobs=jobs,
        store=release_store,
        logger=log,
        mode=config.policy.publish_mode,
    )
    result.uploads = outcome.uploads
    if outcome.failures:
        result.publish_error = PublishFailure(
            "Some release uploads failed.",
            context={"platforms": ",".join(sorted(outcome.failures))},
        ).to_dict()

    manifest = ReleaseManifest.from_artifacts(
        product=config.product.name,
        version=version,
        artifacts=[job.artifact for job in jobs.values() if job.ok and job.artifact is not None],
        failed=tuple(slug for slug, job in jobs.items() if not job.ok),
    )
    dist = Path(config.package.dist_dir)
    dist.mkdir(parents=True, exist_ok=True)
    manifest.to_json(dist / f"{config.product.name}-{version}-manifest.json")
    manifest.to_cbor(dist / f"{config.product.name}-{version}-manifest.cbor")
    log.to_json_lines(dist / f"{config.product.name}-{version}-events.jsonl")
    return result


def build_local(
    platform: TargetPlatform | str,
    config: PipelineConfig,
    *,
    toolchain: Toolchain | None = None,
    editor: BinaryMetadataEditor | None = None,
    frozen: bool = False,
    strip_tool: str | None = None,
) -> JobResult:
    """Produce the installable package for one platform without publishing."""
    target = platform if isinstance(platform, TargetPlatform) else TargetPlatform.parse(platform)
    _check_lock(config, frozen=frozen)
    return run_platform_job(
        target,
        config,
        version=config.product.version,
        toolchain=toolchain if toolchain is not None else default_toolchain(config),
        editor=editor if editor is not None else PatchelfEditor(),
        cache=DependencyCacheStore(config.cache_dir),
        strip_tool=strip_tool,
    )


def _check_lock(config: PipelineConfig, *, frozen: bool) -> None:
    ensure_frozen_policy(policy=config.policy, frozen=frozen)
    if frozen:
        verify_lockfile(read_lockfile(config.lock_path), config)
