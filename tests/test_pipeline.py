import dataclasses
import errno
import hashlib
import json
from pathlib import Path

import pytest

from m8release import pipeline
from m8release.cache import DependencyCacheStore
from m8release.config import PipelineConfig
from m8release.environment import MissingOptionalLibrary
from m8release.errors import LockfileError, PolicyError
from m8release.lockfile import build_lockfile, write_lockfile
from m8release.models import TargetPlatform
from m8release.platforms.roots import PackageRoots
from m8release.pipeline import build_local, run_platform_job, run_release
from m8release.policy import Policy
from m8release.publish import DirectoryReleaseStore, ReleaseManifest

from conftest import FakeEditor, FakeToolchain

LINUX = TargetPlatform.parse("linux-x86_64")
MACOS = TargetPlatform.parse("macos-aarch64")


def _only(config: PipelineConfig, *platforms: TargetPlatform) -> PipelineConfig:
    return dataclasses.replace(config, matrix=platforms)


def test_linux_release_tag_publishes_archive_and_checksum(
    project: PipelineConfig, fake_toolchain: FakeToolchain, fake_editor: FakeEditor
) -> None:
    config = _only(project, LINUX)

    result = run_release("1.2.3", config, toolchain=fake_toolchain, editor=fake_editor)

    assert result.triggered and result.ok
    job = result.jobs[LINUX.slug]
    assert [(record.stage, record.status) for record in job.stages] == [
        ("resolve", "ok"),
        ("environment", "ok"),
        ("inject", "ok"),
        ("compile", "ok"),
        ("patch", "ok"),
        ("package", "ok"),
    ]
    assert job.artifact is not None
    assert job.artifact.archive.name == "remote-m8-1.2.3-linux-x86_64.tar.gz"
    digest = hashlib.sha256(job.artifact.archive.read_bytes()).hexdigest()
    assert job.artifact.checksum.read_text().split()[0] == digest

    release_dir = Path(config.release.directory) / "1.2.3"
    assert sorted(path.name for path in release_dir.iterdir()) == [
        "remote-m8-1.2.3-linux-x86_64.tar.gz",
        "remote-m8-1.2.3-linux-x86_64.sha256",
    ]
    assert fake_editor.calls and fake_editor.calls[0][1] == (
        "libasound.so.2",
        "libudev.so.1",
        "libgcc_s.so.1",
    )


def test_macos_release_skips_post_processor(
    project: PipelineConfig, fake_toolchain: FakeToolchain, fake_editor: FakeEditor
) -> None:
    config = _only(project, MACOS)

    result = run_release("refs/tags/v2.0.0", config, toolchain=fake_toolchain, editor=fake_editor)

    assert result.ok
    assert result.version == "v2.0.0"
    job = result.jobs[MACOS.slug]
    patch = job.stage("patch")
    assert patch is not None and patch.status == "skipped"
    assert fake_editor.calls == []
    assert job.artifact is not None
    assert job.artifact.archive.name == "remote-m8-v2.0.0-macos-aarch64.tar.gz"
    assert (Path(config.release.directory) / "v2.0.0" / job.artifact.archive.name).exists()


def test_non_release_ref_never_publishes(
    project: PipelineConfig, fake_toolchain: FakeToolchain, fake_editor: FakeEditor
) -> None:
    result = run_release("release-1", project, toolchain=fake_toolchain, editor=fake_editor)

    assert not result.triggered
    assert result.jobs == {}
    assert result.uploads == []
    assert fake_toolchain.product_builds == []
    assert not Path(project.release.directory).exists()


def test_failed_platform_does_not_block_siblings(
    project: PipelineConfig, fake_toolchain: FakeToolchain, fake_editor: FakeEditor
) -> None:
    fake_toolchain.fail_targets.add(MACOS.rust_target)

    result = run_release("1.2.3", project, toolchain=fake_toolchain, editor=fake_editor)

    assert not result.ok
    linux, macos = result.jobs[LINUX.slug], result.jobs[MACOS.slug]
    assert linux.ok
    assert macos.status == "failed"
    assert macos.error is not None and macos.error["code"] == "E_COMPILE"
    compile_stage = macos.stage("compile")
    assert compile_stage is not None and compile_stage.status == "failed"
    assert macos.stage("package") is None
    assert [upload.platform for upload in result.uploads] == [LINUX]

    manifest_path = Path(project.package.dist_dir) / "remote-m8-1.2.3-manifest.cbor"
    manifest = ReleaseManifest.from_cbor(manifest_path.read_bytes())
    assert [entry.platform for entry in manifest.entries] == [LINUX.slug]
    assert manifest.failed == (MACOS.slug,)

    events_path = Path(project.package.dist_dir) / "remote-m8-1.2.3-events.jsonl"
    events = [json.loads(line) for line in events_path.read_text(encoding="utf-8").splitlines()]
    assert {event["platform"] for event in events if event["level"] == "error"} == {MACOS.slug}


def test_io_error_in_one_job_leaves_siblings_and_publishing_intact(
    project: PipelineConfig,
    fake_toolchain: FakeToolchain,
    fake_editor: FakeEditor,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    original_save = DependencyCacheStore.save

    def save(self: DependencyCacheStore, *, inputs, artifacts):  # type: ignore[no-untyped-def]
        if inputs.target == LINUX.rust_target:
            raise OSError(errno.ENOSPC, "No space left on device")
        return original_save(self, inputs=inputs, artifacts=artifacts)

    monkeypatch.setattr(DependencyCacheStore, "save", save)

    result = run_release("v1.2.3", project, toolchain=fake_toolchain, editor=fake_editor)

    linux, macos = result.jobs[LINUX.slug], result.jobs[MACOS.slug]
    assert linux.status == "failed"
    assert linux.error is not None and linux.error["code"] == "E_COMPILE"
    assert "No space left on device" in linux.error["message"]
    assert macos.ok
    assert [upload.platform for upload in result.uploads] == [MACOS]
    assert linux.report_path is not None and linux.report_path.exists()


def test_unexpected_io_error_is_scoped_to_its_stage(
    project: PipelineConfig,
    fake_toolchain: FakeToolchain,
    fake_editor: FakeEditor,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def broken_package(*args, **kwargs):  # type: ignore[no-untyped-def]
        raise PermissionError(errno.EACCES, "Permission denied")

    monkeypatch.setattr(pipeline, "package_binary", broken_package)

    job = build_local(LINUX, project, toolchain=fake_toolchain, editor=fake_editor)

    assert job.status == "failed"
    assert job.error is not None and job.error["code"] == "E_PACKAGING"
    assert job.stages[-1].stage == "package" and job.stages[-1].status == "failed"


def test_missing_frontend_fails_job_before_compile(
    project: PipelineConfig, fake_toolchain: FakeToolchain, fake_editor: FakeEditor
) -> None:
    broken = dataclasses.replace(project.frontend, revision="1" * 40)
    config = dataclasses.replace(_only(project, LINUX), frontend=broken)

    result = run_release("1.2.3", config, toolchain=fake_toolchain, editor=fake_editor)

    job = result.jobs[LINUX.slug]
    assert job.error is not None and job.error["code"] == "E_MISSING_FRONTEND_ARTIFACT"
    assert fake_toolchain.dependency_builds == []
    assert result.uploads == []


def test_jobs_run_in_isolated_worktrees(
    project: PipelineConfig, fake_toolchain: FakeToolchain, fake_editor: FakeEditor
) -> None:
    job = run_platform_job(
        LINUX,
        project,
        version="1.2.3",
        toolchain=fake_toolchain,
        editor=fake_editor,
        cache=DependencyCacheStore(project.cache_dir),
    )

    assert job.ok
    source = Path(project.product.source)
    assert not (source / "frontend").exists()
    worktree = Path(project.work_dir) / LINUX.slug / "src"
    assert (worktree / "frontend" / "deploy" / "index.html").exists()
    assert not (worktree / "target" / "stale").exists()

    assert job.report_path is not None
    report = json.loads(job.report_path.read_text(encoding="utf-8"))
    assert report["status"] == "succeeded"
    assert report["cache"]["hit"] is False
    assert report["frontend"]["revision"] == project.frontend.revision
    assert [stage["stage"] for stage in report["stages"]][-1] == "package"


def test_second_release_reuses_dependency_cache(
    project: PipelineConfig, fake_toolchain: FakeToolchain, fake_editor: FakeEditor
) -> None:
    config = _only(project, LINUX)
    first = run_release("1.2.3", config, toolchain=fake_toolchain, editor=fake_editor)
    second = run_release("1.2.4", config, toolchain=fake_toolchain, editor=fake_editor)

    assert first.ok and second.ok
    assert fake_toolchain.dependency_builds == [LINUX.rust_target]
    compile_stage = second.jobs[LINUX.slug].stage("compile")
    assert compile_stage is not None and compile_stage.detail["cache_hit"] == "true"


def test_explicit_store_receives_uploads(
    project: PipelineConfig, fake_toolchain: FakeToolchain, fake_editor: FakeEditor, tmp_path: Path
) -> None:
    store = DirectoryReleaseStore(root=tmp_path / "elsewhere")
    result = run_release(
        "v1.0.0", _only(project, LINUX), toolchain=fake_toolchain, editor=fake_editor, store=store
    )

    assert result.uploads[0].location == str(tmp_path / "elsewhere" / "v1.0.0")


def test_frozen_policy_requires_current_lockfile(
    project: PipelineConfig, fake_toolchain: FakeToolchain, fake_editor: FakeEditor
) -> None:
    config = dataclasses.replace(_only(project, LINUX), policy=Policy(require_frozen_lock=True))

    with pytest.raises(PolicyError):
        run_release("1.2.3", config, toolchain=fake_toolchain, editor=fake_editor)
    with pytest.raises(LockfileError):
        run_release("1.2.3", config, toolchain=fake_toolchain, editor=fake_editor, frozen=True)

    write_lockfile(build_lockfile(config), config.lock_path)
    result = run_release("1.2.3", config, toolchain=fake_toolchain, editor=fake_editor, frozen=True)
    assert result.ok

    drifted = dataclasses.replace(config, frontend=dataclasses.replace(config.frontend, revision="2" * 40))
    with pytest.raises(LockfileError):
        run_release("1.2.3", drifted, toolchain=fake_toolchain, editor=fake_editor, frozen=True)


def test_build_local_packages_without_publishing(
    project: PipelineConfig, fake_toolchain: FakeToolchain, fake_editor: FakeEditor
) -> None:
    job = build_local("linux-x86_64", project, toolchain=fake_toolchain, editor=fake_editor)

    assert job.ok
    assert job.artifact is not None
    assert job.artifact.archive.name == "remote-m8-dev-linux-x86_64.tar.gz"
    assert not Path(project.release.directory).exists()


def test_unsupported_platform_fails_at_resolve(
    project: PipelineConfig, fake_toolchain: FakeToolchain, fake_editor: FakeEditor
) -> None:
    job = build_local("linux-riscv64", project, toolchain=fake_toolchain, editor=fake_editor)

    assert job.status == "failed"
    assert job.error is not None and job.error["code"] == "E_UNSUPPORTED_PLATFORM"
    assert [(record.stage, record.status) for record in job.stages] == [("resolve", "failed")]
    assert fake_toolchain.product_builds == []


def test_missing_optional_libraries_are_reported_not_fatal(
    project: PipelineConfig, fake_toolchain: FakeToolchain, fake_editor: FakeEditor, tmp_path: Path
) -> None:
    config = dataclasses.replace(
        project, roots=PackageRoots.from_mapping({}, default=str(tmp_path / "empty-prefix"))
    )

    with pytest.warns(MissingOptionalLibrary):
        job = build_local(LINUX, config, toolchain=fake_toolchain, editor=fake_editor)

    assert job.ok
    environment = job.stage("environment")
    assert environment is not None and environment.detail["missing_optional"] == "jack2,libopus"
    assert job.report_path is not None
    report = json.loads(job.report_path.read_text(encoding="utf-8"))
    logged = [
        log["extra"]["package"]
        for log in report["logs"]
        if log["operation"] == "optional_library_missing"
    ]
    assert logged == ["jack2", "libopus"]
