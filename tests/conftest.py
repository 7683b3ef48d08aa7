"""Shared test fixtures."""

from __future__ import annotations

import os
import shutil
import subprocess
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from m8release.config import PipelineConfig, load_config
from m8release.errors import CompileFailure
from m8release.models import BuildDescriptor

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")

_GIT_ENV = {
    "GIT_AUTHOR_NAME": "Test",
    "GIT_AUTHOR_EMAIL": "test@example.com",
    "GIT_COMMITTER_NAME": "Test",
    "GIT_COMMITTER_EMAIL": "test@example.com",
    "GIT_AUTHOR_DATE": "2000-01-01T00:00:00Z",
    "GIT_COMMITTER_DATE": "2000-01-01T00:00:00Z",
}


@dataclass(slots=True)
class FakeToolchain:
    """Toolchain double that writes deterministic outputs instead of invoking cargo."""

    name: str = "fake"
    fail_targets: set[str] = field(default_factory=set)
    dependency_builds: list[str] = field(default_factory=list)
    product_builds: list[str] = field(default_factory=list)

    def identity(self) -> str:
        return "fake-rustc 1.0.0"

    def build_dependencies(
        self,
        descriptor: BuildDescriptor,
        *,
        source: Path,
        target_dir: Path,
    ) -> None:
        self.dependency_builds.append(descriptor.toolchain.target)
        deps = target_dir / descriptor.toolchain.target / "release" / "deps"
        deps.mkdir(parents=True, exist_ok=True)
        (deps / "libdeps.rlib").write_text(f"deps for {descriptor.toolchain.target}\n")

    def build_product(
        self,
        descriptor: BuildDescriptor,
        *,
        source: Path,
        target_dir: Path,
        binary: str,
    ) -> Path:
        target = descriptor.toolchain.target
        self.product_builds.append(target)
        if target in self.fail_targets:
            raise CompileFailure("cargo build failed.", context={"operation": "build_product"})
        assert (target_dir / target / "release" / "deps" / "libdeps.rlib").exists()
        assert (source / "frontend" / "deploy" / "index.html").exists()
        output = target_dir / target / "release" / binary
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_bytes(f"binary {binary} for {target}\n".encode())
        output.chmod(0o755)
        return output


@dataclass(slots=True)
class FakeEditor:
    """Metadata editor double that tracks declared sonames per path."""

    name: str = "fake-editor"
    declared: dict[str, list[str]] = field(default_factory=dict)
    calls: list[tuple[str, tuple[str, ...]]] = field(default_factory=list)
    drop: set[str] = field(default_factory=set)

    def read_needed(self, path: Path) -> tuple[str, ...]:
        return tuple(self.declared.get(str(path), ()))

    def add_needed(self, path: Path, sonames: tuple[str, ...]) -> None:
        self.calls.append((str(path), sonames))
        current = self.declared.setdefault(str(path), [])
        current.extend(soname for soname in sonames if soname not in self.drop)


def git(*args: str, cwd: Path) -> str:
    result = subprocess.run(
        ["git", *args],
        cwd=cwd,
        env={**os.environ, **_GIT_ENV},
        capture_output=True,
        text=True,
        check=True,
    )
    return result.stdout.strip()


def make_frontend_repo(root: Path) -> str:
    """Create a one-commit frontend repository and return its commit SHA."""
    root.mkdir(parents=True)
    git("init", "--quiet", cwd=root)
    (root / "index.html").write_text("<html>m8</html>\n")
    (root / "js").mkdir()
    (root / "js" / "main.js").write_text("console.log('m8');\n")
    git("add", ".", cwd=root)
    git("commit", "--quiet", "-m", "frontend", cwd=root)
    return git("rev-parse", "HEAD", cwd=root)


def make_product_source(root: Path) -> Path:
    (root / "src").mkdir(parents=True)
    (root / "Cargo.toml").write_text('[package]\nname = "remote-m8"\nversion = "0.1.0"\n')
    (root / "Cargo.lock").write_text("version = 3\n")
    (root / "src" / "main.rs").write_text("fn main() {}\n")
    (root / "target").mkdir()
    (root / "target" / "stale").write_text("stale build output\n")
    return root


def make_framework_root(root: Path) -> Path:
    for name in ("AudioUnit", "CoreAudio"):
        (root / f"{name}.framework" / "Headers").mkdir(parents=True)
    return root


def write_config(
    root: Path,
    *,
    frontend_source: str,
    frontend_revision: str,
    platforms: tuple[str, ...] = ("linux-x86_64", "macos-aarch64"),
    extra: str = "",
) -> Path:
    quoted = ", ".join(f'"{item}"' for item in platforms)
    config_path = root / "m8release.toml"
    config_path.write_text(
        f"""
[product]
name = "remote-m8"
source = "product"
binary = "remote-m8"

[frontend]
kind = "git"
source = "{frontend_source}"
revision = "{frontend_revision}"

[matrix]
platforms = [{quoted}]

[package]
strip = false
dist_dir = "dist"

[release]
store = "directory"
directory = "releases"

[sdk]
framework_root = "{root / 'frameworks'}"

[paths]
work_dir = "build"
cache_dir = "cache"
lock = "m8release.lock"
{extra}
""",
        encoding="utf-8",
    )
    return config_path


@pytest.fixture
def fake_toolchain() -> FakeToolchain:
    return FakeToolchain()


@pytest.fixture
def fake_editor() -> FakeEditor:
    return FakeEditor()


@pytest.fixture
def frontend_repo(tmp_path: Path) -> tuple[Path, str]:
    if shutil.which("git") is None:
        pytest.skip("git is not installed")
    repo = tmp_path / "frontend-repo"
    return repo, make_frontend_repo(repo)


@pytest.fixture
def project(tmp_path: Path, frontend_repo: tuple[Path, str]) -> PipelineConfig:
    """A complete pipeline configuration over local fixtures."""
    repo, commit = frontend_repo
    make_product_source(tmp_path / "product")
    make_framework_root(tmp_path / "frameworks")
    config_path = write_config(tmp_path, frontend_source=str(repo), frontend_revision=commit)
    return load_config(config_path)
