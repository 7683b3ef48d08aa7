"""Cargo toolchain driver."""

from __future__ import annotations

import os
import shutil
import subprocess
import tempfile
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from pathlib import Path

from m8release.errors import CompileFailure
from m8release.models import BuildDescriptor, BuildProfile

MANIFEST = "Cargo.toml"
LOCKFILE = "Cargo.lock"
EXCLUDED_DIRS = frozenset({"target", ".git", "frontend"})

_STUB_MAIN = "fn main() {}\n"
_STUB_LIB = ""


@dataclass(slots=True)
class CargoToolchain:
    name: str = "cargo"
    cargo: str = "cargo"
    rustc: str = "rustc"
    channel: str = "stable"

    def identity(self) -> str:
        output = self._run([self.rustc, "--version"], cwd=None, env=None, operation="identity")
        return f"{self.channel}:{output.strip()}"

    def command(self, descriptor: BuildDescriptor, *, target_dir: Path) -> tuple[str, ...]:
        return (
            self.cargo,
            "build",
            "--release",
            "--locked",
            "--target",
            descriptor.toolchain.target,
            "--target-dir",
            str(target_dir),
        )

    def build_dependencies(
        self,
        descriptor: BuildDescriptor,
        *,
        source: Path,
        target_dir: Path,
    ) -> None:
        """Build the dependency graph against a stubbed copy of the workspace.

        Only manifests and the lockfile are copied, with empty entry points,
        so edits to product sources never change what is compiled here.
        """
        target_dir.parent.mkdir(parents=True, exist_ok=True)
        skeleton = Path(tempfile.mkdtemp(prefix="deps-skeleton-", dir=str(target_dir.parent)))
        try:
            write_skeleton(source, skeleton)
            self._run(
                list(self.command(descriptor, target_dir=target_dir)),
                cwd=skeleton,
                env=_process_env(descriptor, "deps"),
                operation="build_dependencies",
            )
        finally:
            shutil.rmtree(skeleton, ignore_errors=True)

    def build_product(
        self,
        descriptor: BuildDescriptor,
        *,
        source: Path,
        target_dir: Path,
        binary: str,
    ) -> Path:
        self._run(
            list(self.command(descriptor, target_dir=target_dir)),
            cwd=source,
            env=_process_env(descriptor, "full"),
            operation="build_product",
        )
        output = target_dir / descriptor.toolchain.target / "release" / binary
        if not output.is_file():
            raise CompileFailure(
                "cargo finished but the product binary is missing.",
                hint="Check that [product].binary matches the crate's binary name.",
                context={"operation": "build_product", "expected": str(output)},
            )
        return output

    def _run(
        self,
        argv: list[str],
        *,
        cwd: Path | None,
        env: Mapping[str, str] | None,
        operation: str,
    ) -> str:
        try:
            result = subprocess.run(
                argv,
                cwd=str(cwd) if cwd is not None else None,
                env=dict(env) if env is not None else None,
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError as exc:
            raise CompileFailure(
                f"`{argv[0]}` is not installed.",
                hint="Install the pinned Rust toolchain and ensure it is in PATH.",
                context={"operation": operation, "command": " ".join(argv)},
            ) from exc
        if result.returncode != 0:
            raise CompileFailure(
                "cargo build failed." if argv[0] == self.cargo else f"{argv[0]} failed.",
                hint="Check compiler output for details.",
                context={
                    "operation": operation,
                    "command": " ".join(argv),
                    "returncode": str(result.returncode),
                    "stderr": result.stderr[-2000:] if result.stderr else "",
                },
            )
        return result.stdout


def iter_manifests(source: Path) -> Iterator[Path]:
    for path in sorted(source.rglob(MANIFEST)):
        rel = path.relative_to(source)
        if EXCLUDED_DIRS.intersection(rel.parts[:-1]):
            continue
        yield path


def write_skeleton(source: Path, skeleton: Path) -> None:
    """Copy manifests and lockfile from *source* and stub every crate's entry points."""
    lockfile = source / LOCKFILE
    if lockfile.exists():
        shutil.copy2(lockfile, skeleton / LOCKFILE)
    for manifest in iter_manifests(source):
        crate_dir = skeleton / manifest.parent.relative_to(source)
        (crate_dir / "src").mkdir(parents=True, exist_ok=True)
        shutil.copy2(manifest, crate_dir / MANIFEST)
        (crate_dir / "src" / "main.rs").write_text(_STUB_MAIN, encoding="utf-8")
        (crate_dir / "src" / "lib.rs").write_text(_STUB_LIB, encoding="utf-8")
        if (manifest.parent / "build.rs").exists():
            (crate_dir / "build.rs").write_text(_STUB_MAIN, encoding="utf-8")


def _process_env(descriptor: BuildDescriptor, profile: BuildProfile) -> dict[str, str]:
    env = dict(os.environ)
    env.update(descriptor.profile_env(profile))
    return env
