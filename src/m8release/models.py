"""Core typed dataclasses for platforms, build inputs and release outputs."""

from __future__ import annotations

import hashlib
import json
import platform as _host
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

from m8release.errors import UnsupportedPlatform

OperatingSystem = Literal["linux", "macos"]
Arch = Literal["x86_64", "aarch64"]
BuildProfile = Literal["deps", "full"]
DependencyKind = Literal["library", "framework", "tool"]
Stage = Literal["resolve", "environment", "inject", "compile", "patch", "package", "publish"]
StageStatus = Literal["ok", "skipped", "failed"]
JobStatus = Literal["succeeded", "failed"]

DEFAULT_ABI: dict[str, str] = {
    "linux": "gnu",
    "macos": "darwin",
}

_HOST_OS: dict[str, str] = {
    "Linux": "linux",
    "Darwin": "macos",
}

_HOST_ARCH: dict[str, str] = {
    "x86_64": "x86_64",
    "amd64": "x86_64",
    "AMD64": "x86_64",
    "arm64": "aarch64",
    "aarch64": "aarch64",
}


@dataclass(frozen=True, slots=True, order=True)
class TargetPlatform:
    os: str
    arch: str
    abi: str

    @property
    def slug(self) -> str:
        return f"{self.os}-{self.arch}"

    @property
    def rust_target(self) -> str:
        if self.os == "macos":
            return f"{self.arch}-apple-darwin"
        return f"{self.arch}-unknown-{self.os}-{self.abi}"

    @property
    def is_linux(self) -> bool:
        return self.os == "linux"

    @classmethod
    def parse(cls, value: str) -> TargetPlatform:
        """Parse ``<os>-<arch>`` or ``<os>-<arch>-<abi>``."""
        parts = value.strip().split("-")
        if len(parts) not in (2, 3) or not all(parts):
            raise UnsupportedPlatform(
                "Platform identifier must look like `<os>-<arch>[-<abi>]`.",
                context={"platform": value},
            )
        os_name, arch = parts[0], parts[1]
        abi = parts[2] if len(parts) == 3 else DEFAULT_ABI.get(os_name, "")
        return cls(os=os_name, arch=arch, abi=abi)

    @classmethod
    def host(cls) -> TargetPlatform:
        system = _host.system()
        machine = _host.machine()
        os_name = _HOST_OS.get(system, system.lower())
        arch = _HOST_ARCH.get(machine, machine.lower())
        return cls(os=os_name, arch=arch, abi=DEFAULT_ABI.get(os_name, ""))

    def __str__(self) -> str:
        return f"{self.os}-{self.arch}-{self.abi}"


@dataclass(frozen=True, slots=True)
class NativeDependency:
    package: str
    kind: DependencyKind
    role: str
    soname: str | None = None
    optional: bool = False
    declare_needed: bool = False


@dataclass(frozen=True, slots=True)
class SdkShimSpec:
    frameworks: tuple[str, ...]
    layout: str = "System/Library/Frameworks"


@dataclass(frozen=True, slots=True)
class DependencySet:
    platform: TargetPlatform
    build: tuple[NativeDependency, ...] = ()
    runtime: tuple[NativeDependency, ...] = ()
    sdk_shim: SdkShimSpec | None = None

    @property
    def shared_libraries(self) -> tuple[NativeDependency, ...]:
        return tuple(dep for dep in self.runtime if dep.soname is not None)

    def packages(self) -> tuple[str, ...]:
        return tuple(dict.fromkeys(dep.package for dep in (*self.build, *self.runtime)))

    def to_payload(self) -> dict[str, Any]:
        return {
            "platform": str(self.platform),
            "build": [_dependency_payload(dep) for dep in self.build],
            "runtime": [_dependency_payload(dep) for dep in self.runtime],
            "sdk_shim": (
                None
                if self.sdk_shim is None
                else {"frameworks": list(self.sdk_shim.frameworks), "layout": self.sdk_shim.layout}
            ),
        }

    def digest(self) -> str:
        canonical = json.dumps(self.to_payload(), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _dependency_payload(dep: NativeDependency) -> dict[str, Any]:
    return {
        "package": dep.package,
        "kind": dep.kind,
        "role": dep.role,
        "soname": dep.soname,
        "optional": dep.optional,
        "declare_needed": dep.declare_needed,
    }


@dataclass(frozen=True, slots=True)
class ToolchainRef:
    channel: str
    target: str
    linker: str | None = None


@dataclass(frozen=True, slots=True)
class BuildDescriptor:
    platform: TargetPlatform
    source_root: Path
    env: tuple[tuple[str, str], ...]
    toolchain: ToolchainRef
    pre_compile_hooks: tuple[str, ...] = ()
    post_compile_hooks: tuple[str, ...] = ()

    @property
    def env_map(self) -> dict[str, str]:
        return dict(self.env)

    def profile_env(self, profile: BuildProfile) -> dict[str, str]:
        env = self.env_map
        env["M8RELEASE_BUILD_PROFILE"] = profile
        return env


@dataclass(frozen=True, slots=True)
class FrontendArtifact:
    revision: str
    path: Path
    digest: str


@dataclass(frozen=True, slots=True)
class CompiledBinary:
    product: str
    platform: TargetPlatform
    version: str
    path: Path
    sha256: str


@dataclass(frozen=True, slots=True)
class PatchSpec:
    entries: tuple[tuple[str, str], ...] = ()

    @property
    def sonames(self) -> tuple[str, ...]:
        return tuple(soname for _, soname in self.entries)


@dataclass(frozen=True, slots=True)
class ReleaseArtifact:
    platform: TargetPlatform
    version: str
    archive: Path
    checksum: Path
    sha256: str


@dataclass(frozen=True, slots=True)
class StageRecord:
    stage: Stage
    status: StageStatus
    detail: Mapping[str, str] = field(default_factory=dict)


@dataclass(slots=True)
class JobResult:
    platform: TargetPlatform
    status: JobStatus = "succeeded"
    stages: list[StageRecord] = field(default_factory=list)
    artifact: ReleaseArtifact | None = None
    error: dict[str, object] | None = None
    report_path: Path | None = None

    @property
    def ok(self) -> bool:
        return self.status == "succeeded"

    def stage(self, name: Stage) -> StageRecord | None:
        for record in self.stages:
            if record.stage == name:
                return record
        return None


@dataclass(frozen=True, slots=True)
class UploadRecord:
    platform: TargetPlatform
    names: tuple[str, ...]
    location: str


@dataclass(slots=True)
class ReleaseResult:
    ref: str
    version: str | None
    jobs: dict[str, JobResult] = field(default_factory=dict)
    uploads: list[UploadRecord] = field(default_factory=list)
    publish_error: dict[str, object] | None = None

    @property
    def triggered(self) -> bool:
        return self.version is not None

    @property
    def ok(self) -> bool:
        return all(job.ok for job in self.jobs.values()) and self.publish_error is None


__all__ = [
    "Arch",
    "BuildDescriptor",
    "BuildProfile",
    "CompiledBinary",
    "DEFAULT_ABI",
    "DependencyKind",
    "DependencySet",
    "FrontendArtifact",
    "JobResult",
    "JobStatus",
    "NativeDependency",
    "OperatingSystem",
    "PatchSpec",
    "ReleaseArtifact",
    "ReleaseResult",
    "SdkShimSpec",
    "Stage",
    "StageRecord",
    "StageStatus",
    "TargetPlatform",
    "ToolchainRef",
    "UploadRecord",
]
