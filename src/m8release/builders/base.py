"""Typed interfaces for product toolchains."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from m8release.models import BuildDescriptor, CompiledBinary


@dataclass(frozen=True, slots=True)
class CompileOutcome:
    binary: CompiledBinary
    cache_key: str
    cache_hit: bool


class Toolchain(Protocol):
    name: str

    def identity(self) -> str:
        """Return a version string that changes whenever compiler output may change."""

    def build_dependencies(
        self,
        descriptor: BuildDescriptor,
        *,
        source: Path,
        target_dir: Path,
    ) -> None:
        """Compile only the external dependency graph of *source* into *target_dir*."""

    def build_product(
        self,
        descriptor: BuildDescriptor,
        *,
        source: Path,
        target_dir: Path,
        binary: str,
    ) -> Path:
        """Compile the product on top of *target_dir* and return the binary path."""
