"""Toolchain drivers and the cached compilation stage."""

from .base import CompileOutcome, Toolchain
from .cargo import CargoToolchain
from .compile import build_dependencies_cached, compile_platform, dependency_cache_input

__all__ = [
    "CargoToolchain",
    "CompileOutcome",
    "Toolchain",
    "build_dependencies_cached",
    "compile_platform",
    "dependency_cache_input",
]
