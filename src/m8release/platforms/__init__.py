"""Target platforms and their native dependency closures."""

from __future__ import annotations

from .resolve import SUPPORTED_PLATFORMS, is_supported, resolve_dependencies
from .roots import PackageRoots
from .sdk import materialize_sdk_shim, shim_frameworks

__all__ = [
    "PackageRoots",
    "SUPPORTED_PLATFORMS",
    "is_supported",
    "materialize_sdk_shim",
    "resolve_dependencies",
    "shim_frameworks",
]
