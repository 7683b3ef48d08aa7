"""Synthesized platform SDK shim.

Host SDK discovery (``xcrun --show-sdk-path``) can return the wrong SDK
version or nothing at all. Instead, only the required frameworks are
symlinked into a directory shaped like ``MacOSX<version>.sdk`` so that
framework bindings are generated against pinned inputs.
"""

from __future__ import annotations

import shutil
from pathlib import Path

from m8release.errors import ValidationError
from m8release.models import SdkShimSpec


def materialize_sdk_shim(
    spec: SdkShimSpec,
    *,
    framework_root: str | Path,
    destination: str | Path,
) -> Path:
    """Create the shim under *destination* and return its root.

    Existing shim contents are replaced, so re-running with the same inputs
    yields the same tree.
    """
    source_root = Path(framework_root)
    shim_root = Path(destination)
    missing = [
        name for name in spec.frameworks if not (source_root / f"{name}.framework").exists()
    ]
    if missing:
        raise ValidationError(
            "Required frameworks are missing from the framework root.",
            hint="Point [sdk].framework_root at a pinned SDK frameworks directory.",
            context={
                "operation": "sdk_shim",
                "framework_root": str(source_root),
                "missing": ",".join(missing),
            },
        )

    if shim_root.exists():
        shutil.rmtree(shim_root)
    frameworks_dir = shim_root / spec.layout
    frameworks_dir.mkdir(parents=True)
    for name in sorted(spec.frameworks):
        link = frameworks_dir / f"{name}.framework"
        link.symlink_to((source_root / f"{name}.framework").resolve(), target_is_directory=True)
    return shim_root


def shim_frameworks(shim_root: str | Path, spec: SdkShimSpec) -> tuple[str, ...]:
    frameworks_dir = Path(shim_root) / spec.layout
    if not frameworks_dir.exists():
        return ()
    return tuple(sorted(path.stem for path in frameworks_dir.glob("*.framework")))
