"""Declaring runtime library dependencies in compiled Linux binaries.

ALSA backend plugins are loaded with ``dlopen`` and the compiler runtime
support library is pulled in implicitly, so neither shows up in the linker's
view of the program. The post-processor adds ``DT_NEEDED`` entries for them
directly in the binary's dynamic section, without relinking.
"""

from __future__ import annotations

import shutil
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from elftools.common.exceptions import ELFError
from elftools.elf.dynamic import DynamicSection
from elftools.elf.elffile import ELFFile

from m8release.errors import PatchFailure, ValidationError
from m8release.hashing import file_sha256
from m8release.models import CompiledBinary, DependencySet, PatchSpec, TargetPlatform

COMPILER_RUNTIME: tuple[str, str] = ("libgcc", "libgcc_s.so.1")


def requires_patch(platform: TargetPlatform) -> bool:
    return platform.is_linux


def build_patch_spec(dependencies: DependencySet) -> PatchSpec:
    entries = [
        (dep.package, dep.soname)
        for dep in dependencies.runtime
        if dep.declare_needed and dep.soname is not None
    ]
    entries.append(COMPILER_RUNTIME)
    return PatchSpec(entries=tuple(entries))


class BinaryMetadataEditor(Protocol):
    name: str

    def read_needed(self, path: Path) -> tuple[str, ...]:
        """Return the sonames currently declared as needed by the binary at *path*."""

    def add_needed(self, path: Path, sonames: tuple[str, ...]) -> None:
        """Add ``DT_NEEDED`` entries for *sonames* to the binary at *path* in place."""


@dataclass(slots=True)
class PatchelfEditor:
    name: str = "patchelf"
    tool: str = "patchelf"
    extra_args: list[str] = field(default_factory=list)

    def read_needed(self, path: Path) -> tuple[str, ...]:
        return read_needed(path)

    def add_needed(self, path: Path, sonames: tuple[str, ...]) -> None:
        if shutil.which(self.tool) is None:
            raise PatchFailure(
                f"`{self.tool}` is required to edit dynamic-linking metadata.",
                hint="Install patchelf and ensure it is available in PATH.",
                context={"operation": "patch", "path": str(path)},
            )
        argv = [self.tool, *self.extra_args]
        for soname in sonames:
            argv.extend(["--add-needed", soname])
        argv.append(str(path))
        result = subprocess.run(argv, capture_output=True, text=True, check=False)
        if result.returncode != 0:
            raise PatchFailure(
                "patchelf failed to add needed entries.",
                hint="Check that the binary is a dynamically linked ELF executable.",
                context={
                    "operation": "patch",
                    "path": str(path),
                    "returncode": str(result.returncode),
                    "stderr": result.stderr[:2000] if result.stderr else "",
                },
            )


def read_needed(path: str | Path) -> tuple[str, ...]:
    """Return the ``DT_NEEDED`` sonames recorded in an ELF binary."""
    binary_path = Path(path)
    try:
        with binary_path.open("rb") as handle:
            elf = ELFFile(handle)
            dynamic = elf.get_section_by_name(".dynamic")
            if not isinstance(dynamic, DynamicSection):
                raise PatchFailure(
                    "Binary has no dynamic section.",
                    hint="Statically linked binaries cannot declare runtime libraries.",
                    context={"operation": "read_needed", "path": str(binary_path)},
                )
            return tuple(
                tag.needed for tag in dynamic.iter_tags() if tag.entry.d_tag == "DT_NEEDED"
            )
    except ELFError as exc:
        raise PatchFailure(
            "Binary is not a valid ELF file.",
            context={"operation": "read_needed", "path": str(binary_path), "reason": str(exc)},
        ) from exc
    except OSError as exc:
        raise PatchFailure(
            "Binary could not be read.",
            context={"operation": "read_needed", "path": str(binary_path), "reason": str(exc)},
        ) from exc


def patch_binary(
    binary: CompiledBinary,
    spec: PatchSpec,
    *,
    editor: BinaryMetadataEditor,
    output_dir: str | Path,
) -> CompiledBinary:
    """Return a patched copy of *binary*; the input file is left untouched."""
    if not requires_patch(binary.platform):
        raise ValidationError(
            "Dynamic dependency patching only applies to Linux binaries.",
            context={"operation": "patch", "platform": str(binary.platform)},
        )

    destination_dir = Path(output_dir)
    patched_path = destination_dir / binary.path.name
    try:
        destination_dir.mkdir(parents=True, exist_ok=True)
        shutil.copy2(binary.path, patched_path)
    except OSError as exc:
        raise PatchFailure(
            "Unable to copy the binary for patching.",
            context={"operation": "patch", "path": str(binary.path), "reason": str(exc)},
        ) from exc

    present = editor.read_needed(patched_path)
    missing = tuple(soname for soname in spec.sonames if soname not in present)

    if missing:
        editor.add_needed(patched_path, missing)

    declared = editor.read_needed(patched_path)
    undeclared = [soname for soname in spec.sonames if soname not in declared]
    if undeclared:
        raise PatchFailure(
            "Patched binary does not declare every required library.",
            context={
                "operation": "patch",
                "editor": editor.name,
                "missing": ",".join(undeclared),
            },
        )

    return CompiledBinary(
        product=binary.product,
        platform=binary.platform,
        version=binary.version,
        path=patched_path,
        sha256=file_sha256(patched_path),
    )
