"""Release packaging: strip, archive, checksum.

Archives are built so that identical binary bytes, version and platform
always produce identical archive bytes: tar member metadata is normalized
and the gzip header timestamp is fixed.
"""

from __future__ import annotations

import gzip
import shutil
import subprocess
import tarfile
from pathlib import Path

from m8release.errors import PackagingFailure
from m8release.hashing import file_sha256
from m8release.models import CompiledBinary, ReleaseArtifact, TargetPlatform

ARCHIVE_SUFFIX = ".tar.gz"
CHECKSUM_SUFFIX = ".sha256"
BINARY_MODE = 0o755

CROSS_STRIP_PREFIX: dict[tuple[str, str], str] = {
    ("linux", "aarch64"): "aarch64-linux-gnu-",
}


def artifact_basename(product: str, version: str, platform: TargetPlatform) -> str:
    return f"{product}-{version}-{platform.os}-{platform.arch}"


def strip_command(platform: TargetPlatform, *, host: TargetPlatform | None = None) -> str:
    """Return the strip executable for *platform*, using a cross prefix when needed."""
    prefix = CROSS_STRIP_PREFIX.get((platform.os, platform.arch), "")
    if host is not None and host.os == platform.os and host.arch == platform.arch:
        prefix = ""
    return f"{prefix}strip"


def strip_binary(source: Path, destination: Path, *, tool: str) -> Path:
    """Copy *source* to *destination* and remove debug symbols from the copy."""
    destination.parent.mkdir(parents=True, exist_ok=True)
    shutil.copy2(source, destination)
    if shutil.which(tool) is None:
        raise PackagingFailure(
            f"`{tool}` is required to strip the release binary.",
            hint="Install binutils for the target or disable [package].strip.",
            context={"operation": "strip", "path": str(source)},
        )
    result = subprocess.run(
        [tool, str(destination)],
        capture_output=True,
        text=True,
        check=False,
    )
    if result.returncode != 0:
        raise PackagingFailure(
            "Stripping debug symbols failed.",
            context={
                "operation": "strip",
                "path": str(destination),
                "returncode": str(result.returncode),
                "stderr": result.stderr[:2000] if result.stderr else "",
            },
        )
    return destination


def create_archive(binary: Path, archive: Path, *, member_name: str) -> Path:
    """Write a single-member ``.tar.gz`` with normalized metadata."""
    archive.parent.mkdir(parents=True, exist_ok=True)
    info = tarfile.TarInfo(name=member_name)
    info.size = binary.stat().st_size
    info.mode = BINARY_MODE
    info.mtime = 0
    info.uid = 0
    info.gid = 0
    info.uname = ""
    info.gname = ""
    with archive.open("wb") as raw:
        with gzip.GzipFile(filename="", mode="wb", fileobj=raw, mtime=0) as compressed:
            with tarfile.open(fileobj=compressed, mode="w", format=tarfile.GNU_FORMAT) as tar:
                with binary.open("rb") as payload:
                    tar.addfile(info, payload)
    return archive


def write_checksum(archive: Path, checksum: Path) -> str:
    """Write ``<sha256>  <archive name>`` (``shasum -a 256`` format) and return the digest."""
    digest = file_sha256(archive)
    checksum.write_text(f"{digest}  {archive.name}\n", encoding="utf-8")
    return digest


def read_checksum(checksum: Path) -> str:
    try:
        content = checksum.read_text(encoding="utf-8").strip()
    except OSError as exc:
        raise PackagingFailure(
            "Checksum file could not be read.",
            context={"operation": "verify", "path": str(checksum), "reason": str(exc)},
        ) from exc
    if not content:
        raise PackagingFailure(
            "Checksum file is empty.",
            context={"operation": "verify", "path": str(checksum)},
        )
    return content.split()[0].lower()


def verify_checksum(archive: Path, checksum: Path) -> bool:
    expected = read_checksum(checksum)
    if not archive.is_file():
        raise PackagingFailure(
            "Archive does not exist.",
            context={"operation": "verify", "path": str(archive)},
        )
    return expected == file_sha256(archive)


def package_binary(
    binary: CompiledBinary,
    *,
    dist_dir: str | Path,
    binary_name: str,
    strip: bool = True,
    strip_tool: str | None = None,
) -> ReleaseArtifact:
    """Strip, archive and checksum *binary* into *dist_dir*."""
    dist = Path(dist_dir)
    basename = artifact_basename(binary.product, binary.version, binary.platform)
    staging = dist / ".staging" / basename
    try:
        if staging.exists():
            shutil.rmtree(staging)
        staged_binary = staging / binary_name
        if strip:
            strip_binary(
                binary.path,
                staged_binary,
                tool=strip_tool or strip_command(binary.platform, host=TargetPlatform.host()),
            )
        else:
            staged_binary.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(binary.path, staged_binary)

        archive = create_archive(
            staged_binary,
            dist / f"{basename}{ARCHIVE_SUFFIX}",
            member_name=binary_name,
        )
        checksum = dist / f"{basename}{CHECKSUM_SUFFIX}"
        digest = write_checksum(archive, checksum)
    except OSError as exc:
        raise PackagingFailure(
            "Unable to write release archive.",
            context={"operation": "package", "artifact": basename, "reason": str(exc)},
        ) from exc
    finally:
        shutil.rmtree(staging, ignore_errors=True)

    return ReleaseArtifact(
        platform=binary.platform,
        version=binary.version,
        archive=archive,
        checksum=checksum,
        sha256=digest,
    )
