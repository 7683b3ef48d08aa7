"""Content digests for files and directory trees."""

from __future__ import annotations

import hashlib
import os
from pathlib import Path

_CHUNK = 1 << 16


def file_sha256(path: str | Path) -> str:
    digest = hashlib.sha256()
    with Path(path).open("rb") as handle:
        for chunk in iter(lambda: handle.read(_CHUNK), b""):
            digest.update(chunk)
    return digest.hexdigest()


def tree_digest(root: str | Path) -> str:
    """Digest of relative paths, file modes and contents; timestamps are ignored."""
    base = Path(root)
    digest = hashlib.sha256()
    for path in sorted(base.rglob("*")):
        rel = path.relative_to(base).as_posix()
        if path.is_symlink():
            digest.update(f"L {rel} {os.readlink(path)}\n".encode())
        elif path.is_dir():
            digest.update(f"D {rel}\n".encode())
        else:
            executable = "x" if os.access(path, os.X_OK) else "-"
            digest.update(f"F {rel} {executable} {file_sha256(path)}\n".encode())
    return digest.hexdigest()


def fsync_tree(root: str | Path) -> None:
    """Flush every file and directory under *root* to stable storage."""
    base = Path(root)
    for path in sorted(base.rglob("*"), reverse=True):
        if path.is_symlink():
            continue
        _fsync_path(path)
    _fsync_path(base)
    _fsync_path(base.parent)


def _fsync_path(path: Path) -> None:
    flags = os.O_RDONLY
    if path.is_dir():
        flags |= getattr(os, "O_DIRECTORY", 0)
    fd = os.open(path, flags)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)
