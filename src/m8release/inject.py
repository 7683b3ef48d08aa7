"""Frontend artifact injection.

Runs as the ``inject-frontend`` pre-compile hook: the pinned frontend bundle
is fetched fresh for every job and copied into the working tree, and the
copy is flushed to disk before the hook returns. Nothing from a previous
run is reused, so a revision that disappeared upstream fails the job.
"""

from __future__ import annotations

import shutil
from pathlib import Path

from m8release.config import FrontendPin
from m8release.errors import MissingFrontendArtifact, ReleaseError, ValidationError
from m8release.fetch import extract_archive, fetch, fetch_git
from m8release.hashing import fsync_tree, tree_digest
from m8release.models import FrontendArtifact
from m8release.policy import Policy

_IGNORED = shutil.ignore_patterns(".git")


def fetch_frontend(pin: FrontendPin, *, scratch_dir: str | Path, policy: Policy | None = None) -> Path:
    """Fetch *pin* into an emptied *scratch_dir* and return the bundle root."""
    if pin.kind == "archive" and not pin.sha256:
        raise ValidationError(
            "Archive frontend pins require a sha256.",
            context={"operation": "inject", "source": pin.source},
        )
    scratch = Path(scratch_dir)
    if scratch.exists():
        shutil.rmtree(scratch)
    scratch.mkdir(parents=True)

    try:
        if pin.kind == "git":
            result = fetch_git(
                pin.source,
                commit=pin.revision,
                dest_dir=scratch / "git",
                tree_hash=pin.tree_hash,
                policy=policy,
            )
            return result.path
        archive = fetch(pin.source, sha256=pin.sha256, dest_dir=scratch / "download", policy=policy)
        unpacked = extract_archive(archive, scratch / "unpacked")
    except (ReleaseError, OSError) as exc:
        raise MissingFrontendArtifact(
            "Pinned frontend artifact could not be fetched.",
            hint="Check that the pinned revision still exists; stale copies are never used.",
            context={
                "operation": "inject",
                "source": pin.source,
                "revision": pin.revision,
                "reason": str(exc).splitlines()[0] if str(exc) else type(exc).__name__,
            },
        ) from exc
    return _bundle_root(unpacked)


def inject_frontend(
    pin: FrontendPin,
    *,
    worktree: str | Path,
    scratch_dir: str | Path,
    policy: Policy | None = None,
) -> FrontendArtifact:
    """Place the pinned frontend at ``worktree/<pin.destination>``."""
    tree = Path(worktree)
    destination = _destination(tree, pin.destination)
    bundle = fetch_frontend(pin, scratch_dir=scratch_dir, policy=policy)

    if destination.exists():
        shutil.rmtree(destination)
    destination.parent.mkdir(parents=True, exist_ok=True)
    try:
        shutil.copytree(bundle, destination, symlinks=True, ignore=_IGNORED)
        fsync_tree(destination)
    except OSError as exc:
        raise MissingFrontendArtifact(
            "Frontend artifact could not be written into the working tree.",
            context={"operation": "inject", "destination": str(destination), "reason": str(exc)},
        ) from exc

    return FrontendArtifact(
        revision=pin.revision,
        path=destination,
        digest=tree_digest(destination),
    )


def _destination(worktree: Path, relative: str) -> Path:
    candidate = Path(relative)
    resolved = (worktree / candidate).resolve()
    if candidate.is_absolute() or not resolved.is_relative_to(worktree.resolve()):
        raise ValidationError(
            "Frontend destination must be a relative path inside the working tree.",
            context={"operation": "inject", "destination": relative},
        )
    return worktree / candidate


def _bundle_root(unpacked: Path) -> Path:
    entries = list(unpacked.iterdir())
    if len(entries) == 1 and entries[0].is_dir():
        return entries[0]
    return unpacked
