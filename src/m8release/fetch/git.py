"""Git fetch pinned to an immutable commit, with tree verification."""

from __future__ import annotations

import re
import shutil
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path

from m8release.errors import ReproducibilityError, ValidationError
from m8release.policy import Policy, ensure_network_allowed

COMMIT_PATTERN = re.compile(r"^[0-9a-f]{40}$")


@dataclass(frozen=True, slots=True)
class GitFetchResult:
    path: Path
    commit: str
    tree_hash: str


def fetch_git(
    repo: str,
    *,
    commit: str,
    dest_dir: str | Path,
    tree_hash: str | None = None,
    policy: Policy | None = None,
) -> GitFetchResult:
    """Check out *commit* of *repo* into ``dest_dir/<commit>``.

    Only full commit SHAs are accepted; branch and tag names can move between
    runs and are rejected.
    """
    if policy is not None:
        ensure_network_allowed(policy=policy, operation="fetch_git")
    if not COMMIT_PATTERN.fullmatch(commit):
        raise ValidationError(
            "fetch_git() requires a full 40-character commit SHA.",
            hint="Pin the frontend to an immutable revision instead of a branch or tag.",
            context={"operation": "fetch_git", "repo": repo, "commit": commit},
        )

    dest_root = Path(dest_dir)
    dest_root.mkdir(parents=True, exist_ok=True)
    checkout_path = dest_root / commit
    if checkout_path.exists():
        shutil.rmtree(checkout_path)

    temp_root = Path(tempfile.mkdtemp(prefix="m8-git-", dir=str(dest_root)))
    try:
        _run_git(["clone", "--quiet", "--no-checkout", repo, str(temp_root)])
        _run_git(["checkout", "--quiet", "--detach", commit], cwd=temp_root)
        actual_commit = _run_git(["rev-parse", "HEAD"], cwd=temp_root)
        actual_tree = _run_git(["rev-parse", "HEAD^{tree}"], cwd=temp_root)
        if actual_commit != commit:
            raise ReproducibilityError(
                "Checked out commit does not match the pinned commit.",
                context={
                    "operation": "fetch_git",
                    "repo": repo,
                    "expected": commit,
                    "actual": actual_commit,
                },
            )
        if tree_hash and actual_tree != tree_hash:
            raise ReproducibilityError(
                "Git tree hash mismatch.",
                hint="Pin the expected tree hash to the resolved immutable revision.",
                context={
                    "operation": "fetch_git",
                    "repo": repo,
                    "commit": commit,
                    "expected": tree_hash,
                    "actual": actual_tree,
                },
            )
        shutil.move(str(temp_root), checkout_path)
    finally:
        if temp_root.exists():
            shutil.rmtree(temp_root, ignore_errors=True)

    return GitFetchResult(path=checkout_path, commit=commit, tree_hash=actual_tree)


def _run_git(argv: list[str], cwd: Path | None = None) -> str:
    command = ["git", *argv]
    try:
        completed = subprocess.run(
            command,
            cwd=cwd,
            check=False,
            text=True,
            capture_output=True,
        )
    except FileNotFoundError as exc:
        raise ValidationError(
            "git is not installed.",
            hint="Install git and ensure it is available in PATH.",
            context={"operation": "fetch_git"},
        ) from exc
    if completed.returncode != 0:
        raise ValidationError(
            "Git command failed.",
            hint="Inspect repository/commit inputs and git installation.",
            context={
                "operation": "fetch_git",
                "argv": " ".join(command),
                "stderr": completed.stderr.strip(),
            },
        )
    return completed.stdout.strip()
