"""Command-line entry point.

Usage:
    m8release resolve --platform linux-x86_64
    m8release env --platform macos-aarch64
    m8release build --platform linux-x86_64
    m8release release --ref refs/tags/v1.2.3
"""

from __future__ import annotations

import argparse
import json
import os
import subprocess
import sys
from collections.abc import Callable, Sequence
from pathlib import Path

from m8release.config import DEFAULT_CONFIG_NAME, PipelineConfig, load_config
from m8release.environment import dev_shell_env, render_exports
from m8release.errors import ReleaseError
from m8release.lockfile import build_lockfile, write_lockfile
from m8release.models import TargetPlatform
from m8release.packaging import verify_checksum
from m8release.pipeline import build_local, describe_platform, run_release
from m8release.platforms import resolve_dependencies


def _config(args: argparse.Namespace) -> PipelineConfig:
    return load_config(args.config)


def cmd_resolve(args: argparse.Namespace) -> int:
    dependencies = resolve_dependencies(TargetPlatform.parse(args.platform))
    print(json.dumps(dependencies.to_payload(), indent=2, sort_keys=True))
    return 0


def cmd_env(args: argparse.Namespace) -> int:
    descriptor = describe_platform(TargetPlatform.parse(args.platform), _config(args))
    sys.stdout.write(render_exports(descriptor))
    return 0


def cmd_shell(args: argparse.Namespace) -> int:
    config = _config(args)
    descriptor = describe_platform(TargetPlatform.parse(args.platform), config)
    shell = os.environ.get("SHELL", "/bin/sh")
    return subprocess.call([shell], env=dev_shell_env(descriptor), cwd=config.product.source)


def cmd_lock(args: argparse.Namespace) -> int:
    config = _config(args)
    path = write_lockfile(build_lockfile(config), config.lock_path)
    print(f"Wrote {path}")
    return 0


def cmd_build(args: argparse.Namespace) -> int:
    job = build_local(args.platform, _config(args), frozen=args.frozen)
    if not job.ok or job.artifact is None:
        _print_job_error(job.platform.slug, job.error)
        return 1
    print(job.artifact.archive)
    print(job.artifact.checksum)
    return 0


def cmd_release(args: argparse.Namespace) -> int:
    result = run_release(args.ref, _config(args), frozen=args.frozen)
    if not result.triggered:
        print(f"{args.ref} is not a release tag; nothing published.")
        return 0
    for slug, job in result.jobs.items():
        if job.ok and job.artifact is not None:
            print(f"{slug}: {job.artifact.archive.name} {job.artifact.sha256}")
        else:
            _print_job_error(slug, job.error)
    for upload in result.uploads:
        print(f"uploaded {upload.platform.slug} -> {upload.location}")
    if result.publish_error is not None:
        print(f"publish: {result.publish_error['message']}", file=sys.stderr)
    return 0 if result.ok else 1


def cmd_verify(args: argparse.Namespace) -> int:
    if verify_checksum(Path(args.archive), Path(args.checksum)):
        print(f"{args.archive}: OK")
        return 0
    print(f"{args.archive}: FAILED", file=sys.stderr)
    return 1


def _print_job_error(slug: str, error: dict[str, object] | None) -> None:
    if error is None:
        print(f"{slug}: failed", file=sys.stderr)
        return
    message = str(error["message"]).splitlines()[0]
    print(f"{slug}: [{error['code']}] {message}", file=sys.stderr)
    if error.get("hint"):
        print(f"  hint: {error['hint']}", file=sys.stderr)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="m8release", description="remote-m8 build and release")
    parser.add_argument(
        "--config",
        type=Path,
        default=Path(DEFAULT_CONFIG_NAME),
        help=f"Pipeline configuration file (default: {DEFAULT_CONFIG_NAME})",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    resolve_p = sub.add_parser("resolve", help="Print the native dependency set for a platform")
    resolve_p.add_argument("--platform", required=True)

    env_p = sub.add_parser("env", help="Print shell exports for a platform's build environment")
    env_p.add_argument("--platform", required=True)

    shell_p = sub.add_parser("shell", help="Open a development shell with the build environment")
    shell_p.add_argument("--platform", default=TargetPlatform.host().slug)

    sub.add_parser("lock", help="Write the lockfile for the configured inputs")

    build_p = sub.add_parser("build", help="Build and package one platform locally")
    build_p.add_argument("--platform", default=TargetPlatform.host().slug)
    build_p.add_argument("--frozen", action="store_true", help="Require an up-to-date lockfile")

    release_p = sub.add_parser("release", help="Build the matrix and publish for a release tag")
    release_p.add_argument("--ref", required=True, help="Pushed reference, e.g. refs/tags/v1.2.3")
    release_p.add_argument("--frozen", action="store_true", help="Require an up-to-date lockfile")

    verify_p = sub.add_parser("verify", help="Check an archive against its checksum file")
    verify_p.add_argument("archive")
    verify_p.add_argument("checksum")
    return parser


COMMANDS: dict[str, Callable[[argparse.Namespace], int]] = {
    "resolve": cmd_resolve,
    "env": cmd_env,
    "shell": cmd_shell,
    "lock": cmd_lock,
    "build": cmd_build,
    "release": cmd_release,
    "verify": cmd_verify,
}


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return COMMANDS[args.command](args)
    except ReleaseError as exc:
        print(str(exc), file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
