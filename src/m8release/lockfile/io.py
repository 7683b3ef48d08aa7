"""Lockfile parser and serializer."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, TypeVar

from m8release.errors import LockfileError
from m8release.lockfile.model import LockedFetch, Lockfile

T = TypeVar("T")


def serialize_lockfile(lockfile: Lockfile) -> str:
    return json.dumps(lockfile.to_payload(), indent=2, sort_keys=True) + "\n"


def parse_lockfile(raw: str) -> Lockfile:
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise LockfileError("Invalid lockfile JSON.", hint=str(exc)) from exc
    if not isinstance(payload, dict):
        raise LockfileError("Invalid lockfile payload type.")

    fetches = _field(payload, "fetches", list, default=[])
    return Lockfile(
        version=_field(payload, "version", int),
        inputs_digest=_field(payload, "inputs_digest", str),
        inputs=_field(payload, "inputs", dict),
        dependencies=_platform_packages(_field(payload, "dependencies", dict)),
        fetches=[_locked_fetch(item) for item in fetches],
    )


def read_lockfile(path: str | Path) -> Lockfile:
    lock_path = Path(path)
    try:
        raw = lock_path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise LockfileError(
            "Lockfile does not exist.",
            hint="Run `m8release lock` before using frozen mode.",
            context={"path": str(lock_path)},
        ) from exc
    return parse_lockfile(raw)


def write_lockfile(lockfile: Lockfile, path: str | Path) -> Path:
    lock_path = Path(path)
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    lock_path.write_text(serialize_lockfile(lockfile), encoding="utf-8")
    return lock_path


def _field(payload: dict[str, Any], key: str, kind: type[T], *, default: T | None = None) -> T:
    if key not in payload and default is not None:
        return default
    value = payload.get(key)
    # bool is an int subclass and must not pass as a version number
    if not isinstance(value, kind) or isinstance(value, bool) or (kind is str and not value):
        raise LockfileError(f"Invalid lockfile `{key}` value.", context={"field": key})
    return value


def _locked_fetch(item: Any) -> LockedFetch:
    if not isinstance(item, dict):
        raise LockfileError("Invalid fetch entry in lockfile.")
    return LockedFetch(
        source=_field(item, "source", str),
        kind=_field(item, "kind", str),
        digest=_field(item, "digest", str),
    )


def _platform_packages(raw: dict[str, Any]) -> dict[str, list[str]]:
    packages: dict[str, list[str]] = {}
    for platform, names in raw.items():
        if not isinstance(names, list) or not all(isinstance(name, str) for name in names):
            raise LockfileError(
                "Invalid lockfile dependency package list.",
                context={"platform": str(platform)},
            )
        packages[str(platform)] = list(names)
    return packages
