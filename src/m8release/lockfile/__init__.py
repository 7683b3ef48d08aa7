"""Lockfile model and helpers."""

from __future__ import annotations

from .io import parse_lockfile, read_lockfile, serialize_lockfile, write_lockfile
from .model import LockedFetch, Lockfile
from .resolve import build_lockfile, inputs_digest, pinned_inputs, verify_lockfile

__all__ = [
    "LockedFetch",
    "Lockfile",
    "build_lockfile",
    "inputs_digest",
    "parse_lockfile",
    "pinned_inputs",
    "read_lockfile",
    "serialize_lockfile",
    "verify_lockfile",
    "write_lockfile",
]
