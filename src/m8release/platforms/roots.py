"""Install-prefix lookup for resolved native packages."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_PREFIX = Path("/usr")


@dataclass(frozen=True, slots=True)
class PackageRoots:
    """Maps package names to the prefix a package repository installed them into."""

    prefixes: Mapping[str, Path] = field(default_factory=dict)
    default: Path = DEFAULT_PREFIX

    def prefix(self, package: str) -> Path:
        return Path(self.prefixes.get(package, self.default))

    def libdir(self, package: str) -> Path:
        return self.prefix(package) / "lib"

    def bindir(self, package: str) -> Path:
        return self.prefix(package) / "bin"

    @classmethod
    def from_mapping(cls, raw: Mapping[str, str], *, default: str | None = None) -> PackageRoots:
        return cls(
            prefixes={name: Path(value) for name, value in sorted(raw.items())},
            default=Path(default) if default else DEFAULT_PREFIX,
        )
