"""Pipeline configuration loaded from ``m8release.toml``."""

from __future__ import annotations

import os
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

from m8release.errors import ValidationError
from m8release.models import TargetPlatform
from m8release.platforms.roots import PackageRoots
from m8release.policy import Policy

DEFAULT_CONFIG_NAME = "m8release.toml"
TOKEN_ENV_VARS = ("M8RELEASE_TOKEN", "GITHUB_TOKEN")
_COMMIT_PATTERN = re.compile(r"[0-9a-f]{40}")
_SHA256_PATTERN = re.compile(r"[0-9a-f]{64}")

FrontendKind = Literal["git", "archive"]
StoreKind = Literal["directory", "github"]


@dataclass(frozen=True, slots=True)
class ProductConfig:
    name: str
    source: Path
    binary: str
    version: str = "dev"


@dataclass(frozen=True, slots=True)
class ToolchainConfig:
    channel: str = "stable"
    cargo: str = "cargo"
    rustc: str = "rustc"


@dataclass(frozen=True, slots=True)
class FrontendPin:
    kind: FrontendKind
    source: str
    revision: str
    sha256: str | None = None
    destination: str = "frontend/deploy"
    tree_hash: str | None = None

    @property
    def digest(self) -> str:
        """Content pin: the archive sha256, or the commit for git pins."""
        return self.sha256 if self.kind == "archive" and self.sha256 else self.revision


@dataclass(frozen=True, slots=True)
class PackageConfig:
    strip: bool = True
    dist_dir: Path = Path("dist")


@dataclass(frozen=True, slots=True)
class ReleaseConfig:
    store: StoreKind = "directory"
    directory: Path = Path("dist/releases")
    repository: str | None = None
    api_url: str = "https://api.github.com"
    uploads_url: str = "https://uploads.github.com"


@dataclass(frozen=True, slots=True)
class PipelineConfig:
    product: ProductConfig
    frontend: FrontendPin
    matrix: tuple[TargetPlatform, ...]
    toolchain: ToolchainConfig = field(default_factory=ToolchainConfig)
    package: PackageConfig = field(default_factory=PackageConfig)
    release: ReleaseConfig = field(default_factory=ReleaseConfig)
    roots: PackageRoots = field(default_factory=PackageRoots)
    framework_root: Path = Path("/System/Library/Frameworks")
    work_dir: Path = Path("build")
    cache_dir: Path = Path("build/.cache/deps")
    lock_path: Path = Path("m8release.lock")
    policy: Policy = field(default_factory=Policy)


def release_token(environ: dict[str, str] | None = None) -> str | None:
    env = os.environ if environ is None else environ
    for name in TOKEN_ENV_VARS:
        value = env.get(name)
        if value:
            return value
    return None


def load_config(path: str | Path) -> PipelineConfig:
    config_path = Path(path)
    try:
        raw = config_path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise ValidationError(
            "Configuration file does not exist.",
            hint=f"Create {DEFAULT_CONFIG_NAME} or pass --config.",
            context={"path": str(config_path)},
        ) from exc
    return parse_config(raw, base_dir=config_path.parent)


def parse_config(raw: str, *, base_dir: str | Path = ".") -> PipelineConfig:
    try:
        payload = tomllib.loads(raw)
    except tomllib.TOMLDecodeError as exc:
        raise ValidationError("Invalid configuration TOML.", hint=str(exc)) from exc

    base = Path(base_dir)
    product_raw = _required_table(payload, "product")
    product = ProductConfig(
        name=_required_str(product_raw, "name", table="product"),
        source=base / _optional_str(product_raw, "source", table="product", default="."),
        binary=_optional_str(
            product_raw,
            "binary",
            table="product",
            default=_required_str(product_raw, "name", table="product"),
        ),
        version=_optional_str(product_raw, "version", table="product", default="dev"),
    )

    frontend = _parse_frontend(_required_table(payload, "frontend"))

    matrix_raw = _required_table(payload, "matrix")
    platforms = matrix_raw.get("platforms")
    if not isinstance(platforms, list) or not platforms:
        raise ValidationError(
            "Invalid configuration `matrix.platforms` value.",
            hint="List at least one platform, e.g. platforms = [\"linux-x86_64\"].",
        )
    matrix = tuple(TargetPlatform.parse(_as_str(item, "matrix.platforms")) for item in platforms)
    slugs = [platform.slug for platform in matrix]
    duplicates = sorted({slug for slug in slugs if slugs.count(slug) > 1})
    if duplicates:
        raise ValidationError(
            "Configuration `matrix.platforms` lists the same platform more than once.",
            hint="Each platform job owns its work directory; list every platform once.",
            context={"platforms": ",".join(duplicates)},
        )

    toolchain_raw = _optional_table(payload, "toolchain")
    toolchain = ToolchainConfig(
        channel=_optional_str(toolchain_raw, "channel", table="toolchain", default="stable"),
        cargo=_optional_str(toolchain_raw, "cargo", table="toolchain", default="cargo"),
        rustc=_optional_str(toolchain_raw, "rustc", table="toolchain", default="rustc"),
    )

    package_raw = _optional_table(payload, "package")
    package = PackageConfig(
        strip=_optional_bool(package_raw, "strip", table="package", default=True),
        dist_dir=base / _optional_str(package_raw, "dist_dir", table="package", default="dist"),
    )

    release_raw = _optional_table(payload, "release")
    store = _optional_str(release_raw, "store", table="release", default="directory")
    if store not in ("directory", "github"):
        raise ValidationError(
            "Invalid configuration `release.store` value.",
            hint="Use 'directory' or 'github'.",
            context={"value": store},
        )
    repository = release_raw.get("repository")
    if store == "github" and not isinstance(repository, str):
        raise ValidationError(
            "GitHub release store requires `release.repository`.",
            hint="Set repository = \"owner/name\".",
        )
    release = ReleaseConfig(
        store=store,  # type: ignore[arg-type]
        directory=base
        / _optional_str(release_raw, "directory", table="release", default="dist/releases"),
        repository=repository if isinstance(repository, str) else None,
        api_url=_optional_str(
            release_raw, "api_url", table="release", default="https://api.github.com"
        ),
        uploads_url=_optional_str(
            release_raw, "uploads_url", table="release", default="https://uploads.github.com"
        ),
    )

    packages_raw = _optional_table(payload, "packages")
    default_prefix = packages_raw.pop("default", None)
    roots = PackageRoots.from_mapping(
        {name: _as_str(value, f"packages.{name}") for name, value in packages_raw.items()},
        default=_as_str(default_prefix, "packages.default") if default_prefix else None,
    )

    sdk_raw = _optional_table(payload, "sdk")
    policy_raw = _optional_table(payload, "policy")
    network_mode = _optional_str(policy_raw, "network_mode", table="policy", default="online")
    if network_mode not in ("online", "offline"):
        raise ValidationError(
            "Invalid configuration `policy.network_mode` value.",
            context={"value": network_mode},
        )
    publish_mode = _optional_str(policy_raw, "publish_mode", table="policy", default="independent")
    if publish_mode != "independent":
        raise ValidationError(
            "Invalid configuration `policy.publish_mode` value.",
            hint="Only 'independent' is supported: each platform publishes on its own.",
            context={"value": publish_mode},
        )
    policy = Policy(
        require_frozen_lock=_optional_bool(
            policy_raw, "require_frozen_lock", table="policy", default=False
        ),
        network_mode=network_mode,  # type: ignore[arg-type]
        publish_mode=publish_mode,  # type: ignore[arg-type]
    )

    paths_raw = _optional_table(payload, "paths")
    return PipelineConfig(
        product=product,
        frontend=frontend,
        matrix=matrix,
        toolchain=toolchain,
        package=package,
        release=release,
        roots=roots,
        framework_root=Path(
            _optional_str(
                sdk_raw, "framework_root", table="sdk", default="/System/Library/Frameworks"
            )
        ),
        work_dir=base / _optional_str(paths_raw, "work_dir", table="paths", default="build"),
        cache_dir=base
        / _optional_str(paths_raw, "cache_dir", table="paths", default="build/.cache/deps"),
        lock_path=base / _optional_str(paths_raw, "lock", table="paths", default="m8release.lock"),
        policy=policy,
    )


def _parse_frontend(raw: dict[str, Any]) -> FrontendPin:
    kind = _optional_str(raw, "kind", table="frontend", default="git")
    if kind not in ("git", "archive"):
        raise ValidationError(
            "Invalid configuration `frontend.kind` value.",
            hint="Use 'git' or 'archive'.",
            context={"value": kind},
        )
    revision = _required_str(raw, "revision", table="frontend")
    sha256 = raw.get("sha256")
    if kind == "git" and not _COMMIT_PATTERN.fullmatch(revision):
        raise ValidationError(
            "Configuration `frontend.revision` must be a full 40-character commit SHA.",
            hint="Branch and tag names move between runs; pin the commit instead.",
            context={"key": "frontend.revision", "value": revision},
        )
    if kind == "archive" and not (isinstance(sha256, str) and _SHA256_PATTERN.fullmatch(sha256)):
        raise ValidationError(
            "Archive frontend pins require `frontend.sha256`.",
            hint="Record the sha256 of the archive so a changed download is rejected.",
            context={"key": "frontend.sha256"},
        )
    tree_hash = raw.get("tree_hash")
    return FrontendPin(
        kind=kind,  # type: ignore[arg-type]
        source=_required_str(raw, "source", table="frontend"),
        revision=revision,
        sha256=sha256 if kind == "archive" else None,
        destination=_optional_str(
            raw, "destination", table="frontend", default="frontend/deploy"
        ),
        tree_hash=tree_hash if isinstance(tree_hash, str) else None,
    )


def _required_table(payload: dict[str, Any], key: str) -> dict[str, Any]:
    value = payload.get(key)
    if not isinstance(value, dict):
        raise ValidationError(f"Missing configuration table `[{key}]`.")
    return dict(value)


def _optional_table(payload: dict[str, Any], key: str) -> dict[str, Any]:
    value = payload.get(key, {})
    if not isinstance(value, dict):
        raise ValidationError(f"Invalid configuration table `[{key}]`.")
    return dict(value)


def _required_str(payload: dict[str, Any], key: str, *, table: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value:
        raise ValidationError(f"Invalid configuration `{table}.{key}` value.")
    return value


def _optional_str(payload: dict[str, Any], key: str, *, table: str, default: str) -> str:
    if key not in payload:
        return default
    return _required_str(payload, key, table=table)


def _optional_bool(payload: dict[str, Any], key: str, *, table: str, default: bool) -> bool:
    value = payload.get(key, default)
    if not isinstance(value, bool):
        raise ValidationError(f"Invalid configuration `{table}.{key}` value.")
    return value


def _as_str(value: Any, key: str) -> str:
    if not isinstance(value, str) or not value:
        raise ValidationError(f"Invalid configuration `{key}` value.")
    return value
