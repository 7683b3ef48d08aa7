"""Build descriptor construction.

The environment for a job is a pure function of its platform, resolved
dependencies and package roots. Platform-specific variables are declared in
``PLATFORM_ENV_RULES`` so each option and its effect can be inspected and
tested on its own instead of being accumulated by branching code.
"""

from __future__ import annotations

import os
import shlex
import warnings
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from m8release.errors import ValidationError
from m8release.models import (
    BuildDescriptor,
    DependencySet,
    NativeDependency,
    TargetPlatform,
    ToolchainRef,
)
from m8release.platforms.roots import PackageRoots

PRE_COMPILE_HOOKS: tuple[str, ...] = ("inject-frontend",)
LINUX_POST_COMPILE_HOOKS: tuple[str, ...] = ("patch-needed",)

BASELINE_ENV: tuple[tuple[str, str], ...] = (
    ("CARGO_INCREMENTAL", "0"),
    ("SOURCE_DATE_EPOCH", "0"),
)



class MissingOptionalLibrary(UserWarning):
    """Warning raised when an optional library is absent from its package root."""


@dataclass(frozen=True, slots=True)
class EnvContext:
    platform: TargetPlatform
    dependencies: DependencySet
    roots: PackageRoots
    sdk_shim_path: Path | None = None


@dataclass(frozen=True, slots=True)
class EnvRule:
    name: str
    effect: str
    render: Callable[[EnvContext], str]


def _linker_override(ctx: EnvContext) -> str:
    mold = ctx.roots.bindir("mold") / "mold"
    return f"-Clinker=clang -Clink-arg=--ld-path={mold}"


def _runtime_search_path(ctx: EnvContext) -> str:
    dirs = [str(ctx.roots.libdir(dep.package)) for dep in ctx.dependencies.shared_libraries]
    return os.pathsep.join(dict.fromkeys(dirs))


def _alsa_plugin_dir(ctx: EnvContext) -> str:
    return str(ctx.roots.libdir("pipewire") / "alsa-lib")


def _sdk_shim(ctx: EnvContext) -> str:
    if ctx.sdk_shim_path is None:
        raise ValidationError(
            "macOS builds require a materialized SDK shim path.",
            hint="Call materialize_sdk_shim() and pass its root as sdk_shim_path.",
            context={"operation": "environment", "platform": str(ctx.platform)},
        )
    return str(ctx.sdk_shim_path)


def _pkg_config_path(ctx: EnvContext) -> str:
    dirs = [
        str(ctx.roots.libdir(dep.package) / "pkgconfig")
        for dep in (*ctx.dependencies.build, *ctx.dependencies.runtime)
        if dep.kind == "library"
    ]
    return os.pathsep.join(dict.fromkeys(dirs))


BASELINE_RULES: tuple[EnvRule, ...] = (
    EnvRule("PKG_CONFIG_PATH", "pkg-config search path over resolved libraries", _pkg_config_path),
)

PLATFORM_ENV_RULES: dict[str, tuple[EnvRule, ...]] = {
    "linux": (
        EnvRule("RUSTFLAGS", "link with clang driving the mold linker", _linker_override),
        EnvRule("LD_LIBRARY_PATH", "runtime search path for every shared library", _runtime_search_path),
        EnvRule("ALSA_PLUGIN_DIR", "directory of runtime-loaded ALSA backend plugins", _alsa_plugin_dir),
    ),
    "macos": (
        EnvRule("COREAUDIO_SDK_PATH", "framework lookup through the synthesized SDK shim", _sdk_shim),
    ),
}


def env_rules_for(platform: TargetPlatform) -> tuple[EnvRule, ...]:
    return (*BASELINE_RULES, *PLATFORM_ENV_RULES.get(platform.os, ()))


def construct_descriptor(
    platform: TargetPlatform,
    dependencies: DependencySet,
    *,
    source_root: str | Path,
    roots: PackageRoots,
    toolchain_channel: str,
    sdk_shim_path: str | Path | None = None,
) -> BuildDescriptor:
    if dependencies.platform != platform:
        raise ValidationError(
            "Dependency set was resolved for a different platform.",
            context={
                "operation": "environment",
                "platform": str(platform),
                "dependencies_platform": str(dependencies.platform),
            },
        )
    ctx = EnvContext(
        platform=platform,
        dependencies=dependencies,
        roots=roots,
        sdk_shim_path=Path(sdk_shim_path) if sdk_shim_path is not None else None,
    )
    env = dict(BASELINE_ENV)
    for rule in env_rules_for(platform):
        env[rule.name] = rule.render(ctx)

    return BuildDescriptor(
        platform=platform,
        source_root=Path(source_root),
        env=tuple(sorted(env.items())),
        toolchain=ToolchainRef(
            channel=toolchain_channel,
            target=platform.rust_target,
            linker="mold" if platform.is_linux else None,
        ),
        pre_compile_hooks=PRE_COMPILE_HOOKS,
        post_compile_hooks=LINUX_POST_COMPILE_HOOKS if platform.is_linux else (),
    )


def missing_optional_libraries(
    dependencies: DependencySet, roots: PackageRoots
) -> tuple[NativeDependency, ...]:
    """Warn about and return optional libraries that are not installed.

    The build still proceeds; the product only loses the feature the library
    backs.
    """
    missing: list[NativeDependency] = []
    for dep in (*dependencies.build, *dependencies.runtime):
        if not dep.optional or dep.kind != "library":
            continue
        libdir = roots.libdir(dep.package)
        expected = libdir / dep.soname if dep.soname else libdir
        if expected.exists():
            continue
        missing.append(dep)
        warnings.warn(
            f"Optional library `{dep.package}` ({dep.role}) not found at {expected}.",
            MissingOptionalLibrary,
            stacklevel=2,
        )
    return tuple(missing)


def dev_shell_env(descriptor: BuildDescriptor, base: dict[str, str] | None = None) -> dict[str, str]:
    """Return the process environment for an interactive development shell."""
    env = dict(os.environ if base is None else base)
    env.update(descriptor.env_map)
    env["CARGO_BUILD_TARGET"] = descriptor.toolchain.target
    return env


def render_exports(descriptor: BuildDescriptor) -> str:
    lines = [f"export {name}={shlex.quote(value)}" for name, value in descriptor.env]
    lines.append(f"export CARGO_BUILD_TARGET={shlex.quote(descriptor.toolchain.target)}")
    return "\n".join(lines) + "\n"
