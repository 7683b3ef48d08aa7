"""Table-driven native dependency resolution per target platform."""

from __future__ import annotations

from m8release.errors import UnsupportedPlatform
from m8release.models import DependencySet, NativeDependency, SdkShimSpec, TargetPlatform

SUPPORTED_PLATFORMS: tuple[TargetPlatform, ...] = (
    TargetPlatform(os="linux", arch="x86_64", abi="gnu"),
    TargetPlatform(os="linux", arch="aarch64", abi="gnu"),
    TargetPlatform(os="macos", arch="aarch64", abi="darwin"),
    TargetPlatform(os="macos", arch="x86_64", abi="darwin"),
)

COMMON_BUILD_TOOLS: tuple[NativeDependency, ...] = (
    NativeDependency(package="pkg-config", kind="tool", role="library discovery"),
    NativeDependency(package="cmake", kind="tool", role="native build driver"),
    NativeDependency(package="clang", kind="tool", role="c compiler"),
    NativeDependency(package="libopus", kind="library", role="codec headers"),
)

LINUX_RUNTIME: tuple[NativeDependency, ...] = (
    NativeDependency(
        package="alsa-lib",
        kind="library",
        role="audio mixing",
        soname="libasound.so.2",
        declare_needed=True,
    ),
    NativeDependency(
        package="pipewire",
        kind="library",
        role="audio server",
        soname="libpipewire-0.3.so.0",
    ),
    NativeDependency(
        package="udev",
        kind="library",
        role="device management",
        soname="libudev.so.1",
        declare_needed=True,
    ),
    NativeDependency(
        package="jack2",
        kind="library",
        role="pro audio routing",
        soname="libjack.so.0",
        optional=True,
    ),
    NativeDependency(
        package="libopus",
        kind="library",
        role="audio codec",
        soname="libopus.so.0",
        optional=True,
    ),
)

MACOS_FRAMEWORKS: tuple[str, ...] = ("AudioUnit", "CoreAudio")

MACOS_RUNTIME: tuple[NativeDependency, ...] = (
    *(
        NativeDependency(package=name, kind="framework", role="system audio")
        for name in MACOS_FRAMEWORKS
    ),
    NativeDependency(package="libiconv", kind="library", role="charset conversion"),
)


def _linux(platform: TargetPlatform) -> DependencySet:
    return DependencySet(
        platform=platform,
        build=(
            *COMMON_BUILD_TOOLS,
            NativeDependency(package="mold", kind="tool", role="linker"),
        ),
        runtime=LINUX_RUNTIME,
    )


def _macos(platform: TargetPlatform) -> DependencySet:
    return DependencySet(
        platform=platform,
        build=(
            *COMMON_BUILD_TOOLS,
            NativeDependency(package="bindgen-hook", kind="tool", role="framework bindings"),
        ),
        runtime=MACOS_RUNTIME,
        sdk_shim=SdkShimSpec(frameworks=MACOS_FRAMEWORKS),
    )


_RESOLVERS = {
    "linux": _linux,
    "macos": _macos,
}


def is_supported(platform: TargetPlatform) -> bool:
    return platform in SUPPORTED_PLATFORMS


def resolve_dependencies(platform: TargetPlatform) -> DependencySet:
    """Return the dependency closure for *platform*.

    Pure and deterministic: repeated calls with equal platforms return equal
    sets. Unknown platforms fail before anything is produced.
    """
    if not is_supported(platform):
        raise UnsupportedPlatform(
            "No native dependency mapping exists for this platform.",
            hint="Supported platforms: " + ", ".join(str(item) for item in SUPPORTED_PLATFORMS),
            context={"operation": "resolve", "platform": str(platform)},
        )
    return _RESOLVERS[platform.os](platform)
