import os
import warnings
from pathlib import Path

import pytest

from m8release.environment import (
    PLATFORM_ENV_RULES,
    MissingOptionalLibrary,
    construct_descriptor,
    dev_shell_env,
    env_rules_for,
    missing_optional_libraries,
    render_exports,
)
from m8release.errors import ValidationError
from m8release.models import TargetPlatform
from m8release.platforms import resolve_dependencies
from m8release.platforms.roots import PackageRoots

LINUX = TargetPlatform.parse("linux-x86_64")
MACOS = TargetPlatform.parse("macos-aarch64")

ROOTS = PackageRoots.from_mapping(
    {
        "alsa-lib": "/pkgs/alsa",
        "udev": "/pkgs/udev",
        "pipewire": "/pkgs/pipewire",
        "jack2": "/pkgs/jack2",
        "libopus": "/pkgs/opus",
        "mold": "/pkgs/mold",
    },
    default="/usr",
)


def test_linux_descriptor_sets_linker_and_runtime_paths() -> None:
    descriptor = construct_descriptor(
        LINUX,
        resolve_dependencies(LINUX),
        source_root="/src",
        roots=ROOTS,
        toolchain_channel="stable",
    )
    env = descriptor.env_map

    assert env["RUSTFLAGS"] == "-Clinker=clang -Clink-arg=--ld-path=/pkgs/mold/bin/mold"
    assert env["LD_LIBRARY_PATH"].split(os.pathsep) == [
        "/pkgs/alsa/lib",
        "/pkgs/pipewire/lib",
        "/pkgs/udev/lib",
        "/pkgs/jack2/lib",
        "/pkgs/opus/lib",
    ]
    assert env["ALSA_PLUGIN_DIR"] == "/pkgs/pipewire/lib/alsa-lib"
    assert env["SOURCE_DATE_EPOCH"] == "0"
    assert "COREAUDIO_SDK_PATH" not in env
    assert descriptor.toolchain.target == "x86_64-unknown-linux-gnu"
    assert descriptor.toolchain.linker == "mold"
    assert descriptor.pre_compile_hooks == ("inject-frontend",)
    assert descriptor.post_compile_hooks == ("patch-needed",)


def test_macos_descriptor_points_at_sdk_shim() -> None:
    descriptor = construct_descriptor(
        MACOS,
        resolve_dependencies(MACOS),
        source_root="/src",
        roots=ROOTS,
        toolchain_channel="stable",
        sdk_shim_path="/work/sdk/MacOSX.sdk",
    )
    env = descriptor.env_map

    assert env["COREAUDIO_SDK_PATH"] == "/work/sdk/MacOSX.sdk"
    assert "RUSTFLAGS" not in env
    assert "LD_LIBRARY_PATH" not in env
    assert descriptor.post_compile_hooks == ()
    assert descriptor.toolchain.linker is None


def test_macos_descriptor_requires_shim_path() -> None:
    with pytest.raises(ValidationError):
        construct_descriptor(
            MACOS,
            resolve_dependencies(MACOS),
            source_root="/src",
            roots=ROOTS,
            toolchain_channel="stable",
        )


def test_descriptor_is_a_pure_function_of_its_inputs() -> None:
    def build() -> object:
        return construct_descriptor(
            LINUX,
            resolve_dependencies(LINUX),
            source_root="/src",
            roots=ROOTS,
            toolchain_channel="1.80.0",
        )

    assert build() == build()


def test_dependency_set_must_match_platform() -> None:
    with pytest.raises(ValidationError):
        construct_descriptor(
            LINUX,
            resolve_dependencies(TargetPlatform.parse("linux-aarch64")),
            source_root="/src",
            roots=ROOTS,
            toolchain_channel="stable",
        )


def test_every_platform_rule_documents_its_effect() -> None:
    for rules in PLATFORM_ENV_RULES.values():
        for rule in rules:
            assert rule.name.isupper()
            assert rule.effect
    names = [rule.name for rule in env_rules_for(LINUX)]
    assert names[0] == "PKG_CONFIG_PATH"


def test_dev_shell_env_layers_descriptor_over_base() -> None:
    descriptor = construct_descriptor(
        LINUX,
        resolve_dependencies(LINUX),
        source_root=Path("/src"),
        roots=ROOTS,
        toolchain_channel="stable",
    )
    env = dev_shell_env(descriptor, base={"HOME": "/home/m8", "RUSTFLAGS": "-Cdebuginfo=2"})

    assert env["HOME"] == "/home/m8"
    assert env["RUSTFLAGS"] == descriptor.env_map["RUSTFLAGS"]
    assert env["CARGO_BUILD_TARGET"] == "x86_64-unknown-linux-gnu"

    exports = render_exports(descriptor)
    assert "export RUSTFLAGS='-Clinker=clang -Clink-arg=--ld-path=/pkgs/mold/bin/mold'" in exports
    assert exports.rstrip().endswith("export CARGO_BUILD_TARGET=x86_64-unknown-linux-gnu")


def test_missing_optional_library_warns_without_failing(tmp_path: Path) -> None:
    jack_lib = tmp_path / "jack2" / "lib"
    jack_lib.mkdir(parents=True)
    (jack_lib / "libjack.so.0").write_bytes(b"")
    roots = PackageRoots.from_mapping(
        {"jack2": str(tmp_path / "jack2"), "libopus": str(tmp_path / "opus")}
    )

    with pytest.warns(MissingOptionalLibrary, match="libopus"):
        missing = missing_optional_libraries(resolve_dependencies(LINUX), roots)

    assert [dep.package for dep in missing] == ["libopus"]


def test_platforms_without_optional_libraries_never_warn() -> None:
    with warnings.catch_warnings():
        warnings.simplefilter("error")
        assert missing_optional_libraries(resolve_dependencies(MACOS), ROOTS) == ()
