import json
from pathlib import Path

import pytest

from m8release.cache import DependencyCacheInput, DependencyCacheStore, cache_key
from m8release.errors import ReproducibilityError


def _inputs(**overrides: object) -> DependencyCacheInput:
    values: dict[str, object] = {
        "lock_hash": "lock",
        "manifest_hash": "manifests",
        "toolchain": "stable:rustc 1.80.0",
        "target": "x86_64-unknown-linux-gnu",
        "dependencies": "deps-digest",
        "env": {"CARGO_INCREMENTAL": "0"},
    }
    values.update(overrides)
    return DependencyCacheInput(**values)  # type: ignore[arg-type]


def _artifacts(root: Path, content: str = "rlib") -> Path:
    (root / "release" / "deps").mkdir(parents=True)
    (root / "release" / "deps" / "libserde.rlib").write_text(content)
    return root


@pytest.mark.parametrize(
    "field_name,value",
    [
        ("lock_hash", "other-lock"),
        ("manifest_hash", "other-manifests"),
        ("toolchain", "stable:rustc 1.81.0"),
        ("target", "aarch64-apple-darwin"),
        ("dependencies", "other-deps"),
        ("env", {"CARGO_INCREMENTAL": "1"}),
    ],
)
def test_cache_key_changes_with_every_input(field_name: str, value: object) -> None:
    assert cache_key(_inputs()) != cache_key(_inputs(**{field_name: value}))


def test_cache_key_ignores_env_ordering() -> None:
    first = _inputs(env={"A": "1", "B": "2"})
    second = _inputs(env={"B": "2", "A": "1"})
    assert cache_key(first) == cache_key(second)


def test_store_round_trip_and_miss(tmp_path: Path) -> None:
    store = DependencyCacheStore(tmp_path / "cache")
    inputs = _inputs()
    assert store.load(key=cache_key(inputs), expected_inputs=inputs) is None

    key = store.save(inputs=inputs, artifacts=_artifacts(tmp_path / "build"))

    assert store.contains(key)
    loaded = store.load(key=key, expected_inputs=inputs)
    assert loaded is not None
    assert (loaded / "release" / "deps" / "libserde.rlib").read_text() == "rlib"


def test_entries_are_write_once(tmp_path: Path) -> None:
    store = DependencyCacheStore(tmp_path / "cache")
    inputs = _inputs()
    key = store.save(inputs=inputs, artifacts=_artifacts(tmp_path / "first", "first"))
    again = store.save(inputs=inputs, artifacts=_artifacts(tmp_path / "second", "second"))

    assert again == key
    loaded = store.load(key=key, expected_inputs=inputs)
    assert loaded is not None
    assert (loaded / "release" / "deps" / "libserde.rlib").read_text() == "first"
    assert [path.name for path in (tmp_path / "cache").iterdir()] == [key]


def test_manifest_verification_detects_tampered_inputs(tmp_path: Path) -> None:
    store = DependencyCacheStore(tmp_path / "cache")
    inputs = _inputs()
    key = store.save(inputs=inputs, artifacts=_artifacts(tmp_path / "build"))

    manifest_path = tmp_path / "cache" / key / "manifest.json"
    manifest = json.loads(manifest_path.read_text(encoding="utf-8"))
    manifest["inputs"]["toolchain"] = "tampered"
    manifest_path.write_text(json.dumps(manifest), encoding="utf-8")

    with pytest.raises(ReproducibilityError):
        store.load(key=key, expected_inputs=inputs)


def test_manifest_verification_detects_tampered_artifacts(tmp_path: Path) -> None:
    store = DependencyCacheStore(tmp_path / "cache")
    inputs = _inputs()
    key = store.save(inputs=inputs, artifacts=_artifacts(tmp_path / "build"))

    (tmp_path / "cache" / key / "artifacts" / "release" / "deps" / "libserde.rlib").write_text("x")

    with pytest.raises(ReproducibilityError):
        store.load(key=key, expected_inputs=inputs)
