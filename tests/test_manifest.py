import json
import logging

import pytest
from conftest import make_config

from nodecxx.config import CMakeOption
from nodecxx.errors import ManifestError
from nodecxx.loader import Platform
from nodecxx.manifest import Manifest, parse_config_key, serialize_config


def _built_config(tmp_path, **overrides):
    values = dict(
        package_directory=str(tmp_path),
        target_directory=str(tmp_path / "build"),
        staging_directory=str(tmp_path / "staging"),
        abi=115,
        libc="glibc",
        cmake_options=[CMakeOption("FOO", "bar")],
        additional_defines=["V8_REVERSE_JSARGS"],
    )
    values.update(overrides)
    return make_config(**values)


def test_key_round_trip(tmp_path):
    config = _built_config(tmp_path, toolchain_file=str(tmp_path / "build" / "toolchain.cmake"))
    root = tmp_path / "build"

    key = serialize_config(config, root)
    data = json.loads(key)
    assert data["targetDirectory"] == "."
    assert data["toolchainFile"] == "toolchain.cmake"
    assert data["packageDirectory"] == str(tmp_path)
    assert data["buildType"] == "Release"

    assert parse_config_key(key, root) == config


def test_invalid_key():
    with pytest.raises(ManifestError):
        parse_config_key("not json")
    with pytest.raises(ManifestError):
        parse_config_key('{"os": "linux"}')


def test_add_upserts_and_keeps_other_entries(tmp_path):
    target = tmp_path / "build"
    first = _built_config(tmp_path)
    second = _built_config(tmp_path, arch="arm64")

    Manifest(target).add(first, target / "linux/x64/node/glibc-115-Release/addon.node")
    Manifest(target).add(second, target / "linux/arm64/node/glibc-115-Release/addon.node")
    Manifest(target).add(first, target / "linux/x64/node/glibc-115-Release/sub/addon.node")

    text = (target / "manifest.json").read_text()
    assert text.startswith('{\n  "')
    manifest = Manifest.read(target)
    assert len(manifest.entries) == 2
    assert manifest.entries[serialize_config(first, target)] == "linux/x64/node/glibc-115-Release/sub/addon.node"


def test_read_missing_manifest(tmp_path):
    with pytest.raises(ManifestError, match="Manifest not found"):
        Manifest.read(tmp_path)


def test_read_corrupt_manifest(tmp_path):
    (tmp_path / "manifest.json").write_text("{ nope")
    with pytest.raises(ManifestError, match="Failed to read manifest"):
        Manifest.read(tmp_path)


def _manifest_with(tmp_path, entries):
    data = {json.dumps(config): path for config, path in entries}
    (tmp_path / "manifest.json").write_text(json.dumps(data))
    return Manifest.read(tmp_path)


def test_compatible_configs_sorted_by_abi(tmp_path):
    manifest = _manifest_with(tmp_path, [
        ({"os": "linux", "arch": "x64", "libc": "glibc", "abi": 5}, "five.node"),
        ({"os": "linux", "arch": "x64", "libc": "glibc", "abi": 7}, "seven.node"),
        ({"os": "linux", "arch": "x64", "libc": "musl", "abi": 9}, "musl.node"),
        ({"os": "linux", "arch": "x64", "libc": "glibc", "abi": 6}, "six.node"),
        ({"os": "linux", "arch": "x64", "libc": "glibc"}, "noabi.node"),
    ])
    found = manifest.find_compatible_configs(Platform("linux", "x64", "glibc"))
    assert [data.get("abi") for data, _ in found] == [7, 6, 5, None]
    assert found[0][1] == str(tmp_path / "seven.node")


def test_no_compatible_config_lists_candidates(tmp_path):
    manifest = _manifest_with(tmp_path, [
        ({"os": "darwin", "arch": "arm64", "libc": "libc", "abi": 115}, "mac.node"),
    ])
    with pytest.raises(ManifestError, match="No compatible addon found") as info:
        manifest.find_compatible_configs(Platform("linux", "x64", "glibc"))
    assert "mac.node" in str(info.value)


def test_bad_keys_are_skipped(tmp_path, caplog):
    good = json.dumps({"os": "linux", "arch": "x64", "libc": "glibc", "abi": 115})
    data = {"not json": "broken.node", "[1, 2]": "list.node", good: "good.node"}
    (tmp_path / "manifest.json").write_text(json.dumps(data))

    with caplog.at_level(logging.WARNING, logger="nodecxx"):
        found = Manifest.read(tmp_path).find_compatible_configs(Platform("linux", "x64", "glibc"))

    assert [path for _, path in found] == [str(tmp_path / "good.node")]
    assert len([r for r in caplog.records if "Skipping" in r.getMessage()]) == 2
