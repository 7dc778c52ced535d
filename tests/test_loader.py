import json
import logging
import shutil
import subprocess
import sys

import pytest

from nodecxx.errors import LoadError, ManifestError
from nodecxx.loader import CtypesLoader, Loaded, LoadFailed, NodeLoader, Platform, get_platform, load_addon

LINUX = Platform("linux", "x64", "glibc")


class RecordingLoader:
    def __init__(self, succeed_on=()):
        self.attempts = []
        self.succeed_on = set(succeed_on)

    def load(self, path):
        self.attempts.append(path.rsplit("/", 1)[-1])
        name = self.attempts[-1]
        if name in self.succeed_on:
            return Loaded(f"handle:{name}", path)
        return LoadFailed(OSError(f"cannot load {name}"))


def _write_manifest(directory, abis):
    entries = {
        json.dumps({"os": "linux", "arch": "x64", "libc": "glibc", "abi": abi, "runtime": "node"}): f"abi{abi}.node"
        for abi in abis
    }
    (directory / "manifest.json").write_text(json.dumps(entries, indent=2))


def test_candidates_tried_highest_abi_first(tmp_path):
    _write_manifest(tmp_path, [5, 7, 6])
    loader = RecordingLoader()

    with pytest.raises(LoadError) as info:
        load_addon(tmp_path, loader=loader, platform=LINUX)

    assert loader.attempts == ["abi7.node", "abi6.node", "abi5.node"]
    assert "abi5.node" in str(info.value)


def test_newest_abi_wins(tmp_path):
    _write_manifest(tmp_path, [127, 131])
    loader = RecordingLoader(succeed_on={"abi131.node", "abi127.node"})

    assert load_addon(tmp_path, loader=loader, platform=LINUX) == "handle:abi131.node"
    assert loader.attempts == ["abi131.node"]


def test_falls_back_after_failure(tmp_path, caplog):
    _write_manifest(tmp_path, [131, 127])
    loader = RecordingLoader(succeed_on={"abi127.node"})

    with caplog.at_level(logging.WARNING, logger="nodecxx"):
        handle = load_addon(tmp_path, loader=loader, platform=LINUX)

    assert handle == "handle:abi127.node"
    assert loader.attempts == ["abi131.node", "abi127.node"]
    assert any("abi131.node" in record.getMessage() for record in caplog.records)


def test_missing_manifest(tmp_path):
    with pytest.raises(ManifestError):
        load_addon(tmp_path, loader=RecordingLoader(), platform=LINUX)


def test_no_compatible_entry(tmp_path):
    _write_manifest(tmp_path, [115])
    with pytest.raises(ManifestError, match="No compatible addon"):
        load_addon(tmp_path, loader=RecordingLoader(), platform=Platform("win32", "x64", "msvc"))


def test_ctypes_loader_reports_failure(tmp_path):
    bogus = tmp_path / "bogus.node"
    bogus.write_text("not a shared library")
    result = CtypesLoader().load(str(bogus))
    assert isinstance(result, LoadFailed)
    assert isinstance(result.cause, OSError)


def test_get_platform_is_consistent():
    platform = get_platform()
    assert platform.os and platform.arch and platform.libc


FAKE_NODE = """#!/bin/sh
# invoked as: node -e <script> <addon>
case "$3" in
  *good*) exit 0 ;;
  *) echo "Error: Module did not self-register: '$3'." >&2; exit 1 ;;
esac
"""

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="fake node is a shell script")


@pytest.fixture
def fake_node(tmp_path):
    node = tmp_path / "bin" / "node"
    node.parent.mkdir()
    node.write_text(FAKE_NODE)
    node.chmod(0o755)
    return str(node)


@posix_only
def test_node_loader_maps_exit_status(fake_node, tmp_path):
    loader = NodeLoader(node=fake_node)

    good = str(tmp_path / "good.node")
    assert loader.load(good) == Loaded(good, good)

    failed = loader.load(str(tmp_path / "bad.node"))
    assert isinstance(failed, LoadFailed)
    assert "did not self-register" in failed.cause
    assert "code 1" in failed.cause


def test_node_loader_without_node(monkeypatch):
    monkeypatch.setattr("nodecxx.loader.shutil.which", lambda name: None)
    result = NodeLoader().load("/nowhere/addon.node")
    assert isinstance(result, LoadFailed)
    assert "not on PATH" in result.cause


@posix_only
def test_load_addon_uses_node_by_default(fake_node, tmp_path, monkeypatch):
    monkeypatch.setattr("nodecxx.loader.shutil.which", lambda name: fake_node)
    entries = {
        json.dumps({"os": "linux", "arch": "x64", "libc": "glibc", "abi": 131}): "bad131.node",
        json.dumps({"os": "linux", "arch": "x64", "libc": "glibc", "abi": 127}): "good127.node",
    }
    (tmp_path / "manifest.json").write_text(json.dumps(entries))

    assert load_addon(tmp_path, platform=LINUX) == str(tmp_path / "good127.node")


# A minimal Node-API addon: registers through napi_register_module_v1 and
# calls into the runtime, leaving napi_create_object for node to provide.
NAPI_ADDON_SOURCE = """
typedef struct napi_env__ *napi_env;
typedef struct napi_value__ *napi_value;
extern int napi_create_object(napi_env env, napi_value *result);

napi_value napi_register_module_v1(napi_env env, napi_value exports) {
    napi_value unused;
    napi_create_object(env, &unused);
    return exports;
}
"""


@pytest.fixture
def napi_addon(tmp_path):
    compiler = shutil.which("cc") or shutil.which("gcc")
    if not sys.platform.startswith("linux") or compiler is None:
        pytest.skip("needs a C compiler on Linux")
    source = tmp_path / "addon.c"
    source.write_text(NAPI_ADDON_SOURCE)
    addon = tmp_path / "addon.node"
    subprocess.run([compiler, "-shared", "-fPIC", "-o", str(addon), str(source)], check=True)
    return str(addon)


def test_ctypes_cannot_resolve_runtime_symbols(napi_addon):
    result = CtypesLoader().load(napi_addon)
    assert isinstance(result, LoadFailed)
    assert "napi_create_object" in str(result.cause)


@pytest.mark.skipif(shutil.which("node") is None, reason="node is not installed")
def test_node_loader_loads_addon_with_runtime_symbols(napi_addon):
    assert NodeLoader().load(napi_addon) == Loaded(napi_addon, napi_addon)
