import json
from pathlib import Path

import pytest
from conftest import make_config, populate_headers

import nodecxx.distribution as distribution
from nodecxx.build import build, build_config, config_subdirectory
from nodecxx.cache import get_distribution_cache_path
from nodecxx.config import BuildRequest, ConfigFile
from nodecxx.errors import BuildError
from nodecxx.manifest import Manifest
from nodecxx.platforms import BuildType


class FakeCMake:
    """Records invocations and drops an addon into the staging directory on --build."""

    def __init__(self, produce=True, fail_on=None):
        self.calls = []
        self.produce = produce
        self.fail_on = fail_on

    def __call__(self, program, args, cwd=None, env=None):
        self.calls.append((program, list(args), Path(cwd)))
        if self.fail_on is not None and self.fail_on in args:
            raise BuildError(f"{program} exited with code 1")
        if args[0] == "--build" and self.produce:
            (Path(cwd) / "addon.node").write_bytes(b"\x7fELF")


@pytest.fixture(autouse=True)
def glibc(monkeypatch):
    monkeypatch.setattr(distribution, "detect_libc", lambda target_os: "glibc")


def _cached(cache_root, config, abi=115):
    populate_headers(get_distribution_cache_path(
        config.runtime, config.os, config.arch, config.runtime_version, cache_root), abi)


def test_config_subdirectory():
    config = make_config(libc="glibc", abi=115, build_type=BuildType.DEBUG, addon_subdirectory="napi")
    assert config_subdirectory(config) == Path("linux/x64/node/glibc-115-Debug/napi")


def test_build_config_records_the_addon(tmp_path, tmp_cache_dir):
    tmp_path = tmp_path.resolve()
    config = make_config(package_directory=str(tmp_path), target_directory="build", staging_directory="staging")
    _cached(tmp_cache_dir, config)
    cmake = FakeCMake()

    addon = build_config(config, cache_root=tmp_cache_dir, env={}, runner=cmake)

    sub = Path("linux/x64/node/glibc-115-Release")
    assert addon == tmp_path / "build" / sub / "addon.node"
    assert addon.read_bytes() == b"\x7fELF"

    (configure_cmd, configure_args, cwd), (build_cmd, build_args, _) = cmake.calls
    assert configure_cmd == "cmake"
    assert configure_args[:2] == [str(tmp_path), "--no-warn-unused-cli"]
    assert "-DCMAKE_BUILD_TYPE=Release" in configure_args
    assert "-DNODE_ABI_VERSION=115" in configure_args
    assert "-G" not in configure_args
    assert cwd == tmp_path / "staging" / sub
    assert build_args == ["--build", str(tmp_path / "staging" / sub), "--config", "Release", "--parallel"]

    manifest = Manifest.read(tmp_path / "build")
    [(data, path)] = manifest.configs()
    assert path == str(addon)
    assert (data["abi"], data["libc"], data["targetDirectory"]) == (115, "glibc", ".")


def test_visual_studio_output_comes_from_build_type_folder(tmp_path, tmp_cache_dir):
    config = make_config(package_directory=str(tmp_path), target_directory="build", staging_directory="staging",
                         generator_to_use="Visual Studio 17 2022", build_type=BuildType.DEBUG)
    _cached(tmp_cache_dir, config)

    def msbuild(program, args, cwd=None, env=None):
        if args[0] == "--build":
            out = Path(cwd) / "Debug"
            out.mkdir()
            (out / "addon.node").write_bytes(b"dll")

    addon = build_config(config, cache_root=tmp_cache_dir, env={}, runner=msbuild)
    assert addon.read_bytes() == b"dll"


def test_missing_artifact_is_an_error(tmp_path, tmp_cache_dir):
    config = make_config(package_directory=str(tmp_path), target_directory="build", staging_directory="staging")
    _cached(tmp_cache_dir, config)

    with pytest.raises(BuildError, match="was not produced"):
        build_config(config, cache_root=tmp_cache_dir, env={}, runner=FakeCMake(produce=False))
    assert not (tmp_path / "build" / "manifest.json").exists()


def test_staging_directory_is_reset(tmp_path, tmp_cache_dir):
    stale = tmp_path / "staging" / "stale.txt"
    stale.parent.mkdir()
    stale.write_text("old")
    config = make_config(package_directory=str(tmp_path), target_directory="build", staging_directory="staging")
    _cached(tmp_cache_dir, config)

    build_config(config, cache_root=tmp_cache_dir, env={}, runner=FakeCMake())
    assert not stale.exists()


def test_build_stops_at_first_failure(tmp_path, tmp_cache_dir, linux_host):
    request = BuildRequest(configs=["linux-x64-release", "linux-x64-debug"], package_directory=str(tmp_path))
    for build_type in (BuildType.RELEASE, BuildType.DEBUG):
        _cached(tmp_cache_dir, make_config(build_type=build_type))
    cmake = FakeCMake(fail_on="Debug")

    with pytest.raises(BuildError):
        build(request, ConfigFile(), linux_host, cache_root=tmp_cache_dir, runner=cmake)

    manifest = json.loads((tmp_path / "build" / "manifest.json").read_text())
    assert list(manifest.values()) == ["linux/x64/node/glibc-115-Release/addon.node"]


def test_build_every_selected_configuration(tmp_path, tmp_cache_dir, linux_host):
    request = BuildRequest(configs=["linux-x64-release,linux-x64-debug"], package_directory=str(tmp_path))
    _cached(tmp_cache_dir, make_config())

    configs = build(request, ConfigFile(), linux_host, cache_root=tmp_cache_dir, runner=FakeCMake())

    assert [c.build_type for c in configs] == [BuildType.RELEASE, BuildType.DEBUG]
    assert len(Manifest.read(tmp_path / "build").entries) == 2
