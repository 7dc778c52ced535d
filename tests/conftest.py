import hashlib
import io
import logging
import tarfile
from pathlib import Path
from typing import Dict

import pytest

import nodecxx.config
from nodecxx.config import BuildConfiguration, HostEnvironment
from nodecxx.generator import Generator
from nodecxx.platforms import BuildType


@pytest.fixture(autouse=True)
def native_generator(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep configuration resolution from probing for ninja or cmake."""
    monkeypatch.setattr(nodecxx.config, "discover_generator",
                        lambda cmake, target_os, arch: Generator("native"))


@pytest.fixture(autouse=True)
def reset_logging():
    """Undo configure_logging so caplog sees records from every test."""
    yield
    logger = logging.getLogger("nodecxx")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)
    logger.propagate = True


@pytest.fixture
def tmp_cache_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    cache = tmp_path / "cache"
    monkeypatch.setenv("NODECXX_CACHE_DIR", str(cache))
    return cache


@pytest.fixture
def linux_host() -> HostEnvironment:
    return HostEnvironment(os="linux", arch="x64", env={}, node_version="20.11.0")


def make_config(**overrides) -> BuildConfiguration:
    values = dict(
        name="",
        dev=False,
        os="linux",
        arch="x64",
        cross=False,
        runtime="node",
        runtime_version="20.11.0",
        node_api="node-addon-api",
        build_type=BuildType.RELEASE,
        package_directory="/work/addon",
        project_name="addon",
        target_directory="/work/addon/build",
        staging_directory="/work/addon/staging",
        addon_subdirectory="",
        cmake_to_use="cmake",
        generator_to_use="native",
    )
    values.update(overrides)
    return BuildConfiguration(**values)


def make_tgz(path: Path, files: Dict[str, str]) -> str:
    """Write a .tar.gz containing ``files`` and return its sha256."""
    with tarfile.open(path, "w:gz") as tar:
        for name, content in files.items():
            data = content.encode("utf-8")
            info = tarfile.TarInfo(name)
            info.size = len(data)
            tar.addfile(info, io.BytesIO(data))
    return hashlib.sha256(path.read_bytes()).hexdigest()


def node_headers(version: str = "20.11.0", abi: int = 115) -> Dict[str, str]:
    root = f"node-v{version}"
    return {
        f"{root}/include/node/node.h": "#pragma once\n",
        f"{root}/include/node/node_version.h": f"#define NODE_MODULE_VERSION {abi}\n",
        f"{root}/include/node/v8.h": "#pragma once\n",
        f"{root}/include/node/common.gypi": "{}\n",
    }


def populate_headers(internal_path: Path, abi: int = 115) -> None:
    include = internal_path / "include" / "node"
    include.mkdir(parents=True, exist_ok=True)
    (include / "node.h").write_text("#pragma once\n")
    (include / "node_version.h").write_text(f"#define NODE_MODULE_VERSION {abi}\n")
