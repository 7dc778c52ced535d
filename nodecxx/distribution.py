"""
Runtime distribution provisioning

A native addon compiles against the headers of the runtime it will be loaded
into, and on Windows links against that runtime's import library. This module
knows where each runtime publishes those files, downloads and verifies them
into the nodecxx cache, and reads the module ABI version out of the headers.
"""

import logging
import os
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import List, Mapping, Optional

from semantic_version import Version

from .cache import get_distribution_cache_path, get_nodecxx_cache_dir
from .download import (
    HashSum,
    download_file,
    download_to_string,
    download_to_temp,
    extract_tgz,
    find_hash_sum,
    parse_hash_sums,
    url_join,
)
from .errors import ProvisioningError
from .platforms import detect_libc
from .util import get_env_var, retry

logger = logging.getLogger(__name__)

NODE_MIRROR = "https://nodejs.org/dist"
IOJS_MIRROR = "https://iojs.org/dist"
ELECTRON_MIRROR = "https://artifacts.electronjs.org/headers/dist"

_NODE_MODULE_VERSION = re.compile(r"#define\s+NODE_MODULE_VERSION\s+(\d+)")


@dataclass(frozen=True)
class WinLib:
    """An import library published next to a runtime's headers"""
    dir: str
    name: str

    @property
    def path(self) -> str:
        return f"{self.dir}/{self.name}" if self.dir else self.name


@dataclass(frozen=True)
class DistributionPaths:
    external_path: str
    win_libs: List[WinLib]
    tar_path: str
    header_only: bool


def _version(value: str) -> Version:
    try:
        return Version.coerce(value)
    except ValueError as e:
        raise ProvisioningError(f"Invalid runtime version: {value}") from e


def get_paths_for_config(config, env: Optional[Mapping[str, str]] = None) -> DistributionPaths:
    """Download locations and layout of the distribution for ``config``'s runtime.

    Mirrors can be overridden with ``NVM_NODEJS_ORG_MIRROR``,
    ``NVM_IOJS_ORG_MIRROR`` and ``ELECTRON_MIRROR``.
    """
    version = config.runtime_version
    arch = config.arch

    if config.runtime == "node":
        mirror = get_env_var("NVM_NODEJS_ORG_MIRROR", env) or NODE_MIRROR
        base = url_join(mirror, f"v{version}")
        if _version(version) < Version("4.0.0"):
            return DistributionPaths(
                external_path=base,
                win_libs=[WinLib("x64" if arch in ("x64", "arm64") else "", "node.lib")],
                tar_path=f"node-v{version}.tar.gz",
                header_only=False,
            )
        lib_dir = {"x64": "win-x64", "arm64": "win-arm64", "ia32": "win-x86"}.get(arch, "")
        return DistributionPaths(
            external_path=base,
            win_libs=[WinLib(lib_dir, "node.lib")],
            tar_path=f"node-v{version}-headers.tar.gz",
            header_only=True,
        )

    if config.runtime == "iojs":
        mirror = get_env_var("NVM_IOJS_ORG_MIRROR", env) or IOJS_MIRROR
        return DistributionPaths(
            external_path=url_join(mirror, f"v{version}"),
            win_libs=[WinLib("win-x64" if arch in ("x64", "arm64") else "win-x86", "iojs.lib")],
            tar_path=f"iojs-v{version}.tar.gz",
            header_only=False,
        )

    if config.runtime == "electron":
        mirror = get_env_var("ELECTRON_MIRROR", env) or ELECTRON_MIRROR
        return DistributionPaths(
            external_path=url_join(mirror, f"v{version}"),
            win_libs=[WinLib(arch if arch in ("x64", "arm64") else "", "node.lib")],
            tar_path=f"node-v{version}.tar.gz",
            header_only=_version(version) >= Version("4.0.0-alpha"),
        )

    raise ProvisioningError(f"Unsupported runtime {config.runtime}")


def _is_header(path: str) -> bool:
    return os.path.splitext(path)[1].lower() == ".h"


class RuntimeDistribution:
    """Headers and import libraries of one (runtime, os, arch, version) target."""

    def __init__(self, config, cache_root: Optional[Path] = None,
                 timeout: Optional[float] = None, env: Optional[Mapping[str, str]] = None):
        self.config = config
        self.cache_root = cache_root if cache_root is not None else get_nodecxx_cache_dir()
        self.timeout = timeout
        self.paths = get_paths_for_config(config, env)
        self.abi: Optional[int] = None

    @property
    def internal_path(self) -> Path:
        c = self.config
        return get_distribution_cache_path(c.runtime, c.os, c.arch, c.runtime_version, self.cache_root)

    @property
    def header_only(self) -> bool:
        return self.paths.header_only

    def win_libs(self) -> List[Path]:
        if self.config.os != "win32":
            return []
        return [self.internal_path / lib.path for lib in self.paths.win_libs]

    def include_dirs(self) -> List[Path]:
        root = self.internal_path
        if self.header_only:
            return [root / "include" / "node"]
        return [root / "src", root / "deps" / "v8" / "include", root / "deps" / "uv" / "include"]

    def is_provisioned(self) -> bool:
        root = self.internal_path
        if not root.is_dir():
            return False
        if self.header_only:
            headers = (root / "include" / "node" / "node.h").is_file()
        else:
            headers = (root / "src" / "node.h").is_file() and (root / "deps" / "v8" / "include" / "v8.h").is_file()
        libs = all(lib.is_file() for lib in self.win_libs())
        return headers and libs

    def ensure_provisioned(self) -> None:
        """Download whatever is missing; a complete cache does no network I/O."""
        if self.is_provisioned():
            logger.debug("Using cached %s %s headers in %s",
                         self.config.runtime, self.config.runtime_version, self.internal_path)
            return
        logger.info("Provisioning %s %s (%s-%s) into %s", self.config.runtime,
                    self.config.runtime_version, self.config.os, self.config.arch, self.internal_path)
        self.internal_path.mkdir(parents=True, exist_ok=True)
        sums = self._download_hash_sums()
        self._download_tar(sums)
        self._download_libs(sums)

    def _download_hash_sums(self) -> Optional[List[HashSum]]:
        if self.config.runtime not in ("node", "iojs"):
            return None
        text = download_to_string(url_join(self.paths.external_path, "SHASUMS256.txt"), self.timeout)
        return parse_hash_sums(text)

    def _verify(self, sums: Optional[List[HashSum]], digest: str, path: str) -> None:
        if sums is None:
            return
        expected = find_hash_sum(sums, path)
        if expected != digest:
            raise ProvisioningError(
                f"Checksum mismatch for {path}: expected {expected or 'no entry'}, got {digest}"
            )

    def _download_tar(self, sums: Optional[List[HashSum]]) -> None:
        url = url_join(self.paths.external_path, self.paths.tar_path)
        archive, digest = download_to_temp(url, ".tar.gz", self.timeout)
        try:
            self._verify(sums, digest, self.paths.tar_path)
            retry(lambda: extract_tgz(archive, self.internal_path, strip=1, member_filter=_is_header))
        finally:
            archive.unlink(missing_ok=True)

    def _download_lib(self, lib: WinLib, sums: Optional[List[HashSum]]) -> Path:
        dest = self.internal_path / lib.path
        partial = dest.with_name(dest.name + ".part")
        digest = download_file(url_join(self.paths.external_path, lib.path), partial, self.timeout)
        try:
            self._verify(sums, digest, lib.path)
        except ProvisioningError:
            partial.unlink(missing_ok=True)
            raise
        os.replace(partial, dest)
        return dest

    def _download_libs(self, sums: Optional[List[HashSum]]) -> None:
        if self.config.os != "win32":
            return
        libs = self.paths.win_libs
        with ThreadPoolExecutor(max_workers=len(libs)) as pool:
            futures = [pool.submit(self._download_lib, lib, sums) for lib in libs]
            # result() re-raises the first failure
            for future in futures:
                future.result()

    def determine_abi(self) -> int:
        """Read NODE_MODULE_VERSION from the provisioned headers.

        Sets ``abi`` and ``libc`` on the configuration as a side effect.
        """
        include = self.internal_path / "include"
        files = sorted(p for p in include.glob("*/node_version.h") if p.is_file())
        if not files:
            raise ProvisioningError(
                f"couldn't find include/*/node_version.h in {self.internal_path}. "
                "Make sure the runtime distribution was downloaded."
            )
        if len(files) > 1:
            raise ProvisioningError(f"more than one node_version.h was found in {self.internal_path}.")

        try:
            contents = files[0].read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            raise ProvisioningError(f"Failed to read {files[0]}: {e}") from e
        match = _NODE_MODULE_VERSION.search(contents)
        if not match:
            raise ProvisioningError(f"Failed to find NODE_MODULE_VERSION macro in {files[0]}")

        self.abi = int(match.group(1))
        self.config.abi = self.abi
        self.config.libc = detect_libc(self.config.os)
        return self.abi
