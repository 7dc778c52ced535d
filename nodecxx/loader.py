"""
Prebuilt addon loader

Picks, from the addons recorded in a target directory's manifest, the ones
built for the running machine and loads the first that works. Candidates are
tried from the highest module ABI down, so a newer runtime build wins over an
older one when both are present.
"""

import ctypes
import logging
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional, Protocol, Union

from .errors import LoadCandidateError, LoadError
from .manifest import Manifest
from .platforms import detect_libc, host_arch, host_os

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Platform:
    """The (os, arch, libc) triple an addon must have been built for"""
    os: str
    arch: str
    libc: str


def get_platform() -> Platform:
    target_os = host_os()
    return Platform(os=target_os, arch=host_arch(), libc=detect_libc(target_os))


@dataclass(frozen=True)
class Loaded:
    handle: Any
    path: str = ""


@dataclass(frozen=True)
class LoadFailed:
    cause: Union[BaseException, str]


LoadResult = Union[Loaded, LoadFailed]


class Loader(Protocol):
    def load(self, path: str) -> LoadResult:
        ...


class CtypesLoader:
    """Loads a shared library into the current process with ctypes.

    Only suitable for self-contained libraries. A Node-API addon leaves its
    ``napi_*`` symbols for the node executable to provide, so ctypes can never
    resolve it; use NodeLoader for those.
    """

    def load(self, path: str) -> LoadResult:
        try:
            return Loaded(ctypes.CDLL(path), path)
        except OSError as e:
            return LoadFailed(e)


# process.argv[1] is the first argument after the -e script
_REQUIRE_SCRIPT = "require(process.argv[1])"


class NodeLoader:
    """Attempts the load inside a node process, where the runtime symbols exist.

    The handle of a successful load is the addon path: the loaded module lives
    in the node process, not in Python.
    """

    def __init__(self, node: Optional[str] = None, timeout: float = 60):
        self.node = node or shutil.which("node")
        self.timeout = timeout

    def load(self, path: str) -> LoadResult:
        if not self.node:
            return LoadFailed("node is not on PATH")
        try:
            result = subprocess.run([self.node, "-e", _REQUIRE_SCRIPT, path],
                                    capture_output=True, text=True, timeout=self.timeout)
        except (OSError, subprocess.TimeoutExpired) as e:
            return LoadFailed(e)
        if result.returncode != 0:
            lines = [line for line in result.stderr.splitlines() if line.strip()]
            reason = next((line for line in lines if "Error" in line), lines[-1] if lines else "")
            return LoadFailed(f"node exited with code {result.returncode}: {reason.strip()}")
        return Loaded(path, path)


def load_addon(build_dir: Union[str, Path], loader: Optional[Loader] = None,
               platform: Optional[Platform] = None) -> Any:
    """Load the best addon recorded in ``build_dir``'s manifest and return its handle.

    Raises ManifestError when the manifest is missing or has no entry for this
    platform, and LoadError when every compatible candidate failed to load.
    """
    loader = loader or NodeLoader()
    platform = platform or get_platform()

    manifest = Manifest.read(build_dir)
    candidates = manifest.find_compatible_configs(platform)

    failures: List[LoadCandidateError] = []
    for data, path in candidates:
        logger.debug("Trying %s (abi %s, %s %s)", path, data.get("abi"), data.get("runtime"),
                     data.get("runtimeVersion"))
        result = loader.load(path)
        if isinstance(result, Loaded):
            logger.debug("Loaded %s", path)
            return result.handle
        failure = LoadCandidateError(path, result.cause)
        logger.warning("%s", failure)
        failures.append(failure)

    details = "\n".join(f"  {f}" for f in failures)
    raise LoadError(f"Failed to load any compatible addon from {build_dir}:\n{details}")
