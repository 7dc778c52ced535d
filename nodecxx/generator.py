"""CMake generator discovery."""

import logging
import re
import shutil
import subprocess
from dataclasses import dataclass
from functools import lru_cache
from typing import Tuple

logger = logging.getLogger(__name__)

NATIVE = "native"

_VS_GENERATOR = re.compile(r"^\*?\s*(Visual\s+Studio\s+\d+\s+\d+)(\s*\[arch\])?", re.MULTILINE)

# Node arch -> value for CMake's -A flag
_VS_PLATFORMS = {"x64": "x64", "ia32": "Win32", "arm64": "ARM64", "arm": "ARM"}


@dataclass(frozen=True)
class Generator:
    generator: str
    flags: Tuple[str, ...] = ()
    binary: str = ""

    @property
    def is_visual_studio(self) -> bool:
        return self.generator.startswith("Visual Studio")


def is_visual_studio(generator_name: str) -> bool:
    return generator_name.startswith("Visual Studio")


def _visual_studio_generator(cmake: str, arch: str) -> Generator:
    try:
        result = subprocess.run([cmake, "-G"], capture_output=True, text=True, timeout=60)
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.warning("Failed to query generators from %s: %s", cmake, e)
        return Generator(NATIVE)

    # `cmake -G` without a value prints the generator list and exits non-zero
    output = result.stdout + result.stderr
    match = _VS_GENERATOR.search(output)
    if not match:
        logger.warning("No Visual Studio generator found in `%s -G` output, using native", cmake)
        return Generator(NATIVE)

    name = re.sub(r"\s+", " ", match.group(1))
    if match.group(2):
        # Old generators encode the platform in the name
        if arch == "x64":
            name += " Win64"
        elif arch == "arm":
            name += " ARM"
        return Generator(name)
    return Generator(name, ("-A", _VS_PLATFORMS.get(arch, arch)))


@lru_cache(maxsize=None)
def discover_generator(cmake: str, target_os: str, target_arch: str) -> Generator:
    """Pick a generator: Ninja when installed, Visual Studio for Windows targets, else native.

    Results are cached per (cmake, os, arch).
    """
    ninja = shutil.which("ninja")
    if ninja:
        logger.debug("Using Ninja generator (%s)", ninja)
        return Generator("Ninja", (), ninja)

    if target_os == "win32":
        generator = _visual_studio_generator(cmake, target_arch)
        logger.debug("Using generator %s", generator.generator)
        return generator

    return Generator(NATIVE)
