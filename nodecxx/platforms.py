"""Platform vocabularies and host detection.

Names follow Node.js conventions (``process.platform`` / ``process.arch``) so
that build directories and manifest entries line up with what a Node runtime
reports about itself.
"""

import os
import platform
import shutil
import subprocess
import sys
from enum import Enum
from pathlib import Path
from typing import Optional


class BuildType(Enum):
    """CMake build types"""
    RELEASE = "Release"
    DEBUG = "Debug"
    REL_WITH_DEB_INFO = "RelWithDebInfo"
    MIN_SIZE_REL = "MinSizeRel"


BUILD_TYPE_ALIASES = {
    "release": BuildType.RELEASE,
    "debug": BuildType.DEBUG,
    "relwithdebinfo": BuildType.REL_WITH_DEB_INFO,
    "minsizerel": BuildType.MIN_SIZE_REL,
}

PLATFORMS = (
    "aix", "android", "darwin", "freebsd", "haiku", "linux",
    "openbsd", "sunos", "win32", "cygwin", "netbsd",
)

ARCHITECTURES = (
    "arm", "arm64", "ia32", "loong64", "mips", "mipsel",
    "ppc", "ppc64", "riscv64", "s390", "s390x", "x64",
)

RUNTIMES = ("node", "electron", "iojs")

ADDON_EXTENSION = ".node"

# platform.machine() spellings to Node arch names
_MACHINE_TO_ARCH = {
    "x86_64": "x64",
    "amd64": "x64",
    "x64": "x64",
    "i386": "ia32",
    "i486": "ia32",
    "i586": "ia32",
    "i686": "ia32",
    "x86": "ia32",
    "aarch64": "arm64",
    "arm64": "arm64",
    "armv6l": "arm",
    "armv7l": "arm",
    "armv8l": "arm",
    "arm": "arm",
    "ppc": "ppc",
    "ppc64": "ppc64",
    "ppc64le": "ppc64",
    "riscv64": "riscv64",
    "s390": "s390",
    "s390x": "s390x",
    "loongarch64": "loong64",
    "mips": "mips",
    "mipsel": "mipsel",
}

_CMAKE_SYSTEM_NAMES = {
    "win32": "Windows",
    "darwin": "Darwin",
    "linux": "Linux",
    "android": "Android",
    "freebsd": "FreeBSD",
    "openbsd": "OpenBSD",
    "netbsd": "NetBSD",
    "sunos": "SunOS",
    "aix": "AIX",
    "haiku": "Haiku",
    "cygwin": "CYGWIN",
}

_CMAKE_PROCESSORS = {
    "x64": "x86_64",
    "ia32": "x86",
    "arm64": "aarch64",
    "arm": "arm",
    "loong64": "loongarch64",
    "mips": "mips",
    "mipsel": "mipsel",
    "ppc": "ppc",
    "ppc64": "ppc64",
    "riscv64": "riscv64",
    "s390": "s390",
    "s390x": "s390x",
}

_OSX_ARCHITECTURES = {"x64": "x86_64", "arm64": "arm64"}


def host_os() -> str:
    """Node-style name of the running operating system."""
    if sys.platform.startswith("win"):
        return "win32"
    if sys.platform.startswith("linux"):
        return "linux"
    if sys.platform.startswith("freebsd"):
        return "freebsd"
    if sys.platform.startswith("openbsd"):
        return "openbsd"
    if sys.platform.startswith("netbsd"):
        return "netbsd"
    if sys.platform.startswith("sunos"):
        return "sunos"
    if sys.platform.startswith("aix"):
        return "aix"
    return sys.platform


def host_arch() -> str:
    """Node-style name of the running CPU architecture."""
    machine = platform.machine().lower()
    return _MACHINE_TO_ARCH.get(machine, machine)


def host_node_version() -> Optional[str]:
    """Version of the ``node`` executable on PATH, without the leading ``v``."""
    node = shutil.which("node")
    if not node:
        return None
    try:
        out = subprocess.run([node, "--version"], capture_output=True, text=True, timeout=30)
    except (OSError, subprocess.TimeoutExpired):
        return None
    if out.returncode != 0:
        return None
    return out.stdout.strip().lstrip("v") or None


def detect_libc(target_os: str) -> str:
    """C runtime flavour for a target OS.

    Linux is ``musl`` when the host looks like Alpine, ``glibc`` otherwise.
    """
    if target_os == "linux":
        if Path("/etc/alpine-release").exists():
            return "musl"
        return "glibc"
    if target_os == "darwin":
        return "libc"
    if target_os == "win32":
        return "msvc"
    return "unknown"


def parse_build_type(value: str) -> Optional[BuildType]:
    """Map a build-type alias or canonical name to BuildType, case-insensitively."""
    return BUILD_TYPE_ALIASES.get(value.lower())


def cmake_system_name(target_os: str) -> str:
    return _CMAKE_SYSTEM_NAMES.get(target_os, target_os)


def cmake_processor(arch: str) -> str:
    return _CMAKE_PROCESSORS.get(arch, arch)


def osx_architecture(arch: str) -> str:
    return _OSX_ARCHITECTURES.get(arch, arch)


def is_windows_host() -> bool:
    return os.name == "nt"
