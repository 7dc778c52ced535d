"""Visual C++ developer environment for cross-architecture Windows builds.

vcvarsall.bat only exports its settings into the cmd.exe session that runs it,
so the environment is captured before and after, and the difference returned.
"""

import logging
import os
import subprocess
from pathlib import Path
from typing import Dict, List, Optional

from .errors import BuildError
from .platforms import host_arch, is_windows_host

logger = logging.getLogger(__name__)

EDITIONS = ["Enterprise", "Professional", "Community", "BuildTools"]
YEARS = ["2022", "2019", "2017"]

VS_YEAR_VERSION = {
    "2022": "17.0",
    "2019": "16.0",
    "2017": "15.0",
    "2015": "14.0",
    "2013": "12.0",
}

PATH_LIKE_VARIABLES = ("PATH", "INCLUDE", "LIB", "LIBPATH")

EnvPatch = Dict[str, str]


def msvc_arch(arch: str) -> str:
    return {"ia32": "x86", "x64": "amd64"}.get(arch, arch)


def vcvars_arch(target_arch: str, host: Optional[str] = None) -> str:
    """Argument for vcvarsall: ``amd64`` or ``<host>_<target>`` when they differ."""
    host_value = msvc_arch(host or host_arch())
    target_value = msvc_arch(target_arch)
    return target_value if host_value == target_value else f"{host_value}_{target_value}"


def _version_number(vs_version: str) -> str:
    return VS_YEAR_VERSION.get(vs_version, vs_version)


def _version_year(vs_version: str) -> str:
    if vs_version in VS_YEAR_VERSION:
        return vs_version
    for year, number in VS_YEAR_VERSION.items():
        if number == vs_version:
            return year
    return vs_version


def _program_files() -> List[Path]:
    return [Path(p) for p in (os.environ.get("ProgramFiles(x86)"), os.environ.get("ProgramFiles")) if p]


def _find_with_vswhere(version_args: List[str]) -> Optional[Path]:
    x86 = os.environ.get("ProgramFiles(x86)", r"C:\Program Files (x86)")
    vswhere = Path(x86) / "Microsoft Visual Studio" / "Installer" / "vswhere.exe"
    if not vswhere.exists():
        return None
    try:
        out = subprocess.check_output(
            [str(vswhere), "-products", "*", *version_args, "-prerelease", "-property", "installationPath"],
            stderr=subprocess.DEVNULL, text=True,
        )
    except (OSError, subprocess.CalledProcessError) as e:
        logger.debug("vswhere failed: %s", e)
        return None
    installation = out.strip().splitlines()[0] if out.strip() else ""
    if not installation:
        return None
    return Path(installation) / "VC" / "Auxiliary" / "Build" / "vcvarsall.bat"


def find_vcvarsall(vs_version: Optional[str] = None) -> Path:
    """Locate vcvarsall.bat: vswhere first, then the standard install locations."""
    if vs_version is None:
        version_args = ["-latest"]
    else:
        number = _version_number(vs_version)
        version_args = ["-version", f"{number},{number.split('.')[0]}.9"]

    found = _find_with_vswhere(version_args)
    if found is not None and found.exists():
        logger.debug("Found with vswhere: %s", found)
        return found

    years = [_version_year(vs_version)] if vs_version is not None else YEARS
    for program_files in _program_files():
        for year in years:
            for edition in EDITIONS:
                candidate = (program_files / "Microsoft Visual Studio" / year / edition
                             / "VC" / "Auxiliary" / "Build" / "vcvarsall.bat")
                if candidate.exists():
                    logger.debug("Found standard location: %s", candidate)
                    return candidate

    # Visual Studio 2015 build tools
    x86 = os.environ.get("ProgramFiles(x86)")
    if x86:
        candidate = Path(x86) / "Microsoft Visual C++ Build Tools" / "vcbuildtools.bat"
        if candidate.exists():
            return candidate

    raise BuildError("Microsoft Visual Studio not found")


def dedupe_path_value(value: str) -> str:
    seen = []
    for item in value.split(";"):
        if item not in seen:
            seen.append(item)
    return ";".join(seen)


def _parse_env(lines: List[str]) -> Dict[str, str]:
    env = {}
    for line in lines:
        if "=" not in line:
            continue
        name, value = line.split("=", 1)
        env[name] = value
    return env


def diff_environment(output: str) -> EnvPatch:
    """Parse ``set && cls && vcvarsall && cls && set`` output into changed variables."""
    parts = output.split("\f")
    if len(parts) < 3:
        raise BuildError("Unexpected output from vcvarsall")
    old_env = _parse_env(parts[0].splitlines())
    vcvars_output = parts[1].splitlines()
    new_env = _parse_env(parts[2].splitlines())

    errors = [
        line for line in vcvars_output
        if line.startswith("[ERROR") and not line.rstrip().endswith("Error in script usage. The correct usage is:")
    ]
    if errors:
        raise BuildError("vcvarsall: invalid parameters\n" + "\n".join(errors))

    patch: EnvPatch = {}
    for name, value in new_env.items():
        if old_env.get(name) != value:
            if name.upper() in PATH_LIKE_VARIABLES:
                value = dedupe_path_value(value)
            patch[name] = value
    return patch


def setup_msvc_env(arch: str, vs_version: Optional[str] = None, host: Optional[str] = None) -> EnvPatch:
    """Environment variables that make cl.exe and link.exe target ``arch``.

    Returns an empty patch when not running on Windows. The current process
    environment is left untouched; callers pass the patch to child processes.
    """
    if not is_windows_host():
        return {}

    target = vcvars_arch(arch, host)
    vcvarsall = find_vcvarsall(vs_version)
    logger.debug("Setting up MSVC for %s with %s", target, vcvarsall)
    try:
        output = subprocess.check_output(
            f'set && cls && "{vcvarsall}" {target} && cls && set',
            shell=True, text=True, stderr=subprocess.STDOUT,
        )
    except subprocess.CalledProcessError as e:
        raise BuildError(f"vcvarsall failed for {target}: {e.output}") from e
    return diff_environment(output)
