#!/usr/bin/env python3
"""
Configuration management for nodecxx.toml files and build requests

This module turns a possibly partial build request ("build win32-x64-debug",
"build every named configuration for this OS", ...) into a list of fully
resolved BuildConfiguration objects. Settings come from three layers, in
order: the configuration entry, the file-wide defaults, and values computed
from the host.
"""

import logging
import os
import re
import shutil
try:
    import tomllib
except ImportError:
    # For Python < 3.11
    import tomli as tomllib
from dataclasses import MISSING, dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from .errors import ConfigurationError
from .generator import discover_generator
from .override import apply_overrides
from .platforms import (
    ARCHITECTURES,
    PLATFORMS,
    RUNTIMES,
    BuildType,
    host_arch,
    host_node_version,
    host_os,
    parse_build_type,
)

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = "nodecxx.toml"

NAMED_ALL = "named-all"
NAMED_OS = "named-os"
NAMED_OS_DEV = "named-os-dev"
NAMED_SELECTORS = (NAMED_ALL, NAMED_OS, NAMED_OS_DEV)

# snake_case field name -> key used in manifest JSON
JSON_KEYS = {
    "name": "name",
    "dev": "dev",
    "os": "os",
    "arch": "arch",
    "cross": "cross",
    "runtime": "runtime",
    "runtime_version": "runtimeVersion",
    "node_api": "nodeAPI",
    "build_type": "buildType",
    "package_directory": "packageDirectory",
    "project_name": "projectName",
    "target_directory": "targetDirectory",
    "staging_directory": "stagingDirectory",
    "addon_subdirectory": "addonSubdirectory",
    "cmake_to_use": "cmakeToUse",
    "generator_to_use": "generatorToUse",
    "generator_flags": "generatorFlags",
    "generator_binary": "generatorBinary",
    "toolchain_file": "toolchainFile",
    "cmake_options": "CMakeOptions",
    "additional_defines": "additionalDefines",
    "abi": "abi",
    "libc": "libc",
}
_FIELD_NAMES = {json_key: name for name, json_key in JSON_KEYS.items()}
_FIELD_NAMES["cmakeOptions"] = "cmake_options"


@dataclass
class CMakeOption:
    """A single ``-D<name>=<value>`` passed to CMake"""
    name: str
    value: str


@dataclass
class PartialConfiguration:
    """A configuration entry as written in nodecxx.toml; unset fields are None"""
    name: Optional[str] = None
    dev: Optional[bool] = None
    os: Optional[str] = None
    arch: Optional[str] = None
    cross: Optional[bool] = None
    runtime: Optional[str] = None
    runtime_version: Optional[str] = None
    node_api: Optional[str] = None
    build_type: Optional[BuildType] = None
    package_directory: Optional[str] = None
    project_name: Optional[str] = None
    target_directory: Optional[str] = None
    staging_directory: Optional[str] = None
    addon_subdirectory: Optional[str] = None
    cmake_to_use: Optional[str] = None
    generator_to_use: Optional[str] = None
    generator_flags: Optional[List[str]] = None
    generator_binary: Optional[str] = None
    toolchain_file: Optional[str] = None
    cmake_options: List[CMakeOption] = field(default_factory=list)
    additional_defines: Optional[List[str]] = None


@dataclass
class ConfigFile:
    """Contents of nodecxx.toml: file-wide defaults plus named entries"""
    defaults: PartialConfiguration = field(default_factory=PartialConfiguration)
    configurations: List[PartialConfiguration] = field(default_factory=list)
    path: Optional[Path] = None


@dataclass
class BuildConfiguration:
    """A fully resolved build target.

    ``abi`` and ``libc`` stay None until the runtime distribution has been
    provisioned; ``RuntimeDistribution.determine_abi`` fills them in.
    """
    name: str
    dev: bool
    os: str
    arch: str
    cross: bool
    runtime: str
    runtime_version: str
    node_api: str
    build_type: BuildType
    package_directory: str
    project_name: str
    target_directory: str
    staging_directory: str
    addon_subdirectory: str
    cmake_to_use: str
    generator_to_use: str
    generator_flags: Optional[List[str]] = None
    generator_binary: Optional[str] = None
    toolchain_file: Optional[str] = None
    cmake_options: List[CMakeOption] = field(default_factory=list)
    additional_defines: List[str] = field(default_factory=list)
    abi: Optional[int] = None
    libc: Optional[str] = None

    def label(self) -> str:
        return f"{self.os}-{self.arch}-{self.runtime}-{self.runtime_version}-{self.build_type.value}"

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready mapping with camelCase keys; None values are omitted."""
        data: Dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None:
                continue
            if isinstance(value, Enum):
                value = value.value
            elif f.name == "cmake_options":
                value = [{"name": o.name, "value": o.value} for o in value]
            elif isinstance(value, list):
                value = list(value)
            data[JSON_KEYS[f.name]] = value
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "BuildConfiguration":
        partial = parse_partial(data, source="manifest entry")
        missing = [
            f.name for f in fields(cls)
            if f.default is MISSING and f.default_factory is MISSING and getattr(partial, f.name) is None
        ]
        if missing:
            raise ConfigurationError(f"Configuration is missing required fields: {', '.join(missing)}")
        values = {f.name: getattr(partial, f.name) for f in fields(PartialConfiguration)}
        values["additional_defines"] = values["additional_defines"] or []
        abi = data.get("abi")
        values["abi"] = int(abi) if abi is not None else None
        values["libc"] = data.get("libc")
        return cls(**values)


@dataclass
class HostEnvironment:
    """The machine nodecxx runs on, and the environment variables it consults.

    Cross-compilation detection reads ``npm_config_target_os`` and
    ``npm_config_target_arch`` from ``env``, never from the process directly.
    """
    os: str
    arch: str
    env: Mapping[str, str] = field(default_factory=dict)
    node_version: Optional[str] = None

    @classmethod
    def current(cls) -> "HostEnvironment":
        return cls(
            os=host_os(),
            arch=host_arch(),
            env=dict(os.environ),
            node_version=host_node_version(),
        )


@dataclass
class BuildRequest:
    """What the user asked to build"""
    configs: List[str] = field(default_factory=list)
    project_name: Optional[str] = None
    addon_subdirectory: Optional[str] = None
    package_directory: Optional[str] = None
    target_directory: Optional[str] = None
    staging_directory: Optional[str] = None
    download_timeout: Optional[float] = None


def _to_cmake_value(value: Any) -> str:
    if isinstance(value, bool):
        return "ON" if value else "OFF"
    return str(value)


def parse_cmake_options(value: Any, source: str) -> List[CMakeOption]:
    """Accept either ``[{name=..., value=...}, ...]`` or ``{NAME = value, ...}``."""
    if value is None:
        return []
    if isinstance(value, Mapping):
        return [CMakeOption(str(k), _to_cmake_value(v)) for k, v in value.items()]
    if isinstance(value, list):
        options = []
        for item in value:
            if not isinstance(item, Mapping) or "name" not in item or "value" not in item:
                raise ConfigurationError(f"Invalid CMake option in {source}: {item!r}")
            options.append(CMakeOption(str(item["name"]), _to_cmake_value(item["value"])))
        return options
    raise ConfigurationError(f"CMake options in {source} must be a table or a list of tables")


def parse_partial(data: Mapping[str, Any], source: str = CONFIG_FILE_NAME) -> PartialConfiguration:
    """Build a PartialConfiguration from a mapping with snake_case or camelCase keys"""
    values: Dict[str, Any] = {}
    for key, value in data.items():
        name = key if key in JSON_KEYS else _FIELD_NAMES.get(key)
        if name is None or name in ("abi", "libc"):
            if name is None:
                logger.warning("Ignoring unknown key '%s' in %s", key, source)
            continue
        if name in values:
            raise ConfigurationError(f"Key '{key}' given twice in {source}")
        values[name] = value

    if "build_type" in values:
        raw = values["build_type"]
        build_type = parse_build_type(str(raw))
        if build_type is None:
            raise ConfigurationError(f"Invalid build type in {source}: {raw}")
        values["build_type"] = build_type
    values["cmake_options"] = parse_cmake_options(values.get("cmake_options"), source)
    if "runtime_version" in values:
        values["runtime_version"] = str(values["runtime_version"]).lstrip("v")
    for key in ("generator_flags", "additional_defines"):
        if key in values and not isinstance(values[key], list):
            raise ConfigurationError(f"'{key}' in {source} must be a list")
    return PartialConfiguration(**values)


def find_project_root(start_path: Optional[Path] = None) -> Path:
    """Find the project root directory containing nodecxx.toml"""
    if start_path is None:
        start_path = Path.cwd()

    current = start_path if start_path.is_dir() else start_path.parent
    for path in [current] + list(current.parents):
        config_file = path / CONFIG_FILE_NAME
        if config_file.exists():
            return path

    # If no nodecxx.toml found, return current working directory as fallback
    return Path.cwd()


def load_config(config_path: Optional[Union[str, Path]] = None) -> ConfigFile:
    """Load nodecxx configuration from a TOML file.

    Without an explicit path, nodecxx.toml is searched upward from the current
    directory and a missing file yields an empty ConfigFile. An explicit path
    that does not exist raises FileNotFoundError.
    """
    if config_path is None:
        project_root = find_project_root()
        config_path = project_root / CONFIG_FILE_NAME
        if not config_path.exists():
            logger.debug("No %s found, using defaults", CONFIG_FILE_NAME)
            return ConfigFile()

    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, "rb") as f:
        try:
            data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigurationError(f"Failed to parse {config_path}: {e}") from e

    return parse_config_data(data, source=str(config_path), path=config_path)


def parse_config_data(data: Mapping[str, Any], source: str = CONFIG_FILE_NAME,
                      path: Optional[Path] = None) -> ConfigFile:
    defaults_data = {k: v for k, v in data.items() if k not in ("configurations", "defaults")}
    defaults_data.update(data.get("defaults", {}))
    defaults = parse_partial(defaults_data, source=source)

    entries = data.get("configurations", [])
    if not isinstance(entries, list):
        raise ConfigurationError(f"'configurations' in {source} must be an array of tables")
    configurations = [
        parse_partial(entry, source=f"{source} configuration #{i + 1}")
        for i, entry in enumerate(entries)
    ]
    return ConfigFile(defaults=defaults, configurations=configurations, path=path)


def create_example_config(path: Optional[Union[str, Path]] = None) -> Path:
    """Create an example nodecxx.toml configuration file"""
    if path is None:
        path = Path.cwd() / CONFIG_FILE_NAME
    else:
        path = Path(path)

    project_name = re.sub(r"[^A-Za-z0-9_]", "_", Path.cwd().name) or "addon"
    example_config = f'''# nodecxx.toml - build configurations for a native Node.js addon

# Defaults shared by every configuration
project_name = "{project_name}"
target_directory = "build"
staging_directory = "staging"
node_api = "node-addon-api"

# Extra -D options passed to CMake for every configuration
# cmake_options = {{ BUILD_TESTING = "OFF" }}

# Named configurations, selected with `nodecxx build --configs <name>`,
# `named-all`, `named-os` or `named-os-dev`
[[configurations]]
name = "linux-x64-node"
os = "linux"
arch = "x64"
runtime = "node"
build_type = "Release"

# [[configurations]]
# name = "win32-x64-electron"
# os = "win32"
# arch = "x64"
# runtime = "electron"
# runtime_version = "30.0.0"
'''

    with open(path, "w", encoding="utf-8") as f:
        f.write(example_config)

    return path


def validate_config(config: ConfigFile) -> List[str]:
    """Validate a nodecxx configuration and return list of warnings"""
    warnings = []

    seen = set()
    for i, entry in enumerate([config.defaults] + config.configurations):
        where = "defaults" if i == 0 else f"configuration '{entry.name or f'#{i}'}'"
        if entry.os is not None and entry.os not in PLATFORMS:
            warnings.append(f"Unknown os in {where}: {entry.os}")
        if entry.arch is not None and entry.arch not in ARCHITECTURES:
            warnings.append(f"Unknown arch in {where}: {entry.arch}")
        if entry.runtime is not None and entry.runtime not in RUNTIMES:
            warnings.append(f"Unknown runtime in {where}: {entry.runtime}")
        if i == 0:
            continue

        if not entry.name:
            warnings.append(f"{where} has no name and can only be selected with {NAMED_ALL} or {NAMED_OS}")
        elif entry.name in seen:
            warnings.append(f"Duplicate configuration name: {entry.name}")
        elif entry.name in NAMED_SELECTORS:
            warnings.append(f"Configuration name '{entry.name}' shadows a built-in selector")
        if entry.name:
            seen.add(entry.name)

        runtime = entry.runtime or config.defaults.runtime or "node"
        if runtime != "node" and not (entry.runtime_version or config.defaults.runtime_version):
            warnings.append(f"{where} targets {runtime} but sets no runtime_version")

    return warnings


def parse_builtin_config(config_name: str) -> PartialConfiguration:
    """Parse a dash-separated selector such as ``win32-x64-debug``.

    Each segment is an os, an arch, a runtime, a build type or ``cross``, in
    any order.
    """
    partial = PartialConfiguration()
    for part in config_name.split("-"):
        build_type = parse_build_type(part)
        if part in PLATFORMS:
            partial.os = part
        elif part in ARCHITECTURES:
            partial.arch = part
        elif part in RUNTIMES:
            partial.runtime = part
        elif build_type is not None:
            partial.build_type = build_type
        elif part == "cross":
            partial.cross = True
        else:
            raise ConfigurationError(f"Invalid config part in {config_name}: {part}")
    return partial


def split_config_tokens(configs: Iterable[str]) -> List[str]:
    """Flatten ``["a,b", "c"]`` into ``["a", "b", "c"]``, keeping first occurrences."""
    tokens: List[str] = []
    for item in configs:
        for token in re.split(r"[,\s]+", item):
            if token and token not in tokens:
                tokens.append(token)
    return tokens


def _pick(entry: PartialConfiguration, defaults: PartialConfiguration, name: str,
          fallback: Any = None, override: Any = None) -> Any:
    value = getattr(entry, name)
    if value is None:
        value = override
    if value is None:
        value = getattr(defaults, name)
    return fallback if value is None else value


def is_cross_compiling(target_os: str, target_arch: str, host: HostEnvironment) -> bool:
    """True when the target differs from the host or from npm's target overrides."""
    env_os = host.env.get("npm_config_target_os")
    env_arch = host.env.get("npm_config_target_arch")
    return (
        host.os != target_os
        or (env_os is not None and env_os != target_os)
        or host.arch != target_arch
        or (env_arch is not None and env_arch != target_arch)
    )


def get_build_config(request: BuildRequest, entry: PartialConfiguration,
                     config_file: ConfigFile, host: HostEnvironment) -> BuildConfiguration:
    """Fill every unset field of ``entry`` and apply the override rules."""
    defaults = config_file.defaults

    target_os = _pick(entry, defaults, "os", host.os)
    target_arch = _pick(entry, defaults, "arch", host.arch)
    forced_cross = bool(entry.cross) or bool(defaults.cross)
    cross = forced_cross or is_cross_compiling(target_os, target_arch, host)

    runtime = _pick(entry, defaults, "runtime", "node")
    runtime_version = _pick(entry, defaults, "runtime_version")
    if runtime_version is None and runtime == "node":
        runtime_version = host.node_version
    if runtime_version is None:
        if runtime == "node":
            raise ConfigurationError(
                "Cannot determine the Node.js version: node is not on PATH and no runtime_version is set"
            )
        raise ConfigurationError(f"runtime_version is required for runtime '{runtime}'")

    cmake_to_use = _pick(entry, defaults, "cmake_to_use") or shutil.which("cmake") or "cmake"

    generator_to_use = _pick(entry, defaults, "generator_to_use")
    generator_flags = _pick(entry, defaults, "generator_flags")
    generator_binary = _pick(entry, defaults, "generator_binary")
    if generator_to_use is None or generator_binary is None:
        discovered = discover_generator(cmake_to_use, target_os, target_arch)
        if generator_to_use is None:
            generator_to_use = discovered.generator
            if generator_flags is None:
                generator_flags = list(discovered.flags) or None
        if generator_binary is None:
            generator_binary = discovered.binary

    config = BuildConfiguration(
        name=_pick(entry, defaults, "name", ""),
        dev=bool(_pick(entry, defaults, "dev", False)),
        os=target_os,
        arch=target_arch,
        cross=cross,
        runtime=runtime,
        runtime_version=runtime_version,
        node_api=_pick(entry, defaults, "node_api", "node-addon-api"),
        build_type=_pick(entry, defaults, "build_type", BuildType.RELEASE),
        package_directory=_pick(entry, defaults, "package_directory", str(Path.cwd()),
                                override=request.package_directory),
        project_name=_pick(entry, defaults, "project_name", "addon", override=request.project_name),
        target_directory=_pick(entry, defaults, "target_directory", "build",
                               override=request.target_directory),
        staging_directory=_pick(entry, defaults, "staging_directory", "staging",
                                override=request.staging_directory),
        addon_subdirectory=_pick(entry, defaults, "addon_subdirectory", "",
                                 override=request.addon_subdirectory),
        cmake_to_use=cmake_to_use,
        generator_to_use=generator_to_use,
        generator_flags=generator_flags,
        generator_binary=generator_binary,
        toolchain_file=_pick(entry, defaults, "toolchain_file"),
        cmake_options=list(defaults.cmake_options) + list(entry.cmake_options),
        additional_defines=list(_pick(entry, defaults, "additional_defines", [])),
    )

    apply_overrides(config)
    return config


def resolve_configs(request: BuildRequest, config_file: Optional[ConfigFile] = None,
                    host: Optional[HostEnvironment] = None) -> List[BuildConfiguration]:
    """Resolve the configurations selected by ``request.configs``.

    With no selector, one configuration for the host is returned. Otherwise
    each token selects a named entry by name, a group of entries
    (``named-all``, ``named-os``, ``named-os-dev``), or is parsed as a
    built-in selector. Named entries come first, in file order, followed by
    built-in selectors in the order given. Built-in selectors are validated
    before anything is resolved.
    """
    config_file = config_file or ConfigFile()
    host = host or HostEnvironment.current()
    tokens = split_config_tokens(request.configs)

    if not tokens:
        return [get_build_config(request, PartialConfiguration(), config_file, host)]

    selected: List[PartialConfiguration] = []
    matched_names = set()
    defaults = config_file.defaults
    for entry in config_file.configurations:
        entry_os = _pick(entry, defaults, "os", host.os)
        entry_dev = bool(_pick(entry, defaults, "dev", False))
        if (
            entry.name in tokens
            or NAMED_ALL in tokens
            or (NAMED_OS in tokens and entry_os == host.os)
            or (NAMED_OS_DEV in tokens and entry_os == host.os and entry_dev)
        ):
            selected.append(entry)
            if entry.name:
                matched_names.add(entry.name)

    builtins = [
        parse_builtin_config(token)
        for token in tokens
        if token not in matched_names and token not in NAMED_SELECTORS
    ]

    configs = [get_build_config(request, entry, config_file, host) for entry in selected + builtins]
    if not configs:
        logger.warning("No configuration matched %s", ", ".join(tokens))
    return configs
