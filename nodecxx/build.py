"""
Build driver

For every resolved configuration: provision the runtime headers, run CMake's
configure and build steps in a per-target staging directory, copy the addon
into the target directory and record it in the manifest. Configurations are
built one after the other and the first failure stops the run.
"""

import logging
import os
import shutil
from pathlib import Path
from typing import Callable, List, Mapping, Optional

from .argument_builder import ArgumentBuilder
from .config import BuildConfiguration, BuildRequest, ConfigFile, HostEnvironment, resolve_configs
from .distribution import RuntimeDistribution
from .errors import BuildError
from .generator import is_visual_studio
from .manifest import Manifest
from .platforms import ADDON_EXTENSION
from .util import retry, run_program

logger = logging.getLogger(__name__)

Runner = Callable[..., None]


def config_subdirectory(config: BuildConfiguration) -> Path:
    """``<os>/<arch>/<runtime>/<libc>-<abi>-<buildType>/<addonSubdirectory>``"""
    sub = Path(config.os, config.arch, config.runtime, f"{config.libc}-{config.abi}-{config.build_type.value}")
    if config.addon_subdirectory:
        sub = sub / config.addon_subdirectory
    return sub


def _reset_directory(path: Path) -> None:
    if path.exists():
        shutil.rmtree(path)
        logger.debug("Cleared %s", path)
    path.mkdir(parents=True, exist_ok=True)


def _summary(config: BuildConfiguration, staging_dir: Path, target_dir: Path) -> str:
    generator = config.generator_to_use
    if config.generator_flags:
        generator += " " + " ".join(config.generator_flags)
    lines = [
        "----------------------------------------------",
        config.name or config.label(),
        f"{config.os} {config.arch} {config.libc}{' (cross)' if config.cross else ''}",
        f"{config.runtime} {config.runtime_version} runtime with ABI {config.abi}",
        f"{generator} generator with build type {config.build_type.value}"
        + (f" and toolchain {config.toolchain_file}" if config.toolchain_file else ""),
    ]
    if config.cmake_options:
        lines.append(" ".join(f"{o.name}={o.value}" for o in config.cmake_options))
    lines += [
        f"Staging directory: {staging_dir}",
        f"Target directory: {target_dir}",
        "----------------------------------------------",
    ]
    return "\n".join(lines)


def build_config(config: BuildConfiguration, cache_root: Optional[Path] = None,
                 timeout: Optional[float] = None, env: Optional[Mapping[str, str]] = None,
                 runner: Runner = run_program) -> Path:
    """Provision, configure, build, copy and record one configuration.

    Returns the absolute path of the copied addon. The manifest is only
    updated once every earlier step succeeded.
    """
    package_dir = Path(config.package_directory).resolve()
    config.package_directory = str(package_dir)
    config.target_directory = str((package_dir / config.target_directory).resolve())
    config.staging_directory = str((package_dir / config.staging_directory).resolve())
    if config.toolchain_file:
        config.toolchain_file = str((package_dir / config.toolchain_file).resolve())

    logger.debug("Setting up staging directory %s", config.staging_directory)
    retry(lambda: _reset_directory(Path(config.staging_directory)))

    env = dict(os.environ if env is None else env)
    dist = RuntimeDistribution(config, cache_root=cache_root, timeout=timeout, env=env)
    dist.ensure_provisioned()
    dist.determine_abi()

    sub = config_subdirectory(config)
    staging_dir = Path(config.staging_directory) / sub
    target_dir = Path(config.target_directory) / sub

    builder = ArgumentBuilder(config, dist)
    configure_cmd, configure_args = builder.configure_command()
    build_cmd, build_args = builder.build_command(staging_dir)
    env.update(builder.environment_patch())

    logger.info("%s", _summary(config, staging_dir, target_dir))

    staging_dir.mkdir(parents=True, exist_ok=True)
    runner(configure_cmd, configure_args, cwd=staging_dir, env=env)
    runner(build_cmd, build_args, cwd=staging_dir, env=env)

    artifact_name = config.project_name + ADDON_EXTENSION
    if is_visual_studio(config.generator_to_use):
        source = staging_dir / config.build_type.value / artifact_name
    else:
        source = staging_dir / artifact_name
    if not source.is_file():
        raise BuildError(f"Build finished but {source} was not produced")

    target_dir.mkdir(parents=True, exist_ok=True)
    addon_path = target_dir / artifact_name
    logger.debug("Copying %s to %s", source, addon_path)
    retry(lambda: shutil.copy2(source, addon_path))

    Manifest(config.target_directory).add(config, addon_path)
    logger.info("Built %s", addon_path)
    return addon_path


def build(request: BuildRequest, config_file: Optional[ConfigFile] = None,
          host: Optional[HostEnvironment] = None, cache_root: Optional[Path] = None,
          runner: Runner = run_program) -> List[BuildConfiguration]:
    """Resolve and build every configuration selected by ``request``.

    Stops at the first failure; configurations built before it stay in the
    manifest.
    """
    host = host or HostEnvironment.current()
    configs = resolve_configs(request, config_file, host)
    for config in configs:
        logger.info("Building %s", config.name or config.label())
        try:
            build_config(config, cache_root=cache_root, timeout=request.download_timeout,
                         env=host.env, runner=runner)
        except OSError as e:
            raise BuildError(f"Error building {config.name or config.label()}: {e}") from e
    return configs
