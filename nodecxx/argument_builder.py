"""CMake command lines for one resolved configuration."""

import logging
import os
from pathlib import Path
from typing import List, Optional, Tuple

from .config import BuildConfiguration
from .distribution import RuntimeDistribution
from .generator import NATIVE
from .msvc import EnvPatch, setup_msvc_env
from .node_api import locate_node_api_include
from .platforms import cmake_processor, cmake_system_name, host_arch, is_windows_host, osx_architecture

logger = logging.getLogger(__name__)


class ArgumentBuilder:
    def __init__(self, config: BuildConfiguration, dist: RuntimeDistribution):
        self.config = config
        self.dist = dist

    def configure_command(self) -> Tuple[str, List[str]]:
        """``cmake <packageDir> --no-warn-unused-cli -D... [-G <generator> ...]``"""
        args = [str(self.config.package_directory), "--no-warn-unused-cli"]
        args += [f"-D{name}={value}" for name, value in self.build_defines()]
        if self.config.generator_to_use and self.config.generator_to_use != NATIVE:
            args += ["-G", self.config.generator_to_use]
        if self.config.generator_flags:
            args += list(self.config.generator_flags)
        return self.config.cmake_to_use, args

    def build_command(self, staging_dir: Path) -> Tuple[str, List[str]]:
        return self.config.cmake_to_use, [
            "--build", str(staging_dir),
            "--config", self.config.build_type.value,
            "--parallel",
        ]

    def include_dirs(self) -> List[str]:
        includes = [str(p) for p in self.dist.include_dirs()]
        node_api = locate_node_api_include(self.config.package_directory, self.config.node_api)
        if node_api is not None:
            includes.append(str(node_api))
        return includes

    def build_defines(self) -> List[Tuple[str, str]]:
        config = self.config
        defines: List[Tuple[str, str]] = [("CMAKE_BUILD_TYPE", config.build_type.value)]

        if config.toolchain_file:
            defines.append(("CMAKE_TOOLCHAIN_FILE", os.path.abspath(config.toolchain_file)))

        defines.append(("CMAKE_JS_INC", ";".join(self.include_dirs())))

        libs = self.dist.win_libs()
        if libs:
            defines.append(("CMAKE_JS_LIB", ";".join(str(lib) for lib in libs)))

        defines += [
            ("NODE_RUNTIME", config.runtime),
            ("NODE_RUNTIMEVERSION", config.runtime_version),
            ("NODE_ARCH", config.arch),
            ("NODE_PLATFORM", config.os),
            ("NODE_ABI_VERSION", str(config.abi if config.abi is not None else "")),
            ("NODE_LIBC", config.libc or ""),
        ]

        if config.additional_defines:
            defines.append(("CMAKE_JS_DEFINES", ";".join(config.additional_defines)))

        if config.cross:
            defines.append(("CMAKE_SYSTEM_NAME", cmake_system_name(config.os)))
            defines.append(("CMAKE_SYSTEM_PROCESSOR", cmake_processor(config.arch)))
            if config.os == "darwin":
                defines.append(("CMAKE_OSX_ARCHITECTURES", osx_architecture(config.arch)))

        if config.os == "win32":
            defines.append(("CMAKE_SHARED_LINKER_FLAGS", "/DELAYLOAD:NODE.EXE"))

        defines += [(option.name, option.value) for option in config.cmake_options]
        return defines

    def environment_patch(self, vs_version: Optional[str] = None) -> EnvPatch:
        """Compiler environment for Windows builds that target another architecture."""
        config = self.config
        if not is_windows_host() or config.os != "win32" or config.arch == host_arch():
            return {}
        logger.debug("Cross-compiling for %s, loading the MSVC environment", config.arch)
        return setup_msvc_env(config.arch, vs_version)
