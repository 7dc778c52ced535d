"""
nodecxx - A cross-platform CMake build system for native Node.js and Electron addons

This package builds native addons for several operating systems, architectures
and runtimes from one CMake project, caches the runtime headers it needs, and
loads the right prebuilt addon for the running machine.
"""

__version__ = "0.1.0"

from .build import build, build_config
from .config import (
    BuildConfiguration,
    BuildRequest,
    ConfigFile,
    HostEnvironment,
    create_example_config,
    load_config,
    resolve_configs,
)
from .errors import (
    BuildError,
    ConfigurationError,
    LoadError,
    ManifestError,
    NodecxxError,
    ProvisioningError,
)
from .loader import CtypesLoader, NodeLoader, load_addon
from .logger import configure_logging, get_logger

__all__ = [
    "build",
    "build_config",
    "BuildConfiguration",
    "BuildRequest",
    "ConfigFile",
    "HostEnvironment",
    "create_example_config",
    "load_config",
    "resolve_configs",
    "load_addon",
    "NodeLoader",
    "CtypesLoader",
    "configure_logging",
    "get_logger",
    "NodecxxError",
    "ConfigurationError",
    "ProvisioningError",
    "ManifestError",
    "BuildError",
    "LoadError",
]
