"""
nodecxx CLI
A cross-platform CMake build system for native Node.js and Electron addons

Usage: nodecxx build [--configs win32-x64-release named-os ...] [--package-directory DIR]

The build command will:
- resolve the requested configurations from nodecxx.toml and the command line
- download and cache the runtime headers (and Windows import libraries)
- configure and build the addon with CMake for each configuration
- copy each addon into the target directory and record it in manifest.json
"""
import argparse
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from . import __version__
from .build import build
from .cache import cache_clean, cache_info
from .config import BuildRequest, create_example_config, load_config, validate_config
from .errors import NodecxxError
from .logger import LEVELS, configure_logging
from .util import is_truthy

logger = logging.getLogger(__name__)

# Modes accepted by older releases, mapped to their --configs equivalent
LEGACY_MODES = {
    "all": ["named-all"],
    "nativeonly": ["release"],
    "osonly": ["named-os"],
    "dev-os-only": ["named-os-dev"],
}


def translate_legacy_args(argv: List[str]) -> List[str]:
    """Rewrite ``nodecxx all`` style invocations into ``nodecxx build --configs ...``."""
    if not argv:
        return argv
    mode = argv[0]
    if mode in LEGACY_MODES:
        configs = LEGACY_MODES[mode]
        logger.warning("'%s' is deprecated, use 'build --configs %s' instead", mode, " ".join(configs))
        return ["build", "--configs", *configs, *argv[1:]]
    if mode == "named-configs":
        names = []
        rest = argv[1:]
        while rest and not rest[0].startswith("-"):
            names.append(rest.pop(0))
        logger.warning("'named-configs' is deprecated, use 'build --configs %s' instead", " ".join(names))
        return ["build", "--configs", *names, *rest]
    return argv


def _default_log_level() -> str:
    return "debug" if is_truthy(os.environ.get("NODECXXDEBUG")) else "info"


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--logger", choices=list(LEVELS), default=argparse.SUPPRESS,
                        help="log level (default: info, or debug when NODECXXDEBUG=1)")

    parser = argparse.ArgumentParser(
        prog="nodecxx",
        description="A cross-platform CMake build system for native Node.js and Electron addons",
        parents=[common],
    )
    parser.add_argument("--version", action="version", version=f"nodecxx {__version__}")
    sub = parser.add_subparsers(dest="command")

    b = sub.add_parser("build", aliases=["b"], parents=[common],
                       help="build the addon for one or more configurations")
    b.add_argument("--configs", nargs="*", action="extend", default=[], metavar="CONFIG",
                   help="configuration names, named-all, named-os, named-os-dev, or selectors "
                        "like linux-x64-release (comma separated or repeated)")
    b.add_argument("--project-name", default=None, help="name of the built addon (default: addon)")
    b.add_argument("--addon-subdirectory", default=None,
                   help="subdirectory of each configuration's output directory to put the addon in")
    b.add_argument("--package-directory", default=None,
                   help="directory containing CMakeLists.txt (default: current directory)")
    b.add_argument("--target-directory", default=None, help="output directory (default: build)")
    b.add_argument("--staging-directory", default=None, help="CMake build directory (default: staging)")
    b.add_argument("--config", default=None, help="path to nodecxx.toml configuration file")
    b.add_argument("--download-timeout", type=float, default=None,
                   help="timeout in seconds for each runtime download")

    i = sub.add_parser("init", aliases=["new"], parents=[common],
                       help="create a new nodecxx.toml configuration file")
    i.add_argument("-o", "--output", default=None, help="output path (default: nodecxx.toml)")
    i.add_argument("-f", "--force", action="store_true", help="overwrite existing file")

    c = sub.add_parser("cache", parents=[common], help="manage the runtime header cache (~/.nodecxx)")
    c.add_argument("action", choices=["info", "clean"])
    c.add_argument("--runtime", default=None, help="only clean this runtime (node, electron, iojs)")

    cl = sub.add_parser("clean", parents=[common], help="clean the runtime header cache")
    cl.add_argument("--cache", action="store_true", help="clear entire cache")

    sub.add_parser("help", parents=[common], help="show this help message")
    return parser


def cmd_build(args) -> int:
    config_file = load_config(args.config)
    for warning in validate_config(config_file):
        logger.warning("%s", warning)

    request = BuildRequest(
        configs=list(args.configs),
        project_name=args.project_name,
        addon_subdirectory=args.addon_subdirectory,
        package_directory=args.package_directory,
        target_directory=args.target_directory,
        staging_directory=args.staging_directory,
        download_timeout=args.download_timeout,
    )
    configs = build(request, config_file)
    logger.info("Built %d configuration(s)", len(configs))
    return 0


def cmd_init(args) -> int:
    output_path = Path(args.output) if args.output else Path.cwd() / "nodecxx.toml"

    if output_path.exists() and not args.force:
        print(f"Configuration file already exists: {output_path}")
        print("Use --force to overwrite or specify a different path with --output")
        return 1

    created_path = create_example_config(output_path)
    print(f"[OK] Created configuration file: {created_path}")
    print("\nNext steps:")
    print("1. Edit the configuration file to match your project")
    print("2. Add a CMakeLists.txt producing a shared library named after project_name")
    print("3. Build your addon with: nodecxx build")
    return 0


def cmd_cache(args) -> int:
    if args.action == "info":
        cache_info()
    else:
        cache_clean(runtime=args.runtime)
    return 0


def cmd_clean(args) -> int:
    if args.cache:
        cache_clean()
        return 0
    print("Clean options:")
    print("  --cache      Clear entire cache")
    print("\nUsage: nodecxx clean --cache")
    return 0


def _describe(error: BaseException) -> str:
    messages = [str(error)]
    cause = error.__cause__
    while cause is not None:
        messages.append(f"caused by: {cause}")
        cause = cause.__cause__
    return "\n  ".join(messages)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for nodecxx command with subcommands"""
    argv = list(sys.argv[1:] if argv is None else argv)
    configure_logging(_default_log_level())
    argv = translate_legacy_args(argv)

    parser = build_parser()
    args = parser.parse_args(argv)
    level = getattr(args, "logger", None)
    if level:
        configure_logging(level)

    if args.command is None or args.command == "help":
        parser.print_help()
        return 0

    try:
        if args.command in ("build", "b"):
            return cmd_build(args)
        if args.command in ("init", "new"):
            return cmd_init(args)
        if args.command == "cache":
            return cmd_cache(args)
        if args.command == "clean":
            return cmd_clean(args)
    except (NodecxxError, FileNotFoundError) as e:
        logger.error("%s", _describe(e))
        return 1
    except KeyboardInterrupt:
        logger.error("Build interrupted by user")
        return 1

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
