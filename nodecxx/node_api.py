"""Locate the include directory of the runtime abstraction layer (node-addon-api, nan)."""

import logging
from pathlib import Path
from typing import Optional, Union

logger = logging.getLogger(__name__)


def header_name(package: str) -> str:
    return "napi.h" if package == "node-addon-api" else f"{package}.h"


def locate_node_api_include(project_root: Union[str, Path], node_api: str) -> Optional[Path]:
    """Directory to add to the include path for ``node_api``.

    ``node_api`` may already be a path. Otherwise ``node_modules/<node_api>``
    is searched from ``project_root`` upward for the package's main header.
    """
    if node_api and Path(node_api).exists():
        return Path(node_api).resolve()

    header = header_name(node_api)
    start = Path(project_root).resolve()
    for directory in [start] + list(start.parents):
        candidate = directory / "node_modules" / node_api
        if (candidate / header).is_file():
            logger.debug("Found package \"%s\" at path %s", node_api, candidate)
            return candidate

    logger.debug("Package \"%s\" not found above %s", node_api, start)
    return None
