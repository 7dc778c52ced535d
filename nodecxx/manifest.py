"""
Build manifest

Each target directory holds a ``manifest.json`` mapping the JSON text of a
built configuration to the path of its artifact, relative to the target
directory. Builds only ever add or replace single entries.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from .config import JSON_KEYS, BuildConfiguration
from .errors import ConfigurationError, ManifestError
from .util import retry

logger = logging.getLogger(__name__)

MANIFEST_FILE_NAME = "manifest.json"

# Fields rewritten relative to the target directory when they lie inside it
PATH_FIELDS = ("package_directory", "target_directory", "staging_directory", "toolchain_file")


def _relativize(value: str, root: str) -> str:
    if value == root or value.startswith(root.rstrip(os.sep) + os.sep):
        return os.path.relpath(value, root)
    return value


def serialize_config(config: BuildConfiguration, root: Union[str, Path]) -> str:
    """Canonical manifest key for ``config``, with paths under ``root`` made relative."""
    root = os.path.abspath(str(root))
    data = config.to_dict()
    for name in PATH_FIELDS:
        json_key = JSON_KEYS[name]
        if json_key in data:
            data[json_key] = _relativize(data[json_key], root)
    return json.dumps(data, separators=(",", ":"))


def parse_config_key(key: str, root: Optional[Union[str, Path]] = None) -> BuildConfiguration:
    """Inverse of serialize_config; relative paths are resolved against ``root`` when given."""
    try:
        data = json.loads(key)
    except json.JSONDecodeError as e:
        raise ManifestError(f"Invalid manifest key: {e}") from e
    if not isinstance(data, dict):
        raise ManifestError(f"Invalid manifest key: expected an object, got {type(data).__name__}")
    try:
        config = BuildConfiguration.from_dict(data)
    except ConfigurationError as e:
        raise ManifestError(f"Invalid manifest key: {e}") from e
    if root is not None:
        root = os.path.abspath(str(root))
        for name in PATH_FIELDS:
            value = getattr(config, name)
            if value is not None and not os.path.isabs(value):
                setattr(config, name, os.path.normpath(os.path.join(root, value)))
    return config


class Manifest:
    """The manifest.json of one target directory."""

    def __init__(self, target_directory: Union[str, Path], entries: Optional[Dict[str, str]] = None):
        self.target_directory = Path(target_directory)
        self.entries: Dict[str, str] = dict(entries or {})

    @property
    def path(self) -> Path:
        return self.target_directory / MANIFEST_FILE_NAME

    @classmethod
    def read(cls, target_directory: Union[str, Path]) -> "Manifest":
        path = Path(target_directory) / MANIFEST_FILE_NAME
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError as e:
            raise ManifestError(f"Manifest not found: {path}") from e
        except (OSError, json.JSONDecodeError) as e:
            raise ManifestError(f"Failed to read manifest {path}: {e}") from e
        if not isinstance(data, dict) or not all(isinstance(v, str) for v in data.values()):
            raise ManifestError(f"Manifest {path} is not a JSON object of string paths")
        return cls(target_directory, data)

    def write(self) -> None:
        self.target_directory.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(self.entries, f, indent=2)
            f.write("\n")

    def add(self, config: BuildConfiguration, artifact_path: Union[str, Path]) -> str:
        """Upsert the entry for ``config`` and rewrite the file; returns the key.

        The file is re-read first so entries added by earlier builds survive.
        """
        key = serialize_config(config, self.target_directory)
        value = os.path.relpath(os.path.abspath(str(artifact_path)), os.path.abspath(str(self.target_directory)))

        def update():
            self.entries = Manifest.read(self.target_directory).entries if self.path.exists() else {}
            self.entries[key] = value
            self.write()

        retry(update)
        logger.debug("Recorded %s in %s", value, self.path)
        return key

    def configs(self) -> List[Tuple[Dict[str, Any], str]]:
        """Parsed ``(configuration dict, absolute artifact path)`` pairs, in file order.

        Keys that are not JSON objects are logged and skipped.
        """
        result = []
        for key, value in self.entries.items():
            try:
                data = json.loads(key)
            except json.JSONDecodeError as e:
                logger.warning("Skipping invalid manifest key in %s: %s", self.path, e)
                continue
            if not isinstance(data, dict):
                logger.warning("Skipping manifest key that is not an object in %s: %s", self.path, key)
                continue
            result.append((data, str(self.target_directory / value)))
        return result

    def find_compatible_configs(self, platform) -> List[Tuple[Dict[str, Any], str]]:
        """Entries built for ``platform``'s (os, arch, libc), highest abi first.

        Raises ManifestError listing every entry when none is compatible.
        """
        entries = self.configs()
        compatible = [
            (data, path) for data, path in entries
            if data.get("os") == platform.os
            and data.get("arch") == platform.arch
            and data.get("libc") == platform.libc
        ]
        if not compatible:
            candidates = "\n".join(f"  {path}: {json.dumps(data)}" for data, path in entries) or "  (none)"
            raise ManifestError(
                f"No compatible addon found for {platform.os} {platform.arch} {platform.libc}. "
                f"Candidates:\n{candidates}"
            )
        # sorted() is stable, so equal abi values keep manifest order
        return sorted(compatible, key=lambda item: item[0].get("abi") or 0, reverse=True)
