#!/usr/bin/env python3
"""Cache management utilities for nodecxx."""

import os
import shutil
from pathlib import Path
from typing import Optional

CACHE_DIR_ENV = "NODECXX_CACHE_DIR"


def get_nodecxx_cache_dir(create: bool = True) -> Path:
    """Get the global nodecxx cache directory (~/.nodecxx, or $NODECXX_CACHE_DIR)."""
    override = os.environ.get(CACHE_DIR_ENV)
    cache_dir = Path(override) if override else Path.home() / ".nodecxx"
    if create:
        cache_dir.mkdir(parents=True, exist_ok=True)
    return cache_dir


def get_distribution_cache_path(runtime: str, target_os: str, arch: str, version: str,
                                cache_root: Optional[Path] = None) -> Path:
    """Path of the provisioned headers and libraries for one runtime target."""
    root = cache_root if cache_root is not None else get_nodecxx_cache_dir(create=False)
    return root / runtime / target_os / arch / f"v{version}"


def _dir_size(path: Path) -> int:
    return sum(f.stat().st_size for f in path.rglob("*") if f.is_file())


def cache_info(cache_root: Optional[Path] = None):
    """Show information about the nodecxx cache"""
    cache_dir = cache_root if cache_root is not None else get_nodecxx_cache_dir(create=False)
    print(f"nodecxx cache directory: {cache_dir}")

    if not cache_dir.exists():
        print("Cache directory does not exist yet.")
        return

    versions = sorted(p for p in cache_dir.glob("*/*/*/v*") if p.is_dir())
    if not versions:
        print("\nCache is empty.")
        return

    print("\nProvisioned runtimes:")
    for item in versions:
        runtime, target_os, arch, version = item.relative_to(cache_dir).parts
        try:
            size_mb = _dir_size(item) / (1024 * 1024)
            print(f"  {runtime} {version[1:]} ({target_os}-{arch})  ({size_mb:.1f} MB)")
        except OSError:
            print(f"  {runtime} {version[1:]} ({target_os}-{arch})  (size unknown)")


def cache_clean(cache_root: Optional[Path] = None, runtime: Optional[str] = None) -> bool:
    """Clean the nodecxx cache, or only one runtime's entries"""
    cache_dir = cache_root if cache_root is not None else get_nodecxx_cache_dir(create=False)
    target = cache_dir / runtime if runtime else cache_dir
    if not target.exists():
        print("Cache directory does not exist." if not runtime else f"No cached {runtime} distributions.")
        return False
    try:
        shutil.rmtree(target)
    except OSError as e:
        print(f"Error clearing cache: {e}")
        return False
    print(f"Cache cleared: {target}")
    return True
