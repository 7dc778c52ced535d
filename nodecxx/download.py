"""HTTP downloads, checksums and archive extraction."""

import hashlib
import logging
import os
import shutil
import tarfile
import tempfile
import urllib.error
import urllib.request
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Callable, List, Optional

from .errors import ProvisioningError
from .util import retry

logger = logging.getLogger(__name__)

DOWNLOAD_RETRIES = 3
DOWNLOAD_RETRY_DELAY = 1.0
_CHUNK = 1024 * 1024


@dataclass(frozen=True)
class HashSum:
    """One line of a SHASUMS256.txt listing"""
    path: str
    sum: str


def parse_hash_sums(text: str) -> List[HashSum]:
    """Parse ``<sha256>  <path>`` lines, skipping anything malformed."""
    sums = []
    for line in text.splitlines():
        parts = line.split()
        if len(parts) >= 2:
            sums.append(HashSum(path=parts[1], sum=parts[0].lower()))
    return sums


def find_hash_sum(sums: List[HashSum], path: str) -> Optional[str]:
    for entry in sums:
        if entry.path == path:
            return entry.sum
    return None


def sha256_file(path: Path) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(_CHUNK), b""):
            digest.update(chunk)
    return digest.hexdigest()


def url_join(base: str, *parts: str) -> str:
    url = base.rstrip("/")
    for part in parts:
        part = part.strip("/")
        if part:
            url += "/" + part
    return url


def _open(url: str, timeout: Optional[float]):
    request = urllib.request.Request(url, headers={"User-Agent": "nodecxx"})
    if timeout is None:
        return urllib.request.urlopen(request)
    return urllib.request.urlopen(request, timeout=timeout)


def download_to_string(url: str, timeout: Optional[float] = None) -> str:
    """GET ``url`` and decode the body as UTF-8."""
    def fetch() -> str:
        with _open(url, timeout) as resp:
            return resp.read().decode("utf-8")

    logger.debug("Downloading %s", url)
    try:
        return retry(fetch, DOWNLOAD_RETRIES, DOWNLOAD_RETRY_DELAY)
    except (urllib.error.URLError, OSError, UnicodeDecodeError) as e:
        raise ProvisioningError(f"Failed to download {url}: {e}") from e


def download_file(url: str, dest: Path, timeout: Optional[float] = None) -> str:
    """Download ``url`` to ``dest`` and return the SHA-256 of the bytes written."""
    def fetch() -> str:
        digest = hashlib.sha256()
        with _open(url, timeout) as resp, open(dest, "wb") as out:
            for chunk in iter(lambda: resp.read(_CHUNK), b""):
                digest.update(chunk)
                out.write(chunk)
        return digest.hexdigest()

    dest.parent.mkdir(parents=True, exist_ok=True)
    logger.info("Downloading %s", url)
    try:
        return retry(fetch, DOWNLOAD_RETRIES, DOWNLOAD_RETRY_DELAY)
    except (urllib.error.URLError, OSError) as e:
        dest.unlink(missing_ok=True)
        raise ProvisioningError(f"Failed to download {url}: {e}") from e


def download_to_temp(url: str, suffix: str = "", timeout: Optional[float] = None):
    """Download into a fresh temporary file; returns ``(path, sha256)``.

    The caller owns the file and must remove it.
    """
    fd, name = tempfile.mkstemp(prefix="nodecxx-", suffix=suffix)
    os.close(fd)
    path = Path(name)
    try:
        return path, download_file(url, path, timeout)
    except BaseException:
        path.unlink(missing_ok=True)
        raise


def _stripped_name(name: str, strip: int) -> Optional[PurePosixPath]:
    parts = PurePosixPath(name).parts
    if len(parts) <= strip:
        return None
    rel = PurePosixPath(*parts[strip:])
    if rel.is_absolute() or ".." in rel.parts:
        raise ProvisioningError(f"Refusing to extract unsafe archive member: {name}")
    return rel


def extract_tgz(archive: Path, dest: Path, strip: int = 0,
                member_filter: Optional[Callable[[str], bool]] = None) -> int:
    """Extract regular files from a gzip'd tarball into ``dest``.

    The first ``strip`` path components of every member are dropped, and only
    members whose stripped path passes ``member_filter`` are written. Returns
    the number of files extracted.
    """
    count = 0
    try:
        with tarfile.open(archive, "r:gz") as tar:
            for member in tar:
                if not member.isfile():
                    continue
                rel = _stripped_name(member.name, strip)
                if rel is None:
                    continue
                if member_filter is not None and not member_filter(str(rel)):
                    continue
                target = dest.joinpath(*rel.parts)
                target.parent.mkdir(parents=True, exist_ok=True)
                src = tar.extractfile(member)
                if src is None:
                    continue
                with src, open(target, "wb") as out:
                    shutil.copyfileobj(src, out)
                count += 1
    except (tarfile.TarError, OSError) as e:
        raise ProvisioningError(f"Failed to extract {archive}: {e}") from e
    logger.debug("Extracted %d file(s) from %s into %s", count, archive.name, dest)
    return count
