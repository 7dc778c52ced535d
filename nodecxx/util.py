"""Small helpers shared across nodecxx: retries, environment lookups, process runs."""

import logging
import os
import subprocess
import time
from pathlib import Path
from typing import Callable, Mapping, Optional, Sequence, TypeVar, Union

from .errors import BuildError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def retry(fn: Callable[[], T], retries: int = 3, delay: float = 1.0) -> T:
    """Call ``fn`` until it succeeds, at most ``retries`` times.

    The delay between attempts is fixed. The last exception is re-raised.
    """
    if retries < 1:
        raise ValueError("retries must be >= 1")
    for attempt in range(1, retries + 1):
        try:
            return fn()
        except Exception as e:
            if attempt == retries:
                raise
            logger.debug("Attempt %d/%d failed: %s; retrying in %.1fs", attempt, retries, e, delay)
            time.sleep(delay)
    raise AssertionError("unreachable")


def get_env_var(name: str, env: Optional[Mapping[str, str]] = None) -> Optional[str]:
    """Return a non-empty environment value, trying the exact and upper-case names."""
    env = os.environ if env is None else env
    for key in (name, name.upper()):
        value = env.get(key)
        if value:
            return value
    return None


def is_truthy(value: Optional[str]) -> bool:
    return value is not None and value.strip().lower() in ("1", "true", "yes", "on")


def run_program(
    program: Union[str, Path],
    args: Sequence[str],
    cwd: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
) -> None:
    """Run a program, streaming its output, and raise BuildError on a non-zero exit."""
    cmd = [str(program)] + [str(a) for a in args]
    logger.info("$ %s", " ".join(cmd))
    try:
        result = subprocess.run(cmd, cwd=cwd, env=dict(env) if env is not None else None)
    except OSError as e:
        raise BuildError(f"Failed to start {program}: {e}") from e
    if result.returncode != 0:
        raise BuildError(f"Command failed with exit code {result.returncode}: {' '.join(cmd)}")
