"""Rule-based extra compiler defines for specific runtime targets.

Some runtimes are compiled with V8 flags that change the object layout seen
by addons. An addon built for such a runtime must be compiled with the same
defines, otherwise it crashes at load time. The rules below describe which
targets need which defines.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence, Tuple, Union

from semantic_version import NpmSpec, Version

logger = logging.getLogger(__name__)

Selector = Union[None, str, frozenset]


@dataclass(frozen=True)
class OverrideRule:
    """A static rule: when a configuration matches, append ``add_defines``.

    ``os``, ``arch`` and ``runtime`` are either None (any value), a single
    value or a frozenset of accepted values. ``runtime_version`` holds npm
    style ranges; any matching range is enough. Pre-release versions are
    matched against their release, so ``9.0.0-beta.3`` satisfies ``>=9``.
    """
    add_defines: Tuple[str, ...]
    os: Selector = None
    arch: Selector = None
    runtime: Selector = None
    runtime_version: Tuple[str, ...] = field(default_factory=tuple)


def _selector_matches(selector: Selector, value: Optional[str]) -> bool:
    if selector is None:
        return True
    if isinstance(selector, str):
        return selector == value
    return value in selector


def version_satisfies(version: str, ranges: Iterable[str]) -> bool:
    """True if ``version`` satisfies any of the npm ranges, pre-releases included."""
    try:
        parsed = Version.coerce(version)
    except ValueError:
        logger.warning("Cannot parse runtime version %r for override matching", version)
        return False
    release = parsed.truncate()
    for spec in ranges:
        npm = NpmSpec(spec)
        if npm.match(parsed) or npm.match(release):
            return True
    return False


def matches(config, rule: OverrideRule) -> bool:
    if not _selector_matches(rule.os, config.os):
        return False
    if not _selector_matches(rule.arch, config.arch):
        return False
    if not _selector_matches(rule.runtime, config.runtime):
        return False
    if rule.runtime_version and not version_satisfies(config.runtime_version, rule.runtime_version):
        return False
    return True


KNOWN_OVERRIDES: Tuple[OverrideRule, ...] = (
    OverrideRule(
        runtime="electron",
        arch=frozenset({"x64", "arm64"}),
        runtime_version=(">=9",),
        add_defines=("V8_COMPRESS_POINTERS",),
    ),
    OverrideRule(
        runtime="electron",
        runtime_version=(">=9",),
        add_defines=("V8_31BIT_SMIS_ON_64BIT_ARCH",),
    ),
    OverrideRule(
        runtime="electron",
        runtime_version=(">=11",),
        add_defines=("V8_REVERSE_JSARGS",),
    ),
    OverrideRule(
        runtime="electron",
        arch=frozenset({"x64", "arm64"}),
        runtime_version=(">=16",),
        add_defines=("V8_COMPRESS_POINTERS_IN_ISOLATE_CAGE",),
    ),
)


def apply_overrides(config, rules: Sequence[OverrideRule] = KNOWN_OVERRIDES) -> int:
    """Append the defines of every matching rule to ``config.additional_defines``.

    Returns the number of rules applied. Defines are appended as-is, so
    applying the rules twice yields each define twice.
    """
    applied = 0
    for rule in rules:
        if matches(config, rule):
            config.additional_defines.extend(rule.add_defines)
            applied += 1
    if applied:
        logger.debug("Applied %d override rule(s): %s", applied, ", ".join(config.additional_defines))
    return applied
