from __future__ import annotations

import re
from enum import IntEnum
from typing import Optional, Tuple

from packaging.version import InvalidVersion, Version


class VersionCompare(IntEnum):
    COMPARE_ERROR = -4
    SOURCE_INVALID = -3
    SOURCE_EMPTY = -2
    SOURCE_GREATER = -1
    EQUAL = 0
    TARGET_GREATER = 1
    TARGET_EMPTY = 2
    TARGET_INVALID = 3


# Outcomes meaning "source satisfies the minimum given as target".
SATISFIED = frozenset({VersionCompare.TARGET_EMPTY, VersionCompare.EQUAL, VersionCompare.SOURCE_GREATER})

# pre-release ("-rc1") and build metadata ("+git.abc") never take part in a comparison
_SUFFIX = re.compile(r"[-+]")


def pure_semver(version: str) -> str:
    """
    Keep only the major.minor.patch head of a version string.

    "1.2.3-rc1+b5" -> "1.2.3", "1.5.0+git.abc" -> "1.5.0", "v2.0.1.7" -> "v2.0.1"
    """
    head = _SUFFIX.split(str(version or ""), maxsplit=1)[0]
    parts = head.split(".")
    return ".".join(parts[:3]).strip(" ")


def _parse(version: str) -> Optional[Tuple[int, ...]]:
    try:
        v = Version(version)
    except InvalidVersion:
        return None
    # "1.2" and "1.2.0" are the same release
    return (v.release + (0, 0, 0))[:3]


def compare_versions(source: str, target: str) -> VersionCompare:
    """
    Compare two versions on major, minor and patch only.

    The target is checked first: an empty target means "no minimum" and wins
    over any problem with the source.
    """
    target_pure = pure_semver(target)
    if not target_pure:
        return VersionCompare.TARGET_EMPTY
    tv = _parse(target_pure)
    if tv is None:
        return VersionCompare.TARGET_INVALID

    source_pure = pure_semver(source)
    if not source_pure:
        return VersionCompare.SOURCE_EMPTY
    sv = _parse(source_pure)
    if sv is None:
        return VersionCompare.SOURCE_INVALID

    if sv > tv:
        return VersionCompare.SOURCE_GREATER
    if sv == tv:
        return VersionCompare.EQUAL
    return VersionCompare.TARGET_GREATER


def is_satisfied(source: str, minimum: str) -> bool:
    return compare_versions(source, minimum) in SATISFIED
