"""Version comparison for installed vs. available content."""

from __future__ import annotations

import re

_LEADING_INT_RE = re.compile(r"^\s*v?(\d+)")


def _components(version: str) -> list[int]:
    parts = []
    for raw in str(version or "").split(".")[:3]:
        match = _LEADING_INT_RE.match(raw)
        parts.append(int(match.group(1)) if match else 0)
    while len(parts) < 3:
        parts.append(0)
    return parts


def compare_versions(left: str, right: str) -> int:
    """Compare two ``major.minor.patch`` strings.

    Missing or non-numeric components count as zero. Returns a negative
    number, zero, or a positive number like ``cmp``.
    """
    a = _components(left)
    b = _components(right)
    for x, y in zip(a, b):
        if x != y:
            return -1 if x < y else 1
    return 0
