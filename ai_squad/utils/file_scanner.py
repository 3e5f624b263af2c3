"""File scanner — walk install roots and source stores.

Directory walking is kept behind :class:`ProjectScanner` so the state
classifier can be driven by a fake tree in tests.
"""

from __future__ import annotations

from pathlib import Path

# Directories never descended into when listing project files
SKIP_DIRS = {".git", "node_modules"}


def list_files(root: Path, skip_dirs: set[str] | None = None) -> list[str]:
    """Return every file under *root* as a sorted POSIX path relative to *root*.

    Missing roots yield an empty list.
    """
    skip = SKIP_DIRS if skip_dirs is None else skip_dirs
    if not root.is_dir():
        return []

    files = []
    for item in root.rglob("*"):
        rel = item.relative_to(root)
        if any(part in skip for part in rel.parts):
            continue
        if item.is_file():
            files.append(rel.as_posix())
    return sorted(files)


class ProjectScanner:
    """Read-only view of a target directory used by the state classifier."""

    def exists(self, path: Path) -> bool:
        return path.exists()

    def is_dir(self, path: Path) -> bool:
        return path.is_dir()

    def hidden_dirs(self, root: Path) -> list[str]:
        """Names of the dot-directories directly under *root*."""
        if not root.is_dir():
            return []
        return sorted(
            p.name for p in root.iterdir() if p.is_dir() and p.name.startswith(".")
        )

    def has_files(self, root: Path) -> bool:
        """True when *root* holds at least one file outside ``SKIP_DIRS``."""
        if not root.is_dir():
            return False
        for item in root.rglob("*"):
            rel = item.relative_to(root)
            if any(part in SKIP_DIRS for part in rel.parts):
                continue
            if item.is_file():
                return True
        return False
