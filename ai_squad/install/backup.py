"""Backups of user-modified files before they are overwritten."""

from __future__ import annotations

import shutil
from pathlib import Path


def next_backup_path(path: Path) -> Path:
    """First unused name among ``<file>.bak``, ``<file>.bak1``, ``<file>.bak2``, ..."""
    candidate = path.with_name(path.name + ".bak")
    counter = 1
    while candidate.exists():
        candidate = path.with_name(f"{path.name}.bak{counter}")
        counter += 1
    return candidate


def backup_file(path: str | Path) -> Path:
    """Copy *path* next to itself under a fresh backup name; existing backups are kept."""
    path = Path(path)
    target = next_backup_path(path)
    shutil.copy2(path, target)
    return target
