"""Installation state classifier — which reconciliation path a target directory needs.

Classification is a pure function of what is on disk; nothing is cached,
since the directory may change between invocations.

    no directory / no markers          -> clean
    .ai-squad-core/install-manifest    -> existing_managed
    legacy marker directory            -> existing_legacy
    .ai-squad-core without a manifest  -> existing_unmanaged
    unrelated files, no markers        -> clean (non_empty)

Expansion packs are detected independently of the overall state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from ai_squad.config import CORE_MARKER, LEGACY_MARKER, MANIFEST_FILE
from ai_squad.install.manifest import Manifest, ManifestStore
from ai_squad.resolve.source_store import PACK_CONFIG_FILE
from ai_squad.utils.file_scanner import ProjectScanner

logger = logging.getLogger(__name__)

_NOT_PACKS = {".git", CORE_MARKER}


class StateKind(Enum):
    CLEAN = "clean"
    EXISTING_MANAGED = "existing_managed"
    EXISTING_LEGACY = "existing_legacy"
    EXISTING_UNMANAGED = "existing_unmanaged"


@dataclass
class InstalledPack:
    """An expansion pack found in the target directory."""

    id: str
    path: Path
    has_manifest: bool = False
    manifest: Manifest | None = None


@dataclass
class InstallationState:
    """Classified state of a target directory."""

    kind: StateKind
    install_dir: Path
    manifest: Manifest | None = None
    non_empty: bool = False
    expansion_packs: dict[str, InstalledPack] = field(default_factory=dict)
    diagnostics: list[str] = field(default_factory=list)

    @property
    def is_clean(self) -> bool:
        return self.kind == StateKind.CLEAN


def classify_installation(install_dir: str | Path,
                          scanner: ProjectScanner | None = None,
                          core_marker: str = CORE_MARKER,
                          legacy_marker: str = LEGACY_MARKER,
                          manifest_file: str = MANIFEST_FILE) -> InstallationState:
    """Inspect *install_dir* and decide which reconciliation path applies."""
    scanner = scanner or ProjectScanner()
    root = Path(install_dir)
    state = InstallationState(kind=StateKind.CLEAN, install_dir=root)

    if not scanner.exists(root):
        return state

    state.expansion_packs = detect_expansion_packs(root, scanner, core_marker, manifest_file)

    core_dir = root / core_marker
    manifest_path = core_dir / manifest_file
    if scanner.exists(manifest_path):
        lookup = ManifestStore(root, core_marker, manifest_file).read()
        if lookup.found:
            state.kind = StateKind.EXISTING_MANAGED
            state.manifest = lookup.manifest
            return state
        # An unreadable manifest means the install is not managed any more
        state.diagnostics.append(f"{manifest_path}: {lookup.diagnostic}")
        state.kind = StateKind.EXISTING_UNMANAGED
        return state

    if scanner.is_dir(root / legacy_marker):
        state.kind = StateKind.EXISTING_LEGACY
        return state

    if scanner.is_dir(core_dir):
        state.kind = StateKind.EXISTING_UNMANAGED
        return state

    state.non_empty = scanner.has_files(root)
    return state


def detect_expansion_packs(install_dir: Path, scanner: ProjectScanner,
                           core_marker: str = CORE_MARKER,
                           manifest_file: str = MANIFEST_FILE) -> dict[str, InstalledPack]:
    """Find hidden directories holding a pack manifest or a pack config file."""
    packs: dict[str, InstalledPack] = {}
    skip = _NOT_PACKS | {core_marker}

    for name in scanner.hidden_dirs(install_dir):
        if name in skip:
            continue
        pack_id = name[1:]
        folder = install_dir / name

        if scanner.exists(folder / manifest_file):
            lookup = ManifestStore(install_dir, name, manifest_file).read()
            packs[pack_id] = InstalledPack(
                id=pack_id, path=folder, has_manifest=lookup.found, manifest=lookup.manifest
            )
        elif scanner.exists(folder / PACK_CONFIG_FILE):
            packs[pack_id] = InstalledPack(id=pack_id, path=folder)

    return packs


def find_installation(start: str | Path, core_marker: str = CORE_MARKER,
                      manifest_file: str = MANIFEST_FILE) -> Path | None:
    """Walk from *start* up to the filesystem root looking for a managed install.

    Returns the project directory (the parent of the core marker), or None.
    """
    current = Path(start).resolve()
    if current.name == core_marker and (current / manifest_file).is_file():
        return current.parent

    for directory in (current, *current.parents):
        if (directory / core_marker / manifest_file).is_file():
            return directory
    return None
