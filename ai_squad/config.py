"""Installer settings — well-known names and the location of the source store."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

CORE_MARKER = ".ai-squad-core"
MANIFEST_FILE = "install-manifest.yaml"
LEGACY_MARKER = "bmad-agent"
ROOT_TOKEN = "{root}"

PRIMARY_STORE = "ai-squad-core"
SHARED_STORE = "common"
EXPANSION_PACKS_DIR = "expansion-packs"

COORDINATOR_AGENT = "ai-squad-orchestrator"
META_AGENT = "ai-squad-master"

SOURCE_ENV_VAR = "AI_SQUAD_SOURCE"


@dataclass
class InstallerSettings:
    """Where the installable content lives and what the installed markers are called."""

    source_root: Path = field(default_factory=lambda: _default_source_root())
    core_marker: str = CORE_MARKER
    manifest_file: str = MANIFEST_FILE
    legacy_marker: str = LEGACY_MARKER
    root_token: str = ROOT_TOKEN
    coordinator_agent: str = COORDINATOR_AGENT
    meta_agent: str = META_AGENT

    def __post_init__(self):
        self.source_root = Path(self.source_root)

    @property
    def primary_dir(self) -> Path:
        return self.source_root / PRIMARY_STORE

    @property
    def shared_dir(self) -> Path:
        return self.source_root / SHARED_STORE

    @property
    def expansion_packs_dir(self) -> Path:
        return self.source_root / EXPANSION_PACKS_DIR

    @classmethod
    def from_env(cls, source_root: str | Path | None = None) -> InstallerSettings:
        """Build settings from an explicit source root, else ``AI_SQUAD_SOURCE``, else cwd."""
        if source_root:
            return cls(source_root=Path(source_root))
        return cls()


def _default_source_root() -> Path:
    return Path(os.environ.get(SOURCE_ENV_VAR, "") or Path.cwd())


def pack_marker(pack_id: str) -> str:
    """Marker directory name of an expansion pack (``.<packId>``)."""
    return f".{pack_id}"
