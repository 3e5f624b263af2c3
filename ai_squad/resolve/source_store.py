"""Source store — the installable content an install is reconciled against.

Three roots live under the source directory: the primary store
(``ai-squad-core/``), the shared fallback store (``common/``) and the
expansion packs (``expansion-packs/<packId>/``).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

import yaml

from ai_squad.config import InstallerSettings
from ai_squad.utils.file_scanner import list_files

logger = logging.getLogger(__name__)

CORE_CONFIG_FILE = "core-config.yaml"
PACK_CONFIG_FILE = "config.yaml"

AGENTS_DIR = "agents"
TEAMS_DIR = "agent-teams"

# Dependency groups an agent header may declare, in resolution order
RESOURCE_TYPES = ("tasks", "templates", "checklists", "data", "utils", "workflows")


@dataclass
class ExpansionPackInfo:
    """An expansion pack available in the source store."""

    id: str
    name: str
    version: str
    description: str = ""
    short_title: str = ""
    author: str = "Unknown"
    path: Path | None = None


class SourceStore:
    """Read-only access to the primary, shared and expansion-pack source trees."""

    def __init__(self, settings: InstallerSettings):
        self.settings = settings
        self.primary_dir = settings.primary_dir
        self.shared_dir = settings.shared_dir
        self.expansion_packs_dir = settings.expansion_packs_dir

    # -- version ---------------------------------------------------------

    def core_version(self) -> str:
        """Version declared in ``core-config.yaml``, or ``"unknown"``."""
        config_path = self.primary_dir / CORE_CONFIG_FILE
        try:
            with open(config_path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning("Could not read version from %s: %s", config_path, e)
            return "unknown"
        version = data.get("version") if isinstance(data, dict) else None
        return str(version) if version is not None else "unknown"

    # -- units -----------------------------------------------------------

    def agent_path(self, agent_id: str) -> Path:
        return self.primary_dir / AGENTS_DIR / f"{agent_id}.md"

    def team_path(self, team_id: str) -> Path:
        return self.primary_dir / TEAMS_DIR / f"{team_id}.yaml"

    def list_agents(self) -> list[str]:
        return _stems(self.primary_dir / AGENTS_DIR, ".md")

    def list_teams(self) -> list[str]:
        return _stems(self.primary_dir / TEAMS_DIR, ".yaml")

    # -- resources -------------------------------------------------------

    def find_resource(self, resource_type: str, resource_id: str) -> tuple[Path, bool] | None:
        """Locate a resource: primary store first, then the shared store.

        Returns ``(path, is_shared)`` or None when neither store has it.
        """
        for root, shared in ((self.primary_dir, False), (self.shared_dir, True)):
            for name in candidate_names(resource_id):
                path = root / resource_type / name
                if path.is_file():
                    return path, shared
        return None

    def primary_files(self) -> list[str]:
        return list_files(self.primary_dir)

    def shared_files(self) -> list[str]:
        return list_files(self.shared_dir)

    # -- expansion packs -------------------------------------------------

    def list_expansion_packs(self) -> list[ExpansionPackInfo]:
        if not self.expansion_packs_dir.is_dir():
            return []
        packs = []
        for pack_dir in sorted(p for p in self.expansion_packs_dir.iterdir() if p.is_dir()):
            info = self._load_pack_info(pack_dir)
            if info:
                packs.append(info)
        return packs

    def get_expansion_pack(self, pack_id: str) -> ExpansionPackInfo | None:
        pack_dir = self.expansion_packs_dir / pack_id
        if not pack_dir.is_dir():
            return None
        return self._load_pack_info(pack_dir)

    def _load_pack_info(self, pack_dir: Path) -> ExpansionPackInfo | None:
        config_path = pack_dir / PACK_CONFIG_FILE
        if not config_path.is_file():
            return None
        try:
            with open(config_path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            logger.warning("Skipping expansion pack %s: %s", pack_dir.name, e)
            return None
        if not isinstance(data, dict):
            logger.warning("Skipping expansion pack %s: config is not a mapping", pack_dir.name)
            return None

        return ExpansionPackInfo(
            id=pack_dir.name,
            name=str(data.get("name") or pack_dir.name),
            version=str(data.get("version") or "1.0.0"),
            description=str(data.get("description") or ""),
            short_title=str(data.get("short-title") or ""),
            author=str(data.get("author") or "Unknown"),
            path=pack_dir,
        )


def candidate_names(resource_id: str) -> list[str]:
    """File names a resource identifier may refer to (bare ids also match ``.md``)."""
    if Path(resource_id).suffix:
        return [resource_id]
    return [resource_id, f"{resource_id}.md"]


def _stems(directory: Path, suffix: str) -> list[str]:
    if not directory.is_dir():
        return []
    return sorted(p.stem for p in directory.iterdir() if p.is_file() and p.suffix == suffix)
