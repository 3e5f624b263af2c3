"""Install requests and results — the records exchanged with callers."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from ai_squad.install.manifest import InstallType, Manifest

# Request-only type: route to Update instead of a fresh install
UPDATE = "update"

REQUEST_TYPES = {t.value for t in InstallType if t != InstallType.EXPANSION_PACK} | {UPDATE}


@dataclass
class InstallRequest:
    """What the caller wants installed where.

    ``install_type`` is one of ``full``, ``single-agent``, ``team``,
    ``expansion-only`` or ``update``.
    """

    install_type: str
    directory: Path = Path(".")
    agent: str | None = None
    team: str | None = None
    language: str | None = None
    ides: list[str] = field(default_factory=list)
    expansion_packs: list[str] = field(default_factory=list)

    def __post_init__(self):
        self.directory = Path(self.directory)
        if self.install_type not in REQUEST_TYPES:
            raise ValueError(
                f"Unknown install type {self.install_type!r}; "
                f"expected one of {sorted(REQUEST_TYPES)}"
            )
        if self.install_type == InstallType.SINGLE_AGENT.value and not self.agent:
            raise ValueError("A single-agent install needs an agent id")
        if self.install_type == InstallType.TEAM.value and not self.team:
            raise ValueError("A team install needs a team id")
        self.ides = _unique([i for i in self.ides if i and i != "other"])
        self.expansion_packs = _unique(self.expansion_packs)

    @property
    def is_update(self) -> bool:
        return self.install_type == UPDATE

    @property
    def core_type(self) -> InstallType:
        return InstallType(self.install_type)


class InstallStatus(Enum):
    """How a reconciliation ended."""

    INSTALLED = "installed"
    UPDATED = "updated"
    REINSTALLED = "reinstalled"
    REPAIRED = "repaired"
    EXPANSIONS = "expansions"
    CANCELLED = "cancelled"


@dataclass
class InstallResult:
    """Outcome of a reconciliation operation."""

    status: InstallStatus
    install_dir: Path | None = None
    files: list[str] = field(default_factory=list)  # Post-install file list, in write order
    manifest: Manifest | None = None
    pack_manifests: dict[str, Manifest] = field(default_factory=dict)
    backups: list[str] = field(default_factory=list)
    restored: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    message: str = ""

    @property
    def cancelled(self) -> bool:
        return self.status == InstallStatus.CANCELLED

    def merge(self, other: InstallResult) -> None:
        """Fold a nested operation's side effects into this result."""
        self.files = _unique(self.files + other.files)
        self.pack_manifests.update(other.pack_manifests)
        self.backups.extend(other.backups)
        self.restored.extend(other.restored)
        self.removed.extend(other.removed)
        self.warnings.extend(other.warnings)


def _unique(items: list[str]) -> list[str]:
    seen = set()
    out = []
    for item in items:
        if item not in seen:
            seen.add(item)
            out.append(item)
    return out
