"""Install manifests — versioned records of what an install unit put on disk.

One manifest per install unit: the core install keeps it at
``.ai-squad-core/install-manifest.yaml``, each expansion pack at
``.<packId>/install-manifest.yaml``. The manifest is the only source of
truth for what the reconciler owns; anything not listed is never touched.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from pathlib import Path

import yaml

from ai_squad.config import CORE_MARKER, MANIFEST_FILE, pack_marker
from ai_squad.errors import ManifestError
from ai_squad.install.fingerprint import fingerprint

logger = logging.getLogger(__name__)

MAX_HASH_WORKERS = 8


class InstallType(Enum):
    """What kind of install produced a manifest."""

    FULL = "full"
    SINGLE_AGENT = "single-agent"
    TEAM = "team"
    EXPANSION_PACK = "expansion-pack"
    EXPANSION_ONLY = "expansion-only"


@dataclass
class FileRecord:
    """One tracked file: relative path, fingerprint, and whether the user kept their edit."""

    path: str
    hash: str | None = None
    modified: bool = False


@dataclass
class Manifest:
    """Record of a single install unit."""

    version: str
    install_type: InstallType
    installed_at: str = ""  # ISO 8601
    agent: str | None = None
    team: str | None = None
    language: str | None = None
    ides_setup: list[str] = field(default_factory=list)
    expansion_packs: list[str] = field(default_factory=list)
    expansion_pack_id: str | None = None
    expansion_pack_name: str | None = None
    files: list[FileRecord] = field(default_factory=list)

    @property
    def paths(self) -> list[str]:
        return [f.path for f in self.files]

    def get(self, path: str) -> FileRecord | None:
        for record in self.files:
            if record.path == path:
                return record
        return None


@dataclass
class IntegrityReport:
    """Which tracked files are gone and which no longer match their fingerprint."""

    missing: list[str] = field(default_factory=list)
    modified: list[str] = field(default_factory=list)

    @property
    def has_issues(self) -> bool:
        return bool(self.missing or self.modified)

    def summary(self) -> str:
        if not self.has_issues:
            return "all tracked files intact"
        return f"{len(self.missing)} missing, {len(self.modified)} modified"


@dataclass
class ManifestLookup:
    """Result of reading a manifest: either a manifest, or not-found with a reason."""

    manifest: Manifest | None = None
    path: Path | None = None
    diagnostic: str = ""

    @property
    def found(self) -> bool:
        return self.manifest is not None


class ManifestStore:
    """Reads, writes and verifies the manifest of one install unit in a project."""

    def __init__(self, install_dir: str | Path, marker: str = CORE_MARKER,
                 manifest_file: str = MANIFEST_FILE):
        self.install_dir = Path(install_dir)
        self.marker = marker
        self.manifest_file = manifest_file
        self.manifest_path = self.install_dir / marker / manifest_file

    @classmethod
    def for_pack(cls, install_dir: str | Path, pack_id: str) -> ManifestStore:
        return cls(install_dir, marker=pack_marker(pack_id))

    @property
    def relative_manifest_path(self) -> str:
        return f"{self.marker}/{self.manifest_file}"

    def exists(self) -> bool:
        return self.manifest_path.is_file()

    def write(self, manifest: Manifest) -> Path:
        """Serialize *manifest*, replacing whatever was there."""
        if not manifest.installed_at:
            manifest.installed_at = datetime.now(timezone.utc).isoformat()

        self.manifest_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.manifest_path, "w", encoding="utf-8") as f:
            yaml.safe_dump(manifest_to_dict(manifest), f, sort_keys=False, indent=2)
        logger.debug("Wrote manifest %s (%d files)", self.manifest_path, len(manifest.files))
        return self.manifest_path

    def read(self) -> ManifestLookup:
        """Load the manifest. Absence and malformed content both come back as not-found."""
        if not self.manifest_path.is_file():
            return ManifestLookup(path=self.manifest_path, diagnostic="no manifest")

        try:
            manifest = self.load()
        except (ManifestError, OSError) as e:
            logger.warning("Ignoring unreadable manifest: %s", e)
            return ManifestLookup(path=self.manifest_path, diagnostic=str(e))

        return ManifestLookup(manifest=manifest, path=self.manifest_path)

    def load(self) -> Manifest:
        """Load the manifest, raising :class:`ManifestError` when it cannot be parsed."""
        try:
            with open(self.manifest_path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ManifestError(str(self.manifest_path), f"invalid YAML: {e}") from e
        except UnicodeDecodeError as e:
            raise ManifestError(str(self.manifest_path), f"not UTF-8 text: {e}") from e
        return manifest_from_dict(data, source=str(self.manifest_path))

    def build(self, version: str, install_type: InstallType, files: list[str],
              **metadata) -> Manifest:
        """Create a manifest for *files* (relative to the install dir), fingerprinting each."""
        hashes = _hash_all(self.install_dir, files)
        records = [FileRecord(path=p, hash=h) for p, h in zip(files, hashes)]
        return Manifest(
            version=version,
            install_type=install_type,
            installed_at=datetime.now(timezone.utc).isoformat(),
            files=records,
            **metadata,
        )

    def check_integrity(self, manifest: Manifest) -> IntegrityReport:
        """Classify every tracked file as missing, modified or intact.

        The manifest file itself is skipped since it is rewritten on every install.
        """
        records = [r for r in manifest.files if not r.path.endswith(self.manifest_file)]
        current = _hash_all(self.install_dir, [r.path for r in records])

        report = IntegrityReport()
        for record, current_hash in zip(records, current):
            if not (self.install_dir / record.path).exists():
                report.missing.append(record.path)
            elif current_hash and current_hash != record.hash:
                report.modified.append(record.path)
        return report


def _hash_all(root: Path, paths: list[str]) -> list[str | None]:
    if not paths:
        return []
    with ThreadPoolExecutor(max_workers=MAX_HASH_WORKERS) as pool:
        return list(pool.map(lambda p: fingerprint(root / p), paths))


def manifest_to_dict(manifest: Manifest) -> dict:
    data = {
        "version": manifest.version,
        "installed_at": manifest.installed_at,
        "install_type": manifest.install_type.value,
        "agent": manifest.agent,
        "team": manifest.team,
        "ides_setup": list(manifest.ides_setup),
        "expansion_packs": list(manifest.expansion_packs),
    }
    if manifest.language:
        data["language"] = manifest.language
    if manifest.expansion_pack_id:
        data["expansion_pack_id"] = manifest.expansion_pack_id
        data["expansion_pack_name"] = manifest.expansion_pack_name
    data["files"] = [
        {"path": r.path, "hash": r.hash, "modified": r.modified} for r in manifest.files
    ]
    return data


def manifest_from_dict(data, source: str = "<manifest>") -> Manifest:
    """Build a :class:`Manifest` from parsed YAML. Unknown keys are ignored."""
    if not isinstance(data, dict):
        raise ManifestError(source, "manifest is not a mapping")

    try:
        install_type = InstallType(data.get("install_type", InstallType.FULL.value))
    except ValueError as e:
        raise ManifestError(source, f"unknown install_type {data.get('install_type')!r}") from e

    for key in ("files", "ides_setup", "expansion_packs"):
        if data.get(key) is not None and not isinstance(data[key], list):
            raise ManifestError(source, f"'{key}' must be a list")

    files = []
    seen = set()
    for entry in data.get("files") or []:
        if not isinstance(entry, dict) or not entry.get("path"):
            raise ManifestError(source, f"invalid file entry: {entry!r}")
        path = str(entry["path"])
        if path in seen:
            raise ManifestError(source, f"duplicate file entry: {path}")
        seen.add(path)
        raw_hash = entry.get("hash")
        files.append(
            FileRecord(
                path=path,
                hash=str(raw_hash) if raw_hash is not None else None,
                modified=bool(entry.get("modified", False)),
            )
        )

    return Manifest(
        version=_as_text(data.get("version")) or "unknown",
        install_type=install_type,
        installed_at=_as_text(data.get("installed_at")),
        agent=data.get("agent"),
        team=data.get("team"),
        language=data.get("language"),
        ides_setup=[str(i) for i in data.get("ides_setup") or []],
        expansion_packs=[str(p) for p in data.get("expansion_packs") or []],
        expansion_pack_id=data.get("expansion_pack_id"),
        expansion_pack_name=data.get("expansion_pack_name"),
        files=files,
    )


def _as_text(value) -> str:
    # Hand-edited manifests may hold unquoted timestamps or numeric versions
    if value is None:
        return ""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)
