"""Reconciler — converge a project directory to the installable content.

Operations:
- fresh install: copy/render everything the request resolves to, then
  write a brand-new manifest enumerating exactly what was written
- update: re-run a fresh install with the recorded install type, after
  deciding what to do with user-modified files
- repair: back up modified files and restore missing/modified ones,
  keeping the existing manifest
- reinstall: delete the unit directory, then fresh install
- expansion packs: the same, scoped to ``.<packId>/`` with its own manifest

Every fork that needs arbitration goes through the decision handler.
A ``cancel`` answer unwinds with :class:`InstallCancelled` and comes back
as an ``InstallResult`` with status ``cancelled``.
"""

from __future__ import annotations

import functools
import logging
from dataclasses import dataclass, field
from pathlib import Path

from ai_squad.config import InstallerSettings, pack_marker
from ai_squad.errors import (
    InstallCancelled,
    ManifestError,
    NotInstalledError,
    UnitDefinitionError,
    UnitNotFoundError,
)
from ai_squad.install.backup import backup_file
from ai_squad.install.decisions import (
    Choice,
    DecisionHandler,
    DecisionRequest,
    DecisionTopic,
    accept_defaults,
    ask,
)
from ai_squad.install.files import (
    LANGUAGE_CONFIG_FILE,
    CopyJob,
    JobPlan,
    cleanup_legacy_yml,
    produce,
    remove_legacy_sibling,
    remove_tree,
    write_jobs,
)
from ai_squad.install.fingerprint import fingerprint_bytes
from ai_squad.install.manifest import (
    FileRecord,
    InstallType,
    IntegrityReport,
    Manifest,
    ManifestStore,
)
from ai_squad.install.state import (
    InstallationState,
    InstalledPack,
    StateKind,
    classify_installation,
    detect_expansion_packs,
)
from ai_squad.install.versioning import compare_versions
from ai_squad.models.install_request import InstallRequest, InstallResult, InstallStatus
from ai_squad.resolve.definitions import (
    WILDCARD,
    UnitDefinition,
    load_agent_file,
    load_team_file,
)
from ai_squad.resolve.resolver import DependencyResolver, ResolutionCache
from ai_squad.resolve.source_store import (
    AGENTS_DIR,
    PACK_CONFIG_FILE,
    TEAMS_DIR,
    ExpansionPackInfo,
    SourceStore,
    candidate_names,
)
from ai_squad.utils.file_scanner import ProjectScanner, list_files

logger = logging.getLogger(__name__)

# Folders copied from an expansion pack into its marker directory
PACK_FOLDERS = (
    "agents",
    "agent-teams",
    "templates",
    "tasks",
    "checklists",
    "workflows",
    "data",
    "utils",
    "schemas",
)
PACK_README = "README.md"

DEFAULT_LANGUAGE = "en"


class PackAction:
    INSTALL = "install"  # No previous install, copy over whatever is there
    REPLACE = "replace"  # Remove the previous install first
    REPAIR = "repair"
    SKIP = "skip"


@dataclass
class PackPlan:
    pack: ExpansionPackInfo
    action: str
    manifest: Manifest | None = None
    integrity: IntegrityReport | None = None


@dataclass
class StatusReport:
    """Read-only summary of a managed install."""

    install_dir: Path
    manifest: Manifest
    integrity: IntegrityReport
    available_version: str
    version_compare: int
    expansion_packs: dict[str, InstalledPack] = field(default_factory=dict)
    pack_integrity: dict[str, IntegrityReport] = field(default_factory=dict)


def _cancellable(method):
    """Turn an :class:`InstallCancelled` unwind into a cancelled result."""

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except InstallCancelled as e:
            logger.info("%s", e)
            return InstallResult(status=InstallStatus.CANCELLED, message=str(e))

    return wrapper


class Reconciler:
    """Installs, updates and repairs AI Squad content in project directories."""

    def __init__(self, settings: InstallerSettings | None = None,
                 decide: DecisionHandler = accept_defaults,
                 scanner: ProjectScanner | None = None):
        self.settings = settings or InstallerSettings()
        self.store = SourceStore(self.settings)
        self.resolver = DependencyResolver(self.store)
        self.decide = decide
        self.scanner = scanner or ProjectScanner()

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def resolve_install_dir(self, directory: str | Path) -> Path:
        """Absolute project dir; pointing at the core marker means its parent."""
        path = Path(directory).expanduser().resolve()
        if path.name == self.settings.core_marker:
            return path.parent
        return path

    def classify(self, directory: str | Path) -> InstallationState:
        return classify_installation(
            self.resolve_install_dir(directory),
            self.scanner,
            core_marker=self.settings.core_marker,
            legacy_marker=self.settings.legacy_marker,
            manifest_file=self.settings.manifest_file,
        )

    @_cancellable
    def install(self, request: InstallRequest) -> InstallResult:
        """Classify the target and take the matching reconciliation path."""
        install_dir = self.resolve_install_dir(request.directory)

        if not install_dir.exists():
            answer = ask(self.decide, DecisionRequest(
                topic=DecisionTopic.MISSING_DIRECTORY,
                message=f"The directory {install_dir} does not exist.",
                choices=[
                    Choice("create", "Create the directory and continue"),
                    Choice("cancel", "Cancel installation"),
                ],
            ))
            if answer == "cancel":
                raise InstallCancelled()
            install_dir.mkdir(parents=True, exist_ok=True)
            logger.info("Created directory %s", install_dir)

        state = self.classify(install_dir)

        if request.is_update:
            if state.kind != StateKind.EXISTING_MANAGED:
                raise NotInstalledError(f"No managed installation found in {install_dir}")
            return self._update(request, install_dir, state.manifest)

        if state.kind == StateKind.CLEAN:
            if state.non_empty:
                logger.info("%s is not empty; installing alongside existing files", install_dir)
            return self._fresh_install(request, install_dir)
        if state.kind == StateKind.EXISTING_MANAGED:
            return self._handle_existing(request, install_dir, state)
        if state.kind == StateKind.EXISTING_LEGACY:
            return self._handle_legacy(request, install_dir)
        return self._handle_unmanaged(request, install_dir, state)

    @_cancellable
    def fresh_install(self, request: InstallRequest) -> InstallResult:
        return self._fresh_install(request, self.resolve_install_dir(request.directory))

    @_cancellable
    def update(self, request: InstallRequest) -> InstallResult:
        install_dir = self.resolve_install_dir(request.directory)
        return self._update(request, install_dir, self._load_core_manifest(install_dir))

    @_cancellable
    def reinstall(self, request: InstallRequest) -> InstallResult:
        return self._reinstall(request, self.resolve_install_dir(request.directory))

    def repair(self, directory: str | Path, manifest: Manifest | None = None,
               report: IntegrityReport | None = None) -> InstallResult:
        """Restore missing and modified core files; the manifest is preserved."""
        install_dir = self.resolve_install_dir(directory)
        manifest = manifest or self._load_core_manifest(install_dir)
        return self._repair(install_dir, manifest, report)

    @_cancellable
    def install_expansion_packs(self, directory: str | Path, pack_ids: list[str],
                                ides: list[str] | None = None) -> InstallResult:
        install_dir = self.resolve_install_dir(directory)
        install_dir.mkdir(parents=True, exist_ok=True)
        result = InstallResult(status=InstallStatus.EXPANSIONS, install_dir=install_dir)
        plans = self._plan_packs(install_dir, pack_ids, result)
        result.merge(self._execute_pack_plans(install_dir, plans, ides or []))
        return result

    def check_integrity(self, directory: str | Path,
                        manifest: Manifest | None = None) -> IntegrityReport:
        install_dir = self.resolve_install_dir(directory)
        store = self._core_manifest_store(install_dir)
        return store.check_integrity(manifest or self._load_core_manifest(install_dir))

    def status(self, directory: str | Path) -> StatusReport:
        """Manifest summary, integrity and installed packs of a managed install."""
        install_dir = self.resolve_install_dir(directory)
        state = self.classify(install_dir)
        if state.kind != StateKind.EXISTING_MANAGED:
            raise NotInstalledError(f"No managed installation found in {install_dir}")

        available = self.store.core_version()
        report = StatusReport(
            install_dir=install_dir,
            manifest=state.manifest,
            integrity=self._core_manifest_store(install_dir).check_integrity(state.manifest),
            available_version=available,
            version_compare=compare_versions(state.manifest.version, available),
            expansion_packs=state.expansion_packs,
        )
        for pack_id, pack in state.expansion_packs.items():
            if pack.manifest:
                report.pack_integrity[pack_id] = ManifestStore.for_pack(
                    install_dir, pack_id
                ).check_integrity(pack.manifest)
        return report

    # ------------------------------------------------------------------
    # Fresh install
    # ------------------------------------------------------------------

    def _fresh_install(self, request: InstallRequest, install_dir: Path,
                       keep: set[str] | frozenset = frozenset()) -> InstallResult:
        """Write the core unit and requested packs.

        Paths in *keep* are left as the user has them and recorded as modified.
        """
        install_type = request.core_type
        result = InstallResult(status=InstallStatus.INSTALLED, install_dir=install_dir)

        # Pack decisions come first so a cancel leaves the directory untouched
        plans = self._plan_packs(install_dir, request.expansion_packs, result)

        if install_type != InstallType.EXPANSION_ONLY:
            plan = self._core_plan(request, result)
            jobs = [j for j in plan.jobs if j.dest not in keep]
            logger.info("Installing %d core file(s) into %s", len(jobs), install_dir)
            write_jobs(install_dir, jobs, self.settings.root_token)
            result.files.extend(plan.dests)

            store = self._core_manifest_store(install_dir)
            manifest = store.build(
                self.store.core_version(),
                install_type,
                [j.dest for j in jobs],
                agent=request.agent if install_type == InstallType.SINGLE_AGENT else None,
                team=request.team if install_type == InstallType.TEAM else None,
                language=_language(request.language),
                ides_setup=list(request.ides),
                expansion_packs=list(request.expansion_packs),
            )
            manifest.files = self._with_kept_records(plan, manifest, keep)
            store.write(manifest)
            result.manifest = manifest

        result.merge(self._execute_pack_plans(install_dir, plans, request.ides))
        return result

    def _core_plan(self, request: InstallRequest, result: InstallResult) -> JobPlan:
        marker = self.settings.core_marker
        language = _language(request.language)
        install_type = request.core_type
        plan = JobPlan()

        config_source = self.settings.primary_dir / LANGUAGE_CONFIG_FILE
        if config_source.is_file():
            plan.add(CopyJob(f"{marker}/{LANGUAGE_CONFIG_FILE}", config_source, language=language))

        if install_type == InstallType.FULL:
            for rel in self.store.primary_files():
                plan.add(CopyJob(f"{marker}/{rel}", self.settings.primary_dir / rel))

        elif install_type == InstallType.SINGLE_AGENT:
            resolved = self.resolver.resolve_agent(request.agent)
            self._plan_resolved(plan, [resolved.definition], resolved.resource_list, marker)
            result.warnings.extend(resolved.warnings)

        elif install_type == InstallType.TEAM:
            resolved = self.resolver.resolve_team(request.team)
            plan.add(CopyJob(f"{marker}/{TEAMS_DIR}/{request.team}.yaml",
                             resolved.definition.path))
            self._plan_resolved(plan, resolved.members, resolved.resource_list, marker)
            result.warnings.extend(resolved.warnings)

        self._plan_shared(plan, marker)
        return plan

    def _plan_resolved(self, plan: JobPlan, agents: list[UnitDefinition],
                       resources, marker: str) -> None:
        for agent in agents:
            plan.add(CopyJob(f"{marker}/{AGENTS_DIR}/{agent.id}.md", agent.path))
        for resource in resources:
            plan.add(CopyJob(
                f"{marker}/{resource.install_path}",
                resource.path,
                render_marker=marker if resource.shared else None,
            ))

    def _plan_shared(self, plan: JobPlan, marker: str) -> None:
        # Shared files only fill gaps; the primary store wins on collisions
        for rel in self.store.shared_files():
            plan.add(CopyJob(f"{marker}/{rel}", self.settings.shared_dir / rel,
                             render_marker=marker))

    def _with_kept_records(self, plan: JobPlan, manifest: Manifest, keep) -> list:
        """Merge kept files back in plan order, hashed as the installer would have written them."""
        if not keep:
            return manifest.files
        written = {r.path: r for r in manifest.files}
        records = []
        for job in plan.jobs:
            if job.dest in written:
                records.append(written[job.dest])
            elif job.dest in keep:
                record_hash = fingerprint_bytes(produce(job, self.settings.root_token))
                records.append(FileRecord(path=job.dest, hash=record_hash, modified=True))
        return records

    # ------------------------------------------------------------------
    # Existing installs
    # ------------------------------------------------------------------

    def _handle_existing(self, request: InstallRequest, install_dir: Path,
                         state: InstallationState) -> InstallResult:
        manifest = state.manifest
        available = self.store.core_version()
        cmp = compare_versions(manifest.version, available)
        report = self._core_manifest_store(install_dir).check_integrity(manifest)

        details = [
            f"Directory: {install_dir}",
            f"Current version: {manifest.version}",
            f"Available version: {available}",
            f"Installed: {manifest.installed_at}",
        ]
        if report.has_issues:
            details.append(f"Integrity: {report.summary()}")
        for pack_id, pack in state.expansion_packs.items():
            version = pack.manifest.version if pack.manifest else "no manifest"
            details.append(f"Expansion pack: {pack_id} ({version})")

        choices = []
        if cmp == 0 and report.has_issues:
            choices.append(Choice("repair", "Repair installation (restore missing/modified files)"))
        if cmp < 0:
            choices.append(Choice("upgrade", f"Upgrade core ({manifest.version} -> {available})"))
        elif cmp == 0:
            choices.append(Choice("reinstall", f"Force reinstall core ({manifest.version})"))
        else:
            choices.append(Choice("downgrade", f"Downgrade core ({manifest.version} -> {available})"))
        if request.expansion_packs:
            choices.append(Choice("expansions", "Add/update expansion packs only"))
        choices.append(Choice("cancel", "Cancel"))

        answer = ask(self.decide, DecisionRequest(
            topic=DecisionTopic.EXISTING_INSTALL,
            message="Found an existing installation. What would you like to do?",
            choices=choices,
            details=details,
        ))

        if answer == "upgrade":
            return self._update(request, install_dir, manifest)
        if answer == "repair":
            return self._repair(install_dir, manifest, report)
        if answer in ("reinstall", "downgrade"):
            return self._reinstall(request, install_dir)
        if answer == "expansions":
            result = InstallResult(status=InstallStatus.EXPANSIONS, install_dir=install_dir)
            plans = self._plan_packs(install_dir, request.expansion_packs, result)
            result.merge(self._execute_pack_plans(install_dir, plans, request.ides))
            return result
        raise InstallCancelled()

    def _handle_legacy(self, request: InstallRequest, install_dir: Path) -> InstallResult:
        answer = ask(self.decide, DecisionRequest(
            topic=DecisionTopic.LEGACY_INSTALL,
            message=f"Found a legacy installation ({self.settings.legacy_marker}/).",
            choices=[
                Choice("alongside", "Install alongside the legacy installation"),
                Choice("cancel", "Cancel"),
            ],
            details=[f"Directory: {install_dir}"],
        ))
        if answer == "cancel":
            raise InstallCancelled()
        return self._fresh_install(request, install_dir)

    def _handle_unmanaged(self, request: InstallRequest, install_dir: Path,
                          state: InstallationState) -> InstallResult:
        details = [f"Directory: {install_dir}",
                   f"Found: {self.settings.core_marker} directory (but no manifest)"]
        details.extend(state.diagnostics)
        answer = ask(self.decide, DecisionRequest(
            topic=DecisionTopic.UNMANAGED_INSTALL,
            message="Directory contains an unmanaged installation.",
            choices=[
                Choice("force", "Install anyway (may overwrite files)"),
                Choice("cancel", "Cancel"),
            ],
            details=details,
        ))
        if answer == "cancel":
            raise InstallCancelled()
        return self._fresh_install(request, install_dir)

    # ------------------------------------------------------------------
    # Update / reinstall / repair
    # ------------------------------------------------------------------

    def _update(self, request: InstallRequest, install_dir: Path,
                manifest: Manifest) -> InstallResult:
        if manifest.install_type in (InstallType.EXPANSION_PACK, InstallType.EXPANSION_ONLY):
            raise ManifestError(
                str(self._core_manifest_store(install_dir).manifest_path),
                f"core manifest has install_type {manifest.install_type.value!r}",
            )

        available = self.store.core_version()
        cmp = compare_versions(manifest.version, available)
        backups: list[str] = []
        keep: set[str] = set()

        # Same-version updates overwrite without asking
        if cmp != 0:
            report = self._core_manifest_store(install_dir).check_integrity(manifest)
            if report.modified:
                answer = ask(self.decide, DecisionRequest(
                    topic=DecisionTopic.MODIFIED_FILES,
                    message="Some installed files have been modified. How would you like to proceed?",
                    choices=[
                        Choice("backup", "Backup and overwrite modified files"),
                        Choice("skip", "Skip modified files"),
                        Choice("cancel", "Cancel update"),
                    ],
                    details=list(report.modified),
                ))
                if answer == "cancel":
                    raise InstallCancelled("Update cancelled.")
                if answer == "backup":
                    backups = self._backup(install_dir, report.modified)
                else:
                    keep = set(report.modified)

        config = InstallRequest(
            install_type=manifest.install_type.value,
            directory=install_dir,
            agent=manifest.agent,
            team=manifest.team,
            language=manifest.language,
            ides=list(request.ides) or list(manifest.ides_setup),
            expansion_packs=list(request.expansion_packs),
        )
        result = self._fresh_install(config, install_dir, keep=keep)
        result.status = InstallStatus.UPDATED
        result.backups.extend(backups)
        result.removed.extend(cleanup_legacy_yml(install_dir, self._markers(install_dir)))
        return result

    def _reinstall(self, request: InstallRequest, install_dir: Path) -> InstallResult:
        core_dir = install_dir / self.settings.core_marker
        if remove_tree(core_dir):
            logger.info("Removed existing installation %s", core_dir)
        result = self._fresh_install(request, install_dir)
        result.status = InstallStatus.REINSTALLED
        result.removed.extend(cleanup_legacy_yml(install_dir, self._markers(install_dir)))
        return result

    def _repair(self, install_dir: Path, manifest: Manifest,
                report: IntegrityReport | None = None) -> InstallResult:
        store = self._core_manifest_store(install_dir)
        report = report or store.check_integrity(manifest)
        marker = self.settings.core_marker
        sources = [
            (self.settings.primary_dir, None),
            (self.settings.shared_dir, marker),
        ]
        result = self._restore(install_dir, marker, sources, report, language=manifest.language)
        result.manifest = manifest
        result.removed.extend(cleanup_legacy_yml(install_dir, self._markers(install_dir)))
        return result

    def _restore(self, install_dir: Path, marker: str, sources: list[tuple[Path, str | None]],
                 report: IntegrityReport, language: str | None = None) -> InstallResult:
        """Back up modified files, then rewrite missing and modified ones from *sources*.

        *sources* are ``(root, render_marker)`` pairs tried in order.
        """
        result = InstallResult(status=InstallStatus.REPAIRED, install_dir=install_dir)
        result.backups = self._backup(install_dir, report.modified)

        prefix = f"{marker}/"
        jobs = []
        for rel_path in [*report.missing, *report.modified]:
            if rel_path.endswith(self.settings.manifest_file):
                continue
            inner = rel_path[len(prefix):] if rel_path.startswith(prefix) else rel_path
            job = None
            for root, render_marker in sources:
                source = root / inner
                if source.is_file():
                    job = CopyJob(rel_path, source, render_marker=render_marker)
                    break
            if job is None:
                message = f"Source file not found: {rel_path}"
                logger.warning(message)
                result.warnings.append(message)
                continue
            if inner == LANGUAGE_CONFIG_FILE and language:
                job.language = language
            jobs.append(job)

        result.restored = write_jobs(install_dir, jobs, self.settings.root_token)
        result.files = list(result.restored)
        for rel_path in result.restored:
            removed = remove_legacy_sibling(install_dir, rel_path)
            if removed:
                result.removed.append(removed)
        return result

    def _backup(self, install_dir: Path, rel_paths: list[str]) -> list[str]:
        backups = []
        for rel_path in rel_paths:
            path = install_dir / rel_path
            if path.is_file():
                target = backup_file(path)
                backups.append(target.relative_to(install_dir).as_posix())
                logger.info("Backed up %s -> %s", rel_path, target.name)
        return backups

    # ------------------------------------------------------------------
    # Expansion packs
    # ------------------------------------------------------------------

    def _plan_packs(self, install_dir: Path, pack_ids: list[str],
                    result: InstallResult) -> list[PackPlan]:
        """Decide, before anything is written, what happens to each requested pack."""
        plans = []
        for pack_id in pack_ids:
            pack = self.store.get_expansion_pack(pack_id)
            if pack is None:
                message = f"Expansion pack {pack_id} not found, skipping"
                logger.warning(message)
                result.warnings.append(message)
                continue

            store = ManifestStore.for_pack(install_dir, pack_id)
            lookup = store.read()
            if not lookup.found:
                plans.append(PackPlan(pack, PackAction.INSTALL))
                continue

            existing = lookup.manifest
            integrity = store.check_integrity(existing)
            plans.append(PackPlan(
                pack,
                self._ask_pack_action(pack, existing, integrity),
                manifest=existing,
                integrity=integrity,
            ))
        return plans

    def _ask_pack_action(self, pack: ExpansionPackInfo, existing: Manifest,
                         integrity: IntegrityReport) -> str:
        cmp = compare_versions(existing.version or "0.0.0", pack.version)
        details = [f"Installed: {existing.version}", f"Available: {pack.version}"]
        if integrity.has_issues:
            details.append(f"Integrity: {integrity.summary()}")

        if cmp == 0:
            message = f"{pack.name} {pack.version} is already installed. What would you like to do?"
            choices = []
            if integrity.has_issues:
                choices.append(Choice("repair", "Repair (restore missing/modified files)"))
            choices += [
                Choice("overwrite", "Force reinstall (overwrite)"),
                Choice("skip", "Skip this expansion pack"),
                Choice("cancel", "Cancel installation"),
            ]
        elif cmp < 0:
            message = f"Upgrade {pack.name} from {existing.version} to {pack.version}?"
            choices = [
                Choice("upgrade", "Upgrade"),
                Choice("skip", "Keep current version"),
            ]
        else:
            message = f"{pack.name} {existing.version} is newer than {pack.version}."
            choices = [
                Choice("skip", "Keep current version"),
                Choice("downgrade", "Downgrade to available version"),
                Choice("cancel", "Cancel installation"),
            ]

        answer = ask(self.decide, DecisionRequest(
            topic=DecisionTopic.EXPANSION_PACK,
            message=message,
            choices=choices,
            details=details,
        ))
        if answer == "cancel":
            raise InstallCancelled()
        if answer == "skip":
            return PackAction.SKIP
        if answer == "repair":
            return PackAction.REPAIR
        return PackAction.REPLACE

    def _execute_pack_plans(self, install_dir: Path, plans: list[PackPlan],
                            ides: list[str]) -> InstallResult:
        result = InstallResult(status=InstallStatus.EXPANSIONS, install_dir=install_dir)
        for plan in plans:
            pack = plan.pack
            if plan.action == PackAction.SKIP:
                logger.info("Skipping expansion pack %s", pack.id)
                continue
            try:
                if plan.action == PackAction.REPAIR:
                    result.merge(self._repair_pack(install_dir, pack, plan.integrity))
                    continue
                if plan.action == PackAction.REPLACE:
                    remove_tree(install_dir / pack_marker(pack.id))
                result.merge(self._install_pack(install_dir, pack, ides))
            except (UnitDefinitionError, UnitNotFoundError, ManifestError) as e:
                message = f"Failed to install expansion pack {pack.id}: {e}"
                logger.error(message)
                result.warnings.append(message)
        return result

    def _install_pack(self, install_dir: Path, pack: ExpansionPackInfo,
                      ides: list[str]) -> InstallResult:
        marker = pack_marker(pack.id)
        result = InstallResult(status=InstallStatus.INSTALLED, install_dir=install_dir)

        plan = JobPlan()
        for folder in PACK_FOLDERS:
            for rel in list_files(pack.path / folder):
                plan.add(CopyJob(f"{marker}/{folder}/{rel}", pack.path / folder / rel))
        for name in (PACK_CONFIG_FILE, PACK_README):
            if (pack.path / name).is_file():
                plan.add(CopyJob(f"{marker}/{name}", pack.path / name))
        self._plan_shared(plan, marker)

        logger.info("Installing expansion pack %s (%d files)", pack.id, len(plan))
        (install_dir / marker).mkdir(parents=True, exist_ok=True)
        write_jobs(install_dir, plan.jobs, self.settings.root_token)

        files = plan.dests
        files += self._backfill_pack(install_dir, pack.id, result)

        store = ManifestStore.for_pack(install_dir, pack.id)
        manifest = store.build(
            pack.version,
            InstallType.EXPANSION_PACK,
            files,
            expansion_pack_id=pack.id,
            expansion_pack_name=pack.name,
            ides_setup=list(ides),
        )
        store.write(manifest)
        result.files = files
        result.pack_manifests[pack.id] = manifest
        return result

    def _repair_pack(self, install_dir: Path, pack: ExpansionPackInfo,
                     integrity: IntegrityReport) -> InstallResult:
        marker = pack_marker(pack.id)
        sources = [
            (pack.path, None),
            (self.settings.shared_dir, marker),
            (self.settings.primary_dir, None),
        ]
        logger.info("Repairing expansion pack %s: %s", pack.id, integrity.summary())
        return self._restore(install_dir, marker, sources, integrity)

    def _backfill_pack(self, install_dir: Path, pack_id: str,
                       result: InstallResult) -> list[str]:
        """Copy core resources and agents the pack references but does not ship.

        Returns the written paths, relative to the install dir.
        """
        marker = pack_marker(pack_id)
        pack_dir = install_dir / marker
        agents_dir = pack_dir / AGENTS_DIR
        cache = ResolutionCache()
        written: list[str] = []

        present = {p.stem for p in agents_dir.glob("*.md")} if agents_dir.is_dir() else set()

        for agent_path in sorted(agents_dir.glob("*.md")) if agents_dir.is_dir() else []:
            try:
                definition = load_agent_file(agent_path)
            except UnitDefinitionError as e:
                self._warn(result, f"Could not parse agent dependencies in {pack_id}: {e}")
                continue
            written += self._backfill_dependencies(install_dir, marker, definition, result)

        teams_dir = pack_dir / TEAMS_DIR
        for team_path in sorted(teams_dir.glob("*.yaml")) if teams_dir.is_dir() else []:
            try:
                team = load_team_file(team_path)
            except UnitDefinitionError as e:
                self._warn(result, f"Could not parse team file {team_path.name}: {e}")
                continue

            members = [self.settings.coordinator_agent] + [
                a for a in team.config["agents"] if a != WILDCARD
            ]
            for agent_id in members:
                if agent_id in present:
                    continue
                try:
                    definition = self.resolver.load_agent(agent_id, cache)
                except UnitNotFoundError:
                    self._warn(result, f"Core agent {agent_id} not found for team {team.id}")
                    continue
                except UnitDefinitionError as e:
                    self._warn(result, f"Could not parse agent {agent_id} dependencies: {e}")
                    continue

                dest = f"{marker}/{AGENTS_DIR}/{agent_id}.md"
                written += write_jobs(install_dir, [CopyJob(dest, definition.path)],
                                      self.settings.root_token)
                present.add(agent_id)
                logger.info("Copied core agent %s into %s", agent_id, marker)
                written += self._backfill_dependencies(install_dir, marker, definition, result)

        return written

    def _backfill_dependencies(self, install_dir: Path, marker: str,
                               definition: UnitDefinition, result: InstallResult) -> list[str]:
        pack_dir = install_dir / marker
        jobs = []
        for resource_type, ids in definition.dependencies.items():
            for resource_id in ids:
                if any((pack_dir / resource_type / n).is_file() for n in candidate_names(resource_id)):
                    continue
                found = self.store.find_resource(resource_type, resource_id)
                if found is None:
                    self._warn(result, f"Dependency {resource_type}/{resource_id} "
                                       f"not found in core or expansion pack")
                    continue
                source, shared = found
                dest = f"{marker}/{resource_type}/{source.name}"
                if any(j.dest == dest for j in jobs):
                    continue
                jobs.append(CopyJob(dest, source, render_marker=marker if shared else None))
        return write_jobs(install_dir, jobs, self.settings.root_token)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _core_manifest_store(self, install_dir: Path) -> ManifestStore:
        return ManifestStore(install_dir, self.settings.core_marker, self.settings.manifest_file)

    def _markers(self, install_dir: Path) -> list[str]:
        """Marker directories of the core and of every installed expansion pack."""
        packs = detect_expansion_packs(install_dir, self.scanner, self.settings.core_marker,
                                       self.settings.manifest_file)
        return [self.settings.core_marker] + [pack_marker(p) for p in packs]

    def _load_core_manifest(self, install_dir: Path) -> Manifest:
        store = self._core_manifest_store(install_dir)
        if not store.exists():
            raise NotInstalledError(f"No managed installation found in {install_dir}")
        return store.load()

    @staticmethod
    def _warn(result: InstallResult, message: str) -> None:
        logger.warning(message)
        result.warnings.append(message)


def _language(language: str | None) -> str | None:
    if not language or language == DEFAULT_LANGUAGE:
        return None
    return language

