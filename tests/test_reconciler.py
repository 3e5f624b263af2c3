"""Tests for install, update, repair and expansion-pack reconciliation."""

import tempfile
from pathlib import Path

import pytest
import yaml

from ai_squad.errors import NotInstalledError, UnitNotFoundError
from ai_squad.install.decisions import DecisionTopic, ScriptedDecisions
from ai_squad.install.fingerprint import fingerprint, fingerprint_bytes
from ai_squad.install.manifest import InstallType, ManifestStore
from ai_squad.install.reconciler import Reconciler
from ai_squad.models.install_request import InstallRequest, InstallStatus
from source_tree import make_source, set_core_version, set_pack_version, write

CORE = ".ai-squad-core"


def _setup(tmpdir: str, decide=None):
    root = Path(tmpdir).resolve()
    settings = make_source(root / "source")
    project = root / "project"
    project.mkdir()
    if decide is None:
        return Reconciler(settings), root / "source", project
    return Reconciler(settings, decide=decide), root / "source", project


def _full(project: Path, **kwargs) -> InstallRequest:
    return InstallRequest(install_type="full", directory=project, **kwargs)


def _manifest(project: Path, marker: str = CORE):
    return ManifestStore(project, marker).load()


# ── Fresh install ────────────────────────────────────────────────────


def test_full_install_writes_manifest_of_everything():
    with tempfile.TemporaryDirectory() as tmpdir:
        reconciler, source, project = _setup(tmpdir)
        result = reconciler.install(_full(project))

        assert result.status == InstallStatus.INSTALLED
        manifest = _manifest(project)
        assert manifest.version == "1.2.0"
        assert manifest.install_type == InstallType.FULL
        assert manifest.paths[0] == f"{CORE}/core-config.yaml"
        assert len(manifest.paths) == 15
        assert f"{CORE}/install-manifest.yaml" not in manifest.paths
        for record in manifest.files:
            assert fingerprint(project / record.path) == record.hash
            assert not record.modified


def test_primary_store_wins_over_shared():
    with tempfile.TemporaryDirectory() as tmpdir:
        reconciler, source, project = _setup(tmpdir)
        reconciler.install(_full(project))

        text = (project / CORE / "tasks" / "create-doc.md").read_text()
        assert text == "# Create doc\nPrimary copy.\n"


def test_shared_files_are_rendered():
    with tempfile.TemporaryDirectory() as tmpdir:
        reconciler, source, project = _setup(tmpdir)
        reconciler.install(_full(project))

        text = (project / CORE / "tasks" / "review-story.md").read_text()
        assert text == "Load .ai-squad-core/data/kb.md before reviewing.\n"


def test_single_agent_install():
    with tempfile.TemporaryDirectory() as tmpdir:
        reconciler, source, project = _setup(tmpdir)
        result = reconciler.install(
            InstallRequest(install_type="single-agent", directory=project, agent="dev")
        )

        manifest = _manifest(project)
        assert manifest.install_type == InstallType.SINGLE_AGENT
        assert manifest.agent == "dev"
        assert f"{CORE}/agents/dev.md" in manifest.paths
        assert f"{CORE}/tasks/develop-story.md" in manifest.paths
        assert f"{CORE}/checklists/story-dod.md" in manifest.paths
        assert f"{CORE}/agents/qa.md" not in manifest.paths
        assert "Resource not found: utils/missing-util" in result.warnings


def test_team_install_includes_coordinator_and_workflows():
    with tempfile.TemporaryDirectory() as tmpdir:
        reconciler, source, project = _setup(tmpdir)
        reconciler.install(InstallRequest(install_type="team", directory=project, team="team-dev"))

        manifest = _manifest(project)
        assert manifest.team == "team-dev"
        for rel in ("agent-teams/team-dev.yaml", "agents/ai-squad-orchestrator.md",
                    "agents/dev.md", "agents/qa.md", "workflows/greenfield.yaml",
                    "data/kb.md", "templates/story-tmpl.yaml"):
            assert f"{CORE}/{rel}" in manifest.paths
        assert f"{CORE}/agents/ai-squad-master.md" not in manifest.paths
        assert len(manifest.paths) == len(set(manifest.paths))


def test_unknown_agent_is_an_error():
    with tempfile.TemporaryDirectory() as tmpdir:
        reconciler, source, project = _setup(tmpdir)
        with pytest.raises(UnitNotFoundError) as exc:
            reconciler.install(
                InstallRequest(install_type="single-agent", directory=project, agent="nobody")
            )
        assert "nobody" in str(exc.value)
        assert not (project / CORE).exists()


def test_language_is_written_to_core_config():
    with tempfile.TemporaryDirectory() as tmpdir:
        reconciler, source, project = _setup(tmpdir)
        reconciler.install(_full(project, language="fr"))

        config = yaml.safe_load((project / CORE / "core-config.yaml").read_text())
        assert config["language"]["default"] == "fr"
        assert _manifest(project).language == "fr"


def test_missing_directory_created_on_default():
    with tempfile.TemporaryDirectory() as tmpdir:
        reconciler, source, project = _setup(tmpdir)
        target = project / "new" / "app"
        result = reconciler.install(_full(target))
        assert result.status == InstallStatus.INSTALLED
        assert (target / CORE / "install-manifest.yaml").is_file()


def test_missing_directory_cancel_leaves_nothing():
    with tempfile.TemporaryDirectory() as tmpdir:
        reconciler, source, project = _setup(tmpdir, ScriptedDecisions(["cancel"]))
        target = project / "new"
        result = reconciler.install(_full(target))
        assert result.cancelled
        assert not target.exists()


def test_core_marker_directory_means_parent():
    with tempfile.TemporaryDirectory() as tmpdir:
        reconciler, source, project = _setup(tmpdir)
        reconciler.install(_full(project))
        assert reconciler.resolve_install_dir(project / CORE) == project
        assert reconciler.status(project / CORE).install_dir == project


def test_install_alongside_user_files():
    with tempfile.TemporaryDirectory() as tmpdir:
        reconciler, source, project = _setup(tmpdir)
        (project / "README.md").write_text("my project")
        reconciler.install(_full(project))
        assert (project / "README.md").read_text() == "my project"
        assert "README.md" not in _manifest(project).paths


# ── Existing installs ────────────────────────────────────────────────


def test_second_install_reinstalls_identically():
    with tempfile.TemporaryDirectory() as tmpdir:
        decide = ScriptedDecisions()
        reconciler, source, project = _setup(tmpdir, decide)
        reconciler.install(_full(project))
        first = _manifest(project)

        result = reconciler.install(_full(project))
        second = _manifest(project)

        assert result.status == InstallStatus.REINSTALLED
        assert decide.asked[-1].choice_ids == ["reinstall", "cancel"]
        assert [(r.path, r.hash) for r in first.files] == [(r.path, r.hash) for r in second.files]


def test_existing_install_offers_repair_when_damaged():
    with tempfile.TemporaryDirectory() as tmpdir:
        decide = ScriptedDecisions()
        reconciler, source, project = _setup(tmpdir, decide)
        reconciler.install(_full(project, expansion_packs=[]))
        (project / CORE / "data" / "kb.md").unlink()

        result = reconciler.install(_full(project, expansion_packs=["game-dev"]))
        assert decide.asked[-1].choice_ids == ["repair", "reinstall", "expansions", "cancel"]
        assert result.status == InstallStatus.REPAIRED
        assert (project / CORE / "data" / "kb.md").is_file()


def test_existing_install_cancel():
    with tempfile.TemporaryDirectory() as tmpdir:
        decide = ScriptedDecisions(by_topic={DecisionTopic.EXISTING_INSTALL: "cancel"})
        reconciler, source, project = _setup(tmpdir, decide)
        reconciler.install(_full(project))
        before = (project / CORE / "install-manifest.yaml").read_text()

        result = reconciler.install(_full(project))
        assert result.cancelled
        assert (project / CORE / "install-manifest.yaml").read_text() == before


def test_legacy_install_alongside():
    with tempfile.TemporaryDirectory() as tmpdir:
        decide = ScriptedDecisions()
        reconciler, source, project = _setup(tmpdir, decide)
        (project / "bmad-agent").mkdir()
        (project / "bmad-agent" / "old.md").write_text("legacy")

        result = reconciler.install(_full(project))
        assert decide.asked[0].topic == DecisionTopic.LEGACY_INSTALL
        assert result.status == InstallStatus.INSTALLED
        assert (project / "bmad-agent" / "old.md").read_text() == "legacy"


def test_unmanaged_install_forced():
    with tempfile.TemporaryDirectory() as tmpdir:
        decide = ScriptedDecisions()
        reconciler, source, project = _setup(tmpdir, decide)
        (project / CORE).mkdir()
        (project / CORE / "stray.md").write_text("stray")

        result = reconciler.install(_full(project))
        assert decide.asked[0].topic == DecisionTopic.UNMANAGED_INSTALL
        assert result.status == InstallStatus.INSTALLED
        assert _manifest(project).version == "1.2.0"


def test_downgrade_is_offered_when_source_is_older():
    with tempfile.TemporaryDirectory() as tmpdir:
        decide = ScriptedDecisions()
        reconciler, source, project = _setup(tmpdir, decide)
        reconciler.install(_full(project))
        set_core_version(source, "1.0.0")

        result = reconciler.install(_full(project))
        assert decide.asked[-1].choice_ids == ["downgrade", "cancel"]
        assert result.status == InstallStatus.REINSTALLED
        assert _manifest(project).version == "1.0.0"


# ── Update ───────────────────────────────────────────────────────────


def _modified_update(tmpdir: str, answer: str):
    decide = ScriptedDecisions(by_topic={DecisionTopic.MODIFIED_FILES: answer})
    reconciler, source, project = _setup(tmpdir, decide)
    reconciler.install(_full(project))
    (project / CORE / "tasks" / "develop-story.md").write_text("my own notes")
    set_core_version(source, "1.3.0")
    result = reconciler.install(InstallRequest(install_type="update", directory=project))
    return result, source, project


def test_update_backup_overwrites():
    with tempfile.TemporaryDirectory() as tmpdir:
        result, source, project = _modified_update(tmpdir, "backup")

        assert result.status == InstallStatus.UPDATED
        assert result.backups == [f"{CORE}/tasks/develop-story.md.bak"]
        assert (project / CORE / "tasks" / "develop-story.md.bak").read_text() == "my own notes"
        assert (project / CORE / "tasks" / "develop-story.md").read_text() == "# Develop story\n"
        manifest = _manifest(project)
        assert manifest.version == "1.3.0"
        assert not any(r.modified for r in manifest.files)


def test_update_skip_keeps_user_file():
    with tempfile.TemporaryDirectory() as tmpdir:
        result, source, project = _modified_update(tmpdir, "skip")

        path = f"{CORE}/tasks/develop-story.md"
        assert (project / path).read_text() == "my own notes"
        record = _manifest(project).get(path)
        assert record.modified
        assert record.hash == fingerprint_bytes(b"# Develop story\n")
        assert path in result.files


def test_update_cancel_keeps_old_manifest():
    with tempfile.TemporaryDirectory() as tmpdir:
        result, source, project = _modified_update(tmpdir, "cancel")

        assert result.cancelled
        assert _manifest(project).version == "1.2.0"
        assert (project / CORE / "tasks" / "develop-story.md").read_text() == "my own notes"


def test_update_same_version_overwrites_without_asking():
    with tempfile.TemporaryDirectory() as tmpdir:
        decide = ScriptedDecisions()
        reconciler, source, project = _setup(tmpdir, decide)
        reconciler.install(_full(project))
        (project / CORE / "tasks" / "develop-story.md").write_text("edited")

        result = reconciler.update(InstallRequest(install_type="update", directory=project))
        assert result.status == InstallStatus.UPDATED
        assert decide.asked == []
        assert (project / CORE / "tasks" / "develop-story.md").read_text() == "# Develop story\n"


def test_update_keeps_recorded_install_type():
    with tempfile.TemporaryDirectory() as tmpdir:
        reconciler, source, project = _setup(tmpdir)
        reconciler.install(InstallRequest(install_type="team", directory=project, team="team-dev"))
        set_core_version(source, "2.0.0")

        reconciler.install(InstallRequest(install_type="update", directory=project))
        manifest = _manifest(project)
        assert manifest.install_type == InstallType.TEAM
        assert manifest.team == "team-dev"
        assert manifest.version == "2.0.0"


def test_update_without_install_fails():
    with tempfile.TemporaryDirectory() as tmpdir:
        reconciler, source, project = _setup(tmpdir)
        with pytest.raises(NotInstalledError):
            reconciler.install(InstallRequest(install_type="update", directory=project))


# ── Repair ───────────────────────────────────────────────────────────


def test_repair_restores_missing_and_modified():
    with tempfile.TemporaryDirectory() as tmpdir:
        reconciler, source, project = _setup(tmpdir)
        reconciler.install(_full(project))
        manifest_text = (project / CORE / "install-manifest.yaml").read_text()

        (project / CORE / "data" / "kb.md").unlink()
        (project / CORE / "tasks" / "review-story.md").write_text("scribbles")
        report = reconciler.check_integrity(project)
        assert report.missing == [f"{CORE}/data/kb.md"]
        assert report.modified == [f"{CORE}/tasks/review-story.md"]

        result = reconciler.repair(project)
        assert result.status == InstallStatus.REPAIRED
        assert sorted(result.restored) == [f"{CORE}/data/kb.md", f"{CORE}/tasks/review-story.md"]
        assert result.backups == [f"{CORE}/tasks/review-story.md.bak"]
        assert not reconciler.check_integrity(project).has_issues
        assert (project / CORE / "install-manifest.yaml").read_text() == manifest_text


def test_repair_keeps_language():
    with tempfile.TemporaryDirectory() as tmpdir:
        reconciler, source, project = _setup(tmpdir)
        reconciler.install(_full(project, language="de"))
        (project / CORE / "core-config.yaml").write_text("version: 0\n")

        reconciler.repair(project)
        assert not reconciler.check_integrity(project).has_issues


def test_repair_cleans_legacy_yml():
    with tempfile.TemporaryDirectory() as tmpdir:
        reconciler, source, project = _setup(tmpdir)
        reconciler.install(_full(project))
        write(project / CORE / "templates" / "story-tmpl.yml", "old: true\n")
        write(project / "deploy.yaml", "mine: true\n")
        write(project / "deploy.yml", "mine: too\n")

        result = reconciler.repair(project)
        assert result.removed == [f"{CORE}/templates/story-tmpl.yml"]
        assert not (project / CORE / "templates" / "story-tmpl.yml").exists()
        assert (project / "deploy.yml").read_text() == "mine: too\n"


def test_repeated_repair_backups_accumulate():
    with tempfile.TemporaryDirectory() as tmpdir:
        reconciler, source, project = _setup(tmpdir)
        reconciler.install(_full(project))
        target = project / CORE / "agents" / "dev.md"

        for _ in range(2):
            target.write_text("edited")
            reconciler.repair(project)

        assert (target.parent / "dev.md.bak").is_file()
        assert (target.parent / "dev.md.bak1").is_file()


# ── Expansion packs ──────────────────────────────────────────────────


def test_expansion_pack_install_with_backfill():
    with tempfile.TemporaryDirectory() as tmpdir:
        reconciler, source, project = _setup(tmpdir)
        result = reconciler.install_expansion_packs(project, ["game-dev"])

        pack = project / ".game-dev"
        assert (pack / "config.yaml").is_file()
        assert (pack / "README.md").is_file()
        assert (pack / "agents" / "game-designer.md").is_file()
        # Team members and their dependencies come from the core
        assert (pack / "agents" / "ai-squad-orchestrator.md").is_file()
        assert (pack / "agents" / "dev.md").is_file()
        assert (pack / "data" / "kb.md").is_file()
        assert (pack / "tasks" / "develop-story.md").is_file()
        # Shared files are rendered with the pack marker
        assert (pack / "tasks" / "create-doc.md").read_text() == "Shared create doc in .game-dev.\n"

        manifest = _manifest(project, ".game-dev")
        assert manifest.install_type == InstallType.EXPANSION_PACK
        assert manifest.expansion_pack_id == "game-dev"
        assert manifest.expansion_pack_name == "game-dev"
        assert ".game-dev/agents/dev.md" in manifest.paths
        assert ".game-dev/data/kb.md" in manifest.paths
        assert result.pack_manifests["game-dev"].version == "1.0.0"
        assert any("checklists/nowhere" in w for w in result.warnings)

        store = ManifestStore.for_pack(project, "game-dev")
        assert not store.check_integrity(manifest).has_issues
        assert not (project / CORE).exists()


def test_full_install_with_pack():
    with tempfile.TemporaryDirectory() as tmpdir:
        reconciler, source, project = _setup(tmpdir)
        result = reconciler.install(_full(project, expansion_packs=["game-dev", "nope"]))

        assert _manifest(project).expansion_packs == ["game-dev", "nope"]
        assert _manifest(project, ".game-dev").version == "1.0.0"
        assert "Expansion pack nope not found, skipping" in result.warnings


def test_expansion_only_writes_no_core_manifest():
    with tempfile.TemporaryDirectory() as tmpdir:
        reconciler, source, project = _setup(tmpdir)
        result = reconciler.install(
            InstallRequest(install_type="expansion-only", directory=project,
                           expansion_packs=["game-dev"])
        )
        assert result.manifest is None
        assert not (project / CORE).exists()
        assert (project / ".game-dev" / "install-manifest.yaml").is_file()


def test_existing_pack_same_version_choices():
    with tempfile.TemporaryDirectory() as tmpdir:
        decide = ScriptedDecisions(by_topic={DecisionTopic.EXPANSION_PACK: "skip"})
        reconciler, source, project = _setup(tmpdir, decide)
        reconciler.install_expansion_packs(project, ["game-dev"])
        (project / ".game-dev" / "tasks" / "game-task.md").write_text("mine")

        result = reconciler.install_expansion_packs(project, ["game-dev"])
        assert decide.asked[-1].choice_ids == ["repair", "overwrite", "skip", "cancel"]
        assert result.files == []
        assert (project / ".game-dev" / "tasks" / "game-task.md").read_text() == "mine"


def test_existing_pack_repair():
    with tempfile.TemporaryDirectory() as tmpdir:
        reconciler, source, project = _setup(tmpdir)
        reconciler.install_expansion_packs(project, ["game-dev"])
        (project / ".game-dev" / "data" / "kb.md").unlink()
        (project / ".game-dev" / "tasks" / "create-doc.md").write_text("mine")

        result = reconciler.install_expansion_packs(project, ["game-dev"])
        assert sorted(result.restored) == [".game-dev/data/kb.md", ".game-dev/tasks/create-doc.md"]
        assert result.backups == [".game-dev/tasks/create-doc.md.bak"]
        manifest = _manifest(project, ".game-dev")
        assert not ManifestStore.for_pack(project, "game-dev").check_integrity(manifest).has_issues


def test_existing_pack_upgrade_replaces():
    with tempfile.TemporaryDirectory() as tmpdir:
        decide = ScriptedDecisions()
        reconciler, source, project = _setup(tmpdir, decide)
        reconciler.install_expansion_packs(project, ["game-dev"])
        write(project / ".game-dev" / "leftover.md", "old")
        set_pack_version(source, "game-dev", "1.1.0")

        reconciler.install_expansion_packs(project, ["game-dev"])
        assert decide.asked[-1].choice_ids == ["upgrade", "skip"]
        assert _manifest(project, ".game-dev").version == "1.1.0"
        assert not (project / ".game-dev" / "leftover.md").exists()


def test_existing_newer_pack_defaults_to_skip():
    with tempfile.TemporaryDirectory() as tmpdir:
        decide = ScriptedDecisions()
        reconciler, source, project = _setup(tmpdir, decide)
        set_pack_version(source, "game-dev", "2.0.0")
        reconciler.install_expansion_packs(project, ["game-dev"])
        set_pack_version(source, "game-dev", "1.0.0")

        reconciler.install_expansion_packs(project, ["game-dev"])
        assert decide.asked[-1].choice_ids == ["skip", "downgrade", "cancel"]
        assert _manifest(project, ".game-dev").version == "2.0.0"


def test_pack_cancel_happens_before_core_is_written():
    with tempfile.TemporaryDirectory() as tmpdir:
        decide = ScriptedDecisions(by_topic={DecisionTopic.EXPANSION_PACK: "cancel"})
        reconciler, source, project = _setup(tmpdir, decide)
        reconciler.install_expansion_packs(project, ["game-dev"])
        before = (project / ".game-dev" / "install-manifest.yaml").read_text()

        result = reconciler.install(_full(project, expansion_packs=["game-dev"]))
        assert result.cancelled
        assert not (project / CORE).exists()
        assert (project / ".game-dev" / "install-manifest.yaml").read_text() == before


# ── Status ───────────────────────────────────────────────────────────


def test_status_reports_versions_and_packs():
    with tempfile.TemporaryDirectory() as tmpdir:
        reconciler, source, project = _setup(tmpdir)
        reconciler.install(_full(project, expansion_packs=["game-dev"]))
        set_core_version(source, "1.3.0")

        report = reconciler.status(project)
        assert report.manifest.version == "1.2.0"
        assert report.available_version == "1.3.0"
        assert report.version_compare < 0
        assert not report.integrity.has_issues
        assert list(report.expansion_packs) == ["game-dev"]
        assert not report.pack_integrity["game-dev"].has_issues


def test_status_without_install():
    with tempfile.TemporaryDirectory() as tmpdir:
        reconciler, source, project = _setup(tmpdir)
        with pytest.raises(NotInstalledError):
            reconciler.status(project)
