"""AI Squad CLI — install, update and inspect AI Squad content in a project."""

import click
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table

from ai_squad import __version__

console = Console()


class PromptDecisions:
    """Interactive decision handler backed by rich prompts."""

    def __init__(self, out: Console | None = None):
        self.console = out or console

    def __call__(self, request) -> str:
        self.console.print(f"\n[bold yellow]?[/] {request.message}")
        for line in request.details:
            self.console.print(f"  [dim]{line}[/]")
        for choice in request.choices:
            self.console.print(f"  [cyan]{choice.id}[/] — {choice.label}")
        return Prompt.ask(
            "Choose",
            choices=request.choice_ids,
            default=request.default,
            console=self.console,
        )


@click.group()
@click.version_option(version=__version__)
@click.option("--source", "-s", default=None, envvar="AI_SQUAD_SOURCE",
              help="Directory holding ai-squad-core/, common/ and expansion-packs/")
@click.option("--verbose", "-v", count=True, help="Show installer progress (-vv for debug)")
@click.pass_context
def main(ctx, source: str | None, verbose: int):
    """AI Squad — install agent teams into your project.

    Installs the core agents, single agents, teams and expansion packs,
    keeping a manifest so later runs can update or repair what was
    installed without touching your own files.
    """
    from ai_squad.config import InstallerSettings
    from ai_squad.utils.log import setup_logging

    setup_logging({0: "WARNING", 1: "INFO"}.get(verbose, "DEBUG"))
    ctx.obj = InstallerSettings.from_env(source)


def _reconciler(settings, yes: bool):
    from ai_squad.install.decisions import accept_defaults
    from ai_squad.install.reconciler import Reconciler

    return Reconciler(settings, decide=accept_defaults if yes else PromptDecisions())


def _report(result) -> None:
    if result.cancelled:
        console.print(f"\n[yellow]{result.message or 'Cancelled.'}[/]")
        return

    console.print(f"\n[green]v[/] {result.status.value.capitalize()}: {result.install_dir}")
    if result.manifest:
        console.print(f"  Core {result.manifest.version} ({result.manifest.install_type.value}), "
                      f"{len(result.manifest.files)} files tracked")
    for pack_id, manifest in result.pack_manifests.items():
        console.print(f"  Expansion pack {pack_id} {manifest.version}, {len(manifest.files)} files")
    if result.restored:
        console.print(f"  Restored {len(result.restored)} file(s)")
    for backup in result.backups:
        console.print(f"  [dim]Backup:[/] {backup}")
    for removed in result.removed:
        console.print(f"  [dim]Removed legacy:[/] {removed}")
    for warning in result.warnings:
        console.print(f"  [yellow]![/] {warning}")


def _run(operation, *args):
    from ai_squad.errors import SquadError

    try:
        result = operation(*args)
    except (SquadError, ValueError) as e:
        console.print(f"  [red]Error:[/] {e}")
        raise SystemExit(1)
    _report(result)
    return result


# ── Install ──────────────────────────────────────────────────────────


@main.command()
@click.option("--full", "full", is_flag=True, help="Install the complete core")
@click.option("--agent", "-a", default=None, help="Install a single agent and its dependencies")
@click.option("--team", "-t", default=None, help="Install a team and its dependencies")
@click.option("--expansion-only", is_flag=True, help="Install only the given expansion packs")
@click.option("--directory", "-d", default=".", help="Project directory to install into")
@click.option("--ide", "ides", multiple=True, help="IDE to record in the manifest")
@click.option("--expansion-packs", "-e", "packs", multiple=True, help="Expansion pack id")
@click.option("--language", "-l", default=None, help="Default language written to core-config.yaml")
@click.option("--yes", "-y", is_flag=True, help="Accept the default answer to every question")
@click.pass_obj
def install(settings, full: bool, agent: str | None, team: str | None, expansion_only: bool,
            directory: str, ides: tuple, packs: tuple, language: str | None, yes: bool):
    """Install AI Squad into a project directory."""
    from ai_squad.models.install_request import InstallRequest

    selected = [name for name, on in (("--full", full), ("--agent", agent),
                                      ("--team", team), ("--expansion-only", expansion_only)) if on]
    if len(selected) > 1:
        console.print(f"  [red]Error:[/] choose one of {', '.join(selected)}")
        raise SystemExit(2)

    if agent:
        install_type = "single-agent"
    elif team:
        install_type = "team"
    elif expansion_only:
        install_type = "expansion-only"
    else:
        install_type = "full"

    console.print(f"\n[bold blue]AI Squad[/] — Installing ({install_type}) into {directory}\n")

    try:
        request = InstallRequest(
            install_type=install_type,
            directory=directory,
            agent=agent,
            team=team,
            language=language,
            ides=list(ides),
            expansion_packs=list(packs),
        )
    except ValueError as e:
        console.print(f"  [red]Error:[/] {e}")
        raise SystemExit(2)

    _run(_reconciler(settings, yes).install, request)


# ── Update ───────────────────────────────────────────────────────────


@main.command()
@click.option("--directory", "-d", default=".", help="Project directory holding the install")
@click.option("--yes", "-y", is_flag=True, help="Accept the default answer to every question")
@click.pass_obj
def update(settings, directory: str, yes: bool):
    """Update an existing installation to the available version."""
    from ai_squad.install.state import find_installation
    from ai_squad.models.install_request import UPDATE, InstallRequest

    found = find_installation(directory, settings.core_marker, settings.manifest_file)
    if found is None:
        console.print(f"  [red]Error:[/] No managed installation found in or above {directory}")
        raise SystemExit(1)

    console.print(f"\n[bold blue]AI Squad[/] — Updating: {found}\n")
    _run(_reconciler(settings, yes).install, InstallRequest(install_type=UPDATE, directory=found))


# ── Status ───────────────────────────────────────────────────────────


@main.command()
@click.option("--directory", "-d", default=".", help="Project directory holding the install")
@click.pass_obj
def status(settings, directory: str):
    """Show what is installed and whether it still matches the manifest."""
    from ai_squad.errors import SquadError
    from ai_squad.install.reconciler import Reconciler
    from ai_squad.install.state import find_installation

    found = find_installation(directory, settings.core_marker, settings.manifest_file)
    if found is None:
        console.print(f"[yellow]No managed installation found in or above {directory}.[/]")
        raise SystemExit(1)

    try:
        report = Reconciler(settings).status(found)
    except SquadError as e:
        console.print(f"  [red]Error:[/] {e}")
        raise SystemExit(1)

    manifest = report.manifest
    if report.version_compare < 0:
        freshness = f"[yellow]update available ({report.available_version})[/]"
    elif report.version_compare > 0:
        freshness = f"[yellow]newer than source ({report.available_version})[/]"
    else:
        freshness = "[green]up to date[/]"

    lines = [
        f"Directory: {report.install_dir}",
        f"Version: {manifest.version} — {freshness}",
        f"Type: {manifest.install_type.value}",
        f"Installed: {manifest.installed_at}",
        f"Files: {len(manifest.files)} tracked, {report.integrity.summary()}",
    ]
    if manifest.agent:
        lines.append(f"Agent: {manifest.agent}")
    if manifest.team:
        lines.append(f"Team: {manifest.team}")
    if manifest.ides_setup:
        lines.append(f"IDEs: {', '.join(manifest.ides_setup)}")
    console.print(Panel("\n".join(lines), title="AI Squad installation"))

    for path in report.integrity.missing:
        console.print(f"  [red]missing[/]  {path}")
    for path in report.integrity.modified:
        console.print(f"  [yellow]modified[/] {path}")

    if report.expansion_packs:
        table = Table(title="Expansion packs")
        table.add_column("Pack", style="cyan")
        table.add_column("Version")
        table.add_column("Integrity")
        for pack_id, pack in report.expansion_packs.items():
            version = pack.manifest.version if pack.manifest else "[dim]no manifest[/]"
            integrity = report.pack_integrity.get(pack_id)
            table.add_row(pack_id, version, integrity.summary() if integrity else "-")
        console.print(table)


# ── Listings ─────────────────────────────────────────────────────────


@main.command(name="list-agents")
@click.pass_obj
def list_agents(settings):
    """List agents available in the source."""
    from ai_squad.errors import SquadError
    from ai_squad.resolve.definitions import load_agent_file
    from ai_squad.resolve.source_store import SourceStore

    store = SourceStore(settings)
    agents = store.list_agents()
    if not agents:
        console.print("[yellow]No agents found.[/]")
        return

    table = Table(title=f"Agents ({len(agents)})")
    table.add_column("Id", style="cyan")
    table.add_column("Title")
    for agent_id in agents:
        try:
            config = load_agent_file(store.agent_path(agent_id)).config
        except SquadError:
            table.add_row(agent_id, "[red]unparseable[/]")
            continue
        meta = config.get("agent") if isinstance(config.get("agent"), dict) else {}
        table.add_row(agent_id, str(meta.get("title") or meta.get("name") or ""))
    console.print(table)


@main.command(name="list-teams")
@click.pass_obj
def list_teams(settings):
    """List teams available in the source."""
    from ai_squad.errors import SquadError
    from ai_squad.resolve.definitions import load_team_file
    from ai_squad.resolve.source_store import SourceStore

    store = SourceStore(settings)
    teams = store.list_teams()
    if not teams:
        console.print("[yellow]No teams found.[/]")
        return

    table = Table(title=f"Teams ({len(teams)})")
    table.add_column("Id", style="cyan")
    table.add_column("Agents")
    table.add_column("Description")
    for team_id in teams:
        try:
            config = load_team_file(store.team_path(team_id)).config
        except SquadError:
            table.add_row(team_id, "", "[red]unparseable[/]")
            continue
        bundle = config.get("bundle") if isinstance(config.get("bundle"), dict) else {}
        table.add_row(team_id, ", ".join(config["agents"]), str(bundle.get("description", ""))[:50])
    console.print(table)


@main.command(name="list-expansions")
@click.pass_obj
def list_expansions(settings):
    """List expansion packs available in the source."""
    from ai_squad.resolve.source_store import SourceStore

    packs = SourceStore(settings).list_expansion_packs()
    if not packs:
        console.print("[yellow]No expansion packs found.[/]")
        return

    table = Table(title=f"Expansion packs ({len(packs)})")
    table.add_column("Id", style="cyan")
    table.add_column("Name")
    table.add_column("Version")
    table.add_column("Description")
    for pack in packs:
        table.add_row(pack.id, pack.name, pack.version, pack.description[:50])
    console.print(table)


if __name__ == "__main__":
    main()
