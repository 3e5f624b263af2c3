"""Dependency resolver — the closed set of files an agent or team needs.

Resolution reads the unit's structured header, expands team members,
and looks up every declared resource in the primary store, falling back
to the shared store. A resource found in neither store is a warning,
never an error: the unit still resolves, one file short.

All lookups within one resolution go through a :class:`ResolutionCache`
passed down the call tree, so a resource shared by several members is
read from disk once and nothing is cached between calls.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from ai_squad.errors import SquadError, UnitNotFoundError
from ai_squad.resolve.definitions import (
    WILDCARD,
    UnitDefinition,
    load_agent_file,
    load_team_file,
)
from ai_squad.resolve.source_store import RESOURCE_TYPES, SourceStore

logger = logging.getLogger(__name__)


@dataclass
class ResolvedResource:
    """A resource file located in one of the stores."""

    type: str
    id: str
    path: Path
    content: str  # Decoded for inspection only; installs copy the source bytes
    shared: bool = False  # Came from the shared fallback store

    @property
    def key(self) -> tuple[str, str]:
        return (self.type, self.id)

    @property
    def install_path(self) -> str:
        """Path relative to the unit marker directory."""
        return f"{self.type}/{self.path.name}"


@dataclass
class ResolvedDependencySet:
    """Everything one unit needs, deduplicated."""

    unit: str
    kind: str  # agent | team
    definition: UnitDefinition
    members: list[UnitDefinition] = field(default_factory=list)
    resources: dict[tuple[str, str], ResolvedResource] = field(default_factory=dict)
    missing: list[tuple[str, str]] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def add_resource(self, resource: ResolvedResource) -> None:
        self.resources.setdefault(resource.key, resource)

    def finalize(self) -> None:
        """Drop entries that resolved to a path already present under another id."""
        seen: set[Path] = set()
        deduped = {}
        for key, resource in self.resources.items():
            if resource.path in seen:
                continue
            seen.add(resource.path)
            deduped[key] = resource
        self.resources = deduped

    @property
    def resource_list(self) -> list[ResolvedResource]:
        return list(self.resources.values())


@dataclass
class ResolutionCache:
    """Per-resolution memo of loaded definitions and resources."""

    agents: dict[str, UnitDefinition] = field(default_factory=dict)
    resources: dict[tuple[str, str], ResolvedResource | None] = field(default_factory=dict)
    reads: int = 0


@dataclass
class BatchResolution:
    """Results of resolving several units; failures do not stop siblings."""

    results: list[ResolvedDependencySet] = field(default_factory=list)
    errors: dict[str, SquadError] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors


class DependencyResolver:
    """Resolves agents and teams against a :class:`SourceStore`."""

    def __init__(self, store: SourceStore):
        self.store = store
        self.settings = store.settings

    def resolve_unit(self, unit_id: str, kind: str = "agent",
                     cache: ResolutionCache | None = None) -> ResolvedDependencySet:
        """Resolve an agent or a team by id."""
        if kind == "team":
            return self.resolve_team(unit_id, cache)
        if kind == "agent":
            return self.resolve_agent(unit_id, cache)
        raise ValueError(f"Unknown unit kind: {kind!r}")

    def resolve_many(self, units: list[tuple[str, str]]) -> BatchResolution:
        """Resolve ``(unit_id, kind)`` pairs sharing one cache.

        A broken unit is recorded in ``errors`` and its siblings still resolve.
        """
        cache = ResolutionCache()
        batch = BatchResolution()
        for unit_id, kind in units:
            try:
                batch.results.append(self.resolve_unit(unit_id, kind, cache))
            except SquadError as e:
                logger.warning("Could not resolve %s %s: %s", kind, unit_id, e)
                batch.errors[unit_id] = e
        return batch

    # -- agents ----------------------------------------------------------

    def resolve_agent(self, agent_id: str,
                      cache: ResolutionCache | None = None) -> ResolvedDependencySet:
        cache = cache if cache is not None else ResolutionCache()
        definition = self.load_agent(agent_id, cache)
        resolved = ResolvedDependencySet(
            unit=agent_id, kind="agent", definition=definition, members=[definition]
        )
        self._collect_agent_resources(definition, resolved, cache)
        resolved.finalize()
        return resolved

    def load_agent(self, agent_id: str, cache: ResolutionCache) -> UnitDefinition:
        if agent_id in cache.agents:
            return cache.agents[agent_id]
        path = self.store.agent_path(agent_id)
        if not path.is_file():
            raise UnitNotFoundError("agent", agent_id)
        cache.reads += 1
        definition = load_agent_file(path, agent_id)
        cache.agents[agent_id] = definition
        return definition

    def _collect_agent_resources(self, definition: UnitDefinition,
                                 resolved: ResolvedDependencySet,
                                 cache: ResolutionCache) -> None:
        deps = definition.dependencies
        for resource_type in RESOURCE_TYPES:
            for resource_id in deps.get(resource_type, []):
                self._add(resource_type, resource_id, resolved, cache)

    # -- teams -----------------------------------------------------------

    def resolve_team(self, team_id: str,
                     cache: ResolutionCache | None = None) -> ResolvedDependencySet:
        cache = cache if cache is not None else ResolutionCache()
        path = self.store.team_path(team_id)
        if not path.is_file():
            raise UnitNotFoundError("team", team_id)
        cache.reads += 1
        team = load_team_file(path, team_id)

        resolved = ResolvedDependencySet(unit=team_id, kind="team", definition=team)
        for agent_id in self.expand_members(team):
            member = self.load_agent(agent_id, cache)
            resolved.members.append(member)
            self._collect_agent_resources(member, resolved, cache)

        for workflow_id in team.config.get("workflows", []):
            self._add("workflows", workflow_id, resolved, cache)

        resolved.finalize()
        return resolved

    def expand_members(self, team: UnitDefinition) -> list[str]:
        """Member agent ids in install order, coordinator first.

        The wildcard pulls in every known agent except the meta agent.
        The coordinator and meta agents are never listed twice.
        """
        coordinator = self.settings.coordinator_agent
        meta = self.settings.meta_agent

        requested = list(team.config.get("agents", []))
        if WILDCARD in requested:
            requested = [a for a in requested if a != WILDCARD]
            for agent_id in self.store.list_agents():
                if agent_id not in requested and agent_id != meta:
                    requested.append(agent_id)

        members = [coordinator]
        for agent_id in requested:
            if agent_id in (coordinator, meta) or agent_id in members:
                continue
            members.append(agent_id)
        return members

    # -- resources -------------------------------------------------------

    def _add(self, resource_type: str, resource_id: str,
             resolved: ResolvedDependencySet, cache: ResolutionCache) -> None:
        resource = self.load_resource(resource_type, resource_id, cache)
        if resource is None:
            key = (resource_type, resource_id)
            if key not in resolved.missing:
                resolved.missing.append(key)
                resolved.warnings.append(f"Resource not found: {resource_type}/{resource_id}")
            return
        resolved.add_resource(resource)

    def load_resource(self, resource_type: str, resource_id: str,
                      cache: ResolutionCache) -> ResolvedResource | None:
        """Find a resource in the primary store, then the shared store (memoized)."""
        key = (resource_type, resource_id)
        if key in cache.resources:
            return cache.resources[key]

        found = self.store.find_resource(resource_type, resource_id)
        if found is None:
            logger.warning("Resource not found: %s/%s", resource_type, resource_id)
            cache.resources[key] = None
            return None

        path, shared = found
        cache.reads += 1
        resource = ResolvedResource(
            type=resource_type,
            id=resource_id,
            path=path,
            content=path.read_bytes().decode("utf-8", errors="replace"),
            shared=shared,
        )
        cache.resources[key] = resource
        return resource
