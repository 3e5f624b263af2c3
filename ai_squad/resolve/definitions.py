"""Unit definitions — structured headers of agents and teams.

Agents are markdown documents whose configuration lives in the first
fenced ```yaml block (front matter is accepted too). Teams are plain
YAML documents listing their member agents and workflows.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from ai_squad.errors import UnitDefinitionError
from ai_squad.resolve.source_store import RESOURCE_TYPES

_YAML_BLOCK_RE = re.compile(r"```ya?ml[^\n]*\n(.*?)```", re.DOTALL)
_FRONT_MATTER_RE = re.compile(r"\A---\s*\n(.*?)\n---\s*(?:\n|\Z)", re.DOTALL)

WILDCARD = "*"


@dataclass
class UnitDefinition:
    """A parsed agent or team definition."""

    id: str
    kind: str  # agent | team
    path: Path
    content: str
    config: dict = field(default_factory=dict)

    @property
    def dependencies(self) -> dict[str, list[str]]:
        """Declared dependency ids grouped by resource type (known groups only)."""
        raw = self.config.get("dependencies") or {}
        if not isinstance(raw, dict):
            return {}
        return {
            t: [str(d) for d in (raw.get(t) or [])]
            for t in RESOURCE_TYPES
            if raw.get(t)
        }


def extract_yaml_header(content: str) -> str | None:
    """Return the YAML text of an agent document, or None when it has none."""
    match = _YAML_BLOCK_RE.search(content)
    if match:
        return match.group(1)
    match = _FRONT_MATTER_RE.match(content)
    if match:
        return match.group(1)
    return None


def parse_agent(agent_id: str, path: Path, content: str) -> UnitDefinition:
    """Parse an agent document; a missing or non-mapping header is fatal for the agent."""
    header = extract_yaml_header(content)
    if header is None:
        raise UnitDefinitionError(agent_id, "no YAML configuration found", str(path))

    try:
        config = yaml.safe_load(header)
    except yaml.YAMLError as e:
        raise UnitDefinitionError(agent_id, f"invalid YAML header: {e}", str(path)) from e

    if not isinstance(config, dict):
        raise UnitDefinitionError(agent_id, "YAML header is not a mapping", str(path))

    return UnitDefinition(id=agent_id, kind="agent", path=path, content=content, config=config)


def parse_team(team_id: str, path: Path, content: str) -> UnitDefinition:
    """Parse a team document; it must be a mapping with a list of agents."""
    try:
        config = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise UnitDefinitionError(team_id, f"invalid team YAML: {e}", str(path)) from e

    if not isinstance(config, dict):
        raise UnitDefinitionError(team_id, "team definition is not a mapping", str(path))

    agents = config.get("agents", [])
    if agents is None:
        agents = []
    if not isinstance(agents, list):
        raise UnitDefinitionError(team_id, "'agents' must be a list", str(path))
    workflows = config.get("workflows") or []
    if not isinstance(workflows, list):
        raise UnitDefinitionError(team_id, "'workflows' must be a list", str(path))

    config["agents"] = [str(a) for a in agents]
    config["workflows"] = [str(w) for w in workflows]
    return UnitDefinition(id=team_id, kind="team", path=path, content=content, config=config)


def load_agent_file(path: Path, agent_id: str | None = None) -> UnitDefinition:
    unit_id = agent_id or path.stem
    return parse_agent(unit_id, path, _read_text(unit_id, path))


def load_team_file(path: Path, team_id: str | None = None) -> UnitDefinition:
    unit_id = team_id or path.stem
    return parse_team(unit_id, path, _read_text(unit_id, path))


def _read_text(unit_id: str, path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise UnitDefinitionError(unit_id, f"not UTF-8 text: {e}", str(path)) from e
