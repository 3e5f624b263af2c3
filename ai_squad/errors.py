"""Error taxonomy shared by the resolver and the reconciler."""

from __future__ import annotations


class SquadError(RuntimeError):
    """Base class for installer errors surfaced to the caller."""


class UnitNotFoundError(SquadError):
    """Raised when an agent, team or expansion pack does not exist in the source store."""

    def __init__(self, kind: str, unit_id: str):
        super().__init__(f"{kind} '{unit_id}' not found")
        self.kind = kind
        self.unit_id = unit_id


class UnitDefinitionError(SquadError):
    """Raised when a unit definition has no parseable structured header."""

    def __init__(self, unit_id: str, message: str, path: str = ""):
        super().__init__(f"{unit_id}: {message}")
        self.unit_id = unit_id
        self.path = path


class ManifestError(SquadError):
    """Raised when an install manifest exists but cannot be parsed."""

    def __init__(self, path: str, message: str):
        super().__init__(f"{path}: {message}")
        self.path = path


class NotInstalledError(SquadError):
    """Raised when an operation needs a managed install and none is present."""


class InstallCancelled(SquadError):
    """Raised when a decision resolves to cancel; unwinds to the top-level install."""

    def __init__(self, reason: str = "Installation cancelled."):
        super().__init__(reason)
