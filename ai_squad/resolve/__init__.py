"""Dependency resolution — which source files an agent or team transitively needs.

The resolver reads unit headers from the source store, expands team
members, and locates each declared resource in the primary store or the
shared fallback store.
"""

from ai_squad.resolve.resolver import (
    BatchResolution,
    DependencyResolver,
    ResolutionCache,
    ResolvedDependencySet,
    ResolvedResource,
)
from ai_squad.resolve.source_store import ExpansionPackInfo, SourceStore

__all__ = [
    "BatchResolution",
    "DependencyResolver",
    "ExpansionPackInfo",
    "ResolutionCache",
    "ResolvedDependencySet",
    "ResolvedResource",
    "SourceStore",
]
