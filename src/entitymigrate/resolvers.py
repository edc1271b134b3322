"""Ordered strategies resolving a relationship's direction and edge label.

Each resolver returns a :class:`Resolution` or ``None``; the chain asks them
in order and the first answer wins. New sources of truth slot in ahead of
the heuristics without touching them.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Protocol

from entitymigrate.config import (
    DEFAULT_DIRECTION,
    DEFAULT_RELATIONSHIP,
    HEURISTIC_RELATIONSHIPS,
)
from entitymigrate.models import CypherRelationship, Direction


@dataclass(frozen=True)
class Resolution:
    direction: Direction
    relationship: str
    source: str  # "extracted", "heuristic" or "default"


class RelationshipResolver(Protocol):
    def resolve(self, name: str) -> Resolution | None: ...


class ExtractedResolver:
    """Edges recovered from query text."""

    def __init__(self, relationships: Iterable[CypherRelationship]):
        self._by_name: dict[str, CypherRelationship] = {}
        for rel in relationships:
            self._by_name.setdefault(rel.name, rel)

    def resolve(self, name: str) -> Resolution | None:
        rel = self._by_name.get(name)
        if rel is None:
            return None
        return Resolution(rel.direction, rel.relationship_type, "extracted")


class HeuristicResolver:
    """Fixed name -> (direction, edge label) table."""

    def __init__(self, table: dict[str, tuple[str, str]] | None = None):
        self._table = HEURISTIC_RELATIONSHIPS if table is None else table

    def resolve(self, name: str) -> Resolution | None:
        entry = self._table.get(name)
        if entry is None:
            return None
        direction, relationship = entry
        return Resolution(direction, relationship, "heuristic")


class DefaultResolver:
    """Generic related-to edge for names nothing else recognises."""

    def resolve(self, name: str) -> Resolution | None:
        return Resolution(DEFAULT_DIRECTION, DEFAULT_RELATIONSHIP, "default")


class ResolverChain:
    def __init__(self, resolvers: Sequence[RelationshipResolver]):
        self.resolvers = list(resolvers)

    def resolve(self, name: str) -> Resolution:
        for resolver in self.resolvers:
            found = resolver.resolve(name)
            if found is not None:
                return found
        return DefaultResolver().resolve(name)


def default_chain(
    extracted: Iterable[CypherRelationship] = (),
) -> ResolverChain:
    return ResolverChain(
        [ExtractedResolver(extracted), HeuristicResolver(), DefaultResolver()]
    )
