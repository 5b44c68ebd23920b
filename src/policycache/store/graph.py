"""Dependency graph of entity references.

Tracks directed edges (parent, field) -> child for every reference stored in
the cache. The graph is indexed both ways so that cascade invalidation can
walk upward (who references this entity) and staleness checks can walk
downward (what does this entity reference).

Cyclic references are legal. Traversals keep a visited set per invocation.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable, Iterator

from policycache.core.types import DependencyEdge

logger = logging.getLogger(__name__)


class DependencyGraph:
    """Bidirectional index of reference edges between entities."""

    def __init__(self) -> None:
        # parent -> field -> children
        self._children: dict[str, dict[str, set[str]]] = defaultdict(lambda: defaultdict(set))
        # child -> parent -> fields
        self._parents: dict[str, dict[str, set[str]]] = defaultdict(lambda: defaultdict(set))

    def add_edge(self, parent: str, field: str, child: str) -> None:
        """Record that parent.field references child."""
        self._children[parent][field].add(child)
        self._parents[child][parent].add(field)

    def set_edges(self, parent: str, field: str, children: Iterable[str]) -> None:
        """Replace every edge from parent.field with edges to children."""
        self.remove_edges_from(parent, field)
        for child in children:
            self.add_edge(parent, field, child)

    def remove_edges_from(self, parent: str, field: str) -> None:
        """Remove every edge leaving parent.field."""
        by_field = self._children.get(parent)
        if not by_field or field not in by_field:
            return

        for child in by_field.pop(field):
            self._unlink_parent(child, parent, field)

        if not by_field:
            del self._children[parent]

    def remove_parent(self, parent: str) -> None:
        """Remove every outgoing edge of parent (used on eviction)."""
        by_field = self._children.pop(parent, None)
        if not by_field:
            return

        for field, children in by_field.items():
            for child in children:
                self._unlink_parent(child, parent, field)

    def _unlink_parent(self, child: str, parent: str, field: str) -> None:
        by_parent = self._parents.get(child)
        if by_parent is None:
            return
        fields = by_parent.get(parent)
        if fields is None:
            return
        fields.discard(field)
        if not fields:
            del by_parent[parent]
        if not by_parent:
            del self._parents[child]

    def dependents_of(self, key: str) -> set[str]:
        """Parent entity keys that hold a reference to key."""
        by_parent = self._parents.get(key)
        return set(by_parent) if by_parent else set()

    def referents_of(self, key: str) -> set[str]:
        """Child entity keys referenced by any field of key."""
        by_field = self._children.get(key)
        if not by_field:
            return set()
        result: set[str] = set()
        for children in by_field.values():
            result.update(children)
        return result

    def children_of(self, parent: str, field: str) -> set[str]:
        """Child entity keys referenced by parent.field."""
        by_field = self._children.get(parent)
        if not by_field:
            return set()
        return set(by_field.get(field, ()))

    def fields_referencing(self, parent: str, child: str) -> set[str]:
        """Fields of parent whose value references child."""
        by_parent = self._parents.get(child)
        if not by_parent:
            return set()
        return set(by_parent.get(parent, ()))

    def walk_dependents(self, key: str) -> Iterator[tuple[str, str, set[str]]]:
        """Breadth-first walk upward from key.

        Yields (child, parent, fields) for every edge reached. Each entity is
        expanded at most once, so cycles terminate.
        """
        visited = {key}
        frontier = [key]
        while frontier:
            child = frontier.pop(0)
            for parent in sorted(self.dependents_of(child)):
                yield child, parent, self.fields_referencing(parent, child)
                if parent not in visited:
                    visited.add(parent)
                    frontier.append(parent)

    def reachable_from(self, roots: Iterable[str]) -> set[str]:
        """Every key reachable downward from roots (roots included)."""
        visited: set[str] = set()
        stack = list(roots)
        while stack:
            key = stack.pop()
            if key in visited:
                continue
            visited.add(key)
            stack.extend(self.referents_of(key) - visited)
        return visited

    def edges(self) -> Iterator[DependencyEdge]:
        """Iterate over all edges."""
        for parent, by_field in self._children.items():
            for field, children in by_field.items():
                for child in children:
                    yield DependencyEdge(parent=parent, field=field, child=child)

    def clear(self) -> None:
        self._children.clear()
        self._parents.clear()

    def __len__(self) -> int:
        return sum(
            len(children) for by_field in self._children.values() for children in by_field.values()
        )
