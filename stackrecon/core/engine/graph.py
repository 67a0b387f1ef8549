"""
Dependency graph — stack ordering derived from references.

An edge A → B means "A imports from B", so B must be deployed first.
Pure functions over names; no I/O.

Cycle detection is a depth-first search with white/grey/black coloring.
When a back edge is found, the shortest cycle through the stack it
points at is reported, so the error names only the stacks that matter.
"""

from __future__ import annotations

import heapq
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Iterable

from stackrecon.core.errors import CycleError
from stackrecon.core.models.export import DependencyEdge, Reference

logger = logging.getLogger(__name__)

_WHITE, _GREY, _BLACK = 0, 1, 2


@dataclass
class DependencyGraph:
    """Validated, acyclic stack dependency graph.

    Attributes:
        nodes: Every stack name in the graph.
        edges: dependent → set of stacks it depends on.
    """

    nodes: set[str] = field(default_factory=set)
    edges: dict[str, set[str]] = field(default_factory=dict)

    def dependencies_of(self, name: str) -> frozenset[str]:
        return frozenset(self.edges.get(name, ()))

    def dependents_of(self, name: str) -> frozenset[str]:
        return frozenset(n for n, deps in self.edges.items() if name in deps)

    def transitive_dependents(self, name: str) -> frozenset[str]:
        """Every stack that directly or indirectly imports from ``name``."""
        seen: set[str] = set()
        queue = deque([name])
        while queue:
            current = queue.popleft()
            for dependent in self.dependents_of(current):
                if dependent not in seen:
                    seen.add(dependent)
                    queue.append(dependent)
        return frozenset(seen)

    def edge_list(self) -> list[DependencyEdge]:
        return sorted(
            DependencyEdge(dependent, dependency)
            for dependent, deps in self.edges.items()
            for dependency in deps
        )

    def topological_order(self) -> list[str]:
        """Dependencies first. Ties are broken by name (Kahn's algorithm)."""
        remaining = {n: len(self.edges.get(n, ())) for n in self.nodes}
        heap = [n for n, count in remaining.items() if count == 0]
        heapq.heapify(heap)

        order: list[str] = []
        while heap:
            node = heapq.heappop(heap)
            order.append(node)
            for dependent in sorted(self.dependents_of(node)):
                remaining[dependent] -= 1
                if remaining[dependent] == 0:
                    heapq.heappush(heap, dependent)

        return order

    def levels(self) -> list[list[str]]:
        """Group stacks into waves of mutually independent stacks.

        Every stack sits one level above its deepest dependency.
        """
        depth: dict[str, int] = {}
        for node in self.topological_order():
            deps = self.edges.get(node, ())
            depth[node] = 1 + max((depth[d] for d in deps), default=-1)

        waves: dict[int, list[str]] = {}
        for node, level in depth.items():
            waves.setdefault(level, []).append(node)
        return [sorted(waves[i]) for i in sorted(waves)]

    def to_dict(self) -> dict:
        return {
            "nodes": sorted(self.nodes),
            "edges": {n: sorted(deps) for n, deps in sorted(self.edges.items()) if deps},
            "order": self.topological_order(),
            "levels": self.levels(),
        }


def build_graph(
    references: Iterable[Reference] | Iterable[DependencyEdge],
    stacks: Iterable[str] = (),
) -> DependencyGraph:
    """Build and validate the dependency graph.

    Args:
        references: References (or already-collapsed edges). Self-references
            are ignored.
        stacks: Every stack in the app, including ones with no edges.

    Returns:
        A validated DependencyGraph.

    Raises:
        CycleError: If the stacks import from each other in a loop.
    """
    graph = DependencyGraph()
    for name in stacks:
        graph.nodes.add(name)
        graph.edges.setdefault(name, set())

    for item in references:
        if isinstance(item, Reference):
            dependent, dependency = item.consumer, item.producer
        else:
            dependent, dependency = item.dependent, item.dependency
        if dependent == dependency:
            continue
        graph.nodes.update((dependent, dependency))
        graph.edges.setdefault(dependent, set()).add(dependency)
        graph.edges.setdefault(dependency, set())

    cycle = find_cycle(graph.edges)
    if cycle:
        logger.error("Dependency cycle: %s", " → ".join(cycle))
        raise CycleError(cycle)

    logger.debug(
        "Dependency graph: %d stacks, %d edges",
        len(graph.nodes),
        sum(len(d) for d in graph.edges.values()),
    )
    return graph


def find_cycle(edges: dict[str, set[str]]) -> list[str] | None:
    """Return one minimal cycle as ``[a, b, ..., a]``, or None if acyclic."""
    color = {n: _WHITE for n in edges}

    for root in sorted(edges):
        if color[root] != _WHITE:
            continue

        # Iterative DFS: stack of (node, sorted successors iterator)
        color[root] = _GREY
        stack = [(root, iter(sorted(edges.get(root, ()))))]
        while stack:
            node, successors = stack[-1]
            advanced = False
            for succ in successors:
                state = color.get(succ, _WHITE)
                if state == _GREY:
                    return _shortest_cycle_through(succ, edges)
                if state == _WHITE:
                    color[succ] = _GREY
                    stack.append((succ, iter(sorted(edges.get(succ, ())))))
                    advanced = True
                    break
            if not advanced:
                color[node] = _BLACK
                stack.pop()

    return None


def _shortest_cycle_through(start: str, edges: dict[str, set[str]]) -> list[str]:
    """BFS from ``start`` back to itself; neighbors visited in name order."""
    parent: dict[str, str] = {}
    queue = deque([start])
    visited = {start}

    while queue:
        node = queue.popleft()
        for succ in sorted(edges.get(node, ())):
            if succ == start:
                path = [node]
                while path[-1] != start:
                    path.append(parent[path[-1]])
                path.reverse()
                return path + [start]
            if succ not in visited:
                visited.add(succ)
                parent[succ] = node
                queue.append(succ)

    # Unreachable when called on a node found grey during DFS
    return [start, start]
