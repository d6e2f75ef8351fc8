"""Dependency graph utilities."""

from __future__ import annotations

import heapq
from typing import TYPE_CHECKING

from stack_provisioner.engine.errors import DependencyCycleError

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence

    from stack_provisioner.resources.base import Resource


class DependencyGraph:
    """A directed graph where nodes depend on other nodes.

    Edges run from a dependency to its dependent ("must exist before").
    Dependencies on nodes outside the graph are ignored here; callers that
    care (plan validation) check them separately.
    """

    def __init__(self, nodes: Iterable[str], dependencies: Mapping[str, Iterable[str]]) -> None:
        self._nodes = set(nodes)
        # node -> filtered deps within graph
        self._deps: dict[str, set[str]] = {}
        for node in self._nodes:
            deps = set(dependencies.get(node, []))
            self._deps[node] = {d for d in deps if d in self._nodes}

    @property
    def nodes(self) -> set[str]:
        return set(self._nodes)

    def dependencies_of(self, node: str) -> set[str]:
        return set(self._deps.get(node, set()))

    def dependents_of(self, node: str) -> set[str]:
        return {n for n, deps in self._deps.items() if node in deps}

    def edges(self) -> list[tuple[str, str]]:
        """All ``(dependency, dependent)`` pairs, sorted."""
        return sorted((dep, node) for node, deps in self._deps.items() for dep in deps)

    def transitive_dependents(self, node: str) -> set[str]:
        seen: set[str] = set()
        stack = [node]
        while stack:
            current = stack.pop()
            for child in self.dependents_of(current):
                if child not in seen:
                    seen.add(child)
                    stack.append(child)
        return seen

    def find_cycle(self) -> list[str] | None:
        """Return one cycle as a closed path (``[a, b, a]``), or ``None``.

        Depth-first search with an explicit recursion stack; nodes are visited
        in sorted order so the reported cycle is deterministic.
        """
        done: set[str] = set()

        for start in sorted(self._nodes):
            if start in done:
                continue
            path: list[str] = [start]
            on_path = {start}
            iters = [iter(sorted(self._deps[start]))]
            while iters:
                nxt = next(iters[-1], None)
                if nxt is None:
                    iters.pop()
                    finished = path.pop()
                    on_path.discard(finished)
                    done.add(finished)
                    continue
                if nxt in on_path:
                    return [*path[path.index(nxt) :], nxt]
                if nxt in done:
                    continue
                path.append(nxt)
                on_path.add(nxt)
                iters.append(iter(sorted(self._deps[nxt])))
        return None

    def check_acyclic(self) -> None:
        cycle = self.find_cycle()
        if cycle is not None:
            raise DependencyCycleError(cycle)

    def topological_order(self) -> list[str]:
        """Return deterministic topo order (lexicographic tie-break)."""
        self.check_acyclic()

        indegree: dict[str, int] = {n: len(deps) for n, deps in self._deps.items()}
        dependents: dict[str, set[str]] = {n: set() for n in self._nodes}
        for node, deps in self._deps.items():
            for dep in deps:
                dependents[dep].add(node)

        ready = [n for n, deg in indegree.items() if deg == 0]
        heapq.heapify(ready)

        order: list[str] = []
        while ready:
            node = heapq.heappop(ready)
            order.append(node)
            for child in dependents[node]:
                indegree[child] -= 1
                if indegree[child] == 0:
                    heapq.heappush(ready, child)

        return order

    def reverse_topological_order(self) -> list[str]:
        order = self.topological_order()
        order.reverse()
        return order


def build_dependency_graph(resources: Sequence[Resource]) -> DependencyGraph:
    """Build the graph of *resources* from their references and ``depends_on``.

    Every referenced id becomes an edge, including a resource referencing
    itself, which is reported as a cycle by :meth:`DependencyGraph.check_acyclic`.
    """
    return DependencyGraph(
        (r.name for r in resources),
        {r.name: r.dependency_ids() for r in resources},
    )
