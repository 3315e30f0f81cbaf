"""Dependency graph over a batch of skills.

The graph is derived from the declared dependency sets and never stored.
Only edges between members of the batch take part in ordering; a
dependency outside the batch must already be active in the registry when
the dependent is registered.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable

from agentic_skills.skills.base import SkillMetadata
from agentic_skills.skills.errors import CyclicDependencyError


class DependencyGraph:
    """Directed graph from each skill to the batch members it depends on."""

    def __init__(self, nodes: dict[str, frozenset[str]]) -> None:
        """Initialize from ``skill_id -> declared dependencies``.

        Node order is preserved and used to break ties, so the computed
        order is deterministic for a given batch.
        """
        self._nodes = dict(nodes)
        self._deps: dict[str, list[str]] = {
            node: [dep for dep in sorted(deps) if dep in self._nodes]
            for node, deps in self._nodes.items()
        }
        self._dependents: dict[str, list[str]] = {node: [] for node in self._nodes}
        for node, deps in self._deps.items():
            for dep in deps:
                self._dependents[dep].append(node)

    @classmethod
    def from_metadata(cls, metadata: Iterable[SkillMetadata]) -> DependencyGraph:
        """Build a graph from skill metadata.

        Raises:
            ValueError: If the same skill id appears twice
        """
        nodes: dict[str, frozenset[str]] = {}
        for meta in metadata:
            if meta.skill_id in nodes:
                raise ValueError(f"Duplicate skill id in batch: '{meta.skill_id}'")
            nodes[meta.skill_id] = meta.dependencies
        return cls(nodes)

    @property
    def nodes(self) -> list[str]:
        return list(self._nodes)

    def dependencies_of(self, node: str) -> list[str]:
        """Batch-internal dependencies of ``node``."""
        return list(self._deps.get(node, []))

    def external_dependencies_of(self, node: str) -> list[str]:
        """Declared dependencies of ``node`` that are not part of the batch."""
        return sorted(dep for dep in self._nodes.get(node, frozenset()) if dep not in self._nodes)

    def topological_order(self, *, allow_cycles: bool = False) -> list[str]:
        """Order nodes so every dependency precedes its dependents.

        Uses Kahn's algorithm.

        Args:
            allow_cycles: Append nodes caught in a cycle at the end, in input
                order, instead of raising. Used for teardown, where every
                node must be visited.

        Returns:
            List of skill ids in registration order

        Raises:
            CyclicDependencyError: If the graph contains a cycle and
                ``allow_cycles`` is False
        """
        in_degree = {node: len(deps) for node, deps in self._deps.items()}
        queue = deque(node for node in self._nodes if in_degree[node] == 0)

        sorted_order: list[str] = []
        while queue:
            node = queue.popleft()
            sorted_order.append(node)
            for dependent in self._dependents[node]:
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    queue.append(dependent)

        if len(sorted_order) != len(self._nodes):
            remaining = [node for node in self._nodes if in_degree[node] > 0]
            if allow_cycles:
                return sorted_order + remaining
            raise CyclicDependencyError(self._find_cycle(remaining, in_degree))

        return sorted_order

    def _find_cycle(self, remaining: list[str], in_degree: dict[str, int]) -> list[str]:
        """Walk unsorted dependencies from any leftover node until one repeats.

        Every leftover node still has an unsorted dependency, so the walk
        must revisit a node; the path from that node onwards is a cycle.
        """
        path: list[str] = []
        seen: dict[str, int] = {}
        node = remaining[0]
        while node not in seen:
            seen[node] = len(path)
            path.append(node)
            node = next(dep for dep in self._deps[node] if in_degree[dep] > 0)
        return path[seen[node]:]
