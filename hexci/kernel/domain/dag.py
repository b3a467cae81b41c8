"""DAG primitives: JobNode and PipelineGraph.

A :class:`PipelineGraph` is the validated, immutable form of a pipeline's
concrete jobs (after matrix expansion). The scheduler queries it for the
ready set given the jobs completed so far.
"""

from __future__ import annotations

import sys
from collections import defaultdict
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum, auto
from types import MappingProxyType
from typing import TYPE_CHECKING

from hexci.kernel.exceptions import (
    CyclicDependencyError,
    DuplicateJobError,
    UnknownDependencyError,
)

if TYPE_CHECKING:
    from hexci.kernel.domain.pipeline import DependencyPolicy, JobSpec, PipelineDefinition

_EMPTY_SET: frozenset[str] = frozenset()


class Color(Enum):
    """Colors for DFS cycle detection algorithm."""

    WHITE = auto()  # Unvisited
    GRAY = auto()  # In recursion stack
    BLACK = auto()  # Done


@dataclass(frozen=True, slots=True)
class JobNode:
    """Immutable representation of a concrete job in the graph."""

    name: str
    spec: JobSpec
    deps: frozenset[str] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        object.__setattr__(self, "name", sys.intern(self.name))
        object.__setattr__(self, "deps", frozenset(sys.intern(d) for d in self.deps))

    @property
    def policy(self) -> DependencyPolicy:
        return self.spec.if_

    @property
    def concurrency_group(self) -> str | None:
        return self.spec.concurrency_group

    @property
    def template(self) -> str:
        """Name of the job template this node was expanded from."""
        return self.spec.template or self.name

    def __repr__(self) -> str:
        deps_str = f", deps={sorted(self.deps)}" if self.deps else ""
        return f"JobNode('{self.name}'{deps_str})"


class PipelineGraph:
    """A validated directed acyclic graph of jobs.

    Construction validates dependencies and cycles; afterwards the graph is
    read-only. Provides:
    - Ready-set queries for the scheduler
    - Topological sorting into execution waves
    - Forward/reverse edge lookups
    """

    def __init__(
        self,
        nodes: list[JobNode],
        definition: PipelineDefinition | None = None,
    ) -> None:
        """Build and validate the graph.

        Raises
        ------
        DuplicateJobError
            If two nodes share a name.
        UnknownDependencyError
            If a node depends on a node that does not exist.
        CyclicDependencyError
            If the dependencies contain a cycle.
        """
        nodes_by_name: dict[str, JobNode] = {}
        for node in nodes:
            if node.name in nodes_by_name:
                raise DuplicateJobError(node.name)
            nodes_by_name[node.name] = node

        for node in nodes:
            for dep in sorted(node.deps):
                if dep not in nodes_by_name:
                    raise UnknownDependencyError(node.name, dep)

        if cycle := self.detect_cycle({n.name: n.deps for n in nodes}):
            raise CyclicDependencyError(cycle)

        forward: defaultdict[str, set[str]] = defaultdict(set)
        for node in nodes:
            forward[node.name]
            for dep in node.deps:
                forward[dep].add(node.name)

        self._nodes: Mapping[str, JobNode] = MappingProxyType(nodes_by_name)
        self._forward_edges: Mapping[str, frozenset[str]] = MappingProxyType(
            {name: frozenset(deps) for name, deps in forward.items()}
        )
        self._waves_cache: list[list[str]] | None = None
        self.definition = definition

    @staticmethod
    def detect_cycle(graph: Mapping[str, set[str] | frozenset[str]]) -> list[str] | None:
        """Detect cycles using DFS with three-state coloring.

        Parameters
        ----------
        graph : Mapping[str, set[str] | frozenset[str]]
            Node name → set of dependency names

        Returns
        -------
        list[str] | None
            Cycle members (first member repeated at the end) or None

        Examples
        --------
        >>> PipelineGraph.detect_cycle({"a": {"b"}, "b": {"c"}, "c": {"a"}})
        ['a', 'b', 'c', 'a']
        >>> PipelineGraph.detect_cycle({"a": {"b"}, "b": set()}) is None
        True
        """
        colors = dict.fromkeys(graph, Color.WHITE)

        def dfs(node: str, path: list[str]) -> list[str] | None:
            if colors[node] == Color.GRAY:
                cycle_start = path.index(node)
                return path[cycle_start:] + [node]

            if colors[node] == Color.BLACK:
                return None

            colors[node] = Color.GRAY
            path.append(node)

            for dep in sorted(graph.get(node, _EMPTY_SET)):
                if dep in colors and (result := dfs(dep, path)):
                    return result

            path.pop()
            colors[node] = Color.BLACK
            return None

        for node in graph:
            if colors[node] == Color.WHITE and (result := dfs(node, [])):
                return result

        return None

    @property
    def nodes(self) -> Mapping[str, JobNode]:
        return self._nodes

    def dependencies(self, name: str) -> frozenset[str]:
        """Direct dependencies of *name*."""
        if name not in self._nodes:
            raise KeyError(f"Job '{name}' not found in graph")
        return self._nodes[name].deps

    def dependents(self, name: str) -> frozenset[str]:
        """Jobs that directly depend on *name*."""
        if name not in self._nodes:
            raise KeyError(f"Job '{name}' not found in graph")
        return self._forward_edges.get(name, _EMPTY_SET)

    def transitive_dependents(self, name: str) -> set[str]:
        """Every job reachable from *name* through forward edges."""
        seen: set[str] = set()
        stack = list(self.dependents(name))
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            stack.extend(self._forward_edges.get(current, _EMPTY_SET))
        return seen

    def ready_set(self, completed: frozenset[str] | set[str]) -> list[str]:
        """Jobs not yet completed whose dependencies are all in *completed*.

        Examples
        --------
        >>> from hexci.kernel.domain.pipeline import JobSpec
        >>> graph = PipelineGraph([
        ...     JobNode("a", JobSpec(name="a")),
        ...     JobNode("b", JobSpec(name="b"), deps=frozenset({"a"})),
        ... ])
        >>> graph.ready_set(set())
        ['a']
        >>> graph.ready_set({"a"})
        ['b']
        """
        return sorted(
            name
            for name, node in self._nodes.items()
            if name not in completed and node.deps <= completed
        )

    def waves(self) -> list[list[str]]:
        """Compute execution waves using Kahn's algorithm (cached).

        Examples
        --------
            # For DAG: A -> B -> D, A -> C -> D
            # Returns: [["A"], ["B", "C"], ["D"]]
        """
        if self._waves_cache is not None:
            return self._waves_cache

        in_degrees = {name: len(node.deps) for name, node in self._nodes.items()}
        waves: list[list[str]] = []

        while in_degrees:
            current_wave = sorted(name for name, degree in in_degrees.items() if degree == 0)
            waves.append(current_wave)
            for name in current_wave:
                del in_degrees[name]
                for dependent in self._forward_edges.get(name, _EMPTY_SET):
                    if dependent in in_degrees:
                        in_degrees[dependent] -= 1

        self._waves_cache = waves
        return waves

    def __repr__(self) -> str:
        if not self._nodes:
            return "PipelineGraph(nodes=set())"
        return f"PipelineGraph(nodes={set(sorted(self._nodes))!r})"

    def __str__(self) -> str:
        if not self._nodes:
            return "PipelineGraph(empty)"

        names = sorted(self._nodes)
        if len(names) <= 5:
            return f"PipelineGraph({len(names)} jobs: {', '.join(names)})"
        return f"PipelineGraph({len(names)} jobs: {', '.join(names[:5])}, ...)"

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, name: object) -> bool:
        return name in self._nodes

    def __iter__(self) -> Iterator[str]:
        return iter(self._nodes)
