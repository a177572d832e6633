"""Resource dependency graph construction using NetworkX.

Builds a directed graph from the instance ``dependencies`` recorded in one or
more snapshots.  Edges point **from** a dependency **to** the resource that
depends on it, so a topological order lists resources in the order they can
be converged.
"""

from __future__ import annotations

import heapq
import logging

import networkx as nx

from lifecycle_engine.errors import LifecycleError
from lifecycle_engine.models.snapshot import Snapshot

logger = logging.getLogger(__name__)


class CyclicDependencyError(LifecycleError):
    """Raised when the resource graph contains one or more cycles."""

    def __init__(self, cycles: list[list[str]]) -> None:
        self.cycles = cycles
        formatted = "; ".join(" -> ".join(c + [c[0]]) for c in cycles)
        super().__init__(f"Cyclic resource dependencies detected: {formatted}")


def build_dependency_graph(*snapshots: Snapshot) -> nx.DiGraph:
    """Build a dependency graph over every resource of *snapshots*.

    Dependencies naming resources outside the given snapshots are skipped.
    """
    graph = nx.DiGraph()
    for snapshot in snapshots:
        for resource in snapshot.resources:
            graph.add_node(resource.key)

    for snapshot in snapshots:
        for resource in snapshot.resources:
            for instance in resource.instances:
                for dep in instance.dependencies:
                    if dep in graph and dep != resource.key:
                        graph.add_edge(dep, resource.key)
    return graph


def topological_order(graph: nx.DiGraph) -> list[str]:
    """Stable topological sort with lexicographic tie-breaking.

    Raises
    ------
    CyclicDependencyError
        If the graph is not acyclic.
    """
    if not nx.is_directed_acyclic_graph(graph):
        cycles = [list(c) for c in nx.simple_cycles(graph)]
        raise CyclicDependencyError(cycles)

    in_degree = dict(graph.in_degree())
    heap = sorted(n for n, d in in_degree.items() if d == 0)
    heapq.heapify(heap)
    result: list[str] = []
    while heap:
        node = heapq.heappop(heap)
        result.append(node)
        for successor in graph.successors(node):
            in_degree[successor] -= 1
            if in_degree[successor] == 0:
                heapq.heappush(heap, successor)
    return result


def order_resources(keys: list[str], graph: nx.DiGraph) -> list[str]:
    """Return *keys* in dependency order; keys unknown to *graph* go last, sorted."""
    wanted = set(keys)
    ordered = [k for k in topological_order(graph) if k in wanted]
    unknown = sorted(wanted - set(ordered))
    if unknown:
        logger.debug("Resources without graph position: %s", ", ".join(unknown))
    return ordered + unknown
