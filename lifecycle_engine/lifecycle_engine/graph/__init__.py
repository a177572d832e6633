"""Resource dependency graph operations."""

from lifecycle_engine.graph.resource_graph import (
    CyclicDependencyError,
    build_dependency_graph,
    order_resources,
    topological_order,
)

__all__ = [
    "CyclicDependencyError",
    "build_dependency_graph",
    "order_resources",
    "topological_order",
]
