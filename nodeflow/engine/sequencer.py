"""
Topological sequencing of a workflow graph.

Produces one deterministic execution order (Kahn's algorithm) and the
display-only edge sequence numbers derived from it.
"""

from collections import deque
from dataclasses import dataclass, field
from typing import Any, Dict, Tuple

from nodeflow.engine.errors import CyclicGraph
from nodeflow.engine.graph import WorkflowGraph


@dataclass(frozen=True)
class ExecutionPlan:
    """Execution order plus edge sequence numbers for one graph."""
    order: Tuple[str, ...] = ()
    edge_sequence: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "order": list(self.order),
            "edge_order": dict(self.edge_sequence),
        }


def _root_sort_key(graph: WorkflowGraph):
    first_edge: Dict[str, int] = {}
    for index, edge in enumerate(graph.edges):
        first_edge.setdefault(edge.source, index)
    node_index = {node.id: index for index, node in enumerate(graph.nodes)}
    no_edges = len(graph.edges)

    def key(node_id: str) -> Tuple[int, int]:
        return (first_edge.get(node_id, no_edges), node_index[node_id])

    return key


def _find_cycle_node(graph: WorkflowGraph, remaining: Dict[str, int]) -> str:
    # Every remaining node still has a remaining predecessor, so walking
    # backwards must eventually revisit a node, and that node is on a cycle.
    current = next(node.id for node in graph.nodes if node.id in remaining)
    visited = set()
    while current not in visited:
        visited.add(current)
        current = next(
            edge.source for edge in graph.incoming(current) if edge.source in remaining
        )
    return current


def topological_order(graph: WorkflowGraph) -> Tuple[str, ...]:
    """
    Compute the execution order of a graph.

    Roots are seeded by the position of their first outgoing edge in the
    edge list; roots without outgoing edges follow, in node-list order.

    Raises:
        CyclicGraph: If some node can never become ready
    """
    in_degree = dict(graph.in_degree)
    roots = [node.id for node in graph.nodes if in_degree[node.id] == 0]
    queue = deque(sorted(roots, key=_root_sort_key(graph)))

    result = []
    while queue:
        node_id = queue.popleft()
        result.append(node_id)
        for target in graph.adjacency[node_id]:
            in_degree[target] -= 1
            if in_degree[target] == 0:
                queue.append(target)

    if len(result) < len(graph.nodes):
        done = set(result)
        remaining = {n: d for n, d in in_degree.items() if n not in done}
        raise CyclicGraph(_find_cycle_node(graph, remaining))

    return tuple(result)


def edge_sequence(graph: WorkflowGraph, order: Tuple[str, ...]) -> Dict[str, int]:
    """Number each node's outgoing edges consecutively along the order."""
    numbers: Dict[str, int] = {}
    next_number = 1
    for node_id in order:
        for edge in graph.outgoing(node_id):
            numbers[edge.id] = next_number
            next_number += 1
    return numbers


def build_plan(graph: WorkflowGraph) -> ExecutionPlan:
    """Sequence a graph into an ExecutionPlan."""
    order = topological_order(graph)
    return ExecutionPlan(order=order, edge_sequence=edge_sequence(graph, order))
