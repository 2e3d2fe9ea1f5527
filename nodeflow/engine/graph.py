"""
Graph Definition for the workflow engine.

A WorkflowGraph is a validated, read-only snapshot of the nodes and edges
submitted for one run, together with the derived adjacency and in-degree
tables the sequencer and orchestrator work from.
"""

from typing import TYPE_CHECKING, Dict, Iterable, List, Optional, Tuple
from dataclasses import dataclass

from nodeflow.engine.errors import InvalidGraph
from nodeflow.engine.node import Edge, Node

if TYPE_CHECKING:
    from nodeflow.engine.sequencer import ExecutionPlan


@dataclass(frozen=True)
class WorkflowGraph:
    """
    A validated workflow graph.

    Build instances with ``WorkflowGraph.build``; the constructor does not
    validate.

    Attributes:
        nodes: Nodes in their submitted list order
        edges: Edges in their submitted list order
        adjacency: node id -> target ids, in edge-list order
        in_degree: node id -> number of incoming edges
    """

    nodes: Tuple[Node, ...]
    edges: Tuple[Edge, ...]
    adjacency: Dict[str, Tuple[str, ...]]
    in_degree: Dict[str, int]
    _by_id: Dict[str, Node]
    _outgoing: Dict[str, Tuple[Edge, ...]]
    _incoming: Dict[str, Tuple[Edge, ...]]

    @classmethod
    def build(cls, nodes: Iterable[Node], edges: Iterable[Edge]) -> "WorkflowGraph":
        """
        Validate nodes and edges and derive the lookup tables.

        Args:
            nodes: Candidate node list
            edges: Candidate edge list

        Returns:
            A frozen WorkflowGraph

        Raises:
            InvalidGraph: On a duplicate node or edge id, or an edge that
                references an unknown node
        """
        node_list = tuple(nodes)
        edge_list = tuple(edges)

        by_id: Dict[str, Node] = {}
        for node in node_list:
            if node.id in by_id:
                raise InvalidGraph(f"Duplicate node id '{node.id}'")
            by_id[node.id] = node

        seen_edges = set()
        outgoing: Dict[str, List[Edge]] = {node.id: [] for node in node_list}
        incoming: Dict[str, List[Edge]] = {node.id: [] for node in node_list}
        for edge in edge_list:
            if edge.id in seen_edges:
                raise InvalidGraph(f"Duplicate edge id '{edge.id}'")
            seen_edges.add(edge.id)
            if edge.source not in by_id:
                raise InvalidGraph(
                    f"Edge '{edge.id}' references unknown source node '{edge.source}'"
                )
            if edge.target not in by_id:
                raise InvalidGraph(
                    f"Edge '{edge.id}' references unknown target node '{edge.target}'"
                )
            outgoing[edge.source].append(edge)
            incoming[edge.target].append(edge)

        return cls(
            nodes=node_list,
            edges=edge_list,
            adjacency={
                node_id: tuple(e.target for e in out) for node_id, out in outgoing.items()
            },
            in_degree={node_id: len(inc) for node_id, inc in incoming.items()},
            _by_id=by_id,
            _outgoing={node_id: tuple(out) for node_id, out in outgoing.items()},
            _incoming={node_id: tuple(inc) for node_id, inc in incoming.items()},
        )

    def node(self, node_id: str) -> Node:
        """Get a node by id."""
        try:
            return self._by_id[node_id]
        except KeyError:
            raise InvalidGraph(f"Node '{node_id}' not found in graph") from None

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._by_id

    def __len__(self) -> int:
        return len(self.nodes)

    def outgoing(self, node_id: str) -> Tuple[Edge, ...]:
        """Outgoing edges of a node, in edge-list order."""
        return self._outgoing.get(node_id, ())

    def incoming(self, node_id: str) -> Tuple[Edge, ...]:
        """Incoming edges of a node, in edge-list order."""
        return self._incoming.get(node_id, ())

    def predecessors(self, node_id: str) -> Tuple[str, ...]:
        """
        Distinct direct predecessors of a node.

        Ordered by the first edge connecting each predecessor, so the
        position of a predecessor's output among a node's inputs follows
        the order in which the connections were authored.
        """
        seen: Dict[str, None] = {}
        for edge in self.incoming(node_id):
            seen.setdefault(edge.source, None)
        return tuple(seen)

    def to_dict(self) -> Dict[str, object]:
        """Serialize the graph to a dictionary."""
        return {
            "nodes": [node.to_dict() for node in self.nodes],
            "edges": [edge.to_dict() for edge in self.edges],
        }

    def __repr__(self) -> str:
        return (
            f"WorkflowGraph(nodes={[n.id for n in self.nodes]}, "
            f"edges={len(self.edges)})"
        )


def _mermaid_id(node_id: str) -> str:
    return "".join(c if c.isalnum() or c == "_" else "_" for c in node_id) or "node"


def to_mermaid(graph: WorkflowGraph, plan: Optional["ExecutionPlan"] = None) -> str:
    """
    Generate a Mermaid diagram of the graph.

    When a plan is given, edges are labelled with their sequence number.
    """
    lines = ["graph TD"]

    for node in graph.nodes:
        label = (node.label or node.id).replace('"', "'")
        lines.append(f'    {_mermaid_id(node.id)}["{label}"]')

    for edge in graph.edges:
        source = _mermaid_id(edge.source)
        target = _mermaid_id(edge.target)
        if plan is not None and edge.id in plan.edge_sequence:
            lines.append(f"    {source} -->|{plan.edge_sequence[edge.id]}| {target}")
        else:
            lines.append(f"    {source} --> {target}")

    return "\n".join(lines)
