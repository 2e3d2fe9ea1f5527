"""
Node and Edge definitions for the workflow engine.

A node is one step of a pipeline: a shell command, a prompt sent to a
generation backend, a static piece of text, or a preview of upstream
output. Nodes and edges are frozen values; the engine only ever reads
them, so a run works on a snapshot that later editor changes cannot touch.
"""

from typing import Any, Dict
from dataclasses import dataclass
from enum import Enum

from nodeflow.engine.errors import InvalidGraph


class NodeKind(str, Enum):
    """Kinds of nodes. Values match the editor's node type tags."""
    COMMAND = "cli"
    GENERATE = "llm"
    STATIC_INPUT = "input"
    PREVIEW = "preview"


@dataclass(frozen=True)
class Node:
    """
    A node in the workflow graph.

    Attributes:
        id: Unique identifier for the node
        kind: What sort of work the node does
        label: Human-readable label shown in the editor
        payload: Command text, prompt text or literal content, by kind
    """

    id: str
    kind: NodeKind
    label: str = ""
    payload: str = ""

    def __post_init__(self):
        if not self.id:
            raise InvalidGraph("Node id cannot be empty")
        # Accept raw tag strings as well as enum members
        try:
            kind = NodeKind(self.kind)
        except ValueError:
            raise InvalidGraph(f"Node '{self.id}' has unknown kind {self.kind!r}") from None
        object.__setattr__(self, "kind", kind)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "label": self.label,
            "payload": self.payload,
        }


@dataclass(frozen=True)
class Edge:
    """A dependency edge: ``target`` runs after ``source``."""
    id: str
    source: str
    target: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "id": self.id,
            "source": self.source,
            "target": self.target,
        }
