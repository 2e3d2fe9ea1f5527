"""
Pydantic Schemas for API Request/Response Models.

Nodes and edges arrive in the editor's format
(``{id, type, data: {label, command, prompt, content}, position}``) and are
converted to the engine's frozen Node/Edge values with ``to_engine()``.
"""

from typing import Any, Dict, List, Optional, Tuple
from pydantic import BaseModel, Field

from nodeflow.engine.node import Edge, Node, NodeKind
from nodeflow.storage.workflows import WORKFLOW_VERSION


# ============================================================
# Node / Edge Schemas
# ============================================================

class NodeData(BaseModel):
    """Editor data attached to a node."""
    label: str = Field("", description="Label shown in the editor")
    command: Optional[str] = Field(None, description="Shell command (cli nodes)")
    prompt: Optional[str] = Field(None, description="Prompt text (llm nodes)")
    content: Optional[str] = Field(None, description="Literal content (input and preview nodes)")

    class Config:
        extra = "allow"


class NodeSchema(BaseModel):
    """A node as sent by the editor."""
    id: str = Field(..., min_length=1, description="Unique node id")
    type: NodeKind = Field(..., description="Node kind: cli, llm, input or preview")
    data: NodeData = Field(default_factory=NodeData)
    position: Optional[Dict[str, float]] = None

    class Config:
        extra = "allow"
        json_schema_extra = {
            "example": {
                "id": "list-files",
                "type": "cli",
                "data": {"label": "List files", "command": "ls"},
                "position": {"x": 0, "y": 0},
            }
        }

    def to_node(self) -> Node:
        if self.type == NodeKind.COMMAND:
            payload = self.data.command
        elif self.type == NodeKind.GENERATE:
            payload = self.data.prompt
        elif self.type == NodeKind.STATIC_INPUT:
            payload = self.data.content
        else:
            payload = ""
        return Node(id=self.id, kind=self.type, label=self.data.label, payload=payload or "")


class EdgeSchema(BaseModel):
    """A dependency edge: target runs after source."""
    id: str = Field(..., min_length=1)
    source: str
    target: str

    class Config:
        extra = "allow"

    def to_edge(self) -> Edge:
        return Edge(id=self.id, source=self.source, target=self.target)


class WorkflowPayload(BaseModel):
    """Nodes and edges of a workflow."""
    nodes: List[NodeSchema] = Field(default_factory=list)
    edges: List[EdgeSchema] = Field(default_factory=list)

    class Config:
        json_schema_extra = {
            "example": {
                "nodes": [
                    {"id": "a", "type": "input", "data": {"label": "Text", "content": "hello"}},
                    {"id": "b", "type": "cli", "data": {"label": "Shout", "command": "echo ${1} | tr a-z A-Z"}},
                    {"id": "c", "type": "preview", "data": {"label": "Preview"}},
                ],
                "edges": [
                    {"id": "e1", "source": "a", "target": "b"},
                    {"id": "e2", "source": "b", "target": "c"},
                ],
            }
        }

    def to_engine(self) -> Tuple[List[Node], List[Edge]]:
        return [n.to_node() for n in self.nodes], [e.to_edge() for e in self.edges]


class WorkflowDocument(WorkflowPayload):
    """A saved workflow."""
    version: str = WORKFLOW_VERSION


# ============================================================
# Run Schemas
# ============================================================

class PlanResponse(BaseModel):
    """Execution order and edge sequence numbers for a graph."""
    order: List[str]
    edge_order: Dict[str, int]
    mermaid_diagram: str


class RunRequest(WorkflowPayload):
    """Request to run a workflow."""
    wait: bool = Field(
        True,
        description="If false, start the run in the background and return immediately",
    )


class NodeStateSchema(BaseModel):
    node_id: str
    status: str
    result: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    duration_ms: Optional[float] = None


class RunResponse(BaseModel):
    """Response after running a workflow."""
    run_id: str
    status: str
    order: List[str] = Field(default_factory=list)
    edge_order: Dict[str, int] = Field(default_factory=dict)
    node_states: Dict[str, NodeStateSchema] = Field(default_factory=dict)
    results: Dict[str, str] = Field(default_factory=dict)
    errors: Dict[str, str] = Field(default_factory=dict)
    error: Optional[str] = None
    failed_node: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    total_duration_ms: Optional[float] = None
    events: List[Dict[str, Any]] = Field(default_factory=list)


class CancelResponse(BaseModel):
    cancelled: bool


class RunStateResponse(BaseModel):
    """The session's active or most recent run."""
    active: bool
    run_id: Optional[str] = None
    status: Optional[str] = None
    current_node: Optional[str] = None
    node_states: Dict[str, NodeStateSchema] = Field(default_factory=dict)
    error: Optional[str] = None


# ============================================================
# Saved Workflow Schemas
# ============================================================

class WorkflowInfo(BaseModel):
    name: str
    version: str
    node_count: int
    edge_count: int
    updated_at: str


class WorkflowListResponse(BaseModel):
    workflows: List[WorkflowInfo]
    total: int


# ============================================================
# Error Schemas
# ============================================================

class ErrorResponse(BaseModel):
    """Standard error response."""
    error: str
    detail: Optional[str] = None
    errors: Dict[str, str] = Field(default_factory=dict)
