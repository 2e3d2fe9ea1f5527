"""
Engine package - graph model, sequencing, executors and orchestration.
"""

from nodeflow.engine.node import Node, Edge, NodeKind
from nodeflow.engine.graph import WorkflowGraph, to_mermaid
from nodeflow.engine.sequencer import ExecutionPlan, build_plan
from nodeflow.engine.orchestrator import Orchestrator, RunResult, RunStatus
from nodeflow.engine.session import WorkflowSession, RunHandle

__all__ = [
    "Node",
    "Edge",
    "NodeKind",
    "WorkflowGraph",
    "to_mermaid",
    "ExecutionPlan",
    "build_plan",
    "Orchestrator",
    "RunResult",
    "RunStatus",
    "WorkflowSession",
    "RunHandle",
]
