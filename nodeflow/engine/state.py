"""
Per-node run state for the workflow engine.

Each run starts with every node idle. The orchestrator is the only writer,
and statuses only move forward: idle -> running -> completed | error.
"""

from typing import Any, Dict, Iterable, List, Optional
from pydantic import BaseModel, Field
from datetime import datetime
from enum import Enum
import uuid


class NodeStatus(str, Enum):
    """Status of a node within one run."""
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"


_TRANSITIONS = {
    NodeStatus.IDLE: {NodeStatus.RUNNING},
    NodeStatus.RUNNING: {NodeStatus.COMPLETED, NodeStatus.ERROR},
    NodeStatus.COMPLETED: set(),
    NodeStatus.ERROR: set(),
}


class NodeRunState(BaseModel):
    """State of one node in one run."""

    node_id: str
    status: NodeStatus = NodeStatus.IDLE
    result: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def duration_ms(self) -> Optional[float]:
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds() * 1000
        return None

    def advance(self, status: NodeStatus, result: Optional[str] = None) -> "NodeRunState":
        """Return a new state moved to ``status``."""
        if status not in _TRANSITIONS[self.status]:
            raise ValueError(
                f"Node '{self.node_id}' cannot move from {self.status.value} "
                f"to {status.value}"
            )
        update: Dict[str, Any] = {"status": status}
        if status == NodeStatus.RUNNING:
            update["started_at"] = datetime.now()
        else:
            update["completed_at"] = datetime.now()
            update["result"] = result
        return self.model_copy(update=update)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "node_id": self.node_id,
            "status": self.status.value,
            "result": self.result,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_ms": self.duration_ms,
        }


class StateSnapshot(BaseModel):
    """A recorded transition."""

    timestamp: datetime = Field(default_factory=datetime.now)
    node_id: str
    status: NodeStatus


class RunStateManager:
    """
    Holds the NodeRunState of every node for one run.

    Keeps a history of transitions for debugging.
    """

    def __init__(self, node_ids: Iterable[str], run_id: Optional[str] = None):
        self.run_id = run_id or str(uuid.uuid4())
        self._states: Dict[str, NodeRunState] = {
            node_id: NodeRunState(node_id=node_id) for node_id in node_ids
        }
        self.history: List[StateSnapshot] = []

    def get(self, node_id: str) -> NodeRunState:
        return self._states[node_id]

    def transition(
        self,
        node_id: str,
        status: NodeStatus,
        result: Optional[str] = None,
    ) -> NodeRunState:
        """Move a node forward and record the transition."""
        new_state = self._states[node_id].advance(status, result)
        self._states[node_id] = new_state
        self.history.append(StateSnapshot(node_id=node_id, status=status))
        return new_state

    @property
    def states(self) -> Dict[str, NodeRunState]:
        return dict(self._states)

    def results(self) -> Dict[str, str]:
        """Results of the nodes that completed."""
        return {
            node_id: state.result or ""
            for node_id, state in self._states.items()
            if state.status == NodeStatus.COMPLETED
        }

    def get_history(self) -> List[Dict[str, Any]]:
        return [
            {
                "timestamp": s.timestamp.isoformat(),
                "node": s.node_id,
                "status": s.status.value,
            }
            for s in self.history
        ]
