"""
Error taxonomy for the workflow engine.

Structural and validation errors are raised before a run starts.
Execution errors belong to a single node and end the run fail-fast.
Cancellation is not an error and has its own signal.
"""

from typing import Dict, Optional


class WorkflowError(Exception):
    """Base class for all engine errors."""


class InvalidGraph(WorkflowError):
    """Structural defect: duplicate id or dangling edge reference."""


class CyclicGraph(WorkflowError):
    """The dependency relation contains a cycle."""

    def __init__(self, node_id: str):
        self.node_id = node_id
        super().__init__(f"Graph contains a cycle through node '{node_id}'")


class ValidationFailed(WorkflowError):
    """One or more nodes are missing required fields."""

    def __init__(self, errors: Dict[str, str]):
        self.errors = dict(errors)
        summary = ", ".join(f"{node_id}: {msg}" for node_id, msg in self.errors.items())
        super().__init__(f"Node validation failed ({summary})")


class ExecutionError(WorkflowError):
    """A single node's work failed during a run."""

    def __init__(self, message: str, node_id: Optional[str] = None):
        self.node_id = node_id
        super().__init__(message)


class CommandFailed(ExecutionError):
    """A command node could not be spawned, timed out, or exited non-zero."""

    def __init__(
        self,
        message: str,
        exit_code: Optional[int] = None,
        stderr: str = "",
        node_id: Optional[str] = None,
    ):
        self.exit_code = exit_code
        self.stderr = stderr
        super().__init__(message, node_id=node_id)


class GenerationFailed(ExecutionError):
    """The generation backend returned an error."""


class RunAlreadyActive(WorkflowError):
    """A run was requested while another is still in progress."""

    def __init__(self, run_id: str):
        self.run_id = run_id
        super().__init__(f"Run '{run_id}' is already active for this session")


class RunCancelled(Exception):
    """Raised inside a run when its cancel token fires."""

    def __init__(self, node_id: Optional[str] = None):
        self.node_id = node_id
        super().__init__("Run cancelled" + (f" at node '{node_id}'" if node_id else ""))
