"""
Storage package - saved workflow documents.
"""

from nodeflow.storage.workflows import (
    InvalidWorkflowName,
    StoredWorkflow,
    WorkflowStore,
    workflow_store,
)

__all__ = [
    "InvalidWorkflowName",
    "StoredWorkflow",
    "WorkflowStore",
    "workflow_store",
]
