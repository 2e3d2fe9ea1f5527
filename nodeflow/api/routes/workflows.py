"""
Saved Workflow API Routes.

Save, load, list and delete ``{nodes, edges, version}`` documents.
"""

from fastapi import APIRouter, HTTPException, status
import logging

from nodeflow.api.schemas import (
    ErrorResponse,
    WorkflowDocument,
    WorkflowInfo,
    WorkflowListResponse,
)
from nodeflow.storage.workflows import workflow_store


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/workflows", tags=["Saved Workflows"])


@router.get("/", response_model=WorkflowListResponse)
async def list_workflows() -> WorkflowListResponse:
    """List saved workflows."""
    stored = await workflow_store.list_all()
    infos = [WorkflowInfo(**s.to_dict()) for s in stored]
    return WorkflowListResponse(workflows=infos, total=len(infos))


@router.get(
    "/{name}",
    response_model=WorkflowDocument,
    responses={404: {"model": ErrorResponse}},
)
async def load_workflow(name: str) -> WorkflowDocument:
    """Load a saved workflow."""
    stored = await workflow_store.get(name)
    if stored is None:
        raise HTTPException(status_code=404, detail=f"Workflow '{name}' not found")
    return WorkflowDocument(**stored.document)


@router.put("/{name}", response_model=WorkflowInfo)
async def save_workflow(name: str, document: WorkflowDocument) -> WorkflowInfo:
    """Save a workflow, replacing any existing one with the same name."""
    stored = await workflow_store.save(name, document.model_dump(mode="json", exclude_none=True))
    return WorkflowInfo(**stored.to_dict())


@router.delete(
    "/{name}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={404: {"model": ErrorResponse}},
)
async def delete_workflow(name: str):
    """Delete a saved workflow."""
    deleted = await workflow_store.delete(name)
    if not deleted:
        raise HTTPException(status_code=404, detail=f"Workflow '{name}' not found")
    logger.info(f"Deleted workflow: {name}")
