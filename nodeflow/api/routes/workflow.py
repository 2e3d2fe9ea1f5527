"""
Workflow API Routes.

Endpoints for planning, running, cancelling and inspecting workflow runs.
All HTTP callers share one session, so at most one run is active at a time.
"""

from typing import Optional
from fastapi import APIRouter, Response, status
import logging

from nodeflow.api.schemas import (
    CancelResponse,
    ErrorResponse,
    NodeStateSchema,
    PlanResponse,
    RunRequest,
    RunResponse,
    RunStateResponse,
    WorkflowPayload,
)
from nodeflow.engine.graph import to_mermaid
from nodeflow.engine.orchestrator import RunResult
from nodeflow.engine.session import RunHandle, WorkflowSession


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/workflow", tags=["Workflow"])

# Session shared by HTTP callers
rest_session = WorkflowSession(session_id="rest")


def _result_to_response(result: RunResult, handle: Optional[RunHandle] = None) -> RunResponse:
    """Convert a RunResult to an API response."""
    data = result.to_dict()
    data["node_states"] = {
        node_id: NodeStateSchema(**state) for node_id, state in data["node_states"].items()
    }
    if handle is not None:
        data["events"] = [event.to_message() for event in handle.reporter.history]
    return RunResponse(**data)


@router.post(
    "/plan",
    response_model=PlanResponse,
    responses={400: {"model": ErrorResponse, "description": "Invalid or cyclic graph"}},
)
async def plan_workflow(payload: WorkflowPayload) -> PlanResponse:
    """
    Compute the execution order and edge sequence numbers.

    Nothing is executed.
    """
    nodes, edges = payload.to_engine()
    graph, plan = rest_session.plan(nodes, edges)
    return PlanResponse(
        order=list(plan.order),
        edge_order=dict(plan.edge_sequence),
        mermaid_diagram=to_mermaid(graph, plan),
    )


@router.post(
    "/run",
    response_model=RunResponse,
    responses={
        202: {"model": RunResponse, "description": "Run started in the background"},
        400: {"model": ErrorResponse, "description": "Invalid or cyclic graph"},
        409: {"model": ErrorResponse, "description": "A run is already active"},
        422: {"model": ErrorResponse, "description": "Node validation failed"},
    },
)
async def run_workflow(request: RunRequest, response: Response) -> RunResponse:
    """
    Execute a workflow.

    With ``wait`` (the default) the response carries the final result and
    every emitted event. Otherwise the run continues in the background;
    poll ``GET /workflow/state`` or cancel with ``POST /workflow/cancel``.
    """
    nodes, edges = request.to_engine()
    handle = rest_session.start_run(nodes, edges)

    if not request.wait:
        response.status_code = status.HTTP_202_ACCEPTED
        return RunResponse(run_id=handle.run_id, status="running")

    result = await handle.wait()
    logger.info(f"Run {result.run_id} ended with status {result.status.value}")
    return _result_to_response(result, handle)


@router.post("/cancel", response_model=CancelResponse)
async def cancel_workflow() -> CancelResponse:
    """Cancel the active run. A no-op when nothing is running."""
    return CancelResponse(cancelled=rest_session.cancel_run("cancelled via API"))


@router.get("/state", response_model=RunStateResponse)
async def get_run_state() -> RunStateResponse:
    """Get the state of the active run, or of the last run if none is active."""
    handle = rest_session.last_run
    if handle is None:
        return RunStateResponse(active=False)

    orchestrator = handle.orchestrator
    result = orchestrator.result
    return RunStateResponse(
        active=rest_session.active is handle,
        run_id=handle.run_id,
        status=orchestrator.status.value,
        current_node=orchestrator.current_node,
        node_states={
            node_id: NodeStateSchema(**state.to_dict())
            for node_id, state in orchestrator.node_states.items()
        },
        error=result.error if result else None,
    )
