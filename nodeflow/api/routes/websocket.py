"""
WebSocket Route for the workflow editor.

Speaks the editor's message protocol. Each connection gets its own
WorkflowSession, so every open editor can run one workflow at a time.
"""

from typing import Any, Awaitable, Callable, Dict
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError
import asyncio
import logging

from nodeflow.api.schemas import WorkflowDocument, WorkflowPayload
from nodeflow.engine.errors import ValidationFailed, WorkflowError
from nodeflow.engine.events import Event
from nodeflow.engine.session import WorkflowSession
from nodeflow.storage.workflows import InvalidWorkflowName, workflow_store


logger = logging.getLogger(__name__)

router = APIRouter(tags=["WebSocket"])

Send = Callable[[Dict[str, Any]], Awaitable[None]]


@router.websocket("/ws/workflow")
async def workflow_socket(websocket: WebSocket):
    """
    WebSocket endpoint for the workflow editor.

    Message format (client -> server):
    ```json
    {"type": "execute_workflow", "data": {"nodes": [...], "edges": [...]}}
    {"type": "abort_workflow"}
    {"type": "plan_workflow", "data": {"nodes": [...], "edges": [...]}}
    {"type": "save_workflow", "data": {"name": "build", "nodes": [...], "edges": [...]}}
    {"type": "load_workflow", "data": {"name": "build"}}
    ```

    Message format (server -> client):
    ```json
    {"type": "execution_started", "data": {"runId": "..."}}
    {"type": "node_execution_status", "data": {"nodeId": "a", "status": "running", "result": null}}
    {"type": "execution_completed", "data": {"runId": "...", "phase": "finished", ...}}
    ```
    """
    await websocket.accept()
    session = WorkflowSession()
    send_lock = asyncio.Lock()
    logger.info(f"Editor connected (session {session.session_id})")

    async def send(message: Dict[str, Any]) -> None:
        async with send_lock:
            await websocket.send_json(message)

    try:
        while True:
            message = await websocket.receive_json()
            await _handle_message(session, message, send)

    except WebSocketDisconnect:
        logger.info(f"Editor disconnected (session {session.session_id})")
    except Exception as e:
        logger.exception(f"WebSocket error: {e}")
        try:
            await send({"type": "error", "data": {"code": "internal_error", "error": str(e)}})
        except Exception:
            logger.debug("Could not report error to a closed socket")
    finally:
        await session.close()


async def _handle_message(session: WorkflowSession, message: Dict[str, Any], send: Send) -> None:
    message_type = message.get("type")
    data = message.get("data") or {}

    try:
        if message_type == "execute_workflow":
            await _execute(session, data, send)
        elif message_type == "abort_workflow":
            session.cancel_run("aborted by editor")
        elif message_type == "plan_workflow":
            nodes, edges = WorkflowPayload(**data).to_engine()
            _, plan = session.plan(nodes, edges)
            await send({
                "type": "execution_plan",
                "data": {"order": list(plan.order), "edgeOrder": dict(plan.edge_sequence)},
            })
        elif message_type == "save_workflow":
            name = data.get("name", "")
            document = WorkflowDocument(**data)
            await workflow_store.save(name, document.model_dump(mode="json", exclude_none=True))
            await send({"type": "workflow_saved", "data": {"name": name}})
        elif message_type == "load_workflow":
            name = data.get("name", "")
            stored = await workflow_store.get(name)
            if stored is None:
                await _send_error(send, "not_found", f"Workflow '{name}' not found")
            else:
                await send({"type": "workflow_loaded", "data": stored.document})
        else:
            await _send_error(send, "unknown_message", f"Unknown message type '{message_type}'")

    except ValidationError as e:
        await _send_error(send, "invalid_payload", str(e))
    except InvalidWorkflowName as e:
        await _send_error(send, "invalid_name", str(e))
    except ValidationFailed as e:
        await send({"type": "validation_failed", "data": {"errors": e.errors}})
    except WorkflowError as e:
        await _send_error(send, type(e).__name__, str(e))


async def _execute(session: WorkflowSession, data: Dict[str, Any], send: Send) -> None:
    nodes, edges = WorkflowPayload(**data).to_engine()

    async def sink(event: Event) -> None:
        await send(event.to_message())

    # The run continues in the background so abort messages are still read
    session.start_run(nodes, edges, sink=sink)


async def _send_error(send: Send, code: str, error: str) -> None:
    await send({"type": "error", "data": {"code": code, "error": error}})
