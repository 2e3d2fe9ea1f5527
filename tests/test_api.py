"""
Tests for the FastAPI endpoints.
"""

import pytest
import asyncio
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient

from nodeflow.main import app
from nodeflow.api.routes import websocket, workflows
from nodeflow.storage.workflows import WorkflowStore


client = TestClient(app)


def node(node_id: str, kind: str, **data) -> dict:
    return {"id": node_id, "type": kind, "data": {"label": node_id, **data}}


def edge(edge_id: str, source: str, target: str) -> dict:
    return {"id": edge_id, "source": source, "target": target}


PIPELINE = {
    "nodes": [
        node("text", "input", content="hello"),
        node("shout", "cli", command="echo ${1} | tr a-z A-Z"),
        node("show", "preview"),
    ],
    "edges": [edge("e1", "text", "shout"), edge("e2", "shout", "show")],
}

CYCLE = {
    "nodes": [node("A", "preview"), node("B", "preview")],
    "edges": [edge("e1", "A", "B"), edge("e2", "B", "A")],
}


@pytest.fixture
def store(tmp_path, monkeypatch):
    """Point the saved-workflow routes at a temporary directory."""
    temp_store = WorkflowStore(tmp_path)
    monkeypatch.setattr(workflows, "workflow_store", temp_store)
    monkeypatch.setattr(websocket, "workflow_store", temp_store)
    return temp_store


class TestRootEndpoints:
    """Tests for root endpoints."""

    def test_root(self):
        """Test root endpoint returns API info."""
        response = client.get("/")
        assert response.status_code == 200
        data = response.json()
        assert "name" in data
        assert data["endpoints"]["websocket"] == "/ws/workflow"

    def test_health(self):
        """Test health check endpoint."""
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert "run_active" in data


class TestPlanEndpoint:
    """Tests for the plan endpoint."""

    def test_plan_diamond(self):
        """Test order and edge numbering for a diamond graph."""
        payload = {
            "nodes": [
                node("A", "input", content="a"),
                node("B", "preview"),
                node("C", "preview"),
                node("D", "preview"),
            ],
            "edges": [
                edge("e1", "A", "B"),
                edge("e2", "A", "C"),
                edge("e3", "B", "D"),
                edge("e4", "C", "D"),
            ],
        }
        response = client.post("/workflow/plan", json=payload)
        assert response.status_code == 200
        data = response.json()
        assert data["order"] == ["A", "B", "C", "D"]
        assert data["edge_order"] == {"e1": 1, "e2": 2, "e3": 3, "e4": 4}
        assert "graph TD" in data["mermaid_diagram"]

    def test_plan_cycle(self):
        """Test a cycle is reported as a 400."""
        response = client.post("/workflow/plan", json=CYCLE)
        assert response.status_code == 400
        assert response.json()["error"] == "CyclicGraph"

    def test_plan_dangling_edge(self):
        payload = {"nodes": [node("a", "preview")], "edges": [edge("e", "a", "nope")]}
        response = client.post("/workflow/plan", json=payload)
        assert response.status_code == 400
        assert response.json()["error"] == "InvalidGraph"

    def test_plan_unknown_node_type(self):
        payload = {"nodes": [{"id": "a", "type": "teleport", "data": {}}], "edges": []}
        response = client.post("/workflow/plan", json=payload)
        assert response.status_code == 422


class TestRunEndpoint:
    """Tests for running workflows over HTTP."""

    def test_run_pipeline(self):
        """Test a text -> command -> preview pipeline."""
        response = client.post("/workflow/run", json=PIPELINE)
        assert response.status_code == 200
        data = response.json()

        assert data["status"] == "finished"
        assert data["order"] == ["text", "shout", "show"]
        assert data["results"]["shout"] == "HELLO"
        assert data["results"]["show"] == "HELLO"
        assert data["node_states"]["show"]["status"] == "completed"

        types = [event["type"] for event in data["events"]]
        assert types[0] == "execution_started"
        assert types[-1] == "execution_completed"
        assert data["events"][1]["data"] == {"nodeId": "text", "status": "running", "result": None}

    def test_run_failing_command(self):
        """Test a failing node fails the run and downstream nodes stay idle."""
        payload = {
            "nodes": [node("bad", "cli", command="exit 4"), node("show", "preview")],
            "edges": [edge("e", "bad", "show")],
        }
        response = client.post("/workflow/run", json=payload)
        assert response.status_code == 200
        data = response.json()

        assert data["status"] == "failed"
        assert data["failed_node"] == "bad"
        assert data["node_states"]["bad"]["status"] == "error"
        assert data["node_states"]["show"]["status"] == "idle"
        assert data["events"][-1]["data"]["phase"] == "failed"

    def test_run_validation_failed(self):
        """Test missing required fields produce a 422 keyed by node id."""
        payload = {
            "nodes": [node("g", "llm", prompt=""), node("c", "cli")],
            "edges": [],
        }
        response = client.post("/workflow/run", json=payload)
        assert response.status_code == 422
        data = response.json()
        assert data["error"] == "ValidationFailed"
        assert data["errors"] == {
            "g": "Prompt field is required",
            "c": "Command field is required",
        }

    def test_run_cycle(self):
        response = client.post("/workflow/run", json=CYCLE)
        assert response.status_code == 400

    def test_cancel_without_run(self):
        """Test cancel is a no-op when nothing is running."""
        response = client.post("/workflow/cancel")
        assert response.status_code == 200
        assert response.json()["cancelled"] is False

    def test_state_after_run(self):
        client.post("/workflow/run", json=PIPELINE)

        response = client.get("/workflow/state")
        assert response.status_code == 200
        data = response.json()
        assert data["active"] is False
        assert data["status"] == "finished"
        assert data["node_states"]["shout"]["result"] == "HELLO"


class TestBackgroundRun:
    """Tests for background runs and cancellation."""

    @pytest.mark.asyncio
    async def test_background_run_cancel(self):
        """Test a background run blocks a second run and can be cancelled."""
        slow = {
            "nodes": [node("slow", "cli", command="sleep 5"), node("after", "preview")],
            "edges": [edge("e", "slow", "after")],
            "wait": False,
        }
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            response = await ac.post("/workflow/run", json=slow)
            assert response.status_code == 202
            run_id = response.json()["run_id"]

            response = await ac.post("/workflow/run", json=PIPELINE)
            assert response.status_code == 409
            assert response.json()["error"] == "RunAlreadyActive"

            await asyncio.sleep(0.1)
            response = await ac.post("/workflow/cancel")
            assert response.json()["cancelled"] is True

            data = {}
            for _ in range(50):
                data = (await ac.get("/workflow/state")).json()
                if not data["active"]:
                    break
                await asyncio.sleep(0.05)

            assert data["run_id"] == run_id
            assert data["active"] is False
            assert data["status"] == "cancelled"
            assert data["node_states"]["after"]["status"] == "idle"


class TestSavedWorkflows:
    """Tests for saved workflow endpoints."""

    def test_save_load_delete(self, store):
        """Test the full save, load, list and delete cycle."""
        response = client.put("/workflows/pipeline", json=PIPELINE)
        assert response.status_code == 200
        info = response.json()
        assert info["name"] == "pipeline"
        assert info["node_count"] == 3
        assert info["edge_count"] == 2

        response = client.get("/workflows/pipeline")
        assert response.status_code == 200
        document = response.json()
        assert document["version"] == "1.0.0"
        assert [n["id"] for n in document["nodes"]] == ["text", "shout", "show"]
        assert document["nodes"][1]["type"] == "cli"
        assert document["nodes"][1]["data"]["command"] == "echo ${1} | tr a-z A-Z"

        response = client.get("/workflows/")
        assert response.json()["total"] == 1

        response = client.delete("/workflows/pipeline")
        assert response.status_code == 204

        response = client.get("/workflows/pipeline")
        assert response.status_code == 404

    def test_saved_to_disk(self, store, tmp_path):
        client.put("/workflows/on-disk", json=PIPELINE)
        assert (tmp_path / "on-disk.json").exists()

    def test_delete_missing(self, store):
        response = client.delete("/workflows/missing")
        assert response.status_code == 404

    def test_invalid_name(self, store):
        response = client.put("/workflows/bad name!", json=PIPELINE)
        assert response.status_code == 400


class TestWebSocket:
    """Tests for the editor WebSocket."""

    @staticmethod
    def receive_until(ws, message_type: str) -> list:
        messages = []
        while True:
            message = ws.receive_json()
            messages.append(message)
            if message["type"] == message_type:
                return messages

    def test_execute_workflow(self):
        """Test a run streams node status messages to the editor."""
        with client.websocket_connect("/ws/workflow") as ws:
            ws.send_json({"type": "execute_workflow", "data": PIPELINE})
            messages = self.receive_until(ws, "execution_completed")

        assert messages[0]["type"] == "execution_started"
        statuses = [
            (m["data"]["nodeId"], m["data"]["status"])
            for m in messages
            if m["type"] == "node_execution_status"
        ]
        assert statuses == [
            ("text", "running"), ("text", "completed"),
            ("shout", "running"), ("shout", "completed"),
            ("show", "running"), ("show", "completed"),
        ]
        assert messages[-1]["data"]["phase"] == "finished"

    def test_validation_failed(self):
        with client.websocket_connect("/ws/workflow") as ws:
            ws.send_json({
                "type": "execute_workflow",
                "data": {"nodes": [node("g", "llm")], "edges": []},
            })
            message = ws.receive_json()

        assert message == {
            "type": "validation_failed",
            "data": {"errors": {"g": "Prompt field is required"}},
        }

    def test_cycle_reported(self):
        with client.websocket_connect("/ws/workflow") as ws:
            ws.send_json({"type": "execute_workflow", "data": CYCLE})
            message = ws.receive_json()

        assert message["type"] == "error"
        assert message["data"]["code"] == "CyclicGraph"

    def test_abort_workflow(self):
        """Test abort stops a long-running command."""
        slow = {"nodes": [node("slow", "cli", command="sleep 5")], "edges": []}
        with client.websocket_connect("/ws/workflow") as ws:
            ws.send_json({"type": "execute_workflow", "data": slow})
            self.receive_until(ws, "node_execution_status")
            ws.send_json({"type": "abort_workflow"})
            messages = self.receive_until(ws, "execution_completed")

        assert messages[-1]["data"]["phase"] == "cancelled"

    def test_plan_workflow(self):
        with client.websocket_connect("/ws/workflow") as ws:
            ws.send_json({"type": "plan_workflow", "data": PIPELINE})
            message = ws.receive_json()

        assert message["type"] == "execution_plan"
        assert message["data"]["order"] == ["text", "shout", "show"]
        assert message["data"]["edgeOrder"] == {"e1": 1, "e2": 2}

    def test_save_and_load(self, store):
        with client.websocket_connect("/ws/workflow") as ws:
            ws.send_json({"type": "save_workflow", "data": {"name": "ws-flow", **PIPELINE}})
            assert ws.receive_json() == {"type": "workflow_saved", "data": {"name": "ws-flow"}}

            ws.send_json({"type": "load_workflow", "data": {"name": "ws-flow"}})
            message = ws.receive_json()

        assert message["type"] == "workflow_loaded"
        assert len(message["data"]["nodes"]) == 3

    def test_load_missing(self, store):
        with client.websocket_connect("/ws/workflow") as ws:
            ws.send_json({"type": "load_workflow", "data": {"name": "nothing"}})
            message = ws.receive_json()

        assert message["type"] == "error"
        assert message["data"]["code"] == "not_found"

    def test_unknown_message(self):
        with client.websocket_connect("/ws/workflow") as ws:
            ws.send_json({"type": "teleport"})
            message = ws.receive_json()

        assert message["data"]["code"] == "unknown_message"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
