"""
Workflow Orchestrator.

Drives one run of a workflow graph: walks the execution plan node by node,
dispatches each node to its executor, tracks per-node state, stops on the
first failure and honours cancellation.
"""

from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
import asyncio
import time
import uuid
import logging

from nodeflow.engine.cancellation import CancelToken
from nodeflow.engine.errors import ExecutionError, RunCancelled
from nodeflow.engine.events import NodeEvent, NodeEventStatus, RunEvent, RunPhase, StatusReporter
from nodeflow.engine.executors import ExecutorRegistry, validate_nodes
from nodeflow.engine.graph import WorkflowGraph
from nodeflow.engine.node import Node
from nodeflow.engine.sequencer import ExecutionPlan, build_plan
from nodeflow.engine.state import NodeRunState, NodeStatus, RunStateManager


logger = logging.getLogger(__name__)


class RunStatus(str, Enum):
    """Status of a workflow run."""
    NOT_STARTED = "not_started"
    RUNNING = "running"
    FINISHED = "finished"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class RunResult:
    """Result of a workflow run."""
    run_id: str
    status: RunStatus
    order: List[str] = field(default_factory=list)
    edge_sequence: Dict[str, int] = field(default_factory=dict)
    node_states: Dict[str, NodeRunState] = field(default_factory=dict)
    errors: Dict[str, str] = field(default_factory=dict)
    error: Optional[str] = None
    failed_node: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    total_duration_ms: Optional[float] = None

    @property
    def results(self) -> Dict[str, str]:
        """Results of completed nodes."""
        return {
            node_id: state.result or ""
            for node_id, state in self.node_states.items()
            if state.status == NodeStatus.COMPLETED
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "status": self.status.value,
            "order": self.order,
            "edge_order": self.edge_sequence,
            "node_states": {
                node_id: state.to_dict() for node_id, state in self.node_states.items()
            },
            "results": self.results,
            "errors": self.errors,
            "error": self.error,
            "failed_node": self.failed_node,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "total_duration_ms": self.total_duration_ms,
        }


class Orchestrator:
    """
    Sequential workflow orchestrator.

    One instance drives exactly one run:
    - Nodes run one at a time, in plan order
    - Each node receives its direct predecessors' results as inputs
    - The first failure ends the run; downstream nodes never start
    - The cancel token is checked before every node and raced against
      the node in flight

    Usage:
        orchestrator = Orchestrator(graph, plan, executors)
        result = await orchestrator.run()
    """

    def __init__(
        self,
        graph: WorkflowGraph,
        plan: ExecutionPlan,
        executors: ExecutorRegistry,
        reporter: Optional[StatusReporter] = None,
        run_id: Optional[str] = None,
        cancel_token: Optional[CancelToken] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            graph: Validated graph snapshot
            plan: Execution plan computed from the graph
            executors: Executor for every node kind
            reporter: Event sink (a private one is created if not provided)
            run_id: Optional run ID (generated if not provided)
            cancel_token: Token for this run (created if not provided)
        """
        self.graph = graph
        self.plan = plan
        self.executors = executors
        self.reporter = reporter or StatusReporter()
        self.run_id = run_id or str(uuid.uuid4())
        self.cancel_token = cancel_token or CancelToken()

        self._state = RunStateManager((n.id for n in graph.nodes), run_id=self.run_id)
        self._status = RunStatus.NOT_STARTED
        self._current_node: Optional[str] = None
        self._started_at: Optional[datetime] = None
        self._start_time: Optional[float] = None
        self._result: Optional[RunResult] = None

    @property
    def status(self) -> RunStatus:
        return self._status

    @property
    def node_states(self) -> Dict[str, NodeRunState]:
        return self._state.states

    @property
    def current_node(self) -> Optional[str]:
        return self._current_node

    @property
    def result(self) -> Optional[RunResult]:
        """The final result, once the run has ended."""
        return self._result

    def cancel(self, reason: Optional[str] = None) -> bool:
        """Request cancellation. Returns False if already requested."""
        return self.cancel_token.cancel(reason)

    async def run(self) -> RunResult:
        """
        Execute the plan.

        Returns:
            RunResult with per-node states and the run's terminal status
        """
        if self._status != RunStatus.NOT_STARTED:
            raise RuntimeError(f"Run '{self.run_id}' has already been started")

        self._started_at = datetime.now()
        self._start_time = time.time()

        errors = validate_nodes(self.graph.nodes)
        if errors:
            logger.info(f"Run {self.run_id} rejected: {len(errors)} invalid node(s)")
            return await self._finish(
                RunStatus.FAILED, error="Node validation failed", errors=errors
            )

        self._status = RunStatus.RUNNING
        await self.reporter.emit(RunEvent(run_id=self.run_id, phase=RunPhase.STARTED))
        logger.info(f"Run {self.run_id} started ({len(self.plan.order)} nodes)")

        try:
            for node_id in self.plan.order:
                if self.cancel_token.cancelled:
                    raise RunCancelled(node_id)

                node = self.graph.node(node_id)
                try:
                    output = await self._execute_node(node)
                except ExecutionError as e:
                    return await self._fail_node(node, str(e))
                except RunCancelled:
                    raise
                except Exception as e:
                    logger.exception(f"Node {node.id} raised unexpectedly: {e}")
                    return await self._fail_node(node, f"{type(e).__name__}: {e}")

                self._state.transition(node.id, NodeStatus.COMPLETED, output)
                self._current_node = None
                await self._emit_node(node.id, NodeEventStatus.COMPLETED, output)

        except RunCancelled as e:
            logger.info(f"Run {self.run_id} cancelled at node '{e.node_id}'")
            return await self._finish(RunStatus.CANCELLED)
        except asyncio.CancelledError:
            # The task driving the run was cancelled from outside
            self.cancel_token.cancel("task cancelled")
            if not self.reporter.closed:
                await self._finish(RunStatus.CANCELLED)
            raise

        logger.info(f"Run {self.run_id} finished")
        return await self._finish(RunStatus.FINISHED)

    async def _execute_node(self, node: Node) -> str:
        """Run one node, racing it against the cancel token."""
        inputs = [
            self._state.get(pred).result or "" for pred in self.graph.predecessors(node.id)
        ]

        self._state.transition(node.id, NodeStatus.RUNNING)
        self._current_node = node.id
        await self._emit_node(node.id, NodeEventStatus.RUNNING)
        logger.info(f"Executing node: {node.id} ({node.kind.value})")

        work = asyncio.ensure_future(self.executors.execute(node, inputs, self.cancel_token))
        watcher = asyncio.ensure_future(self.cancel_token.wait())
        try:
            done, _ = await asyncio.wait(
                {work, watcher}, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            work.cancel()
            raise
        finally:
            watcher.cancel()

        if work in done:
            return work.result()

        work.cancel()
        try:
            await work
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.debug(f"Node {node.id} raised while being cancelled: {e}")
        raise RunCancelled(node.id)

    async def _fail_node(self, node: Node, message: str) -> RunResult:
        logger.error(f"Node {node.id} failed: {message}")
        self._state.transition(node.id, NodeStatus.ERROR, message)
        self._current_node = None
        await self._emit_node(node.id, NodeEventStatus.ERROR, message)
        return await self._finish(RunStatus.FAILED, error=message, failed_node=node.id)

    async def _emit_node(
        self,
        node_id: str,
        status: NodeEventStatus,
        result: Optional[str] = None,
    ) -> None:
        await self.reporter.emit(
            NodeEvent(run_id=self.run_id, node_id=node_id, status=status, result=result)
        )

    async def _finish(
        self,
        status: RunStatus,
        error: Optional[str] = None,
        errors: Optional[Dict[str, str]] = None,
        failed_node: Optional[str] = None,
    ) -> RunResult:
        self._status = status
        completed_at = datetime.now()
        self._result = RunResult(
            run_id=self.run_id,
            status=status,
            order=list(self.plan.order),
            edge_sequence=dict(self.plan.edge_sequence),
            node_states=self._state.states,
            errors=dict(errors or {}),
            error=error,
            failed_node=failed_node,
            started_at=self._started_at,
            completed_at=completed_at,
            total_duration_ms=(time.time() - self._start_time) * 1000,
        )
        await self.reporter.emit(
            RunEvent(
                run_id=self.run_id,
                phase=RunPhase(status.value),
                error=error,
                errors=dict(errors or {}),
            )
        )
        return self._result

    def get_execution_summary(self) -> Dict[str, Any]:
        """Get a summary of the run so far."""
        return {
            "run_id": self.run_id,
            "status": self._status.value,
            "current_node": self._current_node,
            "node_states": {
                node_id: state.to_dict() for node_id, state in self._state.states.items()
            },
            "history": self._state.get_history(),
        }


async def execute_workflow(
    graph: WorkflowGraph,
    executors: ExecutorRegistry,
    reporter: Optional[StatusReporter] = None,
    run_id: Optional[str] = None,
) -> RunResult:
    """
    Convenience function to plan and run a graph.

    Raises:
        CyclicGraph: If the graph cannot be sequenced
    """
    orchestrator = Orchestrator(graph, build_plan(graph), executors, reporter, run_id)
    return await orchestrator.run()
