"""
Workflow session: the boundary callers use to start and cancel runs.

A session owns at most one active run. Starting a run while one is active
is rejected with RunAlreadyActive; the active run is left untouched.
"""

from typing import AsyncIterator, Iterable, Optional, Tuple
from dataclasses import dataclass
import asyncio
import logging
import uuid

from nodeflow.engine.errors import RunAlreadyActive, ValidationFailed
from nodeflow.engine.events import Event, EventSink, StatusReporter
from nodeflow.engine.executors import ExecutorRegistry, default_registry, validate_nodes
from nodeflow.engine.graph import WorkflowGraph
from nodeflow.engine.node import Edge, Node
from nodeflow.engine.orchestrator import Orchestrator, RunResult
from nodeflow.engine.sequencer import ExecutionPlan, build_plan


logger = logging.getLogger(__name__)


@dataclass
class RunHandle:
    """A started run."""
    run_id: str
    orchestrator: Orchestrator
    reporter: StatusReporter
    task: "asyncio.Task[RunResult]"

    @property
    def done(self) -> bool:
        return self.task.done()

    def cancel(self) -> bool:
        return self.orchestrator.cancel()

    def events(self) -> AsyncIterator[Event]:
        """Stream this run's events, ending with the terminal run event."""
        return self.reporter.stream()

    async def wait(self) -> RunResult:
        return await asyncio.shield(self.task)


class WorkflowSession:
    """
    One editing session's execution host.

    Usage:
        session = WorkflowSession()
        handle = session.start_run(nodes, edges)
        async for event in handle.events():
            ...
    """

    def __init__(
        self,
        executors: Optional[ExecutorRegistry] = None,
        session_id: Optional[str] = None,
    ):
        self.session_id = session_id or str(uuid.uuid4())
        self._executors = executors
        self._active: Optional[RunHandle] = None
        self._last: Optional[RunHandle] = None

    @property
    def executors(self) -> ExecutorRegistry:
        if self._executors is None:
            self._executors = default_registry()
        return self._executors

    @property
    def active(self) -> Optional[RunHandle]:
        return self._active

    @property
    def is_running(self) -> bool:
        return self._active is not None

    @property
    def last_run(self) -> Optional[RunHandle]:
        """The most recently started run, active or not."""
        return self._last

    @property
    def last_result(self) -> Optional[RunResult]:
        if self._last is None:
            return None
        return self._last.orchestrator.result

    def plan(
        self,
        nodes: Iterable[Node],
        edges: Iterable[Edge],
    ) -> Tuple[WorkflowGraph, ExecutionPlan]:
        """
        Build and sequence a graph without running it.

        Raises:
            InvalidGraph: On a structural defect
            CyclicGraph: If the graph has a cycle
        """
        graph = WorkflowGraph.build(nodes, edges)
        return graph, build_plan(graph)

    def start_run(
        self,
        nodes: Iterable[Node],
        edges: Iterable[Edge],
        sink: Optional[EventSink] = None,
    ) -> RunHandle:
        """
        Validate the graph and start executing it in a background task.

        Must be called from a running event loop. Every error is raised
        before any event is emitted.

        Raises:
            RunAlreadyActive: If this session already has a run in progress
            InvalidGraph: On a structural defect
            CyclicGraph: If the graph has a cycle
            ValidationFailed: If a node is missing a required field
        """
        if self._active is not None and not self._active.done:
            raise RunAlreadyActive(self._active.run_id)

        graph, plan = self.plan(nodes, edges)
        errors = validate_nodes(graph.nodes)
        if errors:
            raise ValidationFailed(errors)

        run_id = str(uuid.uuid4())
        reporter = StatusReporter(sink)
        orchestrator = Orchestrator(
            graph, plan, self.executors, reporter=reporter, run_id=run_id
        )
        task = asyncio.get_running_loop().create_task(orchestrator.run())
        handle = RunHandle(run_id=run_id, orchestrator=orchestrator, reporter=reporter, task=task)

        self._active = handle
        self._last = handle
        task.add_done_callback(lambda _: self._release(handle))
        logger.info(f"Session {self.session_id} started run {run_id}")
        return handle

    def cancel_run(self, reason: Optional[str] = None) -> bool:
        """
        Cancel the active run.

        Returns:
            True if a cancellation was requested, False if nothing was running
            or the run was already cancelling
        """
        # The release callback may not have run yet for a finished task
        if self._active is None or self._active.done:
            return False
        logger.info(f"Session {self.session_id} cancelling run {self._active.run_id}")
        return self._active.orchestrator.cancel(reason)

    def _release(self, handle: RunHandle) -> None:
        if self._active is handle:
            self._active = None
        if not handle.task.cancelled() and handle.task.exception() is not None:
            logger.error(
                f"Run {handle.run_id} crashed: {handle.task.exception()!r}"
            )

    async def close(self) -> None:
        """Cancel the active run, if any, and wait for it to end."""
        handle = self._active
        if handle is None:
            return
        handle.cancel("session closed")
        try:
            await handle.task
        except asyncio.CancelledError:
            pass
