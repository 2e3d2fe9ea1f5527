"""
Status events and the reporter that delivers them.

The orchestrator emits node events (running / completed / error) and run
events (started / finished / failed / cancelled). The reporter keeps them
in emission order and hands them to a streaming consumer and, optionally,
to an async sink such as a WebSocket.
"""

from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Union
from pydantic import BaseModel, Field
from datetime import datetime
from enum import Enum
import asyncio
import logging


logger = logging.getLogger(__name__)


class NodeEventStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"


class RunPhase(str, Enum):
    STARTED = "started"
    FINISHED = "finished"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_PHASES = {RunPhase.FINISHED, RunPhase.FAILED, RunPhase.CANCELLED}


class NodeEvent(BaseModel):
    """Status change of one node."""

    run_id: str
    node_id: str
    status: NodeEventStatus
    result: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.now)

    def to_message(self) -> Dict[str, Any]:
        return {
            "type": "node_execution_status",
            "data": {
                "nodeId": self.node_id,
                "status": self.status.value,
                "result": self.result,
            },
        }


class RunEvent(BaseModel):
    """Phase change of the whole run."""

    run_id: str
    phase: RunPhase
    error: Optional[str] = None
    errors: Dict[str, str] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=datetime.now)

    @property
    def is_terminal(self) -> bool:
        return self.phase in TERMINAL_PHASES

    def to_message(self) -> Dict[str, Any]:
        if self.phase == RunPhase.STARTED:
            return {"type": "execution_started", "data": {"runId": self.run_id}}
        return {
            "type": "execution_completed",
            "data": {
                "runId": self.run_id,
                "phase": self.phase.value,
                "error": self.error,
                "errors": self.errors,
            },
        }


Event = Union[NodeEvent, RunEvent]
EventSink = Callable[[Event], Awaitable[None]]


class StatusReporter:
    """
    Ordered event sink for one run.

    Every emitted event is appended to ``history``, queued for each active
    ``stream()`` and forwarded to the optional sink, in that order.
    """

    def __init__(self, sink: Optional[EventSink] = None):
        self.sink = sink
        self.history: List[Event] = []
        self._subscribers: List["asyncio.Queue[Event]"] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        """True once a terminal run event has been emitted."""
        return self._closed

    async def emit(self, event: Event) -> None:
        if self._closed:
            raise RuntimeError("Cannot emit after the run has ended")
        if isinstance(event, RunEvent) and event.is_terminal:
            self._closed = True

        self.history.append(event)
        for queue in self._subscribers:
            queue.put_nowait(event)

        if self.sink is not None:
            try:
                await self.sink(event)
            except Exception as e:
                logger.warning(f"Event sink failed: {e}")

    async def stream(self) -> AsyncIterator[Event]:
        """
        Yield every event of the run, ending with the terminal run event.

        Events emitted before the stream started are replayed first, so any
        number of consumers each see the full sequence.
        """
        queue: "asyncio.Queue[Event]" = asyncio.Queue()
        for event in self.history:
            queue.put_nowait(event)
        self._subscribers.append(queue)
        try:
            while True:
                event = await queue.get()
                yield event
                if isinstance(event, RunEvent) and event.is_terminal:
                    return
        finally:
            self._subscribers.remove(queue)

    def node_events(self) -> List[NodeEvent]:
        return [e for e in self.history if isinstance(e, NodeEvent)]

    def run_events(self) -> List[RunEvent]:
        return [e for e in self.history if isinstance(e, RunEvent)]
