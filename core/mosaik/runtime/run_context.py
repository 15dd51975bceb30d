"""
Run Context - Per-run mutable state.

Holds the snapshot a run executes against, the live state of each node in
scope, materialized outputs, conversations and error records, plus the
cancellation flag. Only the scheduler writes here; the event bus and the
engine read.

State machine per node:
    PENDING -> READY -> RUNNING -> SUCCEEDED | FAILED | CANCELLED
    PENDING/READY -> FAILED      (an upstream node failed)
    PENDING/READY -> CANCELLED   (the run was cancelled)
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from mosaik.errors import InvalidTransitionError
from mosaik.graph.edge import EdgeSpec, GraphSnapshot
from mosaik.graph.node import Message, NodeStatus


class RunNodeState(StrEnum):
    """Scheduler-side state of a node within one run."""

    PENDING = "pending"
    READY = "ready"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES

    def to_status(self) -> NodeStatus:
        """Status shown on the canvas."""
        if self in (RunNodeState.PENDING, RunNodeState.READY):
            return NodeStatus.QUEUED
        return NodeStatus(self.value)


TERMINAL_STATES = frozenset({RunNodeState.SUCCEEDED, RunNodeState.FAILED, RunNodeState.CANCELLED})

_ALLOWED_TRANSITIONS: dict[RunNodeState, set[RunNodeState]] = {
    RunNodeState.PENDING: {RunNodeState.READY, RunNodeState.FAILED, RunNodeState.CANCELLED},
    RunNodeState.READY: {RunNodeState.RUNNING, RunNodeState.FAILED, RunNodeState.CANCELLED},
    RunNodeState.RUNNING: {RunNodeState.SUCCEEDED, RunNodeState.FAILED, RunNodeState.CANCELLED},
    RunNodeState.SUCCEEDED: set(),
    RunNodeState.FAILED: set(),
    RunNodeState.CANCELLED: set(),
}


class RunStatus(StrEnum):
    RUNNING = "running"
    COMPLETED = "completed"  # every node succeeded
    FAILED = "failed"  # at least one node failed
    CANCELLED = "cancelled"


class FailureReason(StrEnum):
    """Engine-side failure reasons (provider reasons come from ErrorReason)."""

    UPSTREAM_FAILED = "UpstreamFailed"
    NO_INPUT = "NoInput"
    UNSUPPORTED_PROVIDER = "UnsupportedProvider"
    TRANSFORM_FAILED = "TransformFailed"
    INTERNAL_ERROR = "InternalError"


@dataclass
class NodeError:
    """Why a node did not succeed."""

    reason: str
    message: str = ""
    upstream: str | None = None  # failed ancestor, for propagated failures

    def describe(self) -> str:
        return f"{self.reason}: {self.message}" if self.message else self.reason


@dataclass
class RunResult:
    """Summary of a finished run."""

    run_id: str
    status: RunStatus
    states: dict[str, RunNodeState] = field(default_factory=dict)
    outputs: dict[str, str] = field(default_factory=dict)
    errors: dict[str, NodeError] = field(default_factory=dict)
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def success(self) -> bool:
        return self.status == RunStatus.COMPLETED

    def nodes_in(self, state: RunNodeState) -> list[str]:
        return [node_id for node_id, s in self.states.items() if s == state]

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "status": self.status.value,
            "states": {k: v.value for k, v in self.states.items()},
            "errors": {k: v.describe() for k, v in self.errors.items()},
        }


class RunContext:
    """
    State of one triggered run.

    Args:
        run_id: Unique run identifier
        snapshot: Graph copy the run executes against
        node_ids: Nodes to execute, in topological order
        resolved: Outputs of upstream nodes outside the scope that count as
            already succeeded
    """

    def __init__(
        self,
        run_id: str,
        snapshot: GraphSnapshot,
        node_ids: list[str],
        resolved: dict[str, str] | None = None,
    ):
        self.run_id = run_id
        self.snapshot = snapshot
        self.node_ids = list(node_ids)
        self.resolved: dict[str, str] = dict(resolved or {})

        self.states: dict[str, RunNodeState] = {n: RunNodeState.PENDING for n in self.node_ids}
        self.outputs: dict[str, str] = {}
        self.conversations: dict[str, list[Message]] = {}
        self.partial: dict[str, str] = {}  # streamed text of running nodes
        self.errors: dict[str, NodeError] = {}

        self.status = RunStatus.RUNNING
        self.started_at = datetime.now()
        self.completed_at: datetime | None = None
        self._cancel_event = asyncio.Event()

    # === CANCELLATION ===

    def request_cancel(self) -> None:
        self._cancel_event.set()

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_event.is_set()

    async def wait_cancelled(self) -> None:
        await self._cancel_event.wait()

    # === STATE ===

    def state(self, node_id: str) -> RunNodeState:
        return self.states[node_id]

    def transition(self, node_id: str, new_state: RunNodeState) -> None:
        current = self.states[node_id]
        if new_state not in _ALLOWED_TRANSITIONS[current]:
            raise InvalidTransitionError(f"{node_id}: {current} -> {new_state} is not allowed")
        self.states[node_id] = new_state

    def fail(self, node_id: str, error: NodeError) -> None:
        self.transition(node_id, RunNodeState.FAILED)
        self.errors[node_id] = error
        self.partial.pop(node_id, None)

    def succeed(self, node_id: str, output: str, conversation: list[Message] | None = None) -> None:
        self.transition(node_id, RunNodeState.SUCCEEDED)
        self.outputs[node_id] = output
        if conversation is not None:
            self.conversations[node_id] = conversation
        self.partial.pop(node_id, None)

    def in_state(self, *states: RunNodeState) -> list[str]:
        return [n for n in self.node_ids if self.states[n] in states]

    def non_terminal(self) -> list[str]:
        return [n for n in self.node_ids if not self.states[n].is_terminal]

    @property
    def is_finished(self) -> bool:
        return not self.non_terminal()

    # === DEPENDENCIES ===

    def inbound_edges(self, node_id: str) -> list[EdgeSpec]:
        """Inbound edges whose sources are in scope or already resolved."""
        return [
            e
            for e in self.snapshot.get_incoming_edges(node_id)
            if e.source in self.states or e.source in self.resolved
        ]

    def source_succeeded(self, source: str) -> bool:
        if source in self.states:
            return self.states[source] == RunNodeState.SUCCEEDED
        return source in self.resolved

    def output_of(self, source: str) -> str | None:
        if source in self.outputs:
            return self.outputs[source]
        return self.resolved.get(source)

    def is_ready(self, node_id: str) -> bool:
        return all(self.source_succeeded(e.source) for e in self.inbound_edges(node_id))

    def dependents(self, node_id: str) -> list[str]:
        """In-scope nodes that depend on ``node_id`` directly or transitively."""
        seen: set[str] = set()
        stack = [node_id]
        while stack:
            current = stack.pop()
            for edge in self.snapshot.get_outgoing_edges(current):
                if edge.target in self.states and edge.target not in seen:
                    seen.add(edge.target)
                    stack.append(edge.target)
        return [n for n in self.node_ids if n in seen]

    # === RESULTS ===

    def finish(self) -> RunResult:
        """Fix the run status and freeze the result."""
        if self.cancel_requested and self.in_state(RunNodeState.CANCELLED):
            self.status = RunStatus.CANCELLED
        elif self.in_state(RunNodeState.FAILED):
            self.status = RunStatus.FAILED
        else:
            self.status = RunStatus.COMPLETED
        self.completed_at = datetime.now()
        return self.to_result()

    def to_result(self) -> RunResult:
        return RunResult(
            run_id=self.run_id,
            status=self.status,
            states=dict(self.states),
            outputs=dict(self.outputs),
            errors=dict(self.errors),
            started_at=self.started_at,
            completed_at=self.completed_at,
        )
