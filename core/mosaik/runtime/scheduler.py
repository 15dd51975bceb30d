"""
Scheduler - Drives a run through the dependency graph.

The scheduler:
1. Queues every node in the run scope
2. Promotes a node to READY once all its sources have succeeded
3. Starts READY nodes as asyncio tasks, bounded by ``max_concurrency``
4. Commits each node's outcome from the single scheduling loop, so state
   changes are serialized even though provider I/O is concurrent
5. Fails every dependent of a failed node without running it
6. Honours cancellation at every fragment and every scheduling decision

Node kinds form a closed set, dispatched here: prompt nodes emit their
text, transform nodes apply a built-in function, chat nodes stream from
their provider adapter.
"""

import asyncio
import logging
from dataclasses import dataclass

from mosaik.errors import NotFoundError
from mosaik.graph.edge import EdgeSpec, GraphSnapshot
from mosaik.graph.node import Message, Node, NodeKind, NodeStatus
from mosaik.graph.transforms import TransformError, apply_transform
from mosaik.llm.registry import ProviderRegistry
from mosaik.llm.stream_events import (
    ErrorReason,
    FinishEvent,
    ReasoningDeltaEvent,
    StreamErrorEvent,
    TextDeltaEvent,
)
from mosaik.observability import bind_log_fields
from mosaik.runtime.event_bus import EventBus
from mosaik.runtime.run_context import (
    FailureReason,
    NodeError,
    RunContext,
    RunNodeState,
    RunResult,
)

logger = logging.getLogger(__name__)


@dataclass
class NodeOutcome:
    """What a node task hands back to the scheduling loop."""

    state: RunNodeState
    output: str | None = None
    conversation: list[Message] | None = None
    error: NodeError | None = None


def _cancelled_outcome() -> NodeOutcome:
    return NodeOutcome(RunNodeState.CANCELLED, error=NodeError(ErrorReason.CANCELLED, "run cancelled"))


def plan_run(
    snapshot: GraphSnapshot,
    start: str | None = None,
    include_downstream: bool = True,
) -> tuple[list[str], dict[str, str]]:
    """
    Work out which nodes a run executes.

    The scope is the whole graph (``start=None``) or the start node plus,
    unless ``include_downstream`` is False, everything downstream of it.
    Upstream sources outside the scope that already have an output are
    returned as resolved inputs; sources without one are pulled into the
    scope.

    Returns:
        (node ids in topological order, resolved outputs by node id)
    """
    if start is None:
        scope = set(snapshot.nodes)
    else:
        if start not in snapshot.nodes:
            raise NotFoundError(f"Node '{start}' not found")
        scope = {start}
        if include_downstream:
            scope |= snapshot.descendants(start)

    resolved: dict[str, str] = {}
    frontier = list(scope)
    while frontier:
        node_id = frontier.pop()
        for edge in snapshot.get_incoming_edges(node_id):
            source = edge.source
            if source in scope or source in resolved:
                continue
            output = snapshot.nodes[source].materialized_output()
            if output is None:
                scope.add(source)
                frontier.append(source)
            else:
                resolved[source] = output

    return snapshot.topological_order(scope), resolved


def compose_conversation(node: Node, inputs: list[tuple[EdgeSpec, str]]) -> list[Message]:
    """
    Build the conversation a chat node sends to its provider.

    Upstream outputs come first as user turns, in edge insertion order,
    replacing turns injected by earlier runs. The node's own turns follow;
    a trailing assistant turn is dropped so the run regenerates it.
    """
    turns = [
        Message(role="user", content=text, source=edge.source)
        for edge, text in inputs
        if text.strip()
    ]
    own = [m.model_copy() for m in node.own_turns()]
    if own and own[-1].role == "assistant":
        own.pop()
    return turns + own


class Scheduler:
    """
    Executes runs.

    Example:
        scheduler = Scheduler(registry=registry, event_bus=bus, max_concurrency=4)

        snapshot = store.snapshot()
        node_ids, resolved = plan_run(snapshot, start=chat_id)
        ctx = RunContext("run_1", snapshot, node_ids, resolved)

        result = await scheduler.run(ctx)
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        event_bus: EventBus | None = None,
        max_concurrency: int = 4,
        cancel_grace_seconds: float = 1.0,
        backpressure_timeout: float = 5.0,
    ):
        """
        Initialize the scheduler.

        Args:
            registry: Provider adapters for chat nodes
            event_bus: Where status and fragment events go
            max_concurrency: Maximum nodes in flight at once
            cancel_grace_seconds: How long a running node may take to notice
                cancellation before its task is cancelled outright
            backpressure_timeout: Longest wait for lagging event consumers
                before starting another node
        """
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        if backpressure_timeout is None or backpressure_timeout <= 0:
            raise ValueError("backpressure_timeout must be a positive number of seconds")
        self._registry = registry
        self._event_bus = event_bus or EventBus()
        self.max_concurrency = max_concurrency
        self.cancel_grace_seconds = cancel_grace_seconds
        self.backpressure_timeout = backpressure_timeout

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    async def run(self, ctx: RunContext) -> RunResult:
        """Execute every node in ``ctx`` and return the run summary."""
        bind_log_fields(run_id=ctx.run_id)
        logger.info(f"Run {ctx.run_id} started with {len(ctx.node_ids)} nodes")

        await self._event_bus.emit_run_started(ctx.run_id, ctx.node_ids)
        for node_id in ctx.node_ids:
            await self._event_bus.emit_node_status(ctx.run_id, node_id, NodeStatus.QUEUED)

        running: dict[asyncio.Task, str] = {}
        cancel_waiter = asyncio.create_task(ctx.wait_cancelled())
        try:
            self._promote_ready(ctx, ctx.node_ids)
            while True:
                if ctx.cancel_requested:
                    await self._cancel_not_started(ctx)
                    break

                await self._start_ready(ctx, running)
                if not running:
                    if ctx.cancel_requested:
                        continue
                    break

                done, _ = await asyncio.wait({*running, cancel_waiter}, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    if task is cancel_waiter:
                        continue
                    node_id = running.pop(task)
                    await self._commit(ctx, node_id, task.result())

            if running:
                await self._settle_running(ctx, running)

        except asyncio.CancelledError:
            # The run task itself was cancelled (engine shutdown).
            ctx.request_cancel()
            for task in running:
                task.cancel()
            if running:
                await asyncio.wait(running)
            for node_id in ctx.non_terminal():
                ctx.transition(node_id, RunNodeState.CANCELLED)
                await self._event_bus.emit_node_status(ctx.run_id, node_id, NodeStatus.CANCELLED)
            result = ctx.finish()
            await self._event_bus.emit_run_finished(ctx.run_id, result.status.value)
            raise
        finally:
            cancel_waiter.cancel()

        result = ctx.finish()
        logger.info(f"Run {ctx.run_id} finished: {result.status}")
        await self._event_bus.emit_run_finished(
            ctx.run_id,
            result.status.value,
            {
                "succeeded": result.nodes_in(RunNodeState.SUCCEEDED),
                "failed": result.nodes_in(RunNodeState.FAILED),
                "cancelled": result.nodes_in(RunNodeState.CANCELLED),
            },
        )
        return result

    # === SCHEDULING ===

    def _promote_ready(self, ctx: RunContext, candidates: list[str]) -> None:
        for node_id in candidates:
            if node_id in ctx.states and ctx.state(node_id) == RunNodeState.PENDING and ctx.is_ready(node_id):
                ctx.transition(node_id, RunNodeState.READY)

    async def _start_ready(self, ctx: RunContext, running: dict[asyncio.Task, str]) -> None:
        while len(running) < self.max_concurrency:
            ready = ctx.in_state(RunNodeState.READY)
            if not ready:
                return
            await self._wait_for_capacity(ctx)
            if ctx.cancel_requested:
                return

            node_id = ready[0]
            ctx.transition(node_id, RunNodeState.RUNNING)
            await self._event_bus.emit_node_status(ctx.run_id, node_id, NodeStatus.RUNNING)
            task = asyncio.create_task(self._execute_node(ctx, node_id), name=f"{ctx.run_id}:{node_id}")
            running[task] = node_id

    async def _wait_for_capacity(self, ctx: RunContext) -> None:
        """Hold new node starts for lagging consumers, unless the run is cancelled first."""
        if self._event_bus.has_capacity():
            return
        capacity = asyncio.create_task(self._event_bus.wait_for_capacity(self.backpressure_timeout))
        cancelled = asyncio.create_task(ctx.wait_cancelled())
        try:
            await asyncio.wait({capacity, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            capacity.cancel()
            cancelled.cancel()

    async def _commit(self, ctx: RunContext, node_id: str, outcome: NodeOutcome) -> None:
        """Apply a node's terminal outcome. Only called from the scheduling loop."""
        if outcome.state == RunNodeState.SUCCEEDED:
            ctx.succeed(node_id, outcome.output or "", outcome.conversation)
            await self._event_bus.emit_node_status(ctx.run_id, node_id, NodeStatus.SUCCEEDED)
            targets = [e.target for e in ctx.snapshot.get_outgoing_edges(node_id)]
            self._promote_ready(ctx, targets)

        elif outcome.state == RunNodeState.FAILED:
            error = outcome.error or NodeError(FailureReason.INTERNAL_ERROR)
            ctx.fail(node_id, error)
            logger.warning(f"Node {node_id} failed: {error.describe()}")
            await self._event_bus.emit_node_status(
                ctx.run_id, node_id, NodeStatus.FAILED, error=error.message, reason=str(error.reason)
            )
            await self._propagate_failure(ctx, node_id)

        else:
            ctx.transition(node_id, RunNodeState.CANCELLED)
            ctx.partial.pop(node_id, None)
            await self._event_bus.emit_node_status(ctx.run_id, node_id, NodeStatus.CANCELLED)

    async def _propagate_failure(self, ctx: RunContext, failed_id: str) -> None:
        for node_id in ctx.dependents(failed_id):
            if ctx.state(node_id).is_terminal:
                continue
            error = NodeError(
                FailureReason.UPSTREAM_FAILED,
                f"upstream node {failed_id} failed",
                upstream=failed_id,
            )
            ctx.fail(node_id, error)
            await self._event_bus.emit_node_status(
                ctx.run_id, node_id, NodeStatus.FAILED, error=error.message, reason=str(error.reason)
            )

    async def _cancel_not_started(self, ctx: RunContext) -> None:
        for node_id in ctx.in_state(RunNodeState.PENDING, RunNodeState.READY):
            ctx.transition(node_id, RunNodeState.CANCELLED)
            await self._event_bus.emit_node_status(ctx.run_id, node_id, NodeStatus.CANCELLED)

    async def _settle_running(self, ctx: RunContext, running: dict[asyncio.Task, str]) -> None:
        """Give running nodes the grace period to stop, then cancel their tasks."""
        _, pending = await asyncio.wait(running, timeout=self.cancel_grace_seconds)
        for task in pending:
            logger.debug(f"Node {running[task]} did not stop in time; cancelling its task")
            task.cancel()
        if pending:
            await asyncio.wait(pending)

        for task, node_id in running.items():
            outcome = _cancelled_outcome() if task.cancelled() else task.result()
            await self._commit(ctx, node_id, outcome)
        running.clear()

    # === NODE EXECUTION ===

    def _inputs(self, ctx: RunContext, node_id: str) -> list[tuple[EdgeSpec, str]]:
        inputs = []
        for edge in ctx.inbound_edges(node_id):
            output = ctx.output_of(edge.source)
            if output is not None:
                inputs.append((edge, output))
        return inputs

    async def _execute_node(self, ctx: RunContext, node_id: str) -> NodeOutcome:
        """Run one node. Never raises except on task cancellation."""
        bind_log_fields(node_id=node_id)
        node = ctx.snapshot.nodes[node_id]
        try:
            if node.kind == NodeKind.PROMPT:
                return NodeOutcome(RunNodeState.SUCCEEDED, output=node.config.text)
            if node.kind == NodeKind.TRANSFORM:
                return self._run_transform(ctx, node)
            return await self._run_chat(ctx, node)
        except Exception as e:
            logger.exception(f"Unexpected error executing node {node_id}")
            return NodeOutcome(RunNodeState.FAILED, error=NodeError(FailureReason.INTERNAL_ERROR, str(e)))

    def _run_transform(self, ctx: RunContext, node: Node) -> NodeOutcome:
        inputs = [(edge.slot, text) for edge, text in self._inputs(ctx, node.id)]
        try:
            output = apply_transform(node.config.transform, inputs, node.config.params)
        except TransformError as e:
            return NodeOutcome(RunNodeState.FAILED, error=NodeError(FailureReason.TRANSFORM_FAILED, str(e)))
        return NodeOutcome(RunNodeState.SUCCEEDED, output=output)

    async def _run_chat(self, ctx: RunContext, node: Node) -> NodeOutcome:
        config = node.config
        adapter = self._registry.resolve(config.provider, config.model)
        if adapter is None:
            return NodeOutcome(
                RunNodeState.FAILED,
                error=NodeError(
                    FailureReason.UNSUPPORTED_PROVIDER,
                    f"no adapter serves provider={config.provider!r} model={config.model!r}",
                ),
            )

        conversation = compose_conversation(node, self._inputs(ctx, node.id))
        if not conversation:
            return NodeOutcome(
                RunNodeState.FAILED,
                error=NodeError(FailureReason.NO_INPUT, "no input or messages provided to model"),
            )
        ctx.conversations[node.id] = conversation

        if ctx.cancel_requested:
            return _cancelled_outcome()

        text = ""
        thinking = ""
        stream = adapter.send(conversation, config)
        try:
            async for event in stream:
                if ctx.cancel_requested:
                    return _cancelled_outcome()

                if isinstance(event, TextDeltaEvent):
                    text += event.content
                    ctx.partial[node.id] = text
                    await self._event_bus.emit_node_fragment(ctx.run_id, node.id, event.content, text)
                elif isinstance(event, ReasoningDeltaEvent):
                    thinking += event.content
                    await self._event_bus.emit_node_reasoning(ctx.run_id, node.id, event.content)
                elif isinstance(event, StreamErrorEvent):
                    if event.reason == ErrorReason.CANCELLED:
                        return _cancelled_outcome()
                    return NodeOutcome(RunNodeState.FAILED, error=NodeError(event.reason, event.error))
                elif isinstance(event, FinishEvent):
                    break
        finally:
            await stream.aclose()

        reply = Message(role="assistant", content=text, thinking=thinking or None)
        return NodeOutcome(RunNodeState.SUCCEEDED, output=text, conversation=[*conversation, reply])
