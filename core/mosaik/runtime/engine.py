"""
Workflow Engine - The surface the canvas talks to.

Graph edits go straight to the GraphStore. ``trigger_run`` takes a
snapshot, plans the run, and hands it to the Scheduler as a background
task; the UI follows progress through the event bus and the store's
version counter. When a run ends its results are copied back into the
store, leaving any config edits made meanwhile untouched.
"""

import asyncio
import logging
import uuid
from collections import OrderedDict
from pathlib import Path
from typing import Any

from mosaik.config import EngineConfig, load_engine_config
from mosaik.errors import RunConflictError, RunNotFoundError
from mosaik.files import file_type_of, read_file, write_file
from mosaik.graph.edge import EdgeSpec, GraphSnapshot
from mosaik.graph.node import Node, NodeConfig, NodeKind, NodeStatus
from mosaik.graph.store import GraphStore
from mosaik.llm.registry import ProviderRegistry, build_registry
from mosaik.runtime.event_bus import EventBus, EventSubscription, EventType
from mosaik.runtime.run_context import RunContext, RunNodeState, RunResult
from mosaik.runtime.scheduler import Scheduler, plan_run

logger = logging.getLogger(__name__)


class WorkflowEngine:
    """
    Node graph plus the machinery to run it.

    Example:
        engine = WorkflowEngine(ProviderRegistry([OllamaAdapter()]))

        prompt = engine.create_node(NodeKind.PROMPT, text="Summarise: ...")
        chat = engine.create_node(NodeKind.CHAT, provider="ollama", model="llama3")
        engine.connect(prompt, chat)

        run_id = await engine.trigger_run(chat)
        result = await engine.wait_for_run(run_id)
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        config: EngineConfig | None = None,
        store: GraphStore | None = None,
        event_bus: EventBus | None = None,
        result_retention_max: int = 100,
    ):
        self.config = config or EngineConfig()
        self.registry = registry
        self.store = store or GraphStore()
        self.event_bus = event_bus or EventBus(
            max_history=self.config.event_history,
            high_water_mark=self.config.event_high_water_mark,
        )
        self.scheduler = Scheduler(
            registry=registry,
            event_bus=self.event_bus,
            max_concurrency=self.config.max_concurrency,
            cancel_grace_seconds=self.config.cancel_grace_seconds,
            backpressure_timeout=self.config.backpressure_timeout,
        )

        self._active_runs: dict[str, RunContext] = {}
        self._run_tasks: dict[str, asyncio.Task] = {}
        self._results: OrderedDict[str, RunResult] = OrderedDict()
        self._result_retention_max = result_retention_max

    @classmethod
    def from_config(cls, config: EngineConfig | None = None) -> "WorkflowEngine":
        """Build an engine whose adapters come from configuration."""
        config = config or load_engine_config()
        return cls(build_registry(config), config=config)

    @property
    def graph_version(self) -> int:
        return self.store.version

    # === GRAPH COMMANDS ===

    def create_node(self, kind: NodeKind | str, config: NodeConfig | None = None, **fields: Any) -> str:
        """Place a node; ``fields`` are NodeConfig fields when no config is given."""
        return self.store.add_node(kind, config or NodeConfig(**fields))

    def delete_node(self, node_id: str) -> None:
        self.store.remove_node(node_id)

    def connect(self, source: str, target: str, slot: str | None = None) -> EdgeSpec:
        return self.store.add_edge(source, target, slot)

    def disconnect(self, source: str, target: str, slot: str | None = None) -> None:
        self.store.remove_edge(source, target, slot)

    def update_config(self, node_id: str, **changes: Any) -> NodeConfig:
        return self.store.update_config(node_id, **changes)

    def get_node(self, node_id: str) -> Node:
        return self.store.get_node(node_id)

    def snapshot(self) -> GraphSnapshot:
        return self.store.snapshot()

    # === FILES ===

    def import_file(self, path: str | Path, title: str | None = None) -> str:
        """Create a prompt node holding the text of a txt/md file."""
        path = Path(path)
        text = read_file(path)
        return self.store.add_node(NodeKind.PROMPT, NodeConfig(title=title or path.name, text=text))

    def export_node(self, node_id: str, path: str | Path, file_type: str | None = None) -> Path:
        """Write a node's output or conversation to a txt/md file."""
        node = self.store.get_node(node_id)
        return write_file(path, node, file_type or file_type_of(path))

    # === RUNS ===

    async def trigger_run(self, start: str | None = None, include_downstream: bool = True) -> str:
        """
        Start a run in the background.

        Args:
            start: Node to run from; None runs the whole graph
            include_downstream: Also run everything downstream of ``start``

        Returns:
            The run id

        Raises:
            NotFoundError: ``start`` does not exist
            RunConflictError: a node in scope is already part of an active run
        """
        snapshot = self.store.snapshot()
        node_ids, resolved = plan_run(snapshot, start, include_downstream)
        self._check_conflicts(node_ids)

        run_id = f"run_{uuid.uuid4().hex[:12]}"
        ctx = RunContext(run_id, snapshot, node_ids, resolved)
        self._active_runs[run_id] = ctx
        self.store.set_status(node_ids, NodeStatus.QUEUED)

        self._run_tasks[run_id] = asyncio.create_task(self._run(ctx), name=run_id)
        logger.debug(f"Queued run {run_id} for {len(node_ids)} nodes (graph v{snapshot.version})")
        return run_id

    async def send_message(self, node_id: str, content: str) -> str:
        """Append a user turn to a chat node and run just that node."""
        node_ids, _ = plan_run(self.store.snapshot(), node_id, include_downstream=False)
        self._check_conflicts(node_ids)
        self.store.append_message(node_id, "user", content)
        return await self.trigger_run(node_id, include_downstream=False)

    def cancel_run(self, run_id: str) -> bool:
        """
        Ask a run to stop.

        Returns:
            False if the run already finished

        Raises:
            RunNotFoundError: the run id is unknown
        """
        ctx = self._active_runs.get(run_id)
        if ctx is None:
            if run_id in self._results:
                return False
            raise RunNotFoundError(f"Run '{run_id}' not found")
        logger.info(f"Cancelling run {run_id}")
        ctx.request_cancel()
        return True

    async def wait_for_run(self, run_id: str, timeout: float | None = None) -> RunResult | None:
        """
        Wait for a run to finish.

        Returns:
            The RunResult, or None on timeout
        """
        task = self._run_tasks.get(run_id)
        if task is None:
            if run_id in self._results:
                return self._results[run_id]
            raise RunNotFoundError(f"Run '{run_id}' not found")
        try:
            return await asyncio.wait_for(asyncio.shield(task), timeout=timeout)
        except TimeoutError:
            return None

    def get_run(self, run_id: str) -> RunContext | None:
        """Live context of an active run."""
        return self._active_runs.get(run_id)

    def get_result(self, run_id: str) -> RunResult | None:
        return self._results.get(run_id)

    def active_runs(self) -> list[str]:
        return list(self._active_runs)

    def subscribe(
        self,
        event_types: list[EventType] | None = None,
        run_id: str | None = None,
        node_id: str | None = None,
    ) -> EventSubscription:
        return self.event_bus.subscribe(event_types=event_types, filter_run=run_id, filter_node=node_id)

    async def shutdown(self) -> None:
        """Cancel every active run and wait for them to wind down."""
        tasks = list(self._run_tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _check_conflicts(self, node_ids: list[str]) -> None:
        busy = set()
        for ctx in self._active_runs.values():
            busy.update(ctx.non_terminal())
        overlap = busy.intersection(node_ids)
        if overlap:
            raise RunConflictError(f"Nodes already running: {sorted(overlap)}")

    async def _run(self, ctx: RunContext) -> RunResult:
        try:
            result = await self.scheduler.run(ctx)
        finally:
            self._flush(ctx)
            self._record_result(ctx.to_result())
            self._active_runs.pop(ctx.run_id, None)
            self._run_tasks.pop(ctx.run_id, None)
        return result

    def _flush(self, ctx: RunContext) -> None:
        """Copy node results back into the store."""
        for node_id in ctx.node_ids:
            state = ctx.states[node_id]
            error = ctx.errors.get(node_id)
            before = ctx.snapshot.nodes.get(node_id)
            self.store.apply_run_result(
                node_id,
                status=state.to_status() if state.is_terminal else NodeStatus.CANCELLED,
                conversation=ctx.conversations.get(node_id) if state == RunNodeState.SUCCEEDED else None,
                output=ctx.outputs.get(node_id),
                error=error.describe() if error and state == RunNodeState.FAILED else None,
                base_length=len(before.conversation) if before is not None else None,
            )

    def _record_result(self, result: RunResult) -> None:
        self._results[result.run_id] = result
        while len(self._results) > self._result_retention_max:
            self._results.popitem(last=False)
