"""
Graph Store - Authoritative node/edge data edited live by the UI surface.

Every mutation is validated before anything changes, so a rejected call
leaves the graph exactly as it was. Each successful mutation bumps a
monotonic version counter the UI uses to notice external changes.

The store only locks around individual operations. Runs never hold the
lock: they work from a snapshot.
"""

import logging
import threading
from typing import Any

from mosaik.errors import CycleDetectedError, DuplicateEdgeError, NotFoundError
from mosaik.graph.edge import EdgeSpec, GraphSnapshot
from mosaik.graph.node import Message, Node, NodeConfig, NodeKind, NodeStatus

logger = logging.getLogger(__name__)


class GraphStore:
    """
    Owns the nodes and edges of one graph.

    Example:
        store = GraphStore()
        prompt = store.add_node(NodeKind.PROMPT, NodeConfig(text="Hello"))
        chat = store.add_node(NodeKind.CHAT, NodeConfig(provider="ollama", model="llama3"))
        store.add_edge(prompt, chat)

        snapshot = store.snapshot()
    """

    def __init__(self):
        self._nodes: dict[str, Node] = {}
        self._edges: list[EdgeSpec] = []
        self._version = 0
        self._node_counter = 0
        self._edge_counter = 0
        self._lock = threading.RLock()

    @property
    def version(self) -> int:
        return self._version

    def _bump(self) -> None:
        self._version += 1

    def _require_node(self, node_id: str) -> Node:
        node = self._nodes.get(node_id)
        if node is None:
            raise NotFoundError(f"Node '{node_id}' not found")
        return node

    # === NODES ===

    def add_node(self, kind: NodeKind | str, config: NodeConfig | dict[str, Any] | None = None) -> str:
        """Create a node and return its fresh id."""
        if isinstance(config, dict):
            config = NodeConfig(**config)
        with self._lock:
            node_id = f"node_{self._node_counter}"
            self._node_counter += 1
            self._nodes[node_id] = Node(id=node_id, kind=NodeKind(kind), config=config or NodeConfig())
            self._bump()
        logger.debug(f"Added {kind} node {node_id}")
        return node_id

    def remove_node(self, node_id: str) -> None:
        """Remove a node together with every edge touching it."""
        with self._lock:
            self._require_node(node_id)
            del self._nodes[node_id]
            self._edges = [e for e in self._edges if node_id not in (e.source, e.target)]
            self._bump()
        logger.debug(f"Removed node {node_id}")

    def get_node(self, node_id: str) -> Node:
        """Return a copy of a node."""
        with self._lock:
            return self._require_node(node_id).model_copy(deep=True)

    def has_node(self, node_id: str) -> bool:
        return node_id in self._nodes

    def list_nodes(self) -> list[Node]:
        with self._lock:
            return [node.model_copy(deep=True) for node in self._nodes.values()]

    def update_config(self, node_id: str, **changes: Any) -> NodeConfig:
        """Merge ``changes`` into a node's config and return the new config."""
        with self._lock:
            node = self._require_node(node_id)
            merged = node.config.model_dump()
            merged.update(changes)
            node.config = NodeConfig(**merged)
            self._bump()
            return node.config.model_copy(deep=True)

    def append_message(self, node_id: str, role: str, content: str) -> None:
        """Add a turn typed by the user (or pasted in) to a node conversation."""
        with self._lock:
            node = self._require_node(node_id)
            node.conversation.append(Message(role=role, content=content))
            self._bump()

    def reset_node(self, node_id: str) -> None:
        """Forget a node's conversation, output and last status."""
        with self._lock:
            node = self._require_node(node_id)
            node.conversation = []
            node.output = None
            node.error = None
            node.status = NodeStatus.IDLE
            self._bump()

    def set_status(self, node_ids: list[str], status: NodeStatus) -> None:
        with self._lock:
            for node_id in node_ids:
                if node_id in self._nodes:
                    self._nodes[node_id].status = status
            self._bump()

    def apply_run_result(
        self,
        node_id: str,
        status: NodeStatus,
        conversation: list[Message] | None = None,
        output: str | None = None,
        error: str | None = None,
        base_length: int | None = None,
    ) -> bool:
        """
        Copy a finished node's results back into the store.

        Config edits made while the run was in flight are kept: only the
        run-owned fields are written. ``base_length`` is how many turns the
        node had when the run took its snapshot; turns appended after that
        are kept after the run's conversation. Returns False when the node
        was deleted in the meantime.
        """
        with self._lock:
            node = self._nodes.get(node_id)
            if node is None:
                logger.debug(f"Dropping run result for deleted node {node_id}")
                return False
            node.status = status
            node.error = error
            if status == NodeStatus.SUCCEEDED:
                if conversation is not None:
                    newer = node.conversation[base_length:] if base_length is not None else []
                    node.conversation = [m.model_copy() for m in conversation] + newer
                if output is not None:
                    node.output = output
            self._bump()
            return True

    # === EDGES ===

    def add_edge(self, source: str, target: str, slot: str | None = None) -> EdgeSpec:
        """
        Connect ``source`` to ``target``.

        Raises:
            NotFoundError: either endpoint is missing
            DuplicateEdgeError: the same (source, target, slot) edge exists
            CycleDetectedError: ``source`` is reachable from ``target``
        """
        with self._lock:
            self._require_node(source)
            self._require_node(target)
            if any(e.key == (source, target, slot) for e in self._edges):
                raise DuplicateEdgeError(f"Edge {source} -> {target} (slot={slot}) already exists")
            if source == target or self._reachable(target, source):
                raise CycleDetectedError(source, target)

            edge = EdgeSpec(source=source, target=target, slot=slot, seq=self._edge_counter)
            self._edge_counter += 1
            self._edges.append(edge)
            self._bump()
        logger.debug(f"Connected {source} -> {target}")
        return edge

    def remove_edge(self, source: str, target: str, slot: str | None = None) -> None:
        with self._lock:
            for index, edge in enumerate(self._edges):
                if edge.key == (source, target, slot):
                    del self._edges[index]
                    self._bump()
                    return
        raise NotFoundError(f"No edge {source} -> {target} (slot={slot})")

    def list_edges(self) -> list[EdgeSpec]:
        with self._lock:
            return list(self._edges)

    def _reachable(self, start: str, goal: str) -> bool:
        """Depth-first search along outgoing edges."""
        stack = [start]
        seen = {start}
        while stack:
            current = stack.pop()
            if current == goal:
                return True
            for edge in self._edges:
                if edge.source == current and edge.target not in seen:
                    seen.add(edge.target)
                    stack.append(edge.target)
        return False

    # === SNAPSHOTS ===

    def snapshot(self) -> GraphSnapshot:
        """Deep copy of the current graph for a run to work from."""
        with self._lock:
            return GraphSnapshot.build(self._version, self._nodes.values(), self._edges)
