"""
Edge Protocol - How nodes connect in a graph.

An edge says "the output of ``source`` is an input of ``target``". An
optional ``slot`` names the input when a node accepts several, and the
insertion ``seq`` fixes the order in which inbound outputs are delivered.

GraphSnapshot is the read-only view a run works from; mutations made to
the store after the snapshot was taken never reach it.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from types import MappingProxyType

from pydantic import BaseModel, ConfigDict, Field

from mosaik.graph.node import Node


class EdgeSpec(BaseModel):
    """
    Specification for an edge between nodes.

    Examples:
        # Feed a prompt into a chat node
        EdgeSpec(source="node_0", target="node_1")

        # Named input for a template transform
        EdgeSpec(source="node_2", target="node_3", slot="context")
    """

    model_config = ConfigDict(frozen=True)

    source: str = Field(description="Source node ID")
    target: str = Field(description="Target node ID")
    slot: str | None = Field(default=None, description="Named input on the target")
    seq: int = Field(default=0, description="Insertion order, assigned by the store")

    @property
    def key(self) -> tuple[str, str, str | None]:
        return (self.source, self.target, self.slot)


@dataclass(frozen=True)
class GraphSnapshot:
    """Immutable point-in-time copy of the graph."""

    version: int
    nodes: Mapping[str, Node]
    edges: tuple[EdgeSpec, ...]

    @classmethod
    def build(cls, version: int, nodes: Iterable[Node], edges: Iterable[EdgeSpec]) -> "GraphSnapshot":
        copied = {node.id: node.model_copy(deep=True) for node in nodes}
        ordered = tuple(sorted(edges, key=lambda e: e.seq))
        return cls(version=version, nodes=MappingProxyType(copied), edges=ordered)

    def get_node(self, node_id: str) -> Node | None:
        return self.nodes.get(node_id)

    def get_incoming_edges(self, node_id: str) -> list[EdgeSpec]:
        """Inbound edges in insertion order."""
        return [e for e in self.edges if e.target == node_id]

    def get_outgoing_edges(self, node_id: str) -> list[EdgeSpec]:
        return [e for e in self.edges if e.source == node_id]

    def ancestors(self, node_id: str) -> set[str]:
        """All nodes with a path to ``node_id``."""
        return self._walk(node_id, upstream=True)

    def descendants(self, node_id: str) -> set[str]:
        """All nodes reachable from ``node_id``."""
        return self._walk(node_id, upstream=False)

    def _walk(self, start: str, upstream: bool) -> set[str]:
        seen: set[str] = set()
        stack = [start]
        while stack:
            current = stack.pop()
            edges = self.get_incoming_edges(current) if upstream else self.get_outgoing_edges(current)
            for edge in edges:
                neighbour = edge.source if upstream else edge.target
                if neighbour not in seen:
                    seen.add(neighbour)
                    stack.append(neighbour)
        return seen

    def topological_order(self, node_ids: Iterable[str] | None = None) -> list[str]:
        """
        Order ``node_ids`` (default: all nodes) so every node follows its sources.

        Ties are broken by node insertion order. Edges leaving the subset are
        ignored.
        """
        subset = list(self.nodes) if node_ids is None else [n for n in self.nodes if n in set(node_ids)]
        members = set(subset)
        remaining = {
            n: {e.source for e in self.get_incoming_edges(n) if e.source in members} for n in subset
        }

        order: list[str] = []
        while remaining:
            ready = [n for n in subset if n in remaining and not remaining[n]]
            if not ready:
                raise ValueError(f"Graph contains a cycle among {sorted(remaining)}")
            for node_id in ready:
                order.append(node_id)
                del remaining[node_id]
            for deps in remaining.values():
                deps.difference_update(ready)
        return order

    def validate(self) -> list[str]:
        """Return a list of structural problems (empty when the snapshot is sound)."""
        errors = []
        for edge in self.edges:
            if edge.source not in self.nodes:
                errors.append(f"Edge {edge.key} references missing source '{edge.source}'")
            if edge.target not in self.nodes:
                errors.append(f"Edge {edge.key} references missing target '{edge.target}'")
        if not errors:
            try:
                self.topological_order()
            except ValueError as e:
                errors.append(str(e))
        return errors
