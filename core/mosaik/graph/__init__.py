"""Graph structures: Nodes, Edges, Snapshots and the live Graph Store."""

from mosaik.graph.edge import EdgeSpec, GraphSnapshot
from mosaik.graph.node import Message, Node, NodeConfig, NodeKind, NodeStatus
from mosaik.graph.store import GraphStore
from mosaik.graph.transforms import TRANSFORMS, TransformError, apply_transform

__all__ = [
    # Node
    "Node",
    "NodeConfig",
    "NodeKind",
    "NodeStatus",
    "Message",
    # Edge
    "EdgeSpec",
    "GraphSnapshot",
    # Store
    "GraphStore",
    # Transforms
    "TRANSFORMS",
    "TransformError",
    "apply_transform",
]
