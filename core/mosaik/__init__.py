"""
Mosaik - node-based workflow engine for LLM conversations.

Nodes (prompts, provider-bound chats, transforms) are wired into a DAG and
run in dependency order, streaming provider output back as events.
"""

from mosaik.config import EngineConfig, ProviderSettings, load_engine_config
from mosaik.errors import (
    CycleDetectedError,
    DuplicateEdgeError,
    MosaikError,
    NotFoundError,
    RunConflictError,
    RunNotFoundError,
    StructuralError,
)
from mosaik.graph import EdgeSpec, GraphSnapshot, GraphStore, Message, Node, NodeConfig, NodeKind, NodeStatus
from mosaik.llm import ProviderAdapter, ProviderCapability, ProviderRegistry
from mosaik.runtime import EventBus, EventType, RunResult, RunStatus, Scheduler, WorkflowEngine

__all__ = [
    "WorkflowEngine",
    "Scheduler",
    "EventBus",
    "EventType",
    "RunResult",
    "RunStatus",
    "GraphStore",
    "GraphSnapshot",
    "EdgeSpec",
    "Node",
    "NodeConfig",
    "NodeKind",
    "NodeStatus",
    "Message",
    "ProviderAdapter",
    "ProviderCapability",
    "ProviderRegistry",
    "EngineConfig",
    "ProviderSettings",
    "load_engine_config",
    "MosaikError",
    "StructuralError",
    "NotFoundError",
    "CycleDetectedError",
    "DuplicateEdgeError",
    "RunConflictError",
    "RunNotFoundError",
]
