"""Runtime: run contexts, the scheduler, the event bus and the engine facade."""

from mosaik.runtime.engine import WorkflowEngine
from mosaik.runtime.event_bus import EngineEvent, EventBus, EventSubscription, EventType
from mosaik.runtime.run_context import (
    FailureReason,
    NodeError,
    RunContext,
    RunNodeState,
    RunResult,
    RunStatus,
)
from mosaik.runtime.scheduler import Scheduler, compose_conversation, plan_run

__all__ = [
    "WorkflowEngine",
    "Scheduler",
    "plan_run",
    "compose_conversation",
    "RunContext",
    "RunResult",
    "RunStatus",
    "RunNodeState",
    "NodeError",
    "FailureReason",
    "EventBus",
    "EventSubscription",
    "EngineEvent",
    "EventType",
]
