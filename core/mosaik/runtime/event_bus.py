"""
Event Bus - Ordered stream of run and node updates for the UI surface.

The scheduler is the only producer. Any number of consumers (the canvas,
loggers, tests) subscribe and read at their own pace:
- Events are never dropped: each subscription buffers without bound
- Per-node order is causal: queued, running, fragments, terminal status
- Slow consumers never block publishing; instead the scheduler checks
  ``wait_for_capacity`` before starting new nodes
"""

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from mosaik.graph.node import NodeStatus

logger = logging.getLogger(__name__)


class EventType(StrEnum):
    """Types of events that can be published."""

    # Run lifecycle
    RUN_STARTED = "run_started"
    RUN_FINISHED = "run_finished"

    # Node lifecycle
    NODE_QUEUED = "node_queued"
    NODE_RUNNING = "node_running"
    NODE_SUCCEEDED = "node_succeeded"
    NODE_FAILED = "node_failed"
    NODE_CANCELLED = "node_cancelled"

    # Streaming content
    NODE_FRAGMENT = "node_fragment"
    NODE_REASONING = "node_reasoning"


STATUS_EVENT_TYPES = {
    NodeStatus.QUEUED: EventType.NODE_QUEUED,
    NodeStatus.RUNNING: EventType.NODE_RUNNING,
    NodeStatus.SUCCEEDED: EventType.NODE_SUCCEEDED,
    NodeStatus.FAILED: EventType.NODE_FAILED,
    NodeStatus.CANCELLED: EventType.NODE_CANCELLED,
}


@dataclass
class EngineEvent:
    """An event published by the engine."""

    type: EventType
    run_id: str
    node_id: str | None = None
    status: NodeStatus | None = None
    fragment: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    seq: int = 0  # assigned by the bus on publish
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "type": self.type.value,
            "run_id": self.run_id,
            "node_id": self.node_id,
            "status": self.status.value if self.status else None,
            "fragment": self.fragment,
            "data": self.data,
            "seq": self.seq,
            "timestamp": self.timestamp.isoformat(),
        }


_CLOSED = object()


class EventSubscription:
    """
    A consumer's view of the bus: an unbounded, ordered queue of events.

    Example:
        sub = bus.subscribe(filter_run=run_id)
        try:
            async for event in sub:
                render(event)
                if event.type == EventType.RUN_FINISHED:
                    break
        finally:
            sub.close()
    """

    def __init__(
        self,
        sub_id: str,
        bus: "EventBus",
        event_types: set[EventType] | None = None,
        filter_run: str | None = None,
        filter_node: str | None = None,
    ):
        self.id = sub_id
        self.event_types = event_types
        self.filter_run = filter_run
        self.filter_node = filter_node
        self._bus = bus
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    def matches(self, event: EngineEvent) -> bool:
        if self.event_types is not None and event.type not in self.event_types:
            return False
        if self.filter_run and self.filter_run != event.run_id:
            return False
        if self.filter_node and self.filter_node != event.node_id:
            return False
        return True

    @property
    def closed(self) -> bool:
        return self._closed

    def pending(self) -> int:
        """Events buffered but not yet read."""
        return self._queue.qsize()

    def _deliver(self, event: EngineEvent) -> None:
        self._queue.put_nowait(event)

    async def get(self) -> EngineEvent | None:
        """Next event, or None once the subscription is closed and drained."""
        item = await self._queue.get()
        self._bus._notify_drained()
        if item is _CLOSED:
            return None
        return item

    def get_nowait(self) -> EngineEvent | None:
        try:
            item = self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None
        self._bus._notify_drained()
        return None if item is _CLOSED else item

    def drain(self) -> list[EngineEvent]:
        """Everything buffered right now."""
        events = []
        while True:
            event = self.get_nowait()
            if event is None:
                return events
            events.append(event)

    def close(self) -> None:
        """Stop receiving events; anything still buffered can be read."""
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)
        self._bus.unsubscribe(self.id)

    def __aiter__(self) -> "EventSubscription":
        return self

    async def __anext__(self) -> EngineEvent:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event


class EventBus:
    """
    Append-only event channel between the scheduler and its consumers.

    Features:
    - Subscription queues with run/node/type filtering
    - Bounded event history for late joiners and debugging
    - Backpressure signal for the scheduler

    Example:
        bus = EventBus()
        sub = bus.subscribe(event_types=[EventType.NODE_FRAGMENT])

        await bus.emit_node_fragment(run_id="run_1", node_id="node_1", fragment="Hel")
        event = await sub.get()
    """

    def __init__(self, max_history: int = 1000, high_water_mark: int = 256):
        """
        Initialize event bus.

        Args:
            max_history: Maximum events to keep in history
            high_water_mark: Buffered events per subscription above which
                the bus reports no capacity for new node starts
        """
        self._subscriptions: dict[str, EventSubscription] = {}
        self._event_history: list[EngineEvent] = []
        self._max_history = max_history
        self._high_water_mark = high_water_mark
        self._subscription_counter = 0
        self._seq = 0
        self._drained = asyncio.Event()

    def subscribe(
        self,
        event_types: Iterable[EventType] | None = None,
        filter_run: str | None = None,
        filter_node: str | None = None,
    ) -> EventSubscription:
        """
        Subscribe to events.

        Args:
            event_types: Types of events to receive (all when None)
            filter_run: Only receive events from this run
            filter_node: Only receive events about this node

        Returns:
            The subscription; read it with ``get`` or ``async for``
        """
        self._subscription_counter += 1
        sub_id = f"sub_{self._subscription_counter}"
        subscription = EventSubscription(
            sub_id,
            self,
            event_types=set(event_types) if event_types is not None else None,
            filter_run=filter_run,
            filter_node=filter_node,
        )
        self._subscriptions[sub_id] = subscription
        logger.debug(f"Subscription {sub_id} registered")
        return subscription

    def unsubscribe(self, subscription_id: str) -> bool:
        """
        Unsubscribe from events.

        Returns:
            True if subscription was found and removed
        """
        subscription = self._subscriptions.pop(subscription_id, None)
        if subscription is None:
            return False
        subscription.close()
        self._notify_drained()
        logger.debug(f"Subscription {subscription_id} removed")
        return True

    async def publish(self, event: EngineEvent) -> None:
        """Stamp ``event`` with the next sequence number and deliver it."""
        self._seq += 1
        event.seq = self._seq

        self._event_history.append(event)
        if len(self._event_history) > self._max_history:
            self._event_history = self._event_history[-self._max_history :]

        for subscription in self._subscriptions.values():
            if subscription.matches(event):
                subscription._deliver(event)

    # === BACKPRESSURE ===

    def has_capacity(self) -> bool:
        return all(
            sub.closed or sub.pending() < self._high_water_mark for sub in self._subscriptions.values()
        )

    def _notify_drained(self) -> None:
        if self.has_capacity():
            self._drained.set()

    async def wait_for_capacity(self, timeout: float | None = None) -> bool:
        """
        Wait until every subscription is below the high-water mark.

        Returns:
            False if ``timeout`` elapsed first
        """
        while not self.has_capacity():
            self._drained.clear()
            try:
                await asyncio.wait_for(self._drained.wait(), timeout=timeout)
            except TimeoutError:
                logger.warning("Event consumers are lagging; continuing without waiting further")
                return False
        return True

    # === CONVENIENCE PUBLISHERS ===

    async def emit_run_started(self, run_id: str, node_ids: list[str]) -> None:
        """Emit run started event."""
        await self.publish(EngineEvent(type=EventType.RUN_STARTED, run_id=run_id, data={"nodes": node_ids}))

    async def emit_run_finished(self, run_id: str, status: str, summary: dict[str, Any] | None = None) -> None:
        """Emit run finished event."""
        await self.publish(
            EngineEvent(
                type=EventType.RUN_FINISHED,
                run_id=run_id,
                data={"status": status, **(summary or {})},
            )
        )

    async def emit_node_status(
        self,
        run_id: str,
        node_id: str,
        status: NodeStatus,
        error: str | None = None,
        reason: str | None = None,
    ) -> None:
        """Emit a node status change."""
        data: dict[str, Any] = {}
        if error is not None:
            data["error"] = error
        if reason is not None:
            data["reason"] = reason
        await self.publish(
            EngineEvent(
                type=STATUS_EVENT_TYPES[status],
                run_id=run_id,
                node_id=node_id,
                status=status,
                data=data,
            )
        )

    async def emit_node_fragment(self, run_id: str, node_id: str, fragment: str, snapshot: str = "") -> None:
        """Emit a streamed text fragment."""
        await self.publish(
            EngineEvent(
                type=EventType.NODE_FRAGMENT,
                run_id=run_id,
                node_id=node_id,
                status=NodeStatus.RUNNING,
                fragment=fragment,
                data={"snapshot": snapshot},
            )
        )

    async def emit_node_reasoning(self, run_id: str, node_id: str, fragment: str) -> None:
        """Emit a streamed reasoning fragment."""
        await self.publish(
            EngineEvent(
                type=EventType.NODE_REASONING,
                run_id=run_id,
                node_id=node_id,
                status=NodeStatus.RUNNING,
                fragment=fragment,
            )
        )

    # === QUERY OPERATIONS ===

    def get_history(
        self,
        event_type: EventType | None = None,
        run_id: str | None = None,
        node_id: str | None = None,
        limit: int = 100,
    ) -> list[EngineEvent]:
        """
        Get event history with optional filtering.

        Returns:
            Matching events, oldest first
        """
        events = self._event_history
        if event_type:
            events = [e for e in events if e.type == event_type]
        if run_id:
            events = [e for e in events if e.run_id == run_id]
        if node_id:
            events = [e for e in events if e.node_id == node_id]
        return events[-limit:]

    def get_stats(self) -> dict:
        """Get event bus statistics."""
        type_counts: dict[str, int] = {}
        for event in self._event_history:
            type_counts[event.type.value] = type_counts.get(event.type.value, 0) + 1

        return {
            "total_events": len(self._event_history),
            "published": self._seq,
            "subscriptions": len(self._subscriptions),
            "lagging": [s.id for s in self._subscriptions.values() if s.pending() >= self._high_water_mark],
            "events_by_type": type_counts,
        }

    async def wait_for(
        self,
        event_type: EventType,
        run_id: str | None = None,
        node_id: str | None = None,
        timeout: float | None = None,
    ) -> EngineEvent | None:
        """
        Wait for a specific event to occur.

        Returns:
            The event if received, None if timeout
        """
        subscription = self.subscribe(event_types=[event_type], filter_run=run_id, filter_node=node_id)
        try:
            return await asyncio.wait_for(subscription.get(), timeout=timeout)
        except TimeoutError:
            return None
        finally:
            self.unsubscribe(subscription.id)
