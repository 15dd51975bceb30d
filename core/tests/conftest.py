"""Shared fixtures: a scripted provider and an engine wired to it."""

import pytest

from mosaik.config import EngineConfig
from mosaik.graph.edge import GraphSnapshot
from mosaik.llm.mock import MockAdapter
from mosaik.llm.registry import ProviderRegistry
from mosaik.runtime.engine import WorkflowEngine
from mosaik.runtime.event_bus import EventBus
from mosaik.runtime.run_context import RunContext
from mosaik.runtime.scheduler import Scheduler, plan_run


@pytest.fixture
def mock_adapter():
    return MockAdapter()


@pytest.fixture
def registry(mock_adapter):
    return ProviderRegistry([mock_adapter])


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def engine(registry):
    config = EngineConfig(max_concurrency=4, cancel_grace_seconds=0.1, providers={})
    return WorkflowEngine(registry, config=config)


def make_context(snapshot: GraphSnapshot, start: str | None = None, include_downstream: bool = True) -> RunContext:
    node_ids, resolved = plan_run(snapshot, start, include_downstream)
    return RunContext("run_test", snapshot, node_ids, resolved)


def make_scheduler(registry: ProviderRegistry, bus: EventBus, **kwargs) -> Scheduler:
    kwargs.setdefault("cancel_grace_seconds", 0.1)
    return Scheduler(registry=registry, event_bus=bus, **kwargs)


def chat_config(title: str, **extra) -> dict:
    return {"title": title, "provider": "mock", "model": "mock-model", **extra}
