"""LLM provider abstraction."""

from mosaik.llm.mock import MockAdapter, MockResponse
from mosaik.llm.provider import (
    ProviderAdapter,
    ProviderCapability,
    classify_exception,
)
from mosaik.llm.registry import ProviderRegistry, build_registry
from mosaik.llm.stream_events import (
    ErrorReason,
    FinishEvent,
    ReasoningDeltaEvent,
    StreamErrorEvent,
    StreamEvent,
    TextDeltaEvent,
)

__all__ = [
    "ProviderAdapter",
    "ProviderCapability",
    "ProviderRegistry",
    "build_registry",
    "classify_exception",
    "MockAdapter",
    "MockResponse",
    "StreamEvent",
    "TextDeltaEvent",
    "ReasoningDeltaEvent",
    "FinishEvent",
    "StreamErrorEvent",
    "ErrorReason",
]
