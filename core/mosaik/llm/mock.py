"""Scripted provider adapter for tests and offline use."""

import asyncio
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any

from mosaik.graph.node import NodeConfig
from mosaik.llm.provider import ProviderAdapter, ProviderCapability
from mosaik.llm.stream_events import (
    ErrorReason,
    FinishEvent,
    ReasoningDeltaEvent,
    StreamErrorEvent,
    StreamEvent,
    TextDeltaEvent,
)


@dataclass
class MockResponse:
    """What a MockAdapter call produces.

    Attributes:
        fragments: Text chunks, streamed in order.
        reasoning: Reasoning chunks, streamed before the text.
        error: When set, the stream ends with this error after the fragments.
        delay: Seconds to sleep before each fragment.
        stall: Never finish after the fragments (until cancelled).
    """

    fragments: list[str] = field(default_factory=list)
    reasoning: list[str] = field(default_factory=list)
    error: ErrorReason | None = None
    delay: float = 0.0
    stall: bool = False


class MockAdapter(ProviderAdapter):
    """
    Adapter answering from a script instead of a backend.

    Responses are looked up by node title, then by model. Without a match
    the adapter echoes the last message back.

    Example:
        adapter = MockAdapter(responses={
            "summarise": MockResponse(fragments=["Short", " summary"]),
            "flaky": MockResponse(error=ErrorReason.RATE_LIMITED),
        })
    """

    def __init__(
        self,
        provider_id: str = "mock",
        models: tuple[str, ...] = ("mock-model",),
        responses: dict[str, MockResponse | str] | None = None,
        accepts_any_model: bool = True,
    ):
        super().__init__(
            ProviderCapability(
                provider_id=provider_id,
                models=models,
                default_model=models[0] if models else None,
                accepts_any_model=accepts_any_model,
            )
        )
        self.responses = responses or {}
        self.calls: list[dict[str, Any]] = []

    def calls_for(self, title: str) -> list[dict[str, Any]]:
        return [call for call in self.calls if call["title"] == title]

    def _lookup(self, messages: list[dict[str, Any]], config: NodeConfig) -> MockResponse:
        for key in (config.title, config.model):
            if key and key in self.responses:
                response = self.responses[key]
                if isinstance(response, str):
                    return MockResponse(fragments=[response])
                return response
        last = messages[-1]["content"] if messages else ""
        return MockResponse(fragments=[last])

    async def _stream(self, messages: list[dict[str, Any]], config: NodeConfig) -> AsyncIterator[StreamEvent]:
        self.calls.append({"title": config.title, "model": config.model, "messages": messages})
        response = self._lookup(messages, config)

        for chunk in response.reasoning:
            yield ReasoningDeltaEvent(content=chunk)

        snapshot = ""
        for chunk in response.fragments:
            if response.delay:
                await asyncio.sleep(response.delay)
            snapshot += chunk
            yield TextDeltaEvent(content=chunk, snapshot=snapshot)

        if response.stall:
            await asyncio.Event().wait()
        if response.error is not None:
            yield StreamErrorEvent(reason=response.error, error=f"scripted {response.error}")
            return
        yield FinishEvent(stop_reason="end_turn", model=config.model or "")
