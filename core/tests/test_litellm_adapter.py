"""Tests for the LiteLLM-backed adapters (Anthropic, Ollama, generic)."""

from types import SimpleNamespace
from unittest.mock import patch

import httpx
import litellm
import pytest

from mosaik.graph.node import Message, NodeConfig
from mosaik.llm.anthropic import THINKING_BUDGET_TOKENS, AnthropicAdapter
from mosaik.llm.litellm import LiteLLMAdapter
from mosaik.llm.ollama import OllamaAdapter
from mosaik.llm.provider import ProviderCapability
from mosaik.llm.stream_events import ErrorReason, FinishEvent, ReasoningDeltaEvent, TextDeltaEvent


def chunk(content=None, reasoning=None, finish_reason=None, usage=None):
    delta = SimpleNamespace(content=content, reasoning_content=reasoning)
    return SimpleNamespace(choices=[SimpleNamespace(delta=delta, finish_reason=finish_reason)], usage=usage)


class FakeCompletion:
    """Stands in for ``litellm.acompletion`` and records its kwargs."""

    def __init__(self, chunks=None, exc=None):
        self.chunks = chunks or []
        self.exc = exc
        self.kwargs = None

    async def __call__(self, **kwargs):
        self.kwargs = kwargs
        if self.exc is not None:
            raise self.exc
        return self._iterate()

    async def _iterate(self):
        for item in self.chunks:
            yield item


class StatusError(Exception):
    def __init__(self, status_code: int):
        super().__init__(f"HTTP {status_code}")
        self.status_code = status_code


@pytest.fixture
def fake_completion():
    fake = FakeCompletion(
        chunks=[
            chunk(reasoning="Let me think"),
            chunk(content="Hel"),
            chunk(content="lo", finish_reason="stop"),
            SimpleNamespace(choices=[], usage=SimpleNamespace(prompt_tokens=12, completion_tokens=3)),
        ]
    )
    with patch.object(litellm, "acompletion", fake):
        yield fake


async def collect(adapter, config: NodeConfig) -> list:
    conversation = [Message(role="user", content="Hello")]
    return [event async for event in adapter.send(conversation, config)]


class TestLiteLLMStreaming:
    @pytest.mark.asyncio
    async def test_chunks_become_events(self, fake_completion):
        adapter = AnthropicAdapter(api_key="sk-test")
        events = await collect(adapter, NodeConfig(model="claude-sonnet-4-20250514"))

        assert isinstance(events[0], ReasoningDeltaEvent)
        texts = [e for e in events if isinstance(e, TextDeltaEvent)]
        assert [e.content for e in texts] == ["Hel", "lo"]
        assert texts[-1].snapshot == "Hello"

        finish = events[-1]
        assert isinstance(finish, FinishEvent)
        assert finish.stop_reason == "stop"
        assert finish.input_tokens == 12
        assert finish.output_tokens == 3

    @pytest.mark.asyncio
    async def test_request_kwargs(self, fake_completion):
        adapter = AnthropicAdapter(api_key="sk-test")
        config = NodeConfig(model="claude-opus-4-20250514", system_prompt="Be brief", params={"temperature": 0.2})
        await collect(adapter, config)

        kwargs = fake_completion.kwargs
        assert kwargs["model"] == "anthropic/claude-opus-4-20250514"
        assert kwargs["stream"] is True
        assert kwargs["max_tokens"] == 32000
        assert kwargs["temperature"] == 0.2
        assert kwargs["api_key"] == "sk-test"
        assert kwargs["messages"][0] == {"role": "system", "content": "Be brief"}
        assert "thinking" not in kwargs

    @pytest.mark.asyncio
    async def test_thinking_budget(self, fake_completion):
        adapter = AnthropicAdapter(api_key="sk-test")
        await collect(adapter, NodeConfig(thinking=True))
        assert fake_completion.kwargs["thinking"] == {"type": "enabled", "budget_tokens": THINKING_BUDGET_TOKENS}
        assert fake_completion.kwargs["model"] == "anthropic/claude-sonnet-4-20250514"

    @pytest.mark.asyncio
    async def test_ollama_uses_local_base(self, fake_completion):
        adapter = OllamaAdapter()
        await collect(adapter, NodeConfig(model="llama3", thinking=True))
        assert fake_completion.kwargs["model"] == "ollama_chat/llama3"
        assert fake_completion.kwargs["api_base"] == "http://localhost:11434"
        assert "api_key" not in fake_completion.kwargs
        assert "thinking" not in fake_completion.kwargs
        assert fake_completion.kwargs["think"] is True

    @pytest.mark.asyncio
    async def test_ollama_without_thinking(self, fake_completion):
        await collect(OllamaAdapter(), NodeConfig(model="llama3"))
        assert "think" not in fake_completion.kwargs

    def test_prefix_not_doubled(self):
        adapter = LiteLLMAdapter(ProviderCapability("openai", accepts_any_model=True))
        assert adapter.litellm_model(NodeConfig(model="openai/gpt-4o")) == "openai/gpt-4o"
        assert adapter.litellm_model(NodeConfig(model="gpt-4o")) == "openai/gpt-4o"


class TestLiteLLMErrors:
    @pytest.mark.asyncio
    async def test_missing_key_is_auth_rejected(self, fake_completion):
        events = await collect(AnthropicAdapter(api_key=None), NodeConfig())
        assert len(events) == 1
        assert events[0].reason == ErrorReason.AUTH_REJECTED
        assert fake_completion.kwargs is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status,reason",
        [(429, ErrorReason.RATE_LIMITED), (401, ErrorReason.AUTH_REJECTED), (502, ErrorReason.UNREACHABLE)],
    )
    async def test_call_failure(self, status, reason):
        with patch.object(litellm, "acompletion", FakeCompletion(exc=StatusError(status))):
            events = await collect(AnthropicAdapter(api_key="sk-test"), NodeConfig())
        assert [e.type for e in events] == ["error"]
        assert events[0].reason == reason

    @pytest.mark.asyncio
    async def test_connection_refused(self):
        with patch.object(litellm, "acompletion", FakeCompletion(exc=ConnectionRefusedError("refused"))):
            events = await collect(OllamaAdapter(), NodeConfig(model="llama3"))
        assert events[0].reason == ErrorReason.UNREACHABLE


class TestOllamaModels:
    @pytest.fixture
    def serve(self, monkeypatch):
        real_client = httpx.AsyncClient

        def install(handler):
            transport = httpx.MockTransport(handler)
            monkeypatch.setattr(httpx, "AsyncClient", lambda **kwargs: real_client(transport=transport, **kwargs))

        return install

    @pytest.mark.asyncio
    async def test_lists_pulled_models(self, serve):
        seen = []

        def handler(request):
            seen.append(str(request.url))
            return httpx.Response(200, json={"models": [{"name": "llama3:latest"}, {"name": "qwen3:8b"}]})

        serve(handler)
        models = await OllamaAdapter(api_base="http://gpu-box:11434/").list_models()
        assert models == ["llama3:latest", "qwen3:8b"]
        assert seen == ["http://gpu-box:11434/api/tags"]

    @pytest.mark.asyncio
    async def test_server_error_raises(self, serve):
        serve(lambda request: httpx.Response(500))
        with pytest.raises(httpx.HTTPStatusError):
            await OllamaAdapter().list_models()
