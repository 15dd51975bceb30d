"""LiteLLM-backed provider adapter.

LiteLLM gives every remote and local backend the same streaming
completion call, so concrete adapters only pick a model prefix, the
connection settings and any backend-specific request options.
"""

import logging
from collections.abc import AsyncIterator
from typing import Any

import litellm

from mosaik.graph.node import NodeConfig
from mosaik.llm.provider import (
    MissingCredentialsError,
    ProviderAdapter,
    ProviderCapability,
    classify_exception,
)
from mosaik.llm.stream_events import (
    ErrorReason,
    FinishEvent,
    ReasoningDeltaEvent,
    StreamEvent,
    TextDeltaEvent,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 4096


class LiteLLMAdapter(ProviderAdapter):
    """
    Stream completions through ``litellm.acompletion``.

    Example:
        adapter = LiteLLMAdapter(
            ProviderCapability("openai", models=("gpt-4o-mini",)),
            model_prefix="openai",
            api_key=os.environ["OPENAI_API_KEY"],
        )
        async for event in adapter.send(conversation, config):
            ...
    """

    requires_api_key = False
    default_max_tokens = DEFAULT_MAX_TOKENS

    def __init__(
        self,
        capability: ProviderCapability,
        model_prefix: str | None = None,
        api_key: str | None = None,
        api_base: str | None = None,
    ):
        super().__init__(capability)
        self.model_prefix = model_prefix or capability.provider_id
        self.api_key = api_key
        self.api_base = api_base

    def litellm_model(self, config: NodeConfig) -> str:
        model = config.model or self.capability.default_model or ""
        if model.startswith(f"{self.model_prefix}/"):
            return model
        return f"{self.model_prefix}/{model}"

    def request_options(self, config: NodeConfig) -> dict[str, Any]:
        """Backend-specific completion kwargs (thinking budgets and so on)."""
        return {}

    def classify_error(self, exc: BaseException) -> ErrorReason:
        if isinstance(exc, litellm.AuthenticationError):
            return ErrorReason.AUTH_REJECTED
        if isinstance(exc, litellm.RateLimitError):
            return ErrorReason.RATE_LIMITED
        if isinstance(exc, (litellm.APIConnectionError, litellm.Timeout, litellm.ServiceUnavailableError)):
            return ErrorReason.UNREACHABLE
        return classify_exception(exc)

    async def _stream(self, messages: list[dict[str, Any]], config: NodeConfig) -> AsyncIterator[StreamEvent]:
        if self.requires_api_key and not self.api_key:
            raise MissingCredentialsError(f"{self.provider_id} API key not configured")

        params = config.params
        kwargs: dict[str, Any] = {
            "model": self.litellm_model(config),
            "messages": messages,
            "stream": True,
            "max_tokens": params.get("max_tokens", self.default_max_tokens),
        }
        if "temperature" in params:
            kwargs["temperature"] = params["temperature"]
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.api_base:
            kwargs["api_base"] = self.api_base
        kwargs.update(self.request_options(config))

        logger.info(f"Sending request to {self.provider_id} ({kwargs['model']})")
        response = await litellm.acompletion(**kwargs)

        snapshot = ""
        stop_reason = ""
        input_tokens = 0
        output_tokens = 0
        async for chunk in response:
            usage = getattr(chunk, "usage", None)
            if usage:
                input_tokens = getattr(usage, "prompt_tokens", 0) or input_tokens
                output_tokens = getattr(usage, "completion_tokens", 0) or output_tokens

            choices = chunk.choices
            if not choices:
                continue
            choice = choices[0]
            delta = choice.delta

            reasoning = getattr(delta, "reasoning_content", None)
            if reasoning:
                yield ReasoningDeltaEvent(content=reasoning)

            content = getattr(delta, "content", None)
            if content:
                snapshot += content
                yield TextDeltaEvent(content=content, snapshot=snapshot)

            if choice.finish_reason:
                stop_reason = choice.finish_reason

        yield FinishEvent(
            stop_reason=stop_reason,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            model=config.model or self.capability.default_model or "",
        )
