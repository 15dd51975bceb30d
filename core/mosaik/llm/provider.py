"""Provider Adapter abstraction for pluggable LLM backends."""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any

import httpx

from mosaik.graph.node import Message, NodeConfig
from mosaik.llm.stream_events import (
    ErrorReason,
    FinishEvent,
    StreamErrorEvent,
    StreamEvent,
    is_terminal,
)

logger = logging.getLogger(__name__)


class MissingCredentialsError(Exception):
    """The adapter has no credentials configured."""

    status_code = 401


@dataclass(frozen=True)
class ProviderCapability:
    """Stateless descriptor used to route a node to its adapter."""

    provider_id: str
    models: tuple[str, ...] = field(default_factory=tuple)
    default_model: str | None = None
    accepts_any_model: bool = False  # local backends serve whatever is pulled

    def supports(self, provider_id: str | None, model: str | None) -> bool:
        if provider_id != self.provider_id:
            return False
        model = model or self.default_model
        if not model:
            return False
        return self.accepts_any_model or model in self.models


def classify_exception(exc: BaseException) -> ErrorReason:
    """Map a transport/SDK exception onto an ErrorReason."""
    status = getattr(exc, "status_code", None)
    if isinstance(status, int):
        if status in (401, 403):
            return ErrorReason.AUTH_REJECTED
        if status == 429:
            return ErrorReason.RATE_LIMITED
        if status == 408 or status >= 500:
            return ErrorReason.UNREACHABLE
        return ErrorReason.MALFORMED_RESPONSE

    if isinstance(exc, httpx.HTTPStatusError):
        return classify_exception(_StatusCarrier(exc.response.status_code))
    if isinstance(exc, (httpx.TransportError, OSError)):
        return ErrorReason.UNREACHABLE
    # bad JSON, missing keys, unexpected shapes
    return ErrorReason.MALFORMED_RESPONSE


class _StatusCarrier(Exception):
    def __init__(self, status_code: int):
        super().__init__(status_code)
        self.status_code = status_code


class ProviderAdapter(ABC):
    """
    Abstract provider adapter - plug in any LLM backend.

    Subclasses implement ``_stream`` and may raise freely; ``send`` turns
    exceptions into a terminal StreamErrorEvent and guarantees that every
    stream ends with exactly one terminal event.

    The stream is lazy and not restartable: retrying means calling ``send``
    again.
    """

    def __init__(self, capability: ProviderCapability):
        self.capability = capability

    @property
    def provider_id(self) -> str:
        return self.capability.provider_id

    def supports(self, provider_id: str | None, model: str | None) -> bool:
        return self.capability.supports(provider_id, model)

    async def list_models(self) -> list[str]:
        """Models this adapter can serve."""
        return list(self.capability.models)

    def build_messages(self, conversation: list[Message], config: NodeConfig) -> list[dict[str, Any]]:
        messages = [m.to_llm_dict() for m in conversation]
        if config.system_prompt:
            messages.insert(0, {"role": "system", "content": config.system_prompt})
        return messages

    def classify_error(self, exc: BaseException) -> ErrorReason:
        return classify_exception(exc)

    async def send(self, conversation: list[Message], config: NodeConfig) -> AsyncIterator[StreamEvent]:
        """
        Stream a response for ``conversation`` as StreamEvents.

        Args:
            conversation: Turns to send, oldest first
            config: Node config (model, system prompt, params)

        Yields:
            Fragment events, then one FinishEvent or StreamErrorEvent
        """
        messages = self.build_messages(conversation, config)
        model = config.model or self.capability.default_model or ""
        try:
            async for event in self._stream(messages, config):
                yield event
                if is_terminal(event):
                    return
        except asyncio.CancelledError:
            raise
        except Exception as e:
            reason = self.classify_error(e)
            logger.warning(f"{self.provider_id} call failed ({reason}): {e}")
            yield StreamErrorEvent(reason=reason, error=str(e) or type(e).__name__)
            return
        yield FinishEvent(model=model)

    @abstractmethod
    def _stream(self, messages: list[dict[str, Any]], config: NodeConfig) -> AsyncIterator[StreamEvent]:
        """Backend-specific streaming; implemented as an async generator."""
        raise NotImplementedError
