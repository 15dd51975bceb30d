"""Stream event types for provider streaming responses.

Defines a discriminated union of frozen dataclasses representing every event
a provider call can produce. A well-formed stream is zero or more fragment
events followed by exactly one terminal event: FinishEvent (done) or
StreamErrorEvent (error).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Literal


class ErrorReason(StrEnum):
    """Why a provider call ended without a complete response."""

    UNREACHABLE = "Unreachable"
    AUTH_REJECTED = "AuthRejected"
    RATE_LIMITED = "RateLimited"
    MALFORMED_RESPONSE = "MalformedResponse"
    CANCELLED = "Cancelled"


@dataclass(frozen=True)
class TextDeltaEvent:
    """A chunk of response text."""

    type: Literal["text_delta"] = "text_delta"
    content: str = ""  # this chunk's text
    snapshot: str = ""  # accumulated text so far


@dataclass(frozen=True)
class ReasoningDeltaEvent:
    """A chunk of reasoning/thinking content."""

    type: Literal["reasoning_delta"] = "reasoning_delta"
    content: str = ""


@dataclass(frozen=True)
class FinishEvent:
    """The provider has finished generating."""

    type: Literal["finish"] = "finish"
    stop_reason: str = ""
    input_tokens: int = 0
    output_tokens: int = 0
    model: str = ""


@dataclass(frozen=True)
class StreamErrorEvent:
    """The call failed; no further events follow."""

    type: Literal["error"] = "error"
    reason: ErrorReason = ErrorReason.MALFORMED_RESPONSE
    error: str = ""


# Discriminated union of all stream event types
StreamEvent = TextDeltaEvent | ReasoningDeltaEvent | FinishEvent | StreamErrorEvent

TERMINAL_EVENT_TYPES = frozenset({"finish", "error"})


def is_terminal(event: StreamEvent) -> bool:
    return event.type in TERMINAL_EVENT_TYPES
