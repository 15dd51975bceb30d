"""
Node Protocol - The units of work placed on the canvas.

Every node has a closed ``kind``:
- prompt: static text (typed by the user or imported from a file)
- chat: a conversation bound to a provider and model
- transform: a pure function over the outputs of upstream nodes

Nodes are plain data. The scheduler dispatches on ``kind``; nothing here
talks to a provider.
"""

from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class NodeKind(StrEnum):
    """What a node does when a run reaches it."""

    PROMPT = "prompt"
    CHAT = "chat"
    TRANSFORM = "transform"


class NodeStatus(StrEnum):
    """Status of a node as seen by the UI surface."""

    IDLE = "idle"
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


class Message(BaseModel):
    """A single turn in a node conversation."""

    role: Literal["user", "assistant"]
    content: str
    thinking: str | None = None
    source: str | None = Field(
        default=None,
        description="Upstream node whose output produced this turn",
    )

    def to_llm_dict(self) -> dict[str, Any]:
        """Convert to OpenAI-format message dict."""
        return {"role": self.role, "content": self.content}


class NodeConfig(BaseModel):
    """User-editable node settings."""

    model_config = ConfigDict(extra="forbid")

    title: str = ""
    provider: str | None = None
    model: str | None = None
    system_prompt: str = ""
    text: str = Field(default="", description="Static payload of prompt nodes")
    transform: str | None = Field(default=None, description="Transform name")
    thinking: bool = False
    params: dict[str, Any] = Field(default_factory=dict)


class Node(BaseModel):
    """A node in the graph."""

    id: str
    kind: NodeKind
    config: NodeConfig = Field(default_factory=NodeConfig)
    conversation: list[Message] = Field(default_factory=list)
    output: str | None = None
    status: NodeStatus = NodeStatus.IDLE
    error: str | None = None

    def own_turns(self) -> list[Message]:
        """Turns the user authored or the provider produced, minus injected inputs."""
        return [m for m in self.conversation if m.source is None]

    def materialized_output(self) -> str | None:
        """Output downstream nodes receive without running this node again."""
        if self.kind == NodeKind.PROMPT:
            return self.config.text
        return self.output

    def last_assistant_turn(self) -> Message | None:
        for message in reversed(self.conversation):
            if message.role == "assistant":
                return message
        return None
