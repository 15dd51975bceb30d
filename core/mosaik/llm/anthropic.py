"""Anthropic Claude provider adapter - a thin preset over LiteLLM."""

from typing import Any

from mosaik.graph.node import NodeConfig
from mosaik.llm.litellm import LiteLLMAdapter
from mosaik.llm.provider import ProviderCapability

ANTHROPIC_MODELS = (
    "claude-sonnet-4-20250514",
    "claude-opus-4-20250514",
    "claude-3-5-haiku-20241022",
)
DEFAULT_ANTHROPIC_MODEL = "claude-sonnet-4-20250514"
THINKING_BUDGET_TOKENS = 2000


class AnthropicAdapter(LiteLLMAdapter):
    """
    Anthropic Claude adapter.

    Anthropic has no public model listing, so the known models are served
    from a fixed list (extendable through configuration).
    """

    requires_api_key = True
    default_max_tokens = 32000

    def __init__(
        self,
        api_key: str | None = None,
        api_base: str | None = None,
        models: list[str] | None = None,
        default_model: str | None = None,
    ):
        capability = ProviderCapability(
            provider_id="anthropic",
            models=tuple(dict.fromkeys([*ANTHROPIC_MODELS, *(models or [])])),
            default_model=default_model or DEFAULT_ANTHROPIC_MODEL,
        )
        super().__init__(capability, model_prefix="anthropic", api_key=api_key, api_base=api_base)

    def request_options(self, config: NodeConfig) -> dict[str, Any]:
        if not config.thinking:
            return {}
        return {"thinking": {"type": "enabled", "budget_tokens": THINKING_BUDGET_TOKENS}}
