"""Ollama provider adapter for locally served models."""

import logging
from typing import Any

import httpx

from mosaik.config import DEFAULT_OLLAMA_BASE
from mosaik.graph.node import NodeConfig
from mosaik.llm.litellm import LiteLLMAdapter
from mosaik.llm.provider import ProviderCapability

logger = logging.getLogger(__name__)


class OllamaAdapter(LiteLLMAdapter):
    """
    Ollama adapter.

    Any model pulled into the local server can be used, so ``supports``
    accepts every model name; ``list_models`` asks the server what it has.
    """

    def __init__(
        self,
        api_base: str | None = None,
        models: list[str] | None = None,
        default_model: str | None = None,
        timeout: float = 10.0,
    ):
        capability = ProviderCapability(
            provider_id="ollama",
            models=tuple(models or ()),
            default_model=default_model,
            accepts_any_model=True,
        )
        super().__init__(capability, model_prefix="ollama_chat", api_base=api_base or DEFAULT_OLLAMA_BASE)
        self.timeout = timeout

    def request_options(self, config: NodeConfig) -> dict[str, Any]:
        if not config.thinking:
            return {}
        return {"think": True}

    async def list_models(self) -> list[str]:
        """Query ``/api/tags`` for the models the local server has pulled."""
        url = f"{self.api_base.rstrip('/')}/api/tags"
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.get(url)
            response.raise_for_status()
            data = response.json()

        names = [m["name"] for m in data.get("models", []) if isinstance(m, dict) and m.get("name")]
        logger.debug(f"Ollama at {self.api_base} serves {len(names)} models")
        return names
