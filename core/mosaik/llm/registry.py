"""Provider registry - the explicit provider configuration handed to the engine."""

import logging
from collections.abc import Iterable

from mosaik.config import EngineConfig, ProviderSettings
from mosaik.llm.provider import ProviderAdapter, ProviderCapability

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """
    Adapters keyed by provider id.

    Example:
        registry = ProviderRegistry([OllamaAdapter(), AnthropicAdapter(api_key=key)])
        adapter = registry.resolve("ollama", "llama3")
    """

    def __init__(self, adapters: Iterable[ProviderAdapter] = ()):
        self._adapters: dict[str, ProviderAdapter] = {}
        for adapter in adapters:
            self.register(adapter)

    def register(self, adapter: ProviderAdapter) -> None:
        if adapter.provider_id in self._adapters:
            logger.warning(f"Replacing adapter for provider '{adapter.provider_id}'")
        self._adapters[adapter.provider_id] = adapter

    def get(self, provider_id: str) -> ProviderAdapter | None:
        return self._adapters.get(provider_id)

    def resolve(self, provider_id: str | None, model: str | None) -> ProviderAdapter | None:
        """Return the adapter serving ``model`` on ``provider_id``, if any."""
        if provider_id is None:
            return None
        adapter = self._adapters.get(provider_id)
        if adapter is None or not adapter.supports(provider_id, model):
            return None
        return adapter

    def capabilities(self) -> list[ProviderCapability]:
        return [adapter.capability for adapter in self._adapters.values()]

    def __contains__(self, provider_id: str) -> bool:
        return provider_id in self._adapters

    def __len__(self) -> int:
        return len(self._adapters)


def _build_adapter(settings: ProviderSettings) -> ProviderAdapter:
    # Imported here so a registry of fakes never pulls in LiteLLM.
    if settings.provider_id == "ollama":
        from mosaik.llm.ollama import OllamaAdapter

        return OllamaAdapter(
            api_base=settings.api_base,
            models=settings.models,
            default_model=settings.default_model,
        )
    if settings.provider_id == "anthropic":
        from mosaik.llm.anthropic import AnthropicAdapter

        return AnthropicAdapter(
            api_key=settings.api_key,
            api_base=settings.api_base,
            models=settings.models,
            default_model=settings.default_model,
        )
    if settings.provider_id == "mock":
        from mosaik.llm.mock import MockAdapter

        return MockAdapter(models=tuple(settings.models) or ("mock-model",))

    from mosaik.llm.litellm import LiteLLMAdapter

    return LiteLLMAdapter(
        ProviderCapability(
            provider_id=settings.provider_id,
            models=tuple(settings.models),
            default_model=settings.default_model,
            accepts_any_model=not settings.models,
        ),
        api_key=settings.api_key,
        api_base=settings.api_base,
    )


def build_registry(config: EngineConfig) -> ProviderRegistry:
    """Create one adapter per configured provider."""
    registry = ProviderRegistry()
    for settings in config.providers.values():
        registry.register(_build_adapter(settings))
    logger.debug(f"Registered providers: {sorted(config.providers)}")
    return registry
