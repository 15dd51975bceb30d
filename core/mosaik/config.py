"""Shared Mosaik configuration utilities.

Reads ~/.mosaik/configuration.json and turns it into the explicit
configuration objects handed to the engine. Credentials are resolved from
the environment variable named in the file and are otherwise opaque.

Example file::

    {
        "engine": {"max_concurrency": 4, "cancel_grace_seconds": 1.0},
        "providers": {
            "ollama": {"api_base": "http://localhost:11434"},
            "anthropic": {"api_key_env_var": "ANTHROPIC_API_KEY"}
        }
    }
"""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Low-level config file access
# ---------------------------------------------------------------------------

MOSAIK_CONFIG_FILE = Path.home() / ".mosaik" / "configuration.json"

DEFAULT_OLLAMA_BASE = "http://localhost:11434"
DEFAULT_ANTHROPIC_KEY_ENV = "ANTHROPIC_API_KEY"


def get_mosaik_config(path: Path | None = None) -> dict[str, Any]:
    """Load configuration from ~/.mosaik/configuration.json (or ``path``)."""
    config_file = path or MOSAIK_CONFIG_FILE
    if not config_file.exists():
        return {}
    try:
        with open(config_file, encoding="utf-8-sig") as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        logger.warning(f"Ignoring unreadable config {config_file}: {e}")
        return {}
    if not isinstance(data, dict):
        logger.warning(f"Ignoring config {config_file}: top level is not an object")
        return {}
    return data


# ---------------------------------------------------------------------------
# Configuration objects
# ---------------------------------------------------------------------------


@dataclass
class ProviderSettings:
    """Connection settings for one provider backend."""

    provider_id: str
    api_key: str | None = None
    api_base: str | None = None
    default_model: str | None = None
    models: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, provider_id: str, data: dict[str, Any]) -> "ProviderSettings":
        api_key = data.get("api_key")
        api_key_env_var = data.get("api_key_env_var")
        if not api_key and api_key_env_var:
            api_key = os.environ.get(api_key_env_var)
        return cls(
            provider_id=provider_id,
            api_key=api_key,
            api_base=data.get("api_base"),
            default_model=data.get("default_model"),
            models=list(data.get("models", [])),
        )


def _default_providers() -> dict[str, ProviderSettings]:
    return {
        "ollama": ProviderSettings(provider_id="ollama", api_base=DEFAULT_OLLAMA_BASE),
        "anthropic": ProviderSettings(
            provider_id="anthropic",
            api_key=os.environ.get(DEFAULT_ANTHROPIC_KEY_ENV),
        ),
    }


@dataclass
class EngineConfig:
    """Engine tuning knobs plus the provider table."""

    max_concurrency: int = 4
    cancel_grace_seconds: float = 1.0
    event_history: int = 1000
    event_high_water_mark: int = 256
    backpressure_timeout: float = 5.0
    providers: dict[str, ProviderSettings] = field(default_factory=_default_providers)

    def __post_init__(self) -> None:
        if self.max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        if self.cancel_grace_seconds < 0:
            raise ValueError("cancel_grace_seconds must not be negative")
        if self.backpressure_timeout is None or self.backpressure_timeout <= 0:
            raise ValueError("backpressure_timeout must be a positive number of seconds")


def _section(raw: dict[str, Any], name: str) -> dict[str, Any]:
    value = raw.get(name)
    if value is None:
        return {}
    if not isinstance(value, dict):
        logger.warning(f"Ignoring config section '{name}': not an object")
        return {}
    return value


def load_engine_config(path: Path | None = None) -> EngineConfig:
    """Build an EngineConfig from the configuration file, falling back to defaults."""
    raw = get_mosaik_config(path)
    engine = _section(raw, "engine")

    providers = _default_providers()
    for provider_id, data in _section(raw, "providers").items():
        if data is not None and not isinstance(data, dict):
            logger.warning(f"Ignoring provider '{provider_id}': settings are not an object")
            continue
        providers[provider_id] = ProviderSettings.from_dict(provider_id, data or {})

    known = {
        "max_concurrency",
        "cancel_grace_seconds",
        "event_history",
        "event_high_water_mark",
        "backpressure_timeout",
    }
    unknown = set(engine) - known
    if unknown:
        logger.warning(f"Ignoring unknown engine settings: {sorted(unknown)}")
    unset = sorted(key for key in known if key in engine and engine[key] is None)
    if unset:
        logger.warning(f"Using defaults for null engine settings: {unset}")

    return EngineConfig(
        providers=providers,
        **{key: value for key, value in engine.items() if key in known and value is not None},
    )
