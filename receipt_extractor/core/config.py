"""
Extraction settings, built once by the host and passed to each component.
"""

import os
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional


class LLMProvider(str, Enum):
    """Supported structured extraction backends."""
    OLLAMA = "ollama"
    OPENAI = "openai"
    AZURE_OPENAI = "azure-openai"
    ANTHROPIC = "anthropic"


# Default models for each provider
DEFAULT_MODELS = {
    LLMProvider.OLLAMA: "llama3.2-vision:latest",
    LLMProvider.OPENAI: "gpt-4o-mini",
    LLMProvider.AZURE_OPENAI: "gpt-4o-mini",
    LLMProvider.ANTHROPIC: "claude-3-5-haiku-20241022",
}

DEFAULT_BASE_URLS = {
    LLMProvider.OLLAMA: "http://localhost:11434",
}

# Provider SDKs read these when no explicit key is configured
API_KEY_ENV_VARS = {
    LLMProvider.OPENAI: "OPENAI_API_KEY",
    LLMProvider.AZURE_OPENAI: "AZURE_OPENAI_API_KEY",
    LLMProvider.ANTHROPIC: "ANTHROPIC_API_KEY",
}

DEFAULT_TIMEOUT = 60.0
DEFAULT_PROBE_TIMEOUT = 10.0


@dataclass(frozen=True)
class ExtractionSettings:
    """Read-only configuration for the structured extraction service."""

    provider: LLMProvider = LLMProvider.OLLAMA
    model: Optional[str] = None
    base_url: Optional[str] = None
    api_key: Optional[str] = None
    timeout: float = DEFAULT_TIMEOUT
    probe_timeout: float = DEFAULT_PROBE_TIMEOUT
    temperature: float = 0.0
    max_tokens: int = 2000
    max_concurrent_extractions: int = 4
    enabled: bool = True
    azure_api_version: str = "2024-02-15-preview"

    def __post_init__(self):
        # Accept plain strings such as "openai" from callers
        object.__setattr__(self, "provider", LLMProvider(self.provider))

    @property
    def resolved_model(self) -> str:
        return self.model or DEFAULT_MODELS[self.provider]

    @property
    def resolved_base_url(self) -> Optional[str]:
        url = self.base_url or DEFAULT_BASE_URLS.get(self.provider)
        return url.rstrip("/") if url else None

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None,
                 **overrides) -> "ExtractionSettings":
        """
        Build settings from environment variables.

        Keyword overrides win over the environment; ``None`` overrides are
        ignored so CLI flags can be passed straight through.
        """
        env = os.environ if environ is None else environ
        provider = LLMProvider(overrides.pop("provider", None) or env.get("LLM_PROVIDER", "ollama"))
        key_var = API_KEY_ENV_VARS.get(provider)
        base_url = env.get("LLM_BASE_URL")
        if provider == LLMProvider.AZURE_OPENAI:
            base_url = base_url or env.get("AZURE_OPENAI_ENDPOINT")

        values = {
            "provider": provider,
            "model": env.get("LLM_MODEL") or None,
            "base_url": base_url or None,
            "api_key": env.get("LLM_API_KEY") or (env.get(key_var) if key_var else None) or None,
            "timeout": _positive_float(env.get("LLM_TIMEOUT"), DEFAULT_TIMEOUT),
            "temperature": _float(env.get("LLM_TEMPERATURE"), 0.0),
            "max_tokens": int(_positive_float(env.get("LLM_MAX_TOKENS"), 2000)),
            "max_concurrent_extractions": int(_positive_float(env.get("LLM_MAX_CONCURRENCY"), 4)),
            "enabled": env.get("LLM_ENABLED", "1").strip().lower() not in ("0", "false", "no", "off"),
            "azure_api_version": env.get("AZURE_OPENAI_API_VERSION", "2024-02-15-preview"),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


def _float(raw: Optional[str], default: float) -> float:
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _positive_float(raw: Optional[str], default: float) -> float:
    value = _float(raw, default)
    return value if value > 0 else default
