"""
Tests for extraction settings.
"""

import dataclasses

import pytest

from receipt_extractor.core.config import (DEFAULT_PROBE_TIMEOUT, DEFAULT_TIMEOUT,
                                           ExtractionSettings, LLMProvider)


def test_defaults_target_local_ollama():
    settings = ExtractionSettings.from_env({})
    assert settings.provider == LLMProvider.OLLAMA
    assert settings.resolved_model == "llama3.2-vision:latest"
    assert settings.resolved_base_url == "http://localhost:11434"
    assert settings.timeout == DEFAULT_TIMEOUT == 60.0
    assert settings.probe_timeout == DEFAULT_PROBE_TIMEOUT
    assert settings.temperature == 0.0
    assert settings.enabled is True


def test_environment_values():
    settings = ExtractionSettings.from_env({
        "LLM_PROVIDER": "openai",
        "LLM_MODEL": "gpt-4o",
        "LLM_BASE_URL": "https://llm.example/v1/",
        "LLM_TIMEOUT": "15",
        "LLM_TEMPERATURE": "0.2",
        "LLM_MAX_TOKENS": "1000",
        "LLM_MAX_CONCURRENCY": "2",
        "OPENAI_API_KEY": "sk-test",
    })
    assert settings.provider == LLMProvider.OPENAI
    assert settings.resolved_model == "gpt-4o"
    assert settings.resolved_base_url == "https://llm.example/v1"
    assert settings.timeout == 15.0
    assert settings.temperature == 0.2
    assert settings.max_tokens == 1000
    assert settings.max_concurrent_extractions == 2
    assert settings.api_key == "sk-test"


def test_explicit_key_wins_over_provider_key():
    settings = ExtractionSettings.from_env({"LLM_PROVIDER": "anthropic",
                                            "LLM_API_KEY": "explicit",
                                            "ANTHROPIC_API_KEY": "fallback"})
    assert settings.api_key == "explicit"


@pytest.mark.parametrize("raw", ["abc", "-5", "0"])
def test_invalid_timeout_falls_back(raw):
    assert ExtractionSettings.from_env({"LLM_TIMEOUT": raw}).timeout == DEFAULT_TIMEOUT


@pytest.mark.parametrize("raw,expected", [("0", False), ("false", False), ("off", False),
                                          ("1", True), ("yes", True)])
def test_enabled_flag(raw, expected):
    assert ExtractionSettings.from_env({"LLM_ENABLED": raw}).enabled is expected


def test_azure_endpoint_fallback():
    settings = ExtractionSettings.from_env({"LLM_PROVIDER": "azure-openai",
                                            "AZURE_OPENAI_ENDPOINT": "https://acct.openai.azure.com"})
    assert settings.resolved_base_url == "https://acct.openai.azure.com"
    assert settings.resolved_model == "gpt-4o-mini"


def test_overrides_win_and_none_is_ignored():
    settings = ExtractionSettings.from_env({"LLM_MODEL": "from-env", "LLM_TIMEOUT": "30"},
                                           model="from-flag", timeout=None, provider=None)
    assert settings.resolved_model == "from-flag"
    assert settings.timeout == 30.0
    assert settings.provider == LLMProvider.OLLAMA


def test_unknown_provider_rejected():
    with pytest.raises(ValueError):
        ExtractionSettings.from_env({"LLM_PROVIDER": "carrier-pigeon"})


def test_settings_are_read_only():
    settings = ExtractionSettings(provider="openai")
    assert settings.provider is LLMProvider.OPENAI
    with pytest.raises(dataclasses.FrozenInstanceError):
        settings.timeout = 1.0
