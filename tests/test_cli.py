"""
Tests for the command-line entrypoint.
"""

import json

import pytest

from helpers import WALMART_TEXT, FakeTextSource

from receipt_extractor.cli import main as cli
from receipt_extractor.core.errors import InvalidImageError, NoTextFoundError
from receipt_extractor.core.processor import ReceiptProcessor, RetryPolicy

ENV_VARS = ["LLM_PROVIDER", "LLM_MODEL", "LLM_BASE_URL", "LLM_API_KEY", "LLM_TIMEOUT",
            "LLM_TEMPERATURE", "LLM_MAX_TOKENS", "LLM_MAX_CONCURRENCY", "LLM_ENABLED",
            "OPENAI_API_KEY", "AZURE_OPENAI_API_KEY", "AZURE_OPENAI_ENDPOINT",
            "ANTHROPIC_API_KEY"]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def source(monkeypatch):
    fake = FakeTextSource(by_image={
        "walmart.jpg": WALMART_TEXT,
        "blurry.jpg": NoTextFoundError(),
        "broken.jpg": InvalidImageError(),
    })
    monkeypatch.setattr(cli, "TesseractTextSource", lambda lang="eng": fake)
    return fake


def test_pattern_only_scan_prints_records(source, capsys):
    assert cli.main(["--no-llm", "walmart.jpg"]) == 0

    records = json.loads(capsys.readouterr().out)
    assert len(records) == 1
    assert records[0]["vendor"] == "WALMART"
    assert records[0]["amount"] == 45.67
    assert records[0]["category"] == "Groceries & Food"
    assert records[0]["extraction_method"] == "heuristic"
    assert records[0]["needs_review"] is True


def test_failed_scan_sets_exit_code(source, capsys, caplog):
    assert cli.main(["--no-llm", "walmart.jpg", "broken.jpg"]) == 1

    assert [r["vendor"] for r in json.loads(capsys.readouterr().out)] == ["WALMART"]
    assert "Failed broken.jpg" in caplog.text


def test_retries_are_not_spent_on_unrecoverable_errors(source):
    assert cli.main(["--no-llm", "--retries", "3", "broken.jpg"]) == 1
    assert source.calls == 1


def test_retries_rescan_recoverable_errors(source, monkeypatch):
    def no_backoff(text_source, settings):
        return ReceiptProcessor(text_source, settings, retry_policy=RetryPolicy(backoff_step=0.0))

    monkeypatch.setattr(cli, "ReceiptProcessor", no_backoff)
    assert cli.main(["--no-llm", "--retries", "2", "blurry.jpg"]) == 1
    assert source.calls == 3


def test_images_are_required():
    with pytest.raises(SystemExit):
        cli.main([])


def test_check_with_extraction_disabled_fails(source):
    assert cli.main(["--check", "--no-llm"]) == 1


def test_check_without_api_key_fails(source):
    assert cli.main(["--check", "--provider", "openai"]) == 1


def test_invalid_configuration(source, monkeypatch):
    monkeypatch.setenv("LLM_PROVIDER", "carrier-pigeon")
    assert cli.main(["--no-llm", "walmart.jpg"]) == 1
