from __future__ import annotations

import logging

from retort.core.config import Settings, get_settings
from retort.core.logging import RedactionFilter
from retort.core.security import redact_secrets


def write_config(home, text: str) -> None:
    config_dir = home / ".retort"
    config_dir.mkdir()
    (config_dir / "config.yaml").write_text(text, encoding="utf-8")


def test_defaults_without_config_file(home):
    settings = Settings()
    assert settings.expanded_database_path() == home / ".retort" / "data" / "retort.db"
    assert settings.llm_provider == "gemini"
    assert settings.llm_model == "gemini-2.5-flash"
    assert settings.llm_max_tokens == 8512
    assert settings.stream is None
    assert not settings.mock_enabled()


def test_yaml_file_is_loaded_and_tilde_expanded(home):
    write_config(home, "database_path: ~/chats/retort.db\nstream: true\nllm_model: custom\n")

    settings = get_settings()
    assert settings.expanded_database_path() == home / "chats" / "retort.db"
    assert settings.database_url() == f"sqlite+aiosqlite:///{home / 'chats' / 'retort.db'}"
    assert settings.stream is True
    assert settings.llm_model == "custom"


def test_environment_overrides_yaml(home, monkeypatch):
    write_config(home, "stream: true\n")
    monkeypatch.setenv("RETORT_STREAM", "false")
    monkeypatch.setenv("MOCK_LLM_CONTENT", "canned")

    settings = Settings()
    assert settings.stream is False
    assert settings.mock_enabled()
    assert settings.mock_llm_content == "canned"


def test_mock_flag_only_needs_to_be_present(home, monkeypatch):
    monkeypatch.setenv("MOCK_LLM", "")
    assert Settings().mock_enabled()


def test_redaction_masks_api_keys():
    text = redact_secrets("key sk-abcdef123456 and AIzaSyABCDEFGHIJKLMN in ?key=secret&x=1")
    assert "sk-abcdef123456" not in text
    assert "AIzaSyABCDEFGHIJKLMN" not in text
    assert "?key=***&x=1" in text


def test_redaction_filter_rewrites_log_records():
    record = logging.LogRecord(
        "retort", logging.INFO, __file__, 1, "calling with %s", ("sk-abcdef123456",), None
    )
    assert RedactionFilter().filter(record)
    assert record.getMessage() == "calling with sk-***"
