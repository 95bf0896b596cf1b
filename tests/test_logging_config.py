from __future__ import annotations

import logging

from loguru import logger

from deepcite.config import Settings
from deepcite.services import logger as log_service


def test_settings_defaults(monkeypatch):
    monkeypatch.delenv("MAX_ITERATIONS", raising=False)
    settings = Settings(_env_file=None)

    assert settings.max_iterations == 3
    assert settings.scrape_max_urls == 15
    assert settings.scrape_concurrency == 3
    assert settings.chunk_size_words == 1000
    assert settings.chunk_overlap_words == 200
    assert settings.retrieval_top_k == 5
    assert settings.retrieval_max_chunks == 20


def test_settings_read_environment(monkeypatch):
    monkeypatch.setenv("MAX_ITERATIONS", "5")
    monkeypatch.setenv("SEARCH_PROVIDER", "brave")
    settings = Settings(_env_file=None)

    assert settings.max_iterations == 5
    assert settings.search_provider == "brave"


def test_embedding_key_falls_back_to_llm_key():
    settings = Settings(_env_file=None, openai_api_key="sk-main", embedding_api_key="")
    assert settings.resolved_embedding_api_key == "sk-main"


def test_setup_logging_creates_log_dir_and_quiets_noisy_loggers(tmp_path, monkeypatch):
    monkeypatch.setattr(log_service, "_configured", False)
    settings = Settings(_env_file=None, log_dir=str(tmp_path / "logs"), noisy_log_level="ERROR")

    log_service.setup_logging(settings)
    log_service.log_event("test_event", "hello", session_id="s1")

    assert (tmp_path / "logs").is_dir()
    assert logging.getLogger("httpx").level == logging.ERROR


def test_structured_records_flag_failures():
    messages: list[str] = []
    sink_id = logger.add(messages.append, format="{level}|{message}")
    try:
        log_service.log_checkpoint("s1", "review", "file")
        log_service.log_checkpoint("s1", "review", "file", error="disk full")
        log_service.log_research_step("s1", "search", "error", {"iteration": 1})
    finally:
        logger.remove(sink_id)

    assert messages[0].startswith("INFO|CHECKPOINT: ")
    assert messages[1].startswith("ERROR|CHECKPOINT_FAILED: ")
    assert "disk full" in messages[1]
    assert messages[2].startswith("ERROR|RESEARCH_STEP_FAILED: ")
