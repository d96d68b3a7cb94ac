"""Tests for settings loading and validation."""

import pytest
from pydantic import ValidationError

from faqdesk import config
from faqdesk.config import Settings, get_settings


def test_defaults(settings):
    assert settings.hybrid_timeout_ms == 600
    assert settings.hybrid_result_window == 50
    assert settings.hybrid_probe_query == "返品 送料"
    assert settings.hybrid_max_results == 80
    assert settings.reranker_candidates == 24
    assert settings.reranker_min_query_chars == 8
    assert settings.reranker_max_batch_size == 16
    assert settings.router_max_premium_per_request == 1
    assert settings.session_history_max_messages == 20
    assert settings.retrieval_backend_configured is False


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("HYBRID_TIMEOUT_MS", "900")
    monkeypatch.setenv("QDRANT_URL", "http://qdrant:6333")
    monkeypatch.setenv("ROUTER_FORCED_TIER", " Premium ")

    settings = Settings(_env_file=None)

    assert settings.hybrid_timeout_ms == 900
    assert settings.retrieval_backend_configured is True
    assert settings.router_forced_tier == "premium"


def test_blank_api_key_treated_as_missing():
    assert Settings(_env_file=None, openrouter_api_key="   ").openrouter_api_key is None


def test_invalid_forced_tier_rejected():
    with pytest.raises(ValidationError):
        Settings(_env_file=None, router_forced_tier="gpt-5")


def test_bounds_enforced():
    with pytest.raises(ValidationError):
        Settings(_env_file=None, reranker_candidates=0)


def test_in_memory_counts_as_backend():
    assert Settings(_env_file=None, qdrant_in_memory=True).retrieval_backend_configured is True


def test_get_settings_is_cached(monkeypatch):
    monkeypatch.setattr(config, "_settings_instance", None)
    first = get_settings()
    assert get_settings() is first
