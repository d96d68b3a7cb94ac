"""Pytest configuration and shared fixtures."""

import pytest
import sys
from pathlib import Path

# Add src to path so we can import faqdesk
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from faqdesk.config import Settings  # noqa: E402
from faqdesk.types import Hit, HitSource  # noqa: E402


def make_hit(hit_id: str, text: str = "", score: float = 1.0, source: HitSource = HitSource.PRIMARY_TEXT) -> Hit:
    return Hit(id=hit_id, text=text or f"text for {hit_id}", score=score, source=source)


class FakeTextBackend:
    """Text backend returning canned hits per query; records every call."""

    def __init__(self, responses=None, error=None, probe_hits=None, probe_error=None):
        self.responses = responses or {}
        self.error = error
        self.probe_hits = probe_hits or []
        self.probe_error = probe_error
        self.calls = []

    def search(self, index_name, query, window):
        self.calls.append((index_name, query, window))
        if query == "返品 送料":
            if self.probe_error:
                raise self.probe_error
            return list(self.probe_hits)
        if self.error:
            raise self.error
        return list(self.responses.get(query, []))


class FakeVectorBackend:
    def __init__(self, hits=None, error=None):
        self.hits = hits or []
        self.error = error
        self.calls = []

    def search(self, tenant_id, embedding, top_k):
        self.calls.append((tenant_id, list(embedding), top_k))
        if self.error:
            raise self.error
        return list(self.hits)


class FakeEmbedder:
    def embed_query(self, text):
        return [0.1, 0.2, 0.3, 0.4]


@pytest.fixture
def settings():
    """Settings isolated from the developer's environment and .env file."""
    return Settings(
        _env_file=None,
        qdrant_url=None,
        qdrant_in_memory=False,
        openrouter_api_key=None,
        reranker_model_path=None,
        router_forced_tier=None,
    )
