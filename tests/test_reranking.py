"""Tests for the two-stage rerank engine."""

from unittest.mock import MagicMock, patch

import pytest

from conftest import make_hit

from faqdesk.reranking import RerankEngine, heuristic_rank, heuristic_score, tokenize_query
from faqdesk.types import RerankEngineName


@pytest.fixture
def loaded_engine(settings):
    """Engine with a mocked cross-encoder loaded."""
    with patch("faqdesk.reranking.CrossEncoder") as encoder_cls:
        model = MagicMock()
        encoder_cls.return_value = model
        engine = RerankEngine(settings, model_path="cross-encoder/test")
        report = engine.warmup()
    assert report.ok is True
    return engine, model


def test_tokenize_query_lowercases_and_splits():
    assert tokenize_query("  Return  POLICY ") == ["return", "policy"]


def test_heuristic_score_fraction_plus_tiebreak():
    hit = make_hit("a", text="Return policy for sale items", score=2.0)
    assert heuristic_score(["return", "shipping"], hit) == pytest.approx(0.5 + 2e-6)


def test_heuristic_rank_ties_broken_by_original_score():
    hits = [make_hit("low", text="none", score=0.1), make_hit("high", text="none", score=0.9)]
    assert [hit.id for hit in heuristic_rank("xyz", hits)] == ["high", "low"]


def test_empty_input_returns_empty_heuristic_result(settings):
    result = RerankEngine(settings).rerank("送料 について", [], top_k=5)
    assert result.items == []
    assert result.elapsed_ms == 0
    assert result.engine == RerankEngineName.HEURISTIC


def test_heuristic_orders_by_token_overlap(settings):
    hits = [
        make_hit("a", text="gift wrapping options", score=5.0),
        make_hit("b", text="return shipping fee policy", score=1.0),
        make_hit("c", text="shipping times", score=2.0),
    ]
    result = RerankEngine(settings).rerank("return shipping fee", hits, top_k=2)

    assert [hit.id for hit in result.items] == ["b", "c"]
    assert result.engine == RerankEngineName.HEURISTIC


def test_result_length_is_min_of_top_k_and_input(settings):
    hits = [make_hit(f"h{i}") for i in range(30)]
    engine = RerankEngine(settings)
    assert len(engine.rerank("query text", hits, top_k=5).items) == 5
    assert len(engine.rerank("query text", hits[:3], top_k=10).items) == 3
    assert len(engine.rerank("query text", hits, top_k=28).items) == 28


def test_negative_top_k_raises(settings):
    with pytest.raises(ValueError):
        RerankEngine(settings).rerank("query", [make_hit("a")], top_k=-1)


def test_warmup_without_model_path_stays_heuristic(settings):
    engine = RerankEngine(settings)
    report = engine.warmup()

    assert report.ok is False
    assert report.engine == RerankEngineName.HEURISTIC
    assert report.error == "reranker_model_path not set"
    status = engine.status()
    assert status.loaded is False
    assert status.warmed_up is True


def test_warmup_load_failure_reports_error(settings):
    with patch("faqdesk.reranking.CrossEncoder", side_effect=OSError("model not found")):
        engine = RerankEngine(settings, model_path="missing/model")
        report = engine.warmup()

    assert report.ok is False
    assert report.error == "model not found"
    assert engine.status().last_error == "model not found"
    assert engine.status().engine == RerankEngineName.HEURISTIC


def test_warmup_without_model_path_is_idempotent(settings):
    engine = RerankEngine(settings)

    first = engine.warmup()
    second = engine.warmup()

    assert first == second
    assert first.ok is False
    assert engine.status().loaded is False


def test_failed_warmup_after_success_clears_model(loaded_engine):
    engine, model = loaded_engine
    assert engine.status().loaded is True

    with patch("faqdesk.reranking.CrossEncoder", side_effect=OSError("disk full")):
        report = engine.warmup()

    assert report.ok is False
    assert engine.status().loaded is False
    assert engine.status().engine == RerankEngineName.HEURISTIC
    result = engine.rerank("return shipping fee", [make_hit("a"), make_hit("b")], top_k=2)
    assert result.engine == RerankEngineName.HEURISTIC
    model.predict.assert_not_called()


def test_precision_stage_reorders_window(loaded_engine):
    engine, model = loaded_engine
    model.predict.return_value = [-3.0, 4.0, 0.5]
    hits = [
        make_hit("a", text="return shipping fee policy"),
        make_hit("b", text="return shipping"),
        make_hit("c", text="return"),
    ]

    result = engine.rerank("return shipping fee", hits, top_k=3)

    assert [hit.id for hit in result.items] == ["b", "c", "a"]
    assert result.engine == RerankEngineName.PRECISION
    assert model.predict.call_args.kwargs["batch_size"] == 16


def test_precision_stage_handles_two_label_output(loaded_engine):
    engine, model = loaded_engine
    model.predict.return_value = [[0.0, -1.0], [0.0, 2.0]]
    hits = [make_hit("a", text="return shipping"), make_hit("b", text="other")]

    result = engine.rerank("return shipping", hits, top_k=2)

    assert [hit.id for hit in result.items] == ["b", "a"]


def test_precision_stage_only_sees_candidate_window(loaded_engine):
    engine, model = loaded_engine
    hits = [make_hit(f"h{i}", text=f"faq {i}", score=float(100 - i)) for i in range(40)]
    model.predict.side_effect = lambda pairs, **kwargs: [0.0] * len(pairs)

    result = engine.rerank("faq question text", hits, top_k=30)

    assert len(model.predict.call_args.args[0]) == 24
    assert len(result.items) == 30
    assert [hit.id for hit in result.items[24:]] == [f"h{i}" for i in range(24, 30)]


def test_precision_failure_falls_back_to_heuristic_order(loaded_engine):
    engine, model = loaded_engine
    model.predict.side_effect = RuntimeError("inference failed")
    hits = [make_hit("a", text="nothing"), make_hit("b", text="return shipping fee")]

    result = engine.rerank("return shipping fee", hits, top_k=2)

    assert [hit.id for hit in result.items] == ["b", "a"]
    assert result.engine == RerankEngineName.PRECISION_WITH_FALLBACK


def test_short_query_skips_precision(loaded_engine):
    engine, model = loaded_engine
    hits = [make_hit("a"), make_hit("b")]

    result = engine.rerank("送料", hits, top_k=2)

    model.predict.assert_not_called()
    assert result.engine == RerankEngineName.HEURISTIC


def test_single_candidate_skips_precision(loaded_engine):
    engine, model = loaded_engine

    result = engine.rerank("return shipping fee", [make_hit("a")], top_k=5)

    model.predict.assert_not_called()
    assert result.engine == RerankEngineName.HEURISTIC
