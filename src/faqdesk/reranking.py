"""Two-stage reranking: token-overlap heuristic, then an optional cross-encoder pass.

The heuristic stage always runs and narrows the input to a fixed candidate
window. The cross-encoder only ever sees that window, so its cost is bounded
regardless of how many hits retrieval returned.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Optional, Sequence

from sentence_transformers import CrossEncoder

from .config import Settings, get_settings
from .scoring import normalize_sigmoid_scores
from .types import Hit, RerankEngineName, RerankResult

logger = logging.getLogger(__name__)

ORIGINAL_SCORE_WEIGHT = 1e-6


@dataclass(frozen=True)
class PrecisionModelState:
    """Loaded cross-encoder handle. Replaced wholesale on warm-up, never mutated."""

    model: Any = None
    model_name: Optional[str] = None
    last_error: Optional[str] = None
    warmed_up: bool = False

    @property
    def loaded(self) -> bool:
        return self.model is not None


@dataclass
class WarmupReport:
    ok: bool
    engine: RerankEngineName
    model: Optional[str] = None
    error: Optional[str] = None


@dataclass
class RerankerStatus:
    loaded: bool
    engine: RerankEngineName
    model: Optional[str]
    last_error: Optional[str]
    warmed_up: bool


def tokenize_query(query: str) -> list[str]:
    """Lower-cased whitespace tokens of a query."""
    return (query or "").lower().split()


def heuristic_score(query_tokens: Sequence[str], hit: Hit) -> float:
    """Fraction of query tokens contained in the hit text, plus a tiny original-score tie-breaker."""
    text = (hit.text or "").lower()
    matches = sum(1 for token in query_tokens if token in text)
    return matches / max(1, len(query_tokens)) + hit.score * ORIGINAL_SCORE_WEIGHT


def heuristic_rank(query: str, hits: Sequence[Hit]) -> list[Hit]:
    """Sort hits by heuristic score descending, ties by original score descending."""
    tokens = tokenize_query(query)
    scored = [(heuristic_score(tokens, hit), hit) for hit in hits]
    scored.sort(key=lambda item: (item[0], item[1].score), reverse=True)
    return [hit for _, hit in scored]


def _flatten_scores(raw_scores: Any) -> Any:
    """Reduce per-pair score vectors (e.g. two-label classifiers) to the positive-label logit."""
    if hasattr(raw_scores, "tolist"):
        raw_scores = raw_scores.tolist()
    if isinstance(raw_scores, (list, tuple)):
        return [
            score[-1] if isinstance(score, (list, tuple)) and score else score
            for score in raw_scores
        ]
    return raw_scores


class RerankEngine:
    """Rerank retrieval hits, using a cross-encoder when one has been warmed up."""

    def __init__(
        self,
        settings: Settings | None = None,
        model_path: str | None = None,
    ):
        self.settings = settings or get_settings()
        self.model_path = model_path if model_path is not None else self.settings.reranker_model_path
        self.candidates = self.settings.reranker_candidates
        self.min_query_chars = self.settings.reranker_min_query_chars
        self.max_batch_size = self.settings.reranker_max_batch_size
        self._state = PrecisionModelState()

    @property
    def state(self) -> PrecisionModelState:
        return self._state

    def warmup(self) -> WarmupReport:
        """
        Load the cross-encoder named by the configured model path.

        Never raises. Missing configuration or a load failure leaves the engine in
        heuristic mode and reports why. Safe to call repeatedly.
        """
        if not self.model_path:
            error = "reranker_model_path not set"
            self._state = PrecisionModelState(last_error=error, warmed_up=True)
            logger.info("No reranker model configured; using heuristic reranking only")
            return WarmupReport(ok=False, engine=RerankEngineName.HEURISTIC, error=error)

        try:
            logger.info("Loading reranker model: %s", self.model_path)
            model = CrossEncoder(self.model_path)
        except Exception as exc:
            self._state = PrecisionModelState(
                model_name=self.model_path, last_error=str(exc), warmed_up=True
            )
            logger.warning("Failed to load reranker, continuing with heuristic reranking: %s", exc)
            return WarmupReport(
                ok=False,
                engine=RerankEngineName.HEURISTIC,
                model=self.model_path,
                error=str(exc),
            )

        self._state = PrecisionModelState(model=model, model_name=self.model_path, warmed_up=True)
        logger.info("Reranker loaded successfully")
        return WarmupReport(ok=True, engine=RerankEngineName.PRECISION, model=self.model_path)

    def status(self) -> RerankerStatus:
        state = self._state
        return RerankerStatus(
            loaded=state.loaded,
            engine=RerankEngineName.PRECISION if state.loaded else RerankEngineName.HEURISTIC,
            model=state.model_name,
            last_error=state.last_error,
            warmed_up=state.warmed_up,
        )

    def should_use_precision(self, query: str, candidate_count: int, state: PrecisionModelState) -> bool:
        return (
            state.loaded
            and len((query or "").strip()) >= self.min_query_chars
            and candidate_count > 1
        )

    def _precision_scores(self, model: Any, query: str, candidates: Sequence[Hit]) -> list[float]:
        pairs = [[query, hit.text] for hit in candidates]
        raw_scores = model.predict(pairs, batch_size=self.max_batch_size, show_progress_bar=False)
        scores = normalize_sigmoid_scores(_flatten_scores(raw_scores))
        if len(scores) != len(candidates):
            raise ValueError(
                f"Score count mismatch: {len(scores)} scores for {len(candidates)} candidates"
            )
        return scores

    def rerank(self, query: str, hits: Sequence[Hit], top_k: int) -> RerankResult:
        """
        Rerank hits for a query.

        Args:
            query: Query text used for both stages
            hits: Retrieval hits in any order
            top_k: Number of hits to keep (at least one is kept when input is non-empty)

        Returns:
            RerankResult whose items are a subset of ``hits``
        """
        if top_k < 0:
            raise ValueError(f"top_k must be >= 0, got {top_k}")
        if not hits:
            return RerankResult(items=[], elapsed_ms=0, engine=RerankEngineName.HEURISTIC)

        started = time.perf_counter()
        limit = max(1, top_k)
        ranked = heuristic_rank(query, hits)
        window = ranked[: self.candidates]
        tail = ranked[self.candidates :]
        engine = RerankEngineName.HEURISTIC

        state = self._state
        if self.should_use_precision(query, len(window), state):
            try:
                scores = self._precision_scores(state.model, query, window)
            except Exception as exc:
                logger.warning("Precision reranking failed, keeping heuristic order: %s", exc)
                engine = RerankEngineName.PRECISION_WITH_FALLBACK
            else:
                scored = sorted(
                    zip(scores, window),
                    key=lambda item: (item[0], item[1].score),
                    reverse=True,
                )
                window = [hit for _, hit in scored]
                engine = RerankEngineName.PRECISION

        items = (window + tail)[:limit]
        elapsed_ms = int(round((time.perf_counter() - started) * 1000))
        logger.debug(
            "Reranked %s hits to %s with %s engine in %sms",
            len(hits),
            len(items),
            engine.value,
            elapsed_ms,
        )
        return RerankResult(items=items, elapsed_ms=elapsed_ms, engine=engine)
