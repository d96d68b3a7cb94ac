"""Hybrid retrieval over the FAQ full-text index and the tenant vector store."""

from __future__ import annotations

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from typing import Callable, Protocol, Sequence

from langchain_community.embeddings import HuggingFaceEmbeddings
from langchain_core.embeddings import Embeddings
from langchain_qdrant import QdrantVectorStore, RetrievalMode
from qdrant_client import QdrantClient
from qdrant_client import models as qdrant_models

from .config import Settings, get_settings
from .scoring import zscore_normalizer
from .types import Hit, HitSource, RetrievalResult, RetrievalStatus

logger = logging.getLogger(__name__)


class TextSearchBackend(Protocol):
    """Full-text index: ranked hits with backend-native scores."""

    def search(self, index_name: str, query: str, window: int) -> list[Hit]: ...


class VectorSearchBackend(Protocol):
    """Tenant-scoped vector store: hits with similarity scores in [0, 1]."""

    def search(self, tenant_id: str, embedding: Sequence[float], top_k: int) -> list[Hit]: ...


class Embedder(Protocol):
    def embed_query(self, text: str) -> list[float]: ...


def build_qdrant_client(settings: Settings) -> QdrantClient:
    """Create a Qdrant client from settings (in-memory when requested)."""
    if settings.qdrant_in_memory:
        return QdrantClient(":memory:")
    return QdrantClient(
        url=settings.qdrant_url,
        api_key=settings.qdrant_api_key,
        timeout=max(1, settings.hybrid_timeout_ms // 1000),
    )


class QdrantTextBackend:
    """Primary text index backed by a Qdrant collection through LangChain."""

    def __init__(self, client: QdrantClient, embeddings: Embeddings):
        self.client = client
        self.embeddings = embeddings
        self._stores: dict[str, QdrantVectorStore] = {}

    def _store(self, index_name: str) -> QdrantVectorStore:
        store = self._stores.get(index_name)
        if store is None:
            store = QdrantVectorStore(
                client=self.client,
                collection_name=index_name,
                embedding=self.embeddings,
                retrieval_mode=RetrievalMode.DENSE,
            )
            self._stores[index_name] = store
        return store

    def search(self, index_name: str, query: str, window: int) -> list[Hit]:
        results = self._store(index_name).similarity_search_with_score(query, k=window)
        hits: list[Hit] = []
        for doc, score in results:
            metadata = doc.metadata or {}
            hit_id = metadata.get("faq_id") or metadata.get("_id") or getattr(doc, "id", None)
            hits.append(
                Hit(
                    id=str(hit_id),
                    text=doc.page_content or "",
                    score=float(score),
                    source=HitSource.PRIMARY_TEXT,
                )
            )
        return hits


class QdrantVectorBackend:
    """Tenant-filtered nearest-neighbour search over precomputed FAQ embeddings."""

    def __init__(self, client: QdrantClient, collection_name: str):
        self.client = client
        self.collection_name = collection_name

    @staticmethod
    def _tenant_filter(tenant_id: str) -> qdrant_models.Filter:
        return qdrant_models.Filter(
            must=[
                qdrant_models.FieldCondition(
                    key="tenant_id",
                    match=qdrant_models.MatchValue(value=tenant_id),
                )
            ]
        )

    def search(self, tenant_id: str, embedding: Sequence[float], top_k: int) -> list[Hit]:
        if not embedding:
            return []
        response = self.client.query_points(
            collection_name=self.collection_name,
            query=list(embedding),
            query_filter=self._tenant_filter(tenant_id),
            limit=top_k,
            with_payload=True,
        )
        hits: list[Hit] = []
        for point in response.points:
            payload = point.payload or {}
            text = payload.get("text") or payload.get("page_content") or ""
            score = max(0.0, min(1.0, float(point.score or 0.0)))
            hits.append(Hit(id=str(point.id), text=str(text), score=score, source=HitSource.VECTOR))
        return hits


def mock_hits(query: str) -> list[Hit]:
    """Deterministic, clearly labeled placeholder hits."""
    return [
        Hit(id="mock-text", text=f"[mock] full-text result for: {query}", score=1.0, source=HitSource.PRIMARY_TEXT),
        Hit(id="mock-relational", text=f"[mock] relational result for: {query}", score=0.8, source=HitSource.RELATIONAL),
    ]


def merge_normalized(hit_groups: Sequence[Sequence[Hit]], max_results: int) -> list[Hit]:
    """
    Merge per-source hit lists by z-normalized score.

    Each group is normalized against itself so backend-native score ranges become
    comparable. Ties keep arrival order; duplicate ids keep their best-ranked copy.
    """
    scored: list[tuple[float, Hit]] = []
    for hits in hit_groups:
        if not hits:
            continue
        normalize = zscore_normalizer([hit.score for hit in hits])
        scored.extend((normalize(hit.score), hit) for hit in hits)
    scored.sort(key=lambda item: item[0], reverse=True)

    merged: list[Hit] = []
    seen_ids: set[str] = set()
    for _, hit in scored:
        if hit.id in seen_ids:
            continue
        seen_ids.add(hit.id)
        merged.append(hit)
        if len(merged) >= max_results:
            break
    return merged


class HybridRetriever:
    """Query the configured sources, merge, and degrade instead of failing."""

    def __init__(
        self,
        settings: Settings | None = None,
        text_backend: TextSearchBackend | None = None,
        vector_backend: VectorSearchBackend | None = None,
        embedder: Embedder | None = None,
        max_workers: int = 4,
    ):
        self.settings = settings or get_settings()
        self.text_backend = text_backend
        self.vector_backend = vector_backend
        self.embedder = embedder
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="faqdesk-retrieval"
        )

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "HybridRetriever":
        """Wire Qdrant-backed sources from settings; no backend when none is configured."""
        settings = settings or get_settings()
        if not settings.retrieval_backend_configured:
            logger.info(
                "No retrieval backend configured; searches will return %s",
                "mock hits" if settings.hybrid_mock_on_failure else "empty results",
            )
            return cls(settings)

        client = build_qdrant_client(settings)
        logger.info("Loading embedding model: %s", settings.embedding_model_name)
        embeddings = HuggingFaceEmbeddings(model_name=settings.embedding_model_name)
        text_backend = QdrantTextBackend(client, embeddings)
        vector_backend = None
        if settings.vector_search_enabled:
            vector_backend = QdrantVectorBackend(client, settings.qdrant_vector_collection)
        return cls(
            settings,
            text_backend=text_backend,
            vector_backend=vector_backend,
            embedder=embeddings if vector_backend is not None else None,
        )

    @property
    def backend_configured(self) -> bool:
        return self.text_backend is not None or self.vector_backend is not None

    def close(self, wait: bool = True) -> None:
        """Stop the source worker pool; queued source calls are cancelled."""
        self._executor.shutdown(wait=wait, cancel_futures=True)

    def __enter__(self) -> "HybridRetriever":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _elapsed_ms(self, started: float) -> int:
        return int(round((time.perf_counter() - started) * 1000))

    def _collect(self, label: str, future: Future, notes: list[str]) -> tuple[list[Hit], bool]:
        """Wait for a source; failures and timeouts become notes. Returns (hits, failed)."""
        budget_ms = self.settings.hybrid_timeout_ms
        timeout = budget_ms / 1000 if self.settings.hybrid_enforce_budget else None
        try:
            return list(future.result(timeout=timeout)), False
        except FuturesTimeoutError:
            future.cancel()
            notes.append(f"{label}_timeout:{budget_ms}ms")
            logger.warning("%s source exceeded %sms budget; continuing without it", label, budget_ms)
        except Exception as exc:
            notes.append(f"{label}_error:{exc}")
            logger.warning("%s source failed; continuing without it: %s", label, exc)
        return [], True

    def _submit(self, fn: Callable[[], list[Hit]]) -> Future:
        return self._executor.submit(fn)

    def search(self, query: str, tenant_id: str | None = None) -> RetrievalResult:
        """
        Retrieve candidate hits for a query.

        Never raises: backend errors and timeouts are converted into notes and a
        DEGRADED status.

        Args:
            query: User query (or planner-rewritten query)
            tenant_id: Tenant whose vector store partition is searched, if any

        Returns:
            RetrievalResult with merged hits, elapsed time, and diagnostics
        """
        started = time.perf_counter()
        notes: list[str] = []
        settings = self.settings
        allow_mock = settings.hybrid_mock_on_failure

        if not self.backend_configured:
            notes.append("backend:not_configured")
            if allow_mock:
                notes.append("mock-used")
                return RetrievalResult(
                    items=mock_hits(query),
                    elapsed_ms=self._elapsed_ms(started),
                    notes=notes,
                    status=RetrievalStatus.DEGRADED,
                    is_mock=True,
                )
            notes.append("mock:disabled")
            return RetrievalResult(
                items=[], elapsed_ms=self._elapsed_ms(started), notes=notes, status=RetrievalStatus.EMPTY
            )

        index_name = settings.qdrant_text_collection
        text_future = None
        vector_future = None
        if self.text_backend is not None:
            text_backend = self.text_backend
            text_future = self._submit(
                lambda: text_backend.search(index_name, query, settings.hybrid_result_window)
            )
        if self.vector_backend is not None and self.embedder is not None:
            if tenant_id:
                vector_backend = self.vector_backend
                embedder = self.embedder
                vector_future = self._submit(
                    lambda: vector_backend.search(
                        tenant_id, embedder.embed_query(query), settings.vector_top_k
                    )
                )
            else:
                notes.append("vector:no_tenant")

        degraded = False
        text_hits: list[Hit] = []
        vector_hits: list[Hit] = []
        text_failed = False
        if text_future is not None:
            text_hits, text_failed = self._collect("text", text_future, notes)
            degraded = degraded or text_failed
        if vector_future is not None:
            vector_hits, vector_failed = self._collect("vector", vector_future, notes)
            degraded = degraded or vector_failed

        # Zero-hit recovery: one fixed sanity query tells "no matching data" apart
        # from "empty or misconfigured index". Its hits never answer the user's
        # query, so it is skipped once another source has found something.
        if self.text_backend is not None and not text_hits and not text_failed and vector_hits:
            notes.append("probe:skipped_vector_hits")
        elif self.text_backend is not None and not text_hits and not text_failed:
            text_backend = self.text_backend
            probe_future = self._submit(
                lambda: text_backend.search(
                    index_name, settings.hybrid_probe_query, settings.hybrid_probe_window
                )
            )
            probe_hits, probe_failed = self._collect("probe", probe_future, notes)
            if probe_hits:
                text_hits = probe_hits
                degraded = True
                notes.append("probe:fallback_query_used")
            elif probe_failed:
                degraded = True
            else:
                notes.append("probe:no_hits")

        if not text_hits and not vector_hits:
            if allow_mock:
                notes.insert(0, f"fallback (budget={settings.hybrid_timeout_ms}ms)")
                return RetrievalResult(
                    items=mock_hits(query),
                    elapsed_ms=self._elapsed_ms(started),
                    notes=notes,
                    status=RetrievalStatus.DEGRADED,
                    is_mock=True,
                )
            return RetrievalResult(
                items=[],
                elapsed_ms=self._elapsed_ms(started),
                notes=notes,
                status=RetrievalStatus.DEGRADED if degraded else RetrievalStatus.EMPTY,
            )

        merged = merge_normalized([text_hits, vector_hits], settings.hybrid_max_results)
        elapsed_ms = self._elapsed_ms(started)
        notes.append(
            f"search_ms={elapsed_ms} text_hits={len(text_hits)} vector_hits={len(vector_hits)}"
        )
        logger.debug(
            "Hybrid search for '%s' returned %s hits (text=%s, vector=%s) in %sms",
            query,
            len(merged),
            len(text_hits),
            len(vector_hits),
            elapsed_ms,
        )
        return RetrievalResult(
            items=merged,
            elapsed_ms=elapsed_ms,
            notes=notes,
            status=RetrievalStatus.DEGRADED if degraded else RetrievalStatus.OK,
        )
