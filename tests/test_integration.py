"""Integration tests for the Qdrant-backed retrieval sources."""

import pytest
from qdrant_client import QdrantClient
from qdrant_client.models import Distance, PointStruct, VectorParams
from langchain_core.embeddings import Embeddings

from faqdesk.retrieval import HybridRetriever, QdrantTextBackend, QdrantVectorBackend
from faqdesk.types import HitSource, RetrievalStatus


class DummyEmbeddings(Embeddings):
    """Minimal valid LangChain embeddings for testing."""
    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [[0.1, 0.2, 0.3, 0.4]] * len(texts)
    def embed_query(self, text: str) -> list[float]:
        return [0.1, 0.2, 0.3, 0.4]


@pytest.fixture
def qdrant_client():
    """Create an in-memory Qdrant client for testing."""
    return QdrantClient(":memory:")


def _insert_faq_docs(client: QdrantClient, collection: str = "faq_docs"):
    client.create_collection(
        collection_name=collection,
        vectors_config=VectorParams(size=4, distance=Distance.COSINE),
    )
    client.upsert(
        collection_name=collection,
        points=[
            PointStruct(
                id=1,
                vector=[0.1, 0.2, 0.3, 0.4],
                payload={"page_content": "送料は全国一律500円です。", "metadata": {"faq_id": "faq-shipping"}},
            ),
            PointStruct(
                id=2,
                vector=[0.4, 0.3, 0.2, 0.1],
                payload={"page_content": "返品は到着後7日以内に受け付けます。", "metadata": {"faq_id": "faq-returns"}},
            ),
        ],
    )


def _insert_tenant_embeddings(client: QdrantClient, collection: str = "faq_embeddings"):
    client.create_collection(
        collection_name=collection,
        vectors_config=VectorParams(size=4, distance=Distance.COSINE),
    )
    client.upsert(
        collection_name=collection,
        points=[
            PointStruct(id=10, vector=[0.1, 0.2, 0.3, 0.4], payload={"tenant_id": "tenant-a", "text": "A社の送料"}),
            PointStruct(id=11, vector=[0.2, 0.2, 0.3, 0.4], payload={"tenant_id": "tenant-b", "text": "B社の送料"}),
        ],
    )


class TestQdrantTextBackend:
    def test_search_returns_primary_text_hits(self, qdrant_client):
        _insert_faq_docs(qdrant_client)
        backend = QdrantTextBackend(qdrant_client, DummyEmbeddings())

        hits = backend.search("faq_docs", "送料", window=2)

        assert [hit.id for hit in hits] == ["faq-shipping", "faq-returns"]
        assert all(hit.source == HitSource.PRIMARY_TEXT for hit in hits)
        assert hits[0].text == "送料は全国一律500円です。"

    def test_missing_collection_raises(self, qdrant_client):
        backend = QdrantTextBackend(qdrant_client, DummyEmbeddings())
        with pytest.raises(Exception):
            backend.search("missing", "送料", window=5)


class TestQdrantVectorBackend:
    def test_search_is_tenant_scoped(self, qdrant_client):
        _insert_tenant_embeddings(qdrant_client)
        backend = QdrantVectorBackend(qdrant_client, "faq_embeddings")

        hits = backend.search("tenant-a", [0.1, 0.2, 0.3, 0.4], top_k=5)

        assert [hit.id for hit in hits] == ["10"]
        assert hits[0].text == "A社の送料"
        assert hits[0].source == HitSource.VECTOR
        assert 0.0 <= hits[0].score <= 1.0

    def test_empty_embedding_returns_nothing(self, qdrant_client):
        backend = QdrantVectorBackend(qdrant_client, "faq_embeddings")
        assert backend.search("tenant-a", [], top_k=5) == []


class TestHybridRetrieverWithQdrant:
    def test_merges_text_and_vector_sources(self, qdrant_client, settings):
        _insert_faq_docs(qdrant_client)
        _insert_tenant_embeddings(qdrant_client)
        embeddings = DummyEmbeddings()
        retriever = HybridRetriever(
            settings,
            text_backend=QdrantTextBackend(qdrant_client, embeddings),
            vector_backend=QdrantVectorBackend(qdrant_client, "faq_embeddings"),
            embedder=embeddings,
        )

        result = retriever.search("送料", tenant_id="tenant-a")

        assert result.status == RetrievalStatus.OK
        assert {hit.id for hit in result.items} == {"faq-shipping", "faq-returns", "10"}
        retriever.close()

    def test_missing_index_degrades_instead_of_raising(self, qdrant_client, settings):
        settings.hybrid_mock_on_failure = True
        retriever = HybridRetriever(settings, text_backend=QdrantTextBackend(qdrant_client, DummyEmbeddings()))

        result = retriever.search("送料")

        assert result.is_mock is True
        assert any(note.startswith("text_error:") for note in result.notes)
        retriever.close()
