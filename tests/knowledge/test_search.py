"""Tests for KnowledgeSearchService ranking, boosting and degradation.

The knowledge store is mocked so candidate similarities are exact; one
test runs against a real local Qdrant store to check tenant isolation end
to end.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from src.knowledge.config import KnowledgeBaseConfig
from src.knowledge.embeddings import EmbeddingError, EmbeddingService
from src.knowledge.models import ChunkMetadata, SearchFilters, SearchResult
from src.knowledge.qdrant_client import QdrantKnowledgeStore
from src.knowledge.rag.classifier import FALLBACK_TITLE, PRICING_TITLE
from src.knowledge.rag.search import KnowledgeSearchService

PRICING_TEXT = "Our pricing starts at $297/mo"
LANGUAGES_TEXT = "We support English and Spanish"
ONBOARDING_TEXT = "Onboarding takes about two weeks"


def _result(content: str, similarity: float, **metadata) -> SearchResult:
    return SearchResult(
        id=f"id-{abs(hash(content)) % 10_000}",
        content=content,
        similarity=similarity,
        metadata=ChunkMetadata(**metadata),
    )


# ── Fixtures ────────────────────────────────────────────────────────────────


@pytest.fixture
def config() -> KnowledgeBaseConfig:
    return KnowledgeBaseConfig(openai_api_key="test-key", qdrant_path=":memory:")


@pytest.fixture
def mock_store() -> QdrantKnowledgeStore:
    store = MagicMock(spec=QdrantKnowledgeStore)
    store.has_embeddings = AsyncMock(return_value=True)
    store.search_by_similarity = AsyncMock(return_value=[])
    store.search_by_keyword = AsyncMock(return_value=[])
    return store


@pytest.fixture
def mock_embeddings() -> EmbeddingService:
    service = MagicMock(spec=EmbeddingService)
    service.embed_text = AsyncMock(return_value=[0.1, 0.2, 0.3])
    return service


@pytest.fixture
def service(mock_store, mock_embeddings, config) -> KnowledgeSearchService:
    return KnowledgeSearchService(mock_store, mock_embeddings, config)


@pytest.fixture
def filters(tenant_a) -> SearchFilters:
    return SearchFilters(tenant_id=tenant_a)


# ── Ranking ─────────────────────────────────────────────────────────────────


class TestRanking:
    async def test_results_sorted_by_similarity(self, service, mock_store, filters):
        mock_store.search_by_similarity.return_value = [
            _result("alpha text", 0.72),
            _result("beta text", 0.91),
            _result("gamma text", 0.80),
        ]

        results = await service.search("alpha beta gamma", filters)

        similarities = [r.similarity for r in results]
        assert similarities == sorted(similarities, reverse=True)
        assert [r.content for r in results] == ["beta text", "gamma text", "alpha text"]

    async def test_ties_keep_store_order(self, service, mock_store, filters):
        mock_store.search_by_similarity.return_value = [
            _result("first text", 0.8),
            _result("second text", 0.8),
        ]

        results = await service.search("first second", filters)
        assert [r.content for r in results] == ["first text", "second text"]

    async def test_overfetches_then_truncates(self, service, mock_store, filters):
        mock_store.search_by_similarity.return_value = [
            _result(f"text number {i}", 0.9 - i * 0.01) for i in range(6)
        ]

        results = await service.search("text number", filters, limit=3)

        assert len(results) == 3
        assert mock_store.search_by_similarity.await_args.kwargs["limit"] == 6

    async def test_default_limit_from_config(self, service, mock_store, filters, config):
        await service.search("anything useful", filters)
        assert (
            mock_store.search_by_similarity.await_args.kwargs["limit"]
            == config.default_top_k * 2
        )

    async def test_sources_attributed(self, service, mock_store, filters):
        mock_store.search_by_similarity.return_value = [
            _result(PRICING_TEXT, 0.9),
            _result("Plain text about the company", 0.8, source_url="https://acme.test/about"),
        ]

        results = await service.search("pricing company", filters)

        assert results[0].metadata.source_title == PRICING_TITLE
        assert results[0].metadata.source_url == "/pricing"
        assert results[1].metadata.source_title == FALLBACK_TITLE
        assert results[1].metadata.source_url == "https://acme.test/about"


# ── Pricing boost ───────────────────────────────────────────────────────────


class TestPricingBoost:
    async def test_boost_is_capped(self, service, mock_store, filters):
        mock_store.search_by_similarity.return_value = [_result(PRICING_TEXT, 0.9)]

        results = await service.search("how much does it cost", filters, boost_pricing=True)

        assert results[0].similarity == 1.0

    async def test_boost_multiplies_pricing(self, service, mock_store, filters):
        mock_store.search_by_similarity.return_value = [_result(PRICING_TEXT, 0.6)]

        results = await service.search("price list", filters, boost_pricing=True)

        assert results[0].similarity == pytest.approx(0.9)

    async def test_boost_leaves_other_results_untouched(self, service, mock_store, filters):
        candidates = [
            _result(LANGUAGES_TEXT, 0.85),
            _result(ONBOARDING_TEXT, 0.75),
            _result("Plain text about the company", 0.71),
        ]
        mock_store.search_by_similarity.return_value = candidates

        plain = await service.search("languages onboarding", filters)
        boosted = await service.search("languages onboarding", filters, boost_pricing=True)

        assert [(r.id, r.similarity) for r in plain] == [(r.id, r.similarity) for r in boosted]

    async def test_pricing_scenario(self, service, mock_store, filters):
        # Languages snippet scores marginally higher before the boost
        mock_store.search_by_similarity.return_value = [
            _result(LANGUAGES_TEXT, 0.82),
            _result(PRICING_TEXT, 0.80),
        ]

        results = await service.search("how much does it cost", filters, boost_pricing=True)

        assert results[0].content == PRICING_TEXT
        assert results[1].content == LANGUAGES_TEXT
        assert results[1].similarity == pytest.approx(0.82)


# ── Degradation & edge cases ────────────────────────────────────────────────


class TestDegradation:
    @pytest.mark.parametrize("query", ["", "a", "is it ok"])
    async def test_queries_without_terms_return_empty(
        self, service, mock_store, mock_embeddings, filters, query
    ):
        assert await service.search(query, filters) == []
        mock_embeddings.embed_text.assert_not_awaited()
        mock_store.search_by_similarity.assert_not_awaited()

    async def test_embedding_failure_returns_empty(
        self, service, mock_embeddings, filters
    ):
        mock_embeddings.embed_text.side_effect = EmbeddingError("provider down")

        assert await service.search("pricing details", filters) == []

    async def test_store_failure_returns_empty(self, service, mock_store, filters):
        mock_store.search_by_similarity.side_effect = RuntimeError("qdrant unavailable")

        assert await service.search("pricing details", filters) == []

    async def test_keyword_path_when_no_embeddings(
        self, service, mock_store, mock_embeddings, tenant_a
    ):
        mock_store.has_embeddings.return_value = False
        mock_store.search_by_keyword.return_value = [_result(ONBOARDING_TEXT, 1.0)]
        filters = SearchFilters(tenant_id=tenant_a, product=["smartchat"], language=["es", "en"])

        results = await service.search("onboarding weeks", filters, limit=3)

        assert [r.content for r in results] == [ONBOARDING_TEXT]
        mock_embeddings.embed_text.assert_not_awaited()
        mock_store.search_by_keyword.assert_awaited_once_with(
            "onboarding weeks",
            tenant_a,
            products=["smartchat"],
            languages=["es", "en"],
            limit=6,
        )


# ── End to end with local Qdrant ────────────────────────────────────────────


async def test_search_never_crosses_tenants(tmp_path, tenant_a, tenant_b):
    config = KnowledgeBaseConfig(
        qdrant_path=str(tmp_path / "qdrant"),
        openai_api_key="test-key",
        embedding_dimensions=3,
    )
    embeddings = MagicMock(spec=EmbeddingService)
    embeddings.embed_text = AsyncMock(return_value=[1.0, 0.0, 0.0])
    embeddings.embed_batch = AsyncMock(side_effect=lambda texts: [[1.0, 0.0, 0.0] for _ in texts])

    store = QdrantKnowledgeStore(config, embeddings)
    await store.initialize_collections()
    try:
        await store.upsert_chunk(tenant_a, "shared", "en", "Tenant A pricing is $100/mo")
        await store.upsert_chunk(tenant_b, "shared", "en", "Tenant B pricing is $900/mo")

        service = KnowledgeSearchService(store, embeddings, config)
        results = await service.search("pricing please", SearchFilters(tenant_id=tenant_a))

        assert [r.content for r in results] == ["Tenant A pricing is $100/mo"]
    finally:
        store.close()
