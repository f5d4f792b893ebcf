"""Knowledge search service: retrieval, source attribution and re-ranking.

Given a visitor query and a tenant's filters, embeds the query, over-fetches
candidates from the knowledge store, labels every candidate with a source
title, optionally boosts pricing content, and returns the best ``limit``
results ordered by similarity.

Partitions that hold no embedded chunks are served by the store's keyword
search instead, so knowledge ingested without an embedding provider is
still reachable.

Retrieval never raises: any store or provider failure is logged and the
caller receives an empty result list.
"""

from __future__ import annotations

import logging

from src.knowledge.config import KnowledgeBaseConfig
from src.knowledge.embeddings import EmbeddingService
from src.knowledge.models import ChunkMetadata, SearchFilters, SearchResult
from src.knowledge.qdrant_client import QdrantKnowledgeStore, extract_query_terms
from src.knowledge.rag.classifier import PRICING_TITLE, classify_source

logger = logging.getLogger(__name__)

OVERFETCH_FACTOR = 2


class KnowledgeSearchService:
    """Tenant-scoped knowledge search with deterministic re-ranking.

    Args:
        store: Knowledge store to query.
        embedding_service: Provider used to embed incoming queries.
        config: Knowledge base configuration (defaults and boost factor).
    """

    def __init__(
        self,
        store: QdrantKnowledgeStore,
        embedding_service: EmbeddingService,
        config: KnowledgeBaseConfig,
    ) -> None:
        self._store = store
        self._embeddings = embedding_service
        self._config = config

    async def search(
        self,
        query: str,
        filters: SearchFilters,
        limit: int | None = None,
        boost_pricing: bool = False,
    ) -> list[SearchResult]:
        """Find the most relevant snippets for a query within one tenant.

        Args:
            query: Free-text visitor query.
            filters: Tenant (required), product, language and similarity floor.
            limit: Maximum results; defaults to ``default_top_k``.
            boost_pricing: Multiply "Pricing" results by the pricing boost,
                capped at 1.0.

        Returns:
            Results ordered by similarity descending, at most ``limit`` long.
            Empty when the query has no usable terms or retrieval failed.
        """
        limit = limit or self._config.default_top_k
        if not extract_query_terms(query):
            return []

        try:
            candidates = await self._fetch_candidates(query, filters, limit)
        except Exception:
            logger.warning(
                "Knowledge search failed for tenant %s, continuing without context",
                filters.tenant_id,
                exc_info=True,
            )
            return []

        ranked = [
            self._rank(candidate, boost_pricing) for candidate in candidates
        ]
        # list.sort is stable: equal scores keep store order
        ranked.sort(key=lambda result: result.similarity, reverse=True)
        return ranked[:limit]

    async def _fetch_candidates(
        self, query: str, filters: SearchFilters, limit: int
    ) -> list[SearchResult]:
        fetch_limit = limit * OVERFETCH_FACTOR

        if not await self._store.has_embeddings(filters.tenant_id, filters.product):
            logger.info(
                "No embedded knowledge for tenant %s, using keyword search",
                filters.tenant_id,
            )
            return await self._store.search_by_keyword(
                query,
                filters.tenant_id,
                products=filters.product,
                languages=filters.language,
                limit=fetch_limit,
            )

        query_embedding = await self._embeddings.embed_text(query)
        return await self._store.search_by_similarity(
            query_embedding, filters, limit=fetch_limit
        )

    def _rank(self, result: SearchResult, boost_pricing: bool) -> SearchResult:
        """Attach the classified source and apply the pricing boost."""
        title, url = classify_source(result.content)
        similarity = result.similarity
        if boost_pricing and title == PRICING_TITLE:
            similarity = min(1.0, similarity * self._config.pricing_boost)

        return SearchResult(
            id=result.id,
            content=result.content,
            similarity=similarity,
            metadata=ChunkMetadata(
                source_title=title,
                source_url=result.metadata.source_url or url,
                created_at=result.metadata.created_at,
            ),
        )
