"""Qdrant-backed knowledge store for widget answers.

One collection holds every tenant's chunks. Each point carries tenant_id,
product and language in its payload, and every query is built through
_tenant_filter(), which refuses to produce a filter without a tenant.

Chunks are keyed by tenant/product/language/content so re-ingesting the same
text replaces the stored point. Search is cosine similarity over the "dense"
named vector with a score floor, plus a keyword path for tenants whose chunks
were stored without embeddings.

QdrantClient is synchronous; data calls run in a worker thread via
asyncio.to_thread() so a slow store cannot stall the event loop and callers
can time them out.
"""

from __future__ import annotations

import asyncio
import logging
import re
from datetime import datetime, timezone
from typing import Any

from qdrant_client import QdrantClient
from qdrant_client.http.models.models import KeywordIndexParams
from qdrant_client.models import (
    Distance,
    FieldCondition,
    Filter,
    FilterSelector,
    HasIdCondition,
    MatchAny,
    MatchValue,
    PayloadSchemaType,
    PointStruct,
    VectorParams,
)

from src.knowledge.config import KnowledgeBaseConfig
from src.knowledge.embeddings import EmbeddingService
from src.knowledge.models import (
    DEFAULT_LANGUAGE,
    DEFAULT_PRODUCT,
    ChunkMetadata,
    KnowledgeChunk,
    SearchFilters,
    SearchResult,
)

logger = logging.getLogger(__name__)

DENSE_VECTOR = "dense"

# Lexical search term rules
MIN_TERM_LENGTH = 3
MAX_QUERY_TERMS = 5


def extract_query_terms(query: str) -> list[str]:
    """Split a query into lowercase search terms.

    Whitespace-split, terms of two characters or fewer dropped, capped at
    the first five remaining terms.
    """
    terms = [term for term in query.lower().split() if len(term) >= MIN_TERM_LENGTH]
    return terms[:MAX_QUERY_TERMS]


def _tenant_filter(
    tenant_id: str,
    products: list[str] | None = None,
    languages: list[str] | None = None,
    extra: list[Any] | None = None,
) -> Filter:
    """Build a query filter that always pins tenant_id.

    Raises:
        ValueError: If tenant_id is empty.
    """
    if not tenant_id:
        raise ValueError("tenant_id is required for every knowledge store query")

    must: list[Any] = [
        FieldCondition(key="tenant_id", match=MatchValue(value=tenant_id)),
    ]
    if products:
        must.append(FieldCondition(key="product", match=MatchAny(any=list(products))))
    if languages:
        must.append(FieldCondition(key="language", match=MatchAny(any=list(languages))))
    if extra:
        must.extend(extra)
    return Filter(must=must)


class QdrantKnowledgeStore:
    """Tenant-scoped knowledge store backed by Qdrant.

    All operations require a tenant_id parameter and enforce tenant
    isolation at the query level.

    Args:
        config: Knowledge base configuration.
        embedding_service: Service for generating dense vectors.
    """

    def __init__(
        self, config: KnowledgeBaseConfig, embedding_service: EmbeddingService
    ) -> None:
        self._config = config
        self._embeddings = embedding_service

        # Remote server when a URL is configured, embedded local mode otherwise
        if config.qdrant_url:
            self._client = QdrantClient(
                url=config.qdrant_url,
                api_key=config.qdrant_api_key,
            )
        elif config.qdrant_path == ":memory:":
            self._client = QdrantClient(location=":memory:")
        else:
            self._client = QdrantClient(path=config.qdrant_path)

    @property
    def client(self) -> QdrantClient:
        """Underlying Qdrant client, used by readiness checks."""
        return self._client

    @property
    def collection(self) -> str:
        return self._config.collection_knowledge

    async def initialize_collections(self) -> None:
        """Create the knowledge collection if it doesn't already exist.

        Sets up a dense (cosine) named vector and payload indexes for
        tenant_id (is_tenant), product, language and has_embedding.
        """
        name = self.collection

        if self._client.collection_exists(name):
            logger.debug("Knowledge collection %s present", name)
            return

        self._client.create_collection(
            collection_name=name,
            vectors_config={
                DENSE_VECTOR: VectorParams(
                    size=self._config.embedding_dimensions,
                    distance=Distance.COSINE,
                ),
            },
        )

        # tenant_id with is_tenant=True for per-tenant HNSW indexes
        self._client.create_payload_index(
            collection_name=name,
            field_name="tenant_id",
            field_schema=KeywordIndexParams(
                type="keyword",
                is_tenant=True,
            ),
        )

        for field in ["product", "language"]:
            self._client.create_payload_index(
                collection_name=name,
                field_name=field,
                field_schema=PayloadSchemaType.KEYWORD,
            )

        self._client.create_payload_index(
            collection_name=name,
            field_name="has_embedding",
            field_schema=PayloadSchemaType.BOOL,
        )

        logger.info("Created knowledge collection %s", name)

    # ── Writes ──────────────────────────────────────────────────────────────

    async def upsert_chunk(
        self,
        tenant_id: str,
        product: str,
        language: str | None,
        content: str,
        *,
        source_title: str | None = None,
        source_url: str | None = None,
        embed: bool = True,
    ) -> KnowledgeChunk:
        """Embed and write one chunk keyed by tenant/product/language/content.

        Upserting the same key again replaces the stored content and
        embedding rather than adding a second point.

        Args:
            tenant_id: Owning tenant.
            product: Product the chunk is scoped to.
            language: Language code of the content.
            content: Chunk text.
            source_title: Optional attribution title.
            source_url: Optional attribution URL.
            embed: Compute an embedding. When False the chunk is stored
                without a vector and only keyword search can reach it.

        Returns:
            The stored chunk.
        """
        chunk = KnowledgeChunk.keyed(
            tenant_id=tenant_id,
            content=content,
            product=product or DEFAULT_PRODUCT,
            language=language,
            metadata=ChunkMetadata(source_title=source_title, source_url=source_url),
        )
        await self.upsert_chunks([chunk], tenant_id, embed=embed)
        return chunk

    async def upsert_chunks(
        self,
        chunks: list[KnowledgeChunk],
        tenant_id: str,
        *,
        embed: bool = True,
    ) -> None:
        """Upsert knowledge chunks into the knowledge collection.

        Generates embeddings in one batch for any chunks missing them (when
        embed is True), then upserts all chunks with their tenant_id in the
        payload.

        Args:
            chunks: Knowledge chunks to upsert.
            tenant_id: Owning tenant ID (must match chunk.tenant_id).
            embed: Generate missing embeddings.

        Raises:
            ValueError: If any chunk's tenant_id doesn't match the provided
                tenant_id parameter.
        """
        if not chunks:
            return

        to_embed: list[tuple[int, str]] = []
        for i, chunk in enumerate(chunks):
            if chunk.tenant_id != tenant_id:
                raise ValueError(
                    f"Chunk {chunk.id} has tenant_id={chunk.tenant_id}, "
                    f"expected {tenant_id}"
                )
            if embed and chunk.embedding is None:
                to_embed.append((i, chunk.content))

        if to_embed:
            indices, texts = zip(*to_embed, strict=True)
            vectors = await self._embeddings.embed_batch(list(texts))
            for idx, vector in zip(indices, vectors, strict=True):
                chunks[idx].embedding = vector

        points = [
            PointStruct(
                id=chunk.id,
                vector={DENSE_VECTOR: chunk.embedding} if chunk.embedding else {},
                payload=self._chunk_to_payload(chunk),
            )
            for chunk in chunks
        ]

        await asyncio.to_thread(
            self._client.upsert, collection_name=self.collection, points=points
        )
        logger.info("Upserted %d chunks for tenant %s", len(points), tenant_id)

    async def delete_chunks(self, chunk_ids: list[str], tenant_id: str) -> None:
        """Delete chunks by ID, restricted to the given tenant.

        IDs owned by another tenant match nothing and are left untouched.
        """
        if not chunk_ids:
            return
        await asyncio.to_thread(
            self._client.delete,
            collection_name=self.collection,
            points_selector=FilterSelector(
                filter=_tenant_filter(
                    tenant_id, extra=[HasIdCondition(has_id=list(chunk_ids))]
                )
            ),
        )
        logger.info("Deleted up to %d chunks for tenant %s", len(chunk_ids), tenant_id)

    # ── Reads ───────────────────────────────────────────────────────────────

    async def search_by_similarity(
        self,
        query_embedding: list[float],
        filters: SearchFilters,
        limit: int,
    ) -> list[SearchResult]:
        """Return the tenant's chunks most similar to the query embedding.

        Only chunks whose cosine similarity exceeds the similarity floor are
        returned, ordered by similarity descending and truncated to limit.

        Args:
            query_embedding: Dense query vector.
            filters: Search filters; tenant_id is mandatory.
            limit: Maximum number of results.

        Returns:
            Ranked SearchResult list.
        """
        min_similarity = (
            filters.min_similarity
            if filters.min_similarity is not None
            else self._config.min_similarity
        )
        query_filter = _tenant_filter(
            filters.tenant_id,
            products=filters.product,
            languages=filters.language,
            extra=[FieldCondition(key="has_embedding", match=MatchValue(value=True))],
        )

        response = await asyncio.to_thread(
            self._client.query_points,
            collection_name=self.collection,
            query=query_embedding,
            using=DENSE_VECTOR,
            query_filter=query_filter,
            limit=limit,
            score_threshold=min_similarity,
            with_payload=True,
        )

        results: list[SearchResult] = []
        for point in response.points:
            # score_threshold is inclusive; the floor itself is not a match
            if point.score <= min_similarity:
                continue
            payload = point.payload or {}
            results.append(
                SearchResult(
                    id=str(point.id),
                    content=payload.get("content", ""),
                    similarity=min(1.0, max(0.0, float(point.score))),
                    metadata=self._payload_to_metadata(payload),
                )
            )
        return results

    async def search_by_keyword(
        self,
        query: str,
        tenant_id: str,
        *,
        products: list[str] | None = None,
        languages: list[str] | None = None,
        limit: int = 3,
    ) -> list[SearchResult]:
        """Lexical fallback search for partitions without an embedding index.

        Matches chunks containing any query term case-insensitively and
        scores each by the total number of term occurrences. The score is
        normalised into [0, 1] against the best match so results share the
        SearchResult contract; ordering is by raw score descending, ties in
        store order.

        Args:
            query: Free-text query.
            tenant_id: Tenant to search within (mandatory).
            products: Optional product restriction.
            languages: Optional language restriction.
            limit: Maximum number of results.

        Returns:
            Ranked SearchResult list, empty if the query has no usable terms.
        """
        terms = extract_query_terms(query)
        if not terms:
            return []

        points, _next_page = await asyncio.to_thread(
            self._client.scroll,
            collection_name=self.collection,
            scroll_filter=_tenant_filter(tenant_id, products=products, languages=languages),
            limit=self._config.keyword_scan_limit,
            with_payload=True,
            with_vectors=False,
        )

        patterns = [re.compile(re.escape(term), re.IGNORECASE) for term in terms]
        scored: list[tuple[int, Any]] = []
        for point in points:
            content = (point.payload or {}).get("content", "")
            score = sum(len(pattern.findall(content)) for pattern in patterns)
            if score > 0:
                scored.append((score, point))

        if not scored:
            return []

        scored.sort(key=lambda item: item[0], reverse=True)
        top_score = scored[0][0]
        return [
            SearchResult(
                id=str(point.id),
                content=(point.payload or {}).get("content", ""),
                similarity=score / top_score,
                metadata=self._payload_to_metadata(point.payload or {}),
            )
            for score, point in scored[:limit]
        ]

    async def has_embeddings(
        self, tenant_id: str, products: list[str] | None = None
    ) -> bool:
        """Whether the tenant partition holds any vector-indexed chunk."""
        result = await asyncio.to_thread(
            self._client.count,
            collection_name=self.collection,
            count_filter=_tenant_filter(
                tenant_id,
                products=products,
                extra=[FieldCondition(key="has_embedding", match=MatchValue(value=True))],
            ),
            exact=True,
        )
        return result.count > 0

    async def get_chunk(self, chunk_id: str, tenant_id: str) -> KnowledgeChunk | None:
        """Fetch one chunk by ID if it belongs to tenant_id.

        Returns:
            The chunk, or None when it is missing or owned by another tenant.
        """
        results = await asyncio.to_thread(
            self._client.retrieve,
            collection_name=self.collection,
            ids=[chunk_id],
            with_payload=True,
        )
        if not results:
            return None

        point = results[0]
        payload = point.payload or {}

        # Another tenant's chunk reads as missing
        if payload.get("tenant_id") != tenant_id:
            logger.warning(
                "Chunk %s owned by tenant %s was requested by tenant %s",
                chunk_id,
                payload.get("tenant_id"),
                tenant_id,
            )
            return None

        return self._payload_to_chunk(str(point.id), payload)

    async def list_chunks(
        self,
        tenant_id: str,
        products: list[str] | None = None,
        limit: int = 100,
    ) -> list[KnowledgeChunk]:
        """List a tenant's chunks for administrative views."""
        points, _next_page = await asyncio.to_thread(
            self._client.scroll,
            collection_name=self.collection,
            scroll_filter=_tenant_filter(tenant_id, products=products),
            limit=limit,
            with_payload=True,
            with_vectors=False,
        )
        return [self._payload_to_chunk(str(p.id), p.payload or {}) for p in points]

    def close(self) -> None:
        """Release the Qdrant client (and the local storage lock)."""
        self._client.close()

    # ── Internal helpers ───────────────────────────────────────────────────

    @staticmethod
    def _chunk_to_payload(chunk: KnowledgeChunk) -> dict[str, Any]:
        return {
            "tenant_id": chunk.tenant_id,
            "product": list(chunk.product),
            "language": chunk.language,
            "content": chunk.content,
            "has_embedding": chunk.embedding is not None,
            "source_title": chunk.metadata.source_title,
            "source_url": chunk.metadata.source_url,
            "created_at": chunk.metadata.created_at.isoformat(),
        }

    @staticmethod
    def _payload_to_metadata(payload: dict[str, Any]) -> ChunkMetadata:
        return ChunkMetadata(
            source_title=payload.get("source_title"),
            source_url=payload.get("source_url"),
            created_at=payload.get("created_at") or datetime.now(timezone.utc),
        )

    @classmethod
    def _payload_to_chunk(cls, point_id: str, payload: dict[str, Any]) -> KnowledgeChunk:
        return KnowledgeChunk(
            id=point_id,
            tenant_id=payload.get("tenant_id", ""),
            product=payload.get("product") or [DEFAULT_PRODUCT],
            language=payload.get("language", DEFAULT_LANGUAGE),
            content=payload.get("content", ""),
            metadata=cls._payload_to_metadata(payload),
        )
