"""End-to-end ingestion pipeline connecting chunking, embedding, and storage.

Orchestrates the knowledge ingestion flow:

    KnowledgeChunker.chunk_text() -> EmbeddingService.embed_batch()
    -> QdrantKnowledgeStore.upsert_chunks()

When embeddings are disabled (no provider key configured) chunks are stored
without vectors and served by keyword search until they are re-ingested.
All operations are tenant-scoped.
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, Field

from src.knowledge.embeddings import EmbeddingService
from src.knowledge.ingestion.chunker import KnowledgeChunker
from src.knowledge.ingestion.loaders import IngestItem
from src.knowledge.models import DEFAULT_PRODUCT, ChunkMetadata, KnowledgeChunk
from src.knowledge.qdrant_client import QdrantKnowledgeStore

logger = logging.getLogger(__name__)


# ── Result Model ──────────────────────────────────────────────────────────


class IngestionResult(BaseModel):
    """Result of ingesting one knowledge item.

    Attributes:
        chunk_ids: IDs of the chunks written for this item.
        chunks_created: Number of chunks successfully stored.
        embedded: Whether the chunks were stored with embeddings.
        source_title: Attribution title of the item, for reporting.
        errors: Error messages encountered during ingestion.
    """

    chunk_ids: list[str] = Field(default_factory=list)
    chunks_created: int = 0
    embedded: bool = False
    source_title: str | None = None
    errors: list[str] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors and self.chunks_created > 0


# ── Ingestion Pipeline ────────────────────────────────────────────────────


class IngestionPipeline:
    """Orchestrates chunk -> embed -> store for knowledge text.

    Args:
        store: Qdrant knowledge store for vector storage.
        embedder: Embedding service for dense vector generation.
        chunker: Token-bounded text chunker.
        embeddings_enabled: Compute embeddings before storing. When False,
            chunks are stored for keyword search only.
    """

    def __init__(
        self,
        store: QdrantKnowledgeStore,
        embedder: EmbeddingService,
        chunker: KnowledgeChunker,
        embeddings_enabled: bool = True,
    ) -> None:
        self._store = store
        self._embedder = embedder
        self._chunker = chunker
        self._embeddings_enabled = embeddings_enabled

    async def ingest_text(
        self,
        tenant_id: str,
        content: str,
        product: str = DEFAULT_PRODUCT,
        language: str | None = "en",
        source_title: str | None = None,
        source_url: str | None = None,
    ) -> IngestionResult:
        """Ingest one piece of knowledge text.

        Args:
            tenant_id: Tenant to ingest for.
            content: Knowledge text.
            product: Product the text belongs to.
            language: Language code.
            source_title: Optional attribution title.
            source_url: Optional attribution URL.

        Returns:
            IngestionResult with chunk IDs and any errors.
        """
        item = IngestItem(
            content=content,
            product=product,
            language=language,
            source_title=source_title,
            source_url=source_url,
        )
        results = await self.ingest_batch(tenant_id, [item])
        return results[0]

    async def ingest_batch(
        self, tenant_id: str, items: list[IngestItem]
    ) -> list[IngestionResult]:
        """Ingest many knowledge items with a single embedding batch.

        Every item is chunked on its own; all chunks are then embedded with
        one ``embed_batch`` call and upserted item by item. A failure while
        chunking or storing one item is recorded on that item's result and
        does not stop the others.

        Args:
            tenant_id: Tenant to ingest for.
            items: Knowledge items to ingest.

        Returns:
            One IngestionResult per item, in input order.
        """
        results = [IngestionResult(source_title=item.source_title) for item in items]
        item_chunks: list[list[KnowledgeChunk]] = []

        # 1. Chunk
        for item, result in zip(items, results, strict=True):
            try:
                chunks = self._chunker.chunk_text(
                    item.content,
                    tenant_id,
                    product=item.product,
                    language=item.language,
                    source_title=item.source_title,
                    source_url=item.source_url,
                )
            except Exception as e:
                logger.error("Failed to chunk knowledge item for tenant %s: %s", tenant_id, e)
                result.errors.append(str(e))
                chunks = []
            if not chunks and not result.errors:
                result.errors.append("No content to ingest")
            item_chunks.append(chunks)

        # 2. Embed everything in one batch
        all_chunks = [chunk for chunks in item_chunks for chunk in chunks]
        embedded = False
        if self._embeddings_enabled and all_chunks:
            try:
                vectors = await self._embedder.embed_batch(
                    [chunk.content for chunk in all_chunks]
                )
            except Exception as e:
                logger.error("Embedding failed for tenant %s batch: %s", tenant_id, e)
                for chunks, result in zip(item_chunks, results, strict=True):
                    if chunks:
                        result.errors.append(f"Embedding failed: {e}")
                return results
            for chunk, vector in zip(all_chunks, vectors, strict=True):
                chunk.embedding = vector
            embedded = True

        # 3. Store item by item
        for chunks, result in zip(item_chunks, results, strict=True):
            if not chunks:
                continue
            try:
                await self._store.upsert_chunks(chunks, tenant_id, embed=False)
            except Exception as e:
                logger.error("Failed to store knowledge item for tenant %s: %s", tenant_id, e)
                result.errors.append(str(e))
                continue
            result.chunk_ids = [chunk.id for chunk in chunks]
            result.chunks_created = len(chunks)
            result.embedded = embedded

        logger.info(
            "Ingested %d/%d items (%d chunks, embedded=%s) for tenant %s",
            sum(1 for r in results if r.ok),
            len(items),
            sum(r.chunks_created for r in results),
            embedded,
            tenant_id,
        )
        return results

    async def update_chunk(
        self,
        tenant_id: str,
        chunk_id: str,
        content: str,
        source_title: str | None = None,
        source_url: str | None = None,
    ) -> KnowledgeChunk | None:
        """Replace the content of one stored chunk.

        The chunk keeps its product and language. Because chunk IDs are
        derived from content, the edited text is stored under a new ID and
        the old point is removed afterwards. Attribution falls back to the
        existing values when not given.

        Args:
            tenant_id: Tenant that must own the chunk.
            chunk_id: ID of the chunk to edit.
            content: New chunk text.
            source_title: New attribution title.
            source_url: New attribution URL.

        Returns:
            The stored chunk, or None when chunk_id is missing or belongs
            to another tenant.

        Raises:
            ValueError: If content is blank.
            EmbeddingError: If the new content could not be embedded.
        """
        content = content.strip()
        if not content:
            raise ValueError("No content to ingest")

        existing = await self._store.get_chunk(chunk_id, tenant_id)
        if existing is None:
            return None

        chunk = KnowledgeChunk.keyed(
            tenant_id=tenant_id,
            content=content,
            product=existing.product[0] if existing.product else DEFAULT_PRODUCT,
            language=existing.language,
            metadata=ChunkMetadata(
                source_title=source_title or existing.metadata.source_title,
                source_url=source_url or existing.metadata.source_url,
                created_at=existing.metadata.created_at,
            ),
        )
        if self._embeddings_enabled:
            chunk.embedding = await self._embedder.embed_text(chunk.content)

        await self._store.upsert_chunks([chunk], tenant_id, embed=False)
        if chunk.id != existing.id:
            await self._store.delete_chunks([existing.id], tenant_id)

        logger.info(
            "Updated chunk %s -> %s (embedded=%s) for tenant %s",
            existing.id,
            chunk.id,
            chunk.embedding is not None,
            tenant_id,
        )
        return chunk
