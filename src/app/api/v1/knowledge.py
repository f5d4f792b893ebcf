"""Knowledge base administration endpoints.

Ingest single items or FAQ batches, list and preview the stored
knowledge, and edit or delete chunks. Every route is scoped to the tenant resolved from X-Tenant-ID.
"""

from __future__ import annotations

import uuid
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from src.app.api.deps import (
    get_ingestion_pipeline,
    get_knowledge_store,
    get_search_service,
    get_tenant,
)
from src.app.core.tenant import TenantContext
from src.knowledge.embeddings import EmbeddingError
from src.knowledge.ingestion import IngestItem, parse_faq_text
from src.knowledge.ingestion.pipeline import IngestionResult
from src.knowledge.models import (
    DEFAULT_LANGUAGE,
    DEFAULT_PRODUCT,
    ChunkMetadata,
    KnowledgeChunk,
    SearchFilters,
    SearchResult,
)

router = APIRouter(prefix="/knowledge", tags=["knowledge"])


# ── Request / Response Schemas ──────────────────────────────────────────────


class IngestRequest(BaseModel):
    content: str = Field(min_length=1, max_length=50000)
    product: str = DEFAULT_PRODUCT
    language: str = DEFAULT_LANGUAGE
    source_title: str | None = None
    source_url: str | None = None


class BatchIngestRequest(BaseModel):
    """Either explicit items, or pasted FAQ text split on blank lines."""

    items: list[IngestRequest] = Field(default_factory=list)
    faq_text: str | None = None
    product: str = DEFAULT_PRODUCT
    language: str = DEFAULT_LANGUAGE
    source_title: str | None = None


class BatchIngestResponse(BaseModel):
    results: list[IngestionResult]
    items_ingested: int
    chunks_created: int


class SearchResponse(BaseModel):
    query: str
    results: list[SearchResult]


class UpdateRequest(BaseModel):
    content: str = Field(min_length=1, max_length=50000)
    source_title: str | None = None
    source_url: str | None = None


class ChunkResponse(BaseModel):
    """A stored chunk as shown to administrators; the vector is omitted."""

    id: str
    product: list[str]
    language: str
    content: str
    metadata: ChunkMetadata

    @classmethod
    def from_chunk(cls, chunk: KnowledgeChunk) -> ChunkResponse:
        return cls(
            id=chunk.id,
            product=chunk.product,
            language=chunk.language,
            content=chunk.content,
            metadata=chunk.metadata,
        )


# ── Endpoints ────────────────────────────────────────────────────────────────


@router.post("", response_model=IngestionResult, status_code=status.HTTP_201_CREATED)
async def ingest_knowledge(
    body: IngestRequest,
    tenant: TenantContext = Depends(get_tenant),
    pipeline: Any = Depends(get_ingestion_pipeline),
) -> IngestionResult:
    """Chunk, embed and store one knowledge item."""
    result = await pipeline.ingest_text(
        tenant.tenant_id,
        body.content,
        product=body.product,
        language=body.language,
        source_title=body.source_title,
        source_url=body.source_url,
    )
    if not result.ok:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="; ".join(result.errors) or "Nothing was ingested",
        )
    return result


@router.post("/batch", response_model=BatchIngestResponse)
async def ingest_knowledge_batch(
    body: BatchIngestRequest,
    tenant: TenantContext = Depends(get_tenant),
    pipeline: Any = Depends(get_ingestion_pipeline),
) -> BatchIngestResponse:
    """Ingest many items at once. Per-item failures are reported, not raised."""
    items = [IngestItem(**item.model_dump()) for item in body.items]
    if body.faq_text:
        items.extend(
            IngestItem(
                content=block,
                product=body.product,
                language=body.language,
                source_title=body.source_title,
            )
            for block in parse_faq_text(body.faq_text)
        )
    if not items:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Provide items or faq_text",
        )

    results = await pipeline.ingest_batch(tenant.tenant_id, items)
    return BatchIngestResponse(
        results=results,
        items_ingested=sum(1 for r in results if r.ok),
        chunks_created=sum(r.chunks_created for r in results),
    )


@router.get("/search", response_model=SearchResponse)
async def search_knowledge(
    q: str = Query(..., min_length=1, max_length=500),
    product: list[str] | None = Query(default=None),
    language: list[str] | None = Query(default=None),
    limit: int = Query(default=5, ge=1, le=20),
    boost_pricing: bool = False,
    tenant: TenantContext = Depends(get_tenant),
    search_service: Any = Depends(get_search_service),
) -> SearchResponse:
    """Preview what the chat would retrieve for a query."""
    filters = SearchFilters(tenant_id=tenant.tenant_id, product=product, language=language)
    results = await search_service.search(q, filters, limit=limit, boost_pricing=boost_pricing)
    return SearchResponse(query=q, results=results)


@router.get("", response_model=list[ChunkResponse])
async def list_knowledge(
    product: list[str] | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    tenant: TenantContext = Depends(get_tenant),
    store: Any = Depends(get_knowledge_store),
) -> list[ChunkResponse]:
    """List the tenant's stored chunks, optionally for some products only."""
    chunks = await store.list_chunks(tenant.tenant_id, products=product, limit=limit)
    return [ChunkResponse.from_chunk(chunk) for chunk in chunks]


@router.put("/{chunk_id}", response_model=ChunkResponse)
async def update_knowledge(
    chunk_id: uuid.UUID,
    body: UpdateRequest,
    tenant: TenantContext = Depends(get_tenant),
    pipeline: Any = Depends(get_ingestion_pipeline),
) -> ChunkResponse:
    """Edit one chunk's content. The edited chunk is returned under its new ID."""
    try:
        chunk = await pipeline.update_chunk(
            tenant.tenant_id,
            str(chunk_id),
            body.content,
            source_title=body.source_title,
            source_url=body.source_url,
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except EmbeddingError as e:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Embedding failed: {e}",
        )
    if chunk is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Chunk {chunk_id} not found",
        )
    return ChunkResponse.from_chunk(chunk)


@router.delete("/{chunk_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_knowledge(
    chunk_id: uuid.UUID,
    tenant: TenantContext = Depends(get_tenant),
    store: Any = Depends(get_knowledge_store),
) -> None:
    """Delete one chunk. Chunks of other tenants are reported as missing."""
    chunk = await store.get_chunk(str(chunk_id), tenant.tenant_id)
    if chunk is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Chunk {chunk_id} not found",
        )
    await store.delete_chunks([str(chunk_id)], tenant.tenant_id)
