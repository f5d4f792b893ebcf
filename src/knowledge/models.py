"""Pydantic models for the Knowledge Base domain.

Defines the types shared by ingestion, storage and retrieval: tenant-owned
knowledge chunks, per-query search results, and the explicit search filter
structure accepted by the search service.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, Field, field_validator

# Namespace for deterministic chunk IDs (tenant/product/language/content key)
CHUNK_ID_NAMESPACE = uuid.UUID("5b0e7a52-3c1d-4f55-9a0e-2f9c1d6b8e41")

DEFAULT_PRODUCT = "shared"
DEFAULT_LANGUAGE = "en"


def chunk_key_id(tenant_id: str, product: str, language: str | None, content: str) -> str:
    """Derive the stable chunk ID for a tenant/product/language/content key.

    Upserting the same key twice targets the same point, replacing its
    content and embedding instead of creating a duplicate.
    """
    key = "\x1f".join([tenant_id, product, language or "", content])
    return str(uuid.uuid5(CHUNK_ID_NAMESPACE, key))


# ── Metadata ────────────────────────────────────────────────────────────────


class ChunkMetadata(BaseModel):
    """Attribution metadata carried by a chunk and its search results.

    Attributes:
        source_title: Human-readable title for the snippet's source.
        source_url: Link to the page the snippet came from.
        created_at: When the chunk was first ingested.
    """

    source_title: str | None = None
    source_url: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


# ── Knowledge Chunk ─────────────────────────────────────────────────────────


class KnowledgeChunk(BaseModel):
    """A single unit of knowledge-base text eligible for retrieval.

    Each chunk belongs to exactly one tenant. The embedding is optional:
    chunks ingested while no embedding provider is configured are stored
    without a vector and are only reachable through keyword search.

    Attributes:
        id: Unique identifier (UUID string).
        tenant_id: Owning tenant; the isolation boundary.
        product: Products this chunk is scoped to.
        language: ISO language code of the content; unknown means DEFAULT_LANGUAGE.
        content: The text content of this chunk.
        embedding: Dense vector from the embedding provider.
        metadata: Attribution metadata.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    tenant_id: str
    product: list[str] = Field(default_factory=lambda: [DEFAULT_PRODUCT])
    language: str = DEFAULT_LANGUAGE
    content: str
    embedding: list[float] | None = None
    metadata: ChunkMetadata = Field(default_factory=ChunkMetadata)

    @field_validator("language", mode="before")
    @classmethod
    def _default_language(cls, value: object) -> object:
        return value or DEFAULT_LANGUAGE

    @field_validator("product", mode="before")
    @classmethod
    def _coerce_product(cls, value: object) -> object:
        if isinstance(value, str):
            return [value]
        if isinstance(value, (set, frozenset, tuple)):
            return sorted(value)
        return value

    @classmethod
    def keyed(
        cls,
        tenant_id: str,
        content: str,
        product: str = DEFAULT_PRODUCT,
        language: str | None = DEFAULT_LANGUAGE,
        **kwargs,
    ) -> KnowledgeChunk:
        """Build a chunk whose ID is derived from its upsert key."""
        language = language or DEFAULT_LANGUAGE
        return cls(
            id=chunk_key_id(tenant_id, product, language, content),
            tenant_id=tenant_id,
            product=[product],
            language=language,
            content=content,
            **kwargs,
        )


# ── Search ──────────────────────────────────────────────────────────────────


class SearchResult(BaseModel):
    """A ranked snippet returned by a search. Never persisted.

    Attributes:
        id: ID of the chunk this result came from.
        content: Chunk text.
        similarity: Relevance in [0, 1].
        metadata: Attribution, possibly derived by the source classifier.
    """

    id: str
    content: str
    similarity: float = Field(ge=0.0, le=1.0)
    metadata: ChunkMetadata = Field(default_factory=ChunkMetadata)


class SearchFilters(BaseModel):
    """Filters for a knowledge search.

    Attributes:
        tenant_id: Tenant to search within. Required.
        product: Restrict to chunks tagged with any of these products.
            None means every product of the tenant.
        language: Restrict to chunks in any of these languages.
            None means every language.
        min_similarity: Similarity floor for vector results. None means the
            configured default (0.7).
    """

    tenant_id: str = Field(min_length=1)
    product: list[str] | None = None
    language: list[str] | None = None
    min_similarity: float | None = Field(default=None, ge=0.0, le=1.0)
