"""Knowledge Base module for tenant-scoped vector storage and retrieval.

Provides Qdrant-backed vector storage with payload-based multi-tenant isolation,
similarity search with a keyword fallback, and Pydantic models for knowledge
chunks and search results.
"""

from src.knowledge.config import KnowledgeBaseConfig
from src.knowledge.embeddings import EmbeddingError, EmbeddingService
from src.knowledge.models import (
    ChunkMetadata,
    KnowledgeChunk,
    SearchFilters,
    SearchResult,
)
from src.knowledge.qdrant_client import QdrantKnowledgeStore

__all__ = [
    "ChunkMetadata",
    "EmbeddingError",
    "EmbeddingService",
    "KnowledgeBaseConfig",
    "KnowledgeChunk",
    "QdrantKnowledgeStore",
    "SearchFilters",
    "SearchResult",
]
