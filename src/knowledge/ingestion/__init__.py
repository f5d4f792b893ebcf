"""Knowledge ingestion pipeline.

Provides FAQ/seed-file loading, token-bounded chunking, and end-to-end
pipeline orchestration.

The pipeline flow is:

    parse_faq_text() / load_seed_file() -> KnowledgeChunker.chunk_text()
    -> EmbeddingService.embed_batch() -> QdrantKnowledgeStore.upsert_chunks()
"""

from src.knowledge.ingestion.chunker import KnowledgeChunker
from src.knowledge.ingestion.loaders import IngestItem, load_seed_file, parse_faq_text
from src.knowledge.ingestion.pipeline import IngestionPipeline, IngestionResult

__all__ = [
    "IngestItem",
    "IngestionPipeline",
    "IngestionResult",
    "KnowledgeChunker",
    "load_seed_file",
    "parse_faq_text",
]
