"""Settings for the widget knowledge base.

Read from KNOWLEDGE_-prefixed environment variables (or .env), e.g.
KNOWLEDGE_OPENAI_API_KEY or KNOWLEDGE_MIN_SIMILARITY.
"""

from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class KnowledgeBaseConfig(BaseSettings):
    """Storage, embedding and ranking settings for knowledge search.

    Attributes:
        qdrant_path: Directory for embedded (local-mode) Qdrant storage, or
            ``:memory:`` for an ephemeral store.
        qdrant_url: Qdrant server URL; when set it wins over qdrant_path.
        qdrant_api_key: Key sent to the Qdrant server.
        openai_api_key: Embedding provider key. When empty, chunks are
            ingested without vectors and served lexically.
        embedding_model: Name of the OpenAI embedding model.
        embedding_dimensions: Vector size of the "dense" named vector.
        embedding_batch_size: Max texts per embeddings API request.
        embedding_max_retries: Attempts per request on provider rate limits.
        embedding_timeout: Per-request timeout in seconds.
        collection_knowledge: Qdrant collection shared by all tenants.
        default_top_k: Default number of snippets returned by search.
        min_similarity: Default similarity floor for vector search.
        pricing_boost: Multiplier applied to "Pricing" results when boosted.
        keyword_scan_limit: Max chunks scanned per lexical search.
        chunk_size: Target tokens per chunk when splitting documents.
        chunk_overlap_pct: Fraction of chunk_size repeated between neighbours.
    """

    model_config = SettingsConfigDict(
        env_prefix="KNOWLEDGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Storage
    qdrant_path: str = "./qdrant_data"
    qdrant_url: str | None = None
    qdrant_api_key: str | None = None
    collection_knowledge: str = "widget_knowledge"

    # Embeddings
    openai_api_key: str = ""
    embedding_model: str = "text-embedding-3-small"
    embedding_dimensions: int = 1536
    embedding_batch_size: int = 100
    embedding_max_retries: int = 3
    embedding_timeout: float = 10.0

    # Ranking
    default_top_k: int = 5
    min_similarity: float = 0.7
    pricing_boost: float = 1.5
    keyword_scan_limit: int = 1000

    # Document splitting
    chunk_size: int = 512
    chunk_overlap_pct: float = 0.15

    @property
    def embeddings_enabled(self) -> bool:
        """Whether an embedding provider key is configured."""
        return bool(self.openai_api_key)
