"""Knowledge retrieval for chat turns.

Components:
- KnowledgeSearchService: embeds a query, searches the tenant's knowledge,
  attributes sources and re-ranks (optional pricing boost)
- classify_source: ordered keyword rules deriving a snippet's source title
- format_context: renders results into a prompt-ready knowledge block
"""

from src.knowledge.rag.classifier import FALLBACK_TITLE, PRICING_TITLE, classify_source
from src.knowledge.rag.formatter import format_context
from src.knowledge.rag.search import KnowledgeSearchService

__all__ = [
    "FALLBACK_TITLE",
    "KnowledgeSearchService",
    "PRICING_TITLE",
    "classify_source",
    "format_context",
]
