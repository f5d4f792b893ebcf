#!/usr/bin/env python3
"""Seed a tenant's knowledge base from a JSON file.

The file holds a list of items (or ``{"items": [...]}``), each with
``content`` and optional ``product``, ``language``, ``source_title`` and
``source_url``. Items go through the standard IngestionPipeline, so long
content is chunked and, when an embedding key is configured, embedded.

Usage:
    python scripts/seed_knowledge.py --tenant-id <uuid> data/knowledge.json
    python scripts/seed_knowledge.py --tenant-id <uuid> data/faq.json --no-embed
    python scripts/seed_knowledge.py --tenant-id <uuid> data/faq.json --dry-run
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from collections import Counter

# Ensure project root is on sys.path so we can import src modules
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from dotenv import load_dotenv  # noqa: E402

# Load .env from project root
load_dotenv(os.path.join(os.path.dirname(__file__), "..", ".env"))

logger = logging.getLogger(__name__)


async def seed(tenant_id: str, file_path: str, embed: bool = True, dry_run: bool = False) -> int:
    """Ingest a seed file for one tenant.

    Returns:
        Process exit code: 0 when every item was ingested, 1 otherwise.
    """
    from src.knowledge.config import KnowledgeBaseConfig
    from src.knowledge.embeddings import EmbeddingService
    from src.knowledge.ingestion import IngestionPipeline, KnowledgeChunker, load_seed_file
    from src.knowledge.qdrant_client import QdrantKnowledgeStore

    try:
        items = load_seed_file(file_path)
    except (FileNotFoundError, ValueError) as e:
        print(f"Error: {e}")
        return 1

    by_product = Counter(item.product for item in items)
    print(f"Found {len(items)} items in {file_path}")
    for product, count in sorted(by_product.items()):
        print(f"  {product}: {count}")

    if dry_run:
        print("\n[DRY RUN] No items were ingested.")
        return 0

    config = KnowledgeBaseConfig()
    embedder = EmbeddingService(config)
    store = QdrantKnowledgeStore(config, embedder)
    await store.initialize_collections()

    embeddings_enabled = embed and config.embeddings_enabled
    if embed and not config.embeddings_enabled:
        print("KNOWLEDGE_OPENAI_API_KEY is not set; storing chunks for keyword search only.")

    pipeline = IngestionPipeline(
        store,
        embedder,
        KnowledgeChunker(chunk_size=config.chunk_size, overlap_pct=config.chunk_overlap_pct),
        embeddings_enabled=embeddings_enabled,
    )

    try:
        results = await pipeline.ingest_batch(tenant_id, items)
    finally:
        store.close()

    failed = 0
    for item, result in zip(items, results, strict=True):
        label = item.source_title or item.content[:40]
        if result.ok:
            print(f"  OK   {label} ({result.chunks_created} chunks)")
        else:
            failed += 1
            print(f"  FAIL {label}: {'; '.join(result.errors)}")

    total_chunks = sum(r.chunks_created for r in results)
    print(f"\nIngested {len(items) - failed}/{len(items)} items, {total_chunks} chunks")
    return 1 if failed else 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed a tenant's knowledge base from JSON.")
    parser.add_argument("file", help="Path to the JSON seed file")
    parser.add_argument("--tenant-id", required=True, help="Tenant UUID to ingest for")
    parser.add_argument(
        "--no-embed",
        action="store_true",
        help="Store chunks without embeddings (keyword search only)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Only report what would be ingested",
    )
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    exit_code = asyncio.run(
        seed(args.tenant_id, args.file, embed=not args.no_embed, dry_run=args.dry_run)
    )
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
