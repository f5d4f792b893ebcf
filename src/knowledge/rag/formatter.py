"""Render search results into a knowledge context block for the system prompt."""

from __future__ import annotations

from src.knowledge.models import SearchResult

CONTEXT_PREAMBLE = "Here is relevant information from the knowledge base:"
SOURCE_SEPARATOR = "\n\n---\n\n"


def format_context(results: list[SearchResult]) -> str:
    """Format ordered results as numbered, attributed sources.

    Returns an empty string for no results, which tells the caller to leave
    the knowledge section out of the prompt.
    """
    if not results:
        return ""

    parts: list[str] = []
    for index, result in enumerate(results, start=1):
        header = f"[Source {index}"
        if result.metadata.source_url:
            header += f" - {result.metadata.source_url}"
        parts.append(f"{header}]\n{result.content}")

    return f"{CONTEXT_PREAMBLE}\n\n{SOURCE_SEPARATOR.join(parts)}"
