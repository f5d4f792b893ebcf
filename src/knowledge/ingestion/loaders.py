"""Loaders that turn admin input into ingestion items.

Two sources of knowledge exist:
- FAQ text pasted into the dashboard, split into question/answer blocks
- JSON seed files used to bootstrap a tenant's knowledge base
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path

import chardet
from pydantic import BaseModel, Field, ValidationError, field_validator

from src.knowledge.models import DEFAULT_LANGUAGE, DEFAULT_PRODUCT

logger = logging.getLogger(__name__)

_BLANK_LINES = re.compile(r"\n\s*\n")


class IngestItem(BaseModel):
    """One unit of knowledge submitted for ingestion.

    Attributes:
        content: Knowledge text (chunked further if long).
        product: Product the text belongs to.
        language: Language code of the text.
        source_title: Attribution title.
        source_url: Attribution URL.
    """

    content: str = Field(min_length=1)
    product: str = DEFAULT_PRODUCT
    language: str = DEFAULT_LANGUAGE
    source_title: str | None = None
    source_url: str | None = None

    @field_validator("language", mode="before")
    @classmethod
    def _default_language(cls, value: object) -> object:
        return value or DEFAULT_LANGUAGE


def parse_faq_text(text: str) -> list[str]:
    """Split pasted FAQ text into question/answer blocks.

    Blocks are separated by one or more blank lines. Lines inside a block
    are joined with single newlines and surrounding whitespace is trimmed.
    """
    text = text.replace("\r\n", "\n")
    blocks: list[str] = []
    for raw in _BLANK_LINES.split(text):
        lines = [line.strip() for line in raw.splitlines() if line.strip()]
        if lines:
            blocks.append("\n".join(lines))
    return blocks


def _decode_content(raw_bytes: bytes) -> str:
    """Decode bytes to string with encoding detection.

    Tries UTF-8 first, falls back to chardet detection.
    """
    try:
        return raw_bytes.decode("utf-8")
    except UnicodeDecodeError:
        detected = chardet.detect(raw_bytes)
        encoding = detected.get("encoding", "utf-8") or "utf-8"
        logger.info("Detected encoding: %s (confidence: %s)", encoding, detected.get("confidence"))
        return raw_bytes.decode(encoding, errors="replace")


def load_seed_file(file_path: str | Path) -> list[IngestItem]:
    """Load a JSON seed file of knowledge items.

    The file holds either a list of item objects or ``{"items": [...]}``.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the JSON is malformed or an item is invalid.
    """
    path = Path(file_path)
    if not path.exists():
        raise FileNotFoundError(f"Seed file not found: {path}")

    try:
        data = json.loads(_decode_content(path.read_bytes()))
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in {path}: {e}") from e

    if isinstance(data, dict):
        data = data.get("items", [])
    if not isinstance(data, list):
        raise ValueError(f"Expected a list of items in {path}")

    items: list[IngestItem] = []
    for index, entry in enumerate(data):
        try:
            items.append(IngestItem.model_validate(entry))
        except ValidationError as e:
            raise ValueError(f"Invalid item #{index} in {path}: {e}") from e

    logger.info("Loaded %d knowledge items from %s", len(items), path)
    return items
