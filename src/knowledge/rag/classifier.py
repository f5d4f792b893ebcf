"""Keyword-rule source classifier for retrieved snippets.

Derives a human-readable source title (and, for some topics, a URL) from a
snippet's text. Rules are evaluated top-to-bottom and the first match wins,
so more specific topics sit above broader ones: a snippet mentioning both
"pricing" and "security" is titled "Pricing".

Rule order:
  1. Pricing            pricing, setup fee, per month, /mo
  2. FAQ - Security     hipaa, security, encrypt, compliance
  3. FAQ - Contracts    contract, cancel
  4. FAQ - Languages    spanish, español, bilingual
  5. FAQ - Integrations integrat, crm, calendar
  6. FAQ - Implementation  implementation, timeline, onboarding
  7. FAQ - Support      support
  (fallback)            Knowledge Base
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

PRICING_TITLE = "Pricing"
FALLBACK_TITLE = "Knowledge Base"


def _contains_any(*keywords: str) -> Callable[[str], bool]:
    def predicate(text: str) -> bool:
        lowered = text.lower()
        return any(keyword in lowered for keyword in keywords)

    return predicate


@dataclass(frozen=True)
class SourceRule:
    """One (predicate, label) classification rule."""

    title: str
    matches: Callable[[str], bool]
    url: str | None = None


SOURCE_RULES: tuple[SourceRule, ...] = (
    SourceRule(
        PRICING_TITLE,
        _contains_any("pricing", "setup fee", "per month", "/mo"),
        url="/pricing",
    ),
    SourceRule(
        "FAQ - Security",
        _contains_any("hipaa", "security", "encrypt", "compliance"),
        url="/security",
    ),
    SourceRule("FAQ - Contracts", _contains_any("contract", "cancel")),
    SourceRule("FAQ - Languages", _contains_any("spanish", "español", "bilingual")),
    SourceRule("FAQ - Integrations", _contains_any("integrat", "crm", "calendar")),
    SourceRule(
        "FAQ - Implementation",
        _contains_any("implementation", "timeline", "onboarding"),
    ),
    SourceRule("FAQ - Support", _contains_any("support")),
)


def classify_source(content: str) -> tuple[str, str | None]:
    """Return the (title, url) of the first rule matching the content."""
    for rule in SOURCE_RULES:
        if rule.matches(content):
            return rule.title, rule.url
    return FALLBACK_TITLE, None
