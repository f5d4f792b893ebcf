"""Reply generation through a LiteLLM Router.

One model group ("chat") holds Claude Sonnet 4 and, when an OpenAI key is
present, GPT-4o; the Router fails over between them. Every call:

- prepends the system prompt to the conversation history
- neutralises prompt-injection phrases in visitor messages
- tags the provider request with the tenant for cost attribution
- is bounded by LLM_TIMEOUT and surfaces as a chat error on failure
"""

from __future__ import annotations

import asyncio
import re
from typing import Any

import structlog
from litellm import Router

from src.app.chat.errors import GenerationError, GenerationTimeoutError
from src.app.config import Settings, get_settings
from src.app.core.monitoring import track_llm_call
from src.app.core.tenant import get_current_tenant
from src.app.schemas.chat import MessageRead

logger = structlog.get_logger(__name__)

PRIMARY_MODEL = "anthropic/claude-sonnet-4-20250514"
FALLBACK_MODEL = "openai/gpt-4o"
REPLY_TEMPERATURE = 0.7
REDACTED = "[removed]"

# ── Prompt injection ─────────────────────────────────────────────────────────

# Checked in order; the first hit names the attempt in logs
_INJECTION_PATTERNS: list[tuple[str, re.Pattern]] = [
    (
        "instruction_override",
        re.compile(
            r"(?:ignore|disregard|forget|override)\s+(?:all\s+)?(?:your\s+|the\s+)?"
            r"(?:previous\s+|prior\s+)?instructions",
            re.IGNORECASE,
        ),
    ),
    (
        "system_prompt_exfiltration",
        re.compile(
            r"(?:reveal|show|display|output|print|repeat)\s+(?:your\s+|the\s+)?"
            r"(?:system\s+prompt|instructions|prompt)"
            r"|repeat\s+everything\s+above"
            r"|what\s+are\s+your\s+instructions",
            re.IGNORECASE,
        ),
    ),
    (
        "role_hijacking",
        re.compile(
            r"you\s+are\s+now\s+"
            r"|pretend\s+(?:to\s+be|you\s+are)"
            r"|from\s+now\s+on\s+you\s+are"
            r"|assume\s+the\s+role\s+of",
            re.IGNORECASE,
        ),
    ),
    # Runs of control characters used to smuggle fake message boundaries
    ("control_characters", re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f]{3,}")),
]


def detect_prompt_injection(text: str) -> tuple[bool, str | None]:
    """Return (True, pattern_name) for the first injection pattern found in text."""
    for name, pattern in _INJECTION_PATTERNS:
        if pattern.search(text):
            logger.warning("llm.prompt_injection_detected", pattern=name, preview=text[:100])
            return True, name
    return False, None


def sanitize_messages(messages: list[dict]) -> list[dict]:
    """Redact injection phrases from visitor messages.

    Only ``user`` messages are rewritten; the system prompt and earlier
    assistant replies are passed through as-is.
    """
    sanitized = []
    for message in messages:
        content = message.get("content") or ""
        if message.get("role") != "user" or not content:
            sanitized.append(message)
            continue

        found, _ = detect_prompt_injection(content)
        if not found:
            sanitized.append(message)
            continue

        cleaned = content
        for _, pattern in _INJECTION_PATTERNS:
            cleaned = pattern.sub(REDACTED, cleaned)
        sanitized.append({**message, "content": cleaned})
    return sanitized


def _model_list(settings: Settings, group: str) -> list[dict[str, Any]]:
    """Router deployments for every provider that has a key, primary first."""
    deployments = []
    for model, api_key in (
        (PRIMARY_MODEL, settings.ANTHROPIC_API_KEY),
        (FALLBACK_MODEL, settings.OPENAI_API_KEY),
    ):
        if api_key:
            deployments.append(
                {"model_name": group, "litellm_params": {"model": model, "api_key": api_key}}
            )
    return deployments


# ── Service ──────────────────────────────────────────────────────────────────


class LLMUnavailableError(GenerationError):
    """No LLM provider keys are configured."""

    status_code = 503
    detail = "The assistant is not available right now. Please try again later."


class LLMService:
    """Generates assistant replies for chat turns.

    ``router`` is None when no provider key is configured; ``generate`` then
    raises LLMUnavailableError instead of attempting a call.
    """

    MODEL_GROUP = "chat"

    def __init__(self, settings: Settings | None = None) -> None:
        settings = settings or get_settings()
        self._timeout = settings.LLM_TIMEOUT
        self._max_tokens = settings.LLM_MAX_TOKENS

        deployments = _model_list(settings, self.MODEL_GROUP)
        if not deployments:
            logger.warning("llm.no_provider_keys")
            self.router = None
            return

        self.router = Router(
            model_list=deployments,
            num_retries=settings.LLM_MAX_RETRIES,
            timeout=settings.LLM_TIMEOUT,
            allowed_fails=3,
            cooldown_time=30,
        )

    async def generate(self, history: list[MessageRead], system_prompt: str) -> str:
        """Generate the assistant reply for a conversation.

        Args:
            history: Conversation messages, oldest first, ending with the
                visitor's latest message.
            system_prompt: Fully assembled system prompt.

        Raises:
            LLMUnavailableError: No provider key is configured.
            GenerationTimeoutError: The call exceeded LLM_TIMEOUT.
            GenerationError: Provider failure or an empty reply.
        """
        if self.router is None:
            raise LLMUnavailableError()

        try:
            tenant_id = get_current_tenant().tenant_id
        except RuntimeError:
            tenant_id = "unknown"

        messages = sanitize_messages(
            [{"role": "system", "content": system_prompt}]
            + [{"role": m.role.value, "content": m.content} for m in history]
        )

        try:
            async with track_llm_call(self.MODEL_GROUP) as usage:
                response = await asyncio.wait_for(
                    self.router.acompletion(
                        model=self.MODEL_GROUP,
                        messages=messages,
                        max_tokens=self._max_tokens,
                        temperature=REPLY_TEMPERATURE,
                        metadata={"tenant_id": tenant_id},
                    ),
                    timeout=self._timeout,
                )
                if getattr(response, "usage", None):
                    usage["prompt_tokens"] = response.usage.prompt_tokens
                    usage["completion_tokens"] = response.usage.completion_tokens
        except asyncio.TimeoutError as exc:
            logger.warning("llm.timeout", tenant_id=tenant_id, timeout=self._timeout)
            raise GenerationTimeoutError() from exc
        except Exception as exc:
            logger.error("llm.generation_failed", tenant_id=tenant_id, error=str(exc))
            raise GenerationError() from exc

        content = response.choices[0].message.content if response.choices else None
        if not content:
            logger.warning("llm.empty_reply", tenant_id=tenant_id)
            raise GenerationError()
        return content


_llm_service: LLMService | None = None


def get_llm_service() -> LLMService:
    """Get or create the LLM service singleton."""
    global _llm_service
    if _llm_service is None:
        _llm_service = LLMService()
    return _llm_service
