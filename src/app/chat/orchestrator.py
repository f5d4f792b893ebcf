"""Chat turn orchestration.

Drives one widget chat turn end to end:

    validate -> resolve widget -> resolve/create conversation -> rate limit
    -> persist user message -> load history -> retrieve knowledge
    -> build system prompt -> generate reply -> persist assistant message

Lead capture runs as a background task started right after the user
message is stored. It never delays or fails the reply.

The user message is written before generation starts, so a generation
failure or client disconnect never loses what the visitor typed.
"""

from __future__ import annotations

import asyncio
import re
import time
from typing import Any

import structlog

from src.app.chat.errors import (
    ChatValidationError,
    ConversationNotFoundError,
    WidgetNotFoundError,
)
from src.app.chat.leads import LeadCaptureResult, LeadExtractor
from src.app.chat.prompts import build_system_prompt
from src.app.config import Settings
from src.app.core.monitoring import (
    chat_turns_total,
    knowledge_results_total,
    knowledge_search_duration_seconds,
    leads_captured_total,
)
from src.app.core.rate_limit import SlidingWindowRateLimiter
from src.app.core.tenant import TenantContext, reset_tenant_context, set_tenant_context
from src.app.schemas.chat import (
    MAX_MESSAGE_LENGTH,
    ChatRequest,
    ChatResponse,
    ConversationRead,
    MessageRole,
    WidgetRead,
    sanitize_text,
)
from src.knowledge.models import DEFAULT_LANGUAGE, SearchFilters
from src.knowledge.rag.formatter import format_context

logger = structlog.get_logger(__name__)

# Visitor messages that suggest a cost question get pricing snippets boosted
PRICING_INTENT = re.compile(
    r"\b(cost|costs|price|prices|pricing|how\s+much|fee|fees|plan|plans|precio|cuesta)\b",
    re.IGNORECASE,
)


class ChatOrchestrator:
    """Composes retrieval, prompting, generation and lead capture for a chat turn.

    Args:
        repository: ChatRepository (or a test double with the same methods).
        search_service: KnowledgeSearchService.
        llm_service: Object exposing ``generate(history, system_prompt)``.
        lead_extractor: LeadExtractor for best-effort lead capture.
        rate_limiter: Per-conversation sliding-window limiter.
        settings: Application settings (limits and timeouts).
    """

    def __init__(
        self,
        repository: Any,
        search_service: Any,
        llm_service: Any,
        lead_extractor: LeadExtractor,
        rate_limiter: SlidingWindowRateLimiter,
        settings: Settings,
    ) -> None:
        self._repository = repository
        self._search = search_service
        self._llm = llm_service
        self._leads = lead_extractor
        self._rate_limiter = rate_limiter
        self._settings = settings
        self._background: set[asyncio.Task] = set()

    async def handle_turn(self, request: ChatRequest) -> ChatResponse:
        """Run one chat turn and return the assistant reply.

        Raises:
            ChatValidationError: Message empty after sanitization.
            WidgetNotFoundError: Unknown or inactive widget key.
            ConversationNotFoundError: conversation_id not owned by the widget.
            RateLimitExceededError: Conversation over its message limit.
            GenerationError: The LLM failed; the user message is persisted.
        """
        message = sanitize_text(request.message, max_length=MAX_MESSAGE_LENGTH)
        if not message:
            raise ChatValidationError("Message is required.")

        widget = await self._repository.get_widget_by_key(request.widget_key)
        if widget is None:
            raise WidgetNotFoundError()

        token = set_tenant_context(
            TenantContext(tenant_id=widget.tenant_id, tenant_slug=widget.widget_key)
        )
        try:
            return await self._run_turn(widget, request, message)
        except Exception as exc:
            chat_turns_total.labels(status=type(exc).__name__).inc()
            raise
        finally:
            reset_tenant_context(token)

    async def _run_turn(
        self, widget: WidgetRead, request: ChatRequest, message: str
    ) -> ChatResponse:
        tenant_id = widget.tenant_id
        conversation = await self._resolve_conversation(widget, request)
        log = logger.bind(
            tenant_id=tenant_id,
            widget_id=widget.id,
            conversation_id=conversation.id,
        )

        await self._rate_limiter.check(tenant_id, conversation.id)

        await self._repository.add_message(
            tenant_id, conversation.id, MessageRole.user, message
        )
        self._start_lead_capture(conversation, request.message)

        history = await self._repository.recent_messages(
            tenant_id, conversation.id, limit=self._settings.CHAT_HISTORY_LIMIT
        )

        knowledge_context, sources = await self._retrieve_context(widget, message)

        # message_count was read before this turn's user message was added
        messages_so_far = conversation.message_count + 1
        ask_for_contact = (
            not conversation.lead_captured
            and messages_so_far > self._settings.LEAD_PROMPT_AFTER_MESSAGES
        )
        system_prompt = build_system_prompt(
            widget,
            knowledge_context=knowledge_context,
            ask_for_contact=ask_for_contact,
        )

        reply = await self._llm.generate(history, system_prompt)

        assistant_message = await self._repository.add_message(
            tenant_id, conversation.id, MessageRole.assistant, reply
        )

        chat_turns_total.labels(status="ok").inc()
        log.info(
            "chat.turn_completed",
            history_messages=len(history),
            knowledge_sources=sources,
            asked_for_contact=ask_for_contact,
        )
        return ChatResponse(
            conversation_id=conversation.id,
            message=reply,
            timestamp=assistant_message.created_at,
        )

    async def _resolve_conversation(
        self, widget: WidgetRead, request: ChatRequest
    ) -> ConversationRead:
        if request.conversation_id is None:
            return await self._repository.create_conversation(
                widget.tenant_id, widget.id, request.visitor_id
            )

        conversation = await self._repository.get_conversation(
            widget.tenant_id, str(request.conversation_id)
        )
        if conversation is None or conversation.widget_id != widget.id:
            raise ConversationNotFoundError()
        return conversation

    async def _retrieve_context(self, widget: WidgetRead, message: str) -> tuple[str, int]:
        """Search the widget's knowledge; timeouts degrade to no context."""
        languages = [widget.language or DEFAULT_LANGUAGE]
        if DEFAULT_LANGUAGE not in languages:
            languages.append(DEFAULT_LANGUAGE)
        filters = SearchFilters(
            tenant_id=widget.tenant_id,
            product=widget.products or None,
            language=languages,
        )

        start = time.perf_counter()
        try:
            results = await asyncio.wait_for(
                self._search.search(
                    message,
                    filters,
                    limit=self._settings.CHAT_KNOWLEDGE_LIMIT,
                    boost_pricing=bool(PRICING_INTENT.search(message)),
                ),
                timeout=self._settings.RETRIEVAL_TIMEOUT,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "chat.knowledge_timeout",
                tenant_id=widget.tenant_id,
                timeout=self._settings.RETRIEVAL_TIMEOUT,
            )
            results = []

        knowledge_search_duration_seconds.observe(time.perf_counter() - start)
        knowledge_results_total.observe(len(results))
        return format_context(results), len(results)

    # ── Lead capture (background) ───────────────────────────────────────

    def _start_lead_capture(self, conversation: ConversationRead, message: str) -> None:
        task = asyncio.create_task(self._capture_lead(conversation, message))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _capture_lead(
        self, conversation: ConversationRead, message: str
    ) -> LeadCaptureResult | None:
        try:
            result = await self._leads.capture(conversation, message)
        except Exception:
            logger.warning(
                "lead.capture_task_failed",
                tenant_id=conversation.tenant_id,
                conversation_id=conversation.id,
                exc_info=True,
            )
            return None
        if result.created:
            leads_captured_total.inc()
        return result

    async def wait_for_background_tasks(self) -> None:
        """Wait for pending lead-capture tasks (shutdown and tests)."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
