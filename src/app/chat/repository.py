"""Chat repository -- async persistence for widgets, conversations, messages and leads.

Uses the session_factory callable pattern: each method opens its own
session, so concurrent chat turns never share a transaction. All methods
except the widget-key lookup take tenant_id and filter on it.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timezone

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.app.models.chat import Conversation, Lead, Message, Widget
from src.app.schemas.chat import (
    ConversationRead,
    LeadCreate,
    LeadRead,
    MessageRead,
    MessageRole,
    WidgetRead,
)

logger = structlog.get_logger(__name__)


# ── Serialization Helpers ───────────────────────────────────────────────────


def _model_to_widget(model: Widget) -> WidgetRead:
    return WidgetRead(
        id=str(model.id),
        tenant_id=str(model.tenant_id),
        widget_key=model.widget_key,
        name=model.name,
        ai_instructions=model.ai_instructions,
        language=model.language or "en",
        products=list(model.products or ["shared"]),
        is_active=model.is_active,
    )


def _model_to_conversation(model: Conversation) -> ConversationRead:
    return ConversationRead(
        id=str(model.id),
        tenant_id=str(model.tenant_id),
        widget_id=str(model.widget_id),
        visitor_id=model.visitor_id,
        started_at=model.started_at,
        last_message_at=model.last_message_at,
        lead_captured=model.lead_captured,
        message_count=model.message_count,
    )


def _model_to_message(model: Message) -> MessageRead:
    return MessageRead(
        id=str(model.id),
        conversation_id=str(model.conversation_id),
        role=MessageRole(model.role),
        content=model.content,
        created_at=model.created_at,
    )


def _model_to_lead(model: Lead) -> LeadRead:
    return LeadRead(
        id=str(model.id),
        conversation_id=str(model.conversation_id),
        widget_id=str(model.widget_id),
        name=model.name,
        email=model.email,
        phone=model.phone,
        source=model.source,
        is_repeat_contact=model.is_repeat_contact,
        created_at=model.created_at,
    )


# ── Repository ──────────────────────────────────────────────────────────────


class ChatRepository:
    """Async CRUD for the chat tables.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    # ── Widgets ─────────────────────────────────────────────────────────

    async def get_widget_by_key(self, widget_key: str) -> WidgetRead | None:
        """Resolve a public widget key to its active widget (and tenant)."""
        async for session in self._session_factory():
            result = await session.execute(
                select(Widget).where(
                    Widget.widget_key == widget_key,
                    Widget.is_active == True,  # noqa: E712
                )
            )
            model = result.scalar_one_or_none()
            return _model_to_widget(model) if model else None

    async def get_widget(self, tenant_id: str, widget_id: str) -> WidgetRead | None:
        async for session in self._session_factory():
            result = await session.execute(
                select(Widget).where(
                    Widget.id == uuid.UUID(widget_id),
                    Widget.tenant_id == uuid.UUID(tenant_id),
                )
            )
            model = result.scalar_one_or_none()
            return _model_to_widget(model) if model else None

    # ── Conversations ───────────────────────────────────────────────────

    async def get_conversation(
        self, tenant_id: str, conversation_id: str
    ) -> ConversationRead | None:
        async for session in self._session_factory():
            result = await session.execute(
                select(Conversation).where(
                    Conversation.id == uuid.UUID(conversation_id),
                    Conversation.tenant_id == uuid.UUID(tenant_id),
                )
            )
            model = result.scalar_one_or_none()
            return _model_to_conversation(model) if model else None

    async def create_conversation(
        self, tenant_id: str, widget_id: str, visitor_id: str
    ) -> ConversationRead:
        async for session in self._session_factory():
            now = datetime.now(timezone.utc)
            model = Conversation(
                tenant_id=uuid.UUID(tenant_id),
                widget_id=uuid.UUID(widget_id),
                visitor_id=visitor_id,
                started_at=now,
                last_message_at=now,
                lead_captured=False,
                message_count=0,
            )
            session.add(model)
            await session.commit()
            await session.refresh(model)
            logger.info(
                "chat.conversation_created",
                tenant_id=tenant_id,
                widget_id=widget_id,
                conversation_id=str(model.id),
            )
            return _model_to_conversation(model)

    async def mark_lead_captured(self, tenant_id: str, conversation_id: str) -> None:
        """Set lead_captured to true. There is no operation that clears it."""
        async for session in self._session_factory():
            await session.execute(
                update(Conversation)
                .where(
                    Conversation.id == uuid.UUID(conversation_id),
                    Conversation.tenant_id == uuid.UUID(tenant_id),
                )
                .values(lead_captured=True)
            )
            await session.commit()

    # ── Messages ────────────────────────────────────────────────────────

    async def add_message(
        self,
        tenant_id: str,
        conversation_id: str,
        role: MessageRole,
        content: str,
    ) -> MessageRead:
        """Append a message and bump the conversation's counters in one transaction."""
        async for session in self._session_factory():
            now = datetime.now(timezone.utc)
            model = Message(
                tenant_id=uuid.UUID(tenant_id),
                conversation_id=uuid.UUID(conversation_id),
                role=role.value,
                content=content,
                created_at=now,
            )
            session.add(model)
            await session.execute(
                update(Conversation)
                .where(
                    Conversation.id == uuid.UUID(conversation_id),
                    Conversation.tenant_id == uuid.UUID(tenant_id),
                )
                .values(
                    last_message_at=now,
                    message_count=Conversation.message_count + 1,
                )
            )
            await session.commit()
            return _model_to_message(model)

    async def recent_messages(
        self, tenant_id: str, conversation_id: str, limit: int = 10
    ) -> list[MessageRead]:
        """Last ``limit`` messages of a conversation, oldest first."""
        async for session in self._session_factory():
            result = await session.execute(
                select(Message)
                .where(
                    Message.conversation_id == uuid.UUID(conversation_id),
                    Message.tenant_id == uuid.UUID(tenant_id),
                )
                .order_by(Message.created_at.desc())
                .limit(limit)
            )
            models = list(result.scalars().all())
            models.reverse()
            return [_model_to_message(m) for m in models]

    # ── Leads ───────────────────────────────────────────────────────────

    async def insert_lead(self, tenant_id: str, data: LeadCreate) -> LeadRead | None:
        """Insert a lead unless the conversation already has one.

        Returns:
            The new lead, or None when the unique constraint on
            conversation_id rejected the insert.
        """
        async for session in self._session_factory():
            model = Lead(
                tenant_id=uuid.UUID(tenant_id),
                conversation_id=uuid.UUID(data.conversation_id),
                widget_id=uuid.UUID(data.widget_id),
                name=data.name,
                email=data.email,
                phone=data.phone,
                source=data.source,
                is_repeat_contact=data.is_repeat_contact,
                created_at=datetime.now(timezone.utc),
            )
            session.add(model)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                logger.info(
                    "lead.insert_conflict",
                    tenant_id=tenant_id,
                    conversation_id=data.conversation_id,
                )
                return None
            return _model_to_lead(model)

    async def find_leads_by_email(
        self, tenant_id: str, widget_id: str, email: str, limit: int = 5
    ) -> list[LeadRead]:
        async for session in self._session_factory():
            result = await session.execute(
                select(Lead)
                .where(
                    Lead.tenant_id == uuid.UUID(tenant_id),
                    Lead.widget_id == uuid.UUID(widget_id),
                    Lead.email == email,
                )
                .order_by(Lead.created_at.desc())
                .limit(limit)
            )
            return [_model_to_lead(m) for m in result.scalars().all()]

    async def list_leads(
        self, tenant_id: str, widget_id: str, limit: int = 100, offset: int = 0
    ) -> list[LeadRead]:
        """Leads of one widget, newest first."""
        async for session in self._session_factory():
            result = await session.execute(
                select(Lead)
                .where(
                    Lead.tenant_id == uuid.UUID(tenant_id),
                    Lead.widget_id == uuid.UUID(widget_id),
                )
                .order_by(Lead.created_at.desc())
                .limit(limit)
                .offset(offset)
            )
            return [_model_to_lead(m) for m in result.scalars().all()]
