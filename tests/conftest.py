"""Shared test fixtures.

Provides:
- InMemoryChatRepository: dict-backed double of ChatRepository, including
  the one-lead-per-conversation constraint
- A file-backed SQLite (aiosqlite) session factory for repository tests
- Two tenant IDs and a widget per tenant
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine

from src.app.core.database import Base
from src.app.schemas.chat import (
    ConversationRead,
    LeadCreate,
    LeadRead,
    MessageRead,
    MessageRole,
    WidgetRead,
)


class InMemoryChatRepository:
    """In-memory stand-in for ChatRepository with the same method signatures."""

    def __init__(self) -> None:
        self.widgets: dict[str, WidgetRead] = {}
        self.conversations: dict[str, ConversationRead] = {}
        self.messages: list[tuple[str, MessageRead]] = []
        self.leads: list[tuple[str, LeadRead]] = []
        self._clock = datetime(2026, 1, 1, tzinfo=timezone.utc)

    def _now(self) -> datetime:
        # Strictly increasing timestamps keep message order deterministic
        self._clock += timedelta(milliseconds=1)
        return self._clock

    def add_widget(
        self,
        tenant_id: str,
        widget_key: str = "wk_test",
        name: str = "Acme Dental",
        language: str = "en",
        products: list[str] | None = None,
        ai_instructions: str | None = None,
    ) -> WidgetRead:
        widget = WidgetRead(
            id=str(uuid.uuid4()),
            tenant_id=tenant_id,
            widget_key=widget_key,
            name=name,
            language=language,
            products=products or ["shared"],
            ai_instructions=ai_instructions,
        )
        self.widgets[widget.id] = widget
        return widget

    # ── Widgets ─────────────────────────────────────────────────────────

    async def get_widget_by_key(self, widget_key: str) -> WidgetRead | None:
        for widget in self.widgets.values():
            if widget.widget_key == widget_key and widget.is_active:
                return widget
        return None

    async def get_widget(self, tenant_id: str, widget_id: str) -> WidgetRead | None:
        widget = self.widgets.get(widget_id)
        if widget is None or widget.tenant_id != tenant_id:
            return None
        return widget

    # ── Conversations ───────────────────────────────────────────────────

    async def get_conversation(
        self, tenant_id: str, conversation_id: str
    ) -> ConversationRead | None:
        conversation = self.conversations.get(conversation_id)
        if conversation is None or conversation.tenant_id != tenant_id:
            return None
        return conversation.model_copy()

    async def create_conversation(
        self, tenant_id: str, widget_id: str, visitor_id: str
    ) -> ConversationRead:
        now = self._now()
        conversation = ConversationRead(
            id=str(uuid.uuid4()),
            tenant_id=tenant_id,
            widget_id=widget_id,
            visitor_id=visitor_id,
            started_at=now,
            last_message_at=now,
        )
        self.conversations[conversation.id] = conversation
        return conversation.model_copy()

    async def mark_lead_captured(self, tenant_id: str, conversation_id: str) -> None:
        conversation = self.conversations.get(conversation_id)
        if conversation is not None and conversation.tenant_id == tenant_id:
            conversation.lead_captured = True

    # ── Messages ────────────────────────────────────────────────────────

    async def add_message(
        self, tenant_id: str, conversation_id: str, role: MessageRole, content: str
    ) -> MessageRead:
        now = self._now()
        message = MessageRead(
            id=str(uuid.uuid4()),
            conversation_id=conversation_id,
            role=role,
            content=content,
            created_at=now,
        )
        self.messages.append((tenant_id, message))
        conversation = self.conversations[conversation_id]
        conversation.message_count += 1
        conversation.last_message_at = now
        return message

    async def recent_messages(
        self, tenant_id: str, conversation_id: str, limit: int = 10
    ) -> list[MessageRead]:
        history = [
            m for t, m in self.messages
            if t == tenant_id and m.conversation_id == conversation_id
        ]
        return history[-limit:]

    # ── Leads ───────────────────────────────────────────────────────────

    async def insert_lead(self, tenant_id: str, data: LeadCreate) -> LeadRead | None:
        if any(lead.conversation_id == data.conversation_id for _, lead in self.leads):
            return None
        lead = LeadRead(id=str(uuid.uuid4()), created_at=self._now(), **data.model_dump())
        self.leads.append((tenant_id, lead))
        return lead

    async def find_leads_by_email(
        self, tenant_id: str, widget_id: str, email: str, limit: int = 5
    ) -> list[LeadRead]:
        matches = [
            lead for t, lead in self.leads
            if t == tenant_id and lead.widget_id == widget_id and lead.email == email
        ]
        return list(reversed(matches))[:limit]

    async def list_leads(
        self, tenant_id: str, widget_id: str, limit: int = 100, offset: int = 0
    ) -> list[LeadRead]:
        matches = [
            lead for t, lead in self.leads
            if t == tenant_id and lead.widget_id == widget_id
        ]
        return list(reversed(matches))[offset : offset + limit]

    def user_messages(self, conversation_id: str) -> list[MessageRead]:
        return [
            m for _, m in self.messages
            if m.conversation_id == conversation_id and m.role == MessageRole.user
        ]

    def assistant_messages(self, conversation_id: str) -> list[MessageRead]:
        return [
            m for _, m in self.messages
            if m.conversation_id == conversation_id and m.role == MessageRole.assistant
        ]


# ── Fixtures ────────────────────────────────────────────────────────────────


@pytest.fixture
def tenant_a() -> str:
    return str(uuid.uuid4())


@pytest.fixture
def tenant_b() -> str:
    return str(uuid.uuid4())


@pytest.fixture
def memory_repo() -> InMemoryChatRepository:
    return InMemoryChatRepository()


@pytest_asyncio.fixture
async def sqlite_session_factory(tmp_path):
    """Session factory over a fresh SQLite database with all chat tables."""
    from src.app.models import chat  # noqa: F401

    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'chat.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async def session_factory() -> AsyncGenerator[AsyncSession, None]:
        async with AsyncSession(engine, expire_on_commit=False) as session:
            yield session

    yield session_factory

    await engine.dispose()


@pytest_asyncio.fixture
async def sqlite_widget(sqlite_session_factory, tenant_a) -> WidgetRead:
    """An active tenant and widget row in the SQLite database."""
    from src.app.models.chat import Tenant, Widget

    async for session in sqlite_session_factory():
        session.add(Tenant(id=uuid.UUID(tenant_a), slug="acme", name="Acme Dental"))
        widget = Widget(
            tenant_id=uuid.UUID(tenant_a),
            widget_key="wk_sqlite",
            name="Acme Dental",
            language="en",
            products=["shared"],
        )
        session.add(widget)
        await session.commit()
        return WidgetRead(
            id=str(widget.id),
            tenant_id=tenant_a,
            widget_key=widget.widget_key,
            name=widget.name,
        )
