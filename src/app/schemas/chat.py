"""Request/response and read schemas for the chat product."""

from __future__ import annotations

import re
import uuid
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

MAX_MESSAGE_LENGTH = 5000

_HTML_BRACKETS = re.compile(r"[<>]")


def sanitize_text(value: str, max_length: int = 10000) -> str:
    """Trim, strip angle brackets and cap length."""
    return _HTML_BRACKETS.sub("", value.strip())[:max_length]


class MessageRole(str, Enum):
    user = "user"
    assistant = "assistant"


# ── Chat turn ───────────────────────────────────────────────────────────────


class ChatRequest(BaseModel):
    """Inbound chat turn from the widget."""

    model_config = ConfigDict(populate_by_name=True)

    widget_key: str = Field(alias="widgetKey", min_length=1, max_length=100)
    message: str = Field(min_length=1, max_length=MAX_MESSAGE_LENGTH)
    visitor_id: str = Field(alias="visitorId", min_length=1, max_length=100)
    conversation_id: uuid.UUID | None = Field(default=None, alias="conversationId")

    @field_validator("widget_key", "message", "visitor_id")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value


class ChatResponse(BaseModel):
    """Reply to the widget; field names match ChatRequest's camelCase wire format."""

    model_config = ConfigDict(populate_by_name=True)

    conversation_id: str = Field(alias="conversationId")
    message: str
    timestamp: datetime


# ── Read models ─────────────────────────────────────────────────────────────


class WidgetRead(BaseModel):
    id: str
    tenant_id: str
    widget_key: str
    name: str
    ai_instructions: str | None = None
    language: str = "en"
    products: list[str] = Field(default_factory=lambda: ["shared"])
    is_active: bool = True


class ConversationRead(BaseModel):
    id: str
    tenant_id: str
    widget_id: str
    visitor_id: str
    started_at: datetime
    last_message_at: datetime
    lead_captured: bool = False
    message_count: int = 0


class MessageRead(BaseModel):
    id: str
    conversation_id: str
    role: MessageRole
    content: str
    created_at: datetime


class LeadCreate(BaseModel):
    """Values for a new lead row. At least one of email/phone is set."""

    conversation_id: str
    widget_id: str
    email: str | None = None
    phone: str | None = None
    name: str | None = None
    source: str = "chat_prompt"
    is_repeat_contact: bool = False


class LeadRead(BaseModel):
    id: str
    conversation_id: str
    widget_id: str
    name: str | None = None
    email: str | None = None
    phone: str | None = None
    source: str
    is_repeat_contact: bool = False
    created_at: datetime
