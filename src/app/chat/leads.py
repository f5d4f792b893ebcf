"""Lead extraction and exactly-once capture from visitor messages.

Scans a visitor message for an email address or phone number and, if the
conversation has no lead yet, records one. Capture is best-effort: every
failure is logged and swallowed so it can never affect the chat reply.

Exactly-once is enforced by the store, not by the ``lead_captured`` check
alone: ``leads.conversation_id`` is unique and a conflicting insert is
treated as "already captured". Two turns racing past the flag check
therefore still produce a single lead row.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Any

import structlog
from pydantic import BaseModel

from src.app.schemas.chat import ConversationRead, LeadCreate, LeadRead

logger = structlog.get_logger(__name__)

EMAIL_PATTERN = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")

# Optional +1 country code, area code (optionally parenthesised), exchange
# and line number separated by spaces, dots or dashes
PHONE_PATTERN = re.compile(
    r"(?<!\w)"
    r"(?:\+?1[\s.-]?)?"
    r"(?:\(\d{3}\)|\d{3})[\s.-]?"
    r"\d{3}[\s.-]?"
    r"\d{4}"
    r"(?!\d)"
)

REPEAT_CONTACT_LOOKUP_LIMIT = 5


class SkipReason(str, Enum):
    already_captured = "already_captured"
    no_contact_info = "no_contact_info"
    conflict = "conflict"
    error = "error"


class ContactInfo(BaseModel):
    email: str | None = None
    phone: str | None = None

    @property
    def found(self) -> bool:
        return bool(self.email or self.phone)


class LeadCaptureResult(BaseModel):
    """Outcome of one capture attempt."""

    created: bool = False
    skipped_reason: SkipReason | None = None
    lead: LeadRead | None = None


def extract_contact_info(message: str) -> ContactInfo:
    """Run the email and phone patterns against a raw message."""
    email_match = EMAIL_PATTERN.search(message)
    phone_match = PHONE_PATTERN.search(message)
    return ContactInfo(
        email=email_match.group(0) if email_match else None,
        phone=phone_match.group(0).strip() if phone_match else None,
    )


class LeadExtractor:
    """Creates at most one Lead per conversation from visitor messages.

    Args:
        repository: Chat repository (insert_lead, find_leads_by_email,
            mark_lead_captured).
        source: Tag stored on every lead created here.
    """

    def __init__(self, repository: Any, source: str = "chat_prompt") -> None:
        self._repository = repository
        self._source = source

    async def capture(
        self, conversation: ConversationRead, message: str
    ) -> LeadCaptureResult:
        """Create a lead for the conversation if the message carries contact info.

        Never raises. The returned result says whether a lead was created
        and, if not, why.
        """
        if conversation.lead_captured:
            return LeadCaptureResult(skipped_reason=SkipReason.already_captured)

        contact = extract_contact_info(message)
        if not contact.found:
            return LeadCaptureResult(skipped_reason=SkipReason.no_contact_info)

        tenant_id = conversation.tenant_id
        try:
            is_repeat = await self._is_repeat_contact(conversation, contact)

            lead = await self._repository.insert_lead(
                tenant_id,
                LeadCreate(
                    conversation_id=conversation.id,
                    widget_id=conversation.widget_id,
                    email=contact.email,
                    phone=contact.phone,
                    source=self._source,
                    is_repeat_contact=is_repeat,
                ),
            )
            # Conflict means another turn already captured it; the flag
            # write is still safe because it only ever sets true.
            await self._repository.mark_lead_captured(tenant_id, conversation.id)
        except Exception:
            logger.warning(
                "lead.capture_failed",
                tenant_id=tenant_id,
                conversation_id=conversation.id,
                exc_info=True,
            )
            return LeadCaptureResult(skipped_reason=SkipReason.error)

        if lead is None:
            return LeadCaptureResult(skipped_reason=SkipReason.conflict)

        logger.info(
            "lead.captured",
            tenant_id=tenant_id,
            widget_id=conversation.widget_id,
            conversation_id=conversation.id,
            has_email=contact.email is not None,
            has_phone=contact.phone is not None,
            is_repeat_contact=is_repeat,
        )
        return LeadCaptureResult(created=True, lead=lead)

    async def _is_repeat_contact(
        self, conversation: ConversationRead, contact: ContactInfo
    ) -> bool:
        """Informational lookup for earlier leads with the same email on this widget."""
        if not contact.email:
            return False
        try:
            previous = await self._repository.find_leads_by_email(
                conversation.tenant_id,
                conversation.widget_id,
                contact.email,
                limit=REPEAT_CONTACT_LOOKUP_LIMIT,
            )
        except Exception:
            logger.warning(
                "lead.repeat_lookup_failed",
                tenant_id=conversation.tenant_id,
                conversation_id=conversation.id,
                exc_info=True,
            )
            return False
        if previous:
            logger.info(
                "lead.repeat_contact",
                tenant_id=conversation.tenant_id,
                widget_id=conversation.widget_id,
                conversation_id=conversation.id,
                previous_leads=len(previous),
            )
        return bool(previous)
