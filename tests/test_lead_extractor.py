"""Tests for contact extraction and exactly-once lead capture."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from src.app.chat.leads import LeadExtractor, SkipReason, extract_contact_info
from src.app.chat.repository import ChatRepository


# ── extract_contact_info ────────────────────────────────────────────────────


@pytest.mark.parametrize(
    ("message", "email", "phone"),
    [
        ("You can reach me at a@b.com", "a@b.com", None),
        ("call 555-123-4567 please", None, "555-123-4567"),
        ("My cell is (555) 123-4567", None, "(555) 123-4567"),
        ("+1 555.123.4567 or jane.doe+leads@acme.co.uk", "jane.doe+leads@acme.co.uk", "+1 555.123.4567"),
        ("hello", None, None),
        ("Order 12345 arrived", None, None),
    ],
)
def test_extract_contact_info(message, email, phone):
    contact = extract_contact_info(message)

    assert contact.email == email
    assert contact.phone == phone
    assert contact.found == bool(email or phone)


# ── LeadExtractor with the in-memory repository ─────────────────────────────


@pytest_asyncio.fixture
async def conversation(memory_repo, tenant_a):
    widget = memory_repo.add_widget(tenant_a)
    return await memory_repo.create_conversation(tenant_a, widget.id, "visitor-1")


@pytest.fixture
def extractor(memory_repo) -> LeadExtractor:
    return LeadExtractor(memory_repo, source="chat_prompt")


async def test_captures_lead_and_flags_conversation(extractor, memory_repo, conversation):
    result = await extractor.capture(conversation, "Sure, reach me at a@b.com")

    assert result.created
    assert result.lead.email == "a@b.com"
    assert result.lead.phone is None
    assert result.lead.source == "chat_prompt"
    assert result.lead.conversation_id == conversation.id
    assert not result.lead.is_repeat_contact
    assert memory_repo.conversations[conversation.id].lead_captured


async def test_no_contact_info(extractor, memory_repo, conversation):
    result = await extractor.capture(conversation, "hello there")

    assert not result.created
    assert result.skipped_reason == SkipReason.no_contact_info
    assert memory_repo.leads == []
    assert not memory_repo.conversations[conversation.id].lead_captured


async def test_already_captured_skips_extraction(extractor, memory_repo, conversation):
    captured = conversation.model_copy(update={"lead_captured": True})

    result = await extractor.capture(captured, "call 555-123-4567")

    assert result.skipped_reason == SkipReason.already_captured
    assert memory_repo.leads == []


async def test_stale_second_capture_is_conflict(extractor, memory_repo, conversation):
    # Both turns read the conversation before either captured a lead
    first = await extractor.capture(conversation, "a@b.com")
    second = await extractor.capture(conversation, "call 555-123-4567")

    assert first.created
    assert second.skipped_reason == SkipReason.conflict
    assert len(memory_repo.leads) == 1


async def test_repeat_contact_on_same_widget(extractor, memory_repo, tenant_a):
    widget = memory_repo.add_widget(tenant_a)
    first = await memory_repo.create_conversation(tenant_a, widget.id, "visitor-1")
    second = await memory_repo.create_conversation(tenant_a, widget.id, "visitor-1")

    await extractor.capture(first, "a@b.com")
    result = await extractor.capture(second, "again: a@b.com")

    assert result.created
    assert result.lead.is_repeat_contact


async def test_insert_failure_is_swallowed(memory_repo, conversation):
    memory_repo.insert_lead = AsyncMock(side_effect=RuntimeError("db down"))
    extractor = LeadExtractor(memory_repo)

    result = await extractor.capture(conversation, "a@b.com")

    assert result.skipped_reason == SkipReason.error
    assert not memory_repo.conversations[conversation.id].lead_captured


async def test_repeat_lookup_failure_still_creates(memory_repo, conversation):
    memory_repo.find_leads_by_email = AsyncMock(side_effect=RuntimeError("timeout"))
    extractor = LeadExtractor(memory_repo)

    result = await extractor.capture(conversation, "a@b.com")

    assert result.created
    assert not result.lead.is_repeat_contact


# ── Concurrency against the real repository ─────────────────────────────────


async def test_concurrent_captures_create_one_lead(sqlite_session_factory, sqlite_widget):
    repository = ChatRepository(sqlite_session_factory)
    extractor = LeadExtractor(repository)
    conversation = await repository.create_conversation(
        sqlite_widget.tenant_id, sqlite_widget.id, "visitor-1"
    )

    results = await asyncio.gather(
        extractor.capture(conversation, "email me at a@b.com"),
        extractor.capture(conversation, "or call 555-123-4567"),
    )

    assert sorted(r.created for r in results) == [False, True]
    assert [r.skipped_reason for r in results if not r.created] == [SkipReason.conflict]

    leads = await repository.list_leads(sqlite_widget.tenant_id, sqlite_widget.id)
    assert len(leads) == 1
    refreshed = await repository.get_conversation(sqlite_widget.tenant_id, conversation.id)
    assert refreshed.lead_captured
