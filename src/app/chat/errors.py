"""Chat turn error taxonomy.

Only validation, not-found, rate-limit and generation errors ever reach the
HTTP boundary. Knowledge retrieval failures are absorbed by the search
service and lead capture failures by the lead extractor.
"""

from __future__ import annotations


class ChatError(Exception):
    """Base class for errors surfaced to the chat caller."""

    status_code: int = 500
    detail: str = "Something went wrong, please try again."

    def __init__(self, detail: str | None = None) -> None:
        if detail is not None:
            self.detail = detail
        super().__init__(self.detail)


class ChatValidationError(ChatError):
    """Malformed or missing request fields. No writes are attempted."""

    status_code = 400
    detail = "Invalid chat request."


class WidgetNotFoundError(ChatError):
    status_code = 404
    detail = "Widget not found."


class ConversationNotFoundError(ChatError):
    status_code = 404
    detail = "Conversation not found."


class RateLimitExceededError(ChatError):
    """Too many messages in the current window for one conversation."""

    status_code = 429
    detail = "Too many messages. Please wait a moment and try again."

    def __init__(self, retry_after: int, detail: str | None = None) -> None:
        self.retry_after = retry_after
        super().__init__(detail)


class GenerationError(ChatError):
    """The LLM provider failed. The user message is already persisted."""

    status_code = 502
    detail = "Something went wrong generating a reply. Please try again."


class GenerationTimeoutError(GenerationError):
    status_code = 504
    detail = "The assistant took too long to reply. Please try again."
