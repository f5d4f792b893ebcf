"""Public chat endpoint used by the embeddable widget.

The widget key in the body identifies the widget (and through it the
tenant), so this route sits outside tenant middleware.
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, status

from src.app.api.deps import get_chat_orchestrator
from src.app.chat.errors import ChatError, RateLimitExceededError
from src.app.schemas.chat import ChatRequest, ChatResponse

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/chat", tags=["chat"])


@router.post("", response_model=ChatResponse)
async def chat_turn(
    body: ChatRequest,
    orchestrator: Any = Depends(get_chat_orchestrator),
) -> ChatResponse:
    """Run one chat turn for a widget visitor."""
    try:
        return await orchestrator.handle_turn(body)
    except RateLimitExceededError as exc:
        raise HTTPException(
            status_code=exc.status_code,
            detail=exc.detail,
            headers={"Retry-After": str(exc.retry_after)},
        )
    except ChatError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.detail)
    except Exception:
        logger.exception("chat.turn_failed", widget_key=body.widget_key)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=ChatError.detail,
        )
