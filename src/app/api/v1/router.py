"""V1 API router -- aggregates all v1 endpoint routers."""

from __future__ import annotations

from fastapi import APIRouter

from src.app.api.v1 import chat, knowledge, leads

router = APIRouter(prefix="/api/v1")

router.include_router(chat.router)
router.include_router(knowledge.router)
router.include_router(leads.router)
