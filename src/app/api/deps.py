"""FastAPI dependency injection for tenant context and app-scoped services.

Services are created once in the application lifespan and stored on
app.state. The getters below raise 503 when a service failed to
initialize, so a missing dependency degrades one endpoint rather than the
whole app.
"""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException, Request, status

from src.app.core.tenant import TenantContext, get_current_tenant


async def get_tenant() -> TenantContext:
    """Get the current tenant context (set by TenantAuthMiddleware)."""
    try:
        return get_current_tenant()
    except RuntimeError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing tenant context. Provide the X-Tenant-ID header.",
        )


def _get_state(request: Request, name: str, label: str) -> Any:
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{label} not initialized",
        )
    return service


def get_chat_orchestrator(request: Request) -> Any:
    """Retrieve ChatOrchestrator from app.state, 503 if not available."""
    return _get_state(request, "chat_orchestrator", "Chat")


def get_chat_repository(request: Request) -> Any:
    """Retrieve ChatRepository from app.state, 503 if not available."""
    return _get_state(request, "chat_repository", "Chat storage")


def get_knowledge_store(request: Request) -> Any:
    """Retrieve QdrantKnowledgeStore from app.state, 503 if not available."""
    return _get_state(request, "knowledge_store", "Knowledge base")


def get_search_service(request: Request) -> Any:
    """Retrieve KnowledgeSearchService from app.state, 503 if not available."""
    return _get_state(request, "search_service", "Knowledge search")


def get_ingestion_pipeline(request: Request) -> Any:
    """Retrieve IngestionPipeline from app.state, 503 if not available."""
    return _get_state(request, "ingestion_pipeline", "Knowledge ingestion")
