"""Lead export for a tenant's widgets."""

from __future__ import annotations

import uuid
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, status

from src.app.api.deps import get_chat_repository, get_tenant
from src.app.core.tenant import TenantContext
from src.app.schemas.chat import LeadRead

router = APIRouter(prefix="/widgets", tags=["leads"])


@router.get("/{widget_id}/leads", response_model=list[LeadRead])
async def list_widget_leads(
    widget_id: uuid.UUID,
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    tenant: TenantContext = Depends(get_tenant),
    repository: Any = Depends(get_chat_repository),
) -> list[LeadRead]:
    """Leads captured on one widget, newest first."""
    widget = await repository.get_widget(tenant.tenant_id, str(widget_id))
    if widget is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Widget not found",
        )
    return await repository.list_leads(
        tenant.tenant_id, str(widget_id), limit=limit, offset=offset
    )
