"""Tenant resolution middleware for the administrative API.

Resolves tenant context from the X-Tenant-ID header, verifies the tenant
exists and is active (Redis cache first, then the tenants table), and sets
TenantContext in contextvars for the request scope.

The public chat endpoint is skipped: its tenant comes from the widget key.
"""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import AsyncGenerator, Callable

import redis.asyncio as aioredis
from fastapi import Request, Response, status
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from src.app.core.database import get_session
from src.app.core.tenant import (
    SKIP_TENANT_PATHS,
    TenantContext,
    reset_tenant_context,
    set_tenant_context,
)
from src.app.models.chat import Tenant

logger = logging.getLogger(__name__)

TENANT_CACHE_TTL_SECONDS = 300


class TenantAuthMiddleware(BaseHTTPMiddleware):
    """Middleware that resolves the tenant from the X-Tenant-ID header.

    Paths in SKIP_TENANT_PATHS are excluded from tenant resolution.
    Responds 400 when the header is missing or malformed and 404 when the
    tenant is unknown or inactive.
    """

    def __init__(
        self,
        app,
        redis_client: aioredis.Redis | None = None,
        session_factory: Callable[..., AsyncGenerator[AsyncSession, None]] = get_session,
    ):
        super().__init__(app)
        self._redis = redis_client
        self._session_factory = session_factory

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path
        if any(path.startswith(skip) for skip in SKIP_TENANT_PATHS):
            return await call_next(request)

        tenant_id = request.headers.get("X-Tenant-ID", "").strip()
        if not tenant_id:
            return JSONResponse(
                status_code=status.HTTP_400_BAD_REQUEST,
                content={"detail": "Missing tenant context. Provide the X-Tenant-ID header."},
            )
        try:
            uuid.UUID(tenant_id)
        except ValueError:
            return JSONResponse(
                status_code=status.HTTP_400_BAD_REQUEST,
                content={"detail": "X-Tenant-ID must be a UUID."},
            )

        tenant_ctx = await self._resolve_tenant_by_id(tenant_id)
        if tenant_ctx is None:
            return JSONResponse(
                status_code=status.HTTP_404_NOT_FOUND,
                content={"detail": "Tenant not found."},
            )

        token = set_tenant_context(tenant_ctx)
        try:
            return await call_next(request)
        finally:
            reset_tenant_context(token)

    async def _resolve_tenant_by_id(self, tenant_id: str) -> TenantContext | None:
        """Resolve tenant by ID, using Redis cache when available."""
        cache_key = f"tenant:lookup:{tenant_id}"
        if self._redis:
            try:
                cached = await self._redis.get(cache_key)
                if cached:
                    data = json.loads(cached)
                    return TenantContext(
                        tenant_id=data["tenant_id"],
                        tenant_slug=data["tenant_slug"],
                    )
            except RedisError:
                logger.warning("Redis cache lookup failed for tenant %s", tenant_id)

        async for session in self._session_factory():
            result = await session.execute(
                select(Tenant).where(
                    Tenant.id == uuid.UUID(tenant_id),
                    Tenant.is_active == True,  # noqa: E712
                )
            )
            tenant = result.scalar_one_or_none()
            if tenant is None:
                return None
            ctx = TenantContext(tenant_id=str(tenant.id), tenant_slug=tenant.slug)

        if self._redis:
            try:
                await self._redis.set(
                    cache_key,
                    json.dumps({"tenant_id": ctx.tenant_id, "tenant_slug": ctx.tenant_slug}),
                    ex=TENANT_CACHE_TTL_SECONDS,
                )
            except RedisError:
                logger.warning("Redis cache write failed for tenant %s", tenant_id)

        return ctx
