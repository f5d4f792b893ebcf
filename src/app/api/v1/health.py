"""Liveness and readiness checks.

/health answers as long as the process serves requests. /health/ready
checks every backing service a chat turn needs (database, Redis, Qdrant)
and reports whether any LLM provider key is configured. Each check is
bounded so a hung dependency yields "error" instead of a hung request.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import text

from src.app.config import get_settings
from src.app.core.database import get_engine
from src.app.core.redis import get_redis_pool

router = APIRouter(tags=["health"])

CHECK_TIMEOUT_SECONDS = 2.0

# Checks that decide readiness; "llm" is informational
CRITICAL_CHECKS = ("database", "redis", "qdrant")


@router.get("/health")
async def health_check():
    """Liveness: no dependencies are touched."""
    settings = get_settings()
    return {"status": "ok", "environment": settings.ENVIRONMENT.value}


async def _check_database(request: Request) -> None:
    async with get_engine().connect() as conn:
        await conn.execute(text("SELECT 1"))


async def _check_redis(request: Request) -> None:
    if not await get_redis_pool().ping():
        raise RuntimeError("PING did not return PONG")


async def _check_qdrant(request: Request) -> None:
    store = getattr(request.app.state, "knowledge_store", None)
    if store is None:
        raise RuntimeError("knowledge store not initialized")
    await asyncio.to_thread(store.client.get_collections)


_CHECKS: dict[str, Callable[[Request], Awaitable[None]]] = {
    "database": _check_database,
    "redis": _check_redis,
    "qdrant": _check_qdrant,
}


async def _run_check(name: str, request: Request) -> dict[str, str]:
    try:
        await asyncio.wait_for(_CHECKS[name](request), timeout=CHECK_TIMEOUT_SECONDS)
    except asyncio.TimeoutError:
        return {name: "error", f"{name}_error": "timed out"}
    except Exception as e:
        return {name: "error", f"{name}_error": str(e)}
    return {name: "ok"}


async def _check_dependencies(request: Request) -> dict:
    """Run all checks concurrently and merge their results."""
    checks: dict = {}
    for result in await asyncio.gather(*(_run_check(name, request) for name in _CHECKS)):
        checks.update(result)

    settings = get_settings()
    checks["llm"] = "ok" if (settings.ANTHROPIC_API_KEY or settings.OPENAI_API_KEY) else "no_keys"
    return checks


@router.get("/health/ready")
async def readiness_check(request: Request):
    """Readiness: 200 when database, Redis and Qdrant all respond, else 503."""
    checks = await _check_dependencies(request)
    ready = all(checks.get(name) == "ok" for name in CRITICAL_CHECKS)

    return JSONResponse(
        status_code=status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"status": "ready" if ready else "degraded", "checks": checks},
    )
