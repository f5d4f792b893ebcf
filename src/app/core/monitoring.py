"""Prometheus metrics and Sentry setup for the chat service.

Provides:
- MetricsMiddleware: per-route request count and latency
- Chat metrics: turns by outcome, knowledge snippets per turn, retrieval
  latency, rate-limit rejections and captured leads
- track_llm_call(): async context manager timing one generation call and
  counting its tokens
- init_sentry(): Sentry with events tagged by the current tenant
- get_metrics_response(): exposition for GET /metrics

Tenant IDs are deliberately absent from metric labels; they are attached
to logs and Sentry events instead.
"""

from __future__ import annotations

import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import sentry_sdk
import structlog
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, Counter, Histogram, generate_latest
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from src.app.core.tenant import get_current_tenant

logger = structlog.get_logger(__name__)

# ── HTTP ─────────────────────────────────────────────────────────────────────

http_requests_total = Counter(
    "widgetchat_http_requests_total",
    "HTTP requests by route and status",
    ["method", "route", "status_code"],
)

http_request_duration_seconds = Histogram(
    "widgetchat_http_request_duration_seconds",
    "HTTP request latency by route",
    ["method", "route"],
    buckets=(0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

# ── Chat ─────────────────────────────────────────────────────────────────────

chat_turns_total = Counter(
    "widgetchat_chat_turns_total",
    "Chat turns by outcome (ok or the error class name)",
    ["status"],
)

knowledge_results_total = Histogram(
    "widgetchat_knowledge_results_per_turn",
    "Knowledge snippets injected into the prompt per chat turn",
    buckets=(0, 1, 2, 3, 5, 8),
)

knowledge_search_duration_seconds = Histogram(
    "widgetchat_knowledge_search_duration_seconds",
    "Knowledge retrieval latency per chat turn, timeouts included",
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)

rate_limited_total = Counter(
    "widgetchat_rate_limited_total",
    "Chat turns rejected by the per-conversation rate limit",
)

leads_captured_total = Counter(
    "widgetchat_leads_captured_total",
    "Leads created from chat messages",
)

# ── LLM ──────────────────────────────────────────────────────────────────────

llm_requests_total = Counter(
    "widgetchat_llm_requests_total",
    "Reply generation calls by model group and outcome",
    ["model", "status"],
)

llm_request_duration_seconds = Histogram(
    "widgetchat_llm_request_duration_seconds",
    "Reply generation latency",
    ["model"],
    buckets=(0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 30.0, 60.0),
)

llm_tokens_used_total = Counter(
    "widgetchat_llm_tokens_total",
    "Tokens consumed by reply generation",
    ["model", "token_type"],
)


# ── Middleware ───────────────────────────────────────────────────────────────


class MetricsMiddleware(BaseHTTPMiddleware):
    """Records request count and latency for every route except /metrics.

    The route template (``/api/v1/widgets/{widget_id}/leads``) is used as the
    label so IDs in paths never create new series. Unhandled exceptions are
    counted as 500 before being re-raised.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        start = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            route = getattr(request.scope.get("route"), "path", "unmatched")
            http_requests_total.labels(
                method=request.method, route=route, status_code=str(status_code)
            ).inc()
            http_request_duration_seconds.labels(
                method=request.method, route=route
            ).observe(time.perf_counter() - start)


# ── LLM call tracking ────────────────────────────────────────────────────────


@asynccontextmanager
async def track_llm_call(model: str) -> AsyncGenerator[dict[str, Any], None]:
    """Time one generation call and count its tokens.

    The caller fills ``prompt_tokens`` / ``completion_tokens`` on the yielded
    dict once the provider responds:

        async with track_llm_call("chat") as usage:
            response = await router.acompletion(...)
            usage["prompt_tokens"] = response.usage.prompt_tokens
    """
    usage: dict[str, Any] = {"prompt_tokens": 0, "completion_tokens": 0}
    start = time.perf_counter()
    status = "error"
    try:
        yield usage
        status = "success"
    finally:
        llm_requests_total.labels(model=model, status=status).inc()
        llm_request_duration_seconds.labels(model=model).observe(time.perf_counter() - start)
        for token_type in ("prompt", "completion"):
            count = usage.get(f"{token_type}_tokens") or 0
            if count:
                llm_tokens_used_total.labels(model=model, token_type=token_type).inc(count)


# ── Sentry ───────────────────────────────────────────────────────────────────

_TRACES_SAMPLE_RATE = {"production": 0.1, "staging": 0.5}


def _tag_tenant(event: dict, hint: dict) -> dict:
    try:
        ctx = get_current_tenant()
    except RuntimeError:
        return event
    event.setdefault("tags", {})["tenant_id"] = ctx.tenant_id
    return event


def init_sentry(dsn: str, environment: str) -> None:
    """Initialize Sentry; events raised inside a tenant scope carry tenant_id."""
    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        traces_sample_rate=_TRACES_SAMPLE_RATE.get(environment, 1.0),
        send_default_pii=False,
        integrations=[StarletteIntegration(), FastApiIntegration()],
        before_send=_tag_tenant,
    )
    logger.info("sentry.initialized", environment=environment)


def get_metrics_response() -> Response:
    """Render the default registry in Prometheus text format."""
    return Response(content=generate_latest(REGISTRY), media_type=CONTENT_TYPE_LATEST)
