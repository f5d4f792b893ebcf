"""Request-scoped tenant identity.

Admin requests get their tenant from the X-Tenant-ID header (see
TenantAuthMiddleware); widget chat turns get it once the chat orchestrator
has resolved the widget key to its owning tenant. Anything further down the
call stack (log lines, Sentry events, LLM call metadata) reads it through
get_current_tenant().

Data isolation does not depend on this context: every repository and
knowledge store call takes tenant_id explicitly and filters on it.
"""

from __future__ import annotations

import contextvars
from dataclasses import dataclass


@dataclass(frozen=True)
class TenantContext:
    """The tenant a request or chat turn is acting for."""

    tenant_id: str
    tenant_slug: str


_current: contextvars.ContextVar[TenantContext] = contextvars.ContextVar("widgetchat_tenant")


def get_current_tenant() -> TenantContext:
    """Return the active tenant.

    Raises:
        RuntimeError: Outside a tenant-scoped request or chat turn.
    """
    try:
        return _current.get()
    except LookupError:
        raise RuntimeError("no tenant is active for this request") from None


def set_tenant_context(ctx: TenantContext) -> contextvars.Token[TenantContext]:
    """Activate ctx; pass the returned token to reset_tenant_context()."""
    return _current.set(ctx)


def reset_tenant_context(token: contextvars.Token[TenantContext]) -> None:
    """Restore whatever tenant was active before set_tenant_context()."""
    _current.reset(token)


# Requests on these prefixes are not resolved to a tenant by the middleware
SKIP_TENANT_PATHS = (
    "/health",
    "/metrics",
    "/docs",
    "/openapi.json",
    "/redoc",
    # Widget chat: the tenant comes from the widget key
    "/api/v1/chat",
)
