"""ASGI entry point for the widget chat service.

create_app() wires the middleware stack (metrics, access logging, CORS for
embedded widgets, tenant resolution for admin routes), the health and v1
routers and /metrics. The lifespan opens the database and knowledge store and
assembles the chat orchestrator; on shutdown it drains pending lead captures.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import JSONResponse, Response

from src.app.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.app.api.middleware.tenant import TenantAuthMiddleware
from src.app.api.v1 import health
from src.app.api.v1.router import router as v1_router
from src.app.chat.leads import LeadExtractor
from src.app.chat.orchestrator import ChatOrchestrator
from src.app.chat.repository import ChatRepository
from src.app.config import get_settings
from src.app.core.database import close_db, get_session, init_db
from src.app.core.monitoring import MetricsMiddleware, get_metrics_response, init_sentry
from src.app.core.rate_limit import SlidingWindowRateLimiter
from src.app.core.redis import close_redis, get_redis_pool
from src.app.services.llm import get_llm_service
from src.knowledge.config import KnowledgeBaseConfig
from src.knowledge.embeddings import EmbeddingService
from src.knowledge.ingestion import IngestionPipeline, KnowledgeChunker
from src.knowledge.qdrant_client import QdrantKnowledgeStore
from src.knowledge.rag.search import KnowledgeSearchService


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: init DB, knowledge base and chat services on startup."""
    log = structlog.get_logger(__name__)
    settings = get_settings()
    configure_structlog()
    await init_db()

    # Error reporting is off unless SENTRY_DSN is set
    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    # ── Knowledge base ──────────────────────────────────────────────────
    # A failure here leaves the knowledge and chat endpoints returning 503.
    app.state.knowledge_store = None
    app.state.search_service = None
    app.state.ingestion_pipeline = None
    try:
        kb_config = KnowledgeBaseConfig()
        embedding_service = EmbeddingService(kb_config)
        knowledge_store = QdrantKnowledgeStore(kb_config, embedding_service)
        await knowledge_store.initialize_collections()

        app.state.knowledge_store = knowledge_store
        app.state.search_service = KnowledgeSearchService(
            knowledge_store, embedding_service, kb_config
        )
        app.state.ingestion_pipeline = IngestionPipeline(
            knowledge_store,
            embedding_service,
            KnowledgeChunker(kb_config.chunk_size, kb_config.chunk_overlap_pct),
            embeddings_enabled=kb_config.embeddings_enabled,
        )
        if not kb_config.embeddings_enabled:
            log.warning("knowledge.embeddings_disabled", hint="KNOWLEDGE_OPENAI_API_KEY not set")
        log.info("knowledge.initialized", collection=kb_config.collection_knowledge)
    except Exception:
        log.warning("knowledge.init_failed", exc_info=True)

    # ── Chat ────────────────────────────────────────────────────────────
    chat_repository = ChatRepository(session_factory=get_session)
    app.state.chat_repository = chat_repository
    app.state.chat_orchestrator = None
    if app.state.search_service is not None:
        app.state.chat_orchestrator = ChatOrchestrator(
            repository=chat_repository,
            search_service=app.state.search_service,
            llm_service=get_llm_service(),
            lead_extractor=LeadExtractor(chat_repository, source=settings.LEAD_SOURCE),
            rate_limiter=SlidingWindowRateLimiter(
                get_redis_pool(),
                max_messages=settings.CHAT_RATE_LIMIT_MAX_MESSAGES,
                window_seconds=settings.CHAT_RATE_LIMIT_WINDOW_SECONDS,
            ),
            settings=settings,
        )
        log.info("chat.initialized")

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    orchestrator = app.state.chat_orchestrator
    if orchestrator is not None:
        try:
            await asyncio.wait_for(orchestrator.wait_for_background_tasks(), timeout=10)
        except asyncio.TimeoutError:
            log.warning("chat.background_tasks_timeout")

    if app.state.knowledge_store is not None:
        app.state.knowledge_store.close()

    await close_db()
    await close_redis()


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report malformed requests as 400 with a compact error list."""
    errors = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", ""), "type": err.get("type", "")}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={"detail": "Invalid request.", "errors": errors},
    )


def create_app() -> FastAPI:
    """Build the FastAPI application with middleware and routers attached."""
    settings = get_settings()

    app = FastAPI(
        title="Widget Chat API",
        version="0.1.0",
        description="Multi-tenant chat widget with knowledge-grounded replies and lead capture",
        lifespan=lifespan,
    )
    app.add_exception_handler(RequestValidationError, _validation_error_handler)

    # add_middleware prepends: the last one added sees the request first

    # Innermost: admin routes need a valid X-Tenant-ID
    redis_client = get_redis_pool()
    app.add_middleware(TenantAuthMiddleware, redis_client=redis_client)

    # CORS middleware (widgets are embedded on customer sites)
    origins = settings.cors_origins or ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=origins != ["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Access log with request_id
    app.add_middleware(LoggingMiddleware)

    # Outermost, so rejected and failed requests are counted too
    app.add_middleware(MetricsMiddleware)

    app.include_router(health.router)
    app.include_router(v1_router)

    # Scraped by Prometheus; not part of the public API schema
    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Current metric values in Prometheus text format."""
        return get_metrics_response()

    return app


# uvicorn src.app.main:app
app = create_app()
