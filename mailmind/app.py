"""FastAPI application factory."""

from __future__ import annotations

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from mailmind.cache import AnalysisCache
from mailmind.config import Settings
from mailmind.enrichment import EnrichmentClient
from mailmind.orchestrator import BatchOrchestrator
from mailmind.retrieval import RetrievalService
from mailmind.sender import SmtpSender

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: open the provider HTTP client. Shutdown: close it."""
    enrichment: EnrichmentClient = app.state.enrichment
    await enrichment.start()
    yield
    await enrichment.stop()
    logger.info("shutdown_complete", cached_analyses=len(app.state.cache))


async def _unhandled_error(request: Request, exc: Exception) -> JSONResponse:
    # Last resort: one failing request must not take the process down.
    logger.exception("unhandled_request_error", path=request.url.path)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "message": str(exc) or type(exc).__name__},
    )


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build and return the FastAPI application.

    The analysis cache, enrichment client and services are created once
    per app and shared by all requests through ``app.state``.
    """
    if settings is None:
        settings = Settings()  # type: ignore[call-arg]

    app = FastAPI(
        title="MailMind API",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings

    cache = AnalysisCache()
    enrichment = EnrichmentClient(settings.enrichment)
    orchestrator = BatchOrchestrator(
        enrichment,
        cache,
        group_size=settings.retrieval.group_size,
    )
    app.state.cache = cache
    app.state.enrichment = enrichment
    app.state.retrieval = RetrievalService(settings.imap, orchestrator, settings.retrieval)
    app.state.sender = SmtpSender(settings.smtp)

    from mailmind.routers.auth import router as auth_router
    from mailmind.routers.emails import router as emails_router

    app.include_router(auth_router)
    app.include_router(emails_router)
    app.add_exception_handler(Exception, _unhandled_error)

    @app.get("/api/health")
    async def health():
        return {"status": "ok", "service": "mailmind-api"}

    return app
