"""
FastAPI application factory.

Run with:
    uvicorn chatdesk.main:create_app --factory

Lifespan:
  • On startup: build the AppContext, verify DB connectivity, optionally
    create the schema, start the maintenance scheduler.
  • On shutdown: stop the scheduler, drain pending notification writes,
    close the LLM client, dispose the engine.

Routers:
  • /api/projects: widget chat (public)
  • /admin:        project + subscription management (admin key)
  • /health:       shallow liveness probe
"""

import logging
from contextlib import asynccontextmanager
from collections.abc import AsyncIterator

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import text

from chatdesk.core.config import Settings
from chatdesk.core.context import build_context
from chatdesk.core.database import Base
from chatdesk.core.errors import (
    AlreadyExpired,
    InvalidRequest,
    InvalidTransition,
    ProjectNotFound,
    StoreUnavailable,
)
from chatdesk.routers.admin import router as admin_router
from chatdesk.routers.chat import router as chat_router
from chatdesk.services.llm_client import LLMClient
from chatdesk.services.project_store import ProjectExists

# Register every model on Base.metadata before create_all.
import chatdesk.models.chat_message  # noqa: F401
import chatdesk.models.notification  # noqa: F401
import chatdesk.models.project  # noqa: F401

logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None, *, llm: LLMClient | None = None) -> FastAPI:
    """Build the app. Tests pass their own settings and a fake LLM client."""
    settings = settings or Settings()

    logging.basicConfig(
        level=logging.DEBUG if settings.DEBUG else logging.INFO,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    )

    # ── Lifespan ────────────────────────────────────────────
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        ctx = build_context(settings, llm=llm)
        app.state.ctx = ctx

        db_available = False
        try:
            async with ctx.engine.begin() as conn:
                await conn.execute(text("SELECT 1"))
                if settings.AUTO_CREATE_SCHEMA:
                    await conn.run_sync(Base.metadata.create_all)
            logger.info("Database connection verified ✓")
            db_available = True
        except Exception:
            logger.warning(
                "Could not reach the database on startup. "
                "The app will start, but requests will fail until the DB is available."
            )

        if settings.MAINTENANCE_ENABLED:
            if not db_available:
                logger.warning("Maintenance scheduler starting without a verified database")
            ctx.scheduler.start()

        yield

        await ctx.aclose()
        logger.info("Application context closed ✓")

    app = FastAPI(
        title=settings.APP_NAME,
        version="0.1.0",
        description=(
            "Multi-tenant chatbot backend: widget chat with per-project "
            "subscriptions and monthly token quotas."
        ),
        lifespan=lifespan,
    )

    _register_error_handlers(app)

    app.include_router(chat_router, prefix="/api/projects")
    app.include_router(admin_router, prefix="/admin")

    # ── Health check ────────────────────────────────────────
    @app.get(
        "/health",
        tags=["System"],
        summary="Liveness probe",
    )
    async def health_check() -> dict[str, str]:
        """Shallow health check: the process is alive."""
        return {"status": "healthy"}

    return app


# ── Error mapping ───────────────────────────────────────────
def _register_error_handlers(app: FastAPI) -> None:
    def _json(status_code: int, detail: str) -> JSONResponse:
        return JSONResponse(status_code=status_code, content={"detail": detail})

    @app.exception_handler(StoreUnavailable)
    async def _store_unavailable(_request: Request, exc: StoreUnavailable) -> JSONResponse:
        logger.warning("Store unavailable: %s", exc)
        return _json(
            status.HTTP_503_SERVICE_UNAVAILABLE,
            "Service temporarily unavailable. Please try again.",
        )

    @app.exception_handler(ProjectNotFound)
    async def _project_not_found(_request: Request, exc: ProjectNotFound) -> JSONResponse:
        return _json(status.HTTP_404_NOT_FOUND, str(exc))

    @app.exception_handler(ProjectExists)
    async def _project_exists(_request: Request, exc: ProjectExists) -> JSONResponse:
        return _json(status.HTTP_409_CONFLICT, f"Project '{exc}' already exists")

    @app.exception_handler(AlreadyExpired)
    async def _already_expired(_request: Request, exc: AlreadyExpired) -> JSONResponse:
        return _json(status.HTTP_400_BAD_REQUEST, str(exc))

    @app.exception_handler(InvalidTransition)
    async def _invalid_transition(_request: Request, exc: InvalidTransition) -> JSONResponse:
        return _json(status.HTTP_400_BAD_REQUEST, str(exc))

    @app.exception_handler(InvalidRequest)
    async def _invalid_request(_request: Request, exc: InvalidRequest) -> JSONResponse:
        return _json(status.HTTP_400_BAD_REQUEST, str(exc))
