"""
FastAPI Application — Entry Point

CV Screening Document Service

Architecture:
  - All routes are versioned under /api/v1/
  - Services are built once by core.container in the lifespan and injected
    into routes via api.dependencies
  - Extraction runs in the background; uploads return as soon as the job
    row exists
  - Structured JSON error responses on all 4xx/5xx

Middleware stack (innermost → outermost):
  1. CORS — restrict to configured origins
  2. Request ID injection — X-Request-ID header on every response
  3. Request logging — structured log per request with latency

With the in-process backend the lifespan also runs the stale-job sweeper.
Shutdown drains outstanding in-process extraction jobs (bounded by
shutdown_drain_seconds; jobs still running are cancelled and marked error)
before the engine is disposed.
"""

from __future__ import annotations

import logging
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from cvscreen.api.v1.analysis import router as analysis_router
from cvscreen.api.v1.documents import router as documents_router
from cvscreen.core.config import Settings, get_settings
from cvscreen.core.container import ServiceContainer, build_container
from cvscreen.core.errors import ScreeningError
from cvscreen.db.session import check_db_health, create_tables
from cvscreen.schemas.documents import ApiErrors

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or request.headers.get("X-Request-ID") or str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------

def create_app(
    settings:  Settings | None = None,
    container: ServiceContainer | None = None,
) -> FastAPI:
    """
    ``container`` may be pre-built (tests inject one with fake OCR); otherwise
    the lifespan builds it from ``settings``.
    """
    settings = settings or (container.settings if container else get_settings())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Run on startup: build services, optionally create tables, start the sweeper.
        Run on shutdown: drain background jobs, clean up connection pools.
        """
        services = container or build_container(settings)
        app.state.container = services

        logger.info(
            "Starting CV screening service | env=%s backend=%s",
            settings.app_env, settings.task_backend,
        )
        if settings.db_create_tables:
            await create_tables(services.engine)
        if services.sweeper is not None:
            # First pass closes jobs orphaned by a previous process
            services.sweeper.start()

        yield

        logger.info("Shutting down CV screening service | pending_jobs=%d", services.supervisor.pending)
        await services.aclose()

    app = FastAPI(
        title="CV Screening Document Service",
        description=(
            "Accepts CV uploads, extracts their text in the background (native parsing "
            "with OCR fallback) and scores CVs against job requirements."
        ),
        version="1.0.0",
        docs_url="/api/docs" if not settings.is_production else None,
        redoc_url="/api/redoc" if not settings.is_production else None,
        openapi_url="/api/openapi.json" if not settings.is_production else None,
        lifespan=lifespan,
    )

    # ----------------------------------------------------------------
    # Middleware (applied in reverse order: last added = outermost)
    # ----------------------------------------------------------------

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials="*" not in settings.allowed_origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID", "X-Client-Info", "apikey"],
        expose_headers=["X-Request-ID", "X-Document-ID", "Location"],
    )

    # ----------------------------------------------------------------
    # Request ID + structured logging middleware
    # ----------------------------------------------------------------

    @app.middleware("http")
    async def request_id_and_logging(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        start = time.perf_counter()

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Request-ID"] = request_id

        logger.info(
            "HTTP %s %s %d %.1fms | request_id=%s",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
            request_id,
        )
        return response

    # ----------------------------------------------------------------
    # Exception handlers: uniform structured error responses
    # ----------------------------------------------------------------

    @app.exception_handler(ScreeningError)
    async def screening_error_handler(request: Request, exc: ScreeningError):
        request_id = _request_id(request)
        level = logging.ERROR if exc.http_status >= 500 else logging.INFO
        logger.log(
            level, "Request failed | path=%s code=%s error=%s request_id=%s",
            request.url.path, exc.error_code, exc, request_id,
        )
        return JSONResponse(
            status_code=exc.http_status,
            content=ApiErrors.from_exception(exc, request_id).model_dump(mode="json"),
            headers={"X-Request-ID": request_id},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Malformed or missing request fields are InvalidInput (400)."""
        body = ApiErrors.validation_error(list(exc.errors()), _request_id(request))
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=body.model_dump(mode="json"),
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        """Catch-all for unhandled exceptions; never exposes stack traces."""
        request_id = _request_id(request)
        logger.exception(
            "Unhandled exception | path=%s request_id=%s",
            request.url.path, request_id,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=ApiErrors.internal_error(request_id).model_dump(mode="json"),
            headers={"X-Request-ID": request_id},
        )

    # ----------------------------------------------------------------
    # Routers
    # ----------------------------------------------------------------

    app.include_router(documents_router, prefix="/api/v1")
    app.include_router(analysis_router,  prefix="/api/v1")

    # ----------------------------------------------------------------
    # Health & readiness endpoints (used by load balancer)
    # ----------------------------------------------------------------

    @app.get(
        "/health",
        tags=["Operations"],
        summary="Liveness probe",
        description="Returns 200 if the process is alive. No external checks.",
    )
    async def health() -> dict:
        return {"status": "ok", "service": "cv-screening-api"}

    @app.get(
        "/ready",
        tags=["Operations"],
        summary="Readiness probe",
        description="Returns 200 only if the database is reachable.",
    )
    async def readiness(request: Request) -> JSONResponse:
        db_status = await check_db_health(request.app.state.container.engine)
        if db_status["status"] != "ok":
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={"status": "not_ready", "database": db_status},
            )
        return JSONResponse(
            status_code=status.HTTP_200_OK,
            content={"status": "ready", "database": db_status},
        )

    return app


def get_app() -> FastAPI:
    """uvicorn factory: ``uvicorn cvscreen.main:get_app --factory``."""
    settings = get_settings()
    configure_logging(settings)
    return create_app(settings)


# ---------------------------------------------------------------------------
# Local development entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    import uvicorn

    _settings = get_settings()
    uvicorn.run(
        "cvscreen.main:get_app",
        factory=True,
        host="0.0.0.0",
        port=8000,
        reload=_settings.app_env == "development",
        log_level="debug" if _settings.debug else "info",
        access_log=True,
    )
