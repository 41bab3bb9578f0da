"""
AIGate — FastAPI Application Factory
====================================

What:  Creates and configures the FastAPI application around the registry.
Why:   Gives operators and non-Python callers access to the invocation core
       with the same error semantics in-process callers get.
How:   Factory pattern: create_app() returns a configured FastAPI instance.
Who:   uvicorn (`uvicorn aigate.main:app`) and the test suite.

Application Architecture:
    ┌──────────────────────────────────────────────────────────┐
    │                      FastAPI App                         │
    │                                                          │
    │  Middleware:  [Request ID] → [Logging] → [CORS]          │
    │                                                          │
    │  Routes:      POST /api/generate/{domain}[/batch]        │
    │               GET  /api/status[/{domain}]                │
    │               POST /api/status/{domain}/…/reset          │
    │               POST /api/status/{domain}/models/priority  │
    │               GET  /health                               │
    │                                                          │
    │  Exception Handlers:                                     │
    │    NotFoundError → 404   InvocationError → 408/413/503   │
    │    AIGateError → 500     Exception → 500                 │
    │                                                          │
    │  app.state.registry: OrchestratorRegistry                │
    └──────────────────────────────────────────────────────────┘

Lifecycle:
    Startup:
    1. Initialize logging
    2. Validate configuration (log problems, keep serving /health)
    3. Build the registry unless one was injected
    4. Start the daily token budget reset task

    Shutdown:
    1. Cancel the reset task
    2. Close provider SDK clients
"""

import asyncio
import contextlib
import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from aigate import __version__
from aigate.config import settings
from aigate.exceptions import AIGateError, InvocationError, NotFoundError
from aigate.middleware.logging import RequestLoggingMiddleware
from aigate.middleware.request_id import RequestIDMiddleware, request_id_var
from aigate.routes import generate, health, status
from aigate.services.registry import OrchestratorRegistry, build_registry

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging() -> None:
    """
    Configure the root logger from `settings.log_level`.

    Format: 2024-01-15T12:00:00 [INFO] aigate.services.orchestrator: [a1b2:c3d4e5f6] Attempt 1: ...
    """
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    # SDK transports log every request at INFO
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("groq").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # ── Startup ───────────────────────────────────────────────────────────
    setup_logging()
    logger.info("=" * 60)
    logger.info("AIGate starting up...")

    try:
        settings.validate_required_for_production()
    except ValueError as e:
        # Keep serving: /health reports the disabled domains.
        logger.error("Configuration error: %s", str(e))

    if getattr(app.state, "registry", None) is None:
        app.state.registry = build_registry(settings)
    registry: OrchestratorRegistry = app.state.registry
    logger.info("Domains enabled: %s", ", ".join(registry.domains) or "none")

    reset_task = asyncio.create_task(
        registry.monitor.run_periodic_reset(settings.budget_reset_interval_seconds)
    )

    logger.info("Server ready at http://%s:%d", settings.backend_host, settings.backend_port)
    logger.info("=" * 60)

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    logger.info("AIGate shutting down...")
    reset_task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await reset_task
    await registry.aclose()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def register_exception_handlers(app: FastAPI) -> None:
    """
    Map AIGate exceptions to `{error, message, details, request_id}` responses.

    Handler hierarchy:
        NotFoundError   → 404
        InvocationError → exc.status_code (408 / 413 / 503), Retry-After when known
        AIGateError     → 500
        Exception       → 500, stack trace logged server-side only
    """

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError):
        rid = request_id_var.get("")
        return JSONResponse(
            status_code=404,
            content={
                "error": "not_found",
                "message": exc.message,
                "details": exc.context,
                "request_id": rid,
            },
        )

    @app.exception_handler(InvocationError)
    async def handle_invocation_error(request: Request, exc: InvocationError):
        rid = request_id_var.get("")
        logger.warning(
            "[%s] Generation failed (%s): %s | Context: %s",
            rid,
            exc.kind.value,
            exc.message,
            exc.context,
        )
        headers = {}
        if exc.retry_after:
            headers["Retry-After"] = str(exc.retry_after)
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": exc.kind.value,
                "message": exc.message,
                "details": exc.context,
                "request_id": rid,
            },
            headers=headers,
        )

    @app.exception_handler(AIGateError)
    async def handle_aigate_error(request: Request, exc: AIGateError):
        rid = request_id_var.get("")
        logger.error("[%s] %s: %s | Context: %s", rid, type(exc).__name__, exc.message, exc.context)
        return JSONResponse(
            status_code=500,
            content={
                "error": "server_error",
                "message": exc.message,
                "request_id": rid,
            },
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        rid = request_id_var.get("")
        logger.error("[%s] Unexpected error: %s", rid, str(exc), exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": "An unexpected error occurred. Please try again or contact support.",
                "request_id": rid,
            },
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app(registry: Optional[OrchestratorRegistry] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        registry: Pre-built registry (tests, embedding). When None, the
                  lifespan builds one from settings at startup.
    """
    app = FastAPI(
        title="AIGate API",
        description=(
            "Resilient multi-provider text generation: API key rotation, model "
            "fallback, prompt budgeting and daily token accounting."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.registry = registry

    # Last added runs first: RequestID → Logging → CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "Retry-After"],
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    register_exception_handlers(app)

    app.include_router(generate.router)
    app.include_router(status.router)
    app.include_router(health.router)

    return app


app = create_app()
