"""
ResearchOps API - Production Entrypoint

Single FastAPI runtime for the journal dual-write service.

- All endpoints under /api/v1/*; GET /healthz for operations
- Connection pool created at startup, closed at shutdown
- No stack traces to clients: structured JSON errors with request_id
"""

import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv

load_dotenv()

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
import structlog

from researchops import __version__
from researchops.api.dependencies import (
    init_connection_pool,
    close_connection_pool,
    init_services,
    close_services,
    generate_request_id
)
from researchops.api.v1 import journals, health, admin
from researchops.config import get_config
from researchops.core.errors import DualWriteError

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Startup:
    - Load configuration
    - Initialize database connection pool
    - Wire coordinator and reconciliation sweep

    Shutdown:
    - Drop services, close database connection pool
    """
    logger.info("app.startup", version=__version__)

    try:
        config = get_config()
    except ValueError as e:
        logger.error("app.startup.failed", error=str(e))
        raise RuntimeError(str(e))

    init_connection_pool(
        database_url=config.replica.database_url,
        min_size=config.replica.pool_min_size,
        max_size=config.replica.pool_max_size,
        timeout=config.replica.pool_timeout,
        statement_timeout_ms=config.replica.statement_timeout_ms
    )
    init_services(config)

    logger.info("app.ready", status="healthy", airtable=config.airtable.is_enabled())

    yield

    logger.info("app.shutdown")
    close_services()
    close_connection_pool()


app = FastAPI(
    title="ResearchOps Journals API",
    description="Journal entries dual-written to Airtable and a Postgres replica",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan
)


# Middleware: Request ID
@app.middleware("http")
async def add_request_id_middleware(request: Request, call_next):
    """Add request_id to request state for tracing."""
    request_id = generate_request_id()
    request.state.request_id = request_id

    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id

    return response


# Middleware: CORS (restrictive by default)
CORS_ORIGINS = os.getenv("CORS_ORIGINS", "").split(",")
if not CORS_ORIGINS or CORS_ORIGINS == [""]:
    CORS_ORIGINS = ["http://localhost:3000", "http://localhost:8000"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["*"],
)


def _error_response(request: Request, status_code: int, code: str, message: str, detail=None):
    request_id = getattr(request.state, "request_id", "unknown")
    error = {
        "code": code,
        "message": message,
        "request_id": request_id
    }
    if detail:
        error["detail"] = detail
    return JSONResponse(status_code=status_code, content={"error": error})


@app.exception_handler(DualWriteError)
async def dualwrite_exception_handler(request: Request, exc: DualWriteError):
    """
    Map domain errors to structured responses.

    InvalidArgument -> 400, ProjectNotFound -> 404, ReplicaWriteFailed -> 503.
    """
    request_id = getattr(request.state, "request_id", "unknown")

    log = logger.error if exc.status >= 500 else logger.warning
    log(
        "dualwrite.error",
        code=exc.code,
        error=exc.message,
        request_id=request_id,
        path=request.url.path,
        method=request.method
    )

    message = exc.message
    if exc.status >= 500:
        # Store internals stay in the logs
        message = "Journal entry could not be saved"

    return _error_response(request, exc.status, exc.code, message, exc.detail)


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """
    Global exception handler.

    No stack traces to clients. Returns structured JSON error with request_id.
    """
    request_id = getattr(request.state, "request_id", "unknown")

    logger.error(
        "unhandled_exception",
        exc_info=exc,
        request_id=request_id,
        path=request.url.path,
        method=request.method
    )

    return _error_response(
        request,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "internal_error",
        "An unexpected error occurred"
    )


# Include routers
app.include_router(health.router, tags=["health"])
app.include_router(journals.router, tags=["journals"])
app.include_router(admin.router, tags=["admin"])


# Root endpoint
@app.get("/", include_in_schema=False)
async def root():
    """Root endpoint pointer to docs."""
    return {
        "message": f"ResearchOps Journals API v{__version__}",
        "docs": "/docs",
        "health": "/healthz"
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "researchops.api.main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
        reload=os.getenv("ENV", "production") == "development",
        log_level="info"
    )
