"""
FastAPI application factory and entry point.

This module creates and configures the FastAPI application:
  1. Lifespan manager — logging setup, DB table creation, cleanup
  2. CORS middleware — allows the merchant dashboard to call the API
  3. Request middleware — request id for log correlation, opaque 500s
  4. Exception handlers — maps domain errors to HTTP responses
  5. Router registration — mounts all API endpoint groups

Running locally:
    uvicorn payrail.main:app --reload
"""

import time
import uuid
from contextlib import asynccontextmanager
from pathlib import Path

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from payrail.config import settings
from payrail.database import engine, Base
from payrail.exceptions import register_exception_handlers
from payrail.logging_config import get_logger, setup_logging
from payrail.routers import (
    admin,
    auth,
    merchants,
    payments,
    transactions,
    webhooks,
    withdrawals,
)
import payrail.models  # noqa: F401  (registers every table on Base.metadata)

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup:
      Configures logging and creates all database tables if they don't
      exist. In production, schema changes should go through migrations.

    Shutdown:
      Disposes of the database engine, closing all connections cleanly.
    """
    setup_logging()

    if engine.url.get_backend_name() == "sqlite" and engine.url.database:
        Path(engine.url.database).parent.mkdir(parents=True, exist_ok=True)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("application_started", version=settings.APP_VERSION)
    yield
    await engine.dispose()
    logger.info("application_stopped")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Multi-provider payment orchestration: collections, withdrawals and reconciliation",
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_context(request: Request, call_next):
    """
    Bind a request id to every log line and turn unhandled errors into an
    opaque 500. The client only sees an error_id; the traceback is logged.
    """
    request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        request_id=request_id,
        method=request.method,
        path=request.url.path,
    )
    started = time.perf_counter()

    try:
        response = await call_next(request)
    except Exception:
        error_id = uuid.uuid4().hex
        logger.exception("unhandled_error", error_id=error_id)
        return JSONResponse(
            status_code=500,
            content={
                "detail": "Internal error",
                "error_type": "internal_error",
                "error_id": error_id,
            },
        )

    response.headers["X-Request-ID"] = request_id
    logger.info(
        "request_completed",
        status_code=response.status_code,
        duration_ms=round((time.perf_counter() - started) * 1000, 2),
    )
    return response


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------

register_exception_handlers(app)

# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------

app.include_router(auth.router, prefix="/auth", tags=["Authentication"])
app.include_router(merchants.router, prefix="/merchants", tags=["Merchants"])
app.include_router(payments.router, prefix="/payments", tags=["Payments"])
app.include_router(withdrawals.router, prefix="/withdrawals", tags=["Withdrawals"])
app.include_router(transactions.router, prefix="/transactions", tags=["Transactions"])
app.include_router(webhooks.router, prefix="/webhooks", tags=["Webhooks"])
app.include_router(admin.router, prefix="/admin", tags=["Admin"])


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------

@app.get("/health", tags=["Health"])
async def health_check():
    """Liveness check for load balancers and orchestrators."""
    return {"status": "ok", "version": settings.APP_VERSION}
