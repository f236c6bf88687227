"""
FastAPI API Service Entry Point
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import redis.asyncio as redis
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.middleware.rate_limiting import RateLimitMiddleware
from api.routes import appointments, jobs, paypal, subscriptions
from database.connection import Database
from database.repository import SqlAlchemyStore
from shared.config import get_settings
from shared.logging_config import configure_logging
from shared.notification_client import NotificationClient
from shared.paypal_client import PayPalClient
from shared.startup_validator import (
    StartupValidationError,
    validate_database_connection,
    validate_startup_config,
)

# Configure structured JSON logging on startup
configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Validate configuration and build the per-process components.

    Raises:
        StartupValidationError: If critical configuration is invalid
    """
    settings = get_settings()

    logger.info("Running API startup configuration validation...")
    try:
        await validate_startup_config(settings)
        logger.info("API startup configuration validation passed")
    except StartupValidationError as e:
        logger.critical(f"API startup blocked due to configuration errors: {e}")
        raise

    database = Database.from_settings(settings)
    app.state.database = database
    if not await validate_database_connection(database):
        logger.warning("Database unreachable at startup, /health will report degraded")
    app.state.store = SqlAlchemyStore(database)
    app.state.notifier = NotificationClient(settings)
    app.state.paypal = PayPalClient(settings)
    app.state.redis = (
        redis.from_url(settings.REDIS_URL, decode_responses=True)
        if settings.RATE_LIMIT_ENABLED
        else None
    )

    try:
        yield
    finally:
        if app.state.redis is not None:
            await app.state.redis.aclose()
        await database.dispose()
        logger.info("API shutdown complete")


app = FastAPI(
    title="Barbershop Lifecycle API",
    version="1.0.0",
    lifespan=lifespan,
)

settings = get_settings()
origins = [origin.strip() for origin in settings.CORS_ORIGINS.split(",")]

# Add rate limiting middleware FIRST (executes LAST, closest to routes)
app.add_middleware(RateLimitMiddleware)

# Add CORS middleware LAST (executes FIRST, answers preflight OPTIONS before rate limiting)
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
    max_age=86400,
)

app.include_router(appointments.router, tags=["appointments"])
app.include_router(jobs.router)
app.include_router(paypal.router, prefix="/webhook", tags=["webhooks"])
app.include_router(subscriptions.router)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Return 400 with validation error details."""
    return JSONResponse(
        status_code=400,
        content={
            "error": "invalid_request",
            "message": "Solicitud no válida",
            "details": jsonable_errors(exc),
        },
    )


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    # ctx may carry exception instances that are not JSON serializable
    return [
        {key: value for key, value in error.items() if key in ("loc", "msg", "type")}
        for error in exc.errors()
    ]


@app.get("/health")
async def health_check(request: Request) -> JSONResponse:
    """
    Health check endpoint for Docker health checks and monitoring.

    Checks:
    - PostgreSQL connectivity (SELECT 1 query)
    - Redis connectivity (PING command), when rate limiting is enabled

    Returns:
        200 OK if all systems healthy
        503 Service Unavailable if degraded
    """
    health_status = {
        "status": "healthy",
        "redis": "disabled",
        "postgres": "unknown",
    }
    status_code = 200

    redis_client = getattr(request.app.state, "redis", None)
    if redis_client is not None:
        try:
            await redis_client.ping()
            health_status["redis"] = "connected"
        except Exception:
            health_status["redis"] = "disconnected"
            health_status["status"] = "degraded"
            status_code = 503

    try:
        await request.app.state.database.ping()
        health_status["postgres"] = "connected"
    except Exception:
        health_status["postgres"] = "disconnected"
        health_status["status"] = "degraded"
        status_code = 503

    return JSONResponse(status_code=status_code, content=health_status)


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint"""
    return {"message": "Barbershop Lifecycle API - Use /health for health checks"}
