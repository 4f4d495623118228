"""
TartanTrips Backend - FastAPI Application

Main application entry point with middleware, routers, and exception
handlers.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError
from redis.exceptions import RedisError

from tartantrips.config import settings
from tartantrips.database import init_db, close_db, get_db, get_redis
from tartantrips.exceptions import TartanTripsError
from tartantrips.logging_config import setup_logging
from tartantrips.middleware.rate_limit import RateLimitMiddleware
from tartantrips.routers import (
    trips,
    match_requests,
    trip_status,
    match_notifications,
)


setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    Handles startup and shutdown events:
    - Initialize database connections and indexes
    - Verify MongoDB and Redis are reachable
    - Cleanup on shutdown
    """
    await init_db()

    logger.info("=" * 50)
    logger.info("TARTANTRIPS BACKEND STARTUP")
    logger.info("=" * 50)

    try:
        await get_db().client.admin.command("ping")
        logger.info("Connected to db")
    except PyMongoError as e:
        logger.error(f"FAILED to connect to db: {e}")

    try:
        await get_redis().ping()
        logger.info("Redis connected")
    except RedisError as e:
        logger.error(f"FAILED to connect to Redis: {e}")

    if not settings.resend_api_key:
        logger.warning("RESEND_API_KEY not set; new-match emails will not be sent")

    yield

    await close_db()


# =============================================================================
# FastAPI Application
# =============================================================================

app = FastAPI(
    title=f"{settings.app_name} API",
    description="""
    TartanTrips - Airport Rideshare Matching for CMU Students

    ## Features
    - Trips to and from Pittsburgh International Airport
    - Compatibility by date, time window and partner preference
    - Request / accept / deny / withdraw / remove match protocol
    - Group joins approved by every confirmed partner
    - Email alerts for newly compatible trips

    ## Authentication
    All endpoints under /api require a valid Firebase ID token in the
    Authorization header: `Authorization: Bearer <firebase_id_token>`
    """,
    version="1.0.0",
    debug=settings.debug,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)


# =============================================================================
# Middleware
# =============================================================================

# CORS Middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Rate Limiting Middleware
app.add_middleware(RateLimitMiddleware)


# =============================================================================
# Exception Handlers
# =============================================================================


@app.exception_handler(TartanTripsError)
async def tartantrips_exception_handler(request: Request, exc: TartanTripsError):
    """Domain errors render as {"error": message} with their status category."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Malformed bodies are a 400, like every other validation failure."""
    errors = exc.errors()
    if errors:
        location = ".".join(str(part) for part in errors[0].get("loc", ()) if part != "body")
        message = f"{location}: {errors[0].get('msg')}" if location else errors[0].get("msg")
    else:
        message = "Invalid request"
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": message},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """
    Global exception handler for unhandled errors.

    SECURITY: Do not leak internal error details.
    """
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Something went wrong. Please try again."},
    )


# =============================================================================
# Routers
# =============================================================================

# Trip routes
app.include_router(trips.router, prefix="/api/trips", tags=["Trips"])

# Match protocol routes
app.include_router(match_requests.router, prefix="/api", tags=["Matches"])

# Status sync routes
app.include_router(trip_status.router, prefix="/api", tags=["Matches"])

# New-match notification routes
app.include_router(match_notifications.router, prefix="/api", tags=["Notifications"])


# =============================================================================
# Health Check
# =============================================================================


@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint for load balancers and monitoring."""
    return {"status": "healthy", "version": "1.0.0"}


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint with API information."""
    return {
        "name": f"{settings.app_name} API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
    }
