"""FastAPI main application for the class representative voting backend."""

from contextlib import asynccontextmanager
from datetime import UTC, datetime

import asyncpg
from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from classvote.api.routes import (
    auth,
    elections,
    events,
    students,
    tickets,
    transactions,
    votes,
)
from classvote.core.config import settings
from classvote.core.database import close_db_pool, init_db_pool
from classvote.core.errors import VotingError
from classvote.core.events import event_broker
from classvote.core.logging_config import get_logger, setup_logging
from classvote.core.rate_limiting import (
    InMemoryAttemptStore,
    LoginRateLimiter,
    PostgresAttemptStore,
)
from classvote.core.responses import error_response, error_response_dict, success_response
from classvote.core.token_revocation import (
    InMemoryRevokedTokenStore,
    PostgresRevokedTokenStore,
    TokenRevocationList,
)
from classvote.services.repository import pooled_repository
from classvote.services.scheduler import ElectionLifecycleScheduler

# Setup logging
setup_logging()
logger = get_logger(__name__)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Content-Security-Policy"] = (
            "default-src 'self'; frame-ancestors 'none'"
        )

        # HSTS only in production with HTTPS
        if settings.ENVIRONMENT == "production":
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains; preload"
            )

        return response


def _in_memory_auth_state(app: FastAPI) -> None:
    app.state.login_rate_limiter = LoginRateLimiter(
        InMemoryAttemptStore(),
        max_attempts=settings.LOGIN_MAX_ATTEMPTS,
        window_seconds=settings.LOGIN_WINDOW_SECONDS,
    )
    app.state.token_revocation = TokenRevocationList(InMemoryRevokedTokenStore())


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager - runs on startup and shutdown."""
    logger.info("Starting class voting backend...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")

    scheduler = None

    # Initialize async database pool (skip in test environment)
    if settings.ENVIRONMENT != "test":
        pool = await init_db_pool(settings)

        if settings.RATE_LIMIT_BACKEND == "postgres":
            app.state.login_rate_limiter = LoginRateLimiter(
                PostgresAttemptStore(pool),
                max_attempts=settings.LOGIN_MAX_ATTEMPTS,
                window_seconds=settings.LOGIN_WINDOW_SECONDS,
            )
            app.state.token_revocation = TokenRevocationList(
                PostgresRevokedTokenStore(pool)
            )
            logger.info("Login rate limiting and token revocation backed by Postgres")

        if settings.SCHEDULER_ENABLED:
            scheduler = ElectionLifecycleScheduler(
                pooled_repository,
                event_broker,
                interval_seconds=settings.SCHEDULER_INTERVAL_SECONDS,
                rate_limiter=app.state.login_rate_limiter,
                token_revocation=app.state.token_revocation,
            )
            scheduler.start()

    yield

    # Shutdown
    if scheduler:
        await scheduler.stop()
    if settings.ENVIRONMENT != "test":
        await close_db_pool()
    logger.info("Shutting down class voting backend...")


# Create FastAPI app
app = FastAPI(
    title="Class Representative Voting Backend",
    description="""
    **Class Representative Voting** - elections for a branch and section of a college

    Features:
    - Teachers create and stop elections for their cohort
    - Students request single-use voting tickets by email
    - One ballot per student, enforced by the database
    - Live tally, winners and turnout
    - Lifecycle and vote events over WebSocket (`/ws/events`)

    ## Authentication

    Include the JWT token in the Authorization header:

    ```
    Authorization: Bearer <your_jwt_token>
    ```

    ## Roles

    - **teacher**: creates, stops and watches elections
    - **student**: requests tickets and votes in their cohort's elections

    ## API Versioning

    - `/v1/*` - Version 1 (current stable)
    - `/*` - Latest version (may change)
    """,
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# Replaced in the lifespan when a shared backend is configured
_in_memory_auth_state(app)

# Add security headers middleware FIRST (before CORS)
app.add_middleware(SecurityHeadersMiddleware)

if settings.ENVIRONMENT == "development":
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )
else:
    logger.info(f"CORS allowed origins: {settings.cors_origins_list}")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "Accept", "Origin"],
    )


# Exception handlers
@app.exception_handler(VotingError)
async def voting_error_handler(request: Request, exc: VotingError):
    """Map domain errors to their HTTP status with a stable error code."""
    return error_response_dict(
        {
            "success": False,
            "message": exc.message,
            "data": None,
            "errors": {"code": exc.code},
        },
        exc.status_code,
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTP exceptions with standardized error responses."""
    if isinstance(exc.detail, dict):
        response = error_response_dict(exc.detail, exc.status_code)
    else:
        response = error_response_dict(
            {"success": False, "message": exc.detail, "data": None, "errors": None},
            exc.status_code,
        )
    if exc.headers:
        response.headers.update(exc.headers)
    return response


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle Pydantic validation errors."""
    errors = {}
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error["loc"])
        errors[field] = error["msg"]

    return error_response_dict(
        {
            "success": False,
            "message": "Validation failed",
            "data": None,
            "errors": errors,
        },
        422,
    )


@app.exception_handler(asyncpg.exceptions.PostgresError)
@app.exception_handler(OSError)
async def store_unavailable_handler(request: Request, exc: Exception):
    """The store failed or is unreachable. Nothing partial was committed."""
    logger.error(f"Database error: {exc}", exc_info=True)
    return error_response_dict(
        {
            "success": False,
            "message": "Service temporarily unavailable",
            "data": None,
            "errors": None,
        },
        503,
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected errors."""
    logger.error(f"Unexpected error: {exc}", exc_info=True)
    return error_response_dict(
        {
            "success": False,
            "message": "An unexpected error occurred",
            "data": None,
            "errors": None,
        },
        500,
    )


# Create versioned API router
v1_router = APIRouter(prefix="/v1")

v1_router.include_router(auth.router)
v1_router.include_router(elections.router)
v1_router.include_router(tickets.router)
v1_router.include_router(votes.router)
v1_router.include_router(transactions.router)
v1_router.include_router(students.router)

app.include_router(v1_router)

# Also include routers at root level (latest version)
app.include_router(auth.router)
app.include_router(elections.router)
app.include_router(tickets.router)
app.include_router(votes.router)
app.include_router(transactions.router)
app.include_router(students.router)
app.include_router(events.router)


@app.get("/health")
async def health_check():
    """
    Health check endpoint for monitoring and load balancers.

    Returns 200 if the database answers, 503 otherwise.
    """
    from classvote.core import database

    health_status = {
        "status": "healthy",
        "timestamp": datetime.now(UTC).isoformat(),
        "checks": {"api": {"status": "healthy", "message": "API is running"}},
    }

    pool = database._pool
    if pool is None:
        health_status["checks"]["database"] = {
            "status": "unavailable",
            "message": "Database pool not initialized",
        }
    else:
        try:
            async with pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
            pool_size = pool.get_size()
            pool_idle = pool.get_idle_size()
            health_status["checks"]["database"] = {
                "status": "healthy",
                "message": "Database is accessible",
                "pool": {
                    "size": pool_size,
                    "max": pool.get_max_size(),
                    "idle": pool_idle,
                    "active": pool_size - pool_idle,
                },
            }
        except (asyncpg.PostgresError, OSError) as e:
            health_status["status"] = "unhealthy"
            health_status["checks"]["database"] = {
                "status": "unhealthy",
                "message": f"Database check failed: {e!s}",
            }
            return error_response(
                message="Health check failed", data=health_status, status_code=503
            )

    health_status["checks"]["scheduler"] = {
        "status": "enabled" if settings.SCHEDULER_ENABLED else "disabled",
        "subscribers": event_broker.subscriber_count,
    }
    return success_response(data=health_status)
