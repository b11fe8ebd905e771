import logging
import uuid
from contextlib import asynccontextmanager

import structlog
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from jbs.api.auth import router as auth_router
from jbs.api.dashboard import router as dashboard_router
from jbs.api.users import router as users_router
from jbs.core.config import APP_VERSION, INSECURE_SECRET_DEFAULTS, settings
from jbs.core.errors import register_exception_handlers
from jbs.core.logging import setup_logging
from jbs.core.middleware import ErrorResponseMiddleware, RequestValidationMiddleware
from jbs.db.session import engine, get_db
from jbs.services.geoip import geoip_service

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application startup and shutdown."""
    # Setup structured logging first
    setup_logging()

    # Reject insecure secret defaults in production
    if not settings.DEBUG:
        critical_failures = []

        if settings.JWT_SECRET_KEY.lower() in INSECURE_SECRET_DEFAULTS:
            critical_failures.append(
                "JWT_SECRET_KEY is using insecure default in production. "
                "Set a secure secret via environment variable: "
                "JWT_SECRET_KEY=$(openssl rand -base64 32)"
            )

        if critical_failures:
            raise RuntimeError(
                "CRITICAL SECURITY CONFIGURATION ERROR:\n" + "\n".join(f"  - {msg}" for msg in critical_failures)
            )

    if not geoip_service.is_database_available():
        logger.info("GeoIP database not found, login events will be stored without location")

    yield

    # Shutdown
    geoip_service.close()
    await engine.dispose()


app = FastAPI(
    title=settings.APP_NAME,
    version=APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
    redirect_slashes=False,
)

register_exception_handlers(app)


# Request ID middleware (add first for request tracking)
@app.middleware("http")
async def add_request_id(request: Request, call_next):
    """Add unique request ID for tracking and debugging."""
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id

    # Bind request_id to all log entries during this request
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id)
    try:
        response = await call_next(request)
    finally:
        structlog.contextvars.clear_contextvars()

    response.headers["X-Request-ID"] = request_id
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in settings.ALLOWED_ORIGINS.split(",")],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Security headers middleware
@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    """Add OWASP-recommended security headers to all responses."""
    response = await call_next(request)

    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    response.headers["Cache-Control"] = "no-store"

    # Only enable HSTS in production with HTTPS
    if not settings.DEBUG:
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

    return response


app.add_middleware(RequestValidationMiddleware, max_request_size=1024 * 1024)

# Error response middleware (add last to catch all errors)
app.add_middleware(ErrorResponseMiddleware)


@app.get("/health")
async def health_check(db: AsyncSession = Depends(get_db)):
    """Health check endpoint for container orchestration.

    Returns 200 if the database is reachable, 503 otherwise.
    """
    checks = {
        "status": "healthy",
        "database": False,
        "geoip": geoip_service.is_database_available(),
    }

    try:
        await db.execute(text("SELECT 1"))
        checks["database"] = True
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}")
        checks["status"] = "unhealthy"

    status_code = 200 if checks["database"] else 503
    return JSONResponse(content=checks, status_code=status_code)


# Include routers with /api prefix
app.include_router(auth_router, prefix="/api")
app.include_router(users_router, prefix="/api")
app.include_router(dashboard_router, prefix="/api")
