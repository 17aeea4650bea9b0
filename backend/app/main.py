"""Taakl Backend API - FastAPI application."""

import sqlite3
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from taakl.types import StorageError, ValidationError

from .config import get_settings
from .database import Database, close_storage
from .logging_config import configure_logging, get_logger
from .rate_limit import limiter
from .routes import auth_router, settings_router, sync_router

API_NAME = "Taakl API"
API_VERSION = "2.0.0"

logger = get_logger("taakl.api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    settings = get_settings()
    configure_logging(settings.debug)
    logger.info(f"Starting {API_NAME} (debug={settings.debug})")
    yield
    # Shutdown
    close_storage()
    logger.info(f"Shutting down {API_NAME}")


app = FastAPI(
    title=API_NAME,
    description="Sync server for the Taakl time-tracking tree",
    version=API_VERSION,
    lifespan=lifespan,
)

# Rate limiting
app.state.limiter = limiter

# CORS middleware
settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_origins != ["*"],
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=86400,
)

# Include routers
app.include_router(auth_router)
app.include_router(sync_router)
app.include_router(settings_router)


# =============================================================================
# Error envelope
# =============================================================================


def _error(message: str, status_code: int, headers: dict | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": message},
        headers=headers,
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return _error(str(exc.detail), exc.status_code, getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Report missing fields by name, otherwise the first validation message."""
    errors = exc.errors()
    missing = [str(err["loc"][-1]) for err in errors if err.get("type") == "missing"]
    if missing:
        message = f"Missing required fields: {', '.join(missing)}"
    elif errors:
        message = str(errors[0].get("msg", "Invalid request"))
        message = message.removeprefix("Value error, ")
    else:
        message = "Invalid request"
    return _error(message, status.HTTP_400_BAD_REQUEST)


@app.exception_handler(ValidationError)
async def snapshot_validation_handler(request: Request, exc: ValidationError):
    return _error(str(exc), status.HTTP_400_BAD_REQUEST)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return _error(f"Rate limit exceeded: {exc.detail}", status.HTTP_429_TOO_MANY_REQUESTS)


@app.exception_handler(sqlite3.Error)
async def database_error_handler(request: Request, exc: sqlite3.Error):
    logger.error(f"Database error on {request.method} {request.url.path}: {exc}")
    return _error("Database error", status.HTTP_500_INTERNAL_SERVER_ERROR)


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError):
    logger.error(f"Storage error on {request.method} {request.url.path}: {exc}")
    return _error("Database error", status.HTTP_500_INTERNAL_SERVER_ERROR)


@app.exception_handler(Exception)
async def server_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return _error("Server error", status.HTTP_500_INTERNAL_SERVER_ERROR)


# =============================================================================
# Service endpoints
# =============================================================================


@app.get("/")
async def root():
    """API info."""
    return {
        "success": True,
        "name": API_NAME,
        "version": API_VERSION,
        "endpoints": {
            "POST /api/register": "Register a new user",
            "POST /api/login": "Login with username/password",
            "POST /api/logout": "Logout (invalidate token)",
            "GET /api/me": "Get current user info",
            "POST /api/sync": "Incremental sync",
            "POST /api/sync/full": "Upload full data",
            "GET /api/sync/full": "Download full data",
            "GET /api/settings": "Get user settings",
            "PUT /api/settings": "Update user settings",
        },
    }


@app.get("/health")
async def health(db: Database):
    """Health check with an actual database query."""
    db_status = "disconnected"
    try:
        db_status = "connected" if db.ping() else "disconnected"
    except (sqlite3.Error, StorageError) as e:
        db_status = f"error: {str(e)[:50]}"

    overall_status = "healthy" if db_status == "connected" else "degraded"
    return {
        "success": True,
        "status": overall_status,
        "database": db_status,
    }
