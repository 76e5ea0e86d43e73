"""Main FastAPI application"""

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse, Response
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy import text
from pathlib import Path
import logging
import math
import time
import traceback
import uuid

from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

from authcore.config import settings
from authcore.core.clock import utcnow
from authcore.core.database import database, init_db
from authcore.core.exceptions import AccountLockedError, AuthError, BaseAPIException
from authcore.core.metrics import REQUEST_COUNT, REQUEST_LATENCY
from authcore.api.v1 import accounts, audit, auth
from authcore.schemas.response import ErrorResponse, HealthResponse

# Configure logging - ensure log directory exists
_log_dir = Path(settings.get_log_file()).parent
_log_dir.mkdir(parents=True, exist_ok=True)
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.FileHandler(settings.get_log_file()),
        logging.StreamHandler()
    ]
)

logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    debug=settings.DEBUG,
    docs_url="/api/docs" if settings.DEBUG else None,
    redoc_url="/api/redoc" if settings.DEBUG else None
)

# GZip compression for large responses
app.add_middleware(GZipMiddleware, minimum_size=500)


# Security headers + request timing middleware
@app.middleware("http")
async def add_headers_and_timing(request: Request, call_next):
    """Add security headers and log slow requests"""
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id

    start = time.time()
    response = await call_next(request)
    duration = time.time() - start

    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    response.headers["Cache-Control"] = "no-store"
    response.headers["X-Request-ID"] = request_id

    # Label by route template so path parameters do not explode cardinality.
    route = request.scope.get("route")
    path = getattr(route, "path", request.url.path)
    REQUEST_COUNT.labels(request.method, path, str(response.status_code)).inc()
    REQUEST_LATENCY.labels(request.method, path).observe(duration)

    if duration > 1.0:
        logger.warning(
            "Slow request: %s %s took %.2fs request_id=%s",
            request.method,
            request.url.path,
            duration,
            request_id,
        )

    return response


def _error_body(request: Request, message: str, code=None, details=None) -> dict:
    return ErrorResponse(
        error=message,
        code=code,
        details=details,
        path=request.url.path,
    ).model_dump()


# Exception handlers
@app.exception_handler(BaseAPIException)
async def api_exception_handler(request: Request, exc: BaseAPIException):
    """Handle custom API exceptions"""
    code = exc.code.value if isinstance(exc, AuthError) else None
    logger.warning(
        "API Exception: %s (status=%s code=%s path=%s)",
        exc.message,
        exc.status_code,
        code,
        request.url.path,
    )

    headers = {}
    if isinstance(exc, AccountLockedError):
        remaining = (exc.retry_at - utcnow()).total_seconds()
        headers["Retry-After"] = str(max(1, math.ceil(remaining)))
    elif isinstance(exc, AuthError) and exc.status_code == status.HTTP_401_UNAUTHORIZED:
        headers["WWW-Authenticate"] = "Bearer"

    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(request, exc.message, code, exc.details or None),
        headers=headers or None,
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle Pydantic validation errors"""
    errors = []
    for error in exc.errors():
        errors.append({
            "field": ".".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"]
        })

    logger.warning("Validation error on %s %s: %s", request.method, request.url.path, errors)

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=_error_body(request, "Validation failed", details={"errors": errors}),
    )


@app.exception_handler(SQLAlchemyError)
async def database_exception_handler(request: Request, exc: SQLAlchemyError):
    """Handle database errors"""
    logger.error(
        "Database error on %s %s: %s\n%s",
        request.method,
        request.url.path,
        exc,
        traceback.format_exc(),
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_error_body(request, "A database error occurred. Please try again later."),
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle all other exceptions"""
    logger.critical(
        "Unhandled exception on %s %s: %s\n%s",
        request.method,
        request.url.path,
        exc,
        traceback.format_exc(),
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_error_body(request, "An unexpected error occurred."),
    )


def ensure_admin_account() -> None:
    """Create the bootstrap admin account if it does not exist"""
    from authcore.services.account_service import account_service

    with database.session() as db:
        if account_service.get_by_email(db, settings.ADMIN_EMAIL):
            return
        account_service.create_account(
            db,
            email=settings.ADMIN_EMAIL,
            password=settings.ADMIN_PASSWORD,
            role="admin",
            is_verified=True,
        )
        logger.info("Created admin account: %s", settings.ADMIN_EMAIL)


# Startup event
@app.on_event("startup")
async def startup_event():
    """Initialize application on startup"""
    settings.validate_security_settings()
    logger.info("Starting %s v%s", settings.APP_NAME, settings.APP_VERSION)
    logger.info("Environment: %s", settings.ENVIRONMENT)

    # Open the connection pool, then check the schema
    try:
        database.init()
        init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error("Failed to initialize database: %s", e)
        raise

    try:
        ensure_admin_account()
    except Exception as e:
        logger.error("Failed to create admin account: %s", e)


# Shutdown event
@app.on_event("shutdown")
async def shutdown_event():
    """Release pooled connections on shutdown"""
    database.dispose()
    logger.info("Shutting down %s", settings.APP_NAME)


# Health check endpoint
@app.get("/health", response_model=HealthResponse)
def health_check():
    """Health check endpoint"""
    db_ok = True
    db_error = None
    try:
        with database.session() as db:
            db.execute(text("SELECT 1"))
    except Exception as exc:
        db_ok = False
        db_error = exc.__class__.__name__

    return HealthResponse(
        status="healthy" if db_ok else "degraded",
        version=settings.APP_VERSION,
        timestamp=utcnow().isoformat(),
        database={"ok": db_ok, "error": db_error, "pool": database.pool_status()},
    )


@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


# Root endpoint
@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "running",
        "docs": "/api/docs" if settings.DEBUG else "disabled"
    }


# Include routers
app.include_router(auth.router, prefix="/api/v1/auth", tags=["Authentication"])
app.include_router(audit.router, prefix="/api/v1/audit", tags=["Audit"])
app.include_router(accounts.router, prefix="/api/v1/accounts", tags=["Accounts"])


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "authcore.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        workers=1 if settings.DEBUG else settings.WORKERS
    )
