"""FastAPI application entry point"""
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from prometheus_fastapi_instrumentator import Instrumentator

from app.api import admin, auth, health
from app.config import settings
from app.errors import AuthError, AuthErrorKind, TokenErrorKind
from app.middleware.monitoring import record_auth_failure
from app.middleware.rate_limit import limiter
from app.utils.logger import logger, setup_logging

# Setup logging
setup_logging(settings.LOG_LEVEL, settings.LOG_FORMAT)

VERSION = "0.1.0"

# Every failure kind the auth core can raise, and the status it maps to
ERROR_STATUS = {
    TokenErrorKind.MALFORMED: 401,
    TokenErrorKind.SIGNATURE_INVALID: 401,
    TokenErrorKind.EXPIRED: 401,
    TokenErrorKind.NOT_FOUND: 401,
    TokenErrorKind.REVOKED: 401,
    TokenErrorKind.ACCOUNT_INACTIVE: 401,
    TokenErrorKind.STORAGE_UNAVAILABLE: 503,
    AuthErrorKind.AUTHENTICATION_REQUIRED: 401,
    AuthErrorKind.INVALID_CREDENTIALS: 401,
    AuthErrorKind.ACCOUNT_LOCKED: 401,
    AuthErrorKind.ACCOUNT_INACTIVE: 401,
    AuthErrorKind.EMAIL_NOT_VERIFIED: 401,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler"""
    # Startup
    logger.info("ReWear auth backend starting up", extra={
        "version": VERSION,
        "log_level": settings.LOG_LEVEL,
        "rate_limiting": settings.RATE_LIMIT_ENABLED,
        "monitoring": settings.METRICS_ENABLED
    })
    if settings.JWT_SECRET_KEY == "rewear-secret-key-change-in-production":
        logger.warning("JWT_SECRET_KEY is the built-in default; set it in .env before deploying")
    yield
    # Shutdown
    logger.info("ReWear auth backend shutting down")


# Create FastAPI app
app = FastAPI(
    title="ReWear Auth",
    description="Access/refresh token sessions for the ReWear marketplace",
    version=VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# ===== Middleware Setup =====

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Monitoring middleware
if settings.METRICS_ENABLED:
    from app.middleware.monitoring import MonitoringMiddleware
    app.add_middleware(MonitoringMiddleware)

    # Prometheus metrics
    instrumentator = Instrumentator(
        should_group_status_codes=True,
        should_ignore_untemplated=True,
        should_respect_env_var=False,
        should_instrument_requests_inprogress=True,
        excluded_handlers=["/metrics", "/health", "/health/ready", "/health/live"],
        inprogress_name="rewear_requests_inprogress",
        inprogress_labels=True
    )
    instrumentator.instrument(app)
    instrumentator.expose(app, endpoint=settings.METRICS_PATH, include_in_schema=False)

# Rate limiting (decorated routes need the limiter on app.state even when disabled)
app.state.limiter = limiter


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    """Handle rate limit exceeded errors"""
    logger.warning(
        "Rate limit exceeded",
        extra={
            "path": request.url.path,
            "method": request.method,
            "client": request.client.host if request.client else "unknown"
        }
    )
    return JSONResponse(
        status_code=429,
        content={
            "error": "rate_limit_exceeded",
            "message": "Too many requests. Please try again later.",
            "detail": str(exc.detail)
        }
    )

# ===== Route Setup =====

# Include routers
app.include_router(health.router)
app.include_router(auth.router)
app.include_router(admin.router)


@app.get("/")
def root():
    """Root endpoint"""
    return {
        "service": "ReWear Auth",
        "version": VERSION,
        "status": "operational",
        "docs": "/docs",
        "health": "/health",
        "metrics": settings.METRICS_PATH if settings.METRICS_ENABLED else None
    }


# ===== Error Handlers =====

@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError):
    """Translate a typed auth failure into its HTTP response"""
    status_code = ERROR_STATUS[exc.kind]
    record_auth_failure(exc.kind.value)

    log = logger.error if status_code >= 500 else logger.info
    log(
        f"Auth failure on {request.method} {request.url.path}: {exc.message}",
        extra={
            "error_kind": exc.kind.value,
            "request_id": getattr(request.state, "request_id", None),
        },
    )

    headers = {"WWW-Authenticate": "Bearer"} if status_code == 401 else None
    return JSONResponse(
        status_code=status_code,
        content={"error": exc.kind.value, "message": exc.message},
        headers=headers,
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler for uncaught errors"""
    logger.error(
        f"Unhandled exception: {str(exc)}",
        extra={
            "path": request.url.path,
            "method": request.method
        },
        exc_info=True
    )
    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_server_error",
            "message": "An unexpected error occurred. Please contact support."
        }
    )
