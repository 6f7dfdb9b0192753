"""Main FastAPI application"""

import logging
import time
import traceback
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy.exc import SQLAlchemyError

from authcore.api.errors import headers_for, status_for
from authcore.api.v1 import auth
from authcore.config import Settings, get_settings
from authcore.core.exceptions import AuthError, BaseAPIException
from authcore.core.metrics import REQUEST_COUNT, REQUEST_LATENCY
from authcore.core.security import utcnow
from authcore.repositories import CredentialStore, build_credential_store
from authcore.services.auth_service import AuthService
from authcore.services.rate_limiter import InMemoryRateLimiter
from authcore.services.token_janitor import TokenJanitor

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    """Stream logs to stderr, and to LOG_FILE when set

    basicConfig is a no-op once the root logger has handlers (uvicorn, pytest);
    the package logger level is set directly in either case.
    """
    level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
    handlers = [logging.StreamHandler()]
    if settings.LOG_FILE:
        Path(settings.LOG_FILE).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(settings.LOG_FILE))
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=handlers,
    )
    logging.getLogger("authcore").setLevel(level)


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def _error_body(request: Request, error: str, code: Optional[str] = None, details: Optional[dict] = None) -> dict:
    return {
        "success": False,
        "error": error,
        "code": code,
        "details": details or {},
        "path": request.url.path,
        "timestamp": _timestamp(),
    }


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[CredentialStore] = None,
    clock: Callable[[], datetime] = utcnow,
) -> FastAPI:
    """
    Build the application

    Misconfiguration (missing or weak signing secret in production) raises
    ConfigError here, before the server accepts requests.
    """
    settings = settings or get_settings()
    configure_logging(settings)
    settings.validate_security_settings()

    store = store if store is not None else build_credential_store(settings, clock=clock)
    auth_service = AuthService(store, settings, clock=clock)
    janitor = TokenJanitor(auth_service, settings.TOKEN_CLEANUP_INTERVAL_SECONDS)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
        logger.info(f"Environment: {settings.ENVIRONMENT}, store driver: {settings.STORE_DRIVER}")
        if settings.ADMIN_EMAIL and settings.ADMIN_PASSWORD:
            await auth_service.bootstrap_admin(settings.ADMIN_EMAIL, settings.ADMIN_PASSWORD)
        janitor.start()
        yield
        await janitor.stop()
        logger.info(f"Shutting down {settings.APP_NAME}")

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        debug=settings.DEBUG,
        docs_url="/api/docs" if settings.DEBUG else None,
        redoc_url="/api/redoc" if settings.DEBUG else None,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.auth_service = auth_service
    app.state.rate_limiter = InMemoryRateLimiter()
    app.state.token_janitor = janitor

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", settings.CSRF_HEADER_NAME],
    )

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

        REQUEST_COUNT.labels(request.method, request.url.path, str(response.status_code)).inc()
        REQUEST_LATENCY.labels(request.method, request.url.path).observe(duration)

        if duration > 1.0:
            logger.warning(
                "Slow request: %s %s took %.2fs request_id=%s",
                request.method,
                request.url.path,
                duration,
                request_id,
            )

        return response

    # Exception handlers
    @app.exception_handler(AuthError)
    async def auth_exception_handler(request: Request, exc: AuthError):
        """Map tagged auth errors to fixed status codes"""
        status_code = status_for(exc)
        logger.info(
            f"Auth error: {exc.kind.value}",
            extra={"status_code": status_code, "path": request.url.path, "method": request.method},
        )
        return JSONResponse(
            status_code=status_code,
            content=_error_body(request, exc.message, exc.kind.value, exc.details),
            headers=headers_for(exc),
        )

    @app.exception_handler(BaseAPIException)
    async def api_exception_handler(request: Request, exc: BaseAPIException):
        """Handle custom API exceptions"""
        logger.warning(
            f"API Exception: {exc.message}",
            extra={
                "status_code": exc.status_code,
                "details": exc.details,
                "path": request.url.path,
                "method": request.method
            }
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(request, exc.message, details=exc.details),
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

        logger.warning(
            f"Validation error: {errors}",
            extra={"path": request.url.path, "method": request.method}
        )
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=_error_body(request, "Validation failed", details={"errors": errors}),
        )

    @app.exception_handler(SQLAlchemyError)
    async def database_exception_handler(request: Request, exc: SQLAlchemyError):
        """Handle database errors"""
        logger.error(
            f"Database error: {str(exc)}",
            extra={
                "path": request.url.path,
                "method": request.method,
                "traceback": traceback.format_exc()
            }
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=_error_body(request, "A database error occurred. Please try again later."),
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle all other exceptions"""
        logger.critical(
            f"Unhandled exception: {str(exc)}",
            extra={
                "path": request.url.path,
                "method": request.method,
                "traceback": traceback.format_exc()
            }
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=_error_body(request, "An unexpected error occurred."),
        )

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        store_ok = await auth_service.store.ping()
        return {
            "status": "healthy" if store_ok else "degraded",
            "version": settings.APP_VERSION,
            "timestamp": _timestamp(),
            "store": {"driver": settings.STORE_DRIVER, "ok": store_ok},
            "janitor": janitor.status(),
        }

    @app.get("/metrics")
    async def metrics():
        """Prometheus metrics endpoint."""
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.get("/")
    async def root():
        """Root endpoint"""
        return {
            "name": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "status": "running",
            "docs": "/api/docs" if settings.DEBUG else "disabled"
        }

    app.include_router(auth.router, prefix="/api/v1/auth", tags=["Authentication"])
    return app


if __name__ == "__main__":
    import uvicorn

    _settings = get_settings()
    uvicorn.run(
        "authcore.main:create_app",
        factory=True,
        host=_settings.HOST,
        port=_settings.PORT,
        reload=_settings.DEBUG,
    )
