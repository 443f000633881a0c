"""
FastAPI backend for the YouTube to MP3 converter
"""

import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import httpx
import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.datastructures import Headers
from starlette.types import ASGIApp, Message, Receive, Scope, Send

# Configure structured logging
structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer()
    ],
    wrapper_class=structlog.make_filtering_bound_logger(logging.INFO),
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(),
    cache_logger_on_first_use=False,
)

logger = structlog.get_logger()

from mp3relay import __version__
from mp3relay.auth import SessionRegistry
from mp3relay.config import settings
from mp3relay.errors import RelayError
from mp3relay.schemas import HealthResponse
from mp3relay.services.resolver_client import get_resolver_client
from mp3relay.services.temp_store import TempFileStore
from mp3relay.services.transcoder import Transcoder
from mp3relay.throttle import RequestThrottle
from mp3relay.workers.sweep_worker import SweepWorker

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "SAMEORIGIN",
    "Referrer-Policy": "no-referrer",
    "Content-Security-Policy": (
        "default-src 'self'; script-src 'self' 'unsafe-inline'; "
        "style-src 'self' 'unsafe-inline'; img-src 'self' data:"
    ),
}


class BodySizeLimitMiddleware:
    """
    Refuse request bodies larger than max_body_bytes with 413.

    The declared Content-Length is checked up front; chunked bodies are
    counted as they are received. Once the limit is crossed the client gets
    the 413, the application sees a disconnect and anything it still sends
    is dropped.
    """

    def __init__(self, app: ASGIApp, max_body_bytes: int):
        self.app = app
        self.max_body_bytes = max_body_bytes

    def _too_large_response(self) -> JSONResponse:
        return JSONResponse(
            status_code=413,
            content={"error": "Request body too large"},
            headers=SECURITY_HEADERS,
        )

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = Headers(scope=scope)
        content_length = headers.get("content-length", "")
        if content_length.isdigit() and int(content_length) > self.max_body_bytes:
            logger.warning("request_body_too_large", path=scope.get("path"), declared_bytes=int(content_length))
            await self._too_large_response()(scope, receive, send)
            return

        received = 0
        refused = False

        async def limited_receive() -> Message:
            nonlocal received, refused
            if refused:
                return {"type": "http.disconnect"}
            message = await receive()
            if message["type"] == "http.request":
                received += len(message.get("body", b""))
                if received > self.max_body_bytes:
                    refused = True
                    logger.warning("request_body_too_large", path=scope.get("path"), received_bytes=received)
                    await self._too_large_response()(scope, receive, send)
                    return {"type": "http.disconnect"}
            return message

        async def guarded_send(message: Message) -> None:
            if not refused:
                await send(message)

        await self.app(scope, limited_receive, guarded_send)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    logger.info("application_startup", message="Converter starting up")

    # Validate configuration
    try:
        settings.validate()
        logger.info("config_validated", message="Configuration validated successfully")
    except ValueError as e:
        logger.error("config_validation_failed", error=str(e))
        raise

    if settings.AUTH_ENABLED and not settings.APP_PASSWORD:
        logger.warning(
            "auth_disabled_no_password",
            message="AUTH_ENABLED is true but APP_PASSWORD is empty - endpoints are open",
        )

    temp_store = TempFileStore(settings.TEMP_DIR, max_age_seconds=settings.TEMP_FILE_MAX_AGE_SECONDS)
    await temp_store.ensure_directory()

    http_client = httpx.AsyncClient(timeout=settings.RESOLVER_TIMEOUT_SECONDS, follow_redirects=False)

    app.state.temp_store = temp_store
    app.state.http_client = http_client
    app.state.resolver = get_resolver_client(settings, http_client)
    app.state.transcoder = Transcoder(ffmpeg_path=settings.FFMPEG_PATH)
    app.state.sessions = SessionRegistry(settings.APP_PASSWORD, ttl_seconds=settings.SESSION_TTL_SECONDS)
    app.state.convert_throttle = RequestThrottle(
        settings.CONVERT_RATE_LIMIT, settings.CONVERT_RATE_WINDOW_SECONDS, name="convert"
    )
    app.state.api_throttle = RequestThrottle(
        settings.API_RATE_LIMIT, settings.API_RATE_WINDOW_SECONDS, name="api"
    )

    # First sweep runs right away, then every SWEEP_INTERVAL_SECONDS
    sweep_worker = SweepWorker(temp_store, interval_seconds=settings.SWEEP_INTERVAL_SECONDS)
    app.state.sweep_worker = sweep_worker
    await sweep_worker.start()

    logger.info(
        "application_ready",
        auth_required=settings.auth_required,
        resolver_backend=settings.RESOLVER_BACKEND,
        temp_dir=settings.TEMP_DIR,
    )

    yield

    logger.info("application_shutdown", message="Converter shutting down")
    await sweep_worker.stop()
    await temp_store.sweep()
    await app.state.resolver.aclose()
    await http_client.aclose()


# Initialize FastAPI app
app = FastAPI(
    title="YouTube to MP3 Converter API",
    description="Personal-use service that relays YouTube audio as MP3 downloads",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition", "Content-Length"],
)


# Security headers middleware
@app.middleware("http")
async def security_middleware(request: Request, call_next):
    """Add security headers to every response"""
    response = await call_next(request)
    for header, value in SECURITY_HEADERS.items():
        response.headers.setdefault(header, value)
    return response


# Request logging middleware
@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all incoming requests"""
    start_time = time.time()

    # Log request
    logger.info(
        "request_started",
        method=request.method,
        path=request.url.path,
        client_host=request.client.host if request.client else None
    )

    try:
        response = await call_next(request)
        process_time = time.time() - start_time

        # Log response
        logger.info(
            "request_completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            process_time=f"{process_time:.3f}s"
        )

        return response
    except Exception as e:
        process_time = time.time() - start_time
        logger.error(
            "request_failed",
            method=request.method,
            path=request.url.path,
            error=str(e),
            process_time=f"{process_time:.3f}s"
        )
        raise


# Registered last so it wraps every other middleware
app.add_middleware(BodySizeLimitMiddleware, max_body_bytes=settings.MAX_REQUEST_BODY_BYTES)


@app.exception_handler(RelayError)
async def relay_error_handler(request: Request, exc: RelayError):
    """Turn service errors into short JSON messages; details stay in the log"""
    exc.log_error(path=request.url.path, method=request.method)
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
        headers=exc.headers,
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    # Field inputs may hold the password; log location and type only
    errors = [{"loc": error.get("loc"), "type": error.get("type")} for error in exc.errors()]
    logger.warning("request_validation_failed", path=request.url.path, errors=errors)
    return JSONResponse(status_code=400, content={"error": "Invalid request"})


# Global error handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle all unhandled exceptions"""
    logger.error(
        "unhandled_exception",
        path=request.url.path,
        method=request.method,
        error=str(exc),
        exc_type=type(exc).__name__
    )

    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error"}
    )


# Health check endpoints
@app.get("/health", response_model=HealthResponse, tags=["Health"])
@app.get("/api/health", response_model=HealthResponse, tags=["Health"])
async def health_check():
    """
    Liveness probe. Never authenticated, never throttled.
    """
    return HealthResponse(status="ok", timestamp=datetime.now(timezone.utc).isoformat())


# Include routers
from mp3relay.routers import auth as auth_router
from mp3relay.routers import converter

app.include_router(auth_router.router)
app.include_router(converter.router)


# Root endpoint
@app.get("/", tags=["Root"])
async def root():
    """Root endpoint with API information"""
    return {
        "message": "YouTube to MP3 Converter API",
        "version": __version__,
        "docs": "/docs",
        "health": "/health",
        "auth_required": settings.auth_required,
        "endpoints": {
            "auth": "/api/auth",
            "info": "/api/info?url=",
            "convert": "/api/convert?url=&quality=",
        }
    }


def run():
    """Console entry point"""
    import uvicorn
    uvicorn.run(
        "mp3relay.main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=settings.DEBUG,
        log_level="info"
    )


if __name__ == "__main__":
    run()
