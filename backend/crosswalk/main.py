"""Main FastAPI application."""

import time
import uuid
from contextlib import asynccontextmanager
from urllib.parse import urlparse

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
import structlog

from crosswalk.api.routes import (
    comparison,
    coverage,
    frameworks,
    gaps,
    graph,
    health,
    mappings,
)
from crosswalk.core.cache import close_cache, init_cache
from crosswalk.core.config import get_settings
from crosswalk.core.database import dispose_engine
from crosswalk.core.exceptions import UpstreamUnavailable, ValidationError
from crosswalk.middleware.request_id import RequestIDMiddleware

settings = get_settings()
logger = structlog.get_logger()


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log method, path, status and duration of every request."""

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        response = await call_next(request)

        log_data = {
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "duration_ms": round((time.time() - start_time) * 1000, 2),
        }
        if response.status_code >= 400:
            logger.warning("http_request", **log_data)
        else:
            logger.info("http_request", **log_data)
        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger.info("starting_application", environment=settings.environment)

    try:
        await init_cache(settings)
    except Exception as e:
        logger.warning("cache_init_failed", error=str(e))

    yield

    logger.info("shutting_down_application")
    await close_cache()
    try:
        await dispose_engine()
    except Exception as e:
        logger.warning("database_dispose_failed", error=str(e))


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Cross-framework compliance mapping and gap analysis",
    lifespan=lifespan,
)


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or str(uuid.uuid4())


@app.exception_handler(ValidationError)
async def validation_exception_handler(request: Request, exc: ValidationError):
    """Rejected requests: bad ids, counts or arguments."""
    logger.info(
        "request_rejected",
        path=request.url.path,
        field=exc.field,
        error=exc.message,
    )
    return JSONResponse(
        status_code=422,
        content={"detail": exc.message, "field": exc.field},
    )


@app.exception_handler(UpstreamUnavailable)
async def upstream_exception_handler(request: Request, exc: UpstreamUnavailable):
    """A collaborator read failed; distinct from an empty result."""
    request_id = _request_id(request)
    logger.error(
        "upstream_unavailable",
        request_id=request_id,
        path=request.url.path,
        operation=exc.operation,
    )
    return JSONResponse(
        status_code=503,
        content={
            "detail": "A data source is temporarily unavailable. Please retry.",
            "operation": exc.operation,
            "request_id": request_id,
        },
        headers={"X-Request-ID": request_id},
    )


# Catches unhandled exceptions and returns a generic error while logging
# full details server-side
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Catch unhandled exceptions and return generic error."""
    request_id = _request_id(request)

    logger.error(
        "unhandled_exception",
        request_id=request_id,
        path=request.url.path,
        method=request.method,
        error_type=type(exc).__name__,
        error=str(exc),
        exc_info=True,
    )

    return JSONResponse(
        status_code=500,
        content={
            "detail": "An internal error occurred. Please try again later.",
            "request_id": request_id,
        },
        headers={"X-Request-ID": request_id},
    )


def validate_cors_origins(origins: list[str], environment: str) -> list[str]:
    """Drop wildcard, malformed and (outside development) plain-http origins."""
    validated = []
    for origin in origins:
        if "*" in origin:
            logger.error("cors_wildcard_rejected", origin=origin)
            continue

        parsed = urlparse(origin)
        if not parsed.scheme or not parsed.netloc:
            logger.error("cors_invalid_origin", origin=origin)
            continue

        is_localhost = parsed.netloc.startswith(("localhost", "127.0.0.1"))
        if (
            environment not in ("development", "test")
            and parsed.scheme != "https"
            and not is_localhost
        ):
            logger.error(
                "cors_insecure_origin", origin=origin, environment=environment
            )
            continue

        validated.append(origin)

    if not validated:
        logger.warning("cors_no_valid_origins")
    return validated


cors_origins = validate_cors_origins(
    [o.strip() for o in settings.cors_origins.split(",") if o.strip()],
    settings.environment,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=[
        "Content-Type",
        "Authorization",
        "X-Request-ID",
        "X-Organization-ID",
        "Accept",
    ],
    expose_headers=["X-Request-ID"],
)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(RequestIDMiddleware)

app.include_router(health.router, prefix="/api/v1", tags=["Health"])
app.include_router(frameworks.router, prefix="/api/v1", tags=["Frameworks"])
app.include_router(coverage.router, prefix="/api/v1", tags=["Coverage"])
app.include_router(gaps.router, prefix="/api/v1", tags=["Gaps"])
app.include_router(comparison.router, prefix="/api/v1", tags=["Gap Analysis"])
app.include_router(graph.router, prefix="/api/v1", tags=["Graphs"])
app.include_router(mappings.router, prefix="/api/v1", tags=["Mappings"])


@app.get("/")
async def root():
    """Service banner."""
    return {"name": settings.app_name, "version": settings.app_version}
