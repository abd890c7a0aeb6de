"""FastAPI application entry point."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from sqlalchemy.exc import IntegrityError
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from teamhub.api import router as api_router
from teamhub.config import get_settings
from teamhub.db.session import close_db, init_db
from teamhub.exceptions import ConstraintViolation, PolicyDenied, TeamHubError, translate_integrity_error
from teamhub.logging_config import configure_logging
from teamhub.middleware.logging import LoggingMiddleware
from teamhub.middleware.request_id import RequestIDMiddleware

logger = structlog.get_logger()
settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager for startup/shutdown events."""
    configure_logging(settings)
    logger.info("Starting TeamHub API", version=settings.app_version)
    await init_db()
    logger.info("Database connection initialized")

    yield

    logger.info("Shutting down TeamHub API")
    await close_db()
    logger.info("Database connection closed")


def _error_response(status_code: int, exc: TeamHubError) -> ORJSONResponse:
    return ORJSONResponse(
        status_code=status_code,
        content={"detail": exc.message, "code": exc.code},
    )


async def policy_denied_handler(request: Request, exc: PolicyDenied) -> ORJSONResponse:
    return _error_response(status.HTTP_403_FORBIDDEN, exc)


async def constraint_violation_handler(
    request: Request, exc: ConstraintViolation
) -> ORJSONResponse:
    logger.info("constraint_violation", constraint=exc.constraint)
    return _error_response(status.HTTP_409_CONFLICT, exc)


async def integrity_error_handler(request: Request, exc: IntegrityError) -> ORJSONResponse:
    return await constraint_violation_handler(request, translate_integrity_error(exc))


def register_exception_handlers(app: FastAPI) -> None:
    """Render domain errors as JSON with a stable ``code``."""
    app.add_exception_handler(PolicyDenied, policy_denied_handler)
    app.add_exception_handler(ConstraintViolation, constraint_violation_handler)
    app.add_exception_handler(IntegrityError, integrity_error_handler)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Team and task collaboration backend with row-level access control",
        openapi_url=f"{settings.api_prefix}/openapi.json",
        docs_url=f"{settings.api_prefix}/docs",
        redoc_url=f"{settings.api_prefix}/redoc",
        default_response_class=ORJSONResponse,
        lifespan=lifespan,
    )

    # Add middleware (order matters - last added is first executed)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)
    # Trust proxy headers (X-Forwarded-Proto, X-Forwarded-For) from the reverse proxy
    app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=["*"])

    register_exception_handlers(app)

    # Include API router
    app.include_router(api_router, prefix=settings.api_prefix)

    return app


app = create_app()


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint for load balancers."""
    return {"status": "healthy", "version": settings.app_version}
