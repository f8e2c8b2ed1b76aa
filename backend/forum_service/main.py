"""
Forum Service Backend Application.

FastAPI application serving the discussion forum: categories, threads,
replies, likes, moderation, search and statistics.
"""

import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from forum_service.api import router as api_router
from forum_service.core.config import settings
from forum_service.core.database import close_db, init_db
from forum_service.core.exceptions import ForumError, InternalError
from forum_service.core.security import AuthenticationRequired


def configure_logging() -> None:
    """Route loguru output to stderr at the configured level."""
    logger.remove()
    logger.add(sys.stderr, level=settings.log_level.upper())


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    configure_logging()
    logger.info("Starting Forum Service...")

    # Initialize database
    await init_db()
    logger.info("Database initialized")

    yield

    # Shutdown
    logger.info("Shutting down Forum Service...")
    await close_db()
    logger.info("Shutdown complete")


def _error(status_code: int, message: str) -> ORJSONResponse:
    return ORJSONResponse(
        status_code=status_code,
        content={"success": False, "error": message},
    )


async def forum_error_handler(request: Request, exc: ForumError) -> ORJSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return _error(exc.status_code, exc.message)


async def auth_error_handler(request: Request, exc: AuthenticationRequired) -> ORJSONResponse:
    return _error(401, "Authentication required")


async def validation_error_handler(
    request: Request, exc: RequestValidationError
) -> ORJSONResponse:
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid request")
    return _error(400, f"{location}: {message}" if location else message)


async def database_error_handler(request: Request, exc: SQLAlchemyError) -> ORJSONResponse:
    logger.opt(exception=exc).error(f"Database error on {request.method} {request.url.path}")
    return _error(InternalError.status_code, InternalError.default_message)


async def unhandled_error_handler(request: Request, exc: Exception) -> ORJSONResponse:
    logger.opt(exception=exc).error(f"Unhandled error on {request.method} {request.url.path}")
    return _error(InternalError.status_code, InternalError.default_message)


def create_app() -> FastAPI:
    """Build the FastAPI application."""
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="""
        Forum Service Backend

        ## Features

        - **Categories**: Admin-managed sections with live statistics
        - **Threads & Replies**: Soft delete, ownership checks, pagination
        - **Likes**: One toggleable like per user and post
        - **Moderation**: Pin, lock and delete with an audit log
        """,
        openapi_url=f"{settings.api_prefix}/openapi.json",
        docs_url="/docs",
        redoc_url="/redoc",
        default_response_class=ORJSONResponse,
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(ForumError, forum_error_handler)
    app.add_exception_handler(AuthenticationRequired, auth_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(SQLAlchemyError, database_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    # Include API router
    app.include_router(api_router, prefix=settings.api_prefix)

    @app.get("/health", tags=["System"])
    async def health_check() -> dict:
        """Health check endpoint for monitoring."""
        return {
            "status": "healthy",
            "version": settings.app_version,
        }

    return app


app = create_app()
