"""FastAPI application entry point with lifespan, CORS, and structured logging.

This module initializes the FastAPI application with:
- Lifespan context manager for the database connection (schema created on startup)
- CORS middleware for the web client dev server
- Structured logging (JSON) to logs/backend.log
- Exception handlers for consistent error responses
- Basic health check endpoints

The database connection is stored in app.state.db for route handlers. All API
responses follow the standard envelope format defined in src.api.models.

Usage:
    uvicorn src.api.app:app --reload
"""

import os
import traceback
from contextlib import asynccontextmanager
from typing import Dict

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.api.models import ErrorEnvelope, ErrorDetail
from src.api.responses import (
    AUTH_REQUIRED, DATABASE_ERROR, FORBIDDEN, NOT_FOUND, VALIDATION_ERROR,
)
from src.api.routes import comments, communities, conversations, notifications, posts, profile
from src.backend.db.connection import initialize_schema, open_connection, resolve_db_path
from src.backend.utils.errors import AuthRequired
from src.backend.utils.logging_config import get_logger, setup_logging


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the database on startup, make sure the schema exists, close on shutdown."""
    logger = get_logger(__name__)
    db_path = resolve_db_path()

    try:
        conn = open_connection(db_path)
        initialize_schema(conn)
        app.state.db = conn

        logger.info("database_connection_acquired", db_path=db_path)

        yield

    finally:
        if hasattr(app.state, 'db') and app.state.db is not None:
            app.state.db.close()
            logger.info("database_connection_closed")


setup_logging(log_dir="logs", log_filename="backend.log")

app = FastAPI(
    title="Campus Pulse API",
    description="Backend API for anonymous campus posts, votes, comments, notifications, profiles and assistant chat history",
    version="1.0.0",
    lifespan=lifespan,
)

cors_origins = os.environ.get(
    'CORS_ORIGINS',
    'http://localhost:5173'
).split(',')

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

logger = get_logger(__name__)
logger.info("fastapi_app_initialized", cors_origins=cors_origins)

app.include_router(posts.router)
app.include_router(comments.router)
app.include_router(notifications.router)
app.include_router(communities.router)
app.include_router(conversations.router)
app.include_router(profile.router)


def _error_response(status_code: int, code: str, message: str) -> JSONResponse:
    error_envelope = ErrorEnvelope(error=ErrorDetail(code=code, message=message))
    return JSONResponse(
        status_code=status_code,
        content=error_envelope.model_dump(),
        headers={"Content-Type": "application/json"}
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Convert request validation errors (422) into the ErrorEnvelope format."""
    logger = get_logger(__name__)
    logger.warning("validation_error", path=request.url.path, errors=exc.errors())

    return _error_response(
        422, VALIDATION_ERROR, f"Request validation failed: {exc.errors()[0]['msg']}"
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle HTTPException with error envelope format.

    Routes exceptions raised via raise_api_error() or raw HTTPException
    into the standard ErrorEnvelope structure.
    """
    logger = get_logger(__name__)
    logger.warning("http_exception", path=request.url.path, status=exc.status_code)

    if isinstance(exc.detail, dict) and "code" in exc.detail:
        code = exc.detail["code"]
        message = exc.detail["message"]
    else:
        code_map = {401: AUTH_REQUIRED, 403: FORBIDDEN, 404: NOT_FOUND, 422: VALIDATION_ERROR}
        code = code_map.get(exc.status_code, DATABASE_ERROR)
        message = str(exc.detail) if exc.detail else "An error occurred"

    return _error_response(exc.status_code, code, message)


@app.exception_handler(AuthRequired)
async def auth_required_handler(request: Request, exc: AuthRequired) -> JSONResponse:
    logger = get_logger(__name__)
    logger.info("auth_required", path=request.url.path)

    return _error_response(401, AUTH_REQUIRED, str(exc) or "Sign in required")


@app.exception_handler(404)
async def not_found_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger = get_logger(__name__)
    logger.warning("not_found", path=request.url.path)

    # raise_api_error(NOT_FOUND, ...) lands here too; keep its message
    detail = getattr(exc, "detail", None)
    if isinstance(detail, dict) and "message" in detail:
        return _error_response(404, NOT_FOUND, detail["message"])
    return _error_response(404, NOT_FOUND, f"Resource not found: {request.url.path}")


@app.exception_handler(500)
async def internal_server_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Convert uncaught server errors into the ErrorEnvelope format."""
    logger = get_logger(__name__)
    logger.error(
        "internal_server_error",
        path=request.url.path,
        error=str(exc),
        traceback=traceback.format_exc(),
    )

    return _error_response(500, DATABASE_ERROR, "An internal server error occurred")


@app.get("/")
async def root() -> Dict[str, str]:
    """Root endpoint for basic health check.

    Example:
        GET / -> {"status": "ok", "message": "Campus Pulse API"}
    """
    return {
        "status": "ok",
        "message": "Campus Pulse API"
    }


@app.get("/health")
async def health() -> Dict[str, str]:
    return {"status": "healthy"}
