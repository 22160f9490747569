"""
FastAPI exception handlers that map conversation service exceptions to HTTP responses.

Services raise forum.exceptions.* exceptions; the HTTP status lives on the
exception class and the body comes from `to_payload()`.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from forum.exceptions import (
    ConversationAuthorizationError,
    ConversationValidationError,
    ForumError,
)

logger = logging.getLogger(__name__)


async def authorization_error_handler(
    request: Request, exc: ConversationAuthorizationError
) -> JSONResponse:
    """403 Forbidden."""
    logger.info("Authorization error for %s %s: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


async def validation_error_handler(
    request: Request, exc: ConversationValidationError
) -> JSONResponse:
    """422 Unprocessable Entity, with the offending fields when known."""
    logger.info(
        "Validation error for %s %s: %s fields=%s",
        request.method,
        request.url.path,
        exc.message,
        exc.fields,
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


async def forum_error_handler(request: Request, exc: ForumError) -> JSONResponse:
    """Fallback for any other service error."""
    logger.warning("Forum error for %s %s: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


def register_exception_handlers(app: FastAPI) -> None:
    # Most specific first
    app.add_exception_handler(ConversationAuthorizationError, authorization_error_handler)
    app.add_exception_handler(ConversationValidationError, validation_error_handler)
    app.add_exception_handler(ForumError, forum_error_handler)
