"""Request body size limiting middleware."""

import logging
from typing import Callable

from fastapi import Request, Response, status

from src.api.middleware.error_handler import create_error_response
from src.core.config import get_settings
from src.services.avatar_service import oversized_message

logger = logging.getLogger(__name__)

AVATAR_UPLOAD_PATH = "/avatar/upload"


async def request_size_limit_middleware(
    request: Request,
    call_next: Callable[[Request], Response],
) -> Response:
    """Reject requests whose declared body exceeds the configured maximum.

    Avatar uploads are the only large bodies; the ceiling sits a little
    above the avatar limit so multipart overhead still fits. An oversized
    avatar upload gets the same 400 the upload route gives for a file
    over the avatar limit; anything else gets 413.

    Args:
        request: The incoming request.
        call_next: Next middleware or route handler.

    Returns:
        Response: Either the downstream response or an error.
    """
    settings = get_settings()
    max_size = settings.max_request_body_size

    content_length = request.headers.get("content-length")
    if content_length and content_length.isdigit() and int(content_length) > max_size:
        logger.warning(
            "Rejected %s %s: body of %s bytes exceeds %d",
            request.method,
            request.url.path,
            content_length,
            max_size,
        )
        if request.url.path == AVATAR_UPLOAD_PATH:
            return create_error_response(
                error_type="validation_error",
                message=oversized_message(settings.avatar_max_bytes),
                status_code=status.HTTP_400_BAD_REQUEST,
                request_id=request.headers.get("X-Request-ID"),
            )
        return create_error_response(
            error_type="request_too_large",
            message=f"Request body exceeds maximum size of {max_size} bytes",
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            request_id=request.headers.get("X-Request-ID"),
        )

    return await call_next(request)
