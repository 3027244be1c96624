"""FastAPI exception handlers for converting gateway errors to HTTP responses.

The ErrorCode-to-HTTP status mapping follows REST conventions:
- 401 Unauthorized: missing or wrong admin key
- 500 Internal Server Error: configuration missing

The Stripe webhook endpoint does not rely on these handlers; it always
answers with its own acknowledgement bodies.

Usage:
    from gateway.exceptions import register_exception_handlers
    register_exception_handlers(app)
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.status import (
    HTTP_400_BAD_REQUEST,
    HTTP_401_UNAUTHORIZED,
    HTTP_500_INTERNAL_SERVER_ERROR,
)

from enrollment.config import ConfigurationError
from enrollment.models.errors import ErrorCode, ErrorResponse, GatewayError

logger = logging.getLogger(__name__)

ERROR_CODE_TO_HTTP_STATUS: dict[ErrorCode, int] = {
    ErrorCode.UNAUTHORIZED: HTTP_401_UNAUTHORIZED,
    ErrorCode.CONFIGURATION_MISSING: HTTP_500_INTERNAL_SERVER_ERROR,
}


def get_http_status_for_error(code: ErrorCode) -> int:
    return ERROR_CODE_TO_HTTP_STATUS.get(code, HTTP_400_BAD_REQUEST)


async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
    """Convert GatewayError to a JSON error response."""
    return JSONResponse(
        status_code=get_http_status_for_error(exc.code),
        content=exc.to_error_response().model_dump(mode="json"),
    )


async def configuration_error_handler(
    request: Request, exc: ConfigurationError
) -> JSONResponse:
    """Report a missing setting without exposing its value."""
    logger.error("Configuration error on %s: %s", request.url.path, exc)
    details = {"setting": exc.setting} if exc.setting else None
    return JSONResponse(
        status_code=HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse.from_code(
            ErrorCode.CONFIGURATION_MISSING, details
        ).model_dump(mode="json"),
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI app."""
    app.add_exception_handler(GatewayError, gateway_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(
        ConfigurationError, configuration_error_handler  # type: ignore[arg-type]
    )
