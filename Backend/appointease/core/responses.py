"""
Response envelope for the theme and tenant endpoints, plus the handlers that
turn domain errors into it.

    success:  {"data": <payload>, "status": "success"}
    error:    {"error": {"code": "NOT_FOUND", "message": "Theme not found",
                         "details": {"theme_id": 7}}, "status": "error"}

Unknown slugs and missing tenants share the same NOT_FOUND shape, so responses
never reveal whether a business exists.
"""

import logging
from typing import Any, Generic, Optional, TypeVar

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .errors import AppointEaseError, ErrorCodes

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ErrorDetail(BaseModel):
    """Structured error information."""
    code: str
    message: str
    details: Optional[dict[str, Any]] = None


class ApiResponse(BaseModel, Generic[T]):
    """
    Standardized API response wrapper.

    Usage:
        ApiResponse(error=ErrorDetail(code="NOT_FOUND", message="Theme not found"), status="error")
    """
    data: Optional[T] = None
    error: Optional[ErrorDetail] = None
    status: str = "success"


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def success_response(data: Any) -> dict:
    """Create a standardized success response dict."""
    return {"data": data, "status": "success"}


def error_response(
    code: str,
    message: str,
    details: Optional[dict] = None,
) -> dict:
    """Create a standardized error response dict."""
    response = {
        "error": {
            "code": code,
            "message": message,
        },
        "status": "error",
    }
    if details:
        response["error"]["details"] = details
    return response


async def handle_domain_error(request: Request, exc: AppointEaseError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=ApiResponse(
            error=ErrorDetail(code=exc.code, message=exc.message, details=exc.details),
            status="error",
        ).model_dump(exclude_none=True),
    )


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=500,
        content=error_response(ErrorCodes.INTERNAL_ERROR, "Internal server error"),
    )


def register_error_handlers(app: FastAPI) -> None:
    """Map domain errors (and anything unexpected) onto the error envelope."""
    app.add_exception_handler(AppointEaseError, handle_domain_error)
    app.add_exception_handler(Exception, handle_unexpected_error)
