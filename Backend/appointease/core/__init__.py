"""
Core module - configuration, database, request context, errors and response formatting.
"""
from .config import Settings, get_settings
from .db import get_session, Base, engine, AsyncSessionLocal, build_engine, create_tables, dispose_engine
from .errors import (
    AppointEaseError,
    ErrorCodes,
    NotFoundError,
    AuthenticationRequiredError,
    AuthorizationDeniedError,
    InvalidOperationError,
    UpstreamUnavailableError,
    InvariantViolationError,
)
from .request_context import AuthIdentity, get_auth_identity, require_identity
from .responses import (
    ApiResponse,
    ErrorDetail,
    success_response,
    error_response,
    register_error_handlers,
)

__all__ = [
    # Config
    "Settings",
    "get_settings",
    # Database
    "get_session",
    "Base",
    "engine",
    "AsyncSessionLocal",
    "build_engine",
    "create_tables",
    "dispose_engine",
    # Errors
    "AppointEaseError",
    "NotFoundError",
    "AuthenticationRequiredError",
    "AuthorizationDeniedError",
    "InvalidOperationError",
    "UpstreamUnavailableError",
    "InvariantViolationError",
    # Request Context
    "AuthIdentity",
    "get_auth_identity",
    "require_identity",
    # Responses
    "ApiResponse",
    "ErrorDetail",
    "ErrorCodes",
    "success_response",
    "error_response",
    "register_error_handlers",
]
