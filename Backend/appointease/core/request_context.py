"""
Request Context Module

Identity is established by the authentication layer that sits in front of
this service. That layer places an AuthIdentity on ``request.state.identity``;
this module only defines the shape and how to read it back.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from .errors import AuthenticationRequiredError

logger = logging.getLogger(__name__)


PLATFORM_ADMIN_ROLE = "admin"


@dataclass(frozen=True)
class AuthIdentity:
    """
    Authenticated principal for the current request.

    Attributes:
        user_id: Identifier of the signed-in account
        business_slug: Slug of the business the account belongs to, if any
        role: "business" (owner), "staff", "customer" or "admin" (platform)
    """

    user_id: str
    business_slug: Optional[str] = None
    role: str = "business"

    @property
    def is_platform_admin(self) -> bool:
        return self.role == PLATFORM_ADMIN_ROLE


def get_auth_identity(request: Request) -> Optional[AuthIdentity]:
    """Return the identity attached upstream, or None for anonymous requests."""
    identity = getattr(request.state, "identity", None)
    if identity is not None and not isinstance(identity, AuthIdentity):
        logger.warning(f"Ignoring unexpected identity type on request: {type(identity).__name__}")
        return None
    return identity


def require_identity(request: Request) -> AuthIdentity:
    """
    Strict variant for write endpoints: 401 when nobody is signed in.

    Usage:
        @router.post("/api/themes/{theme_id}/activate")
        async def activate(identity: AuthIdentity = Depends(require_identity)):
            ...
    """
    identity = get_auth_identity(request)
    if identity is None:
        raise AuthenticationRequiredError("Authentication required")
    return identity
